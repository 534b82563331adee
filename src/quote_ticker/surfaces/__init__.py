__all__ = ["ConsoleSurface", "StatusSurface"]

from quote_ticker.surfaces.base import StatusSurface
from quote_ticker.surfaces.console import ConsoleSurface
