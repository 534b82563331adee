from __future__ import annotations

from typing import Protocol

from quote_ticker.types import IconVariant


class StatusSurface(Protocol):
    """Whatever renders the ticker: a tray icon, a menu bar item, a terminal."""

    def set_title(self, text: str) -> None: ...

    def set_tooltip(self, text: str) -> None: ...

    def set_icon(self, variant: IconVariant) -> None: ...
