from __future__ import annotations

import typer

from quote_ticker.types import IconVariant

_ICON_GLYPHS: dict[IconVariant, str] = {"up": "🟢", "down": "🔴", "pending": "⚪"}


class ConsoleSurface:
    def __init__(self, *, show_tooltip: bool = False) -> None:
        self._show_tooltip = show_tooltip
        self._icon: IconVariant = "pending"
        self.title = ""
        self.tooltip = ""

    def set_title(self, text: str) -> None:
        self.title = text
        typer.echo(f"{_ICON_GLYPHS[self._icon]} {text}")

    def set_tooltip(self, text: str) -> None:
        self.tooltip = text
        if self._show_tooltip:
            typer.echo(text)

    def set_icon(self, variant: IconVariant) -> None:
        self._icon = variant
