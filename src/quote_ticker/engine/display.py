from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from quote_ticker.config.ticker import Settings, Symbol
from quote_ticker.exchange.alltick import FetchError
from quote_ticker.types import Display, IconVariant, PriceMap, Quote, Trend, TrendMap

NO_SYMBOLS_TITLE = "No symbols"
NO_SYMBOLS_TOOLTIP = "No symbols configured.\nAdd a symbol in settings."
NO_TOKEN_TITLE = "Set API token"
NO_TOKEN_TOOLTIP = "No API token configured.\nAdd one or more tokens in settings."

STALE_MARKER = "*"
ERROR_MARKER = " ⚠"

TREND_GLYPHS: dict[Trend, str] = {"up": "▲", "down": "▼", "flat": "—"}


def classify_trend(quote: Quote) -> Trend:
    if quote.close > quote.open:
        return "up"
    if quote.close < quote.open:
        return "down"
    return "flat"


def compute_trends(codes: Sequence[str], fetched: PriceMap) -> TrendMap:
    # Codes missing from this response stay listed, as flat/unknown.
    return {code: classify_trend(fetched[code]) if code in fetched else "flat" for code in codes}


def clamp_rotate_index(index: int, count: int) -> int:
    if count <= 0 or index < 0 or index >= count:
        return 0
    return index


def advance_rotation(index: int, count: int) -> int:
    if count <= 0:
        return 0
    return (clamp_rotate_index(index, count) + 1) % count


def select_symbol(settings: Settings, rotate_index: int) -> Symbol | None:
    if not settings.symbols:
        return None
    if settings.display_mode == "fixed":
        return settings.find_symbol(settings.fixed_symbol) or settings.symbols[0]
    return settings.symbols[clamp_rotate_index(rotate_index, len(settings.symbols))]


def format_title(symbol: Symbol, prices: PriceMap) -> str:
    quote = prices.get(symbol.code)
    if quote is None:
        return f"{symbol.display_label()} --"
    return f"{symbol.display_label()} {quote.close:.2f}"


def _strip_markers(title: str) -> str:
    if title.endswith(ERROR_MARKER):
        title = title[: -len(ERROR_MARKER)]
    return title.rstrip(STALE_MARKER)


def stale_title(previous: str) -> str:
    return f"{_strip_markers(previous)}{STALE_MARKER}"


def error_title(previous: str) -> str:
    return f"{_strip_markers(previous)}{ERROR_MARKER}"


def icon_for(symbol: Symbol, prices: PriceMap, trends: TrendMap) -> IconVariant:
    if symbol.code not in prices:
        return "pending"
    trend = trends.get(symbol.code)
    if trend == "up":
        return "up"
    if trend == "down":
        return "down"
    return "pending"


def format_tooltip(
    settings: Settings,
    prices: PriceMap,
    trends: TrendMap,
    *,
    error: FetchError | None = None,
    retry_in_seconds: int | None = None,
) -> str:
    lines: list[str] = []
    if error is not None:
        lines.extend(error.describe())
        if retry_in_seconds:
            lines.append(f"Retrying in {retry_in_seconds}s")
    for s in settings.symbols:
        quote = prices.get(s.code)
        if quote is None:
            lines.append(f"{s.display_label()} --")
            continue
        glyph = TREND_GLYPHS[trends.get(s.code, "flat")]
        lines.append(f"{glyph} {s.display_label()} {quote.close:.2f}")
    return "\n".join(lines)


def special_display(settings: Settings) -> Display | None:
    """Fixed displays for configuration states that never touch the network."""
    if not settings.symbols:
        return Display(title=NO_SYMBOLS_TITLE, tooltip=NO_SYMBOLS_TOOLTIP, icon="pending")
    if not settings.token_list():
        return Display(title=NO_TOKEN_TITLE, tooltip=NO_TOKEN_TOOLTIP, icon="pending")
    return None


def render(
    settings: Settings,
    prices: PriceMap,
    trends: TrendMap,
    rotate_index: int,
    *,
    error: FetchError | None = None,
    previous_title: str | None = None,
    resolved: bool = True,
    retry_in_seconds: int | None = None,
) -> Display:
    special = special_display(settings)
    if special is not None:
        return special

    symbol = select_symbol(settings, rotate_index)
    assert symbol is not None
    tooltip = format_tooltip(
        settings,
        prices,
        trends,
        error=error,
        retry_in_seconds=retry_in_seconds,
    )
    current = format_title(symbol, prices)
    if error is not None:
        return Display(title=error_title(previous_title or current), tooltip=tooltip, icon="pending")
    if not resolved:
        return Display(
            title=stale_title(previous_title or current),
            tooltip=tooltip,
            icon=icon_for(symbol, prices, trends),
        )
    return Display(title=current, tooltip=tooltip, icon=icon_for(symbol, prices, trends))


def price_text(symbol: Symbol, quote: Quote) -> str:
    try:
        at = datetime.fromtimestamp(quote.timestamp).strftime("%H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return f"{symbol.code} {quote.close:.2f}"
    return f"{symbol.code} {quote.close:.2f} @ {at}"
