from __future__ import annotations

from pydantic import BaseModel, Field

from quote_ticker.types import ApiKind, DisplayMode

DEFAULT_REFRESH_SECONDS = 10
DEFAULT_ROTATE_SECONDS = 8
MIN_ROTATE_SECONDS = 3
MAX_ROTATE_SECONDS = 3600


class Symbol(BaseModel):
    code: str
    label: str = ""

    def display_label(self) -> str:
        return self.label.strip() or self.code


class Settings(BaseModel):
    symbols: list[Symbol] = Field(default_factory=list)
    # One API token per line; tried in order, see `parse_tokens`.
    tokens: str = ""
    api_kind: ApiKind = "commodity"
    display_mode: DisplayMode = "rotate"
    fixed_symbol: str = ""
    refresh_seconds: int = DEFAULT_REFRESH_SECONDS
    rotate_seconds: int = DEFAULT_ROTATE_SECONDS
    use_system_proxy: bool = False

    def token_list(self) -> list[str]:
        return parse_tokens(self.tokens)

    def codes(self) -> list[str]:
        return [s.code for s in self.symbols]

    def find_symbol(self, code: str) -> Symbol | None:
        for s in self.symbols:
            if s.code == code:
                return s
        return None


_DEFAULT_SYMBOLS: dict[str, tuple[tuple[str, str], ...]] = {
    "commodity": (("XAUUSD", "Gold"), ("XAGUSD", "Silver")),
    "stock": (("AAPL.US", "Apple"), ("700.HK", "Tencent")),
}


def default_symbols(api_kind: ApiKind) -> list[Symbol]:
    return [Symbol(code=code, label=label) for code, label in _DEFAULT_SYMBOLS[api_kind]]


def parse_tokens(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def clamp_rotate_seconds(value: int) -> int:
    return max(MIN_ROTATE_SECONDS, min(MAX_ROTATE_SECONDS, int(value)))


def normalize_symbols(symbols: list[Symbol]) -> list[Symbol]:
    seen: set[str] = set()
    out: list[Symbol] = []
    for s in symbols:
        code = s.code.strip()
        if not code or code in seen:
            continue
        seen.add(code)
        out.append(Symbol(code=code, label=s.label.strip() or code))
    return out


def normalize_settings(settings: Settings) -> Settings:
    """Return a cleaned copy of ``settings``; applying it twice changes nothing."""
    symbols = normalize_symbols(settings.symbols)
    if not symbols:
        symbols = default_symbols(settings.api_kind)
    codes = [s.code for s in symbols]
    fixed = settings.fixed_symbol.strip()
    if fixed not in codes:
        fixed = codes[0]
    return settings.model_copy(
        update={
            "symbols": symbols,
            "fixed_symbol": fixed,
            "refresh_seconds": DEFAULT_REFRESH_SECONDS,
            "rotate_seconds": clamp_rotate_seconds(settings.rotate_seconds),
        }
    )
