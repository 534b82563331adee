__all__ = [
    "Settings",
    "SettingsCell",
    "SettingsStore",
    "Symbol",
    "normalize_settings",
    "parse_tokens",
]

from quote_ticker.config.store import SettingsCell, SettingsStore
from quote_ticker.config.ticker import Settings, Symbol, normalize_settings, parse_tokens
