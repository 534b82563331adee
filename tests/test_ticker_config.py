import pytest

from quote_ticker.config import Settings, Symbol, normalize_settings, parse_tokens
from quote_ticker.config.ticker import DEFAULT_REFRESH_SECONDS


def _settings(**kwargs: object) -> Settings:
    return Settings.model_validate(kwargs)


def test_normalize_dedupes_codes_first_occurrence_wins() -> None:
    settings = _settings(
        symbols=[
            {"code": " XAUUSD ", "label": "Gold"},
            {"code": "XAGUSD", "label": ""},
            {"code": "XAUUSD", "label": "Other gold"},
            {"code": "xauusd", "label": ""},
            {"code": "   ", "label": "blank"},
        ]
    )
    normalized = normalize_settings(settings)
    assert [(s.code, s.label) for s in normalized.symbols] == [
        ("XAUUSD", "Gold"),
        ("XAGUSD", "XAGUSD"),
        ("xauusd", "xauusd"),
    ]


def test_normalize_is_idempotent() -> None:
    settings = _settings(
        symbols=[{"code": "B"}, {"code": "A "}, {"code": "B", "label": "dup"}],
        fixed_symbol="missing",
        rotate_seconds=-5,
        refresh_seconds=99,
        tokens="a\n\n b \n",
    )
    once = normalize_settings(settings)
    assert normalize_settings(once) == once


def test_normalize_empty_symbols_uses_category_defaults() -> None:
    commodity = normalize_settings(_settings(api_kind="commodity"))
    stock = normalize_settings(_settings(api_kind="stock"))
    assert commodity.codes()[0] == "XAUUSD"
    assert stock.codes() and "XAUUSD" not in stock.codes()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(-10, 3), (0, 3), (3, 3), (45, 45), (3600, 3600), (10**9, 3600)],
)
def test_normalize_clamps_rotate_seconds(raw: int, expected: int) -> None:
    assert normalize_settings(_settings(rotate_seconds=raw)).rotate_seconds == expected


def test_normalize_forces_refresh_seconds_and_fixes_fixed_symbol() -> None:
    settings = _settings(
        symbols=[{"code": "XAUUSD"}, {"code": "XAGUSD"}],
        display_mode="fixed",
        fixed_symbol="EURUSD",
        refresh_seconds=1,
    )
    normalized = normalize_settings(settings)
    assert normalized.refresh_seconds == DEFAULT_REFRESH_SECONDS
    assert normalized.fixed_symbol == "XAUUSD"


def test_parse_tokens_trims_and_drops_blank_lines() -> None:
    assert parse_tokens("  tok1 \n\n\ttok2\r\n   \n") == ["tok1", "tok2"]
    assert parse_tokens("") == []


def test_symbol_label_defaults_to_code() -> None:
    assert Symbol(code="XAUUSD").display_label() == "XAUUSD"
    assert Symbol(code="XAUUSD", label=" Gold ").display_label() == "Gold"
