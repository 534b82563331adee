from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_COMMODITY_ENDPOINT = "https://quote.alltick.io/quote-b-api/batch-kline"
DEFAULT_STOCK_ENDPOINT = "https://quote.alltick.io/quote-stock-b-api/batch-kline"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Persisted user settings (symbols, tokens, display mode)
    settings_file: Path = Field(
        default=Path("~/.config/quote-ticker/settings.json"),
        validation_alias="SETTINGS_FILE",
    )

    # Quote API
    request_timeout_seconds: float = Field(default=10.0, gt=0, validation_alias="REQUEST_TIMEOUT_SECONDS")
    commodity_endpoint: str = Field(
        default=DEFAULT_COMMODITY_ENDPOINT,
        validation_alias="COMMODITY_ENDPOINT",
    )
    stock_endpoint: str = Field(default=DEFAULT_STOCK_ENDPOINT, validation_alias="STOCK_ENDPOINT")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    def settings_path(self) -> Path:
        return self.settings_file.expanduser()

    def endpoints(self) -> dict[str, str]:
        return {"commodity": self.commodity_endpoint, "stock": self.stock_endpoint}
