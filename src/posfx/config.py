"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class FetchSettings(BaseSettings):
    """Outbound rate provider settings."""

    model_config = SettingsConfigDict(env_prefix="FETCH_")

    request_timeout: float = 10.0  # seconds per provider request
    priority: list[str] = ["BCV", "DOLAR_TODAY", "BINANCE"]
    compare_sources: list[str] = ["BCV", "DOLAR_TODAY", "BINANCE", "PARALLEL"]
    url_overrides: dict[str, str] = {}


class RateSettings(BaseSettings):
    """Plausibility bounds and currency pair for stored rates.

    Rates outside [min_rate, max_rate] are rejected before activation.
    """

    model_config = SettingsConfigDict(env_prefix="RATE_")

    min_rate: Decimal = Decimal("0.1")
    max_rate: Decimal = Decimal("1000")
    local_currency: str = "VES"


class AutoUpdateSettings(BaseSettings):
    """Automatic refresh loop configuration.

    The loop wakes every check_interval_seconds and refreshes the rate when
    the active record is older than interval_minutes.
    """

    model_config = SettingsConfigDict(env_prefix="AUTO_UPDATE_")

    enabled: bool = True
    interval_minutes: int = 30
    check_interval_seconds: float = 60.0
    source: str = "BCV"
    fetch_on_empty: bool = True  # refresh on startup when no rate is stored


class AccountsSettings(BaseSettings):
    """Receivable recalculation settings."""

    model_config = SettingsConfigDict(env_prefix="ACCOUNTS_")

    display_precision: int = 2


class StorageSettings(BaseSettings):
    """Local SQLite storage location."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/posfx.db"


class ApiSettings(BaseSettings):
    """Automation API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "127.0.0.1"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    fetch: FetchSettings = FetchSettings()
    rate: RateSettings = RateSettings()
    auto_update: AutoUpdateSettings = AutoUpdateSettings()
    accounts: AccountsSettings = AccountsSettings()
    storage: StorageSettings = StorageSettings()
    api: ApiSettings = ApiSettings()
