from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from quicky.errors import MissingCredentialsError
from quicky.types import Credentials, NetworkMode


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Bybit (mainnet)
    bybit_api_key: str = Field(default="", validation_alias="BYBIT_API_KEY")
    bybit_api_secret: str = Field(default="", validation_alias="BYBIT_API_SECRET")

    # Bybit (testnet)
    bybit_testnet_api_key: str = Field(default="", validation_alias="BYBIT_TESTNET_API_KEY")
    bybit_testnet_api_secret: str = Field(default="", validation_alias="BYBIT_TESTNET_API_SECRET")

    # HTTP
    recv_window_ms: int = Field(default=5_000, validation_alias="QUICKY_RECV_WINDOW_MS")
    http_timeout_seconds: float = Field(default=10.0, validation_alias="QUICKY_HTTP_TIMEOUT_SECONDS")
    # Applies to market data only; orders are never resubmitted.
    market_data_max_retries: int = Field(default=3, validation_alias="QUICKY_MARKET_DATA_MAX_RETRIES")
    retry_base_seconds: float = Field(default=0.5, validation_alias="QUICKY_RETRY_BASE_SECONDS")
    sync_server_time: bool = Field(default=False, validation_alias="QUICKY_SYNC_SERVER_TIME")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")


_CREDENTIAL_FIELDS: dict[NetworkMode, tuple[tuple[str, str], tuple[str, str]]] = {
    NetworkMode.MAINNET: (
        ("bybit_api_key", "BYBIT_API_KEY"),
        ("bybit_api_secret", "BYBIT_API_SECRET"),
    ),
    NetworkMode.TESTNET: (
        ("bybit_testnet_api_key", "BYBIT_TESTNET_API_KEY"),
        ("bybit_testnet_api_secret", "BYBIT_TESTNET_API_SECRET"),
    ),
}


def resolve_credentials(settings: Settings, mode: NetworkMode) -> Credentials:
    """Pick the key/secret pair for `mode`; both halves must be present."""
    (key_field, key_env), (secret_field, secret_env) = _CREDENTIAL_FIELDS[mode]
    api_key = str(getattr(settings, key_field)).strip()
    api_secret = str(getattr(settings, secret_field)).strip()

    missing: list[str] = []
    if not api_key:
        missing.append(key_env)
    if not api_secret:
        missing.append(secret_env)
    if missing:
        raise MissingCredentialsError(missing)

    return Credentials(api_key=api_key, api_secret=api_secret, mode=mode)
