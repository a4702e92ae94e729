"""
Runtime settings: ~/.sphere/config.json with SPHERE_* environment overrides.
"""

import json
from pathlib import Path
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from sphere_bridge.transport.http import DEFAULT_WALLET_URL
from sphere_bridge.transport.socketio import SOCKETIO_PATH

CONFIG_DIR = Path.home() / ".sphere"
CONFIG_FILE = CONFIG_DIR / "config.json"
ENV_PREFIX = "SPHERE_"


class BridgeSettings(BaseSettings):
    """
    Bridge settings.

    Keyword arguments carry the config file values; ``SPHERE_<FIELD>``
    environment variables take precedence over them. List fields read
    from the environment are JSON, e.g. ``SPHERE_CORS_ALLOWED_ORIGINS='["https://a.example"]'``.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=1, le=65535)
    bridge_url: str = "http://127.0.0.1:8765"
    socketio_path: str = SOCKETIO_PATH
    cors_allowed_origins: list[str] = Field(default_factory=list)
    storage_path: Path = CONFIG_DIR / "storage.json"
    wallet_url: str = DEFAULT_WALLET_URL
    wallet_token: Optional[str] = None
    approver_token: Optional[str] = None
    request_timeout: float = Field(default=30.0, gt=0)
    connect_timeout: float = Field(default=60.0, gt=0)
    pending_ttl: Optional[float] = Field(default=None, gt=0)  # seconds; None keeps entries until decided
    expiry_interval: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, init_settings


def _load_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(path: Path = CONFIG_FILE) -> BridgeSettings:
    """File values, then environment overrides, validated."""
    return BridgeSettings(**_load_file(path))


def load_raw(path: Path = CONFIG_FILE) -> dict[str, Any]:
    return _load_file(path)


def save_raw(values: dict[str, Any], path: Path = CONFIG_FILE) -> None:
    # file contents only; the environment is not consulted here
    BridgeSettings.model_validate(values)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(values, indent=2))
