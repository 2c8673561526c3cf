"""Application configuration.

Settings come from three layers, later layers winning:

1. Defaults declared on the models below.
2. An optional TOML file (``reconciliation.toml`` in the working directory,
   or the path in ``RECONCILIATION_CONFIG``). Top-level tables configure
   every environment; a table named after the active environment
   (``[test]``, ``[production]``, ...) is overlaid on top.
3. A handful of environment variables for secrets and deployment URLs.

``APP_ENV`` selects the environment (default ``development``).
"""

import os
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

ENVIRONMENTS = ("development", "test", "staging", "production")


class DatabaseSettings(BaseModel):
    url: str = "sqlite:///reconciliation.db"


class GatewaySettings(BaseModel):
    provider: Literal["fake", "paypal"] = "fake"
    name: str = "paypal"
    environment: Literal["sandbox", "production"] = "sandbox"
    client_id: str = ""
    client_secret: str = ""
    webhook_id: str = ""
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=0.5, ge=0)


class NotificationSettings(BaseModel):
    max_retries: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=5.0, ge=0)
    batch_size: int = Field(default=10, ge=1)
    tick_interval_seconds: float = Field(default=1.0, gt=0)
    capacity: int = Field(default=1000, ge=1)
    workers: int = Field(default=4, ge=1)
    sender: str = "orders@example.com"
    transport: Literal["fake"] = "fake"


class IdentitySettings(BaseModel):
    # token -> {"user_id": ..., "roles": [...], "vendor_id": ...}
    tokens: dict[str, dict] = Field(default_factory=dict)


class OrderingSettings(BaseModel):
    auto_deliver_after_days: int = Field(default=7, ge=1)
    transition_retries: int = Field(default=3, ge=1)


class Settings(BaseModel):
    env: str = "development"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    ordering: OrderingSettings = Field(default_factory=OrderingSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)


_ENV_OVERRIDES = {
    "DATABASE_URL": ("database", "url"),
    "GATEWAY_PROVIDER": ("gateway", "provider"),
    "PAYPAL_ENVIRONMENT": ("gateway", "environment"),
    "PAYPAL_CLIENT_ID": ("gateway", "client_id"),
    "PAYPAL_CLIENT_SECRET": ("gateway", "client_secret"),
    "PAYPAL_WEBHOOK_ID": ("gateway", "webhook_id"),
}


def _merge(base: dict, overlay: dict) -> dict:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: str | Path | None = None, env: str | None = None) -> Settings:
    """Build ``Settings`` from defaults, the TOML file and the environment."""
    env = env or os.getenv("APP_ENV", "development")
    config_path = Path(path or os.getenv("RECONCILIATION_CONFIG", "reconciliation.toml"))

    data: dict = {}
    if config_path.exists():
        with config_path.open("rb") as fh:
            raw = tomllib.load(fh)
        data = {key: value for key, value in raw.items() if key not in ENVIRONMENTS}
        data = _merge(data, raw.get(env, {}))

    for variable, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(variable)
        if value:
            data.setdefault(section, {})[key] = value

    data["env"] = env
    return Settings.model_validate(data)
