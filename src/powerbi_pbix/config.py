from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_URL = "https://api.powerbi.com/v1.0/myorg"
DEFAULT_AZ_PROCESS_TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class AuthConfig:
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    username: str = ""
    password: str = ""

    def __repr__(self) -> str:
        return (
            f"AuthConfig(tenant_id={self.tenant_id!r}, client_id={self.client_id!r}, "
            f"username={self.username!r})"
        )


@dataclass(frozen=True)
class PowerBIConfig:
    base_url: str = DEFAULT_API_URL
    request_timeout_seconds: int = 120
    poll_interval_seconds: int = 5
    operation_timeout_seconds: int = 300
    verify_ssl: bool = True
    ca_bundle_path: Optional[str] = None
    log_level: str = "INFO"
    az_process_timeout_seconds: int = DEFAULT_AZ_PROCESS_TIMEOUT_SECONDS


@dataclass(frozen=True)
class DeployerConfig:
    auth: AuthConfig = field(default_factory=AuthConfig)
    powerbi: PowerBIConfig = field(default_factory=PowerBIConfig)


def load_config(env_file: Optional[str] = ".env") -> DeployerConfig:
    """Load deployer configuration from environment variables."""
    if env_file:
        load_dotenv(dotenv_path=env_file, override=False)

    auth = AuthConfig(
        tenant_id=_env_str("POWERBI_TENANT_ID"),
        client_id=_env_str("POWERBI_CLIENT_ID"),
        client_secret=_env_str("POWERBI_CLIENT_SECRET"),
        access_token=_env_str("POWERBI_ACCESS_TOKEN"),
        username=_env_str("POWERBI_USERNAME"),
        password=_env_str("POWERBI_PASSWORD"),
    )
    powerbi = PowerBIConfig(
        base_url=(os.environ.get("POWERBI_API_URL") or DEFAULT_API_URL).strip().rstrip("/"),
        request_timeout_seconds=_env_int("POWERBI_HTTP_TIMEOUT_SECONDS", 120, minimum=1),
        poll_interval_seconds=_env_int("POWERBI_POLL_INTERVAL_SECONDS", 5, minimum=1),
        operation_timeout_seconds=_env_int("POWERBI_OPERATION_TIMEOUT_SECONDS", 300, minimum=1),
        verify_ssl=_env_bool("POWERBI_VERIFY_SSL", default=True),
        ca_bundle_path=os.environ.get("POWERBI_CA_BUNDLE_PATH") or None,
        log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        az_process_timeout_seconds=_env_int(
            "POWERBI_AZ_TIMEOUT_SECONDS", DEFAULT_AZ_PROCESS_TIMEOUT_SECONDS, minimum=1
        ),
    )
    return DeployerConfig(auth=auth, powerbi=powerbi)


def _env_str(key: str) -> str:
    return (os.environ.get(key) or "").strip()


def _env_int(key: str, default: int, minimum: int) -> int:
    raw = os.environ.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer value for {key}: {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}: {value}")
    return value


def _env_bool(key: str, default: bool = True) -> bool:
    value = os.environ.get(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"0", "false", "no", "off", ""}:
        return False
    if normalized in {"1", "true", "yes", "on"}:
        return True
    return default
