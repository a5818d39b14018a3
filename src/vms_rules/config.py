"""Configuration loading and validation."""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = "~/.vms-rules/config.yaml"


class DispatcherConfig(BaseModel):
    max_in_flight: int = Field(default=8, ge=1)  # Concurrent webhook deliveries
    queue_size: int = Field(default=256, ge=1)  # Queued (not in-flight) attempts
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=30.0, ge=0)
    audit_retries: int = Field(default=2, ge=0)  # Extra tries after the first failed audit write
    history_size: int = Field(default=200, ge=1)  # Reported outcomes kept for replay


class AuditConfig(BaseModel):
    path: str = ""  # JSONL audit file; empty = in-memory sink


class ApiConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8095
    auth_token: str = ""  # Bearer token for API access (empty = no auth)


class EngineConfig(BaseModel):
    timezone: str = "UTC"  # IANA zone used for schedule evaluation
    rules_file: str = "~/.vms-rules/rules.yaml"
    lists_file: str = "~/.vms-rules/lists.yaml"
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} with environment variable values."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, "")

    return re.sub(r"\$\{(\w+)\}", replacer, text)


def _config_from_env() -> EngineConfig:
    """Build config from environment variables (for container deployment).

    Falls back to defaults for anything not set.
    """
    defaults = EngineConfig()
    return EngineConfig(
        timezone=os.environ.get("VMS_RULES_TIMEZONE", defaults.timezone),
        rules_file=os.environ.get("VMS_RULES_FILE", defaults.rules_file),
        lists_file=os.environ.get("VMS_LISTS_FILE", defaults.lists_file),
        dispatcher=DispatcherConfig(
            max_in_flight=int(os.environ.get("VMS_MAX_IN_FLIGHT", "8")),
            queue_size=int(os.environ.get("VMS_QUEUE_SIZE", "256")),
        ),
        audit=AuditConfig(path=os.environ.get("VMS_AUDIT_PATH", "")),
        api=ApiConfig(
            host=os.environ.get("VMS_API_HOST", "0.0.0.0"),
            port=int(os.environ.get("VMS_API_PORT", "8095")),
            auth_token=os.environ.get("VMS_API_AUTH_TOKEN", ""),
        ),
    )


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load config from YAML file, env vars, or defaults.

    Priority: config.yaml (with ${ENV} interpolation) > env vars > defaults.
    """
    if path is None:
        path = Path(DEFAULT_CONFIG_PATH).expanduser()
    else:
        path = Path(path).expanduser()

    if not path.exists():
        return _config_from_env()

    raw_text = path.read_text()
    interpolated = _interpolate_env_vars(raw_text)
    try:
        data = yaml.safe_load(interpolated)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}") from e
    if data is None:
        return EngineConfig()
    try:
        return EngineConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config in {path}: {e}") from e


def save_config(config: EngineConfig, path: str | Path | None = None) -> Path:
    """Save config to YAML file."""
    if path is None:
        path = Path(DEFAULT_CONFIG_PATH).expanduser()
    else:
        path = Path(path).expanduser()

    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump()
    path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    return path
