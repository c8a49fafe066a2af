from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from shared.log import get_logger
from shared.utils import is_ws_url
from .state import ReconnectPolicy

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".kabaw" / "config.yaml"

# environment variable -> ClientConfig field
ENV_OVERRIDES = {
    "KABAW_SERVER": "server_url",
    "KABAW_CHANNEL": "channel",
    "KABAW_USERNAME": "username",
    "KABAW_LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class ClientConfig:
    server_url: str = "ws://localhost:8080/ws"
    channel: str = "general"
    username: Optional[str] = None
    max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    log_level: str = "INFO"

    @property
    def policy(self) -> ReconnectPolicy:
        return ReconnectPolicy(
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
        )

    def merged(self, **overrides: Any) -> ClientConfig:
        """Return a copy with every non-None override applied"""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Check a YAML value against the field's default type; None means reject"""
    expected = int if isinstance(default, int) else str
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            return None
        return value
    if not isinstance(value, str):
        return None
    if name == "server_url" and not is_ws_url(value):
        return None
    return value


def _from_mapping(data: Mapping[str, Any], base: ClientConfig, source: str) -> ClientConfig:
    known = {f.name: f for f in fields(ClientConfig)}
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting {key!r} in {source}")
            continue
        default = getattr(ClientConfig(), key)
        checked = _coerce(key, value, "" if default is None else default)
        if checked is None:
            logger.warning(f"Ignoring invalid value for {key!r} in {source}: {value!r}")
            continue
        values[key] = checked
    return replace(base, **values)


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> ClientConfig:
    """
    Build the client configuration.

    Order: defaults, then the YAML file (explicit path or ~/.kabaw/config.yaml
    if present), then KABAW_* environment variables. Bad files and bad values
    are logged and skipped; loading never fails.
    """
    config = ClientConfig()
    config_path = path or DEFAULT_CONFIG_PATH

    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error reading {config_path}: {e}")
            data = {}
        if isinstance(data, dict):
            config = _from_mapping(data, config, str(config_path))
        else:
            logger.warning(f"{config_path} must contain a mapping; ignoring it")
    elif path is not None:
        logger.warning(f"Config file {config_path} not found; using defaults")

    environ = os.environ if environ is None else environ
    env_values = {field: environ[var] for var, field in ENV_OVERRIDES.items() if environ.get(var)}
    if env_values:
        config = _from_mapping(env_values, config, "environment")

    return config
