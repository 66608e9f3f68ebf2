"""Centralized configuration for chatbridge.

Configuration is resolved from two sources:

1. **YAML config**: loaded via Hydra from ``chatbridge/core/configs/``
2. **Environment variables**: used only for secrets and the config selector

The YAML profile is selected by ``CHATBRIDGE_CONFIG_NAME`` (default:
``"gateway"``).

Usage::

    from chatbridge.core.config import get_config

    cfg = get_config()
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

_CONFIG_DIR = str(Path(__file__).parent / "configs")

DEFAULT_CONFIG_NAME = "gateway"
DEFAULT_BACKEND_PATH = "chatbridge.backend.http:HttpEventStreamBackend"

# ---------------------------------------------------------------------------
# YAML loading via Hydra Compose API
# ---------------------------------------------------------------------------

def _load_yaml_config(config_name: str) -> dict[str, object]:
    """Load a YAML config via Hydra Compose API.

    Returns an empty dict if the config file is missing or malformed.
    """
    from hydra import compose, initialize_config_dir
    from hydra.errors import HydraException
    from omegaconf import OmegaConf

    abs_dir = os.path.abspath(_CONFIG_DIR)
    try:
        with initialize_config_dir(version_base=None, config_dir=abs_dir):
            cfg = compose(config_name=config_name)
    except HydraException:
        logger.debug("Failed to load YAML config %r, falling back to defaults", config_name)
        return {}
    container = OmegaConf.to_container(cfg, resolve=True)
    if isinstance(container, dict):
        return container  # type: ignore[return-value]
    return {}


# ---------------------------------------------------------------------------
# YAML value helpers
# ---------------------------------------------------------------------------

def _yaml_str(yaml: dict[str, object], key: str, default: str = "") -> str:
    val = yaml.get(key)
    return str(val) if val is not None else default


def _yaml_int(yaml: dict[str, object], key: str, default: int = 0) -> int:
    val = yaml.get(key)
    return int(str(val)) if val is not None else default


def _yaml_float(yaml: dict[str, object], key: str, default: float = 0.0) -> float:
    val = yaml.get(key)
    return float(str(val)) if val is not None else default


def _yaml_set(
    yaml: dict[str, object], key: str, default: frozenset[str] = frozenset(),
) -> frozenset[str]:
    val = yaml.get(key)
    if val is None:
        return default
    if isinstance(val, (list, tuple)):
        return frozenset(str(item).strip() for item in val if str(item).strip())
    return frozenset(
        item.strip() for item in str(val).split(",") if item.strip()
    )


def _secret(name: str, default: str = "") -> str:
    """Read a secret from an environment variable."""
    raw = os.environ.get(name)
    return raw.strip() if raw is not None else default


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayConfig:
    """Runtime configuration for the gateway process."""

    backend_path: str = DEFAULT_BACKEND_PATH
    backend_url_path: str = "/api/conversation"
    default_host: str = "127.0.0.1:3000"
    context_char_limit: int = 32000
    event_queue_size: int = 1
    disconnect_poll_interval_s: float = 0.5
    cors_allow_origins: frozenset[str] = field(default_factory=lambda: frozenset({"*"}))
    log_level: str = "INFO"
    api_key: str = ""

    @property
    def auth_enabled(self) -> bool:
        return bool(self.api_key)


def load_config(config_name: str) -> GatewayConfig:
    """Build a :class:`GatewayConfig` from the named YAML profile and env secrets."""
    yaml = _load_yaml_config(config_name)
    return GatewayConfig(
        backend_path=_yaml_str(yaml, "backend_path", DEFAULT_BACKEND_PATH),
        backend_url_path=_yaml_str(yaml, "backend_url_path", "/api/conversation"),
        default_host=_yaml_str(yaml, "default_host", "127.0.0.1:3000"),
        context_char_limit=_yaml_int(yaml, "context_char_limit", 32000),
        event_queue_size=max(1, _yaml_int(yaml, "event_queue_size", 1)),
        disconnect_poll_interval_s=_yaml_float(yaml, "disconnect_poll_interval_s", 0.5),
        cors_allow_origins=_yaml_set(yaml, "cors_allow_origins", frozenset({"*"})),
        log_level=_yaml_str(yaml, "log_level", "INFO").upper(),
        api_key=_secret("CHATBRIDGE_API_KEY"),
    )


@lru_cache(maxsize=1)
def get_config() -> GatewayConfig:
    """Return the gateway config for the profile named by ``CHATBRIDGE_CONFIG_NAME``.

    The result is cached; call ``get_config.cache_clear()`` to re-read
    (useful in tests).
    """
    config_name = os.environ.get("CHATBRIDGE_CONFIG_NAME", DEFAULT_CONFIG_NAME).strip().lower()
    return load_config(config_name)
