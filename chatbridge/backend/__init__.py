"""Conversational backend abstraction.

Factory function to build the configured backend for one request.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatbridge.core.config import GatewayConfig

    from .base import ConversationBackend


def _resolve_backend_class(path: str) -> type:
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"backend_path must look like 'package.module:Class', got {path!r}")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError:
        raise ValueError(f"Unknown conversation backend: {path!r}") from None


def get_conversation_backend(cfg: GatewayConfig, *, endpoint: str) -> ConversationBackend:
    """Return a new backend instance for ``cfg.backend_path`` bound to ``endpoint``."""
    from .base import ConversationBackend

    backend_cls = _resolve_backend_class(cfg.backend_path)
    if not (isinstance(backend_cls, type) and issubclass(backend_cls, ConversationBackend)):
        raise TypeError(f"{cfg.backend_path!r} is not a ConversationBackend subclass")
    return backend_cls(cfg, endpoint=endpoint)
