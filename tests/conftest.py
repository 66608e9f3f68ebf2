"""Shared test fixtures for chatbridge."""

from __future__ import annotations

import asyncio

import pytest

from chatbridge.api import configure_web_app
from chatbridge.backend.base import (
    UPDATE_ANSWER,
    BackendEvent,
    BackendOptions,
    ConversationBackend,
    EventHandler,
)
from chatbridge.core.config import get_config, load_config


class ScriptedBackend(ConversationBackend):
    """Backend that replays cumulative texts, then optionally fails or hangs."""

    def __init__(
        self,
        cfg,
        *,
        endpoint: str = "http://127.0.0.1:3000",
        texts: list[str] | None = None,
        error: Exception | None = None,
        hang: bool = False,
        events: list[BackendEvent] | None = None,
    ) -> None:
        super().__init__(cfg, endpoint=endpoint)
        self.events = list(events or []) + [
            BackendEvent(type=UPDATE_ANSWER, text=t) for t in (texts or [])
        ]
        self.error = error
        self.hang = hang
        self.calls: list[dict[str, object]] = []
        self.was_cancelled = False
        self.closed = False

    async def send_message(
        self,
        *,
        prompt: str,
        context: str,
        options: BackendOptions,
        cancel: asyncio.Event,
        on_event: EventHandler,
    ) -> None:
        self.calls.append(
            {"prompt": prompt, "context": context, "options": options, "cancel": cancel},
        )
        try:
            for event in self.events:
                await on_event(event)
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.was_cancelled = True
            raise

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _test_config(monkeypatch):
    """Select the test profile and reset process-local config around each test."""
    monkeypatch.setenv("CHATBRIDGE_CONFIG_NAME", "test")
    monkeypatch.delenv("CHATBRIDGE_API_KEY", raising=False)
    get_config.cache_clear()
    configure_web_app(load_config("test"))
    yield
    get_config.cache_clear()
    configure_web_app(load_config("test"))


@pytest.fixture()
def make_backend():
    """Factory for :class:`ScriptedBackend` instances bound to the test profile."""

    def _make(**kwargs) -> ScriptedBackend:
        return ScriptedBackend(load_config("test"), **kwargs)

    return _make
