"""Tests for the streaming multiplexer state machine."""

from __future__ import annotations

import asyncio
import json

import pytest

from chatbridge.backend.base import BackendEvent
from chatbridge.core.types import BackendCall, ConversationStyle
from chatbridge.gateway.cancellation import CancellationBridge
from chatbridge.gateway.driver import DriverState, StreamDriver, describe_error
from chatbridge.gateway.formatter import DONE_FRAME


def _call(*, stream: bool = True, style_hint: str = "Creative", allow_search: bool = False):
    return BackendCall(
        prompt="prompt",
        context="",
        stream=stream,
        allow_search=allow_search,
        style_hint=style_hint,
    )


def _delta_of(frame: str) -> str:
    payload = json.loads(frame[len("data: "):])
    return payload["choices"][0]["delta"]["content"]


async def _drain(frames):
    return [frame async for frame in frames]


class TestStreaming:
    def test_emits_one_frame_per_advance_then_done(self, make_backend):
        backend = make_backend(texts=["H", "He", "Hello"])
        driver = StreamDriver(backend, _call())

        frames = asyncio.run(_drain(driver.stream()))

        assert [_delta_of(f) for f in frames[:-1]] == ["H", "e", "llo"]
        assert frames[-1] == DONE_FRAME
        assert frames.count(DONE_FRAME) == 1
        assert driver.state is DriverState.DONE

    def test_duplicate_and_shrinking_updates_emit_nothing(self, make_backend):
        backend = make_backend(texts=["Hello", "Hello", "Hel", "Hello world"])
        driver = StreamDriver(backend, _call())

        frames = asyncio.run(_drain(driver.stream()))

        assert [_delta_of(f) for f in frames[:-1]] == ["Hello", " world"]
        assert driver.tracker.last_cumulative_text == "Hello world"

    def test_non_text_events_are_ignored(self, make_backend):
        backend = make_backend(
            events=[BackendEvent(type="PING"), BackendEvent(type="UPDATE_ANSWER", text="")],
            texts=["ok"],
        )
        frames = asyncio.run(_drain(StreamDriver(backend, _call()).stream()))
        assert [_delta_of(f) for f in frames[:-1]] == ["ok"]

    def test_backend_error_becomes_terminal_content(self, make_backend):
        backend = make_backend(texts=["Hi"], error=RuntimeError("upstream exploded"))
        driver = StreamDriver(backend, _call())

        frames = asyncio.run(_drain(driver.stream()))

        assert [_delta_of(f) for f in frames[:-1]] == ["Hi", "\n\nRuntimeError: upstream exploded"]
        assert frames[-1] == DONE_FRAME
        assert driver.state is DriverState.DONE

    def test_error_after_shrinking_revision_is_streamed_whole(self, make_backend):
        backend = make_backend(texts=["Hello world", "Hi"], error=RuntimeError("boom"))
        driver = StreamDriver(backend, _call())

        frames = asyncio.run(_drain(driver.stream()))

        deltas = [_delta_of(f) for f in frames[:-1]]
        assert deltas == ["Hello world", "\n\nRuntimeError: boom"]
        assert "RuntimeError: boom" in "".join(deltas)
        assert frames[-1] == DONE_FRAME

    def test_disconnect_after_two_events_stops_without_terminator(self, make_backend):
        backend = make_backend(texts=["H", "He", "Hello"])
        driver = StreamDriver(backend, _call())

        async def scenario():
            frames = driver.stream()
            received = [await frames.__anext__(), await frames.__anext__()]
            driver.bridge.fire()
            rest = [frame async for frame in frames]
            return received, rest

        received, rest = asyncio.run(scenario())

        assert [_delta_of(f) for f in received] == ["H", "e"]
        assert rest == []
        assert driver.bridge.fired
        assert driver.state is DriverState.DONE

    def test_closing_the_stream_cancels_the_backend(self, make_backend):
        backend = make_backend(texts=["partial"], hang=True)
        driver = StreamDriver(backend, _call())

        async def scenario():
            frames = driver.stream()
            first = await frames.__anext__()
            await frames.aclose()
            return first

        first = asyncio.run(scenario())

        assert _delta_of(first) == "partial"
        assert driver.bridge.fired
        assert driver.bridge.reason == "client disconnected"
        assert backend.was_cancelled
        assert backend.calls[0]["cancel"].is_set()
        assert driver.state is DriverState.DONE

    def test_fire_after_completion_is_noop(self, make_backend):
        driver = StreamDriver(make_backend(texts=["done"]), _call())
        asyncio.run(_drain(driver.stream()))
        assert driver.bridge.fire() is False
        assert not driver.bridge.fired


class TestCollect:
    def test_aggregates_final_text(self, make_backend):
        backend = make_backend(texts=["H", "He", "Hello"])
        driver = StreamDriver(backend, _call(stream=False))

        result = asyncio.run(driver.collect())

        assert result is not None
        body = result.model_dump(mode="json", exclude_none=True)
        assert body == {"choices": [{"message": {"role": "assistant", "content": "Hello"}}]}

    def test_error_is_merged_into_reply(self, make_backend):
        backend = make_backend(texts=["Hi"], error=ConnectionError("reset by peer"))
        result = asyncio.run(StreamDriver(backend, _call(stream=False)).collect())
        assert result.choices[0].message.content == "Hi\n\nConnectionError: reset by peer"

    def test_error_without_text(self, make_backend):
        backend = make_backend(error=TimeoutError())
        result = asyncio.run(StreamDriver(backend, _call(stream=False)).collect())
        assert result.choices[0].message.content == "TimeoutError"

    def test_revision_is_reported_as_final_text(self, make_backend):
        backend = make_backend(texts=["Hello there", "Hello"])
        result = asyncio.run(StreamDriver(backend, _call(stream=False)).collect())
        assert result.choices[0].message.content == "Hello"

    def test_error_after_revision_keeps_current_text(self, make_backend):
        backend = make_backend(texts=["Hello world", "Hi"], error=RuntimeError("boom"))
        result = asyncio.run(StreamDriver(backend, _call(stream=False)).collect())
        assert result.choices[0].message.content == "Hi\n\nRuntimeError: boom"

    def test_disconnect_returns_none(self, make_backend):
        backend = make_backend(texts=["partial"], hang=True)
        bridge = CancellationBridge()
        driver = StreamDriver(backend, _call(stream=False), bridge=bridge)

        async def is_disconnected():
            return bool(backend.calls)

        async def scenario():
            watcher = asyncio.create_task(bridge.watch(is_disconnected, 0))
            try:
                return await driver.collect()
            finally:
                watcher.cancel()

        assert asyncio.run(scenario()) is None
        assert backend.was_cancelled
        assert driver.state is DriverState.DONE


class TestLifecycle:
    @pytest.mark.parametrize(
        ("hint", "style"),
        [
            ("Precise", ConversationStyle.PRECISE),
            ("Balanced", ConversationStyle.BALANCED),
            ("gpt-3.5-turbo", ConversationStyle.CREATIVE),
        ],
    )
    def test_style_is_validated_before_calling(self, make_backend, hint, style):
        backend = make_backend(texts=["x"])
        asyncio.run(StreamDriver(backend, _call(style_hint=hint, allow_search=True)).collect())
        options = backend.calls[0]["options"]
        assert options.style is style
        assert options.allow_search is True

    def test_driver_runs_once(self, make_backend):
        driver = StreamDriver(make_backend(texts=["x"]), _call())
        asyncio.run(_drain(driver.stream()))
        with pytest.raises(RuntimeError, match="already started"):
            asyncio.run(_drain(driver.stream()))

    def test_backend_cannot_run_ahead_of_the_queue(self, make_backend):
        backend = make_backend(texts=[str(i) * (i + 1) for i in range(5)])
        driver = StreamDriver(backend, _call(), queue_size=1)

        async def scenario():
            frames = driver.stream()
            await frames.__anext__()
            await asyncio.sleep(0.01)
            pending = driver._queue.qsize()
            await frames.aclose()
            return pending

        assert asyncio.run(scenario()) <= 1

    def test_describe_error(self):
        assert describe_error(ValueError("bad")) == "ValueError: bad"
        assert describe_error(ValueError()) == "ValueError"
