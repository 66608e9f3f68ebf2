"""chatbridge API: OpenAI-compatible chat completions over a conversational backend.

Requests shaped like the OpenAI chat-completion API are translated into a
backend call; the backend's cumulative-text event stream is rendered back as
either one aggregate reply or an SSE stream of deltas.

Endpoints:
- POST /v1/chat/completions: Chat completion (also at /api/openai/chat/completions)
- GET  /v1/chat/completions: Liveness probe, returns ``ok``
- GET  /health: Health check

Example usage::

    curl -N -X POST http://localhost:3000/v1/chat/completions \\
        -H "Content-Type: application/json" \\
        -H "Authorization: Bearer $CHATBRIDGE_API_KEY" \\
        -d '{
            "model": "gpt-4",
            "messages": [{"role": "user", "content": "hello"}],
            "stream": true
        }'
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import os
import re
from collections.abc import AsyncIterator
from contextlib import aclosing

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from .backend import get_conversation_backend
from .backend.base import ConversationBackend
from .core.config import GatewayConfig, get_config
from .core.types import ChatCompletionRequest, HealthResponse
from .gateway.cancellation import CancellationBridge
from .gateway.driver import StreamDriver
from .gateway.formatter import SSE_MEDIA_TYPE
from .gateway.translator import EmptyPromptError, parse_chat_request

logger = logging.getLogger(__name__)

CLIENT_CLOSED_REQUEST = 499

_CHAT_ROUTES = ("/v1/chat/completions", "/api/openai/chat/completions")
_BARE_HOST_RE = re.compile(r"^[0-9.:]+$")

web_app = FastAPI(
    title="chatbridge",
    description="OpenAI-compatible gateway for cumulative-text conversational backends",
    version="0.1.0",
)

_CORS_METHODS = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]


class RuntimeCORSMiddleware:
    """Apply CORS with the origins of the config injected by ``configure_web_app``."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app
        self._by_origins: dict[frozenset[str], CORSMiddleware] = {}

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        origins = _runtime_config().cors_allow_origins
        cors = self._by_origins.get(origins)
        if cors is None:
            cors = CORSMiddleware(
                self.app,
                allow_origins=sorted(origins),
                allow_methods=_CORS_METHODS,
                allow_headers=["*"],
            )
            self._by_origins[origins] = cors
        await cors(scope, receive, send)


web_app.add_middleware(RuntimeCORSMiddleware)


def configure_web_app(cfg: GatewayConfig) -> None:
    """Inject runtime config into the process-local FastAPI app."""
    web_app.state.runtime_config = cfg


def _runtime_config() -> GatewayConfig:
    cfg = getattr(web_app.state, "runtime_config", None)
    if isinstance(cfg, GatewayConfig):
        return cfg
    cfg = get_config()
    configure_web_app(cfg)
    return cfg


# ---------------------------------------------------------------------------
# Transport helpers
# ---------------------------------------------------------------------------


def origin_from_host(host: str) -> str:
    """Return the origin for ``host``: ``https`` unless it is a bare IP/port."""
    scheme = "http" if _BARE_HOST_RE.match(host) else "https"
    return f"{scheme}://{host}"


def _build_backend(request: Request, cfg: GatewayConfig) -> ConversationBackend:
    host = request.headers.get("host") or cfg.default_host
    return get_conversation_backend(cfg, endpoint=origin_from_host(host))


async def require_api_key(authorization: str | None = Header(default=None)) -> None:
    """Reject the request unless it carries the configured bearer token."""
    cfg = _runtime_config()
    if not cfg.auth_enabled:
        return
    api_key = cfg.api_key
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing authorization header")
    token = authorization[len("Bearer "):]
    if not hmac.compare_digest(token.encode("utf-8"), api_key.encode("utf-8")):
        logger.warning("Rejected chat completion with invalid bearer token")
        raise HTTPException(status_code=401, detail="Authorization failed")


async def _sse_frames(
    driver: StreamDriver, backend: ConversationBackend,
) -> AsyncIterator[str]:
    try:
        async with aclosing(driver.stream()) as frames:
            async for frame in frames:
                yield frame
    finally:
        await backend.aclose()


# ---------------------------------------------------------------------------
# Chat endpoints
# ---------------------------------------------------------------------------


@web_app.get(_CHAT_ROUTES[0], response_class=PlainTextResponse)
@web_app.get(_CHAT_ROUTES[1], response_class=PlainTextResponse)
async def chat_liveness() -> str:
    """Bare liveness probe on the chat routes."""
    return "ok"


@web_app.post(_CHAT_ROUTES[0], response_model=None, dependencies=[Depends(require_api_key)])
@web_app.post(_CHAT_ROUTES[1], response_model=None, dependencies=[Depends(require_api_key)])
async def chat_completions(req: ChatCompletionRequest, request: Request) -> Response:
    """Chat completion endpoint (forwards to the configured conversation backend)."""
    cfg = _runtime_config()
    try:
        call = parse_chat_request(req, context_char_limit=cfg.context_char_limit)
    except EmptyPromptError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    logger.info(
        "Chat completion model=%r action=%s stream=%s messages=%d",
        req.model,
        req.action,
        req.stream,
        len(req.messages),
    )
    backend = _build_backend(request, cfg)
    bridge = CancellationBridge()
    driver = StreamDriver(backend, call, bridge=bridge, queue_size=cfg.event_queue_size)

    if req.stream:
        return StreamingResponse(_sse_frames(driver, backend), media_type=SSE_MEDIA_TYPE)

    watcher = asyncio.create_task(
        bridge.watch(request.is_disconnected, cfg.disconnect_poll_interval_s),
    )
    try:
        result = await driver.collect()
    finally:
        watcher.cancel()
        await backend.aclose()

    if result is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return JSONResponse(result.model_dump(mode="json", exclude_none=True))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@web_app.get("/health")
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok")


@web_app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "chatbridge",
        "version": "0.1.0",
        "description": "OpenAI-compatible gateway for cumulative-text conversational backends",
        "docs": "/docs",
    }


def main() -> None:
    """Run the API with the profile selected by ``CHATBRIDGE_CONFIG_NAME``."""
    configure_web_app(get_config())
    host = os.environ.get("CHATBRIDGE_API_HOST", "0.0.0.0")
    port = int(os.environ.get("CHATBRIDGE_API_PORT", "3000"))
    uvicorn.run(web_app, host=host, port=port)


if __name__ == "__main__":
    main()
