"""
HTTP transport for the coordinator.

Routes
------
POST /messages   one protocol message in, the handler's response out
GET  /events     Server-Sent Events stream of workflow events
GET  /state      persisted workflow state (same as a GET_STATE message)
GET  /liveness   readiness probe
GET  /health     readiness probe with a few runtime counters

The response to POST /messages is held open until the handler resolves, so
long workflows (GENERATE_BLOCK, COMPOSE_PAGE ...) answer on the same request.
"""
from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from bridge.page_agent import PageAgentBridge
from config.settings import settings
from coordinator.coordinator import Coordinator
from coordinator.events import EventBus

KEEPALIVE_SECONDS = 15.0


# ---------------------------------------------------------------------------
# SSE helpers
# ---------------------------------------------------------------------------

def _event(event_type: str, data: dict) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


async def _event_stream(events: EventBus, keepalive: float = KEEPALIVE_SECONDS) -> AsyncGenerator[str, None]:
    # Comment lines keep proxies from closing an idle stream.
    yield ": connected\n\n"
    listener = events.listen(timeout=keepalive)
    try:
        async for event in listener:
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield _event(event["type"], event)
    finally:
        # Client disconnected.
        await listener.aclose()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

def _coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator


async def messages_endpoint(request: Request) -> JSONResponse:
    try:
        message = await request.json()
    except ValueError:
        return JSONResponse({"success": False, "error": "Invalid JSON body"}, status_code=400)
    if not isinstance(message, dict):
        return JSONResponse({"success": False, "error": "Message must be a JSON object"}, status_code=400)
    return JSONResponse(await _coordinator(request).handle(message))


async def events_endpoint(request: Request) -> Response:
    return StreamingResponse(
        _event_stream(_coordinator(request).events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def state_endpoint(request: Request) -> JSONResponse:
    return JSONResponse(await _coordinator(request).handle({"type": "GET_STATE"}))


async def liveness(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ready"})


async def health(request: Request) -> JSONResponse:
    coordinator = _coordinator(request)
    return JSONResponse({
        "status": "ready",
        "listeners": coordinator.events.listener_count,
        "browser": coordinator.browser_attached,
    })


# ---------------------------------------------------------------------------
# Starlette app
# ---------------------------------------------------------------------------

def create_app(coordinator: Optional[Coordinator] = None, connect_browser: bool = True) -> Starlette:
    """
    Build the app. When no ``coordinator`` is given one is created at startup,
    attached to the browser at ``settings.cdp_endpoint`` if it is reachable.
    """

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        bridge: Optional[PageAgentBridge] = None
        owned = coordinator is None
        if owned and connect_browser:
            bridge = PageAgentBridge()
            try:
                await bridge.connect()
            except PlaywrightError as exc:
                logger.warning(f"Browser not reachable at {settings.cdp_endpoint}, page features disabled: {exc}")
                await bridge.close()
                bridge = None
        app.state.coordinator = coordinator or Coordinator(bridge=bridge)
        logger.info("Coordinator ready")
        try:
            yield
        finally:
            if owned:
                await app.state.coordinator.close()
            if bridge is not None:
                await bridge.close()

    return Starlette(
        routes=[
            Route("/messages", messages_endpoint, methods=["POST"]),
            Route("/events", events_endpoint, methods=["GET"]),
            Route("/state", state_endpoint, methods=["GET"]),
            Route("/liveness", liveness, methods=["GET"]),
            Route("/health", health, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
