"""FastAPI application exposing the session hub over WebSocket plus a few HTTP reads."""

from __future__ import annotations

import time
import uuid
from typing import Any, Dict, Optional

import orjson
import structlog
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from ..config.settings import ServerConfig, load_server_config
from ..core.catalog import Catalog
from ..core.errors import SessionNotFound
from ..core.fsm import RoundEngine
from .hub import SessionHub
from .registry import SessionRegistry

LOGGER = structlog.get_logger(__name__)


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the hub's connection protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send_json(self, data: Any) -> None:
        await self._websocket.send_text(orjson.dumps(data).decode("utf-8"))


def build_hub(config: ServerConfig, catalog: Optional[Catalog] = None) -> SessionHub:
    catalog = catalog or Catalog(config.catalog_path)
    registry = SessionRegistry(
        max_seats=config.max_seats,
        inactivity_timeout=config.inactivity_timeout,
        disconnect_grace=config.disconnect_grace,
    )
    engine = RoundEngine(catalog, min_seats=config.min_seats)
    return SessionHub(registry, engine)


def create_app(config: Optional[ServerConfig] = None, *, hub: Optional[SessionHub] = None) -> FastAPI:
    config = config or load_server_config()
    hub = hub or build_hub(config)
    started = time.monotonic()

    if not hub.engine.catalog.load():
        LOGGER.error("catalog.empty", path=str(hub.engine.catalog.path), error=hub.engine.catalog.load_error)

    app = FastAPI(title="Imposter Party API", version="0.1.0")
    app.state.hub = hub
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.client_url],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "uptime": time.monotonic() - started, "timestamp": time.time()}

    @app.get("/api/stats")
    async def stats() -> Dict[str, Any]:
        """Active session counts; never includes card assignments."""
        return hub.registry.stats()

    @app.get("/api/sessions/{code}")
    async def get_session(code: str) -> Dict[str, Any]:
        """Public lobby summary for a join code."""

        try:
            session = hub.registry.require(code.strip().upper())
        except SessionNotFound as exc:
            raise HTTPException(status_code=404, detail=exc.message) from exc
        return session.to_stats()

    @app.get("/api/cards")
    async def cards() -> Dict[str, Any]:
        return {"names": hub.engine.catalog.names()}

    @app.websocket("/ws")
    async def websocket_endpoint(
        websocket: WebSocket,
        client_id: Optional[str] = Query(None, alias="clientId", description="Stable seat identity for reconnects"),
    ) -> None:
        identity = client_id or uuid.uuid4().hex
        await websocket.accept()
        connection = WebSocketConnection(websocket)
        await hub.connect(identity, connection)
        await hub.connections.send_to(identity, "connected", {"clientId": identity})

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = orjson.loads(raw)
                except orjson.JSONDecodeError:
                    await hub.connections.send_to(identity, "error", {"message": "Invalid JSON", "code": "PARSE_ERROR"})
                    continue
                if not isinstance(message, dict) or not isinstance(message.get("event"), str):
                    await hub.connections.send_to(
                        identity, "error", {"message": "Expected {event, data}", "code": "PARSE_ERROR"}
                    )
                    continue
                await hub.handle(identity, message["event"], message.get("data"))
        except WebSocketDisconnect:
            pass
        finally:
            await hub.disconnect(identity, connection)

    return app
