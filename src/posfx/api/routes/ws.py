"""WebSocket feed pushing every rate snapshot to connected clients."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from posfx.api.schemas import snapshot_to_dict
from posfx.models import RateSnapshot

log = structlog.get_logger(__name__)

router = APIRouter()


class RateFeedHub:
    """Tracks WebSocket clients and relays manager snapshots to them.

    Registered as a RateManager subscriber; new clients get the latest
    snapshot immediately on connect.
    """

    def __init__(self) -> None:
        self.connections: list[WebSocket] = []

    async def connect(self, ws: WebSocket, latest: RateSnapshot | None = None) -> None:
        """Accept a connection and send it the current state."""
        await ws.accept()
        self.connections.append(ws)
        log.info("rate_feed_connected", total=len(self.connections))
        if latest is not None:
            await ws.send_json(snapshot_to_dict(latest))

    def disconnect(self, ws: WebSocket) -> None:
        """Remove a connection from the active list."""
        if ws in self.connections:
            self.connections.remove(ws)
        log.info("rate_feed_disconnected", total=len(self.connections))

    async def on_snapshot(self, snapshot: RateSnapshot) -> None:
        """Subscriber callback: send snapshot to all clients, dropping broken ones."""
        payload = snapshot_to_dict(snapshot)
        for ws in self.connections.copy():
            try:
                await ws.send_json(payload)
            except Exception:
                if ws in self.connections:
                    self.connections.remove(ws)
                log.warning("rate_feed_broadcast_error", remaining=len(self.connections))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Stream rate snapshots until the client disconnects."""
    hub: RateFeedHub = websocket.app.state.hub
    manager = websocket.app.state.rate_manager
    await hub.connect(websocket, manager.snapshot())
    try:
        while True:
            # Consume messages to keep connection alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)
