"""
WebSocket handler pushing every state transition to connected clients.

Delivery is not scoped: every client receives every event and filters by the
ids in the payload. On connect a client gets a snapshot built from plain
queries, so a client that missed broadcasts can always catch up.
"""

import logging
import asyncio
import json
from typing import List
from datetime import datetime

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from icudispatch.core.event_bus import get_event_bus
from icudispatch.models.events import DomainEvent

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """
    Manages WebSocket connections and broadcasts.
    """

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self._lock = asyncio.Lock()
        self._subscribed_to_events = False

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self.active_connections.append(websocket)

        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

        if not self._subscribed_to_events:
            self._subscribe_to_events()

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        async with self._lock:
            if websocket in self.active_connections:
                self.active_connections.remove(websocket)

        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: dict) -> None:
        """Broadcast a message to all connected clients."""
        if not self.active_connections:
            return

        message_json = json.dumps(message, default=str)

        disconnected = []
        async with self._lock:
            for connection in self.active_connections:
                try:
                    await connection.send_text(message_json)
                except Exception as e:
                    logger.warning(f"Failed to send to client: {e}")
                    disconnected.append(connection)

        for conn in disconnected:
            await self.disconnect(conn)

    async def send_to_client(self, websocket: WebSocket, message: dict) -> None:
        """Send a message to a specific client."""
        try:
            await websocket.send_text(json.dumps(message, default=str))
        except Exception as e:
            logger.warning(f"Failed to send to client: {e}")
            await self.disconnect(websocket)

    def _subscribe_to_events(self) -> None:
        get_event_bus().subscribe_all(self._on_event, priority=10)
        self._subscribed_to_events = True
        logger.info("WebSocket manager subscribed to events")

    async def _on_event(self, event: DomainEvent) -> None:
        message = event.to_dict()
        message["type"] = "event"
        await self.broadcast(message)

    @property
    def connection_count(self) -> int:
        """Get number of active connections."""
        return len(self.active_connections)


# Global connection manager
manager = ConnectionManager()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Main WebSocket endpoint for real-time updates.

    Clients receive:
    - An initial snapshot (available beds, pending pickup requests)
    - Every transition event as it happens

    Clients can send:
    - ping, answered with pong
    - request_state, answered with a fresh snapshot
    """
    await manager.connect(websocket)

    try:
        await _send_initial_state(websocket)
    except Exception as e:
        logger.error(f"Failed to send initial state: {e}")

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
                await _handle_client_message(websocket, message)
            except json.JSONDecodeError:
                await manager.send_to_client(websocket, {
                    "type": "error",
                    "message": "Invalid JSON"
                })

    except WebSocketDisconnect:
        await manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        await manager.disconnect(websocket)


async def _send_initial_state(websocket: WebSocket) -> None:
    """Send current state to a newly connected client."""
    state = websocket.app.state
    beds = await asyncio.to_thread(state.reservations.list_available_beds)
    requests = await asyncio.to_thread(state.dispatch.list_pending_requests)

    await manager.send_to_client(websocket, {
        "type": "initial_state",
        "timestamp": datetime.now().isoformat(),
        "data": {
            "icus": [ranked.to_summary() for ranked in beds],
            "pending_requests": [ranked.to_summary() for ranked in requests]
        }
    })


async def _handle_client_message(websocket: WebSocket, message: dict) -> None:
    """Handle incoming messages from clients."""
    msg_type = message.get("type", "") if isinstance(message, dict) else ""

    if msg_type == "ping":
        await manager.send_to_client(websocket, {
            "type": "pong",
            "timestamp": datetime.now().isoformat()
        })

    elif msg_type == "request_state":
        await _send_initial_state(websocket)

    else:
        await manager.send_to_client(websocket, {
            "type": "error",
            "message": f"Unknown message type: {msg_type}"
        })


@router.get("/ws/status")
async def websocket_status():
    """Get WebSocket connection status."""
    return {
        "active_connections": manager.connection_count,
        "subscribed_to_events": manager._subscribed_to_events
    }
