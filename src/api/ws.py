"""WebSocket event channel.

Frames in both directions are JSON objects `{"event": ..., "data": {...}}`.
Each socket gets its own `Connection`; a sender task drains its outbox so the
engine never waits on the network.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from calls.engine import CallEngine
from calls.errors import AuthError, CallError, InvalidRequest
from calls.presence import Connection
from calls.schemas import ClientFrame

LOGGER = logging.getLogger(__name__)

router = APIRouter()


async def handle_frame(engine: CallEngine, connection: Connection, text: str) -> None:
    """Run one inbound frame through the engine, turning failures into events."""

    try:
        frame = ClientFrame.model_validate_json(text)
    except ValidationError:
        exc = InvalidRequest("Malformed frame.")
        connection.send("call_error", {"code": exc.code, "error": exc.detail})
        return

    try:
        await engine.dispatch(connection, frame.event, frame.data)
    except AuthError as exc:
        connection.send("auth_error", {"error": exc.detail})
    except CallError as exc:
        connection.send("call_error", {"code": exc.code, "error": exc.detail})
    except Exception:
        LOGGER.exception("Handling %s failed", frame.event)
        connection.send("call_error", {"code": "internal_error", "error": "Internal error."})


async def _pump_events(websocket: WebSocket, connection: Connection) -> None:
    """Forward queued events to the socket; close it once the connection closes."""

    try:
        while True:
            message = await connection.next_event()
            if message is None:
                await websocket.close()
                return
            await websocket.send_json(message)
    except (WebSocketDisconnect, RuntimeError, OSError):
        return


@router.websocket("/ws")
async def call_events(websocket: WebSocket) -> None:
    engine: CallEngine = websocket.app.state.engine
    await websocket.accept()

    connection = Connection()
    sender = asyncio.create_task(_pump_events(websocket, connection))
    try:
        while True:
            text = await websocket.receive_text()
            await handle_frame(engine, connection, text)
    except WebSocketDisconnect:
        pass
    finally:
        try:
            await engine.disconnect(connection)
        finally:
            sender.cancel()
