"""
WebSocket endpoint for real-time duty alerts.

/ws/alerts - alert push channel for control office screens
    - duty_alert: threshold crossed (sent to every connection)
    - alert_response: a decision was recorded against an alert
    - shift_completed: shift signed off / relieved
    - shift_created, shift_updated, shift_cancelled

Clients can subscribe to a single shift's events:
    {"type": "join:shift", "shift_id": 42}   -> {"type": "joined:shift", "shift_id": 42}
    {"type": "leave:shift", "shift_id": 42}

Events published with a shift_id go to every connection that has not
narrowed itself to other shifts; connections with no rooms see everything.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import Dict, Set, Optional
import json
import logging
import asyncio

logger = logging.getLogger(__name__)

router = APIRouter()

# Key: WebSocket, Value: set of shift ids joined (empty = all shifts)
_connections: Dict[WebSocket, Set[int]] = {}

# Lock for thread-safe connection management
_connections_lock = asyncio.Lock()

# Server-side ping interval (seconds) - keep under proxy idle timeouts
SERVER_PING_INTERVAL = 30


# =============================================================================
# Connection management
# =============================================================================

async def _add_connection(websocket: WebSocket):
    async with _connections_lock:
        _connections[websocket] = set()
        logger.info(f"WebSocket /ws/alerts connected (total: {len(_connections)})")


async def _remove_connection(websocket: WebSocket):
    async with _connections_lock:
        _connections.pop(websocket, None)
        logger.info(f"WebSocket /ws/alerts disconnected (total: {len(_connections)})")


async def _join_shift(websocket: WebSocket, shift_id: int):
    async with _connections_lock:
        if websocket in _connections:
            _connections[websocket].add(shift_id)


async def _leave_shift(websocket: WebSocket, shift_id: int):
    async with _connections_lock:
        if websocket in _connections:
            _connections[websocket].discard(shift_id)


async def _broadcast(message: dict, shift_id: Optional[int] = None, everyone: bool = False) -> int:
    """
    Send a message and return how many connections received it.

    everyone=True ignores shift rooms (duty alerts must reach every screen).
    """
    async with _connections_lock:
        targets = [
            ws for ws, rooms in _connections.items()
            if everyone or shift_id is None or not rooms or shift_id in rooms
        ]

    if not targets:
        return 0

    # Serialize once
    message_json = json.dumps(message, default=str)

    delivered = 0
    failed = []
    for websocket in targets:
        try:
            await websocket.send_text(message_json)
            delivered += 1
        except Exception as e:
            logger.warning(f"Failed to send to /ws/alerts WebSocket: {e}")
            failed.append(websocket)

    if failed:
        async with _connections_lock:
            for ws in failed:
                _connections.pop(ws, None)

    return delivered


async def broadcast_duty_alert(payload: dict) -> int:
    """Push a duty alert payload to every connected client. Returns delivered count."""
    return await _broadcast(payload, everyone=True)


async def broadcast_event(event_type: str, data: dict, shift_id: Optional[int] = None) -> int:
    """
    Publish a shift event.

    Message format:
        {"type": "alert_response", "data": {...}}
    """
    return await _broadcast({"type": event_type, "data": data}, shift_id=shift_id)


def get_connection_count() -> dict:
    return {
        "alerts_connections": len(_connections),
        "shift_subscriptions": sum(len(rooms) for rooms in _connections.values()),
    }


# =============================================================================
# Ping/pong and client messages
# =============================================================================

async def _server_ping_loop(websocket: WebSocket, stop_event: asyncio.Event):
    """Send periodic pings from server to keep connection alive through proxies"""
    try:
        while not stop_event.is_set():
            await asyncio.sleep(SERVER_PING_INTERVAL)
            if stop_event.is_set():
                break
            try:
                await websocket.send_json({"type": "ping"})
            except Exception:
                break
    except asyncio.CancelledError:
        pass


def _shift_id_from(message: dict) -> Optional[int]:
    try:
        return int(message.get("shift_id"))
    except (TypeError, ValueError):
        return None


async def _receive_loop(websocket: WebSocket, stop_event: asyncio.Event):
    """Handle incoming messages from client."""
    try:
        while not stop_event.is_set():
            try:
                data = await websocket.receive_text()
                message = json.loads(data)
                msg_type = message.get("type")

                if msg_type == "ping":
                    await websocket.send_json({"type": "pong"})
                elif msg_type == "pong":
                    # Client responded to our ping - connection is alive
                    pass
                elif msg_type in ("join:shift", "leave:shift"):
                    shift_id = _shift_id_from(message)
                    if shift_id is None:
                        await websocket.send_json({"type": "error", "message": "shift_id required"})
                        continue
                    if msg_type == "join:shift":
                        await _join_shift(websocket, shift_id)
                        await websocket.send_json({"type": "joined:shift", "shift_id": shift_id})
                    else:
                        await _leave_shift(websocket, shift_id)
                        await websocket.send_json({"type": "left:shift", "shift_id": shift_id})

            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON received: {e}")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Receive loop error: {e}")
    finally:
        stop_event.set()


# =============================================================================
# WebSocket endpoints
# =============================================================================

@router.websocket("/ws/alerts")
async def websocket_alerts(websocket: WebSocket):
    """
    WebSocket endpoint for duty alerts and shift events.

    Server sends periodic pings to keep connection alive through proxies.
    """
    await websocket.accept()
    await _add_connection(websocket)

    try:
        await websocket.send_json({
            "type": "connected",
            "message": "Connected to duty alert stream",
        })
    except Exception as e:
        logger.error(f"Failed to send connection confirmation: {e}")
        await _remove_connection(websocket)
        return

    stop_event = asyncio.Event()

    ping_task = asyncio.create_task(_server_ping_loop(websocket, stop_event))
    receive_task = asyncio.create_task(_receive_loop(websocket, stop_event))

    try:
        # Wait for either task to complete (indicates disconnect)
        done, pending = await asyncio.wait(
            [ping_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED
        )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        stop_event.set()
        ping_task.cancel()
        receive_task.cancel()
        await _remove_connection(websocket)


@router.get("/ws/status")
async def websocket_status():
    """Get WebSocket connection status (for monitoring)"""
    return get_connection_count()
