import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from autoprint.api.deps import get_ws_orchestrator
from autoprint.domain.states import Channel
from autoprint.events.hub import Subscription

logger = logging.getLogger(__name__)

router = APIRouter()

def _message(msg_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": msg_type,
        "payload": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

async def _forward_events(websocket: WebSocket, sub: Subscription) -> None:
    async for event in sub:
        await websocket.send_json(event.to_dict())

async def _handle_client(websocket: WebSocket, sub: Subscription, orchestrator) -> None:
    """
    Client messages:
      {"type": "subscribe", "payload": {"channel": "jobs"}}
      {"type": "unsubscribe", "payload": {"channel": "jobs"}}
      {"type": "ping"}
      {"type": "getQueueStatus"}
    """
    valid_channels = {str(c) for c in Channel}
    while True:
        message = await websocket.receive_json()
        if not isinstance(message, dict):
            continue
        msg_type = message.get("type")
        payload = message.get("payload") or {}

        if msg_type == "ping":
            await websocket.send_json(_message("pong", {}))
        elif msg_type in ("subscribe", "unsubscribe"):
            channel = payload.get("channel")
            if channel not in valid_channels:
                await websocket.send_json(_message("error", {"detail": f"Unknown channel: {channel}"}))
                continue
            if msg_type == "subscribe":
                sub.subscribe(channel)
                await websocket.send_json(_message("subscribed", {"channel": channel}))
            else:
                sub.unsubscribe(channel)
                await websocket.send_json(_message("unsubscribed", {"channel": channel}))
        elif msg_type == "getQueueStatus":
            stats = await orchestrator.get_queue_stats()
            await websocket.send_json(_message("queueStatus", {
                "waiting": stats.waiting,
                "delayed": stats.delayed,
                "active": stats.active,
                "completed": stats.completed,
                "failed": stats.failed,
            }))
        else:
            logger.debug(f"Unhandled websocket message type: {msg_type}")

@router.websocket("/events")
async def event_stream(
    websocket: WebSocket,
    channels: Optional[str] = Query(default=None, description="Comma-separated channels to subscribe to on connect")
):
    await websocket.accept()

    orchestrator = get_ws_orchestrator(websocket)
    if orchestrator is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Orchestrator not started")
        return

    sub = orchestrator.on_state_change()
    for channel in (channels or "").split(","):
        if channel.strip() in {str(c) for c in Channel}:
            sub.subscribe(channel.strip())

    await websocket.send_json(_message("connected", {"channels": sorted(sub.channels)}))

    tasks = [
        asyncio.create_task(_forward_events(websocket, sub)),
        asyncio.create_task(_handle_client(websocket, sub, orchestrator)),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            # Surface the reason the stream ended
            task.result()
    except WebSocketDisconnect:
        logger.debug("Event stream client disconnected")
    except Exception as e:
        logger.exception(f"Event stream error: {e}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason=str(e)[:100])
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        sub.close()
