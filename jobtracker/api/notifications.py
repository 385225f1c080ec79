"""
Websocket for assignment notices.

Clients connect, then identify with ``{"type": "auth", "email": "..."}``.
From then on any dispatch assigned to that address is pushed as
``{"type": "form_assigned", "job_id": ..., "form_type": ...}``.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..services.prometheus_metrics import prometheus_metrics

logger = logging.getLogger("jobtracker.api.notifications")

router = APIRouter()


def log_send_failure(future):
    """Done-callback for a push scheduled onto the socket's event loop."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        prometheus_metrics.increment_notification("send_failed")
        logger.warning(f"Notification push failed: {exc}", extra={"component": "notifications"})


@router.websocket("/ws/notifications")
async def notifications_ws(websocket: WebSocket):
    hub = websocket.app.state.services.notifier
    await websocket.accept()
    loop = asyncio.get_running_loop()
    email = None

    def send(message: dict):
        # called from worker threads
        future = asyncio.run_coroutine_threadsafe(websocket.send_json(message), loop)
        future.add_done_callback(log_send_failure)

    try:
        while True:
            msg = await websocket.receive_json()
            if msg.get("type") == "auth" and msg.get("email") and email is None:
                email = msg["email"]
                hub.register(email, send)
                await websocket.send_json({"type": "auth_ok", "email": email})
            elif msg.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        if email:
            hub.unregister(email, send)
            logger.info("Notification socket closed", extra={"component": "notifications", "recipient": email})
