from __future__ import annotations

"""WebSocket endpoint joining a client to its project's broadcast room.

Clients connect to ``/ws/projects/{project_id}?token=<jwt>``. The first frame
the server sends is ``{"type": "connected", "socket_id": ...}``; HTTP requests
that carry that id in ``X-Socket-Id`` are not echoed back to this connection.
Inbound frames are ``{"type": <event>, "payload": {...}}``.
"""

import json
import logging
import uuid

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from ...domain.errors import CoauthorError
from ...infrastructure.repository import get_repo
from ...security.access import has_edit_access, load_project, require_read
from ...security.auth import user_from_token
from ...services.broadcast import INBOUND_EVENTS, EventType, get_broadcast_hub

logger = logging.getLogger("coauthor.realtime")

router = APIRouter(tags=["realtime"])


def _can_edit(project_id: str, user_id: str) -> bool:
    # Roster is re-read per frame
    try:
        project = load_project(get_repo(), project_id)
    except CoauthorError:
        return False
    return has_edit_access(project, user_id)


@router.websocket("/ws/projects/{project_id}")
async def project_socket(websocket: WebSocket, project_id: str, token: str | None = Query(default=None)) -> None:
    try:
        user = user_from_token(token)
        require_read(load_project(get_repo(), project_id), user.user_id)
    except (HTTPException, CoauthorError) as exc:
        logger.info("ws_rejected project=%s err=%s", project_id, getattr(exc, "detail", None) or exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    hub = get_broadcast_hub()
    socket_id = uuid.uuid4().hex
    hub.join(project_id, socket_id, user.user_id, websocket)
    await websocket.send_json({"type": "connected", "socket_id": socket_id, "project_id": project_id})
    await hub.publish(project_id, EventType.USER_JOINED, {"user": user.user_id}, exclude=socket_id)

    try:
        while True:
            try:
                frame = json.loads(await websocket.receive_text())
            except ValueError:
                await websocket.send_json({"type": "error", "detail": "Frames must be JSON objects"})
                continue
            kind = frame.get("type") if isinstance(frame, dict) else None
            if kind == "ping":
                await websocket.send_json({"type": "pong"})
                continue
            event = INBOUND_EVENTS.get(kind or "")
            if event is None:
                await websocket.send_json({"type": "error", "detail": f"Unsupported event: {kind}"})
                continue
            if event is EventType.CONTENT_UPDATED and not _can_edit(project_id, user.user_id):
                await websocket.send_json({"type": "error", "detail": "Editing requires editor access"})
                continue
            payload = frame.get("payload") if isinstance(frame.get("payload"), dict) else {}
            payload = {**payload, "user": user.user_id}
            await hub.publish(project_id, event, payload, exclude=socket_id)
    except WebSocketDisconnect:
        logger.debug("ws_disconnected project=%s socket=%s", project_id, socket_id)
    finally:
        if hub.leave(socket_id) is not None:
            await hub.publish(project_id, EventType.USER_LEFT, {"user": user.user_id})
