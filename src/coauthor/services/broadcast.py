from __future__ import annotations

"""Real-time fan-out of project events to connected sessions.

Rooms are keyed by project id. Delivery is best-effort and at-most-once:
nothing is persisted or replayed, and a connection whose send fails is dropped
from its room. Every published event is also mirrored to Redis when
REDIS_URL is configured.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..infrastructure.events import publish_event

logger = logging.getLogger("coauthor.broadcast")


class EventType(str, Enum):
    CONTENT_UPDATED = "content_updated"
    VERSION_CREATED = "version_created"
    COLLABORATOR_JOINED = "collaborator_joined"
    COLLABORATOR_LEFT = "collaborator_left"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    CURSOR_MOVED = "cursor_moved"
    SELECTION_UPDATED = "selection_updated"


# Client frame type -> event relayed to the rest of the room
INBOUND_EVENTS: Dict[str, EventType] = {
    "content-update": EventType.CONTENT_UPDATED,
    "cursor-position": EventType.CURSOR_MOVED,
    "selection-update": EventType.SELECTION_UPDATED,
}


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


@dataclass
class _Member:
    connection_id: str
    project_id: str
    user_id: str
    connection: Connection


class BroadcastHub:
    def __init__(self, mirror: Optional[Callable[[str, str, Dict[str, Any]], Any]] = publish_event) -> None:
        self._rooms: Dict[str, Dict[str, _Member]] = {}
        self._members: Dict[str, _Member] = {}
        self._mirror = mirror
        self._lock = RLock()

    def join(self, project_id: str, connection_id: str, user_id: str, connection: Connection) -> None:
        with self._lock:
            self.leave(connection_id)
            member = _Member(connection_id, project_id, user_id, connection)
            self._rooms.setdefault(project_id, {})[connection_id] = member
            self._members[connection_id] = member

    def leave(self, connection_id: str) -> Optional[_Member]:
        with self._lock:
            member = self._members.pop(connection_id, None)
            if member is None:
                return None
            room = self._rooms.get(member.project_id, {})
            room.pop(connection_id, None)
            if not room:
                self._rooms.pop(member.project_id, None)
            return member

    def room_members(self, project_id: str) -> List[str]:
        with self._lock:
            return [m.user_id for m in self._rooms.get(project_id, {}).values()]

    async def publish(
        self,
        project_id: str,
        event_type: EventType | str,
        payload: Dict[str, Any],
        exclude: Optional[str] = None,
    ) -> int:
        """Send an event to every connection in the room except ``exclude``.

        Returns the number of connections that received it.
        """
        kind = event_type.value if isinstance(event_type, EventType) else event_type
        frame = {
            "type": kind,
            "project_id": project_id,
            "payload": payload,
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        }
        with self._lock:
            targets = [m for cid, m in self._rooms.get(project_id, {}).items() if cid != exclude]

        results = await asyncio.gather(
            *(m.connection.send_json(frame) for m in targets), return_exceptions=True
        )
        delivered = 0
        for member, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.info(
                    "broadcast_send_failed_dropping connection=%s project=%s err=%s",
                    member.connection_id,
                    project_id,
                    result,
                )
                self.leave(member.connection_id)
            else:
                delivered += 1

        if self._mirror is not None:
            self._mirror(project_id, kind, payload)
        return delivered


_hub: Optional[BroadcastHub] = None


def get_broadcast_hub() -> BroadcastHub:
    global _hub
    if _hub is None:
        _hub = BroadcastHub()
    return _hub
