from __future__ import annotations

import pytest

from src.coauthor.services.broadcast import BroadcastHub, EventType


class _Conn:
    def __init__(self, fail: bool = False) -> None:
        self.frames = []
        self.fail = fail

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)


@pytest.mark.asyncio
async def test_publish_reaches_room_except_excluded():
    hub = BroadcastHub(mirror=None)
    a, b, other = _Conn(), _Conn(), _Conn()
    hub.join("PRJ-1", "a", "alice", a)
    hub.join("PRJ-1", "b", "bob", b)
    hub.join("PRJ-2", "c", "carol", other)

    delivered = await hub.publish("PRJ-1", EventType.CURSOR_MOVED, {"pos": 4}, exclude="a")

    assert delivered == 1
    assert a.frames == []
    assert other.frames == []
    frame = b.frames[0]
    assert frame["type"] == "cursor_moved"
    assert frame["project_id"] == "PRJ-1"
    assert frame["payload"] == {"pos": 4}
    assert frame["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_failed_connection_is_dropped():
    hub = BroadcastHub(mirror=None)
    good, bad = _Conn(), _Conn(fail=True)
    hub.join("PRJ-1", "good", "alice", good)
    hub.join("PRJ-1", "bad", "bob", bad)

    assert await hub.publish("PRJ-1", "content_updated", {"content": "x"}) == 1
    assert hub.room_members("PRJ-1") == ["alice"]


@pytest.mark.asyncio
async def test_leave_and_rejoin_moves_rooms():
    hub = BroadcastHub(mirror=None)
    conn = _Conn()
    hub.join("PRJ-1", "s1", "alice", conn)
    hub.join("PRJ-2", "s1", "alice", conn)
    assert hub.room_members("PRJ-1") == []
    assert hub.room_members("PRJ-2") == ["alice"]

    member = hub.leave("s1")
    assert member is not None and member.user_id == "alice"
    assert hub.leave("s1") is None
    assert await hub.publish("PRJ-2", EventType.USER_LEFT, {"user": "alice"}) == 0


@pytest.mark.asyncio
async def test_events_are_mirrored():
    mirrored = []
    hub = BroadcastHub(mirror=lambda project_id, kind, payload: mirrored.append((project_id, kind, payload)))
    await hub.publish("PRJ-9", EventType.VERSION_CREATED, {"version_id": "v1"})
    assert mirrored == [("PRJ-9", "version_created", {"version_id": "v1"})]
