import json
import types

from src.coauthor.infrastructure import events


def _fake_redis(monkeypatch, client_factory):
    monkeypatch.setattr(events, "_publisher", None)
    monkeypatch.setattr(events, "redis", types.SimpleNamespace(Redis=types.SimpleNamespace(from_url=client_factory)))


def test_publish_event_without_url_is_a_no_op(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.setattr(events, "_publisher", None)
    assert events._get_publisher() is None
    assert events.publish_event("PRJ-1", "content_updated", {"content": "x"}) is False


class FakeRedisClient:
    attempt = 0
    published = []
    publish_should_fail = False

    def ping(self):
        if FakeRedisClient.attempt == 0:
            FakeRedisClient.attempt += 1
            raise ConnectionError("connect failed")

    def publish(self, channel, payload):
        if FakeRedisClient.publish_should_fail:
            FakeRedisClient.publish_should_fail = False
            raise ConnectionError("publish failed")
        FakeRedisClient.published.append((channel, payload))


def test_redis_publisher_reconnects_after_failure(monkeypatch):
    FakeRedisClient.attempt = 0
    FakeRedisClient.published = []
    FakeRedisClient.publish_should_fail = False

    monkeypatch.setenv("REDIS_URL", "redis://localhost")
    _fake_redis(monkeypatch, lambda url, socket_timeout=0.5: FakeRedisClient())
    publisher = events._get_publisher()
    assert publisher is not None

    # first ping failed, so the publish reconnects before sending
    assert events.publish_event("PRJ-1", "version_created", {"version_id": "v1"}) is True
    channel, raw = FakeRedisClient.published[-1]
    assert channel == "coauthor.projects.PRJ-1.version_created"
    assert json.loads(raw) == {"type": "version_created", "project_id": "PRJ-1", "payload": {"version_id": "v1"}}

    FakeRedisClient.publish_should_fail = True
    assert events.publish_event("PRJ-1", "user_left", {"user": "a"}) is False
    assert events.load_event_client() is publisher
