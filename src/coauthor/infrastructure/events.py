from __future__ import annotations

"""Cross-process mirror of collaboration events over Redis pub/sub.

Enabled only when REDIS_URL is set. Publishing is best-effort: a broken
connection is dropped and retried on the next event.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger("coauthor.events")


class _RedisPublisher:
    def __init__(self, url: str) -> None:
        self._url = url
        self._client = None
        self._connect()

    def _connect(self) -> None:
        try:
            self._client = redis.Redis.from_url(self._url, socket_timeout=0.5)
            self._client.ping()
        except Exception as exc:
            logger.warning("redis_connect_failed url=%s err=%s", self._url, exc)
            self._client = None

    def publish(self, channel: str, payload: Dict[str, Any]) -> bool:
        if not self._client:
            self._connect()
        if not self._client:
            return False
        try:
            self._client.publish(channel, json.dumps(payload, default=str))
            return True
        except Exception as exc:
            logger.warning("redis_publish_failed channel=%s err=%s", channel, exc)
            self._client = None
            return False


_publisher: Optional[_RedisPublisher] = None


def _get_publisher() -> Optional[_RedisPublisher]:
    global _publisher
    if _publisher is not None:
        return _publisher
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    _publisher = _RedisPublisher(url)
    return _publisher


def publish_event(project_id: str, event_type: str, payload: Dict[str, Any]) -> bool:
    publisher = _get_publisher()
    if not publisher:
        return False
    channel = f"coauthor.projects.{project_id}.{event_type}"
    return publisher.publish(channel, {"type": event_type, "project_id": project_id, "payload": payload})


def load_event_client() -> Optional[_RedisPublisher]:
    return _get_publisher()
