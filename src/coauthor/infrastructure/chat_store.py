from __future__ import annotations

from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol
import logging
import os
import uuid

from pydantic import ValidationError

from ..domain.chat_models import Message, MessageMetadata, truncate_message_content

logger = logging.getLogger("coauthor.chat_store")

AI_FALLBACK_TEXT = (
    "I apologize, but I encountered an issue generating a complete response. "
    "Please try rephrasing your request or ask for a more specific analysis."
)


class MessageStore(Protocol):
    def add_message(
        self,
        project_id: str,
        sender: str,
        content: str,
        *,
        ai_mode: Optional[str] = None,
        user: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Message: ...

    def list_messages(self, project_id: str, limit: Optional[int] = None) -> List[Message]: ...


def build_message(
    project_id: str,
    sender: str,
    content: str,
    *,
    ai_mode: Optional[str] = None,
    user: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> Message:
    """Validate a transcript entry, truncating oversized text first."""
    if len(content or "") > 15000:
        logger.warning(
            "message_truncated",
            extra={"project_id": project_id, "original_length": len(content)},
        )
    return Message(
        message_id=uuid.uuid4().hex,
        project_id=project_id,
        sender=sender,
        content=truncate_message_content((content or "").strip(), ai_mode),
        ai_mode=ai_mode,
        user=user,
        metadata=MessageMetadata(**metadata) if metadata else None,
        timestamp=timestamp or datetime.now(UTC),
    )


def add_ai_response(
    store: MessageStore,
    project_id: str,
    content: str,
    ai_mode: str,
    metadata: Optional[Dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> Message:
    """Persist an AI reply, substituting an apology when the reply is invalid.

    A reply that fails validation (for instance empty text or out-of-range
    metadata) is replaced by a short apology flagged with ``error`` metadata.
    """
    try:
        return store.add_message(
            project_id, "ai", content, ai_mode=ai_mode, metadata=metadata, timestamp=timestamp
        )
    except ValidationError as exc:
        logger.warning("ai_response_invalid", extra={"project_id": project_id, "err": str(exc)})
        return store.add_message(
            project_id,
            "ai",
            AI_FALLBACK_TEXT,
            ai_mode=ai_mode,
            metadata={"error": True, "original_error": str(exc)[:500]},
            timestamp=timestamp,
        )


class InMemoryMessageStore:
    def __init__(self) -> None:
        self._messages: Dict[str, List[Message]] = {}
        self._lock = RLock()

    def add_message(
        self,
        project_id: str,
        sender: str,
        content: str,
        *,
        ai_mode: Optional[str] = None,
        user: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Message:
        msg = build_message(
            project_id, sender, content, ai_mode=ai_mode, user=user, metadata=metadata, timestamp=timestamp
        )
        with self._lock:
            self._messages.setdefault(project_id, []).append(msg)
        return msg

    def list_messages(self, project_id: str, limit: Optional[int] = None) -> List[Message]:
        with self._lock:
            # sorted() is stable, so equal timestamps keep insertion order
            out = sorted(self._messages.get(project_id, []), key=lambda m: m.timestamp)
        if limit is not None:
            out = out[-limit:] if limit > 0 else []
        return out


_store: MessageStore | None = None


def get_message_store() -> MessageStore:
    global _store
    if _store is not None:
        return _store
    impl = os.getenv("COAUTHOR_CHAT_STORE_IMPL", "memory").lower()
    if os.getenv("DB_MODE", "").lower() == "mongo" or impl == "mongo":
        from .mongo import MongoMessageStore

        _store = MongoMessageStore()
    else:
        _store = InMemoryMessageStore()
    return _store
