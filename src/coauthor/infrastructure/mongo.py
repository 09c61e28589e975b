from __future__ import annotations

"""MongoDB-backed stores.

Each store connects on construction. If Mongo is unreachable and
COAUTHOR_REQUIRE_MONGO is not true, operations fall back to an internal
in-memory store so dev/CI keep working.
"""

import logging
import os
import uuid
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from ..domain.chat_models import Message
from ..domain.docs_models import Version, Workspace, word_count
from ..domain.errors import PersistenceFailure, ProjectNotFound
from ..domain.history import HistoryEntry
from ..domain.models import Project, ProjectCreate
from .chat_store import InMemoryMessageStore, build_message
from .doc_store import InMemoryVersionStore, InMemoryWorkspaceStore, build_version
from .repository import InMemoryProjectRepository, _new_project

logger = logging.getLogger("coauthor.mongo")


def _require_mongo() -> bool:
    return os.getenv("COAUTHOR_REQUIRE_MONGO", "false").lower() in ("1", "true", "yes")


def _connect(collection: str):
    mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
    mongo_db = os.getenv("MONGO_DB", "coauthor")
    try:
        client = MongoClient(mongo_url, serverSelectionTimeoutMS=500)
        # Trigger server selection
        client.server_info()
        return client[mongo_db][collection]
    except PyMongoError:
        if _require_mongo():
            raise
        logger.warning("mongo_unavailable_using_memory collection=%s url=%s", collection, mongo_url)
        return None


def _strip_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


def _to_document(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, list):
        return [_to_document(item) for item in value]
    return value


def _write_failed() -> PersistenceFailure:
    logger.exception("mongo_write_failed")
    return PersistenceFailure()


class MongoProjectRepository:
    def __init__(self) -> None:
        self._fallback = InMemoryProjectRepository()
        self._collection = _connect("projects")
        if self._collection is not None:
            self._collection.create_index("project_id", unique=True)
            self._collection.create_index([("owner", ASCENDING), ("status", ASCENDING)])

    def _use_fallback(self) -> bool:
        return self._collection is None

    def _generate_project_id(self) -> str:
        year = datetime.now(UTC).year
        latest = self._collection.find_one({}, {"project_id": 1}, sort=[("project_id", DESCENDING)])
        counter = 0
        if latest:
            parts = str(latest.get("project_id", "")).split("-")
            if len(parts) == 3 and parts[2].isdigit():
                counter = int(parts[2])
        return f"PRJ-{year}-{counter + 1:04d}"

    def list(self) -> List[Project]:
        if self._use_fallback():
            return self._fallback.list()
        return [Project(**_strip_id(doc)) for doc in self._collection.find().sort("created_at", ASCENDING)]

    def list_for_user(self, user_id: str) -> List[Project]:
        if self._use_fallback():
            return self._fallback.list_for_user(user_id)
        query = {
            "status": {"$ne": "deleted"},
            "$or": [{"owner": user_id}, {"collaborators.user": user_id}],
        }
        return [Project(**_strip_id(doc)) for doc in self._collection.find(query)]

    def get(self, project_id: str) -> Optional[Project]:
        if self._use_fallback():
            return self._fallback.get(project_id)
        doc = self._collection.find_one({"project_id": project_id})
        return Project(**_strip_id(doc)) if doc else None

    def create(self, payload: ProjectCreate, owner: str) -> Project:
        if self._use_fallback():
            return self._fallback.create(payload, owner)
        project = _new_project(self._generate_project_id(), payload, owner)
        try:
            self._collection.insert_one(project.model_dump())
        except PyMongoError as exc:
            raise _write_failed() from exc
        return project

    def append_history(self, project_id: str, entry: HistoryEntry) -> None:
        if self._use_fallback():
            return self._fallback.append_history(project_id, entry)
        self._update(project_id, {"$push": {"history": entry.model_dump()}})

    def update_fields(self, project_id: str, fields: Dict[str, Any]) -> None:
        if self._use_fallback():
            return self._fallback.update_fields(project_id, fields)
        self._update(project_id, {"$set": {name: _to_document(value) for name, value in fields.items()}})

    def _update(self, project_id: str, update: Dict[str, Any]) -> None:
        update.setdefault("$set", {})["updated_at"] = datetime.now(UTC)
        try:
            result = self._collection.update_one({"project_id": project_id}, update)
        except PyMongoError as exc:
            raise _write_failed() from exc
        if result.matched_count == 0:
            raise ProjectNotFound()


class MongoMessageStore:
    def __init__(self) -> None:
        self._fallback = InMemoryMessageStore()
        self._collection = _connect("messages")
        if self._collection is not None:
            self._collection.create_index([("project_id", ASCENDING), ("timestamp", DESCENDING)])
            self._collection.create_index([("project_id", ASCENDING), ("sender", ASCENDING)])

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
        if self._collection is None:
            return self._fallback.add_message(
                project_id, sender, content, ai_mode=ai_mode, user=user, metadata=metadata, timestamp=timestamp
            )
        msg = build_message(
            project_id, sender, content, ai_mode=ai_mode, user=user, metadata=metadata, timestamp=timestamp
        )
        try:
            self._collection.insert_one(msg.model_dump())
        except PyMongoError as exc:
            raise _write_failed() from exc
        return msg

    def list_messages(self, project_id: str, limit: Optional[int] = None) -> List[Message]:
        if self._collection is None:
            return self._fallback.list_messages(project_id, limit)
        cursor = self._collection.find({"project_id": project_id}).sort(
            [("timestamp", DESCENDING), ("_id", DESCENDING)]
        )
        if limit is not None:
            cursor = cursor.limit(max(0, limit))
        docs = list(cursor)
        docs.reverse()
        return [Message(**_strip_id(doc)) for doc in docs]


class MongoWorkspaceStore:
    def __init__(self) -> None:
        self._fallback = InMemoryWorkspaceStore()
        self._collection = _connect("workspaces")
        if self._collection is not None:
            self._collection.create_index("project_id", unique=True)

    def get(self, project_id: str) -> Optional[Workspace]:
        if self._collection is None:
            return self._fallback.get(project_id)
        doc = self._collection.find_one({"project_id": project_id})
        return Workspace(**_strip_id(doc)) if doc else None

    def upsert(self, project_id: str, content: str, user: Optional[str]) -> Workspace:
        if self._collection is None:
            return self._fallback.upsert(project_id, content, user)
        now = datetime.now(UTC)
        try:
            doc = self._collection.find_one_and_update(
                {"project_id": project_id},
                {
                    "$set": {
                        "content": content,
                        "last_updated_by": user,
                        "metadata": {"word_count": word_count(content)},
                        "updated_at": now,
                    },
                    "$setOnInsert": {
                        "workspace_id": uuid.uuid4().hex,
                        "project_id": project_id,
                        "created_at": now,
                    },
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise _write_failed() from exc
        return Workspace(**_strip_id(doc))


class MongoVersionStore:
    def __init__(self) -> None:
        self._fallback = InMemoryVersionStore()
        self._collection = _connect("versions")
        if self._collection is not None:
            self._collection.create_index("version_id", unique=True)
            self._collection.create_index([("project_id", ASCENDING), ("created_at", DESCENDING)])

    def create(
        self,
        project_id: str,
        name: str,
        content: str,
        created_by: str,
        description: str = "",
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Version:
        if self._collection is None:
            return self._fallback.create(project_id, name, content, created_by, description, tags, metadata)
        version = build_version(project_id, name, content, created_by, description, tags, metadata)
        try:
            self._collection.insert_one(version.model_dump())
        except PyMongoError as exc:
            raise _write_failed() from exc
        return version

    def list_for_project(self, project_id: str) -> List[Version]:
        if self._collection is None:
            return self._fallback.list_for_project(project_id)
        cursor = self._collection.find({"project_id": project_id}).sort("created_at", DESCENDING)
        return [Version(**_strip_id(doc)) for doc in cursor]

    def get(self, version_id: str) -> Optional[Version]:
        if self._collection is None:
            return self._fallback.get(version_id)
        doc = self._collection.find_one({"version_id": version_id})
        return Version(**_strip_id(doc)) if doc else None

    def count(self, project_id: str) -> int:
        if self._collection is None:
            return self._fallback.count(project_id)
        return int(self._collection.count_documents({"project_id": project_id}))

    def delete(self, version_id: str) -> bool:
        if self._collection is None:
            return self._fallback.delete(version_id)
        try:
            res = self._collection.delete_one({"version_id": version_id})
        except PyMongoError as exc:
            raise _write_failed() from exc
        return bool(res.deleted_count)
