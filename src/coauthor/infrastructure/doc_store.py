from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import UTC, datetime
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol

from ..domain.docs_models import Version, Workspace, WorkspaceMetadata, word_count
from ..domain.errors import PersistenceFailure

logger = logging.getLogger("coauthor.doc_store")


class WorkspaceStore(Protocol):
    def get(self, project_id: str) -> Optional[Workspace]: ...
    def upsert(self, project_id: str, content: str, user: Optional[str]) -> Workspace: ...


class VersionStore(Protocol):
    def create(
        self,
        project_id: str,
        name: str,
        content: str,
        created_by: str,
        description: str = "",
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Version: ...
    def list_for_project(self, project_id: str) -> List[Version]: ...
    def get(self, version_id: str) -> Optional[Version]: ...
    def count(self, project_id: str) -> int: ...
    def delete(self, version_id: str) -> bool: ...


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _isoformat_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def build_version(
    project_id: str,
    name: str,
    content: str,
    created_by: str,
    description: str = "",
    tags: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Version:
    meta = dict(metadata or {})
    meta["word_count"] = word_count(content)
    return Version(
        version_id=uuid.uuid4().hex,
        project_id=project_id,
        name=name,
        description=description,
        content=content,
        created_by=created_by,
        tags=list(tags or []),
        metadata=meta,
        created_at=_utc_now(),
    )


class InMemoryWorkspaceStore:
    def __init__(self) -> None:
        self._data: Dict[str, Workspace] = {}
        self._lock = RLock()

    def get(self, project_id: str) -> Optional[Workspace]:
        with self._lock:
            ws = self._data.get(project_id)
            return ws.model_copy(deep=True) if ws else None

    def upsert(self, project_id: str, content: str, user: Optional[str]) -> Workspace:
        with self._lock:
            now = _utc_now()
            current = self._data.get(project_id)
            if current is None:
                current = Workspace(
                    workspace_id=uuid.uuid4().hex,
                    project_id=project_id,
                    created_at=now,
                    updated_at=now,
                )
            current.content = content
            current.last_updated_by = user
            current.metadata = WorkspaceMetadata(word_count=word_count(content))
            current.updated_at = now
            self._data[project_id] = current
            return current.model_copy(deep=True)


class InMemoryVersionStore:
    def __init__(self) -> None:
        self._versions: Dict[str, Version] = {}
        self._lock = RLock()

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
        version = build_version(project_id, name, content, created_by, description, tags, metadata)
        with self._lock:
            self._versions[version.version_id] = version
        return version

    def list_for_project(self, project_id: str) -> List[Version]:
        with self._lock:
            out = [v for v in self._versions.values() if v.project_id == project_id]
        # Newest first
        return sorted(out, key=lambda v: v.created_at, reverse=True)

    def get(self, version_id: str) -> Optional[Version]:
        with self._lock:
            return self._versions.get(version_id)

    def count(self, project_id: str) -> int:
        with self._lock:
            return sum(1 for v in self._versions.values() if v.project_id == project_id)

    def delete(self, version_id: str) -> bool:
        with self._lock:
            return self._versions.pop(version_id, None) is not None


def _storage_root() -> Path:
    root = Path(__file__).resolve().parents[3]
    return Path(os.getenv("COAUTHOR_STORAGE_PATH", str(root / "storage")))


def write_version_backup(version: Version, storage_dir: Optional[Path] = None) -> Path:
    """Write a JSON copy of ``version`` under ``<storage>/backups`` and return its path."""
    backups = (storage_dir or _storage_root()) / "backups"
    stamp = _utc_now().strftime("%Y%m%dT%H%M%S%fZ")
    path = backups / f"{version.project_id}_{version.version_id}_{stamp}.json"
    payload = version.model_dump(mode="json")
    payload["backed_up_at"] = _isoformat_utc(_utc_now())
    try:
        backups.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    except OSError as exc:
        logger.exception("version_backup_failed version_id=%s", version.version_id)
        raise PersistenceFailure("Failed to back up version before deletion") from exc
    logger.info("version_backup_written path=%s", path)
    return path


_workspace_store: WorkspaceStore | None = None
_version_store: VersionStore | None = None


def _mongo_enabled() -> bool:
    impl = os.getenv("COAUTHOR_DOC_STORE_IMPL", "memory").lower()
    return os.getenv("DB_MODE", "").lower() == "mongo" or impl == "mongo"


def get_workspace_store() -> WorkspaceStore:
    global _workspace_store
    if _workspace_store is None:
        if _mongo_enabled():
            from .mongo import MongoWorkspaceStore

            _workspace_store = MongoWorkspaceStore()
        else:
            _workspace_store = InMemoryWorkspaceStore()
    return _workspace_store


def get_version_store() -> VersionStore:
    global _version_store
    if _version_store is None:
        if _mongo_enabled():
            from .mongo import MongoVersionStore

            _version_store = MongoVersionStore()
        else:
            _version_store = InMemoryVersionStore()
    return _version_store
