from __future__ import annotations

import copy
import os
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Protocol
from pathlib import Path
import json
import logging
from threading import RLock

from ..domain.errors import PersistenceFailure, ProjectNotFound
from ..domain.history import HistoryEntry, build_history_entry, HistoryType
from ..domain.models import Project, ProjectCreate

logger = logging.getLogger("coauthor.repository")


class ProjectRepository(Protocol):
    """Project storage.

    Reads hand out detached copies. Writes after creation are targeted: a
    history entry is appended, or named top-level fields are set, so that two
    requests holding different copies of a project never overwrite each
    other's unrelated changes.
    """

    def list(self) -> List[Project]: ...
    def list_for_user(self, user_id: str) -> List[Project]: ...
    def get(self, project_id: str) -> Optional[Project]: ...
    def create(self, payload: ProjectCreate, owner: str) -> Project: ...
    def append_history(self, project_id: str, entry: HistoryEntry) -> None: ...
    def update_fields(self, project_id: str, fields: Dict[str, Any]) -> None: ...


def _is_member(project: Project, user_id: str) -> bool:
    return project.owner == user_id or project.collaborator(user_id) is not None


def _new_project(project_id: str, payload: ProjectCreate, owner: str) -> Project:
    now = datetime.now(UTC)
    project = Project(
        project_id=project_id,
        name=payload.name,
        description=payload.description,
        owner=owner,
        visibility=payload.visibility,
        tags=list(payload.tags),
        created_at=now,
        updated_at=now,
    )
    project.history.append(build_history_entry(HistoryType.PROJECT_CREATED, owner, {}, now))
    return project


class InMemoryProjectRepository:
    """In-memory project repository; the default for development and tests."""

    def __init__(self) -> None:
        self._projects: Dict[str, Project] = {}
        self._counter: int = 0
        self._lock = RLock()

    def _generate_project_id(self) -> str:
        self._counter += 1
        year = datetime.now(UTC).year
        return f"PRJ-{year}-{self._counter:04d}"

    def _stored(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFound()
        return project

    def list(self) -> List[Project]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._projects.values()]

    def list_for_user(self, user_id: str) -> List[Project]:
        with self._lock:
            return [
                p.model_copy(deep=True) for p in self._projects.values()
                if p.status != "deleted" and _is_member(p, user_id)
            ]

    def get(self, project_id: str) -> Optional[Project]:
        with self._lock:
            project = self._projects.get(project_id)
            return project.model_copy(deep=True) if project else None

    def create(self, payload: ProjectCreate, owner: str) -> Project:
        with self._lock:
            project = _new_project(self._generate_project_id(), payload, owner)
            self._projects[project.project_id] = project
            return project.model_copy(deep=True)

    def append_history(self, project_id: str, entry: HistoryEntry) -> None:
        with self._lock:
            project = self._stored(project_id)
            project.history.append(entry.model_copy(deep=True))
            project.updated_at = datetime.now(UTC)

    def update_fields(self, project_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            project = self._stored(project_id)
            for name, value in fields.items():
                setattr(project, name, copy.deepcopy(value))
            project.updated_at = datetime.now(UTC)


class FileProjectRepository(InMemoryProjectRepository):
    """JSON file-backed repository for development persistence.

    Structure: a single JSON object mapping project_id -> project dict.
    Thread-safe with a coarse RLock; suitable for dev/test, not high concurrency.
    """

    def __init__(self, file_path: Optional[str] = None) -> None:
        super().__init__()
        root = Path(__file__).resolve().parents[3]
        default_path = root / "run" / "projects.json"
        self._path = Path(file_path or os.getenv("COAUTHOR_PROJECTS_FILE", str(default_path)))
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.exception("projects_file_unreadable path=%s", self._path)
            return
        max_seq = 0
        for pid, raw in (data or {}).items():
            try:
                self._projects[pid] = Project(**raw)
            except ValueError:
                logger.warning("projects_file_skipped_record id=%s", pid)
                continue
            # PRJ-YYYY-#### keeps the counter continuous across restarts
            parts = str(pid).split("-")
            if len(parts) == 3 and parts[2].isdigit():
                max_seq = max(max_seq, int(parts[2]))
        self._counter = max_seq

    def _save(self) -> None:
        obj = {pid: proj.model_dump(mode="json") for pid, proj in self._projects.items()}
        try:
            self._path.write_text(json.dumps(obj, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.exception("projects_file_write_failed path=%s", self._path)
            raise PersistenceFailure() from exc

    def create(self, payload: ProjectCreate, owner: str) -> Project:
        with self._lock:
            project = super().create(payload, owner)
            self._save()
            return project

    def append_history(self, project_id: str, entry: HistoryEntry) -> None:
        with self._lock:
            super().append_history(project_id, entry)
            self._save()

    def update_fields(self, project_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            super().update_fields(project_id, fields)
            self._save()


_repo: ProjectRepository | None = None


def get_repo() -> ProjectRepository:
    global _repo
    if _repo is not None:
        return _repo
    impl = os.getenv("COAUTHOR_REPO_IMPL", "memory").lower()
    if os.getenv("DB_MODE", "").lower() == "mongo" or impl == "mongo":
        from .mongo import MongoProjectRepository

        _repo = MongoProjectRepository()
    elif impl == "file":
        _repo = FileProjectRepository()
    else:
        _repo = InMemoryProjectRepository()
    return _repo
