from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import List, Optional
import logging

from ..domain.docs_models import (
    ApplyVersionResponse,
    Version,
    VersionComparison,
    VersionCreate,
    VersionSummary,
    word_count,
)
from ..domain.errors import InvalidRequest, NotFound, Unauthorized
from ..domain.history import HistoryType
from ..domain.models import Project
from ..infrastructure.doc_store import (
    VersionStore,
    WorkspaceStore,
    get_version_store,
    get_workspace_store,
    write_version_backup,
)
from ..infrastructure.repository import ProjectRepository, get_repo
from ..security.access import is_owner, load_project, require_edit, require_read
from .broadcast import BroadcastHub, EventType, get_broadcast_hub
from .ledger import Ledger

logger = logging.getLogger("coauthor.versions")


def _summary(version: Version) -> VersionSummary:
    return VersionSummary(
        version_id=version.version_id,
        name=version.name,
        created_at=version.created_at,
        word_count=word_count(version.content),
    )


class VersionService:
    """Named snapshots of workspace content."""

    def __init__(
        self,
        repo: ProjectRepository,
        versions: VersionStore,
        workspaces: WorkspaceStore,
        hub: BroadcastHub,
        storage_dir: Optional[Path] = None,
    ) -> None:
        self._repo = repo
        self._versions = versions
        self._workspaces = workspaces
        self._hub = hub
        self._ledger = Ledger(repo)
        self._storage_dir = storage_dir

    def _version_and_project(self, version_id: str) -> tuple[Version, Project]:
        version = self._versions.get(version_id)
        if version is None:
            raise NotFound("Version not found")
        return version, load_project(self._repo, version.project_id)

    def list_versions(self, project_id: str, user_id: str) -> List[Version]:
        require_read(load_project(self._repo, project_id), user_id)
        return self._versions.list_for_project(project_id)

    def get_version(self, version_id: str, user_id: str) -> Version:
        version, project = self._version_and_project(version_id)
        require_read(project, user_id)
        return version

    async def create_version(self, payload: VersionCreate, user_id: str, origin: Optional[str] = None) -> Version:
        project = require_edit(load_project(self._repo, payload.project_id), user_id)
        content = payload.content
        if content is None:
            ws = self._workspaces.get(project.project_id)
            content = ws.content if ws else ""
        if not content.strip():
            raise InvalidRequest("Please provide project ID and content")
        name = payload.name or f"Version {datetime.now(UTC).strftime('%Y-%m-%d %H:%M:%S')}"
        version = self._versions.create(
            project.project_id,
            name,
            content,
            user_id,
            description=payload.description,
            tags=payload.tags,
            metadata={
                "ai_contribution": project.stats.ai_contribution,
                "human_contribution": project.stats.human_contribution,
            },
        )
        self._ledger.record(
            project,
            HistoryType.VERSION_CREATED,
            user_id,
            {"version_id": version.version_id, "version_name": version.name},
        )
        self._ledger.increment_versions(project)
        await self._hub.publish(
            project.project_id,
            EventType.VERSION_CREATED,
            {"version_id": version.version_id, "name": version.name, "created_by": user_id},
            exclude=origin,
        )
        return version

    def delete_version(self, version_id: str, user_id: str) -> Path:
        """Delete a version after writing a JSON backup; returns the backup path.

        Only the project owner or the version's author may delete, and the
        project's last remaining version can never be deleted.
        """
        version, project = self._version_and_project(version_id)
        if not (is_owner(project, user_id) or version.created_by == user_id):
            raise Unauthorized("Not authorized to delete this version")
        if self._versions.count(project.project_id) <= 1:
            raise InvalidRequest("Cannot delete the only version of a project")
        backup = write_version_backup(version, self._storage_dir)
        self._versions.delete(version_id)
        logger.info("version_deleted version_id=%s project=%s by=%s", version_id, project.project_id, user_id)
        return backup

    def compare_versions(self, base_id: str, compare_id: str, user_id: str) -> VersionComparison:
        base, project = self._version_and_project(base_id)
        other = self._versions.get(compare_id)
        if other is None:
            raise NotFound("One or both versions not found")
        if base.project_id != other.project_id:
            raise InvalidRequest("Cannot compare versions from different projects")
        require_read(project, user_id)
        base_words = word_count(base.content)
        other_words = word_count(other.content)
        diff = other_words - base_words
        percentage = round(diff / base_words * 100, 2) if base_words else 100.0
        return VersionComparison(
            base_version=_summary(base),
            compare_version=_summary(other),
            base_content=base.content,
            compare_content=other.content,
            word_count_diff=diff,
            diff_percentage=percentage,
        )

    async def apply_version(self, version_id: str, user_id: str, origin: Optional[str] = None) -> ApplyVersionResponse:
        version, project = self._version_and_project(version_id)
        require_edit(project, user_id)
        ws = self._workspaces.upsert(project.project_id, version.content, user_id)
        self._repo.update_fields(project.project_id, {"current_workspace": ws.workspace_id})
        self._ledger.record(
            project,
            HistoryType.VERSION_SWITCHED,
            user_id,
            {"version_id": version.version_id, "version_name": version.name},
        )
        await self._hub.publish(
            project.project_id,
            EventType.CONTENT_UPDATED,
            {"content": version.content, "updated_by": user_id, "source": "version", "version_id": version.version_id},
            exclude=origin,
        )
        return ApplyVersionResponse(workspace=ws, version=version)


def get_version_service() -> VersionService:
    return VersionService(
        repo=get_repo(),
        versions=get_version_store(),
        workspaces=get_workspace_store(),
        hub=get_broadcast_hub(),
    )
