from __future__ import annotations

"""Project lifecycle, roster, history and the shared workspace.

Owners manage metadata and the collaborator roster; editors write content;
anyone with read access may read, chat and post history notes. Content writes
and roster changes are broadcast to the project's room.
"""

from datetime import UTC, datetime
from typing import List, Optional
import logging

from ..domain.chat_models import Message, MessageCreate
from ..domain.docs_models import Workspace, word_count
from ..domain.errors import InvalidRequest, NotFound
from ..domain.history import ActivityItem, HistoryEntry, HistoryEntryCreate, HistoryType
from ..domain.models import (
    Collaborator,
    CollaboratorAdd,
    Project,
    ProjectCreate,
    ProjectStats,
    ProjectUpdate,
    StatsUpdate,
)
from ..infrastructure.chat_store import MessageStore, get_message_store
from ..infrastructure.doc_store import WorkspaceStore, get_workspace_store
from ..infrastructure.repository import ProjectRepository, get_repo
from ..security.access import load_project, require_edit, require_owner, require_read
from .broadcast import BroadcastHub, EventType, get_broadcast_hub
from .ledger import ACTIVITY_FEED_LIMIT, Ledger

logger = logging.getLogger("coauthor.projects")

MESSAGE_PAGE_SIZE = 50


class ProjectService:
    def __init__(
        self,
        repo: ProjectRepository,
        messages: MessageStore,
        workspaces: WorkspaceStore,
        hub: BroadcastHub,
    ) -> None:
        self._repo = repo
        self._messages = messages
        self._workspaces = workspaces
        self._hub = hub
        self._ledger = Ledger(repo)

    # projects
    def create_project(self, payload: ProjectCreate, owner: str) -> Project:
        project = self._repo.create(payload, owner)
        logger.info("project_created id=%s owner=%s", project.project_id, owner)
        return project

    def list_projects(self, user_id: str) -> List[Project]:
        return [p for p in self._repo.list_for_user(user_id) if p.status != "deleted"]

    def get_project(self, project_id: str, user_id: str) -> Project:
        return require_read(load_project(self._repo, project_id), user_id)

    def update_project(self, project_id: str, payload: ProjectUpdate, user_id: str) -> Project:
        project = require_owner(load_project(self._repo, project_id), user_id)
        changes = payload.model_dump(exclude_none=True)
        for field, value in changes.items():
            setattr(project, field, value)
        if changes:
            self._repo.update_fields(project_id, changes)
        return project

    def delete_project(self, project_id: str, user_id: str) -> None:
        """Soft delete: the project stays stored but is hidden from every read."""
        require_owner(load_project(self._repo, project_id), user_id)
        self._repo.update_fields(project_id, {"status": "deleted"})
        logger.info("project_deleted id=%s by=%s", project_id, user_id)

    # collaborators
    def list_collaborators(self, project_id: str, user_id: str) -> List[Collaborator]:
        project = require_read(load_project(self._repo, project_id), user_id)
        return list(project.collaborators)

    async def add_collaborator(self, project_id: str, payload: CollaboratorAdd, user_id: str) -> List[Collaborator]:
        """Add a collaborator, or change the role of one already on the roster."""
        project = require_owner(load_project(self._repo, project_id), user_id)
        if payload.user == project.owner:
            raise InvalidRequest("The project owner cannot be added as a collaborator")
        existing = project.collaborator(payload.user)
        if existing is not None:
            existing.role = payload.role
        else:
            project.collaborators.append(
                Collaborator(user=payload.user, role=payload.role, added_at=datetime.now(UTC))
            )
        self._repo.update_fields(project_id, {"collaborators": project.collaborators})
        self._ledger.record(
            project,
            HistoryType.COLLABORATOR_JOINED,
            user_id,
            {"collaborator": payload.user, "role": payload.role},
        )
        await self._hub.publish(
            project_id,
            EventType.COLLABORATOR_JOINED,
            {"collaborator": payload.user, "role": payload.role, "added_by": user_id},
        )
        return list(project.collaborators)

    async def remove_collaborator(self, project_id: str, collaborator_id: str, user_id: str) -> List[Collaborator]:
        project = require_owner(load_project(self._repo, project_id), user_id)
        if project.collaborator(collaborator_id) is None:
            raise NotFound("Collaborator not found")
        project.collaborators = [c for c in project.collaborators if c.user != collaborator_id]
        self._repo.update_fields(project_id, {"collaborators": project.collaborators})
        self._ledger.record(project, HistoryType.COLLABORATOR_LEFT, user_id, {"collaborator": collaborator_id})
        await self._hub.publish(
            project_id,
            EventType.COLLABORATOR_LEFT,
            {"collaborator": collaborator_id, "removed_by": user_id},
        )
        return list(project.collaborators)

    # history and stats
    def list_history(self, project_id: str, user_id: str) -> List[HistoryEntry]:
        project = require_read(load_project(self._repo, project_id), user_id)
        return self._ledger.list_history(project)

    def add_history(self, project_id: str, payload: HistoryEntryCreate, user_id: str) -> HistoryEntry:
        project = require_read(load_project(self._repo, project_id), user_id)
        return self._ledger.record(project, payload.type, user_id, payload.data)

    def get_stats(self, project_id: str, user_id: str) -> ProjectStats:
        return require_read(load_project(self._repo, project_id), user_id).stats

    def update_stats(self, project_id: str, payload: StatsUpdate, user_id: str) -> ProjectStats:
        project = require_edit(load_project(self._repo, project_id), user_id)
        return self._ledger.update_stats(project, payload.partial())

    def activity(self, user_id: str, limit: int = ACTIVITY_FEED_LIMIT) -> List[ActivityItem]:
        return self._ledger.activity_feed(user_id, limit)

    # workspace
    def get_workspace(self, project_id: str, user_id: str) -> Workspace:
        require_read(load_project(self._repo, project_id), user_id)
        ws = self._workspaces.get(project_id)
        if ws is None:
            raise NotFound("No workspace found for this project")
        return ws

    async def update_workspace(
        self, project_id: str, content: str, user_id: str, origin: Optional[str] = None
    ) -> Workspace:
        """Replace the document content; the writer's own connection is not echoed."""
        project = require_edit(load_project(self._repo, project_id), user_id)
        ws = self._workspaces.upsert(project_id, content, user_id)
        self._repo.update_fields(project_id, {"current_workspace": ws.workspace_id})
        self._ledger.record(project, HistoryType.CONTENT_UPDATED, user_id, {"word_count": word_count(content)})
        await self._hub.publish(
            project_id,
            EventType.CONTENT_UPDATED,
            {"content": content, "updated_by": user_id, "source": "user"},
            exclude=origin,
        )
        return ws

    # transcript
    def list_messages(self, project_id: str, user_id: str, limit: int = MESSAGE_PAGE_SIZE) -> List[Message]:
        require_read(load_project(self._repo, project_id), user_id)
        return self._messages.list_messages(project_id, limit)

    def post_message(self, project_id: str, payload: MessageCreate, user_id: str) -> Message:
        if not payload.content.strip():
            raise InvalidRequest("Please provide message content")
        require_read(load_project(self._repo, project_id), user_id)
        return self._messages.add_message(
            project_id,
            payload.sender,
            payload.content,
            user=user_id if payload.sender == "user" else None,
        )


def get_project_service() -> ProjectService:
    return ProjectService(
        repo=get_repo(),
        messages=get_message_store(),
        workspaces=get_workspace_store(),
        hub=get_broadcast_hub(),
    )
