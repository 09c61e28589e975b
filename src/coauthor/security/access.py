from __future__ import annotations

"""Per-project authorization.

Read access: the owner, any collaborator, or anyone when the project is public.
Edit access: the owner or a collaborator with the editor role. Viewers never
pass an edit check. Ownership gates metadata, roster and deletion.
"""

from ..domain.errors import ProjectNotFound, Unauthorized
from ..domain.models import Project
from ..infrastructure.repository import ProjectRepository


def is_owner(project: Project, user_id: str) -> bool:
    return project.owner == user_id


def has_read_access(project: Project, user_id: str) -> bool:
    if is_owner(project, user_id):
        return True
    if project.collaborator(user_id) is not None:
        return True
    return project.visibility == "public"


def has_edit_access(project: Project, user_id: str) -> bool:
    if is_owner(project, user_id):
        return True
    collab = project.collaborator(user_id)
    return collab is not None and collab.role == "editor"


def load_project(repo: ProjectRepository, project_id: str) -> Project:
    project = repo.get(project_id)
    if project is None or project.status == "deleted":
        raise ProjectNotFound()
    return project


def require_read(project: Project, user_id: str) -> Project:
    if not has_read_access(project, user_id):
        raise Unauthorized("Not authorized to access this project")
    return project


def require_edit(project: Project, user_id: str) -> Project:
    if not has_edit_access(project, user_id):
        raise Unauthorized("Not authorized to edit this project")
    return project


def require_owner(project: Project, user_id: str) -> Project:
    if not is_owner(project, user_id):
        raise Unauthorized("Only the project owner can perform this action")
    return project
