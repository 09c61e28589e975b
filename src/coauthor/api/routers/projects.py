from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from ...domain.history import ActivityItem, HistoryEntry, HistoryEntryCreate
from ...domain.models import (
    Collaborator,
    CollaboratorAdd,
    Project,
    ProjectCreate,
    ProjectStats,
    ProjectUpdate,
    StatsUpdate,
)
from ...security.auth import User, get_current_user
from ...services.projects import ProjectService, get_project_service

router = APIRouter(tags=["projects"])


@router.get("/projects", response_model=List[Project])
def list_projects(
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> List[Project]:
    return service.list_projects(user.user_id)


@router.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreate,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> Project:
    return service.create_project(payload, user.user_id)


@router.get("/projects/{project_id}", response_model=Project)
def get_project(
    project_id: str,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> Project:
    return service.get_project(project_id, user.user_id)


@router.put("/projects/{project_id}", response_model=Project)
def update_project(
    project_id: str,
    payload: ProjectUpdate,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> Project:
    return service.update_project(project_id, payload, user.user_id)


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: str,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> Response:
    service.delete_project(project_id, user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/projects/{project_id}/collaborators", response_model=List[Collaborator])
def list_collaborators(
    project_id: str,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> List[Collaborator]:
    return service.list_collaborators(project_id, user.user_id)


@router.post("/projects/{project_id}/collaborators", response_model=List[Collaborator])
async def add_collaborator(
    project_id: str,
    payload: CollaboratorAdd,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> List[Collaborator]:
    return await service.add_collaborator(project_id, payload, user.user_id)


@router.delete("/projects/{project_id}/collaborators/{collaborator_id}", response_model=List[Collaborator])
async def remove_collaborator(
    project_id: str,
    collaborator_id: str,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> List[Collaborator]:
    return await service.remove_collaborator(project_id, collaborator_id, user.user_id)


@router.get("/projects/{project_id}/history", response_model=List[HistoryEntry])
def get_history(
    project_id: str,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> List[HistoryEntry]:
    return service.list_history(project_id, user.user_id)


@router.post("/projects/{project_id}/history", response_model=HistoryEntry, status_code=status.HTTP_201_CREATED)
def add_history(
    project_id: str,
    payload: HistoryEntryCreate,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> HistoryEntry:
    return service.add_history(project_id, payload, user.user_id)


@router.get("/projects/{project_id}/stats", response_model=ProjectStats)
def get_stats(
    project_id: str,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> ProjectStats:
    return service.get_stats(project_id, user.user_id)


@router.put("/projects/{project_id}/stats", response_model=ProjectStats)
def update_stats(
    project_id: str,
    payload: StatsUpdate,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> ProjectStats:
    return service.update_stats(project_id, payload, user.user_id)


@router.get("/activity", response_model=List[ActivityItem])
def get_activity(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> List[ActivityItem]:
    return service.activity(user.user_id, limit)
