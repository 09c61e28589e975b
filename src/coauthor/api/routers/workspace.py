from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, status

from ...domain.chat_models import Message, MessageCreate
from ...domain.docs_models import Workspace, WorkspaceUpdate
from ...security.auth import User, get_current_user
from ...services.projects import MESSAGE_PAGE_SIZE, ProjectService, get_project_service

router = APIRouter(prefix="/workspaces", tags=["workspace"])


@router.get("/{project_id}", response_model=Workspace)
def get_workspace(
    project_id: str,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> Workspace:
    return service.get_workspace(project_id, user.user_id)


@router.put("/{project_id}", response_model=Workspace)
async def update_workspace(
    project_id: str,
    payload: WorkspaceUpdate,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
    socket_id: Optional[str] = Header(default=None, alias="X-Socket-Id"),
) -> Workspace:
    return await service.update_workspace(project_id, payload.content, user.user_id, origin=socket_id)


@router.get("/{project_id}/messages", response_model=List[Message])
def list_messages(
    project_id: str,
    limit: int = Query(MESSAGE_PAGE_SIZE, ge=1, le=500),
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> List[Message]:
    return service.list_messages(project_id, user.user_id, limit)


@router.post("/{project_id}/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
def post_message(
    project_id: str,
    payload: MessageCreate,
    user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
) -> Message:
    return service.post_message(project_id, payload, user.user_id)
