from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, status

from ...domain.docs_models import ApplyVersionResponse, Version, VersionComparison, VersionCreate
from ...security.auth import User, get_current_user
from ...services.versions import VersionService, get_version_service

router = APIRouter(prefix="/versions", tags=["versions"])


@router.get("/project/{project_id}", response_model=List[Version])
def list_versions(
    project_id: str,
    user: User = Depends(get_current_user),
    service: VersionService = Depends(get_version_service),
) -> List[Version]:
    return service.list_versions(project_id, user.user_id)


@router.post("", response_model=Version, status_code=status.HTTP_201_CREATED)
async def create_version(
    payload: VersionCreate,
    user: User = Depends(get_current_user),
    service: VersionService = Depends(get_version_service),
    socket_id: Optional[str] = Header(default=None, alias="X-Socket-Id"),
) -> Version:
    return await service.create_version(payload, user.user_id, origin=socket_id)


@router.get("/compare/{base_id}/{compare_id}", response_model=VersionComparison)
def compare_versions(
    base_id: str,
    compare_id: str,
    user: User = Depends(get_current_user),
    service: VersionService = Depends(get_version_service),
) -> VersionComparison:
    return service.compare_versions(base_id, compare_id, user.user_id)


@router.get("/{version_id}", response_model=Version)
def get_version(
    version_id: str,
    user: User = Depends(get_current_user),
    service: VersionService = Depends(get_version_service),
) -> Version:
    return service.get_version(version_id, user.user_id)


@router.delete("/{version_id}")
def delete_version(
    version_id: str,
    user: User = Depends(get_current_user),
    service: VersionService = Depends(get_version_service),
) -> dict:
    backup = service.delete_version(version_id, user.user_id)
    return {"deleted": version_id, "backup": backup.name}


@router.post("/{version_id}/apply", response_model=ApplyVersionResponse)
async def apply_version(
    version_id: str,
    user: User = Depends(get_current_user),
    service: VersionService = Depends(get_version_service),
    socket_id: Optional[str] = Header(default=None, alias="X-Socket-Id"),
) -> ApplyVersionResponse:
    return await service.apply_version(version_id, user.user_id, origin=socket_id)
