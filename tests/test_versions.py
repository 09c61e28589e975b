from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from src.coauthor.domain.docs_models import VersionCreate
from src.coauthor.domain.errors import InvalidRequest, NotFound, Unauthorized
from src.coauthor.domain.models import Collaborator, ProjectCreate
from src.coauthor.infrastructure.doc_store import get_version_store, get_workspace_store
from src.coauthor.infrastructure.repository import get_repo
from src.coauthor.services.versions import get_version_service

OWNER = "owner@example.com"
EDITOR = "editor@example.com"
VIEWER = "viewer@example.com"


def _project(content: str = "one two three"):
    repo = get_repo()
    project = repo.create(ProjectCreate(name="Thesis"), OWNER)
    now = datetime.now(UTC)
    roster = [
        Collaborator(user=EDITOR, role="editor", added_at=now),
        Collaborator(user=VIEWER, role="viewer", added_at=now),
    ]
    repo.update_fields(project.project_id, {"collaborators": roster})
    get_workspace_store().upsert(project.project_id, content, OWNER)
    return project


@pytest.mark.asyncio
async def test_create_version_snapshots_workspace_and_counts():
    project = _project()
    service = get_version_service()
    version = await service.create_version(VersionCreate(project_id=project.project_id, name="Draft 1"), OWNER)

    assert version.content == "one two three"
    assert version.metadata.word_count == 3
    stored = get_repo().get(project.project_id)
    assert stored.stats.versions_created == 1
    assert stored.history[-1].type == "version_created"
    assert stored.history[-1].data.version_id == version.version_id


@pytest.mark.asyncio
async def test_create_version_default_name_and_viewer_denied():
    project = _project()
    service = get_version_service()
    version = await service.create_version(VersionCreate(project_id=project.project_id), EDITOR)
    assert version.name.startswith("Version ")
    with pytest.raises(Unauthorized):
        await service.create_version(VersionCreate(project_id=project.project_id), VIEWER)


@pytest.mark.asyncio
async def test_create_version_rejects_blank_content():
    project = _project(content="   ")
    with pytest.raises(InvalidRequest):
        await get_version_service().create_version(VersionCreate(project_id=project.project_id), OWNER)


@pytest.mark.asyncio
async def test_cannot_delete_only_version():
    project = _project()
    service = get_version_service()
    version = await service.create_version(VersionCreate(project_id=project.project_id), OWNER)
    with pytest.raises(InvalidRequest):
        service.delete_version(version.version_id, OWNER)
    assert get_version_store().count(project.project_id) == 1


@pytest.mark.asyncio
async def test_delete_writes_backup_first():
    project = _project()
    service = get_version_service()
    first = await service.create_version(VersionCreate(project_id=project.project_id, name="A"), OWNER)
    await service.create_version(VersionCreate(project_id=project.project_id, name="B"), OWNER)

    backup = service.delete_version(first.version_id, OWNER)
    assert backup.exists()
    assert backup.parent.name == "backups"
    saved = json.loads(backup.read_text(encoding="utf-8"))
    assert saved["version_id"] == first.version_id
    assert get_version_store().get(first.version_id) is None
    assert get_version_store().count(project.project_id) == 1


@pytest.mark.asyncio
async def test_only_owner_or_author_may_delete():
    project = _project()
    service = get_version_service()
    by_owner = await service.create_version(VersionCreate(project_id=project.project_id, name="A"), OWNER)
    await service.create_version(VersionCreate(project_id=project.project_id, name="B"), EDITOR)
    with pytest.raises(Unauthorized):
        service.delete_version(by_owner.version_id, EDITOR)


@pytest.mark.asyncio
async def test_compare_versions_word_diff():
    project = _project()
    service = get_version_service()
    base = await service.create_version(VersionCreate(project_id=project.project_id, content="a b c d"), OWNER)
    other = await service.create_version(
        VersionCreate(project_id=project.project_id, content="a b c d e f"), OWNER
    )
    comparison = service.compare_versions(base.version_id, other.version_id, VIEWER)
    assert comparison.word_count_diff == 2
    assert comparison.diff_percentage == 50.0


@pytest.mark.asyncio
async def test_compare_across_projects_rejected():
    first, second = _project(), _project()
    service = get_version_service()
    a = await service.create_version(VersionCreate(project_id=first.project_id), OWNER)
    b = await service.create_version(VersionCreate(project_id=second.project_id), OWNER)
    with pytest.raises(InvalidRequest):
        service.compare_versions(a.version_id, b.version_id, OWNER)


@pytest.mark.asyncio
async def test_apply_version_restores_content():
    project = _project("old words")
    service = get_version_service()
    version = await service.create_version(VersionCreate(project_id=project.project_id), OWNER)
    get_workspace_store().upsert(project.project_id, "newer words entirely", OWNER)

    applied = await service.apply_version(version.version_id, EDITOR)
    assert applied.workspace.content == "old words"
    assert get_workspace_store().get(project.project_id).content == "old words"
    assert get_repo().get(project.project_id).history[-1].type == "version_switched"


def test_unknown_version_is_not_found():
    with pytest.raises(NotFound):
        get_version_service().get_version("missing", OWNER)
