import pytest

from src.coauthor.domain.errors import PersistenceFailure, ProjectNotFound
from src.coauthor.domain.history import HistoryType, build_history_entry
from src.coauthor.domain.models import ProjectCreate
from src.coauthor.infrastructure import repository
from src.coauthor.infrastructure.repository import FileProjectRepository, InMemoryProjectRepository, get_repo


def test_file_repo_persists_projects_and_history(tmp_path):
    pfile = tmp_path / "projects.json"
    repo = FileProjectRepository(file_path=str(pfile))
    assert repo.list() == []

    proj = repo.create(ProjectCreate(name="Memoir", description="Chapters"), "owner@example.com")
    assert proj.project_id.startswith("PRJ-")
    repo.append_history(
        proj.project_id,
        build_history_entry(HistoryType.CONTENT_UPDATED, "owner@example.com", {"word_count": 10}, proj.created_at),
    )

    # Reload from disk into a fresh repository
    repo2 = FileProjectRepository(file_path=str(pfile))
    got = repo2.get(proj.project_id)
    assert got is not None and got.name == "Memoir"
    assert [e.type for e in got.history] == ["project_created", "content_updated"]
    assert got.history[1].data.word_count == 10

    # Id sequence continues after a restart
    nxt = repo2.create(ProjectCreate(name="Second"), "owner@example.com")
    assert nxt.project_id.endswith("0002")


def test_file_repo_lists_only_member_projects(tmp_path):
    repo = FileProjectRepository(file_path=str(tmp_path / "p.json"))
    mine = repo.create(ProjectCreate(name="Mine"), "me@example.com")
    repo.create(ProjectCreate(name="Theirs"), "them@example.com")
    assert [p.project_id for p in repo.list_for_user("me@example.com")] == [mine.project_id]

    repo.update_fields(mine.project_id, {"status": "deleted"})
    assert repo.list_for_user("me@example.com") == []


def test_file_repo_write_failure_raises_persistence_failure(tmp_path, monkeypatch):
    repo = FileProjectRepository(file_path=str(tmp_path / "p.json"))
    proj = repo.create(ProjectCreate(name="Doc"), "me@example.com")

    def _boom(*_args, **_kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(type(repo._path), "write_text", _boom)
    with pytest.raises(PersistenceFailure):
        repo.update_fields(proj.project_id, {"name": "Renamed"})


def test_repo_factory_selects_implementation(monkeypatch, tmp_path):
    assert isinstance(get_repo(), InMemoryProjectRepository)

    monkeypatch.setattr(repository, "_repo", None)
    monkeypatch.setenv("COAUTHOR_REPO_IMPL", "file")
    monkeypatch.setenv("COAUTHOR_PROJECTS_FILE", str(tmp_path / "factory.json"))
    assert isinstance(get_repo(), FileProjectRepository)


def test_targeted_writes_keep_changes_made_through_other_copies():
    repo = InMemoryProjectRepository()
    pid = repo.create(ProjectCreate(name="Memo"), "owner@example.com").project_id
    stale = repo.get(pid)

    repo.update_fields(pid, {"description": "written elsewhere"})
    stale.stats.total_edits = 3
    repo.update_fields(pid, {"stats": stale.stats})
    repo.append_history(
        pid, build_history_entry(HistoryType.CONTENT_UPDATED, "owner@example.com", {"word_count": 4}, stale.created_at)
    )

    stored = repo.get(pid)
    assert stored.description == "written elsewhere"
    assert stored.stats.total_edits == 3
    assert [e.type for e in stored.history] == ["project_created", "content_updated"]

    # Copies handed out are detached from the store
    stored.name = "Changed locally"
    stale.stats.total_edits = 99
    assert repo.get(pid).name == "Memo"
    assert repo.get(pid).stats.total_edits == 3

    with pytest.raises(ProjectNotFound):
        repo.update_fields("PRJ-1999-0001", {"name": "Ghost"})
