from __future__ import annotations

from datetime import UTC, datetime

import pytest

from src.coauthor.domain.chat_models import MAX_MESSAGE_LENGTH, TRUNCATION_MARKER
from src.coauthor.domain.errors import AIServiceUnavailable, InvalidRequest, Unauthorized
from src.coauthor.domain.models import Collaborator, ProjectCreate
from src.coauthor.infrastructure.chat_store import get_message_store
from src.coauthor.infrastructure.doc_store import get_workspace_store
from src.coauthor.infrastructure.repository import get_repo
from src.coauthor.services.broadcast import get_broadcast_hub
from src.coauthor.services.content_engine import FAILURE_NOTE, get_content_engine

OWNER = "owner@example.com"
VIEWER = "viewer@example.com"


class RecordingConnection:
    def __init__(self) -> None:
        self.frames = []

    async def send_json(self, data) -> None:
        self.frames.append(data)


def _project(content: str | None = None):
    repo = get_repo()
    project = repo.create(ProjectCreate(name="Field Notes", description="Nature essays"), OWNER)
    repo.update_fields(
        project.project_id,
        {"collaborators": [Collaborator(user=VIEWER, role="viewer", added_at=datetime.now(UTC))]},
    )
    if content is not None:
        get_workspace_store().upsert(project.project_id, content, OWNER)
    return project


@pytest.mark.asyncio
async def test_generate_into_empty_workspace(fake_llm):
    project = _project()
    fake_llm.queue("Hello world.")
    result = await get_content_engine().generate(project.project_id, OWNER, "Say hello")

    assert result.content == "Hello world."
    assert get_workspace_store().get(project.project_id).content == "Hello world."
    stored = get_repo().get(project.project_id)
    assert stored.stats.total_edits == 1
    assert stored.stats.ai_contribution == 5
    assert stored.stats.human_contribution == 95
    assert stored.history[-1].type == "ai_generated_content"
    assert stored.current_workspace is not None

    transcript = get_message_store().list_messages(project.project_id)
    assert [m.sender for m in transcript] == ["system", "ai"]
    assert transcript[1].content == "Hello world."
    assert transcript[1].ai_mode == "generate"


@pytest.mark.asyncio
async def test_generate_appends_to_existing_content(fake_llm):
    project = _project("First paragraph.")
    fake_llm.queue("Second paragraph.")
    result = await get_content_engine().generate(project.project_id, OWNER, "Continue")
    assert result.content == "First paragraph.\n\nSecond paragraph."
    assert "First paragraph." in fake_llm.prompts[-1]


@pytest.mark.asyncio
async def test_improve_replaces_first_selection_only(fake_llm):
    project = _project("The cat sat. The cat ran.")
    fake_llm.queue("The feline sat.")
    result = await get_content_engine().improve(
        project.project_id, OWNER, "Use a fancier word", selection="The cat sat."
    )
    assert result.content == "The feline sat. The cat ran."
    stored = get_repo().get(project.project_id)
    assert stored.stats.ai_contribution == 3
    assert stored.history[-1].type == "ai_improved_content"
    assert stored.history[-1].data.scope == "selection"


@pytest.mark.asyncio
async def test_improve_rejects_selection_missing_from_document(fake_llm):
    project = _project("Some text.")
    with pytest.raises(InvalidRequest):
        await get_content_engine().improve(project.project_id, OWNER, "Fix", selection="Other text.")
    assert fake_llm.prompts == []


@pytest.mark.asyncio
async def test_empty_prompt_rejected_before_any_side_effect(fake_llm):
    project = _project()
    with pytest.raises(InvalidRequest):
        await get_content_engine().generate(project.project_id, OWNER, "   ")
    assert get_message_store().list_messages(project.project_id) == []
    assert fake_llm.prompts == []


@pytest.mark.asyncio
async def test_viewer_cannot_generate(fake_llm):
    project = _project()
    with pytest.raises(Unauthorized):
        await get_content_engine().generate(project.project_id, VIEWER, "Write")
    assert get_message_store().list_messages(project.project_id) == []


@pytest.mark.asyncio
async def test_ai_failure_leaves_content_and_history_untouched(fake_llm):
    project = _project("Original text.")
    history_before = len(get_repo().get(project.project_id).history)
    fake_llm.fail_always(ConnectionError("503 Service Unavailable"))

    with pytest.raises(AIServiceUnavailable):
        await get_content_engine().generate(project.project_id, OWNER, "Expand")

    assert get_workspace_store().get(project.project_id).content == "Original text."
    stored = get_repo().get(project.project_id)
    assert len(stored.history) == history_before
    assert stored.stats.total_edits == 0
    transcript = get_message_store().list_messages(project.project_id)
    assert all(m.sender != "ai" for m in transcript)
    assert transcript[-1].content == FAILURE_NOTE
    assert len(fake_llm.prompts) == 4


@pytest.mark.asyncio
async def test_oversized_reply_truncated_in_transcript_but_not_in_content(fake_llm):
    project = _project()
    fake_llm.queue("z" * 20000)
    result = await get_content_engine().generate(project.project_id, OWNER, "Write a lot")
    assert len(result.content) == 20000
    assert len(result.message.content) <= MAX_MESSAGE_LENGTH
    assert result.message.content.endswith(TRUNCATION_MARKER)


@pytest.mark.asyncio
async def test_analyze_counts_suggestions_without_touching_content(fake_llm):
    project = _project("A draft worth reviewing.")
    fake_llm.queue("- Shorten sentences\n- Add a title")
    result = await get_content_engine().analyze(project.project_id, VIEWER, "Review style")

    assert result.suggestions == ["Shorten sentences", "Add a title"]
    assert "Analysis Results" in result.text
    assert get_workspace_store().get(project.project_id).content == "A draft worth reviewing."
    stats = get_repo().get(project.project_id).stats
    assert stats.ai_suggestions == 2
    assert stats.total_edits == 1


@pytest.mark.asyncio
async def test_send_message_orders_reply_after_user_message(fake_llm):
    project = _project()
    fake_llm.queue("Here is an outline.")
    reply = await get_content_engine().send_message(project.project_id, VIEWER, "Outline please", "generate")
    assert reply.text == "Here is an outline."
    transcript = get_message_store().list_messages(project.project_id)
    assert [m.sender for m in transcript] == ["user", "ai"]
    assert transcript[0].user == VIEWER
    assert transcript[1].timestamp > transcript[0].timestamp
    assert get_repo().get(project.project_id).history[-1].type == "ai_message"


@pytest.mark.asyncio
async def test_generate_broadcasts_to_room_except_origin(fake_llm):
    project = _project()
    hub = get_broadcast_hub()
    mine, theirs = RecordingConnection(), RecordingConnection()
    hub.join(project.project_id, "sock-mine", OWNER, mine)
    hub.join(project.project_id, "sock-theirs", VIEWER, theirs)

    fake_llm.queue("Shared words.")
    await get_content_engine().generate(project.project_id, OWNER, "Write", origin="sock-mine")

    assert mine.frames == []
    assert theirs.frames[-1]["type"] == "content_updated"
    assert theirs.frames[-1]["payload"]["content"] == "Shared words."


@pytest.mark.asyncio
async def test_estimate_contributions_clamps_and_persists(fake_llm):
    project = _project("Text")
    fake_llm.queue('{"aiContribution": 150, "humanContribution": -50, "explanation": "mostly AI", "totalEdits": 9}')
    estimate = await get_content_engine().estimate_contributions(project.project_id, OWNER, "Text")
    assert (estimate.ai_contribution, estimate.human_contribution) == (100, 0)
    assert estimate.total_edits == 9
    stats = get_repo().get(project.project_id).stats
    assert (stats.ai_contribution, stats.human_contribution) == (100, 0)
    assert stats.total_edits == 0


@pytest.mark.asyncio
async def test_suggestions_never_empty(fake_llm):
    project = _project()
    fake_llm.queue("")
    suggestions = await get_content_engine().get_suggestions(project.project_id, OWNER, "Some text")
    assert len(suggestions) == 1
