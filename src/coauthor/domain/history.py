from __future__ import annotations

"""Project history entries.

History is a tagged union keyed by ``type``: each entry type has its own
payload model so a payload can be validated against the type it claims.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter


class HistoryType(str, Enum):
    PROJECT_CREATED = "project_created"
    CONTENT_UPDATED = "content_updated"
    VERSION_CREATED = "version_created"
    VERSION_SWITCHED = "version_switched"
    COLLABORATOR_JOINED = "collaborator_joined"
    COLLABORATOR_LEFT = "collaborator_left"
    AI_MESSAGE = "ai_message"
    AI_GENERATED_CONTENT = "ai_generated_content"
    AI_IMPROVED_CONTENT = "ai_improved_content"
    SUGGESTION_APPLIED = "suggestion_applied"


def preview(text: str, limit: int = 50) -> str:
    """First ``limit`` characters of ``text`` with an ellipsis when cut."""
    text = text or ""
    return text[:limit] + ("..." if len(text) > limit else "")


class EmptyPayload(BaseModel):
    pass


class ContentUpdatedPayload(BaseModel):
    word_count: Optional[int] = None


class VersionCreatedPayload(BaseModel):
    version_id: str
    version_name: str


class VersionSwitchedPayload(BaseModel):
    version_id: str
    version_name: str


class CollaboratorPayload(BaseModel):
    collaborator: str
    role: Optional[str] = None


class AIMessagePayload(BaseModel):
    message: str
    mode: str


class AIGeneratedPayload(BaseModel):
    prompt: str


class AIImprovedPayload(BaseModel):
    instructions: str
    scope: Literal["selection", "document"] = "document"


class SuggestionAppliedPayload(BaseModel):
    suggestion: str = Field(max_length=500)


class _Entry(BaseModel):
    user: str
    timestamp: datetime


class ProjectCreatedEntry(_Entry):
    type: Literal["project_created"] = "project_created"
    data: EmptyPayload = Field(default_factory=EmptyPayload)


class ContentUpdatedEntry(_Entry):
    type: Literal["content_updated"] = "content_updated"
    data: ContentUpdatedPayload = Field(default_factory=ContentUpdatedPayload)


class VersionCreatedEntry(_Entry):
    type: Literal["version_created"] = "version_created"
    data: VersionCreatedPayload


class VersionSwitchedEntry(_Entry):
    type: Literal["version_switched"] = "version_switched"
    data: VersionSwitchedPayload


class CollaboratorJoinedEntry(_Entry):
    type: Literal["collaborator_joined"] = "collaborator_joined"
    data: CollaboratorPayload


class CollaboratorLeftEntry(_Entry):
    type: Literal["collaborator_left"] = "collaborator_left"
    data: CollaboratorPayload


class AIMessageEntry(_Entry):
    type: Literal["ai_message"] = "ai_message"
    data: AIMessagePayload


class AIGeneratedEntry(_Entry):
    type: Literal["ai_generated_content"] = "ai_generated_content"
    data: AIGeneratedPayload


class AIImprovedEntry(_Entry):
    type: Literal["ai_improved_content"] = "ai_improved_content"
    data: AIImprovedPayload


class SuggestionAppliedEntry(_Entry):
    type: Literal["suggestion_applied"] = "suggestion_applied"
    data: SuggestionAppliedPayload


HistoryEntry = Annotated[
    Union[
        ProjectCreatedEntry,
        ContentUpdatedEntry,
        VersionCreatedEntry,
        VersionSwitchedEntry,
        CollaboratorJoinedEntry,
        CollaboratorLeftEntry,
        AIMessageEntry,
        AIGeneratedEntry,
        AIImprovedEntry,
        SuggestionAppliedEntry,
    ],
    Field(discriminator="type"),
]

_ENTRY_ADAPTER: TypeAdapter = TypeAdapter(HistoryEntry)


def build_history_entry(
    entry_type: HistoryType | str,
    user: str,
    data: Optional[Dict[str, Any]],
    timestamp: datetime,
) -> HistoryEntry:
    """Validate ``data`` against the payload model of ``entry_type``.

    Raises ``pydantic.ValidationError`` for an unknown type or a payload that
    does not fit it.
    """
    value = entry_type.value if isinstance(entry_type, HistoryType) else entry_type
    return _ENTRY_ADAPTER.validate_python(
        {"type": value, "user": user, "timestamp": timestamp, "data": dict(data or {})}
    )


class HistoryEntryCreate(BaseModel):
    type: HistoryType
    data: Dict[str, Any] = Field(default_factory=dict)


class ActivityItem(BaseModel):
    project_id: str
    project_name: str
    entry: HistoryEntry
