from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from .history import HistoryEntry


CollaboratorRole = Literal["editor", "viewer"]
Visibility = Literal["private", "team", "public"]
ProjectStatus = Literal["active", "archived", "deleted"]


def clamp_contribution(ai_contribution: float) -> tuple[int, int]:
    """Return a consistent ``(ai, human)`` pair.

    The AI share is rounded and clamped to [0, 100]; the human share is always
    derived from it so the two sum to 100.
    """
    try:
        ai = int(round(float(ai_contribution)))
    except (TypeError, ValueError):
        ai = 0
    ai = max(0, min(100, ai))
    return ai, 100 - ai


class Collaborator(BaseModel):
    user: str
    role: CollaboratorRole = "editor"
    added_at: datetime


class ProjectStats(BaseModel):
    human_contribution: int = Field(default=100, ge=0, le=100)
    ai_contribution: int = Field(default=0, ge=0, le=100)
    total_edits: int = Field(default=0, ge=0)
    ai_suggestions: int = Field(default=0, ge=0)
    versions_created: int = Field(default=0, ge=0)
    last_analyzed: Optional[datetime] = None


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    visibility: Visibility = "private"
    tags: List[str] = Field(default_factory=list)


class Project(BaseModel):
    project_id: str
    name: str = Field(max_length=100)
    description: str = Field(default="", max_length=500)
    owner: str
    collaborators: List[Collaborator] = Field(default_factory=list)
    current_workspace: Optional[str] = None
    visibility: Visibility = "private"
    tags: List[str] = Field(default_factory=list)
    stats: ProjectStats = Field(default_factory=ProjectStats)
    history: List[HistoryEntry] = Field(default_factory=list)
    status: ProjectStatus = "active"
    created_at: datetime
    updated_at: Optional[datetime] = None

    def collaborator(self, user_id: str) -> Optional[Collaborator]:
        for collab in self.collaborators:
            if collab.user == user_id:
                return collab
        return None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    visibility: Optional[Visibility] = None
    tags: Optional[List[str]] = None
    status: Optional[Literal["active", "archived"]] = None


class CollaboratorAdd(BaseModel):
    user: str = Field(min_length=1)
    role: CollaboratorRole = "editor"


class StatsUpdate(BaseModel):
    """Partial stats payload; unset fields are left alone."""

    human_contribution: Optional[float] = None
    ai_contribution: Optional[float] = None
    total_edits: Optional[int] = Field(default=None, ge=0)
    ai_suggestions: Optional[int] = Field(default=None, ge=0)
    versions_created: Optional[int] = Field(default=None, ge=0)

    def partial(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
