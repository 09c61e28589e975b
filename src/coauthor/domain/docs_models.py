from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


def word_count(text: Optional[str]) -> int:
    """Number of whitespace-separated words; blank text counts as zero."""
    if not text or not text.strip():
        return 0
    return len(text.split())


class WorkspaceMetadata(BaseModel):
    word_count: int = 0


class Workspace(BaseModel):
    workspace_id: str
    project_id: str
    content: str = ""
    last_updated_by: Optional[str] = None
    metadata: WorkspaceMetadata = Field(default_factory=WorkspaceMetadata)
    created_at: datetime
    updated_at: datetime


class WorkspaceUpdate(BaseModel):
    content: str


class VersionMetadata(BaseModel):
    word_count: int = 0
    ai_contribution: Optional[int] = None
    human_contribution: Optional[int] = None


class Version(BaseModel):
    version_id: str
    project_id: str
    name: str = Field(max_length=100)
    description: str = Field(default="", max_length=500)
    content: str
    created_by: str
    tags: List[str] = Field(default_factory=list)
    metadata: VersionMetadata = Field(default_factory=VersionMetadata)
    created_at: datetime


class VersionCreate(BaseModel):
    project_id: str
    name: Optional[str] = Field(default=None, max_length=100)
    description: str = Field(default="", max_length=500)
    content: Optional[str] = Field(default=None, description="Snapshot text; defaults to the live workspace content")
    tags: List[str] = Field(default_factory=list)


class VersionSummary(BaseModel):
    version_id: str
    name: str
    created_at: datetime
    word_count: int


class VersionComparison(BaseModel):
    base_version: VersionSummary
    compare_version: VersionSummary
    base_content: str
    compare_content: str
    word_count_diff: int
    diff_percentage: float


class ApplyVersionResponse(BaseModel):
    workspace: Workspace
    version: Version

