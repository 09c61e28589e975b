from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, model_validator


MAX_MESSAGE_LENGTH = 15000
ANALYZE_SOFT_LIMIT = 14500
HARD_CUT_LENGTH = 14800
MAX_PRIVILEGED_LINES = 5
ANALYZE_TRUNCATION_MARKER = "\n\n[Response truncated - ask for more details if needed]"
TRUNCATION_MARKER = "\n\n[Response truncated - please ask me to continue or be more specific]"

Sender = Literal["user", "ai", "system"]
AIMode = Literal["generate", "edit", "analyze"]
AnalysisType = Literal["content", "suggestions", "improvement"]


def truncate_message_content(content: str, ai_mode: Optional[str] = None) -> str:
    """Shorten oversized message text before it is stored.

    Analysis output that talks about suggestions keeps whole lines and favours
    up to five extra lines mentioning "suggest"; anything else is cut at a
    fixed length. Either way a marker is appended and the result never exceeds
    ``MAX_MESSAGE_LENGTH``.
    """
    if len(content) <= MAX_MESSAGE_LENGTH:
        return content

    if ai_mode == "analyze" and "suggest" in content:
        budget = MAX_MESSAGE_LENGTH - len(ANALYZE_TRUNCATION_MARKER)
        kept = ""
        privileged = 0
        for line in content.split("\n"):
            if len(kept) + len(line) < ANALYZE_SOFT_LIMIT:
                kept += line + "\n"
            elif (
                "suggest" in line.lower()
                and privileged < MAX_PRIVILEGED_LINES
                and len(kept) + len(line) + 1 <= budget
            ):
                kept += line + "\n"
                privileged += 1
            elif len(kept) < ANALYZE_SOFT_LIMIT:
                kept += line[: ANALYZE_SOFT_LIMIT - len(kept)]
                break
            else:
                break
        return kept[:budget] + ANALYZE_TRUNCATION_MARKER

    return content[:HARD_CUT_LENGTH] + TRUNCATION_MARKER


class MessageMetadata(BaseModel):
    ai_contribution: Optional[float] = Field(default=None, ge=0, le=100)
    human_contribution: Optional[float] = Field(default=None, ge=0, le=100)
    suggestions: Optional[List[str]] = None
    analysis_type: Optional[AnalysisType] = None
    error: Optional[bool] = None
    original_error: Optional[str] = None

    @model_validator(mode="after")
    def _suggestion_lengths(self) -> "MessageMetadata":
        for item in self.suggestions or []:
            if len(item) > 500:
                raise ValueError("Suggestions cannot exceed 500 characters")
        return self


class Message(BaseModel):
    message_id: str
    project_id: str
    sender: Sender
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    ai_mode: Optional[AIMode] = None
    user: Optional[str] = None
    metadata: Optional[MessageMetadata] = None
    timestamp: datetime

    @model_validator(mode="after")
    def _sender_rules(self) -> "Message":
        if self.sender == "ai" and self.ai_mode is None:
            raise ValueError("ai_mode is required for AI messages")
        if self.sender == "user" and not self.user:
            raise ValueError("user is required for user messages")
        return self


class MessageCreate(BaseModel):
    """Client-posted transcript entry. AI messages are only written server-side."""

    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    sender: Literal["user", "system"] = "user"


class ChatRequest(BaseModel):
    project_id: str
    message: str = ""
    mode: AIMode = "generate"


class ChatReply(BaseModel):
    text: str
    role: Literal["ai"] = "ai"
    mode: AIMode
    timestamp: datetime
    metadata: Optional[Dict[str, Any]] = None


class GenerateRequest(BaseModel):
    project_id: str
    prompt: str = ""
    current_content: Optional[str] = None


class ImproveRequest(BaseModel):
    project_id: str
    instructions: str = ""
    content: Optional[str] = None
    selection: Optional[str] = None


class AnalyzeRequest(BaseModel):
    project_id: str
    instructions: Optional[str] = None
    content: Optional[str] = None


class SuggestionsRequest(BaseModel):
    project_id: str
    content: str = ""
    instructions: Optional[str] = None


class ContributionsRequest(BaseModel):
    project_id: str
    content: str = ""
    history: List[Dict[str, Any]] = Field(default_factory=list)


class MutationResult(BaseModel):
    text: str
    content: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)
    message: Optional[Message] = None
    stats: Optional[Dict[str, Any]] = None


class ContributionEstimate(BaseModel):
    ai_contribution: int
    human_contribution: int
    total_edits: int = 1
    explanation: str = ""
