from __future__ import annotations

"""AI-mediated content mutation.

Every operation follows the same order: validate inputs, authorize, record a
system sentinel in the transcript, call the gateway, and only after the
gateway succeeds write content, the AI reply, history, stats and finally
broadcast. When the gateway fails nothing but the transcript changes: the
sentinel stays and a short system failure note follows it. Writes after the
gateway call go to a freshly read copy of the project, field by field, so
changes other requests made while the call was in flight survive.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple
import logging

from ..domain.chat_models import ChatReply, ContributionEstimate, Message, MutationResult
from ..domain.errors import AIServiceUnavailable, CoauthorError, InvalidRequest, PersistenceFailure
from ..domain.history import HistoryType, preview
from ..domain.models import Project, clamp_contribution
from ..infrastructure.chat_store import MessageStore, add_ai_response, get_message_store
from ..infrastructure.doc_store import WorkspaceStore, get_workspace_store
from ..infrastructure.repository import ProjectRepository, get_repo
from ..security.access import load_project, require_edit, require_read
from .ai_gateway import AIGateway, SamplingParams, get_ai_gateway
from .broadcast import BroadcastHub, EventType, get_broadcast_hub
from .ledger import Ledger

logger = logging.getLogger("coauthor.engine")

ANALYSIS_EXCERPT_CHARS = 5000
EDIT_CONTEXT_CHARS = 4000
GENERATE_AI_SHARE = 5
IMPROVE_AI_SHARE = 3
FAILURE_NOTE = "The AI request could not be completed. No changes were made; please try again."

GENERATE_PARAMS = SamplingParams(temperature=0.7, max_output_tokens=4096)
IMPROVE_PARAMS = SamplingParams(temperature=0.4, max_output_tokens=4096)
ANALYZE_PARAMS = SamplingParams(temperature=0.3, max_output_tokens=2000)
SUGGESTION_PARAMS = SamplingParams(temperature=0.6, max_output_tokens=2000)
CHAT_GENERATE_PARAMS = SamplingParams(temperature=0.7, max_output_tokens=3000)
CHAT_EDIT_PARAMS = SamplingParams(temperature=0.5, max_output_tokens=3000)


def append_generated(base: str, text: str) -> str:
    return f"{base}\n\n{text}" if base and base.strip() else text


class ContentMutationEngine:
    def __init__(
        self,
        repo: ProjectRepository,
        messages: MessageStore,
        workspaces: WorkspaceStore,
        gateway: AIGateway,
        hub: BroadcastHub,
    ) -> None:
        self._repo = repo
        self._messages = messages
        self._workspaces = workspaces
        self._gateway = gateway
        self._hub = hub
        self._ledger = Ledger(repo)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _workspace_content(self, project_id: str) -> str:
        ws = self._workspaces.get(project_id)
        return ws.content if ws else ""

    def _sentinel(self, project: Project, text: str) -> Message:
        return self._messages.add_message(project.project_id, "system", text)

    def _note_failure(self, project: Project, exc: AIServiceUnavailable, operation: str) -> None:
        logger.error(
            "ai_operation_failed project=%s operation=%s attempts=%s err=%s",
            project.project_id,
            operation,
            exc.attempts,
            exc.last_error,
        )
        self._messages.add_message(project.project_id, "system", FAILURE_NOTE)

    async def _call_gateway(self, project: Project, operation: str, coro) -> Any:
        try:
            return await coro
        except AIServiceUnavailable as exc:
            self._note_failure(project, exc, operation)
            raise

    def _persist(self, project: Project, operation: str, writes) -> Any:
        """Run the post-generation writes, classifying unexpected failures."""
        try:
            return writes()
        except CoauthorError:
            raise
        except Exception as exc:
            logger.exception("persist_failed project=%s operation=%s", project.project_id, operation)
            raise PersistenceFailure() from exc

    async def _broadcast_content(self, project: Project, content: str, user_id: str, origin: Optional[str]) -> None:
        await self._hub.publish(
            project.project_id,
            EventType.CONTENT_UPDATED,
            {"content": content, "updated_by": user_id, "source": "ai"},
            exclude=origin,
        )

    def _write_content(self, project: Project, content: str, user_id: str) -> None:
        ws = self._workspaces.upsert(project.project_id, content, user_id)
        project.current_workspace = ws.workspace_id
        self._repo.update_fields(project.project_id, {"current_workspace": ws.workspace_id})

    def _reload(self, project_id: str, user_id: str, check) -> Project:
        """Re-read the project once the AI call returns.

        Writes go to the copy that is current now, and access is checked again
        in case the caller lost it while the call was in flight.
        """
        return check(load_project(self._repo, project_id), user_id)

    async def _analysis(self, project: Project, content: str, request: str) -> Tuple[str, List[str]]:
        excerpt = content[:ANALYSIS_EXCERPT_CHARS]
        truncated = len(content) > ANALYSIS_EXCERPT_CHARS
        try:
            suggestions = await self._gateway.generate_suggestions(excerpt, request, ANALYZE_PARAMS)
        except AIServiceUnavailable as exc:
            logger.warning("suggestions_failed_falling_back project=%s err=%s", project.project_id, exc.last_error)
            prompt = (
                f'You are an AI assistant providing analysis for the project "{project.name}".\n\n'
                f"Content to Analyze:\n{excerpt}"
                + ("\n\n[Content truncated for analysis - ask for specific sections if needed]" if truncated else "")
                + f"\n\nUser Request: {request}\n\n"
                "Please provide a focused analysis with:\n"
                "1. **Key Insights** (2-3 main points)\n"
                "2. **Specific Suggestions** (3-5 actionable items)\n"
                "3. **Priority Areas** (what to focus on first)\n\n"
                "Keep your response well-structured and actionable. Use bullet points and clear headings."
            )
            result = await self._gateway.generate(prompt, ANALYZE_PARAMS, operation="Content analysis")
            return result.text, []

        lines = [f'## Analysis Results for "{project.name}"', "", "### Key Suggestions:", ""]
        for idx, suggestion in enumerate(suggestions, start=1):
            lines += [f"**{idx}.** {suggestion}", ""]
        lines += [
            "### Next Steps:",
            "- Review the suggestions above",
            "- Prioritize based on your project goals",
            "- Ask for specific guidance on any suggestion",
            "",
        ]
        if truncated:
            lines.append(
                "*Note: Analysis based on the first 5000 characters. "
                "Ask about specific sections for detailed analysis.*"
            )
        return "\n".join(lines), suggestions

    # ------------------------------------------------------------------
    # one-shot modes
    # ------------------------------------------------------------------
    async def generate(
        self,
        project_id: str,
        user_id: str,
        prompt: str,
        current_content: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> MutationResult:
        if not (prompt or "").strip():
            raise InvalidRequest("Please provide a prompt")
        project = require_edit(load_project(self._repo, project_id), user_id)
        base = current_content if current_content is not None else self._workspace_content(project_id)

        sentinel = self._sentinel(project, f'Generating content based on prompt: "{prompt}"')
        context = (
            f'You are helping write the project "{project.name}".\n'
            f"Project description: {project.description or 'No description provided'}\n\n"
        )
        if base.strip():
            full_prompt = (
                f"{context}Current content:\n{base}\n\nPrompt: {prompt}\n\n"
                "Generate new content based on the prompt that continues the current content:"
            )
        else:
            full_prompt = f"{context}Prompt: {prompt}\n\nGenerate content based on this prompt:"
        result = await self._call_gateway(
            project, "generate", self._gateway.generate(full_prompt, GENERATE_PARAMS)
        )
        project = self._reload(project_id, user_id, require_edit)
        new_content = append_generated(base, result.text)

        def writes() -> Message:
            self._write_content(project, new_content, user_id)
            reply = add_ai_response(
                self._messages, project_id, result.text, "generate",
                timestamp=sentinel.timestamp + timedelta(milliseconds=1),
            )
            self._ledger.record(
                project, HistoryType.AI_GENERATED_CONTENT, user_id, {"prompt": preview(prompt)}
            )
            self._ledger.record_ai_edit(project, ai_delta=GENERATE_AI_SHARE)
            return reply

        reply = self._persist(project, "generate", writes)
        await self._broadcast_content(project, new_content, user_id, origin)
        return MutationResult(
            text=result.text, content=new_content, message=reply, stats=project.stats.model_dump(mode="json")
        )

    async def improve(
        self,
        project_id: str,
        user_id: str,
        instructions: str,
        content: Optional[str] = None,
        selection: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> MutationResult:
        if not (instructions or "").strip():
            raise InvalidRequest("Please provide instructions and content")
        project = require_edit(load_project(self._repo, project_id), user_id)
        document = content if content is not None else self._workspace_content(project_id)
        target = selection if selection else document
        if not (target or "").strip():
            raise InvalidRequest("Please provide instructions and content")
        if selection and selection not in document:
            raise InvalidRequest("Selected text was not found in the document")

        scope = "selection" if selection else "document"
        sentinel = self._sentinel(
            project,
            f'Improving {"selected" if selection else "entire"} content based on instructions: "{instructions}"',
        )
        prompt = (
            "I have the following content that I'd like you to improve:\n\n"
            f"{target}\n\n"
            f"Please improve this content based on these instructions: {instructions}\n\n"
            "Return the improved content only, without any additional comments or explanations."
        )
        result = await self._call_gateway(project, "improve", self._gateway.generate(prompt, IMPROVE_PARAMS))
        project = self._reload(project_id, user_id, require_edit)
        # Only the first occurrence of the selection is replaced
        new_content = document.replace(selection, result.text, 1) if selection else result.text

        def writes() -> Message:
            self._write_content(project, new_content, user_id)
            reply = add_ai_response(
                self._messages, project_id, result.text, "edit",
                timestamp=sentinel.timestamp + timedelta(milliseconds=1),
            )
            self._ledger.record(
                project,
                HistoryType.AI_IMPROVED_CONTENT,
                user_id,
                {"instructions": preview(instructions), "scope": scope},
            )
            self._ledger.record_ai_edit(project, ai_delta=IMPROVE_AI_SHARE)
            return reply

        reply = self._persist(project, "improve", writes)
        await self._broadcast_content(project, new_content, user_id, origin)
        return MutationResult(
            text=result.text, content=new_content, message=reply, stats=project.stats.model_dump(mode="json")
        )

    async def analyze(
        self,
        project_id: str,
        user_id: str,
        instructions: Optional[str] = None,
        content: Optional[str] = None,
    ) -> MutationResult:
        project = require_read(load_project(self._repo, project_id), user_id)
        text_in = content if content is not None else self._workspace_content(project_id)
        if not (text_in or "").strip():
            raise InvalidRequest("No content available for analysis")
        request = (instructions or "").strip() or "Provide a general analysis of this content"

        sentinel = self._sentinel(project, f'Analyzing content for suggestions based on: "{request}"')
        text, suggestions = await self._call_gateway(project, "analyze", self._analysis(project, text_in, request))
        project = self._reload(project_id, user_id, require_read)

        def writes() -> Message:
            reply = add_ai_response(
                self._messages,
                project_id,
                text,
                "analyze",
                metadata={"analysis_type": "improvement", "suggestions": suggestions or None},
                timestamp=sentinel.timestamp + timedelta(milliseconds=1),
            )
            self._ledger.record(
                project, HistoryType.AI_MESSAGE, user_id, {"message": preview(request), "mode": "analyze"}
            )
            self._ledger.record_ai_edit(project, suggestions=len(suggestions))
            return reply

        reply = self._persist(project, "analyze", writes)
        return MutationResult(
            text=reply.content, suggestions=suggestions, message=reply, stats=project.stats.model_dump(mode="json")
        )

    # ------------------------------------------------------------------
    # chat, suggestions, contribution estimate
    # ------------------------------------------------------------------
    async def send_message(self, project_id: str, user_id: str, message: str, mode: str = "generate") -> ChatReply:
        if not (message or "").strip():
            raise InvalidRequest("Please provide a message")
        if mode not in ("generate", "edit", "analyze"):
            raise InvalidRequest("Mode must be one of generate, edit or analyze")
        project = require_read(load_project(self._repo, project_id), user_id)
        user_msg = self._messages.add_message(project_id, "user", message, user=user_id)

        metadata: Optional[Dict[str, Any]] = None
        if mode == "analyze":
            workspace = self._workspace_content(project_id) or "No content available for analysis"
            text, suggestions = await self._call_gateway(project, "chat", self._analysis(project, workspace, message))
            metadata = {"analysis_type": "improvement", "suggestions": suggestions or None}
        elif mode == "edit":
            workspace = self._workspace_content(project_id) or "No existing content to edit"
            ellipsis = "..." if len(workspace) > EDIT_CONTEXT_CHARS else ""
            prompt = (
                f'You are an AI assistant helping with content editing for the project "{project.name}".\n\n'
                f"Current Content:\n{workspace[:EDIT_CONTEXT_CHARS]}{ellipsis}\n\n"
                f"Edit Request: {message}\n\n"
                "Please provide specific suggestions or edits based on the request. Focus on actionable improvements."
            )
            result = await self._call_gateway(project, "chat", self._gateway.generate(prompt, CHAT_EDIT_PARAMS))
            text = result.text
        else:
            prompt = (
                f'You are an AI assistant helping with content generation for the project "{project.name}".\n\n'
                "Project Context:\n"
                f"- Name: {project.name}\n"
                f"- Description: {project.description or 'No description provided'}\n\n"
                f"User Request: {message}\n\n"
                "Please generate helpful, relevant content based on the user's request. "
                "Keep your response focused and practical."
            )
            result = await self._call_gateway(project, "chat", self._gateway.generate(prompt, CHAT_GENERATE_PARAMS))
            text = result.text
        project = self._reload(project_id, user_id, require_read)

        def writes() -> Message:
            reply = add_ai_response(
                self._messages, project_id, text, mode,
                metadata=metadata,
                timestamp=user_msg.timestamp + timedelta(milliseconds=1),
            )
            self._ledger.record(
                project, HistoryType.AI_MESSAGE, user_id, {"message": preview(message), "mode": mode}
            )
            self._ledger.record_ai_edit(project)
            return reply

        reply = self._persist(project, "chat", writes)
        return ChatReply(
            text=reply.content,
            mode=mode,
            timestamp=reply.timestamp,
            metadata=reply.metadata.model_dump(exclude_none=True) if reply.metadata else None,
        )

    async def get_suggestions(
        self,
        project_id: str,
        user_id: str,
        content: str,
        instructions: Optional[str] = None,
    ) -> List[str]:
        if not (content or "").strip():
            raise InvalidRequest("Please provide content")
        project = require_read(load_project(self._repo, project_id), user_id)
        suggestions = await self._gateway.generate_suggestions(
            content[:ANALYSIS_EXCERPT_CHARS], instructions, SUGGESTION_PARAMS
        )
        project = self._reload(project_id, user_id, require_read)
        self._persist(project, "suggestions", lambda: self._ledger.record_suggestions(project, len(suggestions)))
        return suggestions

    async def estimate_contributions(
        self,
        project_id: str,
        user_id: str,
        content: str,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> ContributionEstimate:
        if not (content or "").strip():
            raise InvalidRequest("Please provide content")
        project = require_edit(load_project(self._repo, project_id), user_id)
        analysis = await self._gateway.analyze_contributions(content, history or [])
        project = self._reload(project_id, user_id, require_edit)
        ai, human = clamp_contribution(analysis["ai_contribution"])
        self._persist(
            project, "contributions", lambda: self._ledger.update_stats(project, {"ai_contribution": ai})
        )
        try:
            total_edits = max(0, int(analysis["total_edits"]))
        except (TypeError, ValueError):
            total_edits = 1
        return ContributionEstimate(
            ai_contribution=ai,
            human_contribution=human,
            total_edits=total_edits,
            explanation=str(analysis["explanation"]),
        )


def get_content_engine() -> ContentMutationEngine:
    return ContentMutationEngine(
        repo=get_repo(),
        messages=get_message_store(),
        workspaces=get_workspace_store(),
        gateway=get_ai_gateway(),
        hub=get_broadcast_hub(),
    )
