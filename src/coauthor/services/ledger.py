from __future__ import annotations

"""Project history and running stats.

History is append-only: entries are validated against their type's payload
model and pushed onto the stored project without rewriting the rest of it.
Stats updates always pass through ``clamp_contribution`` so the AI and human
shares stay within [0, 100] and sum to 100, and are written back as the
``stats`` field alone.
"""

from datetime import UTC, datetime
from typing import Any, Dict, List, Optional
import logging

from pydantic import ValidationError

from ..domain.errors import ValidationFailure
from ..domain.history import ActivityItem, HistoryEntry, HistoryType, build_history_entry
from ..domain.models import Project, ProjectStats, clamp_contribution
from ..infrastructure.repository import ProjectRepository

logger = logging.getLogger("coauthor.ledger")

ACTIVITY_FEED_LIMIT = 20


class Ledger:
    def __init__(self, repo: ProjectRepository) -> None:
        self._repo = repo

    def _write_stats(self, project: Project) -> ProjectStats:
        self._repo.update_fields(project.project_id, {"stats": project.stats})
        return project.stats

    def record(
        self,
        project: Project,
        entry_type: HistoryType | str,
        user: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> HistoryEntry:
        """Append one history entry to ``project`` and to its stored copy."""
        try:
            entry = build_history_entry(entry_type, user, data, datetime.now(UTC))
        except ValidationError as exc:
            raise ValidationFailure(f"Invalid history entry: {exc.errors()[0].get('msg', 'invalid')}") from exc
        self._repo.append_history(project.project_id, entry)
        project.history.append(entry)
        return entry

    def update_stats(self, project: Project, partial: Dict[str, Any]) -> ProjectStats:
        """Shallow-merge ``partial`` into the stats and stamp ``last_analyzed``.

        When either contribution share is supplied the pair is re-derived from
        the AI share (or from the human share when only that is given).
        """
        merged = project.stats.model_dump()
        merged.update({k: v for k, v in partial.items() if k in merged and v is not None})
        if "ai_contribution" in partial and partial["ai_contribution"] is not None:
            ai, human = clamp_contribution(partial["ai_contribution"])
        elif "human_contribution" in partial and partial["human_contribution"] is not None:
            ai, human = clamp_contribution(100 - float(partial["human_contribution"]))
        else:
            ai, human = clamp_contribution(merged["ai_contribution"])
        merged["ai_contribution"] = ai
        merged["human_contribution"] = human
        merged["last_analyzed"] = datetime.now(UTC)
        try:
            project.stats = ProjectStats(**merged)
        except ValidationError as exc:
            raise ValidationFailure("Invalid stats update") from exc
        return self._write_stats(project)

    def record_ai_edit(self, project: Project, *, ai_delta: int = 0, suggestions: int = 0) -> ProjectStats:
        """Count one AI-assisted edit and nudge the AI share by ``ai_delta``."""
        stats = project.stats
        ai, human = clamp_contribution(stats.ai_contribution + ai_delta)
        stats.total_edits += 1
        stats.ai_suggestions += max(0, suggestions)
        stats.ai_contribution = ai
        stats.human_contribution = human
        return self._write_stats(project)

    def record_suggestions(self, project: Project, count: int) -> ProjectStats:
        project.stats.ai_suggestions += max(0, count)
        return self._write_stats(project)

    def increment_versions(self, project: Project) -> ProjectStats:
        project.stats.versions_created += 1
        return self._write_stats(project)

    @staticmethod
    def list_history(project: Project) -> List[HistoryEntry]:
        # Newest first
        return sorted(project.history, key=lambda e: e.timestamp, reverse=True)

    def activity_feed(self, user_id: str, limit: int = ACTIVITY_FEED_LIMIT) -> List[ActivityItem]:
        items: List[ActivityItem] = []
        for project in self._repo.list_for_user(user_id):
            for entry in project.history:
                items.append(ActivityItem(project_id=project.project_id, project_name=project.name, entry=entry))
        items.sort(key=lambda item: item.entry.timestamp, reverse=True)
        return items[:limit]
