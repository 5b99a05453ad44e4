"""Fold a patient's call history into a bounded context for AI input.

History is append-only, so the bounded view is recomputed from the full
ordered list on every request instead of being cached.
"""

import re
from collections.abc import Iterable, Sequence
from typing import Optional

import structlog

from carecall.config import CALL_HISTORY_MAX_CHARS, CALL_HISTORY_RECENT_LIMIT
from carecall.schemas import AggregatedCallContext, CallHistoryEntry
from carecall.store import RecordStore

logger = structlog.get_logger(__name__)

_SENTENCE_END_RE = re.compile(r"[.!?\n]")


def _normalize(item: str) -> str:
    return " ".join(item.split())


def dedupe(items: Iterable[str]) -> list[str]:
    """Return ``items`` without case/whitespace duplicates, first-seen order kept."""

    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        cleaned = _normalize(item or "")
        if not cleaned:
            continue
        key = cleaned.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(seconds, 0), 60)
    return f"{minutes}m {secs}s" if minutes else f"{secs}s"


def _section(title: str, items: Sequence[str]) -> str:
    return title + "\n" + "\n".join(f"- {item}" for item in items)


def _truncate_at_sentence(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    window = text[:max_chars]
    boundary = -1
    for match in _SENTENCE_END_RE.finditer(window):
        boundary = match.end()
    if boundary > max_chars // 2:
        return window[:boundary].rstrip()
    return window.rstrip()


class CallHistoryAggregator:
    def __init__(
        self,
        store: RecordStore,
        *,
        recent_limit: int = CALL_HISTORY_RECENT_LIMIT,
        max_chars: int = CALL_HISTORY_MAX_CHARS,
    ) -> None:
        self._store = store
        self.recent_limit = max(recent_limit, 1)
        self.max_chars = max_chars

    async def aggregate(self, patient_id: str, max_chars: Optional[int] = None) -> AggregatedCallContext:
        entries = await self._store.list_call_history(patient_id)
        context = self.fold(entries, max_chars=max_chars)
        logger.debug(
            "call_history_aggregated",
            patient_id=patient_id,
            total_calls=context.total_calls,
            recent_calls=context.recent_calls_count,
            context_length=len(context.context_text),
        )
        return context

    def fold(
        self, entries: Sequence[CallHistoryEntry], max_chars: Optional[int] = None
    ) -> AggregatedCallContext:
        if not entries:
            return AggregatedCallContext()

        budget = self.max_chars if max_chars is None else min(max_chars, self.max_chars)
        ordered = sorted(entries, key=lambda entry: (entry.created_at, entry.call_id))
        included = ordered[-self.recent_limit :]

        text = self._render(included, total=len(ordered))
        # Drop whole calls, oldest first, before cutting inside one.
        while len(text) > budget and len(included) > 1:
            included = included[1:]
            text = self._render(included, total=len(ordered))
        if len(text) > budget:
            text = _truncate_at_sentence(text, max(budget, 0))

        return AggregatedCallContext(
            has_history=True,
            total_calls=len(ordered),
            recent_calls_count=len(included),
            key_points=dedupe(item for entry in included for item in entry.key_points),
            health_concerns=dedupe(item for entry in included for item in entry.health_concerns),
            follow_up_items=dedupe(item for entry in included for item in entry.follow_up_items),
            context_text=text,
        )

    def _render(self, calls: Sequence[CallHistoryEntry], *, total: int) -> str:
        parts = [
            f"PREVIOUS CALL HISTORY ({total} call{'s' if total != 1 else ''} on record, "
            f"{len(calls)} most recent included):"
        ]

        summaries = [
            f"- {call.created_at:%Y-%m-%d} ({call.status}, {_format_duration(call.duration)}): "
            f"{_normalize(call.summary)}"
            for call in calls
            if call.summary and call.summary.strip()
        ]
        if summaries:
            parts.append("CALL SUMMARIES:\n" + "\n".join(summaries))

        for title, items in (
            ("KEY DISCUSSION POINTS:", dedupe(i for call in calls for i in call.key_points)),
            ("HEALTH CONCERNS MENTIONED:", dedupe(i for call in calls for i in call.health_concerns)),
            ("FOLLOW-UP ITEMS:", dedupe(i for call in calls for i in call.follow_up_items)),
        ):
            if items:
                parts.append(_section(title, items))

        return "\n\n".join(parts)


__all__ = ["CallHistoryAggregator", "dedupe"]
