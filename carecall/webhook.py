"""Turn voice-provider end-of-call reports into call-history entries."""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from carecall.capabilities import TextGenerator
from carecall.errors import DuplicateCallError
from carecall.schemas import CallHistoryEntry
from carecall.store import RecordStore

logger = structlog.get_logger(__name__)

END_OF_CALL_REPORT = "end-of-call-report"

_STATUS_BY_REASON = {
    "customer-hangup": "completed",
    "assistant-hangup": "completed",
    "customer-ended-call": "completed",
    "assistant-ended-call": "completed",
    "ended": "completed",
    "customer-did-not-answer": "no-answer",
    "no-answer-machine-detected": "no-answer",
    "no-answer-human-detected": "no-answer",
    "voicemail": "no-answer",
    "customer-busy": "no-answer",
    "error": "failed",
    "failed": "failed",
    "in-progress": "in-progress",
    "ringing": "in-progress",
    "queued": "in-progress",
}


def map_call_status(reason: Optional[str]) -> str:
    """Collapse a provider ended-reason onto the closed status set."""

    if not reason:
        return "completed"
    key = reason.strip().lower()
    if key in _STATUS_BY_REASON:
        return _STATUS_BY_REASON[key]
    if "error" in key or "fail" in key:
        return "failed"
    return "completed"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def call_duration_seconds(started_at: Any, ended_at: Any) -> int:
    start = _parse_timestamp(started_at)
    end = _parse_timestamp(ended_at)
    if start is None or end is None or end <= start:
        return 0
    return int((end - start).total_seconds())


class CallReportRecorder:
    def __init__(self, store: RecordStore, summarizer: TextGenerator) -> None:
        self._store = store
        self._summarizer = summarizer

    async def record(self, payload: dict[str, Any]) -> Optional[CallHistoryEntry]:
        """Store the call described by a webhook payload.

        Returns ``None`` for message types other than end-of-call reports,
        reports without a call id, and calls that were already recorded.
        """

        message = payload.get("message") if isinstance(payload, dict) else None
        if not isinstance(message, dict):
            return None
        message_type = message.get("type")
        if message_type != END_OF_CALL_REPORT:
            logger.debug("webhook_ignored", message_type=message_type)
            return None

        call = message.get("call") or {}
        call_id = call.get("id")
        if not call_id:
            logger.warning("webhook_missing_call_id")
            return None

        metadata = call.get("metadata") or {}
        customer = call.get("customer") or {}
        transcript = message.get("transcript") or ""
        provider_summary = message.get("summary")
        ended_at = _parse_timestamp(call.get("endedAt")) or datetime.now(timezone.utc)

        summary = await self._summarizer.summarize_call(transcript, provider_summary)

        entry = CallHistoryEntry(
            call_id=str(call_id),
            patient_id=str(metadata.get("patientId") or "unknown"),
            patient_name=str(metadata.get("patientName") or "Unknown Patient"),
            phone_number=str(customer.get("number") or ""),
            duration=call_duration_seconds(call.get("startedAt"), call.get("endedAt")),
            status=map_call_status(message.get("endedReason") or call.get("status")),
            transcript=transcript or None,
            summary=summary.summary,
            key_points=summary.key_points,
            health_concerns=summary.health_concerns,
            follow_up_items=summary.follow_up_items,
            created_at=ended_at,
        )
        try:
            await self._store.append_call_history(entry)
        except DuplicateCallError:
            logger.info("webhook_duplicate_call", call_id=entry.call_id)
            return None

        logger.info(
            "call_history_recorded",
            call_id=entry.call_id,
            patient_id=entry.patient_id,
            status=entry.status,
            duration=entry.duration,
        )
        return entry


__all__ = ["CallReportRecorder", "map_call_status", "call_duration_seconds"]
