from typing import Optional

import structlog

from carecall.batch_resolver import BatchResolver
from carecall.call_history import CallHistoryAggregator
from carecall.config import SYSTEM_PROMPT_MAX_CHARS, TRIAGE_PROMPT_MAX_CHARS
from carecall.prompt_settings import PromptSettings
from carecall.prompts import (
    FIRST_CONVERSATION,
    HISTORY_PLACEHOLDER,
    TRIAGE_TASK,
    count_history_placeholders,
    fill_voice_agent_template,
)
from carecall.schemas import PatientPromptRecord, TriageContext
from carecall.store import RecordStore

logger = structlog.get_logger(__name__)


def _clip(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max(max_chars - 3, 0)].rstrip() + "..."


class TriageContextBuilder:
    """Compose the briefing handed to the voice-call capability.

    The stored caretaker prompt and the aggregated call history are merged
    into a system prompt; a short triage prompt frames the call itself.
    """

    def __init__(
        self,
        store: RecordStore,
        resolver: Optional[BatchResolver] = None,
        aggregator: Optional[CallHistoryAggregator] = None,
        settings: Optional[PromptSettings] = None,
        *,
        system_prompt_max_chars: int = SYSTEM_PROMPT_MAX_CHARS,
        triage_prompt_max_chars: int = TRIAGE_PROMPT_MAX_CHARS,
    ) -> None:
        self._store = store
        self._resolver = resolver or BatchResolver(store)
        self._aggregator = aggregator or CallHistoryAggregator(store)
        self._settings = settings or PromptSettings(store)
        self.system_prompt_max_chars = system_prompt_max_chars
        self.triage_prompt_max_chars = triage_prompt_max_chars

    async def build(self, patient_id: str, batch_id: Optional[str] = None) -> TriageContext:
        record = await self._locate_record(patient_id, batch_id)

        if record is None or not record.prompt.strip():
            history = await self._aggregator.aggregate(patient_id)
            logger.info("triage_context_missing", patient_id=patient_id, batch_id=batch_id)
            return TriageContext(
                patient_id=patient_id,
                has_context=False,
                has_call_history=history.has_history,
                batch_id=record.batch_id if record else batch_id,
                recent_calls_count=history.recent_calls_count,
                total_calls=history.total_calls,
            )

        template = await self._settings.voice_agent_template()
        values = self._template_values(record)
        # Every history slot shares whatever the rest of the briefing leaves over.
        fixed_length = len(fill_voice_agent_template(template, {**values, HISTORY_PLACEHOLDER: ""}))
        slots = max(count_history_placeholders(template), 1)
        history_budget = (self.system_prompt_max_chars - fixed_length) // slots
        history = await self._aggregator.aggregate(patient_id, max_chars=max(history_budget, 0))

        values[HISTORY_PLACEHOLDER] = history.context_text if history.has_history else FIRST_CONVERSATION
        system_prompt = _clip(fill_voice_agent_template(template, values), self.system_prompt_max_chars)
        triage_prompt = self._triage_prompt(record, history.follow_up_items)

        logger.info(
            "triage_context_built",
            patient_id=patient_id,
            batch_id=record.batch_id,
            has_call_history=history.has_history,
            recent_calls=history.recent_calls_count,
            system_prompt_length=len(system_prompt),
        )
        return TriageContext(
            patient_id=patient_id,
            has_context=True,
            has_call_history=history.has_history,
            batch_id=record.batch_id,
            name=record.name,
            age=record.age,
            condition=record.condition,
            system_prompt=system_prompt,
            triage_prompt=triage_prompt,
            system_prompt_length=len(system_prompt),
            triage_prompt_length=len(triage_prompt),
            context_length=len(history.context_text),
            recent_calls_count=history.recent_calls_count,
            total_calls=history.total_calls,
        )

    async def _locate_record(self, patient_id: str, batch_id: Optional[str]) -> Optional[PatientPromptRecord]:
        if batch_id:
            record = await self._store.get_patient_prompt(batch_id, patient_id)
            if record is not None:
                return record

        resolved = await self._resolver.resolve()
        if resolved is None:
            return None
        for record in resolved.records:
            if record.patient_id == patient_id:
                return record

        # The patient may only appear in an older upload.
        batches = sorted(
            await self._store.list_batches(),
            key=lambda batch: (batch.created_at, batch.batch_id),
            reverse=True,
        )
        for batch in batches:
            if batch.batch_id in (resolved.batch_id, batch_id):
                continue
            record = await self._store.get_patient_prompt(batch.batch_id, patient_id)
            if record is not None:
                return record
        return None

    def _template_values(self, record: PatientPromptRecord) -> dict[str, str]:
        return {
            "PATIENT_NAME": record.name or record.patient_id,
            "PATIENT_AGE": str(record.age) if record.age else "unknown age",
            "PATIENT_CONDITION": record.condition or "general health assessment",
            "PATIENT_PROMPT": record.prompt,
        }

    def _triage_prompt(self, record: PatientPromptRecord, follow_up_items: list[str]) -> str:
        text = TRIAGE_TASK.format(
            name=record.name or record.patient_id,
            age=record.age if record.age else "unknown",
            condition=record.condition or "general health assessment",
        )
        if record.is_alert:
            text += " The latest readings raised an alert; confirm the patient is safe first."
        if follow_up_items:
            text += " Follow up on: " + "; ".join(follow_up_items[:3]) + "."
        return _clip(text, self.triage_prompt_max_chars)


__all__ = ["TriageContextBuilder"]
