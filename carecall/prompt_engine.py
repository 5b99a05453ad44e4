"""Generate and regenerate caretaker prompts for patient records.

Each record is written independently: a whole-batch regeneration has no
batch-wide transaction, so a reader may see old and new prompts side by
side while it runs. Two regenerations of the same ``(batch_id, patient_id)``
are not serialized here; the last write wins.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

import structlog

from carecall.call_history import CallHistoryAggregator
from carecall.capabilities import TextGenerator
from carecall.errors import CapabilityError, NotFoundError
from carecall.prompt_settings import PromptSettings
from carecall.prompts import fallback_prompt
from carecall.schemas import (
    Batch,
    GeneratedError,
    GeneratedOk,
    GenerationInput,
    PatientPromptRecord,
    PatientRow,
    PromptResult,
)
from carecall.store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GenerateOptions:
    include_call_history: bool = False
    system_prompt: Optional[str] = None


DEFAULT_OPTIONS = GenerateOptions()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_batch_id(now: datetime) -> str:
    return f"batch_{now:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:6]}"


class PromptEngine:
    def __init__(
        self,
        store: RecordStore,
        generator: TextGenerator,
        aggregator: Optional[CallHistoryAggregator] = None,
        settings: Optional[PromptSettings] = None,
    ) -> None:
        self._store = store
        self._generator = generator
        self._aggregator = aggregator or CallHistoryAggregator(store)
        self._settings = settings or PromptSettings(store)

    async def generate(
        self, record: PatientPromptRecord, options: GenerateOptions = DEFAULT_OPTIONS
    ) -> PromptResult:
        """Generate a prompt for ``record`` and persist it.

        Raises :class:`CapabilityError` when generation fails; the stored
        record is not touched in that case.
        """

        generated = await self._request(record, options)
        updated = record.model_copy(update=self._generated_fields(record, generated))
        updated.updated_at = _utcnow()
        await self._store.upsert_patient_prompt(updated)

        logger.info(
            "prompt_generated",
            batch_id=record.batch_id,
            patient_id=record.patient_id,
            with_call_history=options.include_call_history,
        )
        return PromptResult(
            batch_id=updated.batch_id,
            patient_id=updated.patient_id,
            success=True,
            prompt=updated.prompt,
            reasoning=updated.reasoning,
            is_alert=updated.is_alert,
            health_status=updated.health_status,
            updated_at=updated.updated_at,
        )

    async def regenerate_one(
        self, batch_id: str, patient_id: str, options: GenerateOptions = DEFAULT_OPTIONS
    ) -> PromptResult:
        record = await self._store.get_patient_prompt(batch_id, patient_id)
        if record is None:
            raise NotFoundError(f"Patient prompt not found for patient {patient_id} in batch {batch_id}")
        return await self.generate(record, options)

    async def regenerate_batch(
        self, batch_id: str, options: GenerateOptions = DEFAULT_OPTIONS
    ) -> list[PromptResult]:
        records = await self._store.list_patient_prompts(batch_id)
        if not records and await self._store.get_batch(batch_id) is None:
            raise NotFoundError(f"Batch {batch_id} not found")

        results: list[PromptResult] = []
        for record in records:
            try:
                results.append(await self.generate(record, options))
            except CapabilityError as exc:
                logger.warning(
                    "prompt_regeneration_failed",
                    batch_id=batch_id,
                    patient_id=record.patient_id,
                    kind=exc.kind,
                    error=str(exc),
                )
                results.append(
                    PromptResult(
                        batch_id=batch_id,
                        patient_id=record.patient_id,
                        success=False,
                        error=str(exc),
                        error_kind=exc.kind,
                    )
                )

        succeeded = sum(1 for result in results if result.success)
        logger.info(
            "batch_regenerated",
            batch_id=batch_id,
            regenerated=succeeded,
            failed=len(results) - succeeded,
            total=len(results),
        )
        return results

    async def ingest_batch(
        self,
        rows: Sequence[PatientRow],
        file_name: str = "unknown",
        options: GenerateOptions = DEFAULT_OPTIONS,
    ) -> Batch:
        """Create a batch and populate one prompt record per patient.

        The batch row is written first and its records afterwards, so readers
        can observe it empty for a while. Rows sharing a patient id collapse
        to the last one. A failed generation stores the condition-based
        fallback prompt so no stored prompt is ever empty.
        """

        now = _utcnow()
        unique: dict[str, PatientRow] = {}
        for row in rows:
            patient_id = row.patient_id or f"P{uuid.uuid4().hex[:6]}"
            unique[patient_id] = row

        batch = Batch(
            batch_id=new_batch_id(now),
            created_at=now,
            file_name=file_name,
            total_patients=len(unique),
        )
        await self._store.save_batch(batch)
        logger.info("batch_created", batch_id=batch.batch_id, total_patients=len(unique))

        processed = 0
        for patient_id, row in unique.items():
            record = PatientPromptRecord(
                batch_id=batch.batch_id,
                patient_id=patient_id,
                name=row.name,
                age=row.age,
                condition=row.condition,
                is_alert=row.is_alert,
                health_status=row.health_status,
                template=row.template,
                raw_data=row.raw_data,
                created_at=now,
            )
            try:
                generated = await self._request(record, options)
                record = record.model_copy(update=self._generated_fields(record, generated))
            except CapabilityError as exc:
                logger.warning(
                    "prompt_ingestion_fallback",
                    batch_id=batch.batch_id,
                    patient_id=patient_id,
                    kind=exc.kind,
                )
                record.prompt = fallback_prompt(record.name, record.age, record.condition)
            await self._store.upsert_patient_prompt(record)
            processed += 1

        batch = batch.model_copy(update={"processed_patients": processed})
        await self._store.save_batch(batch)
        logger.info("batch_populated", batch_id=batch.batch_id, processed_patients=processed)
        return batch

    async def _request(self, record: PatientPromptRecord, options: GenerateOptions) -> GeneratedOk:
        call_context = None
        if options.include_call_history:
            call_context = await self._aggregator.aggregate(record.patient_id)

        generation_input = GenerationInput(
            patient_id=record.patient_id,
            name=record.name,
            age=record.age,
            conditions=record.conditions,
            raw_fields=record.raw_data,
            call_context=call_context,
            system_prompt=options.system_prompt or await self._settings.system_prompt(),
        )
        result = await self._generator.generate(generation_input)

        if isinstance(result, GeneratedError):
            raise CapabilityError(result.message, kind=result.kind)
        if not result.prompt.strip():
            raise CapabilityError("Generated prompt was empty", kind="malformed")
        return result

    def _generated_fields(self, record: PatientPromptRecord, generated: GeneratedOk) -> dict:
        return {
            "prompt": generated.prompt,
            "reasoning": generated.reasoning if generated.reasoning is not None else record.reasoning,
            "is_alert": generated.is_alert if generated.is_alert is not None else record.is_alert,
            "health_status": (
                generated.health_status if generated.health_status is not None else record.health_status
            ),
        }


__all__ = ["PromptEngine", "GenerateOptions", "new_batch_id"]
