"""Pick the batch a read or regeneration should operate against.

Creating a batch row and writing its patient records are separate store
operations, so the newest batch can briefly exist with no records. The
resolver prefers the newest *populated* batch and only falls back to an
empty one when nothing is populated yet.
"""

from dataclasses import dataclass, field
from typing import Optional

import structlog

from carecall.errors import InconsistentReadError
from carecall.schemas import Batch, PatientPromptRecord
from carecall.store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolvedBatch:
    """A batch together with the records read for it in the same pass."""

    batch: Batch
    records: list[PatientPromptRecord] = field(default_factory=list)

    @property
    def batch_id(self) -> str:
        return self.batch.batch_id

    @property
    def is_populated(self) -> bool:
        return bool(self.records)


def _newest_first(batches: list[Batch]) -> list[Batch]:
    return sorted(batches, key=lambda batch: (batch.created_at, batch.batch_id), reverse=True)


class BatchResolver:
    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def resolve(self) -> Optional[ResolvedBatch]:
        batches = await self._store.list_batches()
        if not batches:
            logger.info("batch_resolution_empty")
            return None

        ordered = _newest_first(batches)
        newest = ordered[0]

        records = await self._store.list_patient_prompts(newest.batch_id)
        if records:
            return ResolvedBatch(newest, records)

        for candidate in ordered[1:]:
            records = await self._store.list_patient_prompts(candidate.batch_id)
            if records:
                logger.info(
                    "batch_resolution_skipped_unpopulated",
                    newest_batch_id=newest.batch_id,
                    batch_id=candidate.batch_id,
                    patient_count=len(records),
                )
                return ResolvedBatch(candidate, records)

        # Nothing populated yet; the newest batch still has to exist.
        if await self._store.get_batch(newest.batch_id) is None:
            raise InconsistentReadError(
                f"Batch {newest.batch_id} disappeared while it was being resolved"
            )
        logger.info("batch_resolution_unpopulated_fallback", batch_id=newest.batch_id)
        return ResolvedBatch(newest, [])

    async def resolve_batch_id(self) -> Optional[str]:
        resolved = await self.resolve()
        return resolved.batch_id if resolved else None


__all__ = ["BatchResolver", "ResolvedBatch"]
