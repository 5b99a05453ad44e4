"""Record store contract shared by the resolver, aggregator and prompt engine."""

from abc import ABC, abstractmethod
from typing import Optional

from carecall.schemas import Batch, CallHistoryEntry, PatientPromptRecord


class RecordStore(ABC):
    """CRUD interface over batches, patient prompts and call history.

    Every method is a suspension point. Implementations make no promise of
    linearizability across calls; a newly written row only has to become
    visible eventually.
    """

    name: str = "base"

    @abstractmethod
    async def list_batches(self) -> list[Batch]:
        """Return every batch in no particular order."""

    @abstractmethod
    async def get_batch(self, batch_id: str) -> Optional[Batch]:
        """Return the batch identified by *batch_id* or ``None``."""

    @abstractmethod
    async def save_batch(self, batch: Batch) -> Batch:
        """Insert a batch row, or rewrite the bookkeeping of an existing one."""

    @abstractmethod
    async def list_patient_prompts(self, batch_id: str) -> list[PatientPromptRecord]:
        """Return the records of *batch_id*; an unknown batch yields ``[]``."""

    @abstractmethod
    async def get_patient_prompt(self, batch_id: str, patient_id: str) -> Optional[PatientPromptRecord]:
        """Return the record keyed by ``(batch_id, patient_id)`` or ``None``."""

    @abstractmethod
    async def upsert_patient_prompt(self, record: PatientPromptRecord) -> PatientPromptRecord:
        """Insert or fully replace the record keyed by ``(batch_id, patient_id)``."""

    @abstractmethod
    async def list_call_history(self, patient_id: str) -> list[CallHistoryEntry]:
        """Return every call-history entry of *patient_id*, oldest first."""

    @abstractmethod
    async def append_call_history(self, entry: CallHistoryEntry) -> CallHistoryEntry:
        """Append *entry*.

        Should raise :class:`~carecall.errors.DuplicateCallError` when the call
        id is already stored; entries are never edited once written.
        """

    @abstractmethod
    async def get_setting(self, key: str) -> Optional[str]:
        """Return the stored value of setting *key* or ``None``."""

    @abstractmethod
    async def put_setting(self, key: str, value: str) -> str:
        """Store *value* under *key*, replacing any previous value."""

    @abstractmethod
    async def delete_setting(self, key: str) -> None:
        """Forget *key*; readers fall back to the built-in default."""

    async def ping(self) -> bool:
        """Return ``True`` when the backing store answers."""

        await self.list_batches()
        return True


__all__ = ["RecordStore"]
