from typing import Optional

from carecall.errors import DuplicateCallError
from carecall.schemas import Batch, CallHistoryEntry, PatientPromptRecord
from carecall.store import RecordStore


class InMemoryRecordStore(RecordStore):
    """Process-local store; backs the test suite.

    Values are copied on the way in and out so callers never share mutable
    state with the store.
    """

    name = "memory"

    def __init__(self) -> None:
        self._batches: dict[str, Batch] = {}
        self._prompts: dict[tuple[str, str], PatientPromptRecord] = {}
        self._calls: dict[str, CallHistoryEntry] = {}
        self._settings: dict[str, str] = {}
        self.reads: list[tuple[str, str]] = []

    async def list_batches(self) -> list[Batch]:
        self.reads.append(("list_batches", ""))
        return [batch.model_copy() for batch in self._batches.values()]

    async def get_batch(self, batch_id: str) -> Optional[Batch]:
        self.reads.append(("get_batch", batch_id))
        batch = self._batches.get(batch_id)
        return batch.model_copy() if batch else None

    async def save_batch(self, batch: Batch) -> Batch:
        self._batches[batch.batch_id] = batch.model_copy()
        return batch.model_copy()

    async def list_patient_prompts(self, batch_id: str) -> list[PatientPromptRecord]:
        self.reads.append(("list_patient_prompts", batch_id))
        return [
            record.model_copy(deep=True)
            for (record_batch, _), record in self._prompts.items()
            if record_batch == batch_id
        ]

    async def get_patient_prompt(self, batch_id: str, patient_id: str) -> Optional[PatientPromptRecord]:
        record = self._prompts.get((batch_id, patient_id))
        return record.model_copy(deep=True) if record else None

    async def upsert_patient_prompt(self, record: PatientPromptRecord) -> PatientPromptRecord:
        self._prompts[(record.batch_id, record.patient_id)] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def list_call_history(self, patient_id: str) -> list[CallHistoryEntry]:
        entries = [entry for entry in self._calls.values() if entry.patient_id == patient_id]
        entries.sort(key=lambda entry: (entry.created_at, entry.call_id))
        return [entry.model_copy(deep=True) for entry in entries]

    async def append_call_history(self, entry: CallHistoryEntry) -> CallHistoryEntry:
        if entry.call_id in self._calls:
            raise DuplicateCallError(f"Call {entry.call_id} is already recorded")
        self._calls[entry.call_id] = entry.model_copy(deep=True)
        return entry.model_copy(deep=True)

    async def get_setting(self, key: str) -> Optional[str]:
        return self._settings.get(key)

    async def put_setting(self, key: str, value: str) -> str:
        self._settings[key] = value
        return value

    async def delete_setting(self, key: str) -> None:
        self._settings.pop(key, None)

    async def delete_batch(self, batch_id: str) -> None:
        """Drop a batch and its records."""

        self._batches.pop(batch_id, None)
        for key in [key for key in self._prompts if key[0] == batch_id]:
            del self._prompts[key]


__all__ = ["InMemoryRecordStore"]
