from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carecall.errors import DuplicateCallError
from carecall.models.tables import AppSettingRow, CallHistoryRow, PatientBatchRow, PatientPromptRow
from carecall.schemas import Batch, CallHistoryEntry, PatientPromptRecord
from carecall.store import RecordStore

logger = structlog.get_logger(__name__)


def _ensure_timezone(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _to_batch(row: PatientBatchRow) -> Batch:
    return Batch(
        batch_id=row.batch_id,
        file_name=row.file_name,
        created_at=_ensure_timezone(row.created_at),
        total_patients=row.total_patients or 0,
        processed_patients=row.processed_patients or 0,
    )


def _to_record(row: PatientPromptRow) -> PatientPromptRecord:
    return PatientPromptRecord(
        batch_id=row.batch_id,
        patient_id=row.patient_id,
        name=row.name,
        age=row.age,
        condition=row.condition,
        prompt=row.prompt or "",
        reasoning=row.reasoning,
        is_alert=row.is_alert,
        health_status=row.health_status,
        template=row.template,
        raw_data=row.raw_data or {},
        created_at=_ensure_timezone(row.created_at),
        updated_at=_ensure_timezone(row.updated_at),
    )


def _to_entry(row: CallHistoryRow) -> CallHistoryEntry:
    return CallHistoryEntry(
        call_id=row.call_id,
        patient_id=row.patient_id,
        patient_name=row.patient_name,
        phone_number=row.phone_number or "",
        duration=row.duration or 0,
        status=row.status,
        transcript=row.transcript,
        summary=row.summary,
        key_points=list(row.key_points or []),
        health_concerns=list(row.health_concerns or []),
        follow_up_items=list(row.follow_up_items or []),
        created_at=_ensure_timezone(row.created_at),
    )


class SqlRecordStore(RecordStore):
    """Record store backed by SQLAlchemy's asyncio ORM.

    Each operation opens its own session so concurrent requests never share
    one; there is no transaction spanning several calls.
    """

    name = "sql"

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def list_batches(self) -> list[Batch]:
        async with self._session_maker() as session:
            rows = (await session.scalars(select(PatientBatchRow))).all()
        return [_to_batch(row) for row in rows]

    async def get_batch(self, batch_id: str) -> Optional[Batch]:
        async with self._session_maker() as session:
            row = await session.get(PatientBatchRow, batch_id)
        return _to_batch(row) if row else None

    async def save_batch(self, batch: Batch) -> Batch:
        async with self._session_maker() as session:
            row = await session.get(PatientBatchRow, batch.batch_id)
            if row is None:
                row = PatientBatchRow(batch_id=batch.batch_id, created_at=batch.created_at)
                session.add(row)
            row.file_name = batch.file_name
            row.total_patients = batch.total_patients
            row.processed_patients = batch.processed_patients
            await session.commit()
        return batch

    async def list_patient_prompts(self, batch_id: str) -> list[PatientPromptRecord]:
        stmt = (
            select(PatientPromptRow)
            .where(PatientPromptRow.batch_id == batch_id)
            .order_by(PatientPromptRow.id)
        )
        async with self._session_maker() as session:
            rows = (await session.scalars(stmt)).all()
        return [_to_record(row) for row in rows]

    async def get_patient_prompt(self, batch_id: str, patient_id: str) -> Optional[PatientPromptRecord]:
        async with self._session_maker() as session:
            row = await self._find_prompt(session, batch_id, patient_id)
        return _to_record(row) if row else None

    async def upsert_patient_prompt(self, record: PatientPromptRecord) -> PatientPromptRecord:
        async with self._session_maker() as session:
            row = await self._find_prompt(session, record.batch_id, record.patient_id)
            if row is None:
                row = PatientPromptRow(batch_id=record.batch_id, patient_id=record.patient_id)
                session.add(row)
            for field in (
                "name",
                "age",
                "condition",
                "prompt",
                "reasoning",
                "is_alert",
                "health_status",
                "template",
                "raw_data",
                "created_at",
                "updated_at",
            ):
                setattr(row, field, getattr(record, field))
            await session.commit()
        return record

    async def list_call_history(self, patient_id: str) -> list[CallHistoryEntry]:
        stmt = (
            select(CallHistoryRow)
            .where(CallHistoryRow.patient_id == patient_id)
            .order_by(CallHistoryRow.created_at, CallHistoryRow.call_id)
        )
        async with self._session_maker() as session:
            rows = (await session.scalars(stmt)).all()
        return [_to_entry(row) for row in rows]

    async def append_call_history(self, entry: CallHistoryEntry) -> CallHistoryEntry:
        row = CallHistoryRow(**entry.model_dump())
        async with self._session_maker() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateCallError(f"Call {entry.call_id} is already recorded") from exc
        logger.info("call_history_appended", call_id=entry.call_id, patient_id=entry.patient_id)
        return entry

    async def get_setting(self, key: str) -> Optional[str]:
        async with self._session_maker() as session:
            row = await session.get(AppSettingRow, key)
        return row.value if row else None

    async def put_setting(self, key: str, value: str) -> str:
        async with self._session_maker() as session:
            row = await session.get(AppSettingRow, key)
            if row is None:
                row = AppSettingRow(key=key)
                session.add(row)
            row.value = value
            row.updated_at = datetime.now(timezone.utc)
            await session.commit()
        logger.info("setting_saved", key=key, length=len(value))
        return value

    async def delete_setting(self, key: str) -> None:
        async with self._session_maker() as session:
            row = await session.get(AppSettingRow, key)
            if row is not None:
                await session.delete(row)
                await session.commit()

    async def ping(self) -> bool:
        async with self._session_maker() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def _find_prompt(
        self, session: AsyncSession, batch_id: str, patient_id: str
    ) -> Optional[PatientPromptRow]:
        stmt = select(PatientPromptRow).where(
            PatientPromptRow.batch_id == batch_id,
            PatientPromptRow.patient_id == patient_id,
        )
        return (await session.scalars(stmt)).first()


__all__ = ["SqlRecordStore"]
