import argparse
import asyncio
import json
from typing import Optional

from carecall.batch_resolver import BatchResolver
from carecall.db import async_session_maker, create_tables
from carecall.errors import CapabilityError, NotFoundError
from carecall.logging_config import configure_logging
from carecall.openai_client import OpenAIClient
from carecall.prompt_engine import GenerateOptions, PromptEngine
from carecall.sql_store import SqlRecordStore
from carecall.store import RecordStore
from carecall.triage import TriageContextBuilder


def _store() -> RecordStore:
    return SqlRecordStore(async_session_maker)


async def init_db() -> None:
    await create_tables()
    print("Tables created")


async def resolve(store: RecordStore) -> None:
    resolved = await BatchResolver(store).resolve()
    if resolved is None:
        raise SystemExit("No batches found")
    print(f"{resolved.batch_id}\t{len(resolved.records)} patients")


async def regenerate(
    store: RecordStore,
    batch_id: Optional[str],
    patient_id: Optional[str],
    include_call_history: bool,
) -> None:
    if batch_id is None:
        batch_id = await BatchResolver(store).resolve_batch_id()
        if batch_id is None:
            raise SystemExit("No batches found")

    engine = PromptEngine(store, OpenAIClient())
    options = GenerateOptions(include_call_history=include_call_history)

    if patient_id:
        try:
            await engine.regenerate_one(batch_id, patient_id, options)
        except (NotFoundError, CapabilityError) as exc:
            raise SystemExit(str(exc)) from exc
        print(f"Regenerated prompt for {patient_id} in {batch_id}")
        return

    try:
        results = await engine.regenerate_batch(batch_id, options)
    except NotFoundError as exc:
        raise SystemExit(str(exc)) from exc
    failed = [result for result in results if not result.success]
    print(f"Regenerated {len(results) - len(failed)} of {len(results)} prompts in {batch_id}")
    for result in failed:
        print(f"  failed {result.patient_id}: {result.error}")


async def context(store: RecordStore, patient_id: str, batch_id: Optional[str]) -> None:
    triage = await TriageContextBuilder(store).build(patient_id, batch_id)
    print(json.dumps(triage.model_dump(by_alias=True), indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage patient batches and prompts")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("resolve", help="Print the effective batch")

    regen_parser = subparsers.add_parser("regenerate", help="Regenerate caretaker prompts")
    regen_parser.add_argument(
        "--batch",
        help="Batch to regenerate; defaults to the effective batch",
    )
    regen_parser.add_argument(
        "--patient",
        help="Only regenerate this patient's prompt",
    )
    regen_parser.add_argument(
        "--with-call-history",
        action="store_true",
        help="Feed the patient's call history into generation",
    )

    context_parser = subparsers.add_parser("context", help="Print a patient's triage context")
    context_parser.add_argument("patient", help="Patient identifier")
    context_parser.add_argument("--batch", help="Prefer this batch when locating the patient")

    args = parser.parse_args()
    configure_logging(fmt="console")

    if args.command == "init-db":
        asyncio.run(init_db())
    elif args.command == "resolve":
        asyncio.run(resolve(_store()))
    elif args.command == "regenerate":
        asyncio.run(regenerate(_store(), args.batch, args.patient, args.with_call_history))
    elif args.command == "context":
        asyncio.run(context(_store(), args.patient, args.batch))


if __name__ == "__main__":
    main()
