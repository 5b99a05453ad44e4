import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

import structlog
from fastapi import Body, Depends, FastAPI, HTTPException, Query

from carecall import config
from carecall.batch_resolver import BatchResolver
from carecall.call_history import CallHistoryAggregator
from carecall.capabilities import SmsSender, TextGenerator, VoiceCaller
from carecall.db import async_session_maker
from carecall.errors import CapabilityError, InconsistentReadError, NotFoundError
from carecall.logging_config import configure_logging
from carecall.openai_client import OpenAIClient
from carecall.prompt_engine import GenerateOptions, PromptEngine
from carecall.prompt_settings import SYSTEM_PROMPT_KEY, VOICE_AGENT_TEMPLATE_KEY, PromptSettings, SettingValue
from carecall.schemas import (
    AggregatedCallContext,
    AlertsResponse,
    Batch,
    BatchRegenerationResponse,
    CallHistoryEntry,
    EffectiveBatchResponse,
    IngestBatchRequest,
    PatientAlert,
    PatientPromptRecord,
    PromptResult,
    PromptSettingResponse,
    SendAlertRequest,
    SendAlertResponse,
    SystemPromptUpdate,
    TriageCallRequest,
    TriageCallResponse,
    TriageContext,
    VoiceAgentTemplateUpdate,
    WebhookAck,
)
from carecall.sms_client import TwilioClient
from carecall.sql_store import SqlRecordStore
from carecall.store import RecordStore
from carecall.triage import TriageContextBuilder
from carecall.voice_client import VapiClient, format_phone_number_e164
from carecall.webhook import CallReportRecorder

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title="CareCall")


@lru_cache(maxsize=1)
def get_store() -> RecordStore:
    return SqlRecordStore(async_session_maker)


@lru_cache(maxsize=1)
def get_openai_client() -> TextGenerator:
    return OpenAIClient()


@lru_cache(maxsize=1)
def get_voice_client() -> VoiceCaller:
    return VapiClient()


@lru_cache(maxsize=1)
def get_sms_client() -> SmsSender:
    return TwilioClient()


def get_resolver(store: RecordStore = Depends(get_store)) -> BatchResolver:
    return BatchResolver(store)


def get_aggregator(store: RecordStore = Depends(get_store)) -> CallHistoryAggregator:
    return CallHistoryAggregator(store)


def get_prompt_settings(store: RecordStore = Depends(get_store)) -> PromptSettings:
    return PromptSettings(store)


def get_prompt_engine(
    store: RecordStore = Depends(get_store),
    generator: TextGenerator = Depends(get_openai_client),
    settings: PromptSettings = Depends(get_prompt_settings),
) -> PromptEngine:
    return PromptEngine(store, generator, settings=settings)


def get_triage_builder(
    store: RecordStore = Depends(get_store),
    settings: PromptSettings = Depends(get_prompt_settings),
) -> TriageContextBuilder:
    return TriageContextBuilder(store, settings=settings)


def get_call_recorder(
    store: RecordStore = Depends(get_store),
    generator: TextGenerator = Depends(get_openai_client),
) -> CallReportRecorder:
    return CallReportRecorder(store, generator)


@app.get("/api/health")
async def health(store: RecordStore = Depends(get_store)):
    try:
        database = "ok" if await store.ping() else "unavailable"
    except Exception as exc:  # pragma: no cover - depends on the database driver
        logger.warning("health_database_unreachable", error=str(exc))
        database = "unavailable"
    return {
        "status": "ok",
        "database": database,
        "services": {
            "openai": bool(os.getenv("OPENAI_API_KEY")),
            "vapi": bool(config.vapi_api_key()),
            "twilio": config.twilio_configured(),
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/batches", response_model=list[Batch])
async def list_batches(store: RecordStore = Depends(get_store)):
    batches = await store.list_batches()
    return sorted(batches, key=lambda batch: (batch.created_at, batch.batch_id), reverse=True)


@app.post("/api/batches", response_model=Batch, status_code=201)
async def ingest_batch(
    req: IngestBatchRequest,
    include_call_history: bool = Query(False, alias="includeCallHistory"),
    engine: PromptEngine = Depends(get_prompt_engine),
):
    options = GenerateOptions(include_call_history=include_call_history)
    return await engine.ingest_batch(req.patients, file_name=req.file_name, options=options)


@app.get("/api/batches/effective", response_model=EffectiveBatchResponse)
async def effective_batch(resolver: BatchResolver = Depends(get_resolver)):
    try:
        resolved = await resolver.resolve()
    except InconsistentReadError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if resolved is None:
        raise HTTPException(status_code=404, detail="No batches found in the system")
    return EffectiveBatchResponse(
        batch=resolved.batch,
        patient_count=len(resolved.records),
        prompts=resolved.records,
    )


@app.get("/api/patient-prompts/{batch_id}", response_model=list[PatientPromptRecord])
async def list_patient_prompts(batch_id: str, store: RecordStore = Depends(get_store)):
    if await store.get_batch(batch_id) is None:
        raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found")
    return await store.list_patient_prompts(batch_id)


@app.post("/api/patient-prompts/{batch_id}/regenerate/{patient_id}", response_model=PromptResult)
async def regenerate_prompt(
    batch_id: str,
    patient_id: str,
    include_call_history: bool = Query(False, alias="includeCallHistory"),
    system_prompt: Optional[str] = Body(None, embed=True, alias="systemPrompt"),
    engine: PromptEngine = Depends(get_prompt_engine),
):
    options = GenerateOptions(include_call_history=include_call_history, system_prompt=system_prompt)
    try:
        return await engine.regenerate_one(batch_id, patient_id, options)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except CapabilityError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@app.post("/api/patient-prompts/{batch_id}/regenerate", response_model=BatchRegenerationResponse)
async def regenerate_batch(
    batch_id: str,
    include_call_history: bool = Query(False, alias="includeCallHistory"),
    system_prompt: Optional[str] = Body(None, embed=True, alias="systemPrompt"),
    engine: PromptEngine = Depends(get_prompt_engine),
):
    options = GenerateOptions(include_call_history=include_call_history, system_prompt=system_prompt)
    try:
        results = await engine.regenerate_batch(batch_id, options)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return BatchRegenerationResponse(
        batch_id=batch_id,
        regenerated=sum(1 for result in results if result.success),
        total=len(results),
        results=results,
    )


@app.get("/api/call-history/{patient_id}", response_model=list[CallHistoryEntry])
async def call_history(patient_id: str, store: RecordStore = Depends(get_store)):
    return await store.list_call_history(patient_id)


@app.get("/api/call-history/{patient_id}/context", response_model=AggregatedCallContext)
async def call_history_context(
    patient_id: str, aggregator: CallHistoryAggregator = Depends(get_aggregator)
):
    return await aggregator.aggregate(patient_id)


@app.get("/api/triage/context", response_model=TriageContext)
async def triage_context(
    patient_id: str = Query(..., alias="patientId", min_length=1),
    batch_id: Optional[str] = Query(None, alias="batchId"),
    builder: TriageContextBuilder = Depends(get_triage_builder),
):
    try:
        return await builder.build(patient_id, batch_id)
    except InconsistentReadError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@app.post("/api/triage/call", response_model=TriageCallResponse)
async def triage_call(
    req: TriageCallRequest,
    builder: TriageContextBuilder = Depends(get_triage_builder),
    voice_client: VoiceCaller = Depends(get_voice_client),
):
    try:
        phone_number = format_phone_number_e164(req.phone_number)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        context = await builder.build(req.patient_id, req.batch_id)
    except InconsistentReadError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if not context.has_context:
        raise HTTPException(
            status_code=404,
            detail=f"Patient not found: {req.patient_id}. No triage data available for this patient.",
        )

    try:
        call_id = await voice_client.place_call(
            req.patient_id,
            phone_number,
            context.system_prompt,
            context.triage_prompt,
            metadata={"patientName": context.name, "batchId": context.batch_id},
        )
    except CapabilityError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    return TriageCallResponse(
        call_id=call_id,
        patient_id=req.patient_id,
        batch_id=context.batch_id,
        phone_number=phone_number,
        has_call_history=context.has_call_history,
        system_prompt_length=context.system_prompt_length,
    )


@app.post("/api/triage/send-alert", response_model=SendAlertResponse)
async def send_alert(
    req: SendAlertRequest,
    store: RecordStore = Depends(get_store),
    sms_client: SmsSender = Depends(get_sms_client),
):
    record = await store.get_patient_prompt(req.batch_id, req.patient_id)
    if record is None or not record.prompt.strip():
        raise HTTPException(
            status_code=404,
            detail=f"No prompt found for patient {req.patient_id} in batch {req.batch_id}",
        )
    try:
        delivery_id = await sms_client.send(req.phone_number, record.prompt)
    except CapabilityError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return SendAlertResponse(delivery_id=delivery_id, patient_name=record.name)


@app.post("/api/vapi/webhook", response_model=WebhookAck)
async def vapi_webhook(
    payload: dict[str, Any] = Body(...),
    recorder: CallReportRecorder = Depends(get_call_recorder),
):
    entry = await recorder.record(payload)
    return WebhookAck(stored=entry is not None, call_id=entry.call_id if entry else None)


@app.get("/api/triage/alerts", response_model=AlertsResponse)
async def triage_alerts(
    batch_id: Optional[str] = Query(None, alias="batchId"),
    store: RecordStore = Depends(get_store),
    resolver: BatchResolver = Depends(get_resolver),
):
    if batch_id:
        if await store.get_batch(batch_id) is None:
            raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found")
        records = await store.list_patient_prompts(batch_id)
    else:
        try:
            resolved = await resolver.resolve()
        except InconsistentReadError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        if resolved is None:
            return AlertsResponse(alerts=[])
        batch_id, records = resolved.batch_id, resolved.records

    alerts = [
        PatientAlert(
            batch_id=record.batch_id,
            patient_id=record.patient_id,
            name=record.name,
            age=record.age,
            condition=record.condition,
            health_status=record.health_status,
            prompt=record.prompt,
            reasoning=record.reasoning,
        )
        for record in records
        if record.is_alert
    ]
    return AlertsResponse(batch_id=batch_id, alerts=alerts)


def _setting_response(setting: SettingValue) -> PromptSettingResponse:
    return PromptSettingResponse(value=setting.value, default_value=setting.default, source=setting.source)


@app.get("/api/system-prompt", response_model=PromptSettingResponse)
async def get_system_prompt(settings: PromptSettings = Depends(get_prompt_settings)):
    return _setting_response(await settings.read(SYSTEM_PROMPT_KEY))


@app.post("/api/system-prompt", response_model=PromptSettingResponse)
async def update_system_prompt(
    req: SystemPromptUpdate, settings: PromptSettings = Depends(get_prompt_settings)
):
    return _setting_response(await settings.update(SYSTEM_PROMPT_KEY, req.prompt))


@app.post("/api/system-prompt/reset", response_model=PromptSettingResponse)
async def reset_system_prompt(settings: PromptSettings = Depends(get_prompt_settings)):
    return _setting_response(await settings.reset(SYSTEM_PROMPT_KEY))


@app.get("/api/voice-agent-template", response_model=PromptSettingResponse)
async def get_voice_agent_template(settings: PromptSettings = Depends(get_prompt_settings)):
    return _setting_response(await settings.read(VOICE_AGENT_TEMPLATE_KEY))


@app.post("/api/voice-agent-template", response_model=PromptSettingResponse)
async def update_voice_agent_template(
    req: VoiceAgentTemplateUpdate, settings: PromptSettings = Depends(get_prompt_settings)
):
    return _setting_response(await settings.update(VOICE_AGENT_TEMPLATE_KEY, req.template))


@app.post("/api/voice-agent-template/reset", response_model=PromptSettingResponse)
async def reset_voice_agent_template(settings: PromptSettings = Depends(get_prompt_settings)):
    return _setting_response(await settings.reset(VOICE_AGENT_TEMPLATE_KEY))
