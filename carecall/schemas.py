from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CallStatus = Literal["completed", "failed", "no-answer", "in-progress"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Batch(CamelModel):
    batch_id: str
    created_at: datetime
    file_name: str = "unknown"
    total_patients: int = 0
    processed_patients: int = 0


class PatientPromptRecord(CamelModel):
    batch_id: str
    patient_id: str
    name: str
    age: int
    condition: str
    prompt: str = ""
    reasoning: Optional[str] = None
    is_alert: Optional[bool] = None
    health_status: Optional[str] = None
    template: Optional[str] = None
    raw_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: Optional[datetime] = None

    @property
    def conditions(self) -> list[str]:
        return [part.strip() for part in self.condition.split(",") if part.strip()]


class CallHistoryEntry(CamelModel):
    call_id: str
    patient_id: str
    patient_name: str
    phone_number: str = ""
    duration: int = 0
    status: CallStatus
    transcript: Optional[str] = None
    summary: Optional[str] = None
    key_points: list[str] = Field(default_factory=list)
    health_concerns: list[str] = Field(default_factory=list)
    follow_up_items: list[str] = Field(default_factory=list)
    created_at: datetime


class AggregatedCallContext(CamelModel):
    has_history: bool = False
    total_calls: int = 0
    recent_calls_count: int = 0
    key_points: list[str] = Field(default_factory=list)
    health_concerns: list[str] = Field(default_factory=list)
    follow_up_items: list[str] = Field(default_factory=list)
    context_text: str = ""


class GenerationInput(CamelModel):
    patient_id: str
    name: str
    age: int
    conditions: list[str]
    raw_fields: dict[str, Any] = Field(default_factory=dict)
    call_context: Optional[AggregatedCallContext] = None
    system_prompt: Optional[str] = None


class GeneratedPayload(CamelModel):
    """Shape the text-generation capability must answer with."""

    prompt: str = Field(..., min_length=1)
    reasoning: Optional[str] = None
    is_alert: Optional[bool] = None
    health_status: Optional[str] = None


class GeneratedOk(BaseModel):
    status: Literal["ok"] = "ok"
    prompt: str
    reasoning: Optional[str] = None
    is_alert: Optional[bool] = None
    health_status: Optional[str] = None


class GeneratedError(BaseModel):
    status: Literal["error"] = "error"
    kind: str
    message: str


GenerationResult = Union[GeneratedOk, GeneratedError]


class CallSummary(CamelModel):
    summary: str = "Call completed successfully"
    key_points: list[str] = Field(default_factory=list)
    health_concerns: list[str] = Field(default_factory=list)
    follow_up_items: list[str] = Field(default_factory=list)


class PromptResult(CamelModel):
    batch_id: str
    patient_id: str
    success: bool
    prompt: Optional[str] = None
    reasoning: Optional[str] = None
    is_alert: Optional[bool] = None
    health_status: Optional[str] = None
    updated_at: Optional[datetime] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


class TriageContext(CamelModel):
    patient_id: str
    has_context: bool
    has_call_history: bool
    batch_id: Optional[str] = None
    name: Optional[str] = None
    age: Optional[int] = None
    condition: Optional[str] = None
    system_prompt: str = ""
    triage_prompt: str = ""
    system_prompt_length: int = 0
    triage_prompt_length: int = 0
    context_length: int = 0
    recent_calls_count: int = 0
    total_calls: int = 0


# --- HTTP request/response bodies -------------------------------------------


class PatientRow(CamelModel):
    patient_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    age: int = 0
    condition: str = "Unknown"
    is_alert: Optional[bool] = None
    health_status: Optional[str] = None
    template: Optional[str] = None
    raw_data: dict[str, Any] = Field(default_factory=dict)


class IngestBatchRequest(CamelModel):
    file_name: str = "unknown"
    patients: list[PatientRow] = Field(..., min_length=1)


class EffectiveBatchResponse(CamelModel):
    batch: Batch
    patient_count: int
    prompts: list[PatientPromptRecord]


class BatchRegenerationResponse(CamelModel):
    batch_id: str
    regenerated: int
    total: int
    results: list[PromptResult]


class TriageCallRequest(CamelModel):
    patient_id: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    batch_id: Optional[str] = None


class TriageCallResponse(CamelModel):
    call_id: str
    patient_id: str
    batch_id: Optional[str] = None
    phone_number: str
    has_call_history: bool
    system_prompt_length: int


class SendAlertRequest(CamelModel):
    batch_id: str = Field(..., min_length=1)
    patient_id: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)


class SendAlertResponse(CamelModel):
    delivery_id: str
    patient_name: str


class WebhookAck(CamelModel):
    success: bool = True
    stored: bool = False
    call_id: Optional[str] = None


class SystemPromptUpdate(CamelModel):
    prompt: str = Field(..., min_length=1, max_length=10000)


class VoiceAgentTemplateUpdate(CamelModel):
    template: str = Field(..., min_length=1, max_length=20000)


class PromptSettingResponse(CamelModel):
    value: str
    default_value: str
    source: Literal["stored", "default"]


class PatientAlert(CamelModel):
    batch_id: str
    patient_id: str
    name: str
    age: int
    condition: str
    health_status: Optional[str] = None
    prompt: str
    reasoning: Optional[str] = None


class AlertsResponse(CamelModel):
    batch_id: Optional[str] = None
    alerts: list[PatientAlert]
