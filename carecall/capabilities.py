from typing import Any, Optional, Protocol

from carecall.schemas import CallSummary, GenerationInput, GenerationResult


class TextGenerator(Protocol):
    async def generate(self, generation_input: GenerationInput) -> GenerationResult: ...

    async def summarize_call(self, transcript: str, provider_summary: Optional[str] = None) -> CallSummary: ...


class VoiceCaller(Protocol):
    async def place_call(
        self,
        patient_id: str,
        phone_number: str,
        system_prompt: str,
        triage_prompt: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str: ...


class SmsSender(Protocol):
    async def send(self, to_number: str, body: str) -> str: ...


__all__ = ["TextGenerator", "VoiceCaller", "SmsSender"]
