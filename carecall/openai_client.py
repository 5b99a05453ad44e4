import asyncio
import json
import os
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from carecall.config import OPENAI_MODEL_PROMPT, OPENAI_MODEL_SUMMARY
from carecall.errors import CapabilityError
from carecall.prompts import CALL_SUMMARY_SYSTEM, CARETAKER_SYSTEM
from carecall.schemas import (
    CallSummary,
    GeneratedError,
    GeneratedOk,
    GeneratedPayload,
    GenerationInput,
    GenerationResult,
)

OPENAI_CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"

logger = structlog.get_logger(__name__)


def build_user_content(generation_input: GenerationInput) -> str:
    lines = [
        f"Patient: {generation_input.name}",
        f"Age: {generation_input.age}",
        "Conditions:",
    ]
    lines.extend(f"- {condition}" for condition in generation_input.conditions or ["Unknown"])
    if generation_input.raw_fields:
        lines.append("Monitoring data:")
        lines.append(json.dumps(generation_input.raw_fields, default=str, sort_keys=True))
    context = generation_input.call_context
    if context is not None and context.has_history:
        lines.append("")
        lines.append(context.context_text)
    return "\n".join(lines)


class OpenAIClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
    ) -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._transport = transport
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff_base = backoff_base

    async def generate(self, generation_input: GenerationInput) -> GenerationResult:
        messages = [
            {"role": "system", "content": generation_input.system_prompt or CARETAKER_SYSTEM},
            {"role": "user", "content": build_user_content(generation_input)},
        ]
        try:
            content = await self._complete(OPENAI_MODEL_PROMPT, messages, temperature=0.5, max_tokens=800)
            payload = GeneratedPayload.model_validate(self._parse_json(content))
        except CapabilityError as exc:
            logger.warning(
                "prompt_generation_failed",
                patient_id=generation_input.patient_id,
                kind=exc.kind,
                error=str(exc),
            )
            return GeneratedError(kind=exc.kind, message=str(exc))
        except ValidationError as exc:
            logger.warning("prompt_generation_malformed", patient_id=generation_input.patient_id)
            return GeneratedError(kind="malformed", message=f"Malformed generation output: {exc.error_count()} errors")

        return GeneratedOk(
            prompt=payload.prompt.strip(),
            reasoning=payload.reasoning,
            is_alert=payload.is_alert,
            health_status=payload.health_status,
        )

    async def summarize_call(self, transcript: str, provider_summary: Optional[str] = None) -> CallSummary:
        """Summarize a finished call; falls back to the provider's own summary on failure."""

        user_content = f"Transcript:\n{transcript}"
        if provider_summary:
            user_content += f"\n\nProvider summary: {provider_summary}"
        messages = [
            {"role": "system", "content": CALL_SUMMARY_SYSTEM},
            {"role": "user", "content": user_content},
        ]
        try:
            content = await self._complete(OPENAI_MODEL_SUMMARY, messages, temperature=0.3, max_tokens=600)
            return CallSummary.model_validate(self._parse_json(content))
        except (CapabilityError, ValidationError) as exc:
            logger.warning("call_summary_failed", error=str(exc))
            return CallSummary(summary=provider_summary or "Call completed - summary generation failed")

    async def _complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        if not self.api_key:
            raise CapabilityError("OPENAI_API_KEY is not configured", kind="auth")
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }
        data = await self._request_with_retry(headers=headers, payload=payload)

        if not isinstance(data, dict):
            raise CapabilityError("Unexpected OpenAI response format", kind="malformed")

        text = []
        for choice in data.get("choices", []):
            if not isinstance(choice, dict):
                continue
            message = choice.get("message")
            if isinstance(message, dict):
                content_piece = message.get("content")
                if content_piece:
                    text.append(str(content_piece))

        return "".join(text).strip()

    def _parse_json(self, content: str) -> Any:
        if not content:
            raise CapabilityError("Empty response from LLM", kind="malformed")
        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            raise CapabilityError("LLM response was not valid JSON", kind="malformed") from exc

    async def _request_with_retry(self, *, headers: dict[str, str], payload: dict):
        attempts = 0
        last_error: Exception | None = None
        while attempts <= self._max_retries:
            attempts += 1
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                try:
                    response = await client.post(
                        OPENAI_CHAT_COMPLETIONS_URL,
                        headers=headers,
                        json=payload,
                    )
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as exc:
                    last_error = exc
                    status_code = exc.response.status_code
                    if not self._should_retry(status_code) or attempts > self._max_retries:
                        raise CapabilityError(
                            self._format_error(status_code), kind=self._error_kind(status_code)
                        ) from exc
                    await self._sleep(self._retry_delay(exc.response.headers.get("Retry-After"), attempts))
                except httpx.RequestError as exc:
                    last_error = exc
                    if attempts > self._max_retries:
                        raise CapabilityError("Unable to reach OpenAI API", kind="transport") from exc
                    await self._sleep(self._retry_delay(None, attempts))
                except ValueError as exc:
                    raise CapabilityError("OpenAI API returned a non-JSON body", kind="malformed") from exc

        if last_error:
            raise CapabilityError("Failed to contact OpenAI API", kind="transport") from last_error
        raise CapabilityError("Failed to contact OpenAI API", kind="transport")

    def _should_retry(self, status_code: int) -> bool:
        return status_code == 429 or 500 <= status_code < 600

    def _retry_delay(self, retry_after: Optional[str], attempts: int) -> float:
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
        return self._backoff_base * (2 ** (attempts - 1))

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def _error_kind(self, status_code: int) -> str:
        if status_code == 429:
            return "rate_limit"
        if status_code in (401, 403):
            return "auth"
        if 500 <= status_code < 600:
            return "unavailable"
        return "http"

    def _format_error(self, status_code: int) -> str:
        if status_code == 429:
            return "OpenAI API rate limit exceeded. Please try again shortly."
        if status_code in (401, 403):
            return "OpenAI API key is invalid or lacks the required permissions."
        if 500 <= status_code < 600:
            return "OpenAI API is currently unavailable. Please retry later."
        return "Unexpected OpenAI API error."
