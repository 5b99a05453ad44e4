import re
from typing import Any, Optional

import httpx
import structlog

from carecall import config
from carecall.errors import CapabilityError

logger = structlog.get_logger(__name__)

_NON_DIAL_RE = re.compile(r"[^\d+]")


def format_phone_number_e164(phone_number: str) -> str:
    """Normalize a dialable number to E.164.

    Ten digits are treated as a US number and eleven digits starting with 1
    gain a leading ``+``; anything else must already be international.
    """

    cleaned = _NON_DIAL_RE.sub("", phone_number)
    if cleaned.startswith("+") and len(cleaned) > 1:
        return cleaned
    if len(cleaned) == 10:
        return "+1" + cleaned
    if len(cleaned) == 11 and cleaned.startswith("1"):
        return "+" + cleaned
    raise ValueError(
        "Phone number must be in international format starting with + (e.g. +40753837147)"
    )


class VapiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        assistant_id: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key or config.vapi_api_key()
        self.assistant_id = assistant_id or config.VAPI_ASSISTANT_ID
        self.phone_number_id = phone_number_id or config.VAPI_PHONE_NUMBER_ID
        self._transport = transport
        self._timeout = timeout

    async def place_call(
        self,
        patient_id: str,
        phone_number: str,
        system_prompt: str,
        triage_prompt: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        if not self.api_key:
            raise CapabilityError("VAPI_PRIVATE_KEY or VAPI_PUBLIC_KEY is not configured", kind="config")
        payload = {
            "phoneNumberId": self.phone_number_id,
            "assistantId": self.assistant_id,
            "customer": {"number": format_phone_number_e164(phone_number)},
            "assistantOverrides": {
                "model": {
                    "provider": "openai",
                    "model": config.VAPI_MODEL,
                    "messages": [{"role": "system", "content": system_prompt}],
                },
                "firstMessageMode": "assistant-speaks-first-with-model-generated-message",
                "variableValues": {"triagePrompt": triage_prompt},
            },
            "metadata": {"patientId": patient_id, "callType": "context-aware", **(metadata or {})},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(config.VAPI_API_URL, headers=headers, json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "voice_call_rejected",
                    patient_id=patient_id,
                    status_code=exc.response.status_code,
                )
                raise CapabilityError(
                    f"Voice provider rejected the call ({exc.response.status_code})", kind="http"
                ) from exc
            except httpx.RequestError as exc:
                raise CapabilityError("Unable to reach voice provider", kind="transport") from exc
            except ValueError as exc:
                raise CapabilityError("Voice provider returned a non-JSON body", kind="malformed") from exc

        call_id = data.get("id") if isinstance(data, dict) else None
        if not call_id:
            raise CapabilityError("Voice provider response did not include a call id", kind="malformed")
        logger.info("voice_call_placed", patient_id=patient_id, call_id=call_id)
        return str(call_id)
