from typing import Optional

import httpx
import structlog

from carecall import config
from carecall.errors import CapabilityError

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"

logger = structlog.get_logger(__name__)


class TwilioClient:
    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.account_sid = account_sid or config.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or config.TWILIO_AUTH_TOKEN
        self.from_number = from_number or config.TWILIO_PHONE_NUMBER
        self._transport = transport

    async def send(self, to_number: str, body: str) -> str:
        if not (self.account_sid and self.auth_token and self.from_number):
            raise CapabilityError(
                "TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN or TWILIO_PHONE_NUMBER is not configured",
                kind="config",
            )
        url = TWILIO_MESSAGES_URL.format(account_sid=self.account_sid)
        form = {"To": to_number, "From": self.from_number, "Body": body}

        async with httpx.AsyncClient(
            timeout=30.0,
            transport=self._transport,
            auth=(self.account_sid, self.auth_token),
        ) as client:
            try:
                response = await client.post(url, data=form)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as exc:
                raise CapabilityError(
                    f"SMS provider rejected the message ({exc.response.status_code})", kind="http"
                ) from exc
            except httpx.RequestError as exc:
                raise CapabilityError("Unable to reach SMS provider", kind="transport") from exc
            except ValueError as exc:
                raise CapabilityError("SMS provider returned a non-JSON body", kind="malformed") from exc

        sid = data.get("sid") if isinstance(data, dict) else None
        if not sid:
            raise CapabilityError("SMS provider response did not include a message sid", kind="malformed")
        logger.info("sms_sent", delivery_id=sid)
        return str(sid)
