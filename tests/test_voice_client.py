import json

import httpx
import pytest

from carecall import config
from carecall.errors import CapabilityError
from carecall.sms_client import TwilioClient
from carecall.voice_client import VapiClient, format_phone_number_e164


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("+40 753 837 147", "+40753837147"),
        ("(555) 555-0100", "+15555550100"),
        ("1-555-555-0100", "+15555550100"),
    ],
)
def test_format_phone_number_e164(raw, expected):
    assert format_phone_number_e164(raw) == expected


@pytest.mark.parametrize("raw", ["12345", "", "+"])
def test_format_phone_number_rejects_invalid(raw):
    with pytest.raises(ValueError):
        format_phone_number_e164(raw)


@pytest.mark.asyncio
async def test_place_call_sends_briefing():
    captured: dict[str, object] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["payload"] = json.loads(request.content.decode())
        return httpx.Response(201, json={"id": "call-123"})

    client = VapiClient(
        api_key="key", assistant_id="asst", phone_number_id="num", transport=httpx.MockTransport(handler)
    )

    call_id = await client.place_call(
        "P1", "5555550100", "SYSTEM", "TRIAGE", metadata={"patientName": "Alice"}
    )

    assert call_id == "call-123"
    assert captured["url"] == config.VAPI_API_URL
    payload = captured["payload"]
    assert payload["customer"] == {"number": "+15555550100"}
    assert payload["assistantId"] == "asst"
    overrides = payload["assistantOverrides"]
    assert overrides["model"]["messages"] == [{"role": "system", "content": "SYSTEM"}]
    assert overrides["variableValues"] == {"triagePrompt": "TRIAGE"}
    assert payload["metadata"]["patientId"] == "P1"
    assert payload["metadata"]["patientName"] == "Alice"


@pytest.mark.asyncio
async def test_place_call_raises_on_rejection():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "bad"})

    client = VapiClient(api_key="key", transport=httpx.MockTransport(handler))

    with pytest.raises(CapabilityError) as excinfo:
        await client.place_call("P1", "+15555550100", "SYSTEM", "TRIAGE")

    assert excinfo.value.kind == "http"


@pytest.mark.asyncio
async def test_place_call_requires_call_id():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={})

    client = VapiClient(api_key="key", transport=httpx.MockTransport(handler))

    with pytest.raises(CapabilityError) as excinfo:
        await client.place_call("P1", "+15555550100", "SYSTEM", "TRIAGE")

    assert excinfo.value.kind == "malformed"


@pytest.mark.asyncio
async def test_place_call_without_api_key_is_a_config_error(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("VAPI_PRIVATE_KEY", raising=False)
    monkeypatch.delenv("VAPI_PUBLIC_KEY", raising=False)
    client = VapiClient(api_key=None)

    with pytest.raises(CapabilityError) as excinfo:
        await client.place_call("P1", "+15555550100", "SYSTEM", "TRIAGE")

    assert excinfo.value.kind == "config"


@pytest.mark.asyncio
async def test_sms_send_without_credentials_is_a_config_error(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, "TWILIO_ACCOUNT_SID", None)
    client = TwilioClient(account_sid=None, auth_token="token", from_number="+15550001111")

    with pytest.raises(CapabilityError) as excinfo:
        await client.send("+15555550100", "hello")

    assert excinfo.value.kind == "config"


@pytest.mark.asyncio
async def test_sms_send_posts_form():
    captured: dict[str, object] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = request.content.decode()
        captured["auth"] = request.headers.get("authorization")
        return httpx.Response(201, json={"sid": "SM123"})

    client = TwilioClient("AC1", "token", "+15550001111", transport=httpx.MockTransport(handler))

    sid = await client.send("+15555550100", "Take your medication")

    assert sid == "SM123"
    assert captured["url"] == "https://api.twilio.com/2010-04-01/Accounts/AC1/Messages.json"
    assert "Body=Take+your+medication" in captured["body"]
    assert captured["auth"].startswith("Basic ")


@pytest.mark.asyncio
async def test_sms_send_raises_on_transport_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    client = TwilioClient("AC1", "token", "+15550001111", transport=httpx.MockTransport(handler))

    with pytest.raises(CapabilityError) as excinfo:
        await client.send("+15555550100", "hello")

    assert excinfo.value.kind == "transport"
