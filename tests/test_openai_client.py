import json

import httpx
import pytest

from carecall.config import OPENAI_MODEL_PROMPT
from carecall.openai_client import OPENAI_CHAT_COMPLETIONS_URL, OpenAIClient, build_user_content
from carecall.prompts import CALL_SUMMARY_SYSTEM, CARETAKER_SYSTEM
from carecall.schemas import AggregatedCallContext, GeneratedError, GeneratedOk, GenerationInput


def _input(**overrides) -> GenerationInput:
    values = {
        "patient_id": "P1",
        "name": "Alice",
        "age": 80,
        "conditions": ["Diabetes", "Hypertension"],
        "raw_fields": {"heartRate": 88},
    }
    values.update(overrides)
    return GenerationInput(**values)


def _completion(content) -> dict:
    if not isinstance(content, str):
        content = json.dumps(content)
    return {"choices": [{"message": {"content": content}}]}


@pytest.mark.asyncio
async def test_generate_builds_messages_and_parses_payload():
    captured: dict[str, object] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = dict(request.headers)
        captured["payload"] = json.loads(request.content.decode())
        return httpx.Response(
            200,
            json=_completion(
                {"prompt": "Check sugar daily.", "reasoning": "Diabetes first", "isAlert": True, "healthStatus": "alert"}
            ),
        )

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler))

    result = await client.generate(_input())

    assert result == GeneratedOk(
        prompt="Check sugar daily.", reasoning="Diabetes first", is_alert=True, health_status="alert"
    )
    assert captured["url"] == OPENAI_CHAT_COMPLETIONS_URL
    assert captured["headers"]["authorization"] == "Bearer test"
    payload = captured["payload"]
    assert payload["model"] == OPENAI_MODEL_PROMPT
    assert payload["response_format"] == {"type": "json_object"}
    assert payload["messages"][0] == {"role": "system", "content": CARETAKER_SYSTEM}
    assert "- Diabetes" in payload["messages"][1]["content"]


@pytest.mark.asyncio
async def test_generate_uses_custom_system_prompt():
    async def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content.decode())
        assert payload["messages"][0]["content"] == "Be brief."
        return httpx.Response(200, json=_completion({"prompt": "Short."}))

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler))

    result = await client.generate(_input(system_prompt="Be brief."))

    assert isinstance(result, GeneratedOk)
    assert result.reasoning is None


def test_user_content_includes_call_history():
    context = AggregatedCallContext(has_history=True, total_calls=1, recent_calls_count=1, context_text="HISTORY TEXT")

    content = build_user_content(_input(call_context=context))

    assert content.startswith("Patient: Alice\nAge: 80")
    assert '{"heartRate": 88}' in content
    assert content.endswith("HISTORY TEXT")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    ["not json", "", json.dumps({"reasoning": "no prompt"}), json.dumps({"prompt": ""})],
)
async def test_generate_rejects_malformed_output(content):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion(content))

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler))

    result = await client.generate(_input())

    assert isinstance(result, GeneratedError)
    assert result.kind == "malformed"


@pytest.mark.asyncio
async def test_generate_without_api_key_reports_auth_error(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    async def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be reached
        raise AssertionError("no request expected without a key")

    client = OpenAIClient(api_key=None, transport=httpx.MockTransport(handler))

    result = await client.generate(_input())

    assert isinstance(result, GeneratedError)
    assert result.kind == "auth"
    assert "OPENAI_API_KEY" in result.message


@pytest.mark.asyncio
async def test_summarize_call_without_api_key_uses_provider_summary(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = OpenAIClient(api_key=None)

    summary = await client.summarize_call("transcript", provider_summary="Provider says fine.")

    assert summary.summary == "Provider says fine."


@pytest.mark.asyncio
async def test_generate_retries_on_rate_limit(monkeypatch: pytest.MonkeyPatch):
    attempts: list[int] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            return httpx.Response(429, headers={"Retry-After": "0"})
        return httpx.Response(200, json=_completion({"prompt": "Recovered"}))

    async def fake_sleep(self, seconds: float) -> None:  # type: ignore[override]
        return None

    monkeypatch.setattr(OpenAIClient, "_sleep", fake_sleep, raising=False)

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler), backoff_base=0.0)

    result = await client.generate(_input())

    assert result.prompt == "Recovered"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_generate_reports_exhausted_retries():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429)

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler), max_retries=0)

    result = await client.generate(_input())

    assert result.kind == "rate_limit"
    assert "rate limit" in result.message.lower()


@pytest.mark.asyncio
async def test_generate_reports_invalid_api_key():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401)

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler), max_retries=0)

    result = await client.generate(_input())

    assert result.kind == "auth"
    assert "api key" in result.message.lower()
    assert "permissions" in result.message.lower()


@pytest.mark.asyncio
async def test_generate_reports_request_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler), max_retries=0)

    result = await client.generate(_input())

    assert result.kind == "transport"
    assert "unable to reach openai api" in result.message.lower()


@pytest.mark.asyncio
async def test_summarize_call_parses_summary():
    async def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content.decode())
        assert payload["messages"][0]["content"] == CALL_SUMMARY_SYSTEM
        assert "Provider summary: short" in payload["messages"][1]["content"]
        return httpx.Response(
            200,
            json=_completion(
                {
                    "summary": "Patient is stable.",
                    "keyPoints": ["Stable"],
                    "healthConcerns": [],
                    "followUpItems": ["Call next week"],
                }
            ),
        )

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler))

    summary = await client.summarize_call("AI: Hi. Patient: Fine.", provider_summary="short")

    assert summary.summary == "Patient is stable."
    assert summary.follow_up_items == ["Call next week"]


@pytest.mark.asyncio
async def test_summarize_call_falls_back_to_provider_summary():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler), max_retries=0)

    summary = await client.summarize_call("transcript", provider_summary="Provider says fine.")

    assert summary.summary == "Provider says fine."
    assert summary.key_points == []
