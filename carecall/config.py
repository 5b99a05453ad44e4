import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./carecall.db")

OPENAI_MODEL_PROMPT = os.getenv("OPENAI_MODEL_PROMPT", "gpt-4o")
OPENAI_MODEL_SUMMARY = os.getenv("OPENAI_MODEL_SUMMARY", "gpt-4o-mini")

# Calls older than the most recent N only contribute to counts.
CALL_HISTORY_RECENT_LIMIT = int(os.getenv("CALL_HISTORY_RECENT_LIMIT", "5"))
CALL_HISTORY_MAX_CHARS = int(os.getenv("CALL_HISTORY_MAX_CHARS", "4000"))
SYSTEM_PROMPT_MAX_CHARS = int(os.getenv("SYSTEM_PROMPT_MAX_CHARS", "8000"))
TRIAGE_PROMPT_MAX_CHARS = int(os.getenv("TRIAGE_PROMPT_MAX_CHARS", "600"))

VAPI_API_URL = os.getenv("VAPI_API_URL", "https://api.vapi.ai/call")
VAPI_PHONE_NUMBER_ID = os.getenv("VAPI_PHONE_NUMBER_ID")
VAPI_ASSISTANT_ID = os.getenv("VAPI_ASSISTANT_ID")
VAPI_MODEL = os.getenv("VAPI_MODEL", "gpt-4o-mini")

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")


def vapi_api_key() -> str | None:
    return os.getenv("VAPI_PRIVATE_KEY") or os.getenv("VAPI_PUBLIC_KEY")


def twilio_configured() -> bool:
    return bool(TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER)
