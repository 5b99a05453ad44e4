"""Editable prompt settings, stored in the record store with built-in defaults."""

from dataclasses import dataclass

import structlog

from carecall.prompts import CARETAKER_SYSTEM, VOICE_AGENT_TEMPLATE
from carecall.store import RecordStore

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT_KEY = "system_prompt"
VOICE_AGENT_TEMPLATE_KEY = "voice_agent_template"

_DEFAULTS = {
    SYSTEM_PROMPT_KEY: CARETAKER_SYSTEM,
    VOICE_AGENT_TEMPLATE_KEY: VOICE_AGENT_TEMPLATE,
}


@dataclass(frozen=True)
class SettingValue:
    value: str
    default: str
    source: str  # "stored" or "default"


class PromptSettings:
    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def read(self, key: str) -> SettingValue:
        default = _DEFAULTS[key]
        stored = await self._store.get_setting(key)
        if stored and stored.strip():
            return SettingValue(stored, default, "stored")
        return SettingValue(default, default, "default")

    async def update(self, key: str, value: str) -> SettingValue:
        await self._store.put_setting(key, value)
        logger.info("prompt_setting_updated", key=key, length=len(value))
        return SettingValue(value, _DEFAULTS[key], "stored")

    async def reset(self, key: str) -> SettingValue:
        await self._store.delete_setting(key)
        logger.info("prompt_setting_reset", key=key)
        default = _DEFAULTS[key]
        return SettingValue(default, default, "default")

    async def system_prompt(self) -> str:
        return (await self.read(SYSTEM_PROMPT_KEY)).value

    async def voice_agent_template(self) -> str:
        return (await self.read(VOICE_AGENT_TEMPLATE_KEY)).value


__all__ = ["PromptSettings", "SettingValue", "SYSTEM_PROMPT_KEY", "VOICE_AGENT_TEMPLATE_KEY"]
