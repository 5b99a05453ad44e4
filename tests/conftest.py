"""Shared pytest fixtures."""

from typing import Optional

import pytest

from carecall.memory_store import InMemoryRecordStore
from carecall.schemas import CallSummary, GeneratedError, GeneratedOk


class StubGenerator:
    """Text generator double; patient ids in ``failures`` get a GeneratedError."""

    def __init__(self) -> None:
        self.inputs = []
        self.failures: set[str] = set()
        self.prompt_template = "New prompt for {name}"
        self.reasoning: Optional[str] = "Generated reasoning"
        self.summary = CallSummary(
            summary="Patient reported feeling better.",
            key_points=["Feeling better"],
            health_concerns=["Mild headache"],
            follow_up_items=["Check blood pressure"],
        )

    async def generate(self, generation_input):
        self.inputs.append(generation_input)
        if generation_input.patient_id in self.failures:
            return GeneratedError(kind="rate_limit", message="OpenAI API rate limit exceeded.")
        return GeneratedOk(
            prompt=self.prompt_template.format(name=generation_input.name),
            reasoning=self.reasoning,
            is_alert=True,
            health_status="alert",
        )

    async def summarize_call(self, transcript, provider_summary=None):
        return self.summary


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()
