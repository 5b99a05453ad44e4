import pytest

from carecall.prompt_settings import VOICE_AGENT_TEMPLATE_KEY
from carecall.prompts import FIRST_CONVERSATION
from carecall.triage import TriageContextBuilder
from factories import make_batch, make_call, make_record, seed_batch


@pytest.mark.asyncio
async def test_unknown_patient_has_no_context(store):
    await seed_batch(store, "B1", ["P1"])

    context = await TriageContextBuilder(store).build("P404")

    assert context.has_context is False
    assert context.system_prompt == ""
    assert context.triage_prompt == ""


@pytest.mark.asyncio
async def test_no_batches_has_no_context(store):
    context = await TriageContextBuilder(store).build("P1")

    assert context.has_context is False
    assert context.batch_id is None


@pytest.mark.asyncio
async def test_empty_prompt_counts_as_missing_context(store):
    await store.save_batch(make_batch("B1"))
    await store.upsert_patient_prompt(make_record("B1", "P1", prompt=""))
    await store.append_call_history(make_call("P1", 0))

    context = await TriageContextBuilder(store).build("P1")

    assert context.has_context is False
    assert context.has_call_history is True
    assert context.total_calls == 1


@pytest.mark.asyncio
async def test_first_call_briefing(store):
    await seed_batch(store, "B1", ["P1"])

    context = await TriageContextBuilder(store).build("P1")

    assert context.has_context is True
    assert context.has_call_history is False
    assert context.batch_id == "B1"
    assert "Patient P1" in context.system_prompt
    assert "Original prompt for P1" in context.system_prompt
    assert FIRST_CONVERSATION in context.system_prompt
    assert "CONVERSATION_HISTORY" not in context.system_prompt
    assert context.triage_prompt.startswith("Call Patient P1 (age 70)")
    assert context.system_prompt_length == len(context.system_prompt)
    assert context.triage_prompt_length == len(context.triage_prompt)


@pytest.mark.asyncio
async def test_history_is_merged_into_briefing(store):
    await seed_batch(store, "B1", ["P1"])
    await store.append_call_history(
        make_call("P1", 0, summary="Complained of swollen ankles.", follow_up_items=["Weigh daily"])
    )

    context = await TriageContextBuilder(store).build("P1")

    assert context.has_call_history is True
    assert "PREVIOUS CALL HISTORY" in context.system_prompt
    assert "Complained of swollen ankles." in context.system_prompt
    assert FIRST_CONVERSATION not in context.system_prompt
    assert "Follow up on: Weigh daily." in context.triage_prompt
    assert context.recent_calls_count == 1
    assert context.context_length > 0


@pytest.mark.asyncio
async def test_alert_records_flag_the_triage_prompt(store):
    await store.save_batch(make_batch("B1"))
    await store.upsert_patient_prompt(make_record("B1", "P1", is_alert=True))

    context = await TriageContextBuilder(store).build("P1")

    assert "raised an alert" in context.triage_prompt


@pytest.mark.asyncio
async def test_explicit_batch_is_preferred(store):
    await seed_batch(store, "B1", ["P1"], hours=0)
    await seed_batch(store, "B2", ["P1"], hours=1)

    assert (await TriageContextBuilder(store).build("P1")).batch_id == "B2"
    assert (await TriageContextBuilder(store).build("P1", "B1")).batch_id == "B1"


@pytest.mark.asyncio
async def test_patient_only_in_older_batch_is_found(store):
    await seed_batch(store, "B1", ["P1", "P2"], hours=0)
    await seed_batch(store, "B2", ["P2"], hours=1)

    context = await TriageContextBuilder(store).build("P1")

    assert context.has_context is True
    assert context.batch_id == "B1"


@pytest.mark.asyncio
async def test_system_prompt_stays_within_bound(store):
    await seed_batch(store, "B1", ["P1"])
    for index in range(5):
        await store.append_call_history(make_call("P1", index, summary="Long update. " * 200))

    context = await TriageContextBuilder(store, system_prompt_max_chars=1500).build("P1")

    assert context.has_call_history is True
    assert len(context.system_prompt) <= 1500
    assert "Original prompt for P1" in context.system_prompt


@pytest.mark.asyncio
async def test_placeholder_words_in_patient_data_are_left_alone(store):
    await store.save_batch(make_batch("B1"))
    await store.upsert_patient_prompt(
        make_record(
            "B1",
            "P1",
            name="Ann PATIENT_AGE",
            prompt="Mention CONVERSATION_HISTORY and PATIENT_CONDITION literally.",
        )
    )

    context = await TriageContextBuilder(store).build("P1")

    assert "calling Ann PATIENT_AGE, a 70-year-old" in context.system_prompt
    assert "Mention CONVERSATION_HISTORY and PATIENT_CONDITION literally." in context.system_prompt
    assert context.system_prompt.count(FIRST_CONVERSATION) == 1


@pytest.mark.asyncio
async def test_stored_voice_template_is_used(store):
    await seed_batch(store, "B1", ["P1"])
    await store.put_setting(
        VOICE_AGENT_TEMPLATE_KEY, "Hi PATIENT_NAME.\nPATIENT_PROMPT\nCONVERSATION_HISTORY"
    )

    context = await TriageContextBuilder(store).build("P1")

    assert context.system_prompt == f"Hi Patient P1.\nOriginal prompt for P1\n{FIRST_CONVERSATION}"


@pytest.mark.asyncio
async def test_repeated_history_slots_share_the_budget(store):
    await seed_batch(store, "B1", ["P1"])
    await store.put_setting(VOICE_AGENT_TEMPLATE_KEY, "PATIENT_PROMPT\nCONVERSATION_HISTORY\nCONVERSATION_HISTORY")
    for index in range(5):
        await store.append_call_history(make_call("P1", index, summary="Long update. " * 200))

    context = await TriageContextBuilder(store, system_prompt_max_chars=2000).build("P1")

    assert len(context.system_prompt) <= 2000
    assert not context.system_prompt.endswith("...")
    assert context.system_prompt.count("PREVIOUS CALL HISTORY") == 2
