"""Tests for the call orchestrator turn protocol."""

import asyncio

import pytest

from haven.calls import (
    CallAlreadyActiveError,
    CallNotFoundError,
    CallPhase,
    ClientNotFoundError,
    OrchestratorError,
    TurnInProgressError,
)
from haven.llm.conversation import COMPLETION_MARKER
from haven.storage import InMemoryStorage


async def new_client(core, name="Dana"):
    client = await core.storage.create_client({"name": name, "phone_number": "555-0100"})
    return client["id"]


async def start(core, name="Dana"):
    client_id = await new_client(core, name)
    started = await core.orchestrator.start_call(client_id)
    return client_id, started


def test_start_call_records_greeting(core_factory, subscriber_factory):
    async def scenario():
        core = core_factory()
        client_id = await new_client(core)
        sub = subscriber_factory()
        core.hub.register(sub, client_id=client_id)

        started = await core.orchestrator.start_call(client_id)
        return core, client_id, sub, started

    core, client_id, sub, started = asyncio.run(scenario())

    assert started.greeting_text
    call = core.registry.get(started.call_id)
    assert call.turn_index == 1
    assert call.phase == CallPhase.LISTENING
    assert call.conversation_history == [{"role": "assistant", "content": started.greeting_text}]
    assert [m["type"] for m in sub.messages] == ["call_started", "transcript"]
    assert sub.messages[1]["data"]["speaker"] == "agent"
    assert sub.messages[1]["data"]["emotion"] == "neutral"
    assert sub.messages[1]["data"]["confidence"] == 0.8

    client = asyncio.run(core.storage.get_client(client_id))
    record = asyncio.run(core.storage.get_call(started.call_id))
    assert client["status"] == "in-call"
    assert record["status"] == "in-progress"


def test_start_call_for_unknown_client(core_factory):
    core = core_factory()
    with pytest.raises(ClientNotFoundError):
        asyncio.run(core.orchestrator.start_call("nobody"))
    assert len(core.registry) == 0


def test_lost_job_scenario(core_factory):
    async def scenario():
        core = core_factory()
        _, started = await start(core)
        result = await core.orchestrator.process_turn(started.call_id, "I lost my job and I'm scared")
        return core, started, result

    core, started, result = asyncio.run(scenario())

    assert started.greeting_text
    assert result.agent_text
    assert len(result.sentence_emotions) == 1
    assert result.sentence_emotions[0].emotion in ("anxiety", "sadness", "frustration")
    assert result.is_complete is False
    assert core.registry.get(started.call_id).phase == CallPhase.LISTENING


def test_turn_appends_caller_then_agent_segment(core_factory, fake_llm_factory, subscriber_factory):
    llm = fake_llm_factory(replies=["Hello there.", "I'm sorry to hear that. Where are you sleeping tonight?"])

    async def scenario():
        core = core_factory(engine_llm=llm)
        _, started = await start(core)
        sub = subscriber_factory()
        core.hub.register(sub, call_id=started.call_id)
        before = core.registry.get(started.call_id).turn_index
        result = await core.orchestrator.process_turn(started.call_id, "I got evicted. I have two kids!")
        return core, started, sub, before, result

    core, started, sub, before, result = asyncio.run(scenario())
    call = core.registry.get(started.call_id)

    assert call.turn_index == before + 2
    caller, agent = call.transcript_segments[-2:]
    assert (caller.speaker, agent.speaker) == ("caller", "agent")
    assert caller.turn_index == before and agent.turn_index == before + 1
    assert caller.emotion == "urgency"
    assert [s.text for s in caller.sentence_emotions] == ["I got evicted", "I have two kids"]
    assert agent.text == result.agent_text == "I'm sorry to hear that. Where are you sleeping tonight?"
    assert (agent.emotion, agent.confidence) == ("neutral", 0.8)

    assert [m["data"]["speaker"] for m in sub.messages] == ["caller", "agent"]
    assert len(sub.messages[0]["data"]["sentence_emotions"]) == 2
    assert call.conversation_history[-2:] == [
        {"role": "user", "content": "I got evicted. I have two kids!"},
        {"role": "assistant", "content": result.agent_text},
    ]


def test_blank_turn_changes_nothing(core_factory, subscriber_factory):
    async def scenario():
        core = core_factory()
        _, started = await start(core)
        sub = subscriber_factory()
        core.hub.register(sub, call_id=started.call_id)
        result = await core.orchestrator.process_turn(started.call_id, "   ")
        return core, started, sub, result

    core, started, sub, result = asyncio.run(scenario())

    assert result.agent_text == ""
    assert result.sentence_emotions == []
    assert result.is_complete is False
    assert core.registry.get(started.call_id).turn_index == 1
    assert sub.messages == []


def test_turn_for_unknown_call(core_factory):
    core = core_factory()
    with pytest.raises(CallNotFoundError):
        asyncio.run(core.orchestrator.process_turn("missing", "hello"))


def test_completion_marker_finalizes_call(core_factory, fake_llm_factory, subscriber_factory):
    llm = fake_llm_factory(replies=["Hi, I'm Haven.", f"Thank you. A caseworker will follow up.\n{COMPLETION_MARKER}"])

    async def scenario():
        core = core_factory(engine_llm=llm)
        client_id, started = await start(core)
        sub = subscriber_factory()
        core.hub.register(sub, call_id=started.call_id)
        result = await core.orchestrator.process_turn(started.call_id, "That's everything, thank you")
        return core, client_id, started, sub, result

    core, client_id, started, sub, result = asyncio.run(scenario())

    assert result.is_complete is True
    assert result.agent_text == "Thank you. A caseworker will follow up."
    assert core.registry.get(started.call_id) is None
    assert [m["type"] for m in sub.messages] == ["transcript", "transcript", "call_ended"]

    record = asyncio.run(core.storage.get_call(started.call_id))
    assert record["status"] == "completed"
    assert record["transcript"].endswith("Agent: Thank you. A caseworker will follow up.")


def test_end_call_removes_call_and_second_end_is_not_found(core_factory):
    async def scenario():
        core = core_factory()
        _, started = await start(core)
        await core.orchestrator.process_turn(started.call_id, "I'm staying at a shelter")
        response = await core.orchestrator.end_call(started.call_id)
        return core, started, response

    core, started, response = asyncio.run(scenario())

    assert response == {"status": "completed"}
    assert core.registry.get(started.call_id) is None

    record_before = asyncio.run(core.storage.get_call(started.call_id))
    with pytest.raises(CallNotFoundError):
        asyncio.run(core.orchestrator.end_call(started.call_id))
    assert asyncio.run(core.storage.get_call(started.call_id)) == record_before


def test_concurrent_turn_for_same_call_is_rejected(core_factory, fake_llm_factory):
    llm = fake_llm_factory(delay=0.05)

    async def scenario():
        core = core_factory(engine_llm=llm)
        _, started = await start(core)
        first = asyncio.create_task(core.orchestrator.process_turn(started.call_id, "I need a bed"))
        await asyncio.sleep(0)
        with pytest.raises(TurnInProgressError):
            await core.orchestrator.process_turn(started.call_id, "I need a bed")
        await first
        return core, started

    core, started = asyncio.run(scenario())
    call = core.registry.get(started.call_id)
    assert call.turn_index == 3
    assert [s.speaker for s in call.transcript_segments] == ["agent", "caller", "agent"]


def test_end_call_waits_for_in_flight_turn(core_factory, fake_llm_factory):
    llm = fake_llm_factory(delay=0.05)

    async def scenario():
        core = core_factory(engine_llm=llm)
        _, started = await start(core)
        turn = asyncio.create_task(core.orchestrator.process_turn(started.call_id, "I sleep in my car"))
        await asyncio.sleep(0)
        ended = await core.orchestrator.end_call(started.call_id)
        result = await turn
        return core, started, ended, result

    core, started, ended, result = asyncio.run(scenario())

    assert ended == {"status": "completed"}
    assert result.agent_text
    record = asyncio.run(core.storage.get_call(started.call_id))
    assert "Caller: I sleep in my car" in record["transcript"]


def test_concurrent_calls_are_isolated(core_factory, fake_llm_factory):
    llm = fake_llm_factory(delay=0.01)

    async def scenario():
        core = core_factory(engine_llm=llm)
        _, first = await start(core, "Ana")
        _, second = await start(core, "Ben")
        await asyncio.gather(
            core.orchestrator.process_turn(first.call_id, "I'm worried about tonight"),
            core.orchestrator.process_turn(second.call_id, "Thank you for calling me back"),
            core.orchestrator.process_turn(first.call_id + "-missing", "x"),
            return_exceptions=True,
        )
        await core.orchestrator.process_turn(first.call_id, "I have a dog too")
        return core, first, second

    core, first, second = asyncio.run(scenario())
    a = core.registry.get(first.call_id)
    b = core.registry.get(second.call_id)

    assert a.turn_index == 5
    assert b.turn_index == 3
    assert all(s.call_id == first.call_id for s in a.transcript_segments)
    assert all(s.call_id == second.call_id for s in b.transcript_segments)
    assert "Thank you for calling me back" not in core.registry.full_transcript(first.call_id)


def test_full_transcript_round_trip(core_factory, fake_llm_factory):
    llm = fake_llm_factory(replies=["Welcome.", "Got it.", "Understood."])

    async def scenario():
        core = core_factory(engine_llm=llm)
        _, started = await start(core)
        await core.orchestrator.process_turn(started.call_id, "I'm in a shelter")
        await core.orchestrator.process_turn(started.call_id, "Three months")
        return core, started

    core, started = asyncio.run(scenario())

    assert core.registry.full_transcript(started.call_id) == "\n".join([
        "Agent: Welcome.",
        "Caller: I'm in a shelter",
        "Agent: Got it.",
        "Caller: Three months",
        "Agent: Understood.",
    ])


def test_live_state_snapshot(core_factory):
    async def scenario():
        core = core_factory()
        _, started = await start(core)
        live = core.orchestrator.get_live_state(started.call_id)
        await core.orchestrator.process_turn(started.call_id, "hello")
        return core, started, live

    core, started, live = asyncio.run(scenario())

    assert live.active is True
    assert live.turn_index == 1
    assert len(live.segments) == 1

    gone = core.orchestrator.get_live_state("missing")
    assert gone.active is False and gone.segments == []


def test_phase_callback_sees_processing(core_factory):
    phases = []

    async def scenario():
        core = core_factory()
        core.orchestrator.on_phase_change = lambda call_id, phase: phases.append(phase)
        _, started = await start(core)
        await core.orchestrator.process_turn(started.call_id, "hello")
        await core.orchestrator.end_call(started.call_id)

    asyncio.run(scenario())
    assert phases == [
        CallPhase.GREETING,
        CallPhase.LISTENING,
        CallPhase.PROCESSING,
        CallPhase.LISTENING,
        CallPhase.ENDED,
    ]


def test_second_call_for_same_client_is_rejected(core_factory):
    async def scenario():
        core = core_factory()
        client_id, started = await start(core)
        with pytest.raises(CallAlreadyActiveError):
            await core.orchestrator.start_call(client_id)
        await core.orchestrator.end_call(started.call_id)
        again = await core.orchestrator.start_call(client_id)
        return core, started, again

    core, started, again = asyncio.run(scenario())

    assert again.call_id != started.call_id
    assert [c.call_id for c in core.registry.active_calls()] == [again.call_id]


class FailingCallUpdates(InMemoryStorage):
    async def update_call(self, call_id, fields):
        raise ConnectionError("database unavailable")


def test_failed_finalization_leaves_call_listening(core_factory, fake_llm_factory):
    llm = fake_llm_factory(replies=["Hello.", f"Goodbye.\n{COMPLETION_MARKER}"])

    async def scenario():
        core = core_factory(engine_llm=llm, storage=FailingCallUpdates())
        _, started = await start(core)
        with pytest.raises(OrchestratorError) as excinfo:
            await core.orchestrator.process_turn(started.call_id, "That's all")
        return core, started, excinfo.value

    core, started, error = asyncio.run(scenario())

    assert error.component == "finalizer"
    call = core.registry.get(started.call_id)
    assert call is not None
    assert call.phase == CallPhase.LISTENING
    assert not call.turn_lock.locked()
