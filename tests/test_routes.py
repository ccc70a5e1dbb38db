"""API tests for the call routes and the transcript websocket."""

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from backend.main import app
from backend.services.call_service import call_service
from haven.llm.conversation import COMPLETION_MARKER
from haven.storage import RedisStorage


@pytest.fixture
def core(core_factory):
    core = core_factory()
    call_service.set_orchestrator(core.orchestrator)
    yield core
    call_service.set_orchestrator(None)


@pytest.fixture
def client(core):
    with TestClient(app) as test_client:
        yield test_client


def seed_client(core, name="Dana"):
    return asyncio.run(core.storage.create_client({"name": name}))["id"]


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["services"]["active_calls"] == 0
    assert body["services"]["llm"] == "fallback"
    assert body["services"]["emotion"]["keyword"]["position"] == 0


def test_start_call_for_unknown_client_is_404(client):
    response = client.post("/api/clients/nobody/call")
    assert response.status_code == 404


def test_call_flow(client, core):
    client_id = seed_client(core)

    started = client.post(f"/api/clients/{client_id}/call", json={"external_ref": "web-42"})
    assert started.status_code == 201
    call_id = started.json()["call_id"]
    assert started.json()["greeting_text"]
    assert core.registry.get_by_external_ref("web-42").call_id == call_id

    turn = client.post(f"/api/calls/{call_id}/voice-turn", json={"text": "I lost my job and I'm scared"})
    assert turn.status_code == 200
    body = turn.json()
    assert body["agent_text"]
    assert body["is_complete"] is False
    assert [s["emotion"] for s in body["sentence_emotions"]] == ["anxiety"]

    live = client.get(f"/api/calls/{call_id}/live-transcript").json()
    assert live["active"] is True
    assert live["turn_index"] == 3
    assert [s["speaker"] for s in live["segments"]] == ["agent", "caller", "agent"]

    ended = client.post(f"/api/calls/{call_id}/end")
    assert ended.status_code == 200
    assert ended.json() == {"status": "completed"}

    assert client.post(f"/api/calls/{call_id}/end").status_code == 404
    assert client.post(f"/api/calls/{call_id}/voice-turn", json={"text": "hello"}).status_code == 404
    assert client.get(f"/api/calls/{call_id}/live-transcript").json() == {
        "segments": [],
        "active": False,
        "turn_index": 0,
    }


def test_blank_voice_turn(client, core):
    client_id = seed_client(core)
    call_id = client.post(f"/api/clients/{client_id}/call").json()["call_id"]

    response = client.post(f"/api/calls/{call_id}/voice-turn", json={})

    assert response.status_code == 200
    assert response.json()["agent_text"] == ""
    assert response.json()["sentence_emotions"] == []


def test_completing_turn_reports_completion(client, core_factory, fake_llm_factory):
    core = core_factory(engine_llm=fake_llm_factory(replies=["Hello.", f"Take care.\n{COMPLETION_MARKER}"]))
    call_service.set_orchestrator(core.orchestrator)
    client_id = seed_client(core)
    call_id = client.post(f"/api/clients/{client_id}/call").json()["call_id"]

    body = client.post(f"/api/calls/{call_id}/voice-turn", json={"text": "That's all"}).json()

    assert body["is_complete"] is True
    assert body["agent_text"] == "Take care."
    assert client.post(f"/api/calls/{call_id}/end").status_code == 404


def test_websocket_receives_ack_and_call_events(client, core):
    client_id = seed_client(core)

    with client.websocket_connect(f"/ws/transcript?client_id={client_id}") as websocket:
        assert websocket.receive_json() == {"type": "connected", "call_id": None, "client_id": client_id}

        call_id = client.post(f"/api/clients/{client_id}/call").json()["call_id"]

        started = websocket.receive_json()
        assert started["type"] == "call_started"
        assert started["data"]["client_name"] == "Dana"

        greeting = websocket.receive_json()
        assert greeting["type"] == "transcript"
        assert greeting["data"]["call_id"] == call_id
        assert greeting["data"]["speaker"] == "agent"


def test_websocket_without_keys_is_rejected(client):
    with client.websocket_connect("/ws/transcript") as websocket:
        with pytest.raises(WebSocketDisconnect) as excinfo:
            websocket.receive_json()

    assert excinfo.value.code == 1008


def test_client_created_through_api_can_be_called(client):
    created = client.post("/api/clients", json={"name": "Ana", "phone_number": "555-0101", "location": "Oakland"})
    assert created.status_code == 201
    client_id = created.json()["id"]
    assert created.json()["status"] == "new"

    fetched = client.get(f"/api/clients/{client_id}")
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "Ana"

    started = client.post(f"/api/clients/{client_id}/call")
    assert started.status_code == 201
    assert client.get(f"/api/clients/{client_id}").json()["status"] == "in-call"

    assert client.post(f"/api/clients/{client_id}/call").status_code == 409

    client.post(f"/api/calls/{started.json()['call_id']}/end")
    assert client.get(f"/api/clients/{client_id}").json()["status"] == "assessed"


def test_create_client_requires_name_and_phone(client):
    assert client.post("/api/clients", json={"name": "Ana"}).status_code == 422
    assert client.get("/api/clients/nobody").status_code == 404


class ClosableRedis:
    def __init__(self):
        self.closed = False

    async def aclose(self):
        self.closed = True


def test_shutdown_closes_redis_storage(core_factory):
    redis_client = ClosableRedis()
    core = core_factory(storage=RedisStorage(client=redis_client))
    call_service.set_orchestrator(core.orchestrator)

    with TestClient(app):
        assert not redis_client.closed

    assert redis_client.closed
