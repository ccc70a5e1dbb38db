"""Shared fakes and fixtures for Haven tests."""

import asyncio
from types import SimpleNamespace

import pytest

from haven.calls import BroadcastHub, CallFinalizer, CallOrchestrator, CallRegistry
from haven.fallback import UpstreamError
from haven.llm import ConversationEngine, parse_json_payload
from haven.nlp import EmotionClassifier, EntityExtractor
from haven.storage import GraphProjection, InMemoryStorage


class FakeLLM:
    """Stands in for GroqClient: scripted replies, optional failure."""

    def __init__(self, replies=None, json_replies=None, fail=False, delay=0.0):
        self.replies = list(replies or [])
        self.json_replies = list(json_replies or [])
        self.fail = fail
        self.delay = delay
        self.calls = []

    async def complete(self, messages, max_tokens=None, temperature=None, json_mode=False):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise UpstreamError("provider down", provider="fake")
        if self.replies:
            return self.replies.pop(0)
        return "Thank you. Where are you staying right now?"

    async def complete_json(self, messages, **kwargs):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise UpstreamError("provider down", provider="fake")
        if not self.json_replies:
            raise UpstreamError("no scripted JSON", provider="fake")
        reply = self.json_replies.pop(0)
        return parse_json_payload(reply) if isinstance(reply, str) else reply


class FakeSubscriber:
    """Collects messages like a websocket would."""

    def __init__(self, fail=False):
        self.messages = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise ConnectionError("socket closed")
        self.messages.append(message)

    def of_type(self, message_type):
        return [m for m in self.messages if m["type"] == message_type]


class FakeEntityExtractor(EntityExtractor):
    def __init__(self, entities=None, fail=False):
        self.entities = entities or {}
        self.fail = fail
        self.texts = []

    async def extract_entities(self, text):
        self.texts.append(text)
        if self.fail:
            raise UpstreamError("extractor down", provider="fake")
        return dict(self.entities)


class RecordingGraph(GraphProjection):
    def __init__(self, fail=False):
        self.fail = fail
        self.records = []

    async def record_call_completion(self, call_id, client_id, data):
        if self.fail:
            raise ConnectionError("graph unavailable")
        self.records.append((call_id, client_id, data))


def build_core(engine_llm=None, emotion_llm=None, storage=None, extractor=None, graph=None):
    """Assemble an orchestrator with fakes; keyword emotion path by default."""
    registry = CallRegistry()
    hub = BroadcastHub()
    storage = storage or InMemoryStorage()
    classifier = EmotionClassifier(llm=emotion_llm)
    engine = ConversationEngine(engine_llm)
    extractor = extractor or FakeEntityExtractor()
    graph = graph or RecordingGraph()
    finalizer = CallFinalizer(
        registry=registry,
        hub=hub,
        storage=storage,
        classifier=classifier,
        engine=engine,
        entity_extractor=extractor,
        graph=graph,
    )
    orchestrator = CallOrchestrator(
        registry=registry,
        hub=hub,
        storage=storage,
        classifier=classifier,
        engine=engine,
        finalizer=finalizer,
    )
    return SimpleNamespace(
        registry=registry,
        hub=hub,
        storage=storage,
        classifier=classifier,
        engine=engine,
        extractor=extractor,
        graph=graph,
        finalizer=finalizer,
        orchestrator=orchestrator,
    )


@pytest.fixture
def core_factory():
    return build_core


@pytest.fixture
def fake_llm_factory():
    return FakeLLM


@pytest.fixture
def subscriber_factory():
    return FakeSubscriber


@pytest.fixture
def extractor_factory():
    return FakeEntityExtractor


@pytest.fixture
def graph_factory():
    return RecordingGraph
