"""Tests for the interaction orchestrator."""

from __future__ import annotations

import threading

import pytest

import tutor
from engines.learning_modes import LearningMode, ProviderChoice
from engines.mode_classifier import LearningModeClassifier
from engines.providers import ProviderError
from env_validation import TutorSettings


class FakeProvider:
    def __init__(self, name, *, reply="Fake reply?", error=None, available=True):
        self.name = name
        self.reply = reply
        self.error = error
        self.available = available
        self.model_ids = (f"{name.value}-main",)
        self.calls = []

    async def complete(self, system_prompt, history, user_message, *, mode):
        self.calls.append(
            {"system_prompt": system_prompt, "history": list(history), "message": user_message, "mode": mode}
        )
        if self.error is not None:
            raise self.error
        return self.reply, self.model_ids[0]


class MemoryStore:
    def __init__(self):
        self.conversations = {}
        self.thread_ids = set()

    def create_conversation(self, user_id, subject, proficiency_level):
        self.thread_ids.add(threading.get_ident())
        conversation_id = f"c{len(self.conversations) + 1}"
        self.conversations[conversation_id] = {
            "id": conversation_id,
            "user_id": user_id,
            "subject": subject,
            "proficiency_level": proficiency_level,
            "messages": [],
        }
        return dict(self.conversations[conversation_id])

    def get_conversation(self, conversation_id, user_id=None):
        conversation = self.conversations.get(conversation_id)
        if conversation is None or (user_id is not None and conversation["user_id"] != user_id):
            return None
        return {**conversation, "messages": list(conversation["messages"])}

    def append_messages(self, conversation_id, messages, *, last_mode=None, last_model=None):
        conversation = self.conversations[conversation_id]
        conversation["messages"].extend(m.model_dump(mode="json", exclude_none=True) for m in messages)
        conversation["last_mode"] = last_mode
        conversation["last_model"] = last_model
        return len(messages)


class BrokenStore(MemoryStore):
    def append_messages(self, conversation_id, messages, *, last_mode=None, last_model=None):
        raise RuntimeError("disk full")


def _error(provider, status=None):
    return ProviderError(provider, "upstream exploded with secret detail", status_code=status)


def _tutor(openai=None, claude=None, **kwargs):
    providers = {}
    if openai is not None:
        providers[ProviderChoice.OPENAI] = openai
    if claude is not None:
        providers[ProviderChoice.CLAUDE] = claude
    return tutor.LearningTutor(providers, **kwargs)


@pytest.mark.anyio
async def test_primary_success_uses_preferred_provider():
    openai = FakeProvider(ProviderChoice.OPENAI)
    claude = FakeProvider(ProviderChoice.CLAUDE, reply="What do you already know about light?")
    engine = _tutor(openai, claude)

    result = await engine.process_interaction("Why is the sky blue?", subject="science", proficiency_level="beginner")

    assert result.response == "What do you already know about light?"
    assert result.metadata.mode is LearningMode.EXPLANATION
    assert result.metadata.model_requested == "claude"
    assert result.metadata.model_used == "claude"
    assert result.metadata.model_id == "claude-main"
    assert result.metadata.error is None
    assert not result.degraded
    assert openai.calls == []


@pytest.mark.anyio
async def test_falls_back_to_other_provider_without_error():
    openai = FakeProvider(ProviderChoice.OPENAI, reply="Let's start with counting. What comes after 4?")
    claude = FakeProvider(ProviderChoice.CLAUDE, error=_error(ProviderChoice.CLAUDE, 500))
    engine = _tutor(openai, claude)

    result = await engine.process_interaction("I wonder why ice floats", subject="science")

    assert result.metadata.model_requested == "claude"
    assert result.metadata.model_used == "openai"
    assert result.metadata.error is None
    assert result.degraded
    assert len(claude.calls) == 1 and len(openai.calls) == 1


@pytest.mark.anyio
async def test_all_providers_failing_returns_canned_reply():
    openai = FakeProvider(ProviderChoice.OPENAI, error=_error(ProviderChoice.OPENAI, 429))
    claude = FakeProvider(ProviderChoice.CLAUDE, error=_error(ProviderChoice.CLAUDE, 401))
    engine = _tutor(openai, claude)

    result = await engine.process_interaction("Help me solve 12 x 4", subject="math")

    assert result.metadata.mode is LearningMode.PRACTICE
    assert result.response == tutor.FALLBACK_RESPONSES[LearningMode.PRACTICE]
    assert result.metadata.model_used == "fallback"
    assert result.metadata.model_requested == "openai"
    assert result.metadata.error == tutor.ERROR_ALL_PROVIDERS_FAILED
    assert "secret detail" not in result.model_dump_json()


@pytest.mark.anyio
async def test_unexpected_adapter_exception_is_contained():
    openai = FakeProvider(ProviderChoice.OPENAI, error=ValueError("bug"))
    engine = _tutor(openai)

    result = await engine.process_interaction("Quiz me on capitals")

    assert result.metadata.model_used == "fallback"
    assert result.metadata.error == tutor.ERROR_ALL_PROVIDERS_FAILED


@pytest.mark.anyio
async def test_no_provider_configured():
    engine = _tutor()

    result = await engine.process_interaction("Tell me about volcanoes")

    assert engine.provider_status() == {"openai": False, "claude": False, "ready": False}
    assert result.metadata.model_requested == "none"
    assert result.metadata.model_used == "fallback"
    assert result.metadata.error == tutor.ERROR_NO_PROVIDER_AVAILABLE
    assert result.response == tutor.FALLBACK_RESPONSES[LearningMode.EXPLANATION]


@pytest.mark.anyio
async def test_provider_without_credentials_is_skipped():
    openai = FakeProvider(ProviderChoice.OPENAI)
    claude = FakeProvider(ProviderChoice.CLAUDE, available=False)
    engine = _tutor(openai, claude)

    result = await engine.process_interaction("I'm curious about bees")

    assert engine.provider_status() == {"openai": True, "claude": False, "ready": True}
    assert result.metadata.model_requested == "openai"
    assert result.metadata.model_used == "openai"
    assert claude.calls == []


@pytest.mark.anyio
async def test_forced_mode_bypasses_classifier():
    openai = FakeProvider(ProviderChoice.OPENAI)
    engine = _tutor(openai)

    result = await engine.process_interaction("Why is the sky blue?", forced_mode="review")

    assert result.metadata.mode is LearningMode.REVIEW
    assert result.metadata.forced_mode is True
    assert openai.calls[0]["mode"] is LearningMode.REVIEW


@pytest.mark.anyio
async def test_unknown_forced_mode_is_ignored():
    openai = FakeProvider(ProviderChoice.OPENAI)
    engine = _tutor(openai)

    result = await engine.process_interaction("Give me a quiz", forced_mode="daydream")

    assert result.metadata.mode is LearningMode.CHALLENGE
    assert result.metadata.forced_mode is False


@pytest.mark.anyio
async def test_strict_practice_prompt_forbids_answer():
    openai = FakeProvider(ProviderChoice.OPENAI, reply="If you have 4 apples and get 2 more, how many?")
    engine = _tutor(openai, classifier=LearningModeClassifier(variant="strict"))

    result = await engine.process_interaction("What is 4+2?", subject="math", proficiency_level="beginner")

    assert result.metadata.mode is LearningMode.PRACTICE
    prompt = openai.calls[0]["system_prompt"]
    assert "Never state the final answer" in prompt
    assert "4+2" in prompt


@pytest.mark.anyio
async def test_empty_message_still_answers():
    claude = FakeProvider(ProviderChoice.CLAUDE)
    engine = _tutor(claude=claude)

    result = await engine.process_interaction("   ")

    assert result.metadata.mode is LearningMode.DISCOVERY
    assert result.metadata.subject == "general"
    assert result.metadata.proficiency_level == "intermediate"


def test_detect_mode_makes_no_provider_call():
    openai = FakeProvider(ProviderChoice.OPENAI)
    claude = FakeProvider(ProviderChoice.CLAUDE)
    engine = _tutor(openai, claude)

    detection = engine.detect_mode("Let's recap fractions")

    assert detection.mode is LearningMode.REVIEW
    assert detection.recommended_provider is ProviderChoice.OPENAI
    assert detection.available_providers == {"openai": True, "claude": True}
    assert openai.calls == [] and claude.calls == []


@pytest.mark.anyio
async def test_respond_creates_conversation_and_persists_metadata():
    store = MemoryStore()
    claude = FakeProvider(ProviderChoice.CLAUDE, reply="What do you think makes it float?")
    engine = _tutor(claude=claude, store=store)

    exchange = await engine.respond("learner-1", "I wonder about boats floating", subject="science")

    assert exchange.conversation_id == "c1"
    assert exchange.persisted is True
    stored = store.conversations["c1"]
    assert [m["role"] for m in stored["messages"]] == ["user", "assistant"]
    assert stored["messages"][1]["metadata"]["mode"] == "discovery"
    assert stored["messages"][1]["metadata"]["model_used"] == "claude"
    assert stored["last_model"] == "claude"
    assert threading.get_ident() not in store.thread_ids


@pytest.mark.anyio
async def test_respond_passes_stored_history_to_classifier():
    store = MemoryStore()
    openai = FakeProvider(ProviderChoice.OPENAI)
    engine = _tutor(openai, store=store, classifier=LearningModeClassifier(variant="strict"))
    first = await engine.respond("learner-1", "Help me with my homework: 3 + 4", subject="math")

    second = await engine.respond("learner-1", "7", subject="math", conversation_id=first.conversation_id)

    assert second.conversation_id == first.conversation_id
    assert second.result.metadata.mode is LearningMode.ANSWER_CHECK
    assert len(openai.calls[1]["history"]) == 2
    assert len(store.conversations[first.conversation_id]["messages"]) == 4


@pytest.mark.anyio
async def test_continued_conversation_keeps_subject_and_level():
    store = MemoryStore()
    openai = FakeProvider(ProviderChoice.OPENAI)
    engine = _tutor(openai, store=store)
    first = await engine.respond(
        "learner-1", "Help me solve 3 + 4", subject="math", proficiency_level="beginner"
    )

    second = await engine.respond("learner-1", "Quiz me", conversation_id=first.conversation_id)

    assert second.result.metadata.subject == "math"
    assert second.result.metadata.proficiency_level == "beginner"
    stored = store.conversations[first.conversation_id]["messages"]
    assert stored[-1]["metadata"]["subject"] == "math"

    third = await engine.respond(
        "learner-1", "Quiz me again", subject="science", conversation_id=first.conversation_id
    )

    assert third.result.metadata.subject == "science"
    assert third.result.metadata.proficiency_level == "beginner"


@pytest.mark.anyio
async def test_respond_with_foreign_conversation_starts_new_one():
    store = MemoryStore()
    engine = _tutor(FakeProvider(ProviderChoice.OPENAI), store=store)
    first = await engine.respond("owner", "Quiz me")

    exchange = await engine.respond("intruder", "Quiz me too", conversation_id=first.conversation_id)

    assert exchange.conversation_id != first.conversation_id
    assert store.conversations[exchange.conversation_id]["user_id"] == "intruder"


@pytest.mark.anyio
async def test_store_failure_does_not_fail_exchange():
    engine = _tutor(FakeProvider(ProviderChoice.OPENAI), store=BrokenStore())

    exchange = await engine.respond("learner-1", "Quiz me on planets")

    assert exchange.result.response == "Fake reply?"
    assert exchange.persisted is False
    assert len(exchange.messages) == 2


def test_build_tutor_reflects_credentials():
    settings = TutorSettings(openai_api_key="sk-test", anthropic_api_key=None, classifier_variant="strict")

    engine = tutor.build_tutor(settings)

    assert engine.provider_status() == {"openai": True, "claude": False, "ready": True}
    assert engine.classifier.variant == "strict"
    catalog = engine.model_catalog()
    assert catalog["openai"]["models"] == ["gpt-4o-mini", "gpt-3.5-turbo"]
    assert "discovery" in catalog["claude"]["best_for"]
