"""Interaction orchestrator for the learning engine.

One tutoring turn runs classify -> select provider -> build prompt -> call
the preferred provider -> fall back to the other provider -> package the
result. Provider failures never escape :meth:`LearningTutor.process_interaction`;
when no provider can answer, a canned reply for the learning mode is
returned together with a sanitised error code.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from engines.learning_modes import FALLBACK_MODEL, MODE_CATALOG, LearningMode, ProviderChoice
from engines.mode_classifier import LearningModeClassifier
from engines.model_selector import fallback_order
from engines.prompt_builder import build_prompt
from engines.providers import AnthropicMessagesProvider, ChatProvider, OpenAIChatProvider, ProviderError
from env_validation import TutorSettings
from schemas import ChatMessage, InteractionMetadata, InteractionResult, ModeDetection

logger = logging.getLogger(__name__)
_TUTOR_LOGGER = logging.getLogger("lilibet.tutor")

ERROR_ALL_PROVIDERS_FAILED = "all_providers_failed"
ERROR_NO_PROVIDER_AVAILABLE = "no_provider_available"

FALLBACK_RESPONSES: Dict[LearningMode, str] = {
    LearningMode.DISCOVERY: (
        "That's a great question! Let me help you explore this. What do you already know "
        "about this topic? What makes you curious about it?"
    ),
    LearningMode.PRACTICE: (
        "Let's work through this step by step. First, can you tell me what part you'd like "
        "to practice? We'll start simple and build up your skills!"
    ),
    LearningMode.EXPLANATION: (
        "I'd love to explain this to you! While I'm having some technical difficulties, let's "
        "think about it together. What specific part would you like to understand better?"
    ),
    LearningMode.CHALLENGE: (
        "You're ready for a challenge! Here's something to think about: How would you approach "
        "solving this type of problem? What strategies have worked for you before?"
    ),
    LearningMode.REVIEW: (
        "Let's review what we've learned. Can you tell me what you remember about this topic? "
        "What parts were most interesting or confusing?"
    ),
    LearningMode.ANSWER_CHECK: (
        "Thanks for sharing your answer! I can't check it right this moment. Can you walk me "
        "through how you got there, one step at a time?"
    ),
}
GENERIC_FALLBACK_RESPONSE = "I'm here to help you learn! Can you tell me more about what you'd like to know?"


def canned_response(mode: LearningMode) -> str:
    return FALLBACK_RESPONSES.get(mode, GENERIC_FALLBACK_RESPONSE)


def _json_log(event: str, payload: Dict[str, Any]) -> None:
    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        message = json.dumps(
            {"event": event, "error": "serialization_failed", "payload_repr": repr(payload)},
            ensure_ascii=False,
            sort_keys=True,
        )
    _TUTOR_LOGGER.info(message)


class AllProvidersExhausted(RuntimeError):
    """Every candidate provider failed, or none was available."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        if self.errors:
            detail = "; ".join(str(error) for error in self.errors)
        else:
            detail = "no provider available"
        super().__init__(detail)

    @property
    def code(self) -> str:
        return ERROR_ALL_PROVIDERS_FAILED if self.errors else ERROR_NO_PROVIDER_AVAILABLE


class ConversationStore(Protocol):
    """Persistence port used by :meth:`LearningTutor.respond`."""

    def create_conversation(self, user_id: str, subject: str, proficiency_level: str) -> Mapping[str, Any]:
        ...

    def get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Optional[Mapping[str, Any]]:
        ...

    def append_messages(
        self,
        conversation_id: str,
        messages: Sequence[ChatMessage],
        *,
        last_mode: Optional[str] = None,
        last_model: Optional[str] = None,
    ) -> int:
        ...


@dataclass
class TutorExchange:
    """Outcome of a persisted tutoring turn."""

    result: InteractionResult
    conversation_id: Optional[str]
    messages: List[Dict[str, Any]] = field(default_factory=list)
    persisted: bool = False


class LearningTutor:
    """Routes learner messages to a provider according to the learning mode."""

    def __init__(
        self,
        providers: Optional[Mapping[Any, ChatProvider]] = None,
        classifier: Optional[LearningModeClassifier] = None,
        store: Optional[ConversationStore] = None,
        *,
        default_subject: str = "general",
        default_level: str = "intermediate",
    ) -> None:
        self._providers: Dict[ProviderChoice, ChatProvider] = {}
        for key, provider in (providers or {}).items():
            choice = ProviderChoice(key)
            if choice is ProviderChoice.NONE or provider is None:
                continue
            self._providers[choice] = provider
        self.classifier = classifier or LearningModeClassifier()
        self.store = store
        self.default_subject = default_subject
        self.default_level = default_level
        # Credential presence is fixed for the lifetime of the tutor.
        self.available: Dict[str, bool] = {
            choice.value: bool(choice in self._providers and self._providers[choice].available)
            for choice in (ProviderChoice.OPENAI, ProviderChoice.CLAUDE)
        }

    # ------------------------------------------------------------------
    def provider_status(self) -> Dict[str, bool]:
        return {**self.available, "ready": any(self.available.values())}

    def provider(self, choice: ProviderChoice) -> Optional[ChatProvider]:
        return self._providers.get(choice)

    def model_catalog(self) -> Dict[str, Dict[str, Any]]:
        """Provider catalog: availability, model ids and the modes each is preferred for."""

        catalog: Dict[str, Dict[str, Any]] = {}
        names = {
            ProviderChoice.OPENAI: ("OpenAI", "Structured step-by-step practice, drills and quizzes"),
            ProviderChoice.CLAUDE: ("Anthropic Claude", "Reasoning and Socratic questioning"),
        }
        for choice, (name, description) in names.items():
            provider = self._providers.get(choice)
            catalog[choice.value] = {
                "available": self.available[choice.value],
                "name": name,
                "description": description,
                "models": list(provider.model_ids) if provider is not None else [],
                "best_for": [mode.value for mode, info in MODE_CATALOG.items() if info.best_provider is choice],
            }
        return catalog

    # ------------------------------------------------------------------
    def _resolve_mode(
        self,
        message: str,
        history: Sequence[Any],
        proficiency_level: Optional[str],
        forced_mode: Any,
    ) -> Tuple[LearningMode, bool]:
        if forced_mode is not None and forced_mode != "":
            mode = LearningMode.parse(forced_mode)
            if mode is not None:
                return mode, True
            logger.warning("Ignoring unknown forced learning mode %r", forced_mode)
        return self.classifier.classify(message, history, proficiency_level), False

    def detect_mode(
        self,
        message: str,
        history: Sequence[Any] = (),
        proficiency_level: Optional[str] = None,
    ) -> ModeDetection:
        """Classify and pick a provider without calling it."""

        classification = self.classifier.explain(message, history, proficiency_level)
        candidates = fallback_order(classification.mode, self.available)
        return ModeDetection(
            mode=classification.mode,
            recommended_provider=candidates[0] if candidates else ProviderChoice.NONE,
            available_providers=dict(self.available),
            reason=classification.reason,
        )

    async def _complete_with_fallback(
        self,
        candidates: Sequence[ProviderChoice],
        system_prompt: str,
        history: Sequence[Any],
        message: str,
        mode: LearningMode,
    ) -> Tuple[ProviderChoice, str, str]:
        errors: List[BaseException] = []
        for index, choice in enumerate(candidates):
            provider = self._providers[choice]
            try:
                text, model_id = await provider.complete(system_prompt, history, message, mode=mode)
                return choice, text, model_id
            except ProviderError as exc:
                errors.append(exc)
                logger.warning("Provider %s failed in %s mode: %s", choice.value, mode.value, exc)
            except Exception as exc:
                errors.append(exc)
                logger.exception("Unexpected error from provider %s", choice.value)
            if index < len(candidates) - 1:
                logger.info("Falling back from %s to %s", choice.value, candidates[index + 1].value)
        raise AllProvidersExhausted(errors)

    async def process_interaction(
        self,
        message: str,
        *,
        subject: Optional[str] = None,
        proficiency_level: Optional[str] = None,
        conversation_history: Sequence[Any] = (),
        forced_mode: Any = None,
    ) -> InteractionResult:
        """Produce one tutor reply; always returns, even when every provider fails."""

        start = perf_counter()
        subject = (subject or "").strip() or self.default_subject
        proficiency_level = (proficiency_level or "").strip() or self.default_level
        history = list(conversation_history or ())

        mode, forced = self._resolve_mode(message, history, proficiency_level, forced_mode)
        candidates = fallback_order(mode, self.available)
        requested = candidates[0] if candidates else ProviderChoice.NONE
        system_prompt = build_prompt(mode, subject, proficiency_level, message)

        error: Optional[str] = None
        model_id: Optional[str] = None
        try:
            used, text, model_id = await self._complete_with_fallback(
                candidates, system_prompt, history, message, mode
            )
            model_used = used.value
        except AllProvidersExhausted as exc:
            if exc.errors:
                logger.error("All providers failed in %s mode: %s", mode.value, exc)
            else:
                logger.warning("No provider configured; returning canned %s reply", mode.value)
            text = canned_response(mode)
            model_used = FALLBACK_MODEL
            error = exc.code

        latency_ms = int((perf_counter() - start) * 1000)
        metadata = InteractionMetadata(
            mode=mode,
            model_used=model_used,
            model_requested=requested.value,
            subject=subject,
            proficiency_level=proficiency_level,
            model_id=model_id,
            forced_mode=forced,
            latency_ms=latency_ms,
            error=error,
        )
        _json_log(
            "tutor_interaction",
            {
                "mode": mode.value,
                "forced_mode": forced,
                "model_requested": requested.value,
                "model_used": model_used,
                "model_id": model_id,
                "latency_ms": latency_ms,
                "error": error,
                "history_length": len(history),
            },
        )
        return InteractionResult(response=text, metadata=metadata)

    # ------------------------------------------------------------------
    async def _store_call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(getattr(self.store, method), *args, **kwargs)
        except Exception:
            logger.exception("Conversation store call %s failed", method)
            return None

    async def respond(
        self,
        user_id: str,
        message: str,
        *,
        subject: Optional[str] = None,
        proficiency_level: Optional[str] = None,
        conversation_id: Optional[str] = None,
        forced_mode: Any = None,
    ) -> TutorExchange:
        """Run one turn against the learner's stored conversation and save it.

        A missing or unreadable conversation starts a new one. Store failures
        are logged and the reply is still returned.
        """

        conversation: Optional[Mapping[str, Any]] = None
        if self.store is not None and conversation_id:
            conversation = await self._store_call("get_conversation", conversation_id, user_id)
            if conversation is None:
                logger.info("Conversation %s not available for %s; starting a new one", conversation_id, user_id)

        # A continued conversation keeps its own subject and level unless the caller overrides them.
        stored = conversation or {}
        subject = (subject or "").strip() or stored.get("subject") or self.default_subject
        proficiency_level = (
            (proficiency_level or "").strip() or stored.get("proficiency_level") or self.default_level
        )
        history: List[Dict[str, Any]] = [dict(entry) for entry in stored.get("messages") or ()]

        result = await self.process_interaction(
            message,
            subject=subject,
            proficiency_level=proficiency_level,
            conversation_history=history,
            forced_mode=forced_mode,
        )

        user_message = ChatMessage(role="user", content=message)
        assistant_message = ChatMessage(
            role="assistant",
            content=result.response,
            metadata=result.metadata.model_dump(mode="json", exclude_none=True),
        )
        new_messages = [user_message, assistant_message]
        transcript = history + [m.model_dump(mode="json", exclude_none=True) for m in new_messages]

        if self.store is None:
            return TutorExchange(result=result, conversation_id=conversation_id, messages=transcript)

        if conversation is None:
            conversation = await self._store_call("create_conversation", user_id, subject, proficiency_level)
        if conversation is None:
            return TutorExchange(result=result, conversation_id=None, messages=transcript)

        stored_id = str(conversation["id"])
        appended = await self._store_call(
            "append_messages",
            stored_id,
            new_messages,
            last_mode=result.metadata.mode.value,
            last_model=result.metadata.model_used,
        )
        return TutorExchange(
            result=result,
            conversation_id=stored_id,
            messages=transcript,
            persisted=appended is not None,
        )


def build_providers(settings: TutorSettings) -> Dict[ProviderChoice, ChatProvider]:
    shared = {
        "timeout": settings.timeout_seconds,
        "max_tokens": settings.max_tokens,
        "history_window": settings.history_window,
    }
    return {
        ProviderChoice.OPENAI: OpenAIChatProvider(
            settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.openai_model,
            fallback_model=settings.openai_fallback_model,
            **shared,
        ),
        ProviderChoice.CLAUDE: AnthropicMessagesProvider(
            settings.anthropic_api_key,
            base_url=settings.anthropic_base_url,
            model=settings.anthropic_model,
            fallback_model=settings.anthropic_fallback_model,
            **shared,
        ),
    }


def build_tutor(settings: Optional[TutorSettings] = None, store: Optional[ConversationStore] = None) -> LearningTutor:
    settings = settings or TutorSettings.from_env()
    classifier = LearningModeClassifier.from_path(
        settings.classifier_rules_path,
        variant=settings.classifier_variant,
    )
    return LearningTutor(build_providers(settings), classifier=classifier, store=store)


__all__ = [
    "AllProvidersExhausted",
    "ConversationStore",
    "ERROR_ALL_PROVIDERS_FAILED",
    "ERROR_NO_PROVIDER_AVAILABLE",
    "FALLBACK_RESPONSES",
    "LearningTutor",
    "TutorExchange",
    "build_providers",
    "build_tutor",
    "canned_response",
]
