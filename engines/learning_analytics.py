"""Conversation-level learning analytics."""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Mapping, Optional, Sequence

from engines.learning_modes import FALLBACK_MODEL, LearningMode, SOCRATIC_MODES


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _metadata(entry: Any) -> Mapping[str, Any]:
    metadata = _field(entry, "metadata")
    return metadata if isinstance(metadata, Mapping) else {}


def _engagement_level(learner_turns: int, avg_words: float, learner_questions: int) -> str:
    if learner_turns == 0:
        return "none"
    score = 0
    if learner_turns >= 5:
        score += 1
    if avg_words >= 8:
        score += 1
    if learner_questions >= 2:
        score += 1
    return ("low", "medium", "high", "high")[score]


def mode_usage(messages: Sequence[Any]) -> Dict[str, int]:
    """Count learning modes recorded on assistant messages."""

    counts: Counter[str] = Counter()
    for entry in messages or ():
        if _field(entry, "role") != "assistant":
            continue
        mode = LearningMode.parse(_metadata(entry).get("mode") or _metadata(entry).get("learningMode"))
        if mode is not None:
            counts[mode.value] += 1
    return dict(counts)


def analyze_learning_effectiveness(messages: Sequence[Any]) -> Dict[str, Any]:
    """Summarise a transcript: turns, questions, modes, models and engagement."""

    learner_turns = 0
    tutor_turns = 0
    learner_questions = 0
    tutor_questions = 0
    learner_words = 0
    socratic_replies = 0
    degraded_replies = 0
    model_counts: Counter[str] = Counter()

    for entry in messages or ():
        role = _field(entry, "role")
        content = str(_field(entry, "content") or "").strip()
        if role == "user":
            learner_turns += 1
            learner_words += len(content.split())
            if "?" in content:
                learner_questions += 1
        elif role == "assistant":
            tutor_turns += 1
            if content.endswith("?"):
                tutor_questions += 1
            metadata = _metadata(entry)
            model_used = metadata.get("model_used") or metadata.get("model")
            if model_used:
                model_counts[str(model_used)] += 1
            requested = metadata.get("model_requested")
            if model_used == FALLBACK_MODEL or (requested and model_used and requested != model_used):
                degraded_replies += 1
            if LearningMode.parse(metadata.get("mode")) in SOCRATIC_MODES:
                socratic_replies += 1

    modes = mode_usage(messages)
    dominant_mode: Optional[str] = None
    if modes:
        dominant_mode = sorted(modes.items(), key=lambda item: (-item[1], item[0]))[0][0]
    avg_words = learner_words / learner_turns if learner_turns else 0.0

    return {
        "total_messages": learner_turns + tutor_turns,
        "learner_turns": learner_turns,
        "tutor_turns": tutor_turns,
        "learner_questions": learner_questions,
        "tutor_questions": tutor_questions,
        "avg_learner_words": round(avg_words, 2),
        "question_ratio": round(tutor_questions / tutor_turns, 2) if tutor_turns else 0.0,
        "socratic_ratio": round(socratic_replies / tutor_turns, 2) if tutor_turns else 0.0,
        "modes_used": modes,
        "dominant_mode": dominant_mode,
        "model_usage": dict(model_counts),
        "degraded_replies": degraded_replies,
        "engagement_level": _engagement_level(learner_turns, avg_words, learner_questions),
    }


__all__ = ["analyze_learning_effectiveness", "mode_usage"]
