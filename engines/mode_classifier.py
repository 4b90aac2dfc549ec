"""Rule-based learning-mode classifier.

Each rule group pairs a :class:`LearningMode` with an ordered list of
patterns. Groups are evaluated in a fixed priority order and the first group
with a matching pattern decides the mode. The order is product behaviour:
swapping two groups changes how mixed messages ("why is my homework wrong?")
are routed, so both orders live here as named constants and are covered by
tests.

When nothing matches, the recent conversation decides: a pending tutor
question keeps the dialogue in discovery mode, otherwise the configured
default is returned. Every input, including empty text, maps to exactly one
mode.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from engines.learning_modes import PRACTICE_FAMILY, LearningMode

STANDARD = "standard"
STRICT = "strict"
VARIANTS = (STANDARD, STRICT)

# Reference routing: explanation-seeking phrasing wins over homework phrasing.
STANDARD_RULE_ORDER: Tuple[LearningMode, ...] = (
    LearningMode.EXPLANATION,
    LearningMode.PRACTICE,
    LearningMode.DISCOVERY,
    LearningMode.CHALLENGE,
    LearningMode.REVIEW,
)

# Socratic routing: homework phrasing (and bare arithmetic) wins so that
# "what is 4+2?" is never answered outright.
STRICT_RULE_ORDER: Tuple[LearningMode, ...] = (
    LearningMode.PRACTICE,
    LearningMode.EXPLANATION,
    LearningMode.DISCOVERY,
    LearningMode.CHALLENGE,
    LearningMode.REVIEW,
)

DEFAULT_MODE = LearningMode.DISCOVERY

# Number of trailing history entries inspected for a pending tutor question.
CONTEXT_WINDOW = 4

# Plain entries match as whole words/phrases; entries prefixed with ``re:``
# are raw regular expressions.
DEFAULT_PATTERNS: Dict[LearningMode, Tuple[str, ...]] = {
    LearningMode.EXPLANATION: (
        "what is",
        "what are",
        "what does",
        "how does",
        "how do",
        "why",
        "tell me about",
        "explain",
        "meaning of",
        "define",
    ),
    LearningMode.PRACTICE: (
        "practice",
        "solve",
        "calculate",
        "exercise",
        "problem",
        "work through",
        "homework",
        "worksheet",
        "assignment",
        "equation",
        "how many",
        "find the value",
        r"re:\d+(?:\.\d+)?\s*[-+*/x×÷^]\s*\d+",
    ),
    LearningMode.DISCOVERY: (
        "wonder",
        "curious",
        "explore",
        "discover",
        "learn about",
        "what if",
        "imagine",
    ),
    LearningMode.CHALLENGE: (
        "challenge",
        "test me",
        "test",
        "quiz",
        "hard",
        "harder",
        "difficult",
        "tricky",
    ),
    LearningMode.REVIEW: (
        "review",
        "remember",
        "recap",
        "summarize",
        "summarise",
        "go over",
        "revise",
    ),
}

_AFFIRMATIONS = frozenset(
    {"yes", "no", "yeah", "yep", "yup", "nope", "true", "false", "correct", "maybe"}
)
_NUMERIC_ANSWER = re.compile(r"^(?:[a-z]\s*=\s*)?-?\d+(?:[.,/]\d+)?\s*(?:%|°|[a-z]+)?$")
_CHOICE_ANSWER = re.compile(r"^[a-d][).]?$")
_TRAILING_PUNCTUATION = ".!? "


class ClassifierConfigError(ValueError):
    """Raised when a rule-table override is malformed."""


@dataclass(frozen=True)
class Classification:
    """Outcome of one classification together with the rule that fired."""

    mode: LearningMode
    reason: str


def _compile(pattern: str) -> Pattern[str]:
    if pattern.startswith("re:"):
        return re.compile(pattern[3:])
    return re.compile(r"\b" + re.escape(pattern.lower()) + r"\b")


def _entry_field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _entry_mode(entry: Any) -> Optional[LearningMode]:
    metadata = _entry_field(entry, "metadata")
    if not isinstance(metadata, Mapping):
        return None
    return LearningMode.parse(metadata.get("mode") or metadata.get("learningMode"))


def is_answer_shaped(message: str) -> bool:
    """Return ``True`` for bare replies such as ``"6"``, ``"yes"`` or ``"x = 3"``."""

    text = " ".join((message or "").lower().split()).strip(_TRAILING_PUNCTUATION)
    if not text:
        return False
    if text in _AFFIRMATIONS:
        return True
    return bool(_NUMERIC_ANSWER.match(text) or _CHOICE_ANSWER.match(text))


class LearningModeClassifier:
    """Ordered keyword/pattern classifier for :class:`LearningMode`."""

    def __init__(
        self,
        rules: Mapping[LearningMode, Sequence[str]] | Sequence[Tuple[LearningMode, Sequence[str]]] | None = None,
        *,
        variant: str = STANDARD,
        order: Optional[Sequence[LearningMode]] = None,
        default_mode: LearningMode = DEFAULT_MODE,
    ) -> None:
        if variant not in VARIANTS:
            raise ClassifierConfigError(f"Unknown classifier variant: {variant!r}")
        patterns: Dict[LearningMode, Sequence[str]] = dict(DEFAULT_PATTERNS)
        if rules is not None:
            patterns.update(dict(rules.items()) if isinstance(rules, Mapping) else dict(rules))

        if order is None:
            order = STRICT_RULE_ORDER if variant == STRICT else STANDARD_RULE_ORDER
        if len(set(order)) != len(order):
            raise ClassifierConfigError("Rule order may not repeat a mode")
        if LearningMode.ANSWER_CHECK in order:
            raise ClassifierConfigError("answer_check is decided from context, not keywords")

        self.variant = variant
        self.default_mode = default_mode
        self._rules: List[Tuple[LearningMode, Tuple[Tuple[str, Pattern[str]], ...]]] = [
            (mode, tuple((p, _compile(p)) for p in patterns.get(mode, ()))) for mode in order
        ]

    @property
    def order(self) -> Tuple[LearningMode, ...]:
        return tuple(mode for mode, _ in self._rules)

    @property
    def supports_answer_check(self) -> bool:
        return self.variant == STRICT

    def classify(
        self,
        message: str,
        history: Sequence[Any] = (),
        proficiency: Optional[str] = None,
    ) -> LearningMode:
        """Return the learning mode for ``message``.

        ``proficiency`` is accepted so callers can pass the full learner
        context; the rule table does not currently branch on it.
        """

        return self.explain(message, history, proficiency).mode

    def explain(
        self,
        message: str,
        history: Sequence[Any] = (),
        proficiency: Optional[str] = None,
    ) -> Classification:
        text = " ".join((message or "").lower().split())
        history = list(history or ())
        if not text:
            return Classification(self.default_mode, "empty")

        if self.supports_answer_check and is_answer_shaped(text) and self._awaiting_answer(history):
            return Classification(LearningMode.ANSWER_CHECK, "answer_check")

        for mode, compiled in self._rules:
            for raw, pattern in compiled:
                if pattern.search(text):
                    return Classification(mode, f"rule:{mode.value}:{raw}")

        if self._pending_question(history):
            return Classification(LearningMode.DISCOVERY, "context")
        return Classification(self.default_mode, "default")

    def _awaiting_answer(self, history: Sequence[Any]) -> bool:
        last_assistant = next(
            (entry for entry in reversed(history) if _entry_field(entry, "role") == "assistant"),
            None,
        )
        if last_assistant is None:
            return True
        content = str(_entry_field(last_assistant, "content") or "").rstrip()
        if content.endswith("?"):
            return True
        return _entry_mode(last_assistant) in PRACTICE_FAMILY

    def _pending_question(self, history: Sequence[Any]) -> bool:
        for entry in history[-CONTEXT_WINDOW:]:
            if _entry_field(entry, "role") != "assistant":
                continue
            if str(_entry_field(entry, "content") or "").rstrip().endswith("?"):
                return True
        return False

    @classmethod
    def from_path(cls, path: str | Path | None, *, variant: Optional[str] = None) -> "LearningModeClassifier":
        """Build a classifier from a JSON rule-table override.

        The file may contain ``variant``, ``default_mode``, ``order`` (list of
        modes) and ``rules`` (object of mode -> list of patterns, or a list of
        ``{"mode", "patterns"}`` objects whose order becomes the priority).
        """

        if path is None:
            return cls(variant=variant or STANDARD)
        path_obj = Path(path)
        if not path_obj.exists():
            raise FileNotFoundError(f"Classifier configuration not found: {path_obj}")
        with path_obj.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, Mapping):
            raise ClassifierConfigError("Classifier configuration must be a JSON object")

        rules: Dict[LearningMode, List[str]] = {}
        list_order: List[LearningMode] = []
        raw_rules = data.get("rules", {})
        if isinstance(raw_rules, Mapping):
            items = list(raw_rules.items())
        elif isinstance(raw_rules, list):
            items = []
            for entry in raw_rules:
                if not isinstance(entry, Mapping):
                    raise ClassifierConfigError("Each rule entry must be an object")
                items.append((entry.get("mode"), entry.get("patterns")))
        else:
            raise ClassifierConfigError("'rules' must be an object or a list")

        for raw_mode, patterns in items:
            mode = LearningMode.parse(raw_mode)
            if mode is None:
                raise ClassifierConfigError(f"Unknown learning mode in rules: {raw_mode!r}")
            if not isinstance(patterns, (list, tuple)):
                raise ClassifierConfigError(f"Patterns for {raw_mode!r} must be a list")
            rules[mode] = [str(p) for p in patterns]
            list_order.append(mode)

        order: Optional[List[LearningMode]] = None
        if "order" in data:
            order = []
            for raw_mode in data["order"]:
                mode = LearningMode.parse(raw_mode)
                if mode is None:
                    raise ClassifierConfigError(f"Unknown learning mode in order: {raw_mode!r}")
                order.append(mode)
        elif isinstance(raw_rules, list):
            order = list_order

        default_mode = LearningMode.parse(data.get("default_mode")) or DEFAULT_MODE
        return cls(
            rules,
            variant=variant or str(data.get("variant", STANDARD)),
            order=order,
            default_mode=default_mode,
        )


_DEFAULT_CLASSIFIER = LearningModeClassifier()


def classify(
    message: str,
    history: Sequence[Any] = (),
    proficiency: Optional[str] = None,
) -> LearningMode:
    """Classify with the standard rule table."""

    return _DEFAULT_CLASSIFIER.classify(message, history, proficiency)


__all__ = [
    "CONTEXT_WINDOW",
    "Classification",
    "ClassifierConfigError",
    "DEFAULT_MODE",
    "DEFAULT_PATTERNS",
    "LearningModeClassifier",
    "STANDARD",
    "STANDARD_RULE_ORDER",
    "STRICT",
    "STRICT_RULE_ORDER",
    "classify",
    "is_answer_shaped",
]
