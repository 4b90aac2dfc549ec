"""Tests for the rule-based learning mode classifier."""

import json

import pytest

from engines.learning_modes import LearningMode
from engines.mode_classifier import (
    DEFAULT_MODE,
    STANDARD_RULE_ORDER,
    STRICT_RULE_ORDER,
    ClassifierConfigError,
    LearningModeClassifier,
    classify,
    is_answer_shaped,
)


@pytest.fixture
def standard():
    return LearningModeClassifier()


@pytest.fixture
def strict():
    return LearningModeClassifier(variant="strict")


def test_rule_orders_are_documented_configuration():
    assert STANDARD_RULE_ORDER == (
        LearningMode.EXPLANATION,
        LearningMode.PRACTICE,
        LearningMode.DISCOVERY,
        LearningMode.CHALLENGE,
        LearningMode.REVIEW,
    )
    assert STRICT_RULE_ORDER[0] is LearningMode.PRACTICE
    assert LearningModeClassifier().order == STANDARD_RULE_ORDER
    assert LearningModeClassifier(variant="strict").order == STRICT_RULE_ORDER


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Why is the sky blue?", LearningMode.EXPLANATION),
        ("Can you explain fractions?", LearningMode.EXPLANATION),
        ("Help me solve this equation", LearningMode.PRACTICE),
        ("I wonder what happens to ice in space", LearningMode.DISCOVERY),
        ("Give me a quiz", LearningMode.CHALLENGE),
        ("Let's recap last week", LearningMode.REVIEW),
        ("hello there", LearningMode.DISCOVERY),
    ],
)
def test_standard_examples(standard, message, expected):
    assert standard.classify(message) is expected


def test_swapping_order_changes_mixed_message(standard, strict):
    message = "Why is my homework answer wrong?"
    assert standard.classify(message) is LearningMode.EXPLANATION
    assert strict.classify(message) is LearningMode.PRACTICE


def test_bare_arithmetic_is_practice_in_strict_variant(strict, standard):
    assert strict.classify("What is 4+2?") is LearningMode.PRACTICE
    # "what is" fires first in the reference order.
    assert standard.classify("What is 4+2?") is LearningMode.EXPLANATION


@pytest.mark.parametrize("message", ["", "   ", "\n\t"])
def test_empty_message_returns_default(standard, message):
    assert standard.classify(message) is DEFAULT_MODE
    assert standard.explain(message).reason == "empty"


def test_keywords_match_whole_words_only(standard):
    # "testing" must not trigger the "test" challenge keyword.
    assert standard.classify("I am testing my bike") is LearningMode.DISCOVERY


def test_classification_is_deterministic(standard):
    message = "Can we review photosynthesis?"
    results = {standard.classify(message) for _ in range(5)}
    assert results == {LearningMode.REVIEW}


def test_total_over_odd_inputs(standard, strict):
    for message in ("???", "1234567890", "ünïcödé ✓", "a" * 5000, "\x00"):
        assert isinstance(standard.classify(message), LearningMode)
        assert isinstance(strict.classify(message), LearningMode)


def test_context_fallback_uses_pending_tutor_question(standard):
    history = [
        {"role": "user", "content": "Why do leaves fall?"},
        {"role": "assistant", "content": "What changes about the weather in autumn?"},
    ]
    result = standard.explain("it gets cold", history)
    assert result.mode is LearningMode.DISCOVERY
    assert result.reason == "context"


def test_context_fallback_ignores_old_questions():
    classifier = LearningModeClassifier(default_mode=LearningMode.REVIEW)
    history = [{"role": "assistant", "content": "Ready?"}] + [
        {"role": "user", "content": "ok"} for _ in range(4)
    ]
    assert classifier.classify("sure thing", history) is LearningMode.REVIEW


@pytest.mark.parametrize("reply", ["6", "yes", "x = 3", "3/4", "b)", "42 apples", "No."])
def test_answer_shaped_replies(reply):
    assert is_answer_shaped(reply)


@pytest.mark.parametrize("reply", ["", "I think so maybe", "why?", "e"])
def test_not_answer_shaped(reply):
    assert not is_answer_shaped(reply)


def test_strict_answer_check_after_tutor_question(strict):
    history = [
        {"role": "user", "content": "What is 4+2?"},
        {"role": "assistant", "content": "If you have 4 apples and get 2 more, how many do you have?"},
    ]
    result = strict.explain("6", history)
    assert result.mode is LearningMode.ANSWER_CHECK
    assert result.reason == "answer_check"


def test_strict_answer_check_after_practice_reply(strict):
    history = [
        {"role": "assistant", "content": "Try counting on from 4.", "metadata": {"mode": "practice"}},
    ]
    assert strict.classify("6", history) is LearningMode.ANSWER_CHECK


def test_strict_no_answer_check_after_explanation_statement(strict):
    history = [
        {"role": "assistant", "content": "Plants make sugar from light.", "metadata": {"mode": "explanation"}},
    ]
    assert strict.classify("yes", history) is not LearningMode.ANSWER_CHECK


def test_standard_never_returns_answer_check(standard):
    history = [{"role": "assistant", "content": "How many legs does a spider have?"}]
    assert standard.classify("8", history) is not LearningMode.ANSWER_CHECK


def test_module_level_classify_uses_standard_table():
    assert classify("Explain gravity") is LearningMode.EXPLANATION


def test_answer_check_cannot_be_keyword_rule():
    with pytest.raises(ClassifierConfigError):
        LearningModeClassifier(order=[LearningMode.ANSWER_CHECK, LearningMode.PRACTICE])


def test_unknown_variant_rejected():
    with pytest.raises(ClassifierConfigError):
        LearningModeClassifier(variant="lenient")


def test_from_path_applies_overrides(tmp_path):
    config = {
        "variant": "standard",
        "default_mode": "review",
        "rules": [
            {"mode": "challenge", "patterns": ["brain teaser"]},
            {"mode": "explanation", "patterns": ["explain"]},
        ],
    }
    path = tmp_path / "rules.json"
    path.write_text(json.dumps(config), encoding="utf-8")

    classifier = LearningModeClassifier.from_path(path)

    assert classifier.order == (LearningMode.CHALLENGE, LearningMode.EXPLANATION)
    assert classifier.classify("Explain this brain teaser") is LearningMode.CHALLENGE
    assert classifier.classify("nothing matches") is LearningMode.REVIEW


def test_from_path_rejects_unknown_mode(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"rules": {"daydream": ["zzz"]}}), encoding="utf-8")
    with pytest.raises(ClassifierConfigError):
        LearningModeClassifier.from_path(path)


def test_from_path_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        LearningModeClassifier.from_path(tmp_path / "absent.json")
