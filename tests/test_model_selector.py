"""Tests for provider selection per learning mode."""

import pytest

from engines.learning_modes import LearningMode, ProviderChoice
from engines.model_selector import MODE_PREFERENCES, fallback_order, preferred_provider, select_model

BOTH = {"openai": True, "claude": True}


@pytest.mark.parametrize(
    "mode, expected",
    [
        (LearningMode.DISCOVERY, ProviderChoice.CLAUDE),
        (LearningMode.EXPLANATION, ProviderChoice.CLAUDE),
        (LearningMode.PRACTICE, ProviderChoice.OPENAI),
        (LearningMode.CHALLENGE, ProviderChoice.OPENAI),
        (LearningMode.REVIEW, ProviderChoice.OPENAI),
        (LearningMode.ANSWER_CHECK, ProviderChoice.OPENAI),
    ],
)
def test_preferred_provider_when_both_available(mode, expected):
    assert preferred_provider(mode) is expected
    assert select_model(mode, BOTH) is expected


def test_every_mode_has_a_preference():
    assert set(MODE_PREFERENCES) == set(LearningMode)


def test_falls_back_to_other_provider():
    assert select_model(LearningMode.DISCOVERY, {"openai": True, "claude": False}) is ProviderChoice.OPENAI
    assert select_model(LearningMode.PRACTICE, {"openai": False, "claude": True}) is ProviderChoice.CLAUDE


@pytest.mark.parametrize("available", [{}, None, {"openai": False, "claude": False}])
def test_none_when_nothing_available(available):
    for mode in LearningMode:
        assert select_model(mode, available) is ProviderChoice.NONE
        assert fallback_order(mode, available) == ()


def test_missing_key_counts_as_unavailable():
    assert select_model(LearningMode.EXPLANATION, {"openai": True}) is ProviderChoice.OPENAI


def test_enum_keys_accepted():
    available = {ProviderChoice.CLAUDE: True, ProviderChoice.OPENAI: False}
    assert select_model(LearningMode.REVIEW, available) is ProviderChoice.CLAUDE


def test_fallback_order_never_lists_unavailable_provider():
    assert fallback_order(LearningMode.DISCOVERY, BOTH) == (ProviderChoice.CLAUDE, ProviderChoice.OPENAI)
    assert fallback_order(LearningMode.PRACTICE, BOTH) == (ProviderChoice.OPENAI, ProviderChoice.CLAUDE)
    assert fallback_order(LearningMode.PRACTICE, {"claude": True}) == (ProviderChoice.CLAUDE,)
