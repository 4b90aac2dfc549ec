"""Provider selection per learning mode."""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple

from engines.learning_modes import LearningMode, ProviderChoice

# Reasoning-heavy modes go to Claude, structured/terse ones to OpenAI.
MODE_PREFERENCES: Dict[LearningMode, ProviderChoice] = {
    LearningMode.DISCOVERY: ProviderChoice.CLAUDE,
    LearningMode.EXPLANATION: ProviderChoice.CLAUDE,
    LearningMode.PRACTICE: ProviderChoice.OPENAI,
    LearningMode.CHALLENGE: ProviderChoice.OPENAI,
    LearningMode.REVIEW: ProviderChoice.OPENAI,
    LearningMode.ANSWER_CHECK: ProviderChoice.OPENAI,
}

DEFAULT_PREFERENCE = ProviderChoice.OPENAI


def _is_available(available: Optional[Mapping[object, bool]], provider: ProviderChoice) -> bool:
    if not available:
        return False
    if provider in available:
        return bool(available[provider])
    return bool(available.get(provider.value, False))


def preferred_provider(mode: LearningMode) -> ProviderChoice:
    return MODE_PREFERENCES.get(mode, DEFAULT_PREFERENCE)


def fallback_order(
    mode: LearningMode,
    available: Optional[Mapping[object, bool]],
) -> Tuple[ProviderChoice, ...]:
    """Available providers for ``mode``, preferred first."""

    preferred = preferred_provider(mode)
    return tuple(
        provider for provider in (preferred, preferred.other) if _is_available(available, provider)
    )


def select_model(
    mode: LearningMode,
    available: Optional[Mapping[object, bool]],
) -> ProviderChoice:
    """Return the provider to try first, or ``ProviderChoice.NONE``.

    ``available`` maps ``"openai"``/``"claude"`` (or :class:`ProviderChoice`
    members) to availability flags; missing keys count as unavailable.
    """

    order = fallback_order(mode, available)
    return order[0] if order else ProviderChoice.NONE


__all__ = [
    "DEFAULT_PREFERENCE",
    "MODE_PREFERENCES",
    "fallback_order",
    "preferred_provider",
    "select_model",
]
