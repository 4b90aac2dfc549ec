"""Environment variable validation and tutor settings."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when environment variables are missing or invalid."""
    pass


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def safe_float(env_name: str, default: float) -> float:
    raw = os.getenv(env_name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def safe_int(env_name: str, default: int) -> int:
    raw = os.getenv(env_name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


@dataclass(frozen=True)
class TutorSettings:
    """Runtime configuration read once at process start."""

    openai_api_key: Optional[str]
    anthropic_api_key: Optional[str]
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com"
    openai_model: str = "gpt-4o-mini"
    openai_fallback_model: str = "gpt-3.5-turbo"
    anthropic_model: str = "claude-3-5-haiku-20241022"
    anthropic_fallback_model: str = "claude-3-5-sonnet-20241022"
    timeout_seconds: float = 30.0
    max_tokens: int = 500
    history_window: int = 8
    classifier_variant: str = "standard"
    classifier_rules_path: Optional[str] = None
    db_path: str = "data.db"

    @property
    def has_openai(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def has_anthropic(self) -> bool:
        return bool(self.anthropic_api_key)

    @classmethod
    def from_env(cls) -> "TutorSettings":
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            # Both names are in use across deployments.
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or os.getenv("CLAUDE_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL", cls.openai_base_url),
            anthropic_base_url=os.getenv("ANTHROPIC_BASE_URL", cls.anthropic_base_url),
            openai_model=os.getenv("OPENAI_MODEL", cls.openai_model),
            openai_fallback_model=os.getenv("OPENAI_FALLBACK_MODEL", cls.openai_fallback_model),
            anthropic_model=os.getenv("ANTHROPIC_MODEL", cls.anthropic_model),
            anthropic_fallback_model=os.getenv("ANTHROPIC_FALLBACK_MODEL", cls.anthropic_fallback_model),
            timeout_seconds=safe_float("LLM_TIMEOUT", cls.timeout_seconds),
            max_tokens=safe_int("LLM_MAX_TOKENS", cls.max_tokens),
            history_window=safe_int("HISTORY_WINDOW", cls.history_window),
            classifier_variant=os.getenv("CLASSIFIER_VARIANT", cls.classifier_variant).strip().lower(),
            classifier_rules_path=os.getenv("CLASSIFIER_RULES_PATH") or None,
            db_path=os.getenv("DB_PATH") or cls.db_path,
        )


def validate_environment() -> TutorSettings:
    """Validate critical environment variables and return the settings.

    Raises ConfigurationError if validation fails.
    """
    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    url_vars = {"OPENAI_BASE_URL", "ANTHROPIC_BASE_URL"}
    for var in sorted(url_vars):
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise ConfigurationError(f"Invalid URL format for {var}: {value}")

    settings = TutorSettings.from_env()

    if settings.timeout_seconds <= 0:
        raise ConfigurationError("LLM_TIMEOUT must be positive")
    if settings.max_tokens <= 0:
        raise ConfigurationError("LLM_MAX_TOKENS must be positive")
    if settings.history_window < 0:
        raise ConfigurationError("HISTORY_WINDOW may not be negative")
    if settings.classifier_variant not in {"standard", "strict"}:
        raise ConfigurationError(
            f"CLASSIFIER_VARIANT must be 'standard' or 'strict', got {settings.classifier_variant!r}"
        )
    if settings.classifier_rules_path and not os.path.exists(settings.classifier_rules_path):
        raise ConfigurationError(f"CLASSIFIER_RULES_PATH not found: {settings.classifier_rules_path}")

    # Providers are optional individually; the tutor degrades to canned replies.
    if not settings.has_openai:
        logger.warning("Optional environment variable not set: OPENAI_API_KEY (OpenAI provider disabled)")
    if not settings.has_anthropic:
        logger.warning(
            "Optional environment variable not set: ANTHROPIC_API_KEY/CLAUDE_API_KEY (Claude provider disabled)"
        )
    if not (settings.has_openai or settings.has_anthropic):
        logger.warning("No LLM provider configured; tutor replies will use canned fallbacks")

    return settings
