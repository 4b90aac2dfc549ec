"""Pydantic schemas for conversation messages, interaction results and API bodies."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from engines.learning_modes import LearningMode, ProviderChoice

__all__ = [
    "ChatMessage",
    "InteractionMetadata",
    "InteractionResult",
    "ModeDetection",
    "TutorBody",
    "DetectModeBody",
    "utc_now_iso",
]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatMessage(BaseModel):
    """One immutable entry of a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str = Field(default_factory=utc_now_iso)
    metadata: Dict[str, Any] | None = None


class InteractionMetadata(BaseModel):
    mode: LearningMode
    model_used: Literal["openai", "claude", "fallback"]
    model_requested: Literal["openai", "claude", "none"]
    subject: str
    proficiency_level: str
    timestamp: str = Field(default_factory=utc_now_iso)
    model_id: str | None = Field(
        default=None,
        description="Upstream model id that produced the reply; empty for canned replies.",
    )
    forced_mode: bool = False
    latency_ms: int | None = None
    error: str | None = Field(
        default=None,
        description="Sanitised failure code; raw upstream errors are only logged.",
    )


class InteractionResult(BaseModel):
    response: str
    metadata: InteractionMetadata

    @property
    def degraded(self) -> bool:
        return self.metadata.model_used != self.metadata.model_requested

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ModeDetection(BaseModel):
    mode: LearningMode
    recommended_provider: ProviderChoice
    available_providers: Dict[str, bool]
    reason: str | None = None


class TutorBody(BaseModel):
    user_id: str
    message: str
    subject: Optional[str] = None
    proficiency_level: Optional[str] = None
    conversation_id: Optional[str] = None
    force_learning_mode: Optional[LearningMode] = None

    @field_validator("force_learning_mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        parsed = LearningMode.parse(value)
        if parsed is None:
            raise ValueError(f"unknown learning mode: {value}")
        return parsed


class DetectModeBody(BaseModel):
    message: str
    conversation_history: List[ChatMessage] = Field(default_factory=list)
    proficiency_level: str = "intermediate"
