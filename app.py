# app.py - Lilibet learning engine API v2.1.0
# - Learning-mode detection and provider routing per message
# - Canned replies instead of 5xx when no provider answers

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

import db
import tutor
from engines.learning_analytics import analyze_learning_effectiveness, mode_usage
from engines.learning_modes import MODE_CATALOG, mode_values
from env_validation import TutorSettings
from schemas import DetectModeBody, TutorBody

logger = logging.getLogger(__name__)

APP_VERSION = "2.1.0"

_TUTOR: Optional[tutor.LearningTutor] = None


def get_tutor() -> tutor.LearningTutor:
    global _TUTOR
    if _TUTOR is None:
        _TUTOR = tutor.build_tutor(TutorSettings.from_env(), store=db.SQLiteConversationStore())
    return _TUTOR


@asynccontextmanager
async def _lifespan(_: FastAPI):
    global _TUTOR
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        settings = validate_environment()

        db.init()
        if _TUTOR is None:
            _TUTOR = tutor.build_tutor(settings, store=db.SQLiteConversationStore())
        logger.info("Provider status at startup: %s", _TUTOR.provider_status())
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Lilibet Learning Engine", version=APP_VERSION, lifespan=_lifespan)


class ArchiveBody(BaseModel):
    user_id: str


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.get("/")
def root():
    status = get_tutor().provider_status()
    return {
        "name": "Lilibet Learning Engine",
        "version": APP_VERSION,
        "status": "healthy",
        "description": "AI tutor with learning mode detection and provider routing",
        "endpoints": {
            "health": "/health",
            "tutor": "/tutor",
            "models": "/models",
            "learning_modes": "/learning/modes",
            "detect_mode": "/learning/detect-mode",
            "analytics": "/learning/analytics/{conversation_id}",
            "conversations": "/conversations",
        },
        "features": {
            "openai": status["openai"],
            "claude": status["claude"],
            "learning_mode_detection": True,
            "model_routing": True,
            "learning_analytics": True,
        },
    }


@app.get("/health")
def health():
    status = get_tutor().provider_status()
    return {
        "status": "OK",
        "message": "Lilibet Learning Engine is running",
        "timestamp": _utc_now(),
        "models": {"openai": status["openai"], "claude": status["claude"]},
        "ready": status["ready"],
        "features": {
            "conversation_persistence": True,
            "learning_mode_detection": True,
            "model_routing": True,
            "learning_analytics": True,
        },
    }


@app.get("/models")
def models():
    return {
        "models": get_tutor().model_catalog(),
        "learning_modes": list(mode_values()),
        "smart_routing": True,
    }


@app.get("/learning/modes")
def learning_modes():
    return {
        "modes": {
            mode.value: {
                "name": info.name,
                "description": info.description,
                "best_provider": info.best_provider.value,
                "icon": info.icon,
                "example": info.example,
            }
            for mode, info in MODE_CATALOG.items()
        },
        "auto_detection": True,
        "manual_override": True,
    }


@app.post("/learning/detect-mode")
def detect_mode(body: DetectModeBody):
    detection = get_tutor().detect_mode(
        body.message,
        body.conversation_history,
        body.proficiency_level,
    )
    return {
        "detected_mode": detection.mode.value,
        "recommended_provider": detection.recommended_provider.value,
        "available_providers": detection.available_providers,
        "available_modes": list(mode_values()),
        "reason": detection.reason,
        "recommendation": (
            f"Best approach: {detection.mode.value} mode using {detection.recommended_provider.value}"
        ),
    }


@app.post("/tutor")
async def tutor_reply(body: TutorBody):
    message = (body.message or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="message is required")
    if not body.user_id.strip():
        raise HTTPException(status_code=400, detail="user_id required")

    exchange = await get_tutor().respond(
        body.user_id,
        message,
        subject=body.subject,
        proficiency_level=body.proficiency_level,
        conversation_id=body.conversation_id,
        forced_mode=body.force_learning_mode,
    )
    result = exchange.result
    try:
        await asyncio.to_thread(
            db.record_llm_metric,
            body.user_id,
            exchange.conversation_id,
            result.metadata.mode.value,
            result.metadata.model_requested,
            result.metadata.model_used,
            model_id=result.metadata.model_id,
            latency_ms=result.metadata.latency_ms,
            error=result.metadata.error,
        )
    except sqlite3.Error as exc:
        logger.warning("Failed to record LLM metric for %s: %s", body.user_id, exc)

    payload: Dict[str, Any] = result.to_payload()
    payload["conversation_id"] = exchange.conversation_id
    payload["learning_analysis"] = analyze_learning_effectiveness(exchange.messages)
    return payload


@app.get("/learning/analytics/{conversation_id}")
def learning_analytics(conversation_id: str, user_id: str):
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id required")
    conversation = db.get_conversation(conversation_id, user_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="conversation not found")
    messages = conversation.get("messages") or []
    return {
        "conversation_id": conversation_id,
        "learning_analysis": analyze_learning_effectiveness(messages),
        "modes_used": mode_usage(messages),
        "total_interactions": sum(1 for m in messages if m.get("role") == "user"),
        "subject": conversation.get("subject"),
        "created_at": conversation.get("created_at"),
    }


@app.get("/conversations")
def list_conversations(
    user_id: str,
    subject: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    include_archived: bool = False,
):
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id required")
    if limit < 1 or limit > 200:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 200")
    if offset < 0:
        raise HTTPException(status_code=400, detail="offset may not be negative")
    conversations = db.list_conversations(
        user_id,
        subject=subject,
        limit=limit,
        offset=offset,
        include_archived=include_archived,
    )
    return {"conversations": conversations, "count": len(conversations)}


@app.get("/conversations/{conversation_id}")
def get_conversation(conversation_id: str, user_id: str):
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id required")
    conversation = db.get_conversation(conversation_id, user_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="conversation not found")
    return conversation


@app.post("/conversations/{conversation_id}/archive")
def archive_conversation(conversation_id: str, body: ArchiveBody):
    if not db.archive_conversation(conversation_id, body.user_id):
        raise HTTPException(status_code=404, detail="conversation not found")
    return {"conversation_id": conversation_id, "archived": True}
