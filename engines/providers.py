"""Chat-completion provider adapters.

Both adapters expose the same coroutine, :meth:`ChatProvider.complete`, and
hide the request-shape differences between the OpenAI chat completions API
(system prompt embedded as the first message) and the Anthropic messages API
(separate ``system`` field, strictly alternating user/assistant turns).

History is cut to the most recent ``history_window`` messages before it is
sent. A model-level failure (unknown or deprecated model, rejected
parameter, upstream 5xx) is retried once against the provider's secondary
model; authentication, rate-limit, timeout and transport failures surface
immediately as :class:`ProviderError` so the caller can switch providers.
"""

from __future__ import annotations

import json
import logging
from time import perf_counter
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from engines.learning_modes import LearningMode, ProviderChoice
from engines.prompt_builder import temperature_for

logger = logging.getLogger(__name__)
_LLM_LOGGER = logging.getLogger("lilibet.llm")

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_TOKENS = 500
DEFAULT_HISTORY_WINDOW = 8

# Status codes that point at the model id or request parameters rather than
# the account, so another model id of the same provider may succeed.
_ALTERNATE_MODEL_STATUSES = frozenset({400, 404, 410, 422})

ClientFactory = Callable[[float], httpx.AsyncClient]


class ProviderError(RuntimeError):
    """A provider call failed (transport, auth, rate limit or model error)."""

    def __init__(
        self,
        provider: ProviderChoice | str,
        cause: object,
        *,
        status_code: Optional[int] = None,
        model: Optional[str] = None,
    ) -> None:
        self.provider = ProviderChoice(provider) if not isinstance(provider, ProviderChoice) else provider
        self.cause = cause
        self.status_code = status_code
        self.model = model
        detail = f"{self.provider.value}"
        if model:
            detail += f" ({model})"
        if status_code is not None:
            detail += f" HTTP {status_code}"
        super().__init__(f"{detail}: {cause}")

    @property
    def retry_with_alternate_model(self) -> bool:
        if self.status_code is None:
            return False
        return self.status_code in _ALTERNATE_MODEL_STATUSES or self.status_code >= 500


class ProviderUnavailableError(ProviderError):
    """The provider has no credentials configured."""


def _default_client_factory(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _entry_field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def truncate_history(history: Sequence[Any], window: int = DEFAULT_HISTORY_WINDOW) -> List[Dict[str, str]]:
    """Return the last ``window`` user/assistant turns as plain role/content dicts."""

    cleaned: List[Dict[str, str]] = []
    for entry in history or ():
        role = _entry_field(entry, "role")
        content = _entry_field(entry, "content")
        if role not in ("user", "assistant"):
            continue
        text = str(content or "").strip()
        if not text:
            continue
        cleaned.append({"role": str(role), "content": text})
    if window <= 0:
        return []
    return cleaned[-window:]


class ChatProvider:
    """Base adapter: credentials, model ids, retry policy and call logging."""

    name: ProviderChoice = ProviderChoice.NONE

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str,
        model: str,
        fallback_model: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.api_key = (api_key or "").strip() or None
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.fallback_model = fallback_model if fallback_model and fallback_model != model else None
        self.timeout = float(timeout)
        self.max_tokens = int(max_tokens)
        self.history_window = int(history_window)
        self._client_factory = client_factory or _default_client_factory

    @property
    def available(self) -> bool:
        return self.api_key is not None

    @property
    def model_ids(self) -> Tuple[str, ...]:
        if self.fallback_model:
            return (self.model, self.fallback_model)
        return (self.model,)

    # ------------------------------------------------------------------
    # Request shape hooks
    # ------------------------------------------------------------------
    def endpoint(self) -> str:
        raise NotImplementedError

    def headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def build_payload(
        self,
        model: str,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_message: str,
        mode: LearningMode,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_text(self, data: Any) -> str:
        raise NotImplementedError

    # ------------------------------------------------------------------
    async def complete(
        self,
        system_prompt: str,
        history: Sequence[Any],
        user_message: str,
        *,
        mode: LearningMode = LearningMode.DISCOVERY,
    ) -> Tuple[str, str]:
        """Return ``(assistant_text, model_id)`` or raise :class:`ProviderError`."""

        if not self.available:
            raise ProviderUnavailableError(self.name, "API key not configured")

        trimmed = truncate_history(history, self.history_window)
        model_ids = self.model_ids
        last_error: Optional[ProviderError] = None
        for attempt_index, model_id in enumerate(model_ids):
            payload = self.build_payload(model_id, system_prompt, trimmed, user_message, mode)
            try:
                text = await self._post(payload, model_id, attempt_index + 1, len(model_ids))
                return text, model_id
            except ProviderError as exc:
                last_error = exc
                if not exc.retry_with_alternate_model:
                    raise
                if attempt_index < len(model_ids) - 1:
                    logger.warning(
                        "%s model %s failed (%s); retrying with %s",
                        self.name.value,
                        model_id,
                        exc.status_code,
                        model_ids[attempt_index + 1],
                    )
        if last_error is None:
            raise ProviderError(self.name, "no model configured")
        raise last_error

    async def _post(self, payload: Dict[str, Any], model_id: str, attempt: int, attempts: int) -> str:
        start = perf_counter()
        status_code: Optional[int] = None
        outcome = "error"
        client = self._client_factory(self.timeout)
        try:
            try:
                response = await client.post(self.endpoint(), json=payload, headers=self.headers())
                status_code = response.status_code
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as exc:
                raise ProviderError(
                    self.name,
                    _error_summary(exc.response),
                    status_code=exc.response.status_code,
                    model=model_id,
                ) from exc
            except httpx.TimeoutException as exc:
                outcome = "timeout"
                raise ProviderError(self.name, f"timed out after {self.timeout:g}s", model=model_id) from exc
            except httpx.HTTPError as exc:
                raise ProviderError(self.name, f"transport error: {exc}", model=model_id) from exc
            except ValueError as exc:
                raise ProviderError(self.name, "response body is not JSON", status_code=status_code, model=model_id) from exc

            try:
                text = self.extract_text(data)
            except (KeyError, IndexError, TypeError, AttributeError) as exc:
                raise ProviderError(self.name, "unexpected response shape", status_code=status_code, model=model_id) from exc
            if not isinstance(text, str):
                raise ProviderError(self.name, "unexpected response shape", status_code=status_code, model=model_id)
            if not text or not text.strip():
                raise ProviderError(self.name, "empty completion", status_code=status_code, model=model_id)
            outcome = "ok"
            return text.strip()
        finally:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - closing failures are logged but ignored
                logger.debug("%s client close failed", self.name.value, exc_info=True)
            latency_ms = int((perf_counter() - start) * 1000)
            log_record = {
                "event": "llm_call",
                "provider": self.name.value,
                "model": model_id,
                "attempt": attempt,
                "attempts": attempts,
                "status_code": status_code,
                "outcome": outcome,
                "latency_ms": latency_ms,
            }
            _LLM_LOGGER.info(json.dumps(log_record, ensure_ascii=False))


def _error_summary(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, Mapping):
        error = data.get("error")
        if isinstance(error, Mapping):
            return str(error.get("message") or error.get("type") or error)[:200]
        if error:
            return str(error)[:200]
    return str(data)[:200]


class OpenAIChatProvider(ChatProvider):
    """OpenAI chat completions; the system prompt travels as the first message."""

    name = ProviderChoice.OPENAI

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        fallback_model: Optional[str] = "gpt-3.5-turbo",
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key, base_url=base_url, model=model, fallback_model=fallback_model, **kwargs)

    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def build_payload(self, model, system_prompt, history, user_message, mode):
        messages = [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": user_message}]
        return {
            "model": model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": temperature_for(mode),
            "presence_penalty": 0.1,
            "frequency_penalty": 0.1,
        }

    def extract_text(self, data: Any) -> str:
        return data["choices"][0]["message"]["content"] or ""


class AnthropicMessagesProvider(ChatProvider):
    """Anthropic messages API; separate ``system`` field and alternating turns."""

    name = ProviderChoice.CLAUDE
    api_version = "2023-06-01"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.anthropic.com",
        model: str = "claude-3-5-haiku-20241022",
        fallback_model: Optional[str] = "claude-3-5-sonnet-20241022",
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key, base_url=base_url, model=model, fallback_model=fallback_model, **kwargs)

    def endpoint(self) -> str:
        return f"{self.base_url}/v1/messages"

    def headers(self) -> Dict[str, str]:
        return {
            "x-api-key": str(self.api_key),
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    @staticmethod
    def _alternate(messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
        merged: List[Dict[str, str]] = []
        for message in messages:
            if merged and merged[-1]["role"] == message["role"]:
                merged[-1] = {
                    "role": message["role"],
                    "content": f"{merged[-1]['content']}\n\n{message['content']}",
                }
            else:
                merged.append(dict(message))
        while merged and merged[0]["role"] != "user":
            merged.pop(0)
        return merged

    def build_payload(self, model, system_prompt, history, user_message, mode):
        messages = self._alternate([*history, {"role": "user", "content": user_message}])
        return {
            "model": model,
            "system": system_prompt,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": temperature_for(mode),
        }

    def extract_text(self, data: Any) -> str:
        blocks = data["content"]
        return "".join(block.get("text", "") for block in blocks if block.get("type", "text") == "text")


__all__ = [
    "AnthropicMessagesProvider",
    "ChatProvider",
    "DEFAULT_HISTORY_WINDOW",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_TIMEOUT_SECONDS",
    "OpenAIChatProvider",
    "ProviderError",
    "ProviderUnavailableError",
    "truncate_history",
]
