import asyncio
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from langchain_core.messages import HumanMessage
from openai import OpenAI

from promptform.errors import (
    SafetyRejected,
    UpstreamBusy,
    UpstreamEmpty,
    UpstreamError,
    UpstreamTimeout,
)
from promptform.google_helpers import logger

T = TypeVar("T")

SAFETY_FINISH_REASONS = {
    "SAFETY",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
    "IMAGE_SAFETY",
    "RECITATION",
}

# Global backoff state (shared across all clients)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 2.0
_GLOBAL_BACKOFF_MAX = 30.0


def _is_timeout_error(e: Exception) -> bool:
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        return True
    msg = repr(e)
    return "TimeoutError" in msg or "timed out" in msg.lower() or "DeadlineExceeded" in msg


def _is_resource_exhausted_error(e: Exception) -> bool:
    msg = str(e)
    return (
        "429" in msg
        or "RESOURCE_EXHAUSTED" in msg
        or "Resource has been exhausted" in msg
        or "Too Many Requests" in msg
    )


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run a sync LLM call with global 429/timeout backoff + retries.
    Only transient failures are retried; anything else propagates at once.
    """
    last_exception: Exception | None = None

    def _respect_global_backoff() -> None:
        while True:
            with _global_backoff_lock:
                now = time.monotonic()
                wait = _global_wait_until - now
            if wait <= 0:
                return
            time.sleep(min(wait, 1.0))

    def _register_429_and_get_delay() -> float:
        global _global_wait_until, _global_backoff_seconds

        with _global_backoff_lock:
            now = time.monotonic()
            base = _global_backoff_seconds
            delay = random.uniform(base * 0.95, base * 1.35)
            _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
            _global_wait_until = max(_global_wait_until, now + delay)
            return delay

    def _reset_backoff_on_success() -> None:
        global _global_backoff_seconds
        with _global_backoff_lock:
            _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)

    for attempt in range(retries):
        _respect_global_backoff()
        start_time = time.time()
        try:
            result = fn()
            _reset_backoff_on_success()
            return result
        except Exception as e:
            elapsed = time.time() - start_time
            last_exception = e
            if not (_is_resource_exhausted_error(e) or _is_timeout_error(e)):
                raise

            delay = _register_429_and_get_delay()
            if log:
                log(f"Attempt {attempt+1} got 429/timeout, backing off ~{delay:.1f}s (elapsed={elapsed:.2f}s): {e}")

    if last_exception is not None and _is_timeout_error(last_exception):
        raise UpstreamTimeout(
            f"Upstream model timed out after {retries} attempts.",
            extra={"retryable": True},
        ) from last_exception
    raise UpstreamBusy(
        f"Upstream model is rate limited; all {retries} attempts failed.",
        extra={"retryable": True},
    ) from last_exception


def is_openai_model(model_name: str) -> bool:
    name = (model_name or "").lower()
    return name.startswith("gpt-") or name.startswith("o1") or name.startswith("o3") or name.startswith("o4")


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _enum_name(value: Any) -> str:
    name = getattr(value, "name", None)
    if isinstance(name, str):
        return name
    return str(value or "")


def _block_reason_from_metadata(*metadata: Any) -> Optional[str]:
    """
    Look for a safety block in langchain response/generation metadata.
    Gemini reports prompt blocks as prompt_feedback.block_reason and candidate
    blocks as a safety finish_reason; Vertex adds an is_blocked flag.
    """
    for md in metadata:
        md = _as_dict(md)
        if not md:
            continue
        feedback = _as_dict(md.get("prompt_feedback"))
        reason = feedback.get("block_reason")
        if reason not in (None, 0, "", "BLOCK_REASON_UNSPECIFIED"):
            return _enum_name(reason)

        finish_reason = _enum_name(md.get("finish_reason")).upper()
        if finish_reason in SAFETY_FINISH_REASONS:
            return finish_reason

        if md.get("is_blocked"):
            return finish_reason or "BLOCKED"
    return None


class LlmClient:
    """
    Gateway to the generative model:

        text = llm.send(prompt)                       # JSON-constrained by default
        text = llm.send(prompt, image=(b64, mime))    # inline image
        text = llm.send(prompt, json_mode=False)      # free text (Markdown reports)

    Under the hood:
    - genai: ChatGoogleGenerativeAI (Gemini API key)
    - vertex: ChatVertexAI (application default credentials)
    - openai: Responses API (client.responses.create)
    """

    def __init__(
        self,
        model_name: str,
        *,
        api_key: str | None = None,
        provider: str | None = None,
        vertex_project: str | None = None,
        vertex_region: str | None = None,
        timeout: float | None = None,
        retries: int = 3,
    ):
        self.model_name = model_name
        self.provider = provider or ("openai" if is_openai_model(model_name) else "genai")
        self._timeout = timeout
        self._retries = retries
        self._json_chat = None
        self._text_chat = None
        self._client = None

        if self.provider == "genai":
            from langchain_google_genai import ChatGoogleGenerativeAI

            self._json_chat = ChatGoogleGenerativeAI(
                model=model_name,
                google_api_key=api_key,
                timeout=timeout,
                max_retries=0,
                response_mime_type="application/json",
            )
            self._text_chat = ChatGoogleGenerativeAI(
                model=model_name,
                google_api_key=api_key,
                timeout=timeout,
                max_retries=0,
            )
        elif self.provider == "vertex":
            from langchain_google_vertexai import ChatVertexAI

            self._json_chat = ChatVertexAI(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                timeout=timeout,
                max_retries=0,
                response_mime_type="application/json",
            )
            self._text_chat = ChatVertexAI(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                timeout=timeout,
                max_retries=0,
            )
        elif self.provider == "openai":
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if api_key:
                client_kwargs["api_key"] = api_key
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            self._client = OpenAI(**client_kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider}")

    # -----------------------
    # Provider calls
    # -----------------------

    def _langchain_once(self, prompt: str, image: Tuple[str, str] | None, json_mode: bool) -> str:
        chat = self._json_chat if json_mode else self._text_chat
        if image:
            b64, mime_type = image
            content: Any = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{b64}"}},
            ]
        else:
            content = prompt

        result = chat.generate([[HumanMessage(content=content)]])
        generation = result.generations[0][0] if result.generations and result.generations[0] else None
        message = getattr(generation, "message", None)

        reason = _block_reason_from_metadata(
            result.llm_output,
            getattr(message, "response_metadata", None),
            getattr(generation, "generation_info", None),
        )
        if reason:
            raise SafetyRejected(reason)

        text = getattr(message, "content", "") if message is not None else ""
        if isinstance(text, list):
            text = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in text
            )
        return (text or "").strip()

    def _openai_once(self, prompt: str, image: Tuple[str, str] | None, json_mode: bool) -> str:
        content: List[Dict[str, Any]] = [{"type": "input_text", "text": prompt}]
        if image:
            b64, mime_type = image
            content.append({"type": "input_image", "image_url": f"data:{mime_type};base64,{b64}"})

        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["text"] = {"format": {"type": "json_object"}}

        resp = self._client.responses.create(
            model=self.model_name,
            input=[{"role": "user", "content": content}],
            **kwargs,
        )
        for item in getattr(resp, "output", None) or []:
            for part in getattr(item, "content", None) or []:
                if getattr(part, "type", "") == "refusal":
                    raise SafetyRejected("REFUSAL")

        text = getattr(resp, "output_text", "") or ""
        return text.strip()

    def _send_once(self, prompt: str, image: Tuple[str, str] | None, json_mode: bool) -> str:
        if self.provider == "openai":
            return self._openai_once(prompt, image, json_mode)
        return self._langchain_once(prompt, image, json_mode)

    def send(self, prompt: str, *, image: Tuple[str, str] | None = None, json_mode: bool = True) -> str:
        """
        Returns the raw model text. Raises SafetyRejected, UpstreamEmpty,
        UpstreamTimeout/UpstreamBusy (after retries) or UpstreamError.
        """
        try:
            text = call_with_retries_sync(
                lambda: self._send_once(prompt, image, json_mode),
                retries=self._retries,
                log=lambda msg: logger.warning(f"[LLM-RETRY] {msg}"),
            )
        except SafetyRejected as e:
            logger.warning(f"[SAFETY] Request blocked by model: {e.reason}")
            raise
        except (UpstreamTimeout, UpstreamBusy):
            raise
        except Exception as e:
            logger.exception("[LLM] Upstream call failed")
            raise UpstreamError(f"Upstream model call failed: {e}") from e

        if not text:
            logger.error("[MODEL ERROR] Empty response from model.")
            raise UpstreamEmpty()
        logger.debug(f"[AI RESPONSE - RAW TEXT]: {text}")
        return text
