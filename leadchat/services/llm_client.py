"""
Text generation backends — OpenAI, Anthropic, local Ollama — behind one call.

complete(prompt, backend=...) returns the model's text or raises an LLMError
subclass. Every backend call goes through its circuit breaker; rate limits
are retried a couple of times with a linear back-off. Callers (LeadExtractor)
own the fallbacks.
"""
import logging
import time
from typing import Optional

import requests

from leadchat.config import (
    OPENAI_MODEL, ANTHROPIC_MODEL,
    OLLAMA_URL, OLLAMA_MODEL,
    LLM_TIMEOUT_SECONDS,
)
from leadchat.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.llm')

BACKENDS = ('openai', 'anthropic', 'ollama')
RATE_LIMIT_BACKOFF_SECONDS = 2


class LLMError(Exception):
    """Text generation failed."""


class LLMConfigError(LLMError):
    """Unknown backend name."""


class LLMUnavailableError(LLMError):
    """Backend selected but its client is not configured."""


def _is_rate_limit(error: Exception) -> bool:
    text = str(error).lower()
    return 'rate_limit' in text or 'rate limit' in text or '429' in text


def _call_openai(prompt: str, max_tokens: int, temperature: float, timeout: float) -> str:
    from leadchat.extensions import openai_client
    if openai_client is None:
        raise LLMUnavailableError("OpenAI client not configured (OPENAI_API_KEY)")

    cb = get_breaker('openai')
    response = cb.call(
        openai_client.chat.completions.create,
        model=OPENAI_MODEL,
        messages=[{"role": "user", "content": prompt}],
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
    )
    return response.choices[0].message.content or ''


def _call_anthropic(prompt: str, max_tokens: int, temperature: float, timeout: float) -> str:
    from leadchat.extensions import anthropic_client
    if anthropic_client is None:
        raise LLMUnavailableError("Anthropic client not configured (ANTHROPIC_API_KEY)")

    cb = get_breaker('anthropic')
    response = cb.call(
        anthropic_client.messages.create,
        model=ANTHROPIC_MODEL,
        max_tokens=max_tokens,
        temperature=temperature,
        messages=[{"role": "user", "content": prompt}],
        timeout=timeout,
    )
    return ''.join(block.text for block in response.content if getattr(block, 'type', 'text') == 'text')


def _call_ollama(prompt: str, max_tokens: int, temperature: float, timeout: float) -> str:
    def post():
        resp = requests.post(
            f"{OLLAMA_URL}/api/chat",
            json={
                "model": OLLAMA_MODEL,
                "messages": [{"role": "user", "content": prompt}],
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
            timeout=timeout,
        )
        resp.raise_for_status()
        return resp.json()["message"]["content"]

    return get_breaker('ollama').call(post)


_DISPATCH = {
    'openai': _call_openai,
    'anthropic': _call_anthropic,
    'ollama': _call_ollama,
}


def complete(
    prompt: str,
    backend: str = 'openai',
    max_tokens: int = 500,
    temperature: float = 0.7,
    timeout: float = LLM_TIMEOUT_SECONDS,
    max_retries: int = 2,
    deadline: Optional[float] = None,
) -> str:
    """
    Send a single-message prompt to the chosen backend and return its text.

    deadline is a time.monotonic() instant; once it passes no further attempt
    is made and each attempt's timeout is capped to the time left.
    """
    call = _DISPATCH.get((backend or '').lower())
    if call is None:
        raise LLMConfigError(f"Unknown text generation backend '{backend}'. Available: {list(BACKENDS)}")

    for attempt in range(max_retries + 1):
        attempt_timeout = timeout
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LLMError(f"{backend} request abandoned: deadline passed")
            attempt_timeout = min(timeout, remaining)
        try:
            return call(prompt, max_tokens, temperature, attempt_timeout).strip()
        except LLMError:
            raise
        except Exception as e:
            wait_time = (attempt + 1) * RATE_LIMIT_BACKOFF_SECONDS
            out_of_time = deadline is not None and time.monotonic() + wait_time >= deadline
            if _is_rate_limit(e) and attempt < max_retries and not out_of_time:
                logger.warning("%s rate limit hit, waiting %ds (attempt %d/%d)",
                               backend, wait_time, attempt + 1, max_retries + 1)
                time.sleep(wait_time)
                continue
            raise LLMError(f"{backend} request failed: {e}") from e
