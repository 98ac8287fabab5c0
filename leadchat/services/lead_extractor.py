"""
LeadExtractor — reply generation, structured lead extraction, summaries.

All three operations degrade to safe defaults: lead capture must never fail
the user-facing chat turn because a text generation backend is slow or down.
Each call runs on a small thread pool so the caller's timeout is a hard bound
even when a backend ignores its own.
"""
import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from leadchat.config import CHAT_MODEL, EXTRACT_MODEL, LLM_TIMEOUT_SECONDS, LLM_WORKERS
from leadchat.models.lead_record import LeadRecord
from leadchat.services.llm_client import complete
from leadchat.services.session_store import Turn

logger = logging.getLogger('services.lead_extractor')

REPLY_FALLBACK = "I'm having trouble connecting right now. Please try again."
SUMMARY_FALLBACK = "Summary unavailable."

_MARKDOWN_CHARS = re.compile(r'[*_#`]')
_FENCE = re.compile(r'^```(?:json)?\s*|\s*```$')


def strip_code_fence(text: str) -> str:
    """Remove a ```json … ``` wrapper the model sometimes adds."""
    return _FENCE.sub('', text.strip()).strip()


def _reply_prompt(message: str, history: Sequence[Turn], compounds: List[Dict[str, Any]]) -> str:
    history_text = '\n'.join(turn.render() for turn in history) if history else "No previous history."
    return f"""You are a real estate assistant. Respond to the client's latest message, considering the conversation context.

Conversation History (Last few messages):
{history_text}

Latest message: {message}

Available compounds information: {json.dumps(compounds, ensure_ascii=False)}

Instructions:
1. Context: use the history to stay consistent (their name, budget, earlier questions).
2. Style: compact, professional but casual, like a text message. Max 2-3 sentences.
3. Language: match the client's language and dialect.
4. Formatting: plain text only. No markdown, no lists, no headers.
5. Data usage: do not dump all the data at once. Confirm availability and ask a follow-up;
   give prices or payment plans only when asked or clearly relevant.
6. Goal: qualify the lead (budget, location, unit type) naturally over several turns.
7. Always steer the conversation towards booking a call."""


def _extraction_prompt(transcript: str, now: datetime) -> str:
    return f"""You are an AI assistant for a real estate company. From the entire chat conversation, extract the following information.

Current Date and Time: {now.strftime('%A, %Y-%m-%d %I:%M %p')}

- name: the person's name
- phone: phone number
- budget: budget amount as a number
- location: desired location
- compound: the compound or project name mentioned
- unit_type: type of unit (e.g. apartment, villa)
- area: size of the unit in sqm, if mentioned
- call_requested: true if the user asked for a call or agreed to one, even without a time
- best_call_time: ONLY if the user stated a specific time or day, as "Day, YYYY-MM-DD at HH:MM AM/PM"
  (resolve relative times like "tomorrow at 3pm"). Otherwise null. Never assume "now" or "ASAP".
- tonality: one of "Positive", "Neutral", "Negative", "Urgent"

Output only a valid JSON object with keys: name, phone, budget, area, location, compound,
unit_type, tonality, call_requested, best_call_time. Use null for missing fields.

Chat conversation:
{transcript}"""


def _summary_prompt(transcript: str) -> str:
    return f"""Summarize the following real estate chat conversation in English.
Constraints:
- Maximum 30 words.
- Compact, professional and objective.
- Plain text only, no markdown.

Chat conversation:
{transcript}"""


class LeadExtractor:
    """Text-generation boundary used by TurnPipeline."""

    def __init__(
        self,
        chat_backend: str = CHAT_MODEL,
        extract_backend: str = EXTRACT_MODEL,
        timeout: float = LLM_TIMEOUT_SECONDS,
        completer: Callable[..., str] = complete,
        clock: Callable[[], datetime] = datetime.now,
        max_workers: int = LLM_WORKERS,
    ):
        self.chat_backend = chat_backend
        self.extract_backend = extract_backend
        self.timeout = timeout
        self._complete = completer
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='llm')

    def _bounded(self, timeout: Optional[float], **kwargs) -> str:
        """Run one completion with a hard wall-clock bound."""
        limit = self.timeout if timeout is None else timeout
        # The worker stops retrying once the caller has given up on it
        deadline = time.monotonic() + limit
        future = self._executor.submit(self._complete, timeout=limit, deadline=deadline, **kwargs)
        try:
            return future.result(timeout=limit)
        except FutureTimeout:
            future.cancel()
            raise TimeoutError(f"text generation exceeded {limit:.1f}s")

    def generate_reply(
        self,
        latest_message: str,
        recent_history: Sequence[Turn],
        domain_context: Optional[List[Dict[str, Any]]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Next assistant message. Never raises; falls back to REPLY_FALLBACK."""
        prompt = _reply_prompt(latest_message, recent_history, domain_context or [])
        try:
            reply = self._bounded(timeout, prompt=prompt, backend=self.chat_backend, max_tokens=500)
        except Exception as e:
            logger.error("Reply generation failed (%s): %s", self.chat_backend, e)
            return REPLY_FALLBACK
        return reply or REPLY_FALLBACK

    def extract_structured(self, transcript: str, timeout: Optional[float] = None) -> LeadRecord:
        """Best-effort lead fields. Any failure yields an empty LeadRecord()."""
        prompt = _extraction_prompt(transcript, self._clock())
        try:
            raw = self._bounded(
                timeout, prompt=prompt, backend=self.extract_backend,
                max_tokens=500, temperature=0.0,
            )
            data = json.loads(strip_code_fence(raw))
        except Exception as e:
            logger.error("Lead extraction failed (%s): %s", self.extract_backend, e)
            return LeadRecord()

        if not isinstance(data, dict):
            logger.warning("Lead extraction returned %s instead of an object", type(data).__name__)
            return LeadRecord()

        record = LeadRecord.from_extraction(data)
        logger.debug("Extracted lead fields: %s", record.to_dict())
        return record

    def summarize(self, transcript: str, timeout: Optional[float] = None) -> str:
        """Short plain-text summary, or SUMMARY_FALLBACK."""
        try:
            raw = self._bounded(
                timeout, prompt=_summary_prompt(transcript),
                backend=self.extract_backend, max_tokens=150, temperature=0.3,
            )
        except Exception as e:
            logger.error("Summary generation failed (%s): %s", self.extract_backend, e)
            return SUMMARY_FALLBACK

        summary = _MARKDOWN_CHARS.sub('', raw).strip()
        return summary or SUMMARY_FALLBACK

    def shutdown(self, wait: bool = False):
        self._executor.shutdown(wait=wait)
