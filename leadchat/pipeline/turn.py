"""
TurnPipeline — one inbound chat message, start to finish.

  RECEIVED → HISTORY_UPDATED → REPLY_GENERATED          (under the session lock)
           → FIELDS_EXTRACTED → SCORED → SUMMARIZED → PERSISTED   (enrichment)
           → RESPONDED

The reply is produced first and the session lock released before enrichment
starts. Enrichment failures are logged and never undo the recorded turns.
In async mode enrichment runs on a pipeline-owned pool, so a client that
disconnects after reading the reply does not cancel persistence.
"""
import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from leadchat.config import HISTORY_WINDOW, PERSIST_MODE, ENRICHMENT_WORKERS
from leadchat.models.lead_record import LeadRecord
from leadchat.pipeline.fanout import PersistenceFanout, PersistResult
from leadchat.pipeline.scoring import score
from leadchat.services.lead_extractor import LeadExtractor
from leadchat.services.session_store import SessionStore, USER, ASSISTANT

logger = logging.getLogger('pipeline.turn')

PERSIST_MODES = ('async', 'sync')
GENERIC_FAILURE = "Sorry, something went wrong processing your message."

# Persistence for one session is serialized through one of these stripes
_PERSIST_STRIPES = 64


class TurnState(str, Enum):
    RECEIVED = 'received'
    HISTORY_UPDATED = 'history_updated'
    REPLY_GENERATED = 'reply_generated'
    FIELDS_EXTRACTED = 'fields_extracted'
    SCORED = 'scored'
    SUMMARIZED = 'summarized'
    PERSISTED = 'persisted'
    RESPONDED = 'responded'


class TurnFailed(Exception):
    """Fatal: the turn could not produce a reply. str() is safe to show clients."""


@dataclass
class EnrichmentResult:
    session_id: str
    lead: Optional[LeadRecord] = None
    persist: Optional[PersistResult] = None
    states: List[TurnState] = field(default_factory=list)
    superseded: bool = False
    error: Optional[str] = None


@dataclass
class TurnOutcome:
    session_id: str
    reply: str
    is_new_session: bool
    start_time: datetime
    elapsed_seconds: Optional[float]
    states: List[TurnState]
    enrichment: Future


@dataclass
class _EnrichmentJob:
    session_id: str
    seq: int
    transcript: str
    elapsed_seconds: Optional[float]
    start_time: datetime


class TurnPipeline:
    """
    Usage:
        pipeline = TurnPipeline(store, extractor, fanout, context_provider=catalog)
        outcome = pipeline.handle_turn("Hi, I'm looking for a villa", session_id=None)
        outcome.reply, outcome.session_id
    """

    def __init__(
        self,
        store: SessionStore,
        extractor: LeadExtractor,
        fanout: PersistenceFanout,
        context_provider: Optional[Callable[[], List[Dict[str, Any]]]] = None,
        history_window: int = HISTORY_WINDOW,
        persist_mode: str = PERSIST_MODE,
        max_workers: int = ENRICHMENT_WORKERS,
    ):
        if persist_mode not in PERSIST_MODES:
            raise ValueError(f"persist_mode must be one of {PERSIST_MODES}, got '{persist_mode}'")

        self.store = store
        self.extractor = extractor
        self.fanout = fanout
        self.context_provider = context_provider
        self.history_window = history_window
        self.persist_mode = persist_mode
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='enrich')

        # Process-wide turn sequence; stamped under the session lock
        self._sequence = itertools.count(1)
        self._last_persisted: Dict[str, int] = {}
        self._persist_locks = [threading.Lock() for _ in range(_PERSIST_STRIPES)]
        self._guard = threading.Lock()
        store.add_eviction_listener(self._forget)

    # ── Turn ──────────────────────────────────────────────────────────

    def handle_turn(self, message: str, session_id: Optional[str] = None) -> TurnOutcome:
        """
        Record the message, produce the reply, schedule enrichment.

        Raises TurnFailed only when no reply could be produced.
        """
        try:
            handle = self.store.begin_or_continue(session_id)
            sid = handle.session_id
            states = [TurnState.RECEIVED]

            with self.store.locked(sid):
                elapsed = self.store.append_turn(sid, USER, message)
                states.append(TurnState.HISTORY_UPDATED)

                history = self.store.history(sid, self.history_window)
                reply = self.extractor.generate_reply(message, history, self._domain_context())
                self.store.append_turn(sid, ASSISTANT, reply)
                states.append(TurnState.REPLY_GENERATED)

                job = _EnrichmentJob(
                    session_id=sid,
                    seq=next(self._sequence),
                    transcript=self.store.transcript(sid),
                    elapsed_seconds=elapsed,
                    start_time=handle.start_time,
                )
        except Exception as e:
            logger.exception("Turn failed before a reply was produced (session=%s): %s", session_id, e)
            raise TurnFailed(GENERIC_FAILURE) from e

        if self.persist_mode == 'sync':
            enrichment = Future()
            result = self._enrich(job)
            enrichment.set_result(result)
            states.extend(result.states)
        else:
            enrichment = self._executor.submit(self._enrich, job)

        states.append(TurnState.RESPONDED)
        return TurnOutcome(
            session_id=sid,
            reply=reply,
            is_new_session=handle.is_new,
            start_time=handle.start_time,
            elapsed_seconds=elapsed,
            states=states,
            enrichment=enrichment,
        )

    def _domain_context(self) -> List[Dict[str, Any]]:
        if self.context_provider is None:
            return []
        try:
            return self.context_provider() or []
        except Exception as e:
            logger.warning("Domain context unavailable: %s", e)
            return []

    # ── Enrichment ────────────────────────────────────────────────────

    def _persist_lock(self, session_id: str) -> threading.Lock:
        return self._persist_locks[hash(session_id) % _PERSIST_STRIPES]

    def _enrich(self, job: _EnrichmentJob) -> EnrichmentResult:
        """Extract → score → summarize → persist. Never raises."""
        result = EnrichmentResult(session_id=job.session_id)
        extra = {'session_id': job.session_id}
        try:
            lead = self.extractor.extract_structured(job.transcript)
            lead.session_id = job.session_id
            lead.start_time = job.start_time
            result.lead = lead
            result.states.append(TurnState.FIELDS_EXTRACTED)

            lead.heat_score = score(lead, job.elapsed_seconds)
            result.states.append(TurnState.SCORED)
            logger.info(
                "Chat %s: score=%d (time=%s, tone=%s)",
                job.session_id, lead.heat_score,
                'first' if job.elapsed_seconds is None else f"{job.elapsed_seconds:.1f}s",
                lead.tonality.value if lead.tonality else 'n/a',
                extra=extra,
            )

            lead.summary = self.extractor.summarize(job.transcript)
            result.states.append(TurnState.SUMMARIZED)

            with self._persist_lock(job.session_id):
                with self._guard:
                    last = self._last_persisted.get(job.session_id, 0)
                if job.seq < last:
                    logger.info("Chat %s: dropping superseded enrichment (turn %d < %d)",
                                job.session_id, job.seq, last, extra=extra)
                    result.superseded = True
                    return result

                result.persist = self.fanout.persist(lead)
                with self._guard:
                    self._last_persisted[job.session_id] = job.seq
            result.states.append(TurnState.PERSISTED)
        except Exception as e:
            logger.exception("Enrichment failed for chat %s: %s", job.session_id, e, extra=extra)
            result.error = str(e)
        return result

    # ── Lifecycle ─────────────────────────────────────────────────────

    def clear(self, session_id: Optional[str]) -> None:
        """Forget the conversation. Already-persisted lead records are kept."""
        self.store.clear(session_id)
        self._forget([session_id])

    def _forget(self, session_ids: List[str]):
        with self._guard:
            for session_id in session_ids:
                self._last_persisted.pop(session_id, None)

    def tracked_sessions(self) -> int:
        """Sessions with a recorded persist sequence."""
        with self._guard:
            return len(self._last_persisted)

    def shutdown(self, wait: bool = False):
        self._executor.shutdown(wait=wait)
        self.extractor.shutdown(wait=wait)
        self.fanout.shutdown(wait=wait)
