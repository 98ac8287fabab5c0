"""
PersistenceFanout — write one LeadRecord to every registered sink.

Sinks run concurrently on a long-lived pool. Each sink gets its own deadline
measured from submission; a timeout or exception becomes a FAILED outcome for
that sink only. Nothing here raises for a sink failure: callers read the
PersistResult.

A write that misses its deadline keeps running in the background. The next
write for the same (sink, session) is chained behind it, so writes for one
id always land in submission order.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from leadchat.models.lead_record import LeadRecord
from leadchat.pipeline.sinks import LeadSink

logger = logging.getLogger('pipeline.fanout')


class SinkStatus(str, Enum):
    COMMITTED = 'committed'
    FAILED = 'failed'


@dataclass
class SinkOutcome:
    status: SinkStatus
    primary: bool = False
    reason: Optional[str] = None
    duration: float = 0.0

    @property
    def committed(self) -> bool:
        return self.status == SinkStatus.COMMITTED


@dataclass
class PersistResult:
    """Per-sink outcomes for one persist() call, keyed by sink name."""
    session_id: str
    outcomes: Dict[str, SinkOutcome] = field(default_factory=dict)

    @property
    def primary_committed(self) -> bool:
        return any(o.primary and o.committed for o in self.outcomes.values())

    @property
    def committed(self) -> List[str]:
        return [name for name, o in self.outcomes.items() if o.committed]

    @property
    def failed(self) -> List[str]:
        return [name for name, o in self.outcomes.items() if not o.committed]

    @property
    def degraded(self) -> bool:
        return not self.primary_committed


class PersistenceFanout:
    """
    Usage:
        fanout = PersistenceFanout([PrimaryStoreSink(), LegacyRelaySink(url)])
        result = fanout.persist(lead)
        if result.degraded: ...
    """

    def __init__(self, sinks: Sequence[LeadSink], max_workers: Optional[int] = None):
        primaries = [s for s in sinks if s.primary]
        if len(primaries) != 1:
            raise ValueError(f"Exactly one primary sink required, got {len(primaries)}")
        names = [s.name for s in sinks]
        if len(set(names)) != len(names):
            raise ValueError(f"Sink names must be unique: {names}")

        self.sinks = list(sinks)
        self.primary = primaries[0]
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or max(4, len(self.sinks) * 2),
            thread_name_prefix='sink',
        )
        # (sink name, session id) -> latest write not yet finished
        self._inflight: Dict[Tuple[str, str], Future] = {}
        self._inflight_lock = threading.Lock()

    @staticmethod
    def _timed_write(sink: LeadSink, lead: LeadRecord, previous: Optional[Future] = None) -> float:
        if previous is not None:
            # The earlier write's outcome was already reported by its own persist()
            wait([previous])
        started = time.monotonic()
        sink.write(lead)
        return time.monotonic() - started

    def _submit(self, sink: LeadSink, lead: LeadRecord) -> Future:
        key = (sink.name, lead.session_id)
        with self._inflight_lock:
            previous = self._inflight.get(key)
            future = self._executor.submit(self._timed_write, sink, lead, previous)
            self._inflight[key] = future
        future.add_done_callback(lambda f: self._release(key, f))
        return future

    def _release(self, key: Tuple[str, str], future: Future):
        with self._inflight_lock:
            if self._inflight.get(key) is future:
                del self._inflight[key]

    def pending(self) -> int:
        """Writes submitted but not yet finished, across all sinks."""
        with self._inflight_lock:
            return len(self._inflight)

    def persist(self, lead: LeadRecord) -> PersistResult:
        """Write to all sinks concurrently; never raises for a sink failure."""
        result = PersistResult(session_id=lead.session_id)
        submitted_at = time.monotonic()
        futures = {sink.name: (sink, self._submit(sink, lead)) for sink in self.sinks}

        for name, (sink, future) in futures.items():
            remaining = max(0.0, sink.timeout - (time.monotonic() - submitted_at))
            try:
                duration = future.result(timeout=remaining)
                result.outcomes[name] = SinkOutcome(SinkStatus.COMMITTED, primary=sink.primary, duration=duration)
            except FutureTimeout:
                result.outcomes[name] = SinkOutcome(
                    SinkStatus.FAILED, primary=sink.primary,
                    reason=f"timed out after {sink.timeout:.1f}s",
                    duration=time.monotonic() - submitted_at,
                )
            except Exception as e:
                result.outcomes[name] = SinkOutcome(
                    SinkStatus.FAILED, primary=sink.primary,
                    reason=f"{type(e).__name__}: {e}",
                    duration=time.monotonic() - submitted_at,
                )

        self._log(result)
        return result

    def _log(self, result: PersistResult):
        extra = {'session_id': result.session_id}
        for name, outcome in result.outcomes.items():
            if outcome.committed:
                logger.debug("Sink %s committed %s in %.3fs", name, result.session_id, outcome.duration, extra=extra)
            elif outcome.primary:
                logger.error(
                    "Primary sink %s failed for %s — degraded durability: %s",
                    name, result.session_id, outcome.reason, extra=extra,
                )
            else:
                logger.warning("Sink %s failed for %s: %s", name, result.session_id, outcome.reason, extra=extra)

    def shutdown(self, wait: bool = False):
        self._executor.shutdown(wait=wait)
