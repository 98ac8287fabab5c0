"""
Circuit breakers for every external dependency of a chat turn.

Breaker state lives in Redis so all worker processes share it:
  - CLOSED    → calls pass through
  - OPEN      → too many consecutive failures; calls fail fast with CircuitOpenError
  - HALF_OPEN → reset_timeout elapsed; the next call is a probe

Redis being down must never take the chat down with it, so every Redis
access fails open (state reads as CLOSED, bookkeeping is skipped).
"""
import logging
import time
from functools import wraps

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'

# name → (failure_threshold, reset_timeout seconds)
BREAKER_SETTINGS = {
    'openai': (5, 60),
    'anthropic': (5, 60),
    'ollama': (3, 30),
    'sheets': (3, 180),
    'legacy_logger': (3, 120),
}


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN — service unavailable")


class CircuitBreaker:
    """
    Redis-backed circuit breaker.

    Usage:
        cb = CircuitBreaker('sheets', redis_client, failure_threshold=3, reset_timeout=180)
        result = cb.call(service.values().get(...).execute)
    """

    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=300):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    def _quietly(self, op, default=None):
        """Run a Redis operation, swallowing connection errors (fail-open)."""
        try:
            return op()
        except Exception as e:
            logger.debug("Circuit '%s' Redis unavailable: %s", self.name, e)
            return default

    # ── State ─────────────────────────────────────────────────────────

    def _opened_at(self):
        raw = self._quietly(lambda: self.redis.get(self._key('last_failure')))
        return float(raw) if raw else None

    @property
    def state(self):
        current = self._quietly(lambda: self.redis.get(self._key('state')), default=CLOSED)
        if current != OPEN:
            return current or CLOSED
        opened_at = self._opened_at()
        if opened_at is not None and time.time() - opened_at > self.reset_timeout:
            self._quietly(lambda: self.redis.set(self._key('state'), HALF_OPEN))
            return HALF_OPEN
        return OPEN

    @property
    def failure_count(self):
        raw = self._quietly(lambda: self.redis.get(self._key('failures')))
        return int(raw) if raw else 0

    @property
    def is_open(self):
        return self.state == OPEN

    # ── Calls ─────────────────────────────────────────────────────────

    def call(self, func, *args, **kwargs):
        """Execute func through the breaker; failures are counted and re-raised."""
        if self.state == OPEN:
            opened_at = self._opened_at()
            retry_after = None
            if opened_at is not None:
                retry_after = max(0, self.reset_timeout - (time.time() - opened_at))
            raise CircuitOpenError(self.name, retry_after=retry_after)

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def protect(self, func):
        """Decorator form of call()."""
        @wraps(func)
        def wrapper(*args, **kwargs):
            return self.call(func, *args, **kwargs)
        return wrapper

    def _on_success(self):
        def close():
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.hincrby(self._key('health'), 'success', 1)
            pipe.hset(self._key('health'), 'last_success', str(time.time()))
            pipe.execute()
        self._quietly(close)

    def _on_failure(self, error):
        def record():
            count = self.redis.incr(self._key('failures'))
            now = str(time.time())
            pipe = self.redis.pipeline()
            pipe.set(self._key('last_failure'), now)
            pipe.hincrby(self._key('health'), 'failure', 1)
            pipe.hset(self._key('health'), 'last_failure', now)
            pipe.hset(self._key('health'), 'last_error', str(error)[:200])
            if count >= self.failure_threshold:
                pipe.set(self._key('state'), OPEN)
            pipe.execute()
            return count

        count = self._quietly(record)
        if count is None:
            return
        if count >= self.failure_threshold:
            logger.warning(
                "Circuit '%s' OPENED after %d failures (threshold=%d): %s",
                self.name, count, self.failure_threshold, error,
            )
        else:
            logger.info("Circuit '%s' failure %d/%d: %s", self.name, count, self.failure_threshold, error)

    def reset(self):
        """Manually close the breaker."""
        def clear():
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.delete(self._key('last_failure'))
            pipe.execute()
            return True

        if self._quietly(clear):
            logger.info("Circuit '%s' manually reset to CLOSED", self.name)
        else:
            logger.error("Failed to reset circuit '%s'", self.name)

    # ── Health ────────────────────────────────────────────────────────

    def get_health(self):
        """Health metrics dict for /api/health."""
        data = self._quietly(lambda: self.redis.hgetall(self._key('health')))
        reachable = data is not None
        data = data or {}
        return {
            'name': self.name,
            'state': self.state if reachable else 'unknown',
            'failure_count': self.failure_count,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
            'total_success': int(data.get('success', 0)),
            'total_failure': int(data.get('failure', 0)),
            'last_success': float(data['last_success']) if data.get('last_success') else None,
            'last_failure': float(data['last_failure']) if data.get('last_failure') else None,
            'last_error': data.get('last_error', ''),
        }


# ── Registry ──────────────────────────────────────────────────────────────

_registry = {}


def get_breaker(name, redis_client=None, **kwargs):
    """Get or create a named circuit breaker (one per name per process)."""
    if name not in _registry:
        if redis_client is None:
            from leadchat.extensions import redis_client as rc
            redis_client = rc
        threshold, reset_timeout = BREAKER_SETTINGS.get(name, (3, 300))
        kwargs.setdefault('failure_threshold', threshold)
        kwargs.setdefault('reset_timeout', reset_timeout)
        _registry[name] = CircuitBreaker(name, redis_client, **kwargs)
    return _registry[name]


def get_all_breakers():
    return dict(_registry)


def init_breakers(redis_client):
    """(Re)create the standard breakers for every external service."""
    breakers = {
        name: CircuitBreaker(name, redis_client, failure_threshold=threshold, reset_timeout=reset_timeout)
        for name, (threshold, reset_timeout) in BREAKER_SETTINGS.items()
    }
    _registry.update(breakers)
    return breakers
