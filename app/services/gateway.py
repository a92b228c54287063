"""
Outbound call gateway.

LLM providers, the headless browser, Resend, Supabase Storage and Stripe are
all called through `get_gateway().execute(service, fn, *args, **kwargs)`,
which applies, in order:

  - a per-service circuit breaker (fail fast while a provider is down)
  - a per-service concurrency cap
  - an optional timeout
  - retries with jittered exponential backoff for transient errors

LLM providers have no timeout here: a slow generation only holds its own
background task.
"""
import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional

from app.utils.logger import get_logger
from app.utils.metrics import inc, observe

logger = get_logger("gateway")


class ServicePolicy(NamedTuple):
    concurrency: int
    timeout: Optional[float]
    retries: int
    trip_after: int
    cooldown: float
    backoff: float = 1.0


POLICIES: Dict[str, ServicePolicy] = {
    "anthropic": ServicePolicy(concurrency=10, timeout=None, retries=2, trip_after=5, cooldown=30.0),
    "openai": ServicePolicy(concurrency=10, timeout=None, retries=2, trip_after=5, cooldown=30.0),
    "playwright": ServicePolicy(concurrency=2, timeout=60.0, retries=1, trip_after=2, cooldown=60.0),
    "resend": ServicePolicy(concurrency=5, timeout=20.0, retries=1, trip_after=3, cooldown=60.0),
    "supabase_storage": ServicePolicy(concurrency=5, timeout=30.0, retries=2, trip_after=3, cooldown=30.0),
    "stripe": ServicePolicy(concurrency=5, timeout=20.0, retries=1, trip_after=3, cooldown=30.0),
}

TRANSIENT_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504, 529})
TRANSIENT_NAME_HINTS = ("timeout", "connection", "ratelimit", "overloaded")

# Successful probes needed in half-open before the circuit closes again
HALF_OPEN_PROBES = 2


class CircuitOpenError(Exception):
    def __init__(self, service: str):
        self.service = service
        super().__init__(f"{service} is unavailable (circuit open)")


def is_transient(exc: BaseException) -> bool:
    """Provider SDKs expose the HTTP status as status_code (anthropic, openai, httpx) or http_status (stripe)"""
    status = getattr(exc, "status_code", None) or getattr(exc, "http_status", None)
    if status is not None:
        try:
            if int(status) in TRANSIENT_STATUSES:
                return True
        except (TypeError, ValueError):
            pass
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True
    name = type(exc).__name__.lower()
    return any(hint in name for hint in TRANSIENT_NAME_HINTS)


class Breaker:
    """closed -> open after `trip_after` consecutive failures; open -> half_open after `cooldown`"""

    def __init__(self, service: str, policy: ServicePolicy):
        self.service = service
        self.policy = policy
        self.state = "closed"
        self.failures = 0
        self.probes = 0
        self.opened_at = 0.0

    def _move(self, state: str) -> None:
        self.state = state
        log = logger.warning if state == "open" else logger.info
        log(f"circuit.{state}", extra={"service": self.service, "circuit_state": state, "count": self.failures})

    def admit(self) -> bool:
        if self.state == "open":
            if time.monotonic() - self.opened_at < self.policy.cooldown:
                return False
            self.probes = 0
            self._move("half_open")
        return True

    def succeeded(self) -> None:
        if self.state == "half_open":
            self.probes += 1
            if self.probes < HALF_OPEN_PROBES:
                return
            self.failures = 0
            self._move("closed")
            return
        self.failures = 0

    def failed(self) -> None:
        self.failures += 1
        if self.state == "open":
            return
        if self.state == "half_open" or self.failures >= self.policy.trip_after:
            self.opened_at = time.monotonic()
            inc(f"{self.service}.circuit_open")
            self._move("open")


class ServiceGateway:
    def __init__(self) -> None:
        self._breakers = {name: Breaker(name, p) for name, p in POLICIES.items()}
        self._slots = {name: asyncio.Semaphore(p.concurrency) for name, p in POLICIES.items()}

    async def _attempt(self, service: str, fn: Callable[..., Awaitable[Any]], args, kwargs) -> Any:
        timeout = POLICIES[service].timeout
        async with self._slots[service]:
            if timeout is None:
                return await fn(*args, **kwargs)
            return await asyncio.wait_for(fn(*args, **kwargs), timeout=timeout)

    async def execute(self, service: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        policy = POLICIES.get(service)
        if policy is None:
            return await fn(*args, **kwargs)

        breaker = self._breakers[service]
        if not breaker.admit():
            inc(f"{service}.rejected")
            raise CircuitOpenError(service)

        started = time.monotonic()
        for attempt in range(policy.retries + 1):
            try:
                result = await self._attempt(service, fn, args, kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                breaker.failed()
                inc(f"{service}.error")
                last_try = attempt == policy.retries
                if last_try or not is_transient(exc):
                    logger.error(
                        "gateway.failed",
                        extra={"service": service, "attempt": attempt + 1, "error": str(exc)[:200]},
                    )
                    raise
                delay = policy.backoff * (2 ** attempt)
                delay += random.uniform(0, delay / 2)
                logger.warning(
                    "gateway.retry",
                    extra={"service": service, "attempt": attempt + 1, "error": str(exc)[:200],
                           "delay_seconds": round(delay, 2)},
                )
                await asyncio.sleep(delay)
                if not breaker.admit():
                    raise CircuitOpenError(service) from exc
            else:
                breaker.succeeded()
                inc(f"{service}.success")
                observe(f"{service}.duration_ms", (time.monotonic() - started) * 1000)
                return result

    def get_circuit_states(self) -> Dict[str, str]:
        return {name: b.state for name, b in self._breakers.items()}


_gateway: Optional[ServiceGateway] = None


def get_gateway() -> ServiceGateway:
    global _gateway
    if _gateway is None:
        _gateway = ServiceGateway()
    return _gateway


def reset_gateway() -> None:
    global _gateway
    _gateway = None
