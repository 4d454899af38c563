"""Circuit breaker for analysis provider calls.

Protects the pipeline from waiting on an analysis provider that keeps
failing: once the circuit opens, calls are rejected immediately and
documents go straight to the OCR fallback.

State is kept in Redis when a client is given, so it survives restarts,
and otherwise in a pybreaker memory storage inside the process.

Configuration:
    - fail_max: consecutive failures to open the circuit
    - reset_timeout: seconds before entering half-open state
    - success_threshold: successes in half-open to close the circuit
"""

import time
from enum import Enum
from typing import Awaitable, Callable, ParamSpec, Protocol, TypeVar

import pybreaker
import redis.asyncio as redis
import structlog

from doculens.core.errors import DocumentError, ErrorKind

logger = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states, valued with pybreaker's state names."""

    CLOSED = pybreaker.STATE_CLOSED
    OPEN = pybreaker.STATE_OPEN
    HALF_OPEN = pybreaker.STATE_HALF_OPEN


class CircuitOpenError(DocumentError):
    """Raised instead of calling the provider while the circuit is open."""

    def __init__(self, circuit_name: str, state: CircuitState):
        self.circuit_name = circuit_name
        self.state = state
        super().__init__(
            ErrorKind.PROVIDER,
            f"Circuit '{circuit_name}' is {state.value}",
            {"provider": circuit_name, "circuit_state": state.value},
        )


class BreakerStorage(Protocol):
    """Async state storage for a circuit breaker."""

    async def get_state(self) -> str: ...

    async def set_state(self, state: str) -> None: ...

    async def get_counter(self) -> int: ...

    async def set_counter(self, value: int) -> None: ...

    async def increment_counter(self) -> int: ...

    async def get_opened_at(self) -> float | None: ...

    async def set_opened_at(self, value: float | None) -> None: ...

    async def reset(self) -> None: ...


class MemoryBreakerStorage:
    """In-process state backed by pybreaker's memory storage."""

    def __init__(self) -> None:
        self._storage = pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
        self._opened_at: float | None = None

    async def get_state(self) -> str:
        return self._storage.state

    async def set_state(self, state: str) -> None:
        self._storage.state = state

    async def get_counter(self) -> int:
        return self._storage.counter

    async def set_counter(self, value: int) -> None:
        self._storage.reset_counter()
        for _ in range(value):
            self._storage.increment_counter()

    async def increment_counter(self) -> int:
        self._storage.increment_counter()
        return self._storage.counter

    async def get_opened_at(self) -> float | None:
        return self._opened_at

    async def set_opened_at(self, value: float | None) -> None:
        self._opened_at = value

    async def reset(self) -> None:
        self._storage.state = pybreaker.STATE_CLOSED
        self._storage.reset_counter()
        self._opened_at = None


class RedisBreakerStorage:
    """Redis-backed state, shared across restarts and instances.

    Keys: circuit_breaker:{name}:state, :counter and :opened_at.
    """

    BASE_NAME = "circuit_breaker"

    def __init__(self, name: str, redis_client: redis.Redis):
        self._redis = redis_client
        self._state_key = f"{self.BASE_NAME}:{name}:state"
        self._counter_key = f"{self.BASE_NAME}:{name}:counter"
        self._opened_at_key = f"{self.BASE_NAME}:{name}:opened_at"

    async def get_state(self) -> str:
        state = await self._redis.get(self._state_key)
        if state is None:
            return pybreaker.STATE_CLOSED
        return state.decode("utf-8") if isinstance(state, bytes) else state

    async def set_state(self, state: str) -> None:
        await self._redis.set(self._state_key, state)

    async def get_counter(self) -> int:
        counter = await self._redis.get(self._counter_key)
        return 0 if counter is None else int(counter)

    async def set_counter(self, value: int) -> None:
        await self._redis.set(self._counter_key, value)

    async def increment_counter(self) -> int:
        return int(await self._redis.incr(self._counter_key))

    async def get_opened_at(self) -> float | None:
        opened_at = await self._redis.get(self._opened_at_key)
        return None if opened_at is None else float(opened_at)

    async def set_opened_at(self, value: float | None) -> None:
        if value is None:
            await self._redis.delete(self._opened_at_key)
        else:
            await self._redis.set(self._opened_at_key, value)

    async def reset(self) -> None:
        await self._redis.delete(self._state_key, self._counter_key, self._opened_at_key)


class ProviderCircuitBreaker:
    """Async circuit breaker around an analysis provider.

    Opens after `fail_max` consecutive failures, enters half-open after
    `reset_timeout` seconds, and closes after `success_threshold` successes
    in half-open. A failure in half-open reopens the circuit. In closed
    state the counter holds consecutive failures; in half-open it holds
    successes.

    Usage:
        breaker = ProviderCircuitBreaker("anthropic", redis_client)
        analysis = await breaker.call(provider.analyze, content, mime, name)
    """

    DEFAULT_FAIL_MAX = 5
    DEFAULT_RESET_TIMEOUT = 30
    DEFAULT_SUCCESS_THRESHOLD = 2

    def __init__(
        self,
        name: str,
        redis_client: redis.Redis | None = None,
        fail_max: int = DEFAULT_FAIL_MAX,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        success_threshold: int = DEFAULT_SUCCESS_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.fail_max = fail_max
        self.reset_timeout = reset_timeout
        self.success_threshold = success_threshold
        self._clock = clock
        self._storage: BreakerStorage = (
            RedisBreakerStorage(name, redis_client)
            if redis_client is not None
            else MemoryBreakerStorage()
        )

    async def state(self) -> CircuitState:
        return _normalize_state(await self._storage.get_state())

    async def failure_count(self) -> int:
        if await self.state() == CircuitState.HALF_OPEN:
            return 0
        return await self._storage.get_counter()

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Call an async function through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit is open.
            Exception: Any exception from the wrapped function.
        """
        state = await self.state()
        if state == CircuitState.OPEN and not await self._should_try_reset():
            logger.warning("circuit_breaker_rejected", circuit=self.name)
            raise CircuitOpenError(self.name, state)

        try:
            result = await func(*args, **kwargs)
        except Exception:
            await self._on_failure()
            raise

        await self._on_success()
        return result

    async def reset(self) -> None:
        await self._storage.reset()
        logger.info("circuit_breaker_reset", circuit=self.name)

    async def _should_try_reset(self) -> bool:
        opened_at = await self._storage.get_opened_at()
        elapsed = self._clock() - opened_at if opened_at is not None else None
        if elapsed is not None and elapsed < self.reset_timeout:
            return False

        await self._storage.set_state(pybreaker.STATE_HALF_OPEN)
        await self._storage.set_counter(0)
        logger.info("circuit_breaker_half_open", circuit=self.name, elapsed_seconds=elapsed)
        return True

    async def _on_success(self) -> None:
        if await self.state() != CircuitState.HALF_OPEN:
            await self._storage.set_counter(0)
            return

        success_count = await self._storage.increment_counter()
        if success_count >= self.success_threshold:
            await self._storage.set_state(pybreaker.STATE_CLOSED)
            await self._storage.set_counter(0)
            await self._storage.set_opened_at(None)
            logger.info(
                "circuit_breaker_closed",
                circuit=self.name,
                success_count=success_count,
            )

    async def _on_failure(self) -> None:
        if await self.state() == CircuitState.HALF_OPEN:
            await self._open()
            logger.warning("circuit_breaker_reopened", circuit=self.name)
            return

        failure_count = await self._storage.increment_counter()
        if failure_count >= self.fail_max:
            await self._open()
            logger.warning(
                "circuit_breaker_opened",
                circuit=self.name,
                failure_count=failure_count,
            )

    async def _open(self) -> None:
        await self._storage.set_state(pybreaker.STATE_OPEN)
        await self._storage.set_counter(0)
        await self._storage.set_opened_at(self._clock())


def _normalize_state(state_str: str) -> CircuitState:
    if state_str == pybreaker.STATE_OPEN:
        return CircuitState.OPEN
    if state_str == pybreaker.STATE_HALF_OPEN:
        return CircuitState.HALF_OPEN
    return CircuitState.CLOSED


__all__ = [
    "CircuitOpenError",
    "CircuitState",
    "MemoryBreakerStorage",
    "ProviderCircuitBreaker",
    "RedisBreakerStorage",
]
