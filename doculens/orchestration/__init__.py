"""Orchestration of document processing runs."""

from doculens.orchestration.circuit_breaker import (
    CircuitOpenError,
    CircuitState,
    ProviderCircuitBreaker,
)
from doculens.orchestration.scheduler import ProcessingQueueEntry, ProcessingScheduler
from doculens.orchestration.state_machine import (
    ProcessingStateMachine,
    TransitionNotAllowed,
)

__all__ = [
    # Circuit breaker
    "CircuitOpenError",
    "CircuitState",
    "ProviderCircuitBreaker",
    # Scheduler
    "ProcessingQueueEntry",
    "ProcessingScheduler",
    # State machine
    "ProcessingStateMachine",
    "TransitionNotAllowed",
]
