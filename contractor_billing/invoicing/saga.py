"""
Saga Runner

Confirm and unconfirm touch three stores (timesheets, expenses,
settings) plus the invoice itself. There is no transaction spanning
them, so each transition runs as an ordered list of steps, each with
an optional compensation. When a step fails, the steps that already
completed are compensated in reverse order and the failure is raised
as TransitionFailedError.

Usage:
    saga = Saga("confirm")
    saga.step("lock_timesheets", lock, compensation=unlock)
    saga.step("persist_invoice", save)
    await saga.run()
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from contractor_billing.invoicing.errors import TransitionFailedError


logger = structlog.get_logger(__name__)

Action = Callable[[], Awaitable[Any]]


@dataclass
class SagaStep:
    """One write with its undo."""

    name: str
    action: Action
    compensation: Optional[Action] = None


class Saga:
    """Ordered steps with reverse-order compensation on failure."""

    def __init__(self, name: str, **log_context: Any):
        self.name = name
        self._steps: list[SagaStep] = []
        self._logger = logger.bind(saga=name, **log_context)

    def step(
        self,
        name: str,
        action: Action,
        compensation: Optional[Action] = None,
    ) -> "Saga":
        self._steps.append(SagaStep(name, action, compensation))
        return self

    async def run(self) -> dict[str, Any]:
        """
        Run every step in order.

        Returns:
            Result of each step, keyed by step name

        Raises:
            TransitionFailedError: After compensating the completed steps
        """
        results: dict[str, Any] = {}
        completed: list[SagaStep] = []

        for step in self._steps:
            try:
                results[step.name] = await step.action()
            except Exception as exc:
                self._logger.error(
                    "saga_step_failed",
                    step=step.name,
                    error=str(exc),
                    completed=[s.name for s in completed],
                )
                failures = await self._compensate(completed)
                raise TransitionFailedError(self.name, step.name, exc, failures) from exc
            completed.append(step)

        self._logger.debug("saga_completed", steps=[s.name for s in completed])
        return results

    async def _compensate(self, completed: list[SagaStep]) -> list[str]:
        failures = []
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await step.compensation()
                self._logger.info("saga_step_compensated", step=step.name)
            except Exception as exc:
                # Keep undoing the rest; the failure is reported to the caller
                self._logger.critical(
                    "saga_compensation_failed",
                    step=step.name,
                    error=str(exc),
                )
                failures.append(step.name)
        return failures
