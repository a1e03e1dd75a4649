"""Ordered multi-step operations with compensating rollback.

Steps run in order. When a step fails, the compensations of the steps that
already completed run in reverse order and the original error is re-raised.
A failing compensation never replaces the original error: it is logged and
attached to ``error.compensation_failures`` (when the error is a TeamError).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from crm_team.core.errors import CompensationFailure, TeamError

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    name: str
    action: Callable[[Dict[str, Any]], Any]
    compensation: Optional[Callable[[Any], None]] = None


class Saga:
    """Sequence of (action, compensation) pairs.

    Each action receives the results of the previous steps keyed by step name;
    each compensation receives its own step's result.

    Usage:
        saga = Saga("invite")
        saga.add_step("create_identity", create, compensation=delete)
        saga.add_step("insert_membership", insert)
        results = saga.run()
    """

    def __init__(self, name: str):
        self.name = name
        self.steps: List[SagaStep] = []

    def add_step(
        self,
        name: str,
        action: Callable[[Dict[str, Any]], Any],
        compensation: Optional[Callable[[Any], None]] = None,
    ) -> "Saga":
        self.steps.append(SagaStep(name, action, compensation))
        return self

    def run(self) -> Dict[str, Any]:
        """Execute all steps.

        Returns:
            Results keyed by step name

        Raises:
            Whatever the failing step raised, unchanged
        """
        results: Dict[str, Any] = {}
        completed: List[SagaStep] = []
        for step in self.steps:
            try:
                results[step.name] = step.action(results)
            except Exception as exc:
                logger.warning("Saga '%s' failed at step '%s': %s", self.name, step.name, exc)
                failures = self._compensate(completed, results)
                if failures and isinstance(exc, TeamError):
                    exc.compensation_failures.extend(failures)
                raise
            completed.append(step)
        return results

    def _compensate(self, completed: List[SagaStep], results: Dict[str, Any]) -> List[CompensationFailure]:
        failures: List[CompensationFailure] = []
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                step.compensation(results[step.name])
                logger.info("Saga '%s' compensated step '%s'", self.name, step.name)
            except Exception as exc:
                failure = exc if isinstance(exc, CompensationFailure) else CompensationFailure(step.name, exc)
                logger.error("Saga '%s': %s", self.name, failure)
                failures.append(failure)
        return failures
