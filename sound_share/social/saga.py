"""
Multi-write operations without transactions.

The datastore has no multi-key transaction, so an operation that writes
several keys can stop halfway. A Saga makes that explicit: it is a named,
ordered list of idempotent steps run strictly one after the other, plus
a description of the partial state left behind when it stops early.

Steps are ordered so that every prefix of the list leaves the graph in
a state that is safe to show and safe to re-run the whole saga on.
Nothing is retried or compensated automatically; a failing step raises
GraphWriteFailed naming the completed steps, and re-running the saga
later finishes the job because every step is idempotent.

Usage:
    saga = Saga("remove_friend", safe_partial_state="...")
    saga.step("delete_own_edge", lambda: store.remove(own_edge))
    saga.step("delete_peer_edge", lambda: store.remove(peer_edge))
    saga.run()
"""

from dataclasses import dataclass
from typing import Callable

from sound_share.core.exceptions import DatastoreError, GraphWriteFailed
from sound_share.core.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class SagaStep:
    """
    One idempotent write.

    Attributes:
        name: Short identifier reported in GraphWriteFailed.completed_steps.
        action: Performs the write. Must be safe to run more than once.
    """
    name: str
    action: Callable[[], None]


class Saga:
    """
    Named, ordered list of idempotent steps.

    Attributes:
        operation: Name of the user-level operation ('approve_friend_request').
        safe_partial_state: What the data looks like if the saga stops
                            after any prefix of its steps.
    """

    def __init__(self, operation: str, safe_partial_state: str = "") -> None:
        self.operation = operation
        self.safe_partial_state = safe_partial_state
        self._steps: list[SagaStep] = []

    def step(self, name: str, action: Callable[[], None]) -> "Saga":
        """Append a step. Returns self so steps can be chained."""
        if any(existing.name == name for existing in self._steps):
            raise ValueError(f"Duplicate step name '{name}' in saga '{self.operation}'")
        self._steps.append(SagaStep(name, action))
        return self

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    def run(self) -> list[str]:
        """
        Run every step in order, each finishing before the next starts.

        Returns:
            Names of the completed steps (all of them).

        Raises:
            GraphWriteFailed: On the first step raising DatastoreError.
                              Later steps are not attempted.
        """
        completed: list[str] = []
        for step in self._steps:
            try:
                step.action()
            except DatastoreError as e:
                logger.error(
                    f"{self.operation}: step '{step.name}' failed after "
                    f"{completed or 'no steps'}: {e.message}"
                )
                raise GraphWriteFailed(
                    f"Could not finish {self.operation.replace('_', ' ')}: {e.message}",
                    operation=self.operation,
                    failed_step=step.name,
                    completed_steps=completed,
                    details={
                        "original_error": str(e),
                        "safe_partial_state": self.safe_partial_state,
                    }
                ) from e
            completed.append(step.name)
            logger.debug(f"{self.operation}: step '{step.name}' done")
        return completed
