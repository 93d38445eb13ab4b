from __future__ import annotations

"""
Activation preconditions keyed by target workflow name. A precondition raises
InvalidState when the car is not ready for the workflow; it runs before any write.
"""

from typing import Any, Callable, cast

from .errors import InvalidState
from .models import DealerBiddingSession, WorkflowDefinition

Precondition = Callable[[str, WorkflowDefinition], None]

_PRECONDITIONS: dict[str, Precondition] = {}


def activation_precondition(
    workflow_name: str,
) -> Callable[[Precondition], Precondition]:
    def register(func: Precondition) -> Precondition:
        _PRECONDITIONS[workflow_name] = func
        return func

    return register


def get_precondition(workflow_name: str) -> Precondition | None:
    return _PRECONDITIONS.get(workflow_name)


def check_activation_preconditions(car_id: str, workflow: WorkflowDefinition) -> None:
    precondition = get_precondition(workflow.name)
    if precondition is not None:
        precondition(car_id, workflow)


@activation_precondition("WF3")
def _require_bidding_session(car_id: str, workflow: WorkflowDefinition) -> None:
    manager = cast(Any, DealerBiddingSession)._default_manager
    if not manager.filter(car_id=car_id).exists():
        raise InvalidState(
            f"Workflow {workflow.name} requires a dealer bidding session "
            f"for car {car_id}.",
            code="missing_bidding_session",
        )
