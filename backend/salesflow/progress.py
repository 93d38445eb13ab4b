from __future__ import annotations

"""
Step progress and transition resolution for workflow instances.

An instance is complete when every catalog step of its workflow has at least one
successful StepExecution. Only complete instances expose their outgoing
transitions; nothing here ever picks one.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, cast

from .cache import ReferenceCache, reference_cache
from .models import (
    StepExecution,
    StepExecutionStatus,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStep,
    WorkflowTransition,
)

CATALOG_CACHE_PREFIX = "catalog:"


@dataclass(frozen=True)
class TransitionOption:
    """An outgoing edge of the instance's workflow, as offered to the chooser."""

    id: int
    to_workflow_id: int
    to_workflow_name: str
    condition_logic: str
    priority: int


@dataclass(frozen=True)
class StepProgress:
    step_id: int
    step_order: int
    name: str
    is_automated: bool
    execution_id: int | None
    execution_status: str | None
    executed_at: datetime | None
    error_message: str


@dataclass(frozen=True)
class InstanceProgress:
    instance: WorkflowInstance
    steps: list[StepProgress]
    pending_step: StepProgress | None
    total_steps: int
    completed_steps: int
    all_steps_complete: bool
    is_overdue: bool
    available_transitions: list[TransitionOption] = field(default_factory=list)


def _successful_step_ids(instance: WorkflowInstance) -> set[int]:
    manager = cast(Any, StepExecution)._default_manager
    return set(
        manager.filter(
            instance=instance, status=StepExecutionStatus.SUCCESS
        ).values_list("step_id", flat=True)
    )


def _workflow_steps(workflow_id: int) -> list[WorkflowStep]:
    manager = cast(Any, WorkflowStep)._default_manager
    return list(manager.filter(workflow_id=workflow_id).order_by("step_order"))


def pending_step(instance: WorkflowInstance) -> WorkflowStep | None:
    """Returns the lowest-order step without a successful execution."""
    done = _successful_step_ids(instance)
    for step in _workflow_steps(cast(Any, instance).workflow_id):
        if step.id not in done:
            return step
    return None


def is_complete(instance: WorkflowInstance) -> bool:
    return pending_step(instance) is None


def transition_graph(
    cache: ReferenceCache | None = None,
) -> dict[int, list[dict[str, Any]]]:
    """Outgoing edges keyed by source workflow id, ordered by priority."""
    cache = cache or reference_cache

    def _load() -> dict[int, list[dict[str, Any]]]:
        manager = cast(Any, WorkflowTransition)._default_manager
        graph: dict[int, list[dict[str, Any]]] = {}
        edges = manager.select_related("to_workflow").order_by("priority", "id")
        for edge in edges:
            graph.setdefault(edge.from_workflow_id, []).append(
                {
                    "id": edge.id,
                    "to_workflow_id": edge.to_workflow_id,
                    "to_workflow_name": edge.to_workflow.name,
                    "condition_logic": edge.condition_logic,
                    "priority": edge.priority,
                }
            )
        return graph

    return cache.get_or_compute(f"{CATALOG_CACHE_PREFIX}transitions", _load)


def active_workflows(cache: ReferenceCache | None = None) -> list[dict[str, Any]]:
    """Active catalog entries with their ordered steps."""
    cache = cache or reference_cache

    def _load() -> list[dict[str, Any]]:
        manager = cast(Any, WorkflowDefinition)._default_manager
        workflows = (
            manager.filter(is_active=True)
            .select_related("stage")
            .prefetch_related("steps")
            .order_by("stage__name", "name")
        )
        return [
            {
                "id": workflow.id,
                "name": workflow.name,
                "stage": workflow.stage.name if workflow.stage else "",
                "sla_hours": workflow.sla_hours,
                "description": workflow.description,
                "tooltip": workflow.tooltip,
                "steps": [
                    {
                        "id": step.id,
                        "step_order": step.step_order,
                        "name": step.name,
                        "is_automated": step.is_automated,
                        "template": step.template,
                    }
                    for step in workflow.steps.all()
                ],
            }
            for workflow in workflows
        ]

    return cache.get_or_compute(f"{CATALOG_CACHE_PREFIX}workflows", _load)


def outgoing_transitions(
    workflow_id: int, cache: ReferenceCache | None = None
) -> list[TransitionOption]:
    edges = transition_graph(cache).get(workflow_id, [])
    return [TransitionOption(**edge) for edge in edges]


def available_transitions(
    instance: WorkflowInstance, cache: ReferenceCache | None = None
) -> list[TransitionOption]:
    if not is_complete(instance):
        return []
    return outgoing_transitions(cast(Any, instance).workflow_id, cache)


def build_instance_progress(
    instance: WorkflowInstance, cache: ReferenceCache | None = None
) -> InstanceProgress:
    # Related managers so callers can prefetch "workflow__steps" and "step_executions".
    record = cast(Any, instance)
    steps = sorted(record.workflow.steps.all(), key=lambda step: step.step_order)
    executions = sorted(
        record.step_executions.all(),
        key=lambda execution: (execution.executed_at, execution.id),
    )

    # Latest execution per step wins, but a success is never hidden by a later failure.
    latest: dict[int, Any] = {}
    for execution in executions:
        current = latest.get(execution.step_id)
        if (
            current is not None
            and current.status == StepExecutionStatus.SUCCESS
            and execution.status != StepExecutionStatus.SUCCESS
        ):
            continue
        latest[execution.step_id] = execution

    step_rows: list[StepProgress] = []
    pending: StepProgress | None = None
    completed = 0
    for step in steps:
        execution = latest.get(step.id)
        row = StepProgress(
            step_id=step.id,
            step_order=step.step_order,
            name=step.name,
            is_automated=step.is_automated,
            execution_id=execution.id if execution else None,
            execution_status=execution.status if execution else None,
            executed_at=execution.executed_at if execution else None,
            error_message=execution.error_message if execution else "",
        )
        step_rows.append(row)
        if execution is not None and execution.status == StepExecutionStatus.SUCCESS:
            completed += 1
        elif pending is None:
            pending = row

    all_complete = pending is None
    transitions = (
        outgoing_transitions(cast(Any, instance).workflow_id, cache)
        if all_complete
        else []
    )
    return InstanceProgress(
        instance=instance,
        steps=step_rows,
        pending_step=pending,
        total_steps=len(steps),
        completed_steps=completed,
        all_steps_complete=all_complete,
        is_overdue=instance.is_overdue,
        available_transitions=transitions,
    )
