from __future__ import annotations

"""
Instance lifecycle: activating workflows for a car, manual transitions between
workflows, and recording step executions against running instances.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, cast

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .audit import record_audit_event
from .errors import InvalidState, NotFound, ValidationFailed
from .models import (
    AIInsight,
    AuditEventType,
    FinalOutcome,
    StepExecution,
    StepExecutionStatus,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowInstanceStatus,
    WorkflowStep,
)
from .notifications import dispatch_workflow_notification
from .preconditions import check_activation_preconditions

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class ActivationResult:
    instance: WorkflowInstance
    message: str


@dataclass(frozen=True)
class TransitionResult:
    old_instance: WorkflowInstance
    new_instance: WorkflowInstance
    message: str


def compute_sla_deadline(
    started_at: datetime, sla_hours: int | None
) -> datetime | None:
    if sla_hours is None:
        return None
    return started_at + timedelta(hours=sla_hours)


def validate_activation_request(
    car_id: Any,
    target_workflow_id: Any,
    parent_instance_id: Any,
    final_outcome: Any,
    transition_properties: Any,
) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    if not car_id:
        errors.append(
            {"path": "car_id", "code": "required", "message": "Field is required."}
        )
    if not target_workflow_id:
        errors.append(
            {
                "path": "target_workflow_id",
                "code": "required",
                "message": "Field is required.",
            }
        )
    if final_outcome and final_outcome not in FinalOutcome.values:
        errors.append(
            {
                "path": "final_outcome",
                "code": "invalid_choice",
                "message": "Invalid final_outcome value.",
            }
        )
    if not isinstance(transition_properties, dict):
        errors.append(
            {
                "path": "transition_properties",
                "code": "invalid_type",
                "message": "transition_properties must be an object.",
            }
        )
        return errors

    if not isinstance(transition_properties.get("custom_fields"), dict):
        errors.append(
            {
                "path": "transition_properties.custom_fields",
                "code": "required",
                "message": "custom_fields is required and must be an object.",
            }
        )
    if parent_instance_id:
        if not isinstance(transition_properties.get("insight"), str):
            errors.append(
                {
                    "path": "transition_properties.insight",
                    "code": "required",
                    "message": "insight is required and must be a string.",
                }
            )
        if not isinstance(transition_properties.get("car_snapshot"), dict):
            errors.append(
                {
                    "path": "transition_properties.car_snapshot",
                    "code": "required",
                    "message": "car_snapshot is required and must be an object.",
                }
            )
    return errors


def activate_workflow(
    car_id: str,
    target_workflow_id: int,
    transition_properties: dict[str, Any],
    parent_instance_id: int | None = None,
    final_outcome: str | None = None,
    ai_insight_id: int | None = None,
    is_aligned_with_ai: bool | None = None,
    phone_number: str | None = None,
    workflow_payload: dict[str, Any] | None = None,
    actor: str = "",
) -> ActivationResult:
    """
    Opens a new running instance of the target workflow for a car.

    Every check runs before the first write. The parent's final_outcome is
    recorded in the same transaction as the insert; the notification webhook
    fires only after commit and never undoes the activation.
    """
    errors = validate_activation_request(
        car_id,
        target_workflow_id,
        parent_instance_id,
        final_outcome,
        transition_properties,
    )
    if errors:
        raise ValidationFailed("Invalid activation request.", errors=errors)

    workflow_manager = cast(Any, WorkflowDefinition)._default_manager
    instance_manager = cast(Any, WorkflowInstance)._default_manager
    insight_manager = cast(Any, AIInsight)._default_manager

    workflow = workflow_manager.filter(id=target_workflow_id).first()
    if workflow is None:
        raise NotFound("Target workflow not found.")

    parent = None
    if parent_instance_id:
        parent = instance_manager.filter(id=parent_instance_id).first()
        if parent is None:
            raise NotFound("Parent workflow instance not found.")

    ai_insight = None
    if ai_insight_id:
        ai_insight = insight_manager.filter(id=ai_insight_id).first()
        if ai_insight is None:
            raise NotFound("AI insight not found.")

    check_activation_preconditions(car_id, workflow)

    with transaction.atomic():
        if parent is not None and final_outcome:
            parent.final_outcome = final_outcome
            parent.save(update_fields=["final_outcome", "updated_at"])

        started_at = timezone.now()
        instance = instance_manager.create(
            car_id=car_id,
            workflow=workflow,
            parent_instance=parent,
            status=WorkflowInstanceStatus.RUNNING,
            started_at=started_at,
            sla_deadline=compute_sla_deadline(started_at, workflow.sla_hours),
            transition_properties=transition_properties,
            ai_insight=ai_insight,
            is_aligned_with_ai=is_aligned_with_ai,
            created_by=actor,
        )
        record_audit_event(
            AuditEventType.WORKFLOW_ACTIVATED,
            actor_identity=actor,
            workflow_instance=instance,
            payload={
                "workflow": workflow.name,
                "parent_instance_id": parent_instance_id,
                "final_outcome": final_outcome or "",
                "ai_insight_id": ai_insight_id,
                "is_aligned_with_ai": is_aligned_with_ai,
            },
        )
        transaction.on_commit(
            lambda: dispatch_workflow_notification(
                instance, phone_number or "", workflow_payload
            )
        )

    logger.info(
        "Workflow activated: car_id=%s workflow=%s instance_id=%s parent_id=%s",
        car_id,
        workflow.name,
        instance.id,
        parent_instance_id,
    )
    return ActivationResult(
        instance=instance,
        message=f"Workflow {workflow.name} activated successfully",
    )


def transition_instance(
    instance_id: int,
    to_workflow_id: int,
    transition_id: int | None = None,
    actor: str = "",
) -> TransitionResult:
    """
    Manual override: closes the current instance and opens one for the target.

    Skips AI bookkeeping, activation preconditions and notifications on purpose.
    """
    instance_manager = cast(Any, WorkflowInstance)._default_manager
    workflow_manager = cast(Any, WorkflowDefinition)._default_manager

    current = (
        instance_manager.select_related("workflow").filter(id=instance_id).first()
    )
    if current is None:
        raise NotFound("Workflow instance not found.")

    target = workflow_manager.filter(id=to_workflow_id).first()
    if target is None:
        raise NotFound("Target workflow not found.")
    if not target.is_active:
        raise InvalidState("Target workflow is inactive.", code="workflow_inactive")

    default_sla_hours = int(
        getattr(settings, "MANUAL_TRANSITION_DEFAULT_SLA_HOURS", 24)
    )
    with transaction.atomic():
        now = timezone.now()
        current.status = WorkflowInstanceStatus.COMPLETED
        current.completed_at = now
        current.save(update_fields=["status", "completed_at", "updated_at"])

        new_instance = instance_manager.create(
            car_id=current.car_id,
            workflow=target,
            status=WorkflowInstanceStatus.RUNNING,
            started_at=now,
            sla_deadline=compute_sla_deadline(
                now, target.sla_hours or default_sla_hours
            ),
            created_by=SYSTEM_ACTOR,
        )
        record_audit_event(
            AuditEventType.INSTANCE_TRANSITIONED,
            actor_identity=actor,
            workflow_instance=new_instance,
            payload={
                "old_instance_id": current.id,
                "from_workflow": current.workflow.name,
                "to_workflow": target.name,
                "transition_id": transition_id,
            },
        )

    logger.info(
        "Transitioned instance %s from %s to %s. New instance: %s",
        current.id,
        current.workflow.name,
        target.name,
        new_instance.id,
    )
    return TransitionResult(
        old_instance=current,
        new_instance=new_instance,
        message=f'Moved from "{current.workflow.name}" to "{target.name}"',
    )


def record_step_execution(
    instance_id: int,
    step_id: int,
    status: str,
    error_message: str = "",
    actor: str = "",
) -> StepExecution:
    if status not in StepExecutionStatus.values:
        raise ValidationFailed(
            "Invalid step execution status.",
            errors=[
                {
                    "path": "status",
                    "code": "invalid_choice",
                    "message": f"Status must be one of {StepExecutionStatus.values}.",
                }
            ],
        )

    instance_manager = cast(Any, WorkflowInstance)._default_manager
    step_manager = cast(Any, WorkflowStep)._default_manager
    execution_manager = cast(Any, StepExecution)._default_manager

    instance = instance_manager.filter(id=instance_id).first()
    if instance is None:
        raise NotFound("Workflow instance not found.")
    step = step_manager.filter(id=step_id).first()
    if step is None:
        raise NotFound("Workflow step not found.")
    if step.workflow_id != instance.workflow_id:
        raise InvalidState(
            "Step does not belong to the instance's workflow.",
            code="step_workflow_mismatch",
        )
    if instance.status != WorkflowInstanceStatus.RUNNING:
        raise InvalidState(
            "Step executions can only be recorded on running instances.",
            code="instance_not_running",
        )

    with transaction.atomic():
        execution = execution_manager.create(
            instance=instance,
            step=step,
            status=status,
            error_message=error_message,
        )
        record_audit_event(
            AuditEventType.STEP_EXECUTED,
            actor_identity=actor,
            workflow_instance=instance,
            payload={
                "step_id": step.id,
                "step_order": step.step_order,
                "status": status,
                "error_message": error_message,
            },
        )
    return execution
