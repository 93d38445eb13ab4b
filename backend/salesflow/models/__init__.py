from __future__ import annotations

import hashlib
from typing import Any, cast

from django.db import models
from django.utils import timezone


class ConsoleApiKey(models.Model):
    name = models.CharField(max_length=120, blank=True)
    key_hash = models.CharField(max_length=64, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @staticmethod
    def hash_key(raw_key: str) -> str:
        return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()

    @classmethod
    def authenticate(cls, raw_key: str) -> "ConsoleApiKey | None":
        key_hash = cls.hash_key(raw_key)
        manager = cast(Any, ConsoleApiKey)._default_manager
        result = manager.filter(key_hash=key_hash).first()
        return cast("ConsoleApiKey | None", result)


class WorkflowStage(models.Model):
    name = models.CharField(max_length=120, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)


class WorkflowDefinition(models.Model):
    name = models.CharField(max_length=120, unique=True)
    stage = models.ForeignKey(
        WorkflowStage,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="workflows",
    )
    sla_hours = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    description = models.TextField(blank=True)
    tooltip = models.TextField(blank=True)
    notification_url = models.URLField(max_length=500, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)


class WorkflowStep(models.Model):
    workflow = models.ForeignKey(
        WorkflowDefinition, on_delete=models.CASCADE, related_name="steps"
    )
    step_order = models.PositiveIntegerField()
    name = models.CharField(max_length=200)
    is_automated = models.BooleanField(default=False)
    template = models.TextField(blank=True)

    class Meta:
        ordering = ["step_order"]
        constraints = [
            models.UniqueConstraint(
                fields=["workflow", "step_order"],
                name="uniq_step_order_per_workflow",
            )
        ]


class WorkflowTransition(models.Model):
    from_workflow = models.ForeignKey(
        WorkflowDefinition,
        on_delete=models.CASCADE,
        related_name="outgoing_transitions",
    )
    to_workflow = models.ForeignKey(
        WorkflowDefinition,
        on_delete=models.CASCADE,
        related_name="incoming_transitions",
    )
    condition_logic = models.TextField(blank=True)
    priority = models.IntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["from_workflow", "to_workflow"],
                name="uniq_transition_edge",
            )
        ]


class WorkflowInstanceStatus(models.TextChoices):
    RUNNING = "running"
    COMPLETED = "completed"
    TERMINATED = "terminated"


class FinalOutcome(models.TextChoices):
    DISCOUNT = "discount"
    ORIGINAL_PRICE = "original_price"
    LOST = "lost"


class WorkflowInstance(models.Model):
    car_id = models.CharField(max_length=64)
    workflow = models.ForeignKey(
        WorkflowDefinition, on_delete=models.PROTECT, related_name="instances"
    )
    parent_instance = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="child_instances",
    )
    status = models.CharField(
        max_length=20,
        choices=WorkflowInstanceStatus.choices,
        default=WorkflowInstanceStatus.RUNNING,
    )
    started_at = models.DateTimeField(default=timezone.now)
    sla_deadline = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    final_outcome = models.CharField(
        max_length=20, choices=FinalOutcome.choices, blank=True
    )
    transition_properties = models.JSONField(default=dict, blank=True)
    ai_insight = models.ForeignKey(
        "AIInsight",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="activated_instances",
    )
    is_aligned_with_ai = models.BooleanField(null=True, blank=True)
    created_by = models.CharField(max_length=200, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(
                fields=["car_id", "status"], name="instance_car_status_idx"
            ),
            models.Index(
                fields=["status", "started_at"], name="instance_status_started_idx"
            ),
        ]

    @property
    def is_overdue(self) -> bool:
        if self.status != WorkflowInstanceStatus.RUNNING or self.sla_deadline is None:
            return False
        return timezone.now() > self.sla_deadline


class StepExecutionStatus(models.TextChoices):
    SUCCESS = "success"
    FAILURE = "failure"


class StepExecution(models.Model):
    instance = models.ForeignKey(
        WorkflowInstance, on_delete=models.CASCADE, related_name="step_executions"
    )
    step = models.ForeignKey(
        WorkflowStep, on_delete=models.PROTECT, related_name="executions"
    )
    status = models.CharField(max_length=20, choices=StepExecutionStatus.choices)
    error_message = models.TextField(blank=True)
    executed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(
                fields=["instance", "step", "status"], name="step_exec_lookup_idx"
            ),
        ]


class AIInsight(models.Model):
    car_id = models.CharField(max_length=64)
    source_instance = models.ForeignKey(
        WorkflowInstance, on_delete=models.CASCADE, related_name="ai_insights"
    )
    ai_insight_summary = models.JSONField(default=dict, blank=True)
    selected_transition = models.ForeignKey(
        WorkflowTransition,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="ai_insights",
    )
    target_workflow = models.ForeignKey(
        WorkflowDefinition,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="ai_insights",
    )
    is_positive = models.BooleanField(null=True, blank=True)
    # Reset whenever the row is re-armed as a processing placeholder.
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["car_id", "source_instance"],
                name="uniq_live_ai_insight_per_source",
            )
        ]

    @property
    def is_processing(self) -> bool:
        summary = self.ai_insight_summary
        return isinstance(summary, dict) and summary.get("processing") is True

    @property
    def is_complete(self) -> bool:
        return (
            self.selected_transition_id is not None
            and self.target_workflow_id is not None
        )


class OldAIInsight(models.Model):
    ai_insight = models.ForeignKey(
        AIInsight, on_delete=models.CASCADE, related_name="history"
    )
    ai_insight_summary = models.JSONField(default=dict, blank=True)
    user_feedback = models.TextField(blank=True)
    is_positive = models.BooleanField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)


class DealerBiddingSession(models.Model):
    car_id = models.CharField(max_length=64, db_index=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)


class AuditEventType(models.TextChoices):
    WORKFLOW_ACTIVATED = "workflow_activated"
    INSTANCE_TRANSITIONED = "instance_transitioned"
    STEP_EXECUTED = "step_executed"
    AI_INSIGHT_GENERATED = "ai_insight_generated"
    AI_INSIGHT_FEEDBACK = "ai_insight_feedback"
    AI_INSIGHT_RATED = "ai_insight_rated"
    NOTIFICATION_FAILED = "notification_failed"


class AuditEvent(models.Model):
    event_type = models.CharField(max_length=120, choices=AuditEventType.choices)
    actor_identity = models.CharField(max_length=200, blank=True)
    car_id = models.CharField(max_length=64, blank=True)
    workflow_instance = models.ForeignKey(
        WorkflowInstance,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_events",
    )
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["workflow_instance"], name="audit_instance_idx"),
            models.Index(fields=["car_id"], name="audit_car_idx"),
            models.Index(fields=["created_at"], name="audit_created_idx"),
        ]
