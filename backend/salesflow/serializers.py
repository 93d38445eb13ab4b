from __future__ import annotations

from typing import Any, cast

from rest_framework import serializers

from .models import (
    AIInsight,
    AuditEvent,
    FinalOutcome,
    OldAIInsight,
    StepExecution,
    StepExecutionStatus,
    WorkflowInstance,
)
from .progress import InstanceProgress, StepProgress, TransitionOption


class WorkflowInstanceSerializer(serializers.ModelSerializer):
    workflow_name = serializers.CharField(source="workflow.name", read_only=True)
    is_overdue = serializers.BooleanField(read_only=True)

    class Meta:
        model = WorkflowInstance
        fields = (
            "id",
            "car_id",
            "workflow_id",
            "workflow_name",
            "parent_instance_id",
            "status",
            "started_at",
            "sla_deadline",
            "completed_at",
            "final_outcome",
            "transition_properties",
            "ai_insight_id",
            "is_aligned_with_ai",
            "created_by",
            "is_overdue",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class StepExecutionSerializer(serializers.ModelSerializer):
    step_order = serializers.IntegerField(source="step.step_order", read_only=True)
    step_name = serializers.CharField(source="step.name", read_only=True)

    class Meta:
        model = StepExecution
        fields = (
            "id",
            "instance_id",
            "step_id",
            "step_order",
            "step_name",
            "status",
            "error_message",
            "executed_at",
        )
        read_only_fields = fields


class AuditEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditEvent
        fields = (
            "id",
            "event_type",
            "actor_identity",
            "car_id",
            "workflow_instance_id",
            "payload",
            "created_at",
        )
        read_only_fields = fields


class OldAIInsightSerializer(serializers.ModelSerializer):
    class Meta:
        model = OldAIInsight
        fields = (
            "id",
            "ai_insight_id",
            "ai_insight_summary",
            "user_feedback",
            "is_positive",
            "created_at",
        )
        read_only_fields = fields


class AIInsightSerializer(serializers.ModelSerializer):
    target_workflow_name = serializers.CharField(
        source="target_workflow.name", read_only=True, default=None
    )

    class Meta:
        model = AIInsight
        fields = (
            "id",
            "car_id",
            "source_instance_id",
            "ai_insight_summary",
            "selected_transition_id",
            "target_workflow_id",
            "target_workflow_name",
            "is_positive",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


def serialize_transition_option(option: TransitionOption) -> dict[str, Any]:
    return {
        "id": option.id,
        "to_workflow_id": option.to_workflow_id,
        "to_workflow_name": option.to_workflow_name,
        "condition_logic": option.condition_logic,
        "priority": option.priority,
    }


def serialize_step_progress(step: StepProgress | None) -> dict[str, Any] | None:
    if step is None:
        return None
    return {
        "step_id": step.step_id,
        "step_order": step.step_order,
        "name": step.name,
        "is_automated": step.is_automated,
        "execution_id": step.execution_id,
        "execution_status": step.execution_status,
        "executed_at": step.executed_at.isoformat() if step.executed_at else None,
        "error_message": step.error_message,
    }


def serialize_instance_progress(progress: InstanceProgress) -> dict[str, Any]:
    data = cast(dict[str, Any], WorkflowInstanceSerializer(progress.instance).data)
    data.update(
        {
            "steps": [serialize_step_progress(step) for step in progress.steps],
            "pending_step": serialize_step_progress(progress.pending_step),
            "total_steps": progress.total_steps,
            "completed_steps": progress.completed_steps,
            "all_steps_complete": progress.all_steps_complete,
            "available_transitions": [
                serialize_transition_option(option)
                for option in progress.available_transitions
            ],
        }
    )
    return data


class ActivateWorkflowSerializer(serializers.Serializer):
    """
    Shape checks only; the lifecycle service owns the cross-field rules
    (insight and car_snapshot become required once a parent is given).
    """

    car_id = serializers.CharField(max_length=64)
    target_workflow_id = serializers.IntegerField(min_value=1)
    parent_instance_id = serializers.IntegerField(
        min_value=1, required=False, allow_null=True
    )
    final_outcome = serializers.ChoiceField(
        choices=FinalOutcome.choices, required=False, allow_null=True, allow_blank=True
    )
    transition_properties = serializers.JSONField()
    ai_insight_id = serializers.IntegerField(
        min_value=1, required=False, allow_null=True
    )
    is_aligned_with_ai = serializers.BooleanField(required=False, allow_null=True)
    phone_number = serializers.CharField(
        max_length=32, required=False, allow_blank=True, allow_null=True
    )
    workflow_payload = serializers.DictField(required=False, allow_null=True)


class TransitionInstanceSerializer(serializers.Serializer):
    to_workflow_id = serializers.IntegerField(min_value=1)
    transition_id = serializers.IntegerField(
        min_value=1, required=False, allow_null=True
    )


class StepExecutionCreateSerializer(serializers.Serializer):
    step_id = serializers.IntegerField(min_value=1)
    status = serializers.ChoiceField(choices=StepExecutionStatus.choices)
    error_message = serializers.CharField(required=False, allow_blank=True)


class AIInsightRequestSerializer(serializers.Serializer):
    car_id = serializers.CharField(max_length=64)
    source_instance_id = serializers.IntegerField(min_value=1)
    phone_number = serializers.CharField(max_length=32)
    user_feedback = serializers.CharField(
        required=False, allow_blank=True, allow_null=True
    )


class AIInsightRateSerializer(serializers.Serializer):
    insight_id = serializers.IntegerField(min_value=1)
    is_positive = serializers.BooleanField(allow_null=True)
    is_history = serializers.BooleanField(required=False, default=False)
