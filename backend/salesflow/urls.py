from __future__ import annotations

from django.urls import path

from .views import (
    activate_workflow_view,
    ai_insight_rate_view,
    ai_insight_request_view,
    audit_event_list_view,
    car_instances_view,
    health_view,
    kanban_board_view,
    step_execution_create_view,
    transition_instance_view,
    workflow_catalog_view,
    workflow_instance_detail_view,
)

urlpatterns = [
    path("health", health_view, name="health"),
    path("workflows", workflow_catalog_view, name="workflow-catalog"),
    path("workflows/kanban", kanban_board_view, name="workflow-kanban"),
    path(
        "instances/activate",
        activate_workflow_view,
        name="workflow-instance-activate",
    ),
    path(
        "instances/<int:instance_id>",
        workflow_instance_detail_view,
        name="workflow-instance-detail",
    ),
    path(
        "instances/<int:instance_id>/transition",
        transition_instance_view,
        name="workflow-instance-transition",
    ),
    path(
        "instances/<int:instance_id>/step-executions",
        step_execution_create_view,
        name="step-execution-create",
    ),
    path(
        "cars/<str:car_id>/instances",
        car_instances_view,
        name="car-instances",
    ),
    path("ai-insights", ai_insight_request_view, name="ai-insight-request"),
    path("ai-insights/rate", ai_insight_rate_view, name="ai-insight-rate"),
    path("audit", audit_event_list_view, name="audit-event-list"),
]
