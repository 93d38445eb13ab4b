# pyright: reportMissingImports=false
from typing import Any, cast

from rest_framework import status
from rest_framework.generics import ListAPIView
from rest_framework.permissions import AllowAny
from rest_framework.response import Response  # type: ignore[reportMissingImports]
from rest_framework.views import APIView  # type: ignore[reportMissingImports]

from .errors import WorkflowEngineError
from .insights import INSIGHT_PROCESSING, rate_ai_insight, request_ai_insight
from .lifecycle import activate_workflow, record_step_execution, transition_instance
from .models import (
    AuditEvent,
    OldAIInsight,
    WorkflowInstance,
    WorkflowInstanceStatus,
)
from .progress import active_workflows, build_instance_progress, transition_graph
from .serializers import (
    ActivateWorkflowSerializer,
    AIInsightRateSerializer,
    AIInsightRequestSerializer,
    AIInsightSerializer,
    AuditEventSerializer,
    OldAIInsightSerializer,
    StepExecutionCreateSerializer,
    StepExecutionSerializer,
    TransitionInstanceSerializer,
    WorkflowInstanceSerializer,
    serialize_instance_progress,
)


def _engine_error_response(exc: WorkflowEngineError) -> Response:
    return Response(exc.as_payload(), status=exc.status_code)


def _actor(request) -> str:
    api_key = getattr(request, "auth", None)
    return str(getattr(api_key, "name", "") or "")


class HealthView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    def get(self, request):
        return Response(
            {
                "status": "ok",
            }
        )


class WorkflowCatalogView(APIView):
    def get(self, request):
        return Response({"workflows": active_workflows()})


class KanbanBoardView(APIView):
    """Running instances grouped by workflow, each with its pending step."""

    def get(self, request):
        manager = cast(Any, WorkflowInstance)._default_manager
        instances = (
            manager.select_related("workflow")
            .prefetch_related("workflow__steps", "step_executions")
            .filter(status=WorkflowInstanceStatus.RUNNING)
            .order_by("started_at", "id")
        )
        car_id = request.query_params.get("car_id")
        if car_id:
            instances = instances.filter(car_id=car_id)

        columns: dict[int, list[dict[str, Any]]] = {}
        for instance in instances:
            progress = build_instance_progress(instance)
            columns.setdefault(instance.workflow_id, []).append(
                serialize_instance_progress(progress)
            )

        return Response(
            {
                "columns": [
                    {
                        "workflow_id": workflow["id"],
                        "workflow_name": workflow["name"],
                        "stage": workflow["stage"],
                        "instances": columns.get(workflow["id"], []),
                    }
                    for workflow in active_workflows()
                ]
            }
        )


class WorkflowInstanceDetailView(APIView):
    def get(self, request, instance_id: int):
        manager = cast(Any, WorkflowInstance)._default_manager
        instance = manager.select_related("workflow").filter(id=instance_id).first()
        if instance is None:
            return Response({"detail": "Not found."}, status=status.HTTP_404_NOT_FOUND)
        progress = build_instance_progress(instance)
        data = serialize_instance_progress(progress)
        executions = instance.step_executions.select_related("step")
        data["step_executions"] = StepExecutionSerializer(
            executions.order_by("executed_at", "id"), many=True
        ).data
        return Response(data)


class CarInstancesView(APIView):
    def get(self, request, car_id: str):
        manager = cast(Any, WorkflowInstance)._default_manager
        instances = list(
            manager.select_related("workflow")
            .prefetch_related("workflow__steps", "step_executions")
            .filter(car_id=car_id)
            .order_by("-started_at", "-id")
        )
        summary = {
            "total": len(instances),
            "running": 0,
            "completed": 0,
            "terminated": 0,
        }
        for instance in instances:
            status_key = str(instance.status)
            if status_key in summary:
                summary[status_key] += 1

        graph = transition_graph()
        all_transitions = [
            {"from_workflow_id": from_workflow_id, **edge}
            for from_workflow_id, edges in sorted(graph.items())
            for edge in edges
        ]
        return Response(
            {
                "car_id": car_id,
                "instances": [
                    serialize_instance_progress(build_instance_progress(instance))
                    for instance in instances
                ],
                "all_workflows": active_workflows(),
                "all_transitions": all_transitions,
                "summary": summary,
            }
        )


class ActivateWorkflowView(APIView):
    def post(self, request):
        serializer = ActivateWorkflowSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = cast(dict[str, Any], serializer.validated_data)
        try:
            result = activate_workflow(
                car_id=data["car_id"],
                target_workflow_id=data["target_workflow_id"],
                transition_properties=data["transition_properties"],
                parent_instance_id=data.get("parent_instance_id"),
                final_outcome=data.get("final_outcome") or None,
                ai_insight_id=data.get("ai_insight_id"),
                is_aligned_with_ai=data.get("is_aligned_with_ai"),
                phone_number=data.get("phone_number"),
                workflow_payload=data.get("workflow_payload"),
                actor=_actor(request),
            )
        except WorkflowEngineError as exc:
            return _engine_error_response(exc)
        return Response(
            {
                "success": True,
                "message": result.message,
                "instance": WorkflowInstanceSerializer(result.instance).data,
            },
            status=status.HTTP_201_CREATED,
        )


class TransitionInstanceView(APIView):
    def post(self, request, instance_id: int):
        serializer = TransitionInstanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = cast(dict[str, Any], serializer.validated_data)
        try:
            result = transition_instance(
                instance_id,
                data["to_workflow_id"],
                transition_id=data.get("transition_id"),
                actor=_actor(request),
            )
        except WorkflowEngineError as exc:
            return _engine_error_response(exc)
        return Response(
            {
                "success": True,
                "message": result.message,
                "old_instance": WorkflowInstanceSerializer(result.old_instance).data,
                "new_instance": WorkflowInstanceSerializer(result.new_instance).data,
            }
        )


class StepExecutionCreateView(APIView):
    def post(self, request, instance_id: int):
        serializer = StepExecutionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = cast(dict[str, Any], serializer.validated_data)
        try:
            execution = record_step_execution(
                instance_id,
                data["step_id"],
                data["status"],
                error_message=data.get("error_message", ""),
                actor=_actor(request),
            )
        except WorkflowEngineError as exc:
            return _engine_error_response(exc)
        return Response(
            StepExecutionSerializer(execution).data, status=status.HTTP_201_CREATED
        )


class AIInsightRequestView(APIView):
    def post(self, request):
        serializer = AIInsightRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = cast(dict[str, Any], serializer.validated_data)
        try:
            outcome = request_ai_insight(
                data["car_id"],
                data["source_instance_id"],
                data["phone_number"],
                user_feedback=data.get("user_feedback"),
                actor=_actor(request),
            )
        except WorkflowEngineError as exc:
            return _engine_error_response(exc)

        if outcome.state == INSIGHT_PROCESSING or outcome.insight is None:
            return Response(
                {"status": "processing", "message": "AI insight is being generated."},
                status=status.HTTP_202_ACCEPTED,
            )
        return Response(
            {
                "status": outcome.state,
                "is_new": outcome.is_new,
                "cached": not outcome.is_new,
                "insight": AIInsightSerializer(outcome.insight).data,
                "history": OldAIInsightSerializer(outcome.history, many=True).data,
            }
        )


class AIInsightRateView(APIView):
    def post(self, request):
        serializer = AIInsightRateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = cast(dict[str, Any], serializer.validated_data)
        try:
            rated = rate_ai_insight(
                data["insight_id"],
                data["is_positive"],
                is_history=data.get("is_history", False),
                actor=_actor(request),
            )
        except WorkflowEngineError as exc:
            return _engine_error_response(exc)
        if isinstance(rated, OldAIInsight):
            return Response(
                {"success": True, "history_entry": OldAIInsightSerializer(rated).data}
            )
        return Response({"success": True, "insight": AIInsightSerializer(rated).data})


class AuditEventListView(ListAPIView):
    serializer_class = AuditEventSerializer

    def get_queryset(self):
        manager = cast(Any, AuditEvent)._default_manager
        queryset = manager.all()
        workflow_instance_id = self.request.query_params.get("workflow_instance_id")
        if workflow_instance_id:
            queryset = queryset.filter(workflow_instance_id=workflow_instance_id)
        car_id = self.request.query_params.get("car_id")
        if car_id:
            queryset = queryset.filter(car_id=car_id)
        event_type = self.request.query_params.get("event_type")
        if event_type:
            queryset = queryset.filter(event_type=event_type)
        return queryset.order_by("-created_at", "-id")


health_view = cast(Any, HealthView).as_view()
workflow_catalog_view = cast(Any, WorkflowCatalogView).as_view()
kanban_board_view = cast(Any, KanbanBoardView).as_view()
workflow_instance_detail_view = cast(Any, WorkflowInstanceDetailView).as_view()
car_instances_view = cast(Any, CarInstancesView).as_view()
activate_workflow_view = cast(Any, ActivateWorkflowView).as_view()
transition_instance_view = cast(Any, TransitionInstanceView).as_view()
step_execution_create_view = cast(Any, StepExecutionCreateView).as_view()
ai_insight_request_view = cast(Any, AIInsightRequestView).as_view()
ai_insight_rate_view = cast(Any, AIInsightRateView).as_view()
audit_event_list_view = cast(Any, AuditEventListView).as_view()
