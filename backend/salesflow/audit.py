from __future__ import annotations

from typing import Any, cast

from .models import AuditEvent, WorkflowInstance


def record_audit_event(
    event_type: str,
    actor_identity: str = "",
    car_id: str = "",
    workflow_instance: WorkflowInstance | None = None,
    payload: dict[str, Any] | None = None,
) -> AuditEvent:
    manager = cast(Any, AuditEvent)._default_manager
    if not car_id and workflow_instance is not None:
        car_id = workflow_instance.car_id
    return manager.create(
        event_type=event_type,
        actor_identity=actor_identity,
        car_id=car_id,
        workflow_instance=workflow_instance,
        payload=payload or {},
    )
