from __future__ import annotations

"""
Workflow notifications sent to the automation platform after an activation commits.

Each target workflow declares the payload it needs through a registered builder;
workflows without one get the default payload. Delivery is best-effort: failures
are logged and audited, never raised back into the activation.
"""

import logging
import threading
from typing import Any, Callable, cast

from django.conf import settings
from django.db import connection

from .audit import record_audit_event
from .models import AuditEventType, WorkflowInstance
from .webhooks import post_json

logger = logging.getLogger(__name__)

PayloadBuilder = Callable[[WorkflowInstance, str, dict[str, Any]], dict[str, Any]]

_PAYLOAD_BUILDERS: dict[str, PayloadBuilder] = {}


def payload_builder(workflow_name: str) -> Callable[[PayloadBuilder], PayloadBuilder]:
    def register(func: PayloadBuilder) -> PayloadBuilder:
        _PAYLOAD_BUILDERS[workflow_name] = func
        return func

    return register


def get_payload_builder(workflow_name: str) -> PayloadBuilder:
    return _PAYLOAD_BUILDERS.get(workflow_name, build_default_payload)


def build_default_payload(
    instance: WorkflowInstance, phone_number: str, workflow_payload: dict[str, Any]
) -> dict[str, Any]:
    workflow = cast(Any, instance).workflow
    return {
        "instanceId": instance.id,
        "carId": instance.car_id,
        "workflowId": workflow.id,
        "workflowName": workflow.name,
        "phoneNumber": phone_number,
        "payload": workflow_payload,
    }


@payload_builder("WF0")
def build_intake_payload(
    instance: WorkflowInstance, phone_number: str, workflow_payload: dict[str, Any]
) -> dict[str, Any]:
    # Intake automation looks everything else up from the instance record.
    return {"instanceId": instance.id, "carId": instance.car_id}


@payload_builder("WF2")
def build_seeding_payload(
    instance: WorkflowInstance, phone_number: str, workflow_payload: dict[str, Any]
) -> dict[str, Any]:
    properties = instance.transition_properties or {}
    car_snapshot = properties.get("car_snapshot") or {}
    return {
        "instanceId": instance.id,
        "carId": instance.car_id,
        "phoneNumber": phone_number,
        "displayName": car_snapshot.get("display_name"),
        "priceCustomer": car_snapshot.get("price_customer"),
        "priceHighestBid": car_snapshot.get("price_highest_bid"),
        "insight": properties.get("insight", ""),
        "customFields": properties.get("custom_fields", {}),
        **workflow_payload,
    }


def send_workflow_notification(
    instance: WorkflowInstance,
    phone_number: str = "",
    workflow_payload: dict[str, Any] | None = None,
) -> bool:
    """Posts the workflow-specific payload; returns whether delivery succeeded."""
    workflow = cast(Any, instance).workflow
    url = workflow.notification_url
    if not url:
        logger.debug(
            "No notification webhook for workflow=%s instance_id=%s",
            workflow.name,
            instance.id,
        )
        return False

    builder = get_payload_builder(workflow.name)
    payload = builder(instance, phone_number, workflow_payload or {})
    timeout = float(getattr(settings, "WORKFLOW_NOTIFICATION_TIMEOUT_SECONDS", 10))
    response = post_json(
        url, payload, timeout=timeout, correlation_id=f"instance-{instance.id}"
    )
    if response.ok:
        logger.info(
            "Workflow notification sent: workflow=%s instance_id=%s status=%s",
            workflow.name,
            instance.id,
            response.status_code,
        )
        return True

    logger.warning(
        "Workflow notification failed: workflow=%s instance_id=%s "
        "status=%s error=%s",
        workflow.name,
        instance.id,
        response.status_code,
        response.error,
    )
    try:
        record_audit_event(
            AuditEventType.NOTIFICATION_FAILED,
            workflow_instance=instance,
            payload={
                "workflow": workflow.name,
                "url": url,
                "status_code": response.status_code,
                "error": response.error,
            },
        )
    except Exception:
        logger.exception(
            "Unable to record notification failure for instance_id=%s", instance.id
        )
    return False


def dispatch_workflow_notification(
    instance: WorkflowInstance,
    phone_number: str = "",
    workflow_payload: dict[str, Any] | None = None,
) -> None:
    """Fire-and-forget delivery; runs on a daemon thread unless disabled in settings."""

    def _deliver() -> None:
        try:
            send_workflow_notification(instance, phone_number, workflow_payload)
        except Exception:
            logger.exception(
                "Workflow notification crashed for instance_id=%s", instance.id
            )

    def _deliver_in_thread() -> None:
        try:
            _deliver()
        finally:
            connection.close()

    if getattr(settings, "WORKFLOW_NOTIFICATION_ASYNC", True):
        thread = threading.Thread(target=_deliver_in_thread, daemon=True)
        thread.start()
        return
    _deliver()
