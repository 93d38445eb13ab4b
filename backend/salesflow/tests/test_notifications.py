from __future__ import annotations

from unittest.mock import patch

from django.test import TestCase

from salesflow.models import AuditEvent, AuditEventType, WorkflowInstance
from salesflow.notifications import (
    build_default_payload,
    get_payload_builder,
    payload_builder,
    send_workflow_notification,
)
from salesflow.tests.factories import create_sales_catalog
from salesflow.webhooks import WebhookResponse


class PayloadBuilderTest(TestCase):
    def setUp(self) -> None:
        self.catalog = create_sales_catalog()

    def test_intake_payload_only_carries_identifiers(self) -> None:
        instance = WorkflowInstance.objects.create(
            car_id="car-9", workflow=self.catalog.intake
        )
        payload = get_payload_builder("WF0")(instance, "0900000001", {"extra": 1})
        self.assertEqual(payload, {"instanceId": instance.id, "carId": "car-9"})

    def test_seeding_payload_is_denormalized(self) -> None:
        instance = WorkflowInstance.objects.create(
            car_id="car-9",
            workflow=self.catalog.seeding,
            transition_properties={
                "custom_fields": {"discount": 5},
                "insight": "Seller accepts discount.",
                "car_snapshot": {
                    "display_name": "Civic 2019",
                    "price_customer": 420,
                    "price_highest_bid": 400,
                },
            },
        )
        payload = get_payload_builder("WF2")(
            instance, "0900000001", {"channel": "zalo"}
        )
        self.assertEqual(payload["priceHighestBid"], 400)
        self.assertEqual(payload["customFields"], {"discount": 5})
        self.assertEqual(payload["insight"], "Seller accepts discount.")
        self.assertEqual(payload["channel"], "zalo")

    def test_unregistered_workflow_uses_default_payload(self) -> None:
        self.assertIs(get_payload_builder("WF1"), build_default_payload)
        instance = WorkflowInstance.objects.create(
            car_id="car-9", workflow=self.catalog.negotiation
        )
        payload = build_default_payload(instance, "0900000001", {"note": "x"})
        self.assertEqual(payload["workflowName"], "WF1")
        self.assertEqual(payload["payload"], {"note": "x"})

    def test_registration_adds_builder(self) -> None:
        @payload_builder("WF-test-only")
        def _builder(instance, phone_number, workflow_payload):
            return {"custom": True}

        self.assertIs(get_payload_builder("WF-test-only"), _builder)


class SendWorkflowNotificationTest(TestCase):
    def setUp(self) -> None:
        self.catalog = create_sales_catalog()
        self.instance = WorkflowInstance.objects.create(
            car_id="car-9", workflow=self.catalog.negotiation
        )

    @patch("salesflow.notifications.post_json")
    def test_blank_notification_url_skips_delivery(self, mock_post) -> None:
        self.assertFalse(send_workflow_notification(self.instance))
        mock_post.assert_not_called()

    @patch("salesflow.notifications.post_json")
    def test_success_returns_true(self, mock_post) -> None:
        mock_post.return_value = WebhookResponse(status_code=204, payload={})
        self.catalog.negotiation.notification_url = "https://automation.example.com/wf1"
        self.catalog.negotiation.save()

        self.assertTrue(send_workflow_notification(self.instance, "0900000001"))
        self.assertEqual(
            mock_post.call_args.kwargs["correlation_id"], f"instance-{self.instance.id}"
        )
        self.assertFalse(AuditEvent.objects.exists())

    @patch("salesflow.notifications.post_json")
    def test_failure_is_audited_not_raised(self, mock_post) -> None:
        mock_post.return_value = WebhookResponse(
            status_code=503, payload={}, error="webhook_http_error"
        )
        self.catalog.negotiation.notification_url = "https://automation.example.com/wf1"
        self.catalog.negotiation.save()

        self.assertFalse(send_workflow_notification(self.instance))

        event = AuditEvent.objects.get(event_type=AuditEventType.NOTIFICATION_FAILED)
        self.assertEqual(event.workflow_instance_id, self.instance.id)
        self.assertEqual(event.car_id, "car-9")
        self.assertEqual(event.payload["status_code"], 503)
