from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

from django.db import IntegrityError
from django.test import TestCase, override_settings
from django.utils import timezone

from salesflow.errors import NotFound, UpstreamFailure, ValidationFailed
from salesflow.insights import (
    INSIGHT_PROCESSING,
    INSIGHT_READY,
    build_ai_webhook_url,
    rate_ai_insight,
    request_ai_insight,
)
from salesflow.models import AIInsight, AuditEvent, AuditEventType, OldAIInsight
from salesflow.tests.factories import (
    complete_steps,
    create_running_instance,
    create_sales_catalog,
)
from salesflow.webhooks import WebhookResponse

PHONE = "0900000001"


def _recommendation(transition, analysis: str = "Seller accepts 5% off."):
    return WebhookResponse(
        status_code=200,
        payload={
            "analysis": analysis,
            "selected_transition_id": transition.id,
            "target_workflow_id": transition.to_workflow_id,
        },
    )


class AIInsightRequestTest(TestCase):
    def setUp(self) -> None:
        self.catalog = create_sales_catalog()
        self.source = create_running_instance(self.catalog.negotiation)
        complete_steps(self.source, self.catalog.step_a, self.catalog.step_b)

    def _request(self, feedback: str | None = None):
        return request_ai_insight(
            "car-1", self.source.id, PHONE, user_feedback=feedback, actor="ops"
        )

    @patch("salesflow.insights.post_json")
    def test_first_request_calls_webhook_and_stores_recommendation(
        self, mock_post
    ) -> None:
        mock_post.return_value = _recommendation(self.catalog.to_seeding)

        outcome = self._request()

        self.assertEqual(outcome.state, INSIGHT_READY)
        self.assertTrue(outcome.is_new)
        insight = AIInsight.objects.get(car_id="car-1", source_instance=self.source)
        self.assertEqual(insight.id, outcome.insight.id)
        self.assertEqual(insight.selected_transition_id, self.catalog.to_seeding.id)
        self.assertEqual(insight.target_workflow_id, self.catalog.seeding.id)
        self.assertEqual(insight.ai_insight_summary, "Seller accepts 5% off.")

        url, body = mock_post.call_args.args
        self.assertEqual(
            url, f"https://automation.example.com/webhook/ai-insight/{PHONE}"
        )
        self.assertEqual(body["carId"], "car-1")
        self.assertEqual(body["sourceInstanceId"], self.source.id)
        self.assertEqual(body["phoneNumber"], PHONE)
        self.assertIsNone(body["previousInsight"])
        self.assertIsNone(body["feedback"])
        self.assertTrue(
            AuditEvent.objects.filter(
                event_type=AuditEventType.AI_INSIGHT_GENERATED, car_id="car-1"
            ).exists()
        )

    @patch("salesflow.insights.post_json")
    def test_repeat_request_within_window_is_served_from_live_row(
        self, mock_post
    ) -> None:
        mock_post.return_value = _recommendation(self.catalog.to_seeding)

        first = self._request()
        second = self._request()

        self.assertEqual(mock_post.call_count, 1)
        self.assertEqual(second.state, INSIGHT_READY)
        self.assertFalse(second.is_new)
        self.assertEqual(
            second.insight.selected_transition_id, first.insight.selected_transition_id
        )
        self.assertEqual(
            second.insight.target_workflow_id, first.insight.target_workflow_id
        )

    @patch("salesflow.insights.post_json")
    def test_complete_insight_is_reused_after_window(self, mock_post) -> None:
        mock_post.return_value = _recommendation(self.catalog.to_seeding)
        first = self._request()
        AIInsight.objects.filter(id=first.insight.id).update(
            created_at=timezone.now() - timedelta(hours=2)
        )

        outcome = self._request()

        self.assertEqual(mock_post.call_count, 1)
        self.assertEqual(outcome.state, INSIGHT_READY)
        self.assertEqual(outcome.insight.id, first.insight.id)

    @patch("salesflow.insights.post_json")
    def test_fresh_placeholder_reports_processing(self, mock_post) -> None:
        AIInsight.objects.create(
            car_id="car-1",
            source_instance=self.source,
            ai_insight_summary={"processing": True},
        )

        outcome = self._request()

        self.assertEqual(outcome.state, INSIGHT_PROCESSING)
        mock_post.assert_not_called()

    @patch("salesflow.insights.post_json")
    def test_stale_placeholder_is_retried(self, mock_post) -> None:
        mock_post.return_value = _recommendation(self.catalog.to_bidding)
        placeholder = AIInsight.objects.create(
            car_id="car-1",
            source_instance=self.source,
            ai_insight_summary={"processing": True},
            created_at=timezone.now() - timedelta(minutes=5),
        )

        outcome = self._request()

        self.assertEqual(outcome.state, INSIGHT_READY)
        self.assertEqual(outcome.insight.id, placeholder.id)
        self.assertEqual(outcome.insight.target_workflow_id, self.catalog.bidding.id)
        self.assertEqual(AIInsight.objects.count(), 1)

    @patch("salesflow.insights.post_json")
    def test_placeholder_within_webhook_timeout_is_not_retried(
        self, mock_post
    ) -> None:
        AIInsight.objects.create(
            car_id="car-1",
            source_instance=self.source,
            ai_insight_summary={"processing": True},
            created_at=timezone.now() - timedelta(seconds=45),
        )

        outcome = self._request()

        self.assertEqual(outcome.state, INSIGHT_PROCESSING)
        mock_post.assert_not_called()

    @patch("salesflow.insights.post_json")
    def test_lost_insert_race_reports_processing(self, mock_post) -> None:
        with patch.object(
            AIInsight.objects, "create", side_effect=IntegrityError("duplicate key")
        ):
            outcome = self._request()

        self.assertEqual(outcome.state, INSIGHT_PROCESSING)
        self.assertIsNone(outcome.insight)
        mock_post.assert_not_called()

    @patch("salesflow.insights.post_json")
    def test_timed_out_call_does_not_undo_a_later_retry(self, mock_post) -> None:
        later = timezone.now() + timedelta(minutes=5)
        retried = {}

        def _respond(url, body, **kwargs):
            if mock_post.call_count == 1:
                with patch("salesflow.insights.timezone.now", return_value=later):
                    retried["outcome"] = self._request()
                return WebhookResponse(status_code=0, payload={}, error="timed out")
            return _recommendation(self.catalog.to_bidding, "Retry take")

        mock_post.side_effect = _respond
        with self.assertRaises(UpstreamFailure):
            self._request()

        self.assertTrue(retried["outcome"].is_new)
        live = AIInsight.objects.get(car_id="car-1", source_instance=self.source)
        self.assertEqual(live.id, retried["outcome"].insight.id)
        self.assertEqual(live.ai_insight_summary, "Retry take")
        self.assertEqual(live.target_workflow_id, self.catalog.bidding.id)

    @patch("salesflow.insights.post_json")
    def test_failed_retry_does_not_block_the_original_call(self, mock_post) -> None:
        later = timezone.now() + timedelta(minutes=5)

        def _respond(url, body, **kwargs):
            if mock_post.call_count == 1:
                with patch("salesflow.insights.timezone.now", return_value=later):
                    with self.assertRaises(UpstreamFailure):
                        self._request()
                return _recommendation(self.catalog.to_seeding, "First take")
            return WebhookResponse(status_code=502, payload={}, error="bad gateway")

        mock_post.side_effect = _respond
        outcome = self._request()

        self.assertEqual(outcome.state, INSIGHT_READY)
        self.assertTrue(outcome.is_new)
        live = AIInsight.objects.get(car_id="car-1", source_instance=self.source)
        self.assertEqual(live.ai_insight_summary, "First take")
        self.assertEqual(live.target_workflow_id, self.catalog.seeding.id)

    @patch("salesflow.insights.post_json")
    def test_feedback_archives_previous_and_resets_before_call(self, mock_post) -> None:
        mock_post.return_value = _recommendation(self.catalog.to_seeding, "First take")
        first = self._request()
        seen_during_call = {}

        def _respond(url, body, **kwargs):
            live = AIInsight.objects.get(id=first.insight.id)
            seen_during_call["summary"] = live.ai_insight_summary
            seen_during_call["selected_transition_id"] = live.selected_transition_id
            seen_during_call["target_workflow_id"] = live.target_workflow_id
            seen_during_call["body"] = body
            return _recommendation(self.catalog.to_bidding, "Second take")

        mock_post.side_effect = _respond
        outcome = self._request(feedback="wrong recommendation")

        self.assertEqual(
            seen_during_call["summary"],
            {"processing": True, "feedbackContext": "wrong recommendation"},
        )
        self.assertIsNone(seen_during_call["selected_transition_id"])
        self.assertIsNone(seen_during_call["target_workflow_id"])
        self.assertEqual(seen_during_call["body"]["previousInsight"], "First take")
        self.assertEqual(seen_during_call["body"]["feedback"], "wrong recommendation")

        history = OldAIInsight.objects.filter(ai_insight_id=first.insight.id)
        self.assertEqual(history.count(), 1)
        archived = history.get()
        self.assertEqual(archived.ai_insight_summary, "First take")
        self.assertEqual(archived.user_feedback, "wrong recommendation")

        self.assertTrue(outcome.is_new)
        self.assertEqual(outcome.insight.id, first.insight.id)
        self.assertEqual(outcome.insight.target_workflow_id, self.catalog.bidding.id)
        self.assertEqual([entry.id for entry in outcome.history], [archived.id])
        self.assertTrue(
            AuditEvent.objects.filter(
                event_type=AuditEventType.AI_INSIGHT_FEEDBACK, car_id="car-1"
            ).exists()
        )

    @patch("salesflow.insights.post_json")
    def test_feedback_carries_prior_rating_into_history(self, mock_post) -> None:
        mock_post.return_value = _recommendation(self.catalog.to_seeding)
        first = self._request()
        AIInsight.objects.filter(id=first.insight.id).update(is_positive=False)

        self._request(feedback="dealer already declined")

        archived = OldAIInsight.objects.get(ai_insight_id=first.insight.id)
        self.assertIs(archived.is_positive, False)
        self.assertIsNone(AIInsight.objects.get(id=first.insight.id).is_positive)

    @patch("salesflow.insights.post_json")
    def test_feedback_while_processing_is_not_archived(self, mock_post) -> None:
        AIInsight.objects.create(
            car_id="car-1",
            source_instance=self.source,
            ai_insight_summary={"processing": True},
        )

        outcome = self._request(feedback="too slow")

        self.assertEqual(outcome.state, INSIGHT_PROCESSING)
        self.assertEqual(OldAIInsight.objects.count(), 0)
        mock_post.assert_not_called()

    @patch("salesflow.insights.post_json")
    def test_failed_call_removes_placeholder_it_created(self, mock_post) -> None:
        mock_post.return_value = WebhookResponse(
            status_code=500, payload={}, error="webhook_http_error"
        )

        with self.assertRaises(UpstreamFailure):
            self._request()

        self.assertFalse(
            AIInsight.objects.filter(
                car_id="car-1", source_instance=self.source
            ).exists()
        )

    @patch("salesflow.insights.post_json")
    def test_failed_feedback_call_keeps_previous_recommendation(
        self, mock_post
    ) -> None:
        mock_post.return_value = _recommendation(self.catalog.to_seeding, "First take")
        first = self._request()
        mock_post.return_value = WebhookResponse(
            status_code=0, payload={}, error="timed out"
        )

        with self.assertRaises(UpstreamFailure):
            self._request(feedback="wrong recommendation")

        live = AIInsight.objects.get(id=first.insight.id)
        self.assertEqual(live.ai_insight_summary, "First take")
        self.assertEqual(live.selected_transition_id, self.catalog.to_seeding.id)
        self.assertEqual(live.target_workflow_id, self.catalog.seeding.id)
        self.assertEqual(OldAIInsight.objects.filter(ai_insight=live).count(), 1)

    @patch("salesflow.insights.post_json")
    def test_array_response_is_unwrapped(self, mock_post) -> None:
        response = _recommendation(self.catalog.to_seeding)
        mock_post.return_value = WebhookResponse(
            status_code=200, payload=[response.payload]
        )

        outcome = self._request()

        self.assertEqual(
            outcome.insight.selected_transition_id, self.catalog.to_seeding.id
        )

    @patch("salesflow.insights.post_json")
    def test_response_missing_fields_is_upstream_failure(self, mock_post) -> None:
        mock_post.return_value = WebhookResponse(
            status_code=200, payload={"analysis": "no decision"}
        )

        with self.assertRaises(UpstreamFailure) as ctx:
            self._request()

        self.assertEqual(ctx.exception.code, "invalid_ai_response")
        self.assertEqual(AIInsight.objects.count(), 0)

    @patch("salesflow.insights.post_json")
    def test_edge_not_leaving_source_workflow_is_rejected(self, mock_post) -> None:
        mock_post.return_value = WebhookResponse(
            status_code=200,
            payload={
                "analysis": "Go back",
                "selected_transition_id": self.catalog.to_seeding.id,
                "target_workflow_id": self.catalog.bidding.id,
            },
        )

        with self.assertRaises(UpstreamFailure):
            self._request()

        self.assertEqual(AIInsight.objects.count(), 0)

    @patch("salesflow.insights.post_json")
    def test_missing_fields_and_unknown_source(self, mock_post) -> None:
        with self.assertRaises(ValidationFailed):
            request_ai_insight("car-1", self.source.id, "")
        with self.assertRaises(NotFound):
            request_ai_insight("car-1", 999999, PHONE)
        with self.assertRaises(ValidationFailed):
            request_ai_insight("car-2", self.source.id, PHONE)
        mock_post.assert_not_called()

    @override_settings(AI_INSIGHT_WEBHOOK_URL="")
    @patch("salesflow.insights.post_json")
    def test_unconfigured_webhook_fails_without_leaving_rows(self, mock_post) -> None:
        with self.assertRaises(UpstreamFailure) as ctx:
            self._request()
        self.assertEqual(ctx.exception.code, "ai_webhook_not_configured")
        self.assertEqual(AIInsight.objects.count(), 0)
        mock_post.assert_not_called()

    @override_settings(AI_INSIGHT_WEBHOOK_URL="https://ai.example.com/recommend")
    def test_webhook_url_without_phone_placeholder_is_used_verbatim(self) -> None:
        self.assertEqual(
            build_ai_webhook_url(PHONE), "https://ai.example.com/recommend"
        )


class AIInsightRatingTest(TestCase):
    def setUp(self) -> None:
        self.catalog = create_sales_catalog()
        self.source = create_running_instance(self.catalog.negotiation)
        self.insight = AIInsight.objects.create(
            car_id="car-1",
            source_instance=self.source,
            ai_insight_summary="Take the discount route.",
            selected_transition=self.catalog.to_seeding,
            target_workflow=self.catalog.seeding,
        )

    def test_rating_live_insight_records_snapshot(self) -> None:
        rated = rate_ai_insight(self.insight.id, True, actor="ops")

        self.assertIs(rated.is_positive, True)
        archived = OldAIInsight.objects.get(ai_insight=self.insight)
        self.assertEqual(archived.user_feedback, "Positive rating")
        self.assertEqual(archived.ai_insight_summary, "Take the discount route.")
        self.assertTrue(
            AuditEvent.objects.filter(
                event_type=AuditEventType.AI_INSIGHT_RATED, car_id="car-1"
            ).exists()
        )

    def test_clearing_rating_writes_no_snapshot(self) -> None:
        rate_ai_insight(self.insight.id, None)
        self.assertEqual(OldAIInsight.objects.count(), 0)

    def test_rating_history_entry(self) -> None:
        archived = OldAIInsight.objects.create(
            ai_insight=self.insight,
            ai_insight_summary="Older take",
            user_feedback="wrong recommendation",
        )

        rated = rate_ai_insight(archived.id, False, is_history=True)

        self.assertEqual(rated.id, archived.id)
        archived.refresh_from_db()
        self.assertIs(archived.is_positive, False)
        self.insight.refresh_from_db()
        self.assertIsNone(self.insight.is_positive)

    def test_unknown_ids_raise_not_found(self) -> None:
        with self.assertRaises(NotFound):
            rate_ai_insight(999999, True)
        with self.assertRaises(NotFound):
            rate_ai_insight(999999, True, is_history=True)
