from __future__ import annotations

"""
AI-recommended transitions for a workflow instance.

One live AIInsight row exists per (car, source instance). A request either
answers from that row, reports that a recommendation is still being computed,
or arms the row as a processing placeholder and calls the AI webhook. Operator
feedback archives the current recommendation into OldAIInsight before the row
is re-armed, so the full revision history survives.

The placeholder doubles as a single-flight marker: the unique constraint on
(car_id, source_instance) and the row lock taken while arming it mean that a
concurrent request either sees the placeholder and gets "processing", or loses
the insert race and gets "processing". The webhook call itself runs outside any
transaction. Each arming stamps created_at, and a request only writes its result
or its compensation while the row still carries its own stamp, so a call that
outlived a stale retry cannot overwrite the retry's outcome.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, cast
from urllib.parse import quote

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from .audit import record_audit_event
from .errors import NotFound, UpstreamFailure, ValidationFailed
from .models import (
    AIInsight,
    AuditEventType,
    OldAIInsight,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowTransition,
)
from .webhooks import post_json

logger = logging.getLogger(__name__)

INSIGHT_READY = "ready"
INSIGHT_PROCESSING = "processing"

REQUIRED_RECOMMENDATION_FIELDS = (
    "analysis",
    "selected_transition_id",
    "target_workflow_id",
)


@dataclass(frozen=True)
class InsightOutcome:
    state: str
    insight: AIInsight | None
    history: list[OldAIInsight] = field(default_factory=list)
    is_new: bool = False


@dataclass(frozen=True)
class _RowSnapshot:
    ai_insight_summary: Any
    selected_transition_id: int | None
    target_workflow_id: int | None
    is_positive: bool | None
    created_at: datetime


@dataclass(frozen=True)
class _Claim:
    """A placeholder this request owns and must either fill or compensate."""

    insight: AIInsight
    created: bool
    previous_insight: Any
    feedback: str | None
    snapshot: _RowSnapshot | None
    claimed_at: datetime


@dataclass(frozen=True)
class Recommendation:
    analysis: Any
    transition: WorkflowTransition
    target_workflow: WorkflowDefinition


def insight_history(insight: AIInsight) -> list[OldAIInsight]:
    manager = cast(Any, OldAIInsight)._default_manager
    return list(manager.filter(ai_insight=insight).order_by("-created_at", "-id"))


def _processing_marker(feedback: str | None = None) -> dict[str, Any]:
    marker: dict[str, Any] = {"processing": True}
    if feedback:
        marker["feedbackContext"] = feedback
    return marker


def _snapshot(insight: AIInsight) -> _RowSnapshot:
    row = cast(Any, insight)
    return _RowSnapshot(
        ai_insight_summary=row.ai_insight_summary,
        selected_transition_id=row.selected_transition_id,
        target_workflow_id=row.target_workflow_id,
        is_positive=row.is_positive,
        created_at=row.created_at,
    )


def _stale_after() -> timedelta:
    """Placeholders younger than the webhook timeout may still have a call in flight."""
    seconds = max(
        int(getattr(settings, "AI_INSIGHT_DEBOUNCE_SECONDS", 30)),
        int(getattr(settings, "AI_INSIGHT_TIMEOUT_SECONDS", 60)),
    )
    return timedelta(seconds=seconds)


def _holds_claim(insight: AIInsight | None, claim: _Claim) -> bool:
    return insight is not None and insight.created_at == claim.claimed_at


def _ready(insight: AIInsight, is_new: bool = False) -> InsightOutcome:
    return InsightOutcome(
        state=INSIGHT_READY,
        insight=insight,
        history=insight_history(insight),
        is_new=is_new,
    )


def _claim_or_answer(
    car_id: str,
    source: WorkflowInstance,
    feedback: str | None,
    actor: str,
) -> InsightOutcome | _Claim:
    manager = cast(Any, AIInsight)._default_manager
    history_manager = cast(Any, OldAIInsight)._default_manager
    now = timezone.now()

    with transaction.atomic():
        insight = (
            manager.select_for_update()
            .filter(car_id=car_id, source_instance=source)
            .first()
        )

        if insight is None:
            try:
                with transaction.atomic():
                    insight = manager.create(
                        car_id=car_id,
                        source_instance=source,
                        ai_insight_summary=_processing_marker(feedback),
                        created_at=now,
                    )
            except IntegrityError:
                logger.info(
                    "AI insight placeholder already claimed: car_id=%s source=%s",
                    car_id,
                    source.id,
                )
                return InsightOutcome(state=INSIGHT_PROCESSING, insight=None)
            return _Claim(
                insight=insight,
                created=True,
                previous_insight=None,
                feedback=feedback,
                snapshot=None,
                claimed_at=insight.created_at,
            )

        if feedback:
            if insight.is_processing:
                return InsightOutcome(state=INSIGHT_PROCESSING, insight=insight)
            snapshot = _snapshot(insight)
            history_manager.create(
                ai_insight=insight,
                ai_insight_summary=insight.ai_insight_summary,
                user_feedback=feedback,
                is_positive=insight.is_positive,
            )
            insight.ai_insight_summary = _processing_marker(feedback)
            insight.selected_transition = None
            insight.target_workflow = None
            insight.is_positive = None
            insight.created_at = now
            insight.save()
            record_audit_event(
                AuditEventType.AI_INSIGHT_FEEDBACK,
                actor_identity=actor,
                car_id=car_id,
                workflow_instance=source,
                payload={"ai_insight_id": insight.id, "feedback": feedback},
            )
            return _Claim(
                insight=insight,
                created=False,
                previous_insight=snapshot.ai_insight_summary,
                feedback=feedback,
                snapshot=snapshot,
                claimed_at=insight.created_at,
            )

        # Debounce: the console re-requests on every render.
        if insight.is_complete:
            return _ready(insight)
        if insight.is_processing and now - insight.created_at < _stale_after():
            return InsightOutcome(state=INSIGHT_PROCESSING, insight=insight)

        # Stale placeholder: the call that armed it has timed out. Re-arming moves
        # created_at, so that call no longer holds the row.
        snapshot = _snapshot(insight)
        pending_feedback = None
        if isinstance(insight.ai_insight_summary, dict):
            pending_feedback = insight.ai_insight_summary.get("feedbackContext")
        history = insight_history(insight)
        previous_insight = history[0].ai_insight_summary if history else None
        insight.ai_insight_summary = _processing_marker(pending_feedback)
        insight.created_at = now
        insight.save(
            update_fields=["ai_insight_summary", "created_at", "updated_at"]
        )
        return _Claim(
            insight=insight,
            created=False,
            previous_insight=previous_insight,
            feedback=pending_feedback,
            snapshot=snapshot,
            claimed_at=insight.created_at,
        )


def _release_claim(claim: _Claim) -> None:
    """Undoes what this request did to the live row after a failed AI call."""
    manager = cast(Any, AIInsight)._default_manager
    with transaction.atomic():
        insight = manager.select_for_update().filter(id=claim.insight.id).first()
        if not _holds_claim(insight, claim):
            logger.info(
                "AI insight claim superseded, leaving row as is: insight_id=%s",
                claim.insight.id,
            )
            return
        if claim.created:
            insight.delete()
            return
        if claim.snapshot is None:
            return
        # The OldAIInsight row written for feedback stays; only the live row reverts.
        insight.ai_insight_summary = claim.snapshot.ai_insight_summary
        insight.selected_transition_id = claim.snapshot.selected_transition_id
        insight.target_workflow_id = claim.snapshot.target_workflow_id
        insight.is_positive = claim.snapshot.is_positive
        insight.created_at = claim.snapshot.created_at
        insight.save()


def build_ai_webhook_url(phone_number: str) -> str:
    url = str(getattr(settings, "AI_INSIGHT_WEBHOOK_URL", "") or "")
    if "{phone_number}" in url:
        url = url.replace("{phone_number}", quote(phone_number, safe=""))
    return url


def _coerce_id(value: Any, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise UpstreamFailure(
            f"AI response field '{field_name}' is not a valid id.",
            code="invalid_ai_response",
        ) from exc


def parse_recommendation(payload: Any, source: WorkflowInstance) -> Recommendation:
    """
    Accepts a recommendation object or a one-element array wrapping one, and
    checks that the chosen edge leaves the source instance's workflow and
    leads to the stated target.
    """
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if not isinstance(payload, dict):
        raise UpstreamFailure(
            "Invalid AI response type: expected object, got "
            f"{type(payload).__name__}.",
            code="invalid_ai_response",
        )
    for field_name in REQUIRED_RECOMMENDATION_FIELDS:
        if payload.get(field_name) in (None, ""):
            raise UpstreamFailure(
                f"Invalid AI response structure: missing '{field_name}' field.",
                code="invalid_ai_response",
            )

    transition_id = _coerce_id(
        payload["selected_transition_id"], "selected_transition_id"
    )
    target_workflow_id = _coerce_id(
        payload["target_workflow_id"], "target_workflow_id"
    )

    transition_manager = cast(Any, WorkflowTransition)._default_manager
    workflow_manager = cast(Any, WorkflowDefinition)._default_manager
    transition = transition_manager.filter(
        id=transition_id, from_workflow_id=cast(Any, source).workflow_id
    ).first()
    if transition is None:
        raise UpstreamFailure(
            "AI recommended a transition that does not leave the source workflow.",
            code="invalid_ai_response",
        )
    target = workflow_manager.filter(id=target_workflow_id).first()
    if target is None or transition.to_workflow_id != target.id:
        raise UpstreamFailure(
            "AI recommended target workflow does not match the selected transition.",
            code="invalid_ai_response",
        )
    return Recommendation(
        analysis=payload["analysis"], transition=transition, target_workflow=target
    )


def _call_ai_webhook(
    car_id: str,
    source: WorkflowInstance,
    phone_number: str,
    claim: _Claim,
) -> Recommendation:
    url = build_ai_webhook_url(phone_number)
    if not url:
        raise UpstreamFailure(
            "AI insight webhook is not configured.", code="ai_webhook_not_configured"
        )
    body = {
        "carId": car_id,
        "sourceInstanceId": source.id,
        "phoneNumber": phone_number,
        "previousInsight": claim.previous_insight,
        "feedback": claim.feedback,
    }
    timeout = float(getattr(settings, "AI_INSIGHT_TIMEOUT_SECONDS", 60))
    response = post_json(
        url, body, timeout=timeout, correlation_id=f"ai-insight-{claim.insight.id}"
    )
    if not response.ok:
        detail = response.error
        if response.status_code:
            detail = f"AI webhook returned status {response.status_code}"
        raise UpstreamFailure(f"Failed to call AI webhook: {detail}")
    return parse_recommendation(response.payload, source)


def request_ai_insight(
    car_id: str,
    source_instance_id: int,
    phone_number: str,
    user_feedback: str | None = None,
    actor: str = "",
) -> InsightOutcome:
    """Returns the live recommendation, a processing signal, or a fresh one."""
    errors = []
    for field_name, value in (
        ("car_id", car_id),
        ("source_instance_id", source_instance_id),
        ("phone_number", phone_number),
    ):
        if not value:
            errors.append(
                {
                    "path": field_name,
                    "code": "required",
                    "message": "Field is required.",
                }
            )
    if errors:
        raise ValidationFailed(
            "Missing required fields: car_id, source_instance_id, phone_number",
            errors=errors,
        )

    instance_manager = cast(Any, WorkflowInstance)._default_manager
    source = instance_manager.filter(id=source_instance_id).first()
    if source is None:
        raise NotFound("Source workflow instance not found.")
    if source.car_id != str(car_id):
        raise ValidationFailed(
            "Source workflow instance belongs to a different car.",
            errors=[
                {
                    "path": "source_instance_id",
                    "code": "car_mismatch",
                    "message": "Instance does not belong to car_id.",
                }
            ],
        )

    feedback = (user_feedback or "").strip() or None
    claimed = _claim_or_answer(str(car_id), source, feedback, actor)
    if isinstance(claimed, InsightOutcome):
        return claimed

    try:
        recommendation = _call_ai_webhook(str(car_id), source, phone_number, claimed)
    except UpstreamFailure:
        logger.exception(
            "AI insight request failed: car_id=%s source=%s insight_id=%s",
            car_id,
            source.id,
            claimed.insight.id,
        )
        _release_claim(claimed)
        raise

    manager = cast(Any, AIInsight)._default_manager
    with transaction.atomic():
        insight = manager.select_for_update().filter(id=claimed.insight.id).first()
        if insight is None:
            raise NotFound("AI insight was removed while the request was in flight.")
        if not _holds_claim(insight, claimed):
            logger.info(
                "AI insight claim superseded, discarding response: insight_id=%s",
                insight.id,
            )
            if insight.is_complete:
                return _ready(insight)
            return InsightOutcome(state=INSIGHT_PROCESSING, insight=insight)
        insight.ai_insight_summary = recommendation.analysis
        insight.selected_transition = recommendation.transition
        insight.target_workflow = recommendation.target_workflow
        insight.save(
            update_fields=[
                "ai_insight_summary",
                "selected_transition",
                "target_workflow",
                "updated_at",
            ]
        )
        record_audit_event(
            AuditEventType.AI_INSIGHT_GENERATED,
            actor_identity=actor,
            car_id=str(car_id),
            workflow_instance=source,
            payload={
                "ai_insight_id": insight.id,
                "selected_transition_id": recommendation.transition.id,
                "target_workflow_id": recommendation.target_workflow.id,
                "with_feedback": bool(claimed.feedback),
            },
        )

    logger.info(
        "AI insight stored: car_id=%s source=%s insight_id=%s target=%s",
        car_id,
        source.id,
        insight.id,
        recommendation.target_workflow.name,
    )
    return _ready(insight, is_new=True)


def rate_ai_insight(
    insight_id: int,
    is_positive: bool | None,
    is_history: bool = False,
    actor: str = "",
) -> AIInsight | OldAIInsight:
    """
    Rates either an archived revision or the live recommendation. Rating the live
    row also archives a snapshot so the rating event itself is kept for review.
    """
    if is_history:
        history_manager = cast(Any, OldAIInsight)._default_manager
        archived = history_manager.filter(id=insight_id).first()
        if archived is None:
            raise NotFound("AI insight history entry not found.")
        archived.is_positive = is_positive
        archived.save(update_fields=["is_positive"])
        return archived

    manager = cast(Any, AIInsight)._default_manager
    history_manager = cast(Any, OldAIInsight)._default_manager
    with transaction.atomic():
        insight = (
            manager.select_for_update()
            .select_related("source_instance")
            .filter(id=insight_id)
            .first()
        )
        if insight is None:
            raise NotFound("AI insight not found.")
        insight.is_positive = is_positive
        insight.save(update_fields=["is_positive", "updated_at"])
        if is_positive is not None:
            history_manager.create(
                ai_insight=insight,
                ai_insight_summary=insight.ai_insight_summary,
                user_feedback="Positive rating" if is_positive else "Negative rating",
                is_positive=is_positive,
            )
        record_audit_event(
            AuditEventType.AI_INSIGHT_RATED,
            actor_identity=actor,
            car_id=insight.car_id,
            workflow_instance=insight.source_instance,
            payload={"ai_insight_id": insight.id, "is_positive": is_positive},
        )
    return insight
