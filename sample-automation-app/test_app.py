from __future__ import annotations

import threading
from unittest.mock import patch

from fastapi.testclient import TestClient

import app as automation_app

CAR_VIEW = {
    "instances": [{"id": 11, "workflow_id": 2}],
    "all_transitions": [
        {
            "id": 7,
            "from_workflow_id": 2,
            "to_workflow_id": 4,
            "to_workflow_name": "WF3",
            "priority": 2,
        },
        {
            "id": 5,
            "from_workflow_id": 2,
            "to_workflow_id": 3,
            "to_workflow_name": "WF2",
            "priority": 1,
        },
        {
            "id": 9,
            "from_workflow_id": 1,
            "to_workflow_id": 2,
            "to_workflow_name": "WF1",
            "priority": 1,
        },
    ],
}

client = TestClient(automation_app.app)


def test_health() -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_catalog_document_shape() -> None:
    document = client.get("/catalog.json").json()
    assert document["schema_version"] == "1.0"
    names = [workflow["name"] for workflow in document["workflows"]]
    assert names == ["WF0", "WF1", "WF2", "WF3"]


@patch("app._console_get", return_value=CAR_VIEW)
def test_ai_insight_picks_highest_priority_edge(mock_get) -> None:
    response = client.post(
        "/webhook/ai-insight/0900000001",
        json={"carId": "car-1", "sourceInstanceId": 11, "feedback": None},
    )
    assert response.status_code == 200
    body = response.json()
    assert body[0]["selected_transition_id"] == 5
    assert body[0]["target_workflow_id"] == 3
    mock_get.assert_called_once_with("/api/cars/car-1/instances")


@patch("app._console_get", return_value=CAR_VIEW)
def test_ai_insight_with_feedback_moves_to_next_edge(mock_get) -> None:
    response = client.post(
        "/webhook/ai-insight/0900000001",
        json={
            "carId": "car-1",
            "sourceInstanceId": 11,
            "previousInsight": "Move car car-1 to WF2.",
            "feedback": "wrong recommendation",
        },
    )
    body = response.json()
    assert body[0]["selected_transition_id"] == 7
    assert "wrong recommendation" in body[0]["analysis"]


@patch("app._console_get", return_value=CAR_VIEW)
def test_ai_insight_unknown_source(mock_get) -> None:
    response = client.post(
        "/webhook/ai-insight/0900000001",
        json={"carId": "car-1", "sourceInstanceId": 99},
    )
    assert response.status_code == 404


def test_workflow_notification_is_recorded_and_acknowledged() -> None:
    acknowledged = threading.Event()
    with patch("app.AUTOMATED_STEP_DELAY_SECONDS", 0), patch(
        "app._complete_automated_step",
        side_effect=lambda instance_id: acknowledged.set(),
    ) as mock_complete:
        response = client.post(
            "/webhook/workflow/WF0", json={"instanceId": 31, "carId": "car-1"}
        )
        assert acknowledged.wait(timeout=5)
    assert response.status_code == 200
    assert response.json() == {"status": "accepted"}
    mock_complete.assert_called_once_with(31)
    recorded = client.get("/notifications").json()
    expected = {"workflow": "WF0", "payload": {"instanceId": 31, "carId": "car-1"}}
    assert expected in recorded


def test_automated_step_is_reported_back() -> None:
    detail = {"pending_step": {"step_id": 3, "is_automated": True}}
    with patch("app._console_get", return_value=detail), patch(
        "app.requests.post"
    ) as mock_post:
        automation_app._complete_automated_step(31)
    mock_post.assert_called_once()
    assert mock_post.call_args.args[0].endswith("/api/instances/31/step-executions")
    assert mock_post.call_args.kwargs["json"] == {"step_id": 3, "status": "success"}


def test_manual_step_is_left_alone() -> None:
    detail = {"pending_step": {"step_id": 3, "is_automated": False}}
    with patch("app._console_get", return_value=detail), patch(
        "app.requests.post"
    ) as mock_post:
        automation_app._complete_automated_step(31)
    mock_post.assert_not_called()
