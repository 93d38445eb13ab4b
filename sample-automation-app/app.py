from __future__ import annotations

"""
Stand-in for the automation platform the sales console talks to. Serves a
catalog document, answers AI recommendation webhooks from the console's own
transition graph, and records workflow notifications. Notifications for
workflows whose next step is automated are acknowledged by recording that step
as executed, after a short delay.
"""

import os
import threading
import time
from typing import Any

import requests
from fastapi import FastAPI, HTTPException, Request


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


APP_HOST = _env("APP_HOST", "0.0.0.0")
APP_PORT = int(_env("APP_PORT", "9100"))
CONSOLE_BASE_URL = _env("CONSOLE_BASE_URL", "http://localhost:8000")
CONSOLE_API_KEY = _env("CONSOLE_API_KEY", "console-dev-key")
AUTOMATED_STEP_DELAY_SECONDS = float(_env("AUTOMATED_STEP_DELAY_SECONDS", "0.5"))
PUBLIC_BASE_URL = _env("PUBLIC_BASE_URL", f"http://localhost:{APP_PORT}")


app = FastAPI(title="Sample Automation App", version="0.1.0")

_notifications: list[dict[str, Any]] = []
_notifications_lock = threading.Lock()


def _console_headers() -> dict[str, str]:
    return {"X-Console-Api-Key": CONSOLE_API_KEY, "Accept": "application/json"}


def _console_get(path: str) -> dict[str, Any]:
    response = requests.get(
        f"{CONSOLE_BASE_URL}{path}", headers=_console_headers(), timeout=5
    )
    response.raise_for_status()
    return response.json()


def _complete_automated_step(instance_id: int) -> None:
    try:
        detail = _console_get(f"/api/instances/{instance_id}")
        pending = detail.get("pending_step")
        if not pending or not pending.get("is_automated"):
            return
        requests.post(
            f"{CONSOLE_BASE_URL}/api/instances/{instance_id}/step-executions",
            json={"step_id": pending["step_id"], "status": "success"},
            headers=_console_headers(),
            timeout=5,
        )
    except requests.RequestException:
        # Best-effort acknowledgement for the sample app.
        return


def choose_transition(
    transitions: list[dict[str, Any]], feedback: str | None
) -> dict[str, Any]:
    """Highest-priority edge; with feedback, the next edge after the first."""
    ordered = sorted(transitions, key=lambda edge: (edge["priority"], edge["id"]))
    if feedback and len(ordered) > 1:
        return ordered[1]
    return ordered[0]


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/catalog.json")
def catalog() -> dict[str, Any]:
    return {
        "schema_version": "1.0",
        "stages": [{"name": "Intake"}, {"name": "Negotiation"}, {"name": "Sale"}],
        "workflows": [
            {
                "name": "WF0",
                "stage": "Intake",
                "sla_hours": 4,
                "notification_url": f"{PUBLIC_BASE_URL}/webhook/workflow/WF0",
                "steps": [
                    {"step_order": 1, "name": "Collect car details"},
                    {"step_order": 2, "name": "Sync listing", "is_automated": True},
                ],
            },
            {
                "name": "WF1",
                "stage": "Negotiation",
                "sla_hours": 24,
                "steps": [
                    {"step_order": 1, "name": "Call seller"},
                    {"step_order": 2, "name": "Confirm price"},
                ],
            },
            {
                "name": "WF2",
                "stage": "Sale",
                "sla_hours": 48,
                "notification_url": f"{PUBLIC_BASE_URL}/webhook/workflow/WF2",
                "steps": [
                    {"step_order": 1, "name": "Seed buyers", "is_automated": True}
                ],
            },
            {"name": "WF3", "stage": "Sale", "sla_hours": 72},
        ],
        "transitions": [
            {"from": "WF0", "to": "WF1", "priority": 1},
            {"from": "WF1", "to": "WF2", "priority": 1, "condition_logic": "discount"},
            {"from": "WF1", "to": "WF3", "priority": 2, "condition_logic": "bidding"},
        ],
    }


@app.post("/webhook/ai-insight/{phone_number}")
async def ai_insight(phone_number: str, request: Request) -> list[dict[str, Any]]:
    payload = await request.json()
    car_id = payload.get("carId")
    source_instance_id = payload.get("sourceInstanceId")
    if not car_id or not source_instance_id:
        raise HTTPException(status_code=400, detail="Missing carId or sourceInstanceId")

    try:
        car_view = _console_get(f"/api/cars/{car_id}/instances")
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    source = next(
        (row for row in car_view["instances"] if row["id"] == source_instance_id),
        None,
    )
    if source is None:
        raise HTTPException(status_code=404, detail="Source instance not found")
    transitions = [
        edge
        for edge in car_view["all_transitions"]
        if edge["from_workflow_id"] == source["workflow_id"]
    ]
    if not transitions:
        raise HTTPException(status_code=422, detail="No outgoing transitions")

    feedback = payload.get("feedback")
    edge = choose_transition(transitions, feedback)
    analysis = f"Move car {car_id} to {edge['to_workflow_name']}."
    if feedback:
        analysis = f"{analysis} Revised after feedback: {feedback}"
    return [
        {
            "analysis": analysis,
            "selected_transition_id": edge["id"],
            "target_workflow_id": edge["to_workflow_id"],
        }
    ]


@app.post("/webhook/workflow/{workflow_name}")
async def workflow_notification(workflow_name: str, request: Request) -> dict[str, Any]:
    payload = await request.json()
    instance_id = payload.get("instanceId") if isinstance(payload, dict) else None
    if not instance_id:
        raise HTTPException(status_code=400, detail="Missing instanceId")

    with _notifications_lock:
        _notifications.append({"workflow": workflow_name, "payload": payload})

    def _background() -> None:
        time.sleep(AUTOMATED_STEP_DELAY_SECONDS)
        _complete_automated_step(instance_id)

    thread = threading.Thread(target=_background, daemon=True)
    thread.start()
    return {"status": "accepted"}


@app.get("/notifications")
def notifications() -> list[dict[str, Any]]:
    with _notifications_lock:
        return list(_notifications)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=APP_HOST, port=APP_PORT)
