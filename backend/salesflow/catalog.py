from __future__ import annotations

"""
Validation and loading of workflow catalog documents.

A catalog document declares stages, workflows with their ordered steps, and the
transition edges between workflows. Loading upserts by name so instances that
already reference a workflow keep pointing at it.
"""

import logging
from dataclasses import dataclass
from typing import Any, cast

from django.db import transaction

from .cache import reference_cache
from .models import (
    StepExecution,
    WorkflowDefinition,
    WorkflowStage,
    WorkflowStep,
    WorkflowTransition,
)
from .progress import CATALOG_CACHE_PREFIX

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMA_VERSION = "1.0"


@dataclass(frozen=True)
class CatalogLoadResult:
    status: str
    errors: list[dict[str, str]]
    stages: int = 0
    workflows: int = 0
    steps: int = 0
    transitions: int = 0


def validate_catalog_document(payload: Any) -> list[dict[str, str]]:
    """
    Checks a catalog document against schema_version 1.0.
    Returns a list of error dictionaries with 'path', 'code', and 'message'.
    """
    errors: list[dict[str, str]] = []

    if not isinstance(payload, dict):
        _add_error(errors, "", "invalid_type", "Payload must be an object.")
        return _sorted_errors(errors)

    allowed_top = {"schema_version", "stages", "workflows", "transitions"}
    for key in sorted(payload.keys()):
        if key not in allowed_top:
            _add_error(errors, key, "unexpected_field", "Unexpected field.")
    for key in ["schema_version", "workflows"]:
        if key not in payload:
            _add_error(errors, key, "required", "Field is required.")

    schema_version = payload.get("schema_version")
    if "schema_version" in payload and _expect_type(
        errors, "schema_version", schema_version, str
    ):
        if schema_version != SUPPORTED_SCHEMA_VERSION:
            _add_error(
                errors,
                "schema_version",
                "unsupported",
                "Only schema_version 1.0 is supported.",
            )

    stage_names: set[str] = set()
    stages = payload.get("stages", [])
    if "stages" in payload and _expect_type(errors, "stages", stages, list):
        for idx, stage in enumerate(stages):
            stage_path = f"stages[{idx}]"
            if not _expect_type(errors, stage_path, stage, dict):
                continue
            name = stage.get("name")
            if "name" not in stage:
                _add_error(
                    errors, f"{stage_path}.name", "required", "Field is required."
                )
            elif _expect_type(errors, f"{stage_path}.name", name, str):
                if name in stage_names:
                    _add_error(
                        errors,
                        f"{stage_path}.name",
                        "duplicate_id",
                        "Stage name must be unique.",
                    )
                stage_names.add(name)

    workflow_names: set[str] = set()
    workflows = payload.get("workflows")
    if "workflows" in payload and _expect_type(errors, "workflows", workflows, list):
        for idx, workflow in enumerate(workflows):
            _validate_workflow(
                errors, f"workflows[{idx}]", workflow, stage_names, workflow_names
            )

    transitions = payload.get("transitions", [])
    if "transitions" in payload and _expect_type(
        errors, "transitions", transitions, list
    ):
        edges: set[tuple[str, str]] = set()
        for idx, edge in enumerate(transitions):
            edge_path = f"transitions[{idx}]"
            if not _expect_type(errors, edge_path, edge, dict):
                continue
            allowed_edge = {"from", "to", "condition_logic", "priority"}
            for key in sorted(edge.keys()):
                if key not in allowed_edge:
                    _add_error(
                        errors,
                        f"{edge_path}.{key}",
                        "unexpected_field",
                        "Unexpected field.",
                    )
            endpoints_valid = True
            for key in ["from", "to"]:
                value = edge.get(key)
                if key not in edge:
                    _add_error(
                        errors, f"{edge_path}.{key}", "required", "Field is required."
                    )
                    endpoints_valid = False
                elif not _expect_type(errors, f"{edge_path}.{key}", value, str):
                    endpoints_valid = False
                elif value not in workflow_names:
                    _add_error(
                        errors,
                        f"{edge_path}.{key}",
                        "invalid_reference",
                        "Unknown workflow name.",
                    )
            if endpoints_valid:
                pair = (edge["from"], edge["to"])
                if pair in edges:
                    _add_error(
                        errors,
                        edge_path,
                        "duplicate_id",
                        "Transition edge must be unique.",
                    )
                edges.add(pair)
            if "condition_logic" in edge:
                _expect_type(
                    errors,
                    f"{edge_path}.condition_logic",
                    edge.get("condition_logic"),
                    str,
                )
            if "priority" in edge:
                _expect_int(errors, f"{edge_path}.priority", edge.get("priority"))

    return _sorted_errors(errors)


def _validate_workflow(
    errors: list[dict[str, str]],
    path: str,
    workflow: Any,
    stage_names: set[str],
    workflow_names: set[str],
) -> None:
    if not _expect_type(errors, path, workflow, dict):
        return
    allowed = {
        "name",
        "stage",
        "sla_hours",
        "is_active",
        "description",
        "tooltip",
        "notification_url",
        "steps",
    }
    for key in sorted(workflow.keys()):
        if key not in allowed:
            _add_error(
                errors, f"{path}.{key}", "unexpected_field", "Unexpected field."
            )

    name = workflow.get("name")
    if "name" not in workflow:
        _add_error(errors, f"{path}.name", "required", "Field is required.")
    elif _expect_type(errors, f"{path}.name", name, str):
        if name in workflow_names:
            _add_error(
                errors, f"{path}.name", "duplicate_id", "Workflow name must be unique."
            )
        workflow_names.add(name)

    if "stage" in workflow and _expect_type(
        errors, f"{path}.stage", workflow.get("stage"), str
    ):
        if workflow["stage"] not in stage_names:
            _add_error(
                errors, f"{path}.stage", "invalid_reference", "Unknown stage name."
            )
    if workflow.get("sla_hours") is not None:
        _expect_int(errors, f"{path}.sla_hours", workflow.get("sla_hours"))
    if "is_active" in workflow:
        _expect_type(errors, f"{path}.is_active", workflow.get("is_active"), bool)
    for key in ["description", "tooltip", "notification_url"]:
        if key in workflow:
            _expect_type(errors, f"{path}.{key}", workflow.get(key), str)

    steps = workflow.get("steps", [])
    if "steps" in workflow and _expect_type(errors, f"{path}.steps", steps, list):
        orders: set[int] = set()
        for step_idx, step in enumerate(steps):
            step_path = f"{path}.steps[{step_idx}]"
            if not _expect_type(errors, step_path, step, dict):
                continue
            for key in ["step_order", "name"]:
                if key not in step:
                    _add_error(
                        errors, f"{step_path}.{key}", "required", "Field is required."
                    )
            if "step_order" in step and _expect_int(
                errors, f"{step_path}.step_order", step.get("step_order")
            ):
                if step["step_order"] in orders:
                    _add_error(
                        errors,
                        f"{step_path}.step_order",
                        "duplicate_id",
                        "step_order must be unique within a workflow.",
                    )
                orders.add(step["step_order"])
            if "name" in step:
                _expect_type(errors, f"{step_path}.name", step.get("name"), str)
            if "is_automated" in step:
                _expect_type(
                    errors, f"{step_path}.is_automated", step.get("is_automated"), bool
                )
            if "template" in step:
                _expect_type(
                    errors, f"{step_path}.template", step.get("template"), str
                )


def load_catalog(payload: Any) -> CatalogLoadResult:
    """
    Validates then upserts the whole document in a single transaction.
    Steps dropped from a workflow are deleted unless they were already executed.
    """
    errors = validate_catalog_document(payload)
    if errors:
        logger.warning("Catalog document rejected: errors=%s", len(errors))
        return CatalogLoadResult(status="invalid_schema", errors=errors)

    stage_manager = cast(Any, WorkflowStage)._default_manager
    workflow_manager = cast(Any, WorkflowDefinition)._default_manager
    step_manager = cast(Any, WorkflowStep)._default_manager
    transition_manager = cast(Any, WorkflowTransition)._default_manager
    execution_manager = cast(Any, StepExecution)._default_manager

    step_count = 0
    with transaction.atomic():
        stage_map: dict[str, WorkflowStage] = {}
        for stage in payload.get("stages", []):
            stage_obj, _ = stage_manager.get_or_create(name=stage["name"])
            stage_map[stage["name"]] = stage_obj

        workflow_map: dict[str, WorkflowDefinition] = {}
        for entry in payload["workflows"]:
            workflow, _ = workflow_manager.update_or_create(
                name=entry["name"],
                defaults={
                    "stage": stage_map.get(entry.get("stage", "")),
                    "sla_hours": entry.get("sla_hours"),
                    "is_active": entry.get("is_active", True),
                    "description": entry.get("description", ""),
                    "tooltip": entry.get("tooltip", ""),
                    "notification_url": entry.get("notification_url", ""),
                },
            )
            workflow_map[entry["name"]] = workflow

            orders = []
            for step in entry.get("steps", []):
                step_manager.update_or_create(
                    workflow=workflow,
                    step_order=step["step_order"],
                    defaults={
                        "name": step["name"],
                        "is_automated": step.get("is_automated", False),
                        "template": step.get("template", ""),
                    },
                )
                orders.append(step["step_order"])
                step_count += 1
            executed_step_ids = execution_manager.filter(
                step__workflow=workflow
            ).values_list("step_id", flat=True)
            step_manager.filter(workflow=workflow).exclude(
                step_order__in=orders
            ).exclude(id__in=executed_step_ids).delete()

        for edge in payload.get("transitions", []):
            transition_manager.update_or_create(
                from_workflow=workflow_map[edge["from"]],
                to_workflow=workflow_map[edge["to"]],
                defaults={
                    "condition_logic": edge.get("condition_logic", ""),
                    "priority": edge.get("priority", 0),
                },
            )

    invalidated = reference_cache.invalidate_pattern(f"^{CATALOG_CACHE_PREFIX}")
    logger.info(
        "Catalog loaded: workflows=%s steps=%s transitions=%s cache_keys_dropped=%s",
        len(workflow_map),
        step_count,
        len(payload.get("transitions", [])),
        invalidated,
    )
    return CatalogLoadResult(
        status="loaded",
        errors=[],
        stages=len(stage_map),
        workflows=len(workflow_map),
        steps=step_count,
        transitions=len(payload.get("transitions", [])),
    )


def _add_error(
    errors: list[dict[str, str]], path: str, code: str, message: str
) -> None:
    errors.append({"path": path, "code": code, "message": message})


def _expect_type(
    errors: list[dict[str, str]], path: str, value: Any, expected: type
) -> bool:
    if isinstance(value, expected):
        return True
    _add_error(errors, path, "invalid_type", f"Expected {expected.__name__}.")
    return False


def _expect_int(errors: list[dict[str, str]], path: str, value: Any) -> bool:
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return True
    _add_error(errors, path, "invalid_type", "Expected non-negative integer.")
    return False


def _sorted_errors(errors: list[dict[str, str]]) -> list[dict[str, str]]:
    return sorted(
        errors, key=lambda item: (item["path"], item["code"], item["message"])
    )
