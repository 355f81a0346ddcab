"""
Configuration Loader (``fms_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``fms_config.schema`` dataclasses.  Runtime callers go through
``fms_config.get_active_config()``.

Invariants enforced
-------------------
* Every parse problem raises ``ValueError`` with a message naming the
  offending key; no silent defaults for required fields.
* The parsed set is validated by building the kernel workflow and
  numbering formats from it.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing keys, wrong types, invalid workflow or formats  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from fms_config.schema import (
    FmsConfig,
    NumberingConfig,
    RoleDefinition,
    StageDefinition,
    WorkflowConfig,
)
from fms_kernel.domain.identity import ADMINISTRATOR_ROLE


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _require(data: dict[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] is None:
        raise ValueError(f"{where}: missing required key '{key}'")
    return data[key]


def parse_stage(data: dict[str, Any], index: int) -> StageDefinition:
    where = f"workflow.stages[{index}]"
    if not isinstance(data, dict):
        raise ValueError(f"{where}: expected a mapping")
    order = _require(data, "order", where)
    if isinstance(order, bool) or not isinstance(order, int):
        raise ValueError(f"{where}: 'order' must be an integer, got {order!r}")
    return StageDefinition(
        name=str(_require(data, "name", where)),
        order=order,
        role=str(_require(data, "role", where)),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowConfig:
    stages_raw = _require(data, "stages", "workflow")
    if not isinstance(stages_raw, list) or not stages_raw:
        raise ValueError("workflow.stages: expected a non-empty list")
    return WorkflowConfig(
        stages=tuple(parse_stage(item, i) for i, item in enumerate(stages_raw)),
        administrator_role=str(data.get("administrator_role") or ADMINISTRATOR_ROLE),
    )


def parse_numbering(data: dict[str, Any] | None) -> NumberingConfig:
    """Absent keys fall back to the kernel's default formats."""
    data = data or {}
    unknown = set(data) - {"dv_number", "check_number", "ors_number", "receipt_number"}
    if unknown:
        raise ValueError(f"numbering: unknown keys {sorted(unknown)}")
    return NumberingConfig(**{k: str(v) for k, v in data.items()})


def parse_roles(data: list[Any] | None) -> tuple[RoleDefinition, ...]:
    roles = []
    for i, item in enumerate(data or []):
        if isinstance(item, str):
            roles.append(RoleDefinition(name=item))
        elif isinstance(item, dict):
            roles.append(
                RoleDefinition(
                    name=str(_require(item, "name", f"roles[{i}]")),
                    display_name=item.get("display_name"),
                )
            )
        else:
            raise ValueError(f"roles[{i}]: expected a name or a mapping")
    return tuple(roles)


def parse_config(data: dict[str, Any]) -> FmsConfig:
    """
    Parse and validate a configuration set from a dict.

    Raises:
        ValueError: on any missing key, wrong type, or a workflow / numbering
            section the kernel would reject.
    """
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError(f"version must be an integer, got {version!r}")
    workflow_raw = _require(data, "workflow", "config")
    if not isinstance(workflow_raw, dict):
        raise ValueError("workflow: expected a mapping")

    config = FmsConfig(
        config_id=str(_require(data, "config_id", "config")),
        version=version,
        workflow=parse_workflow(workflow_raw),
        numbering=parse_numbering(data.get("numbering")),
        roles=parse_roles(data.get("roles")),
        description=str(data.get("description") or ""),
        checksum=compute_checksum(data),
    )
    # Both bridges raise ValueError on content the kernel would refuse.
    config.to_workflow_definition()
    config.to_numbering_formats()
    return config


def load_config_file(path: Path) -> FmsConfig:
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
