"""
fms_config -- single public entrypoint for FMS configuration.

Responsibility:
    Provides the runtime configuration through ``get_active_config()``:
    the DV approval workflow (stages and role bindings), document
    numbering formats and the roles a deployment provisions.

Architecture position:
    Configuration.  Sits above ``fms_kernel``; the kernel MUST NEVER import
    from ``fms_config``.  ``FmsConfig.to_workflow_definition()`` and
    ``to_numbering_formats()`` translate the set into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ValueError`` -- schema or structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``fms_config_loaded`` log entry with the config id, version and
    checksum, tying kernel behavior to the exact configuration in force.
"""

from __future__ import annotations

from pathlib import Path

from fms_config.loader import load_config_file
from fms_config.schema import (
    FmsConfig,
    NumberingConfig,
    RoleDefinition,
    StageDefinition,
    WorkflowConfig,
)
from fms_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> FmsConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to the shipped
            ``fms_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = load_config_file(path)

    _logger.info(
        "fms_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "stage_count": len(config.workflow.stages),
            "role_count": len(config.role_names),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "FmsConfig",
    "NumberingConfig",
    "RoleDefinition",
    "StageDefinition",
    "WorkflowConfig",
    "get_active_config",
]
