"""
bizflow_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a validated ``BizflowConfig``.  YAML
    loading is internal tooling and not called by services directly.

Architecture position:
    Configuration -- YAML-driven, validated at load time.  Sits above
    ``bizflow_kernel`` and below ``bizflow_services``.  The kernel MUST
    NEVER import from ``bizflow_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - A configuration whose workflows fail validation is never returned.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- workflow validation errors.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``BIZFLOW_CONFIG_TRACE`` log entry with the config id, version,
    checksum and the published workflow keys.
"""

from __future__ import annotations

import logging
from pathlib import Path

from bizflow_config.loader import load_config_file, parse_notify_policy
from bizflow_config.schema import BizflowConfig, NotifyChannel, NotifyPolicy, NotifyRule
from bizflow_config.validator import (
    WorkflowValidationResult,
    validate_configuration,
    validate_workflow_definition,
)

_logger = logging.getLogger("bizflow.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_PATH = _DEFAULT_CONFIG_DIR / "default.yaml"

__all__ = [
    "BizflowConfig",
    "NotifyChannel",
    "NotifyPolicy",
    "NotifyRule",
    "WorkflowValidationResult",
    "get_active_config",
    "parse_notify_policy",
    "validate_configuration",
    "validate_workflow_definition",
]


def get_active_config(config_path: Path | str | None = None) -> BizflowConfig:
    """
    Load and validate the active configuration set.

    Args:
        config_path: YAML file to load.  Defaults to the bundled
            ``sets/default.yaml``.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        ValueError: a workflow fails validation.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = load_config_file(path)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    _logger.info(
        "BIZFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "BIZFLOW_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "workflow_keys": sorted(w.workflow_key for w in config.workflows.values()),
        },
    )
    return config
