"""
Configuration Loader (``bizflow_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into ``bizflow_config.schema``
dataclasses.  The single public entry point for runtime config is
``bizflow_config.get_active_config()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on kernel domain value
objects only.

Invariants enforced
-------------------
* Required keys (``config_id``, ``version``) raise ``KeyError`` when missing.
* The notify policy never fails to load: malformed rules, unknown channels
  and unparseable JSON fall back to the defaults rule by rule.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  configuration for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from bizflow_config.schema import (
    DEFAULT_NOTIFY_RULE,
    NOTIFY_EVENTS,
    BizflowConfig,
    NotifyChannel,
    NotifyPolicy,
    NotifyRule,
)
from bizflow_kernel.domain.workflow import PublishedWorkflow, parse_workflow_definition

_logger = logging.getLogger("bizflow.config.loader")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_workflow(document_type: str, data: Mapping[str, Any]) -> PublishedWorkflow:
    """Parse one ``workflows.<document_type>`` entry.

    ``definition`` may be an inline mapping or a JSON string in the
    exchange format.
    """
    return PublishedWorkflow(
        workflow_key=str(data.get("workflow_key", f"{document_type}_default")),
        document_type=document_type,
        definition=parse_workflow_definition(data.get("definition")),
        version=int(data.get("version", 1)),
        published=bool(data.get("published", True)),
        updated_by=data.get("updated_by"),
    )


def _normalize_rule(raw: Any, fallback: NotifyRule) -> NotifyRule:
    if not isinstance(raw, Mapping):
        return fallback
    enabled = raw.get("enabled")
    if not isinstance(enabled, bool):
        enabled = fallback.enabled
    raw_channels = raw.get("channels")
    if isinstance(raw_channels, list):
        channels: list[NotifyChannel] = []
        for value in raw_channels:
            try:
                channel = NotifyChannel(value)
            except ValueError:
                continue
            if channel not in channels:
                channels.append(channel)
    else:
        channels = list(fallback.channels)
    return NotifyRule(enabled=enabled, channels=tuple(channels) or fallback.channels)


def parse_notify_policy(raw: Mapping[str, Any] | str | None) -> NotifyPolicy:
    """Parse the notify policy from a mapping or a JSON string.

    Each known event is normalized independently; unknown event keys are
    ignored.  Empty or unparseable input yields the defaults.
    """
    if raw is None:
        return NotifyPolicy.defaults()
    if isinstance(raw, str):
        if not raw.strip():
            return NotifyPolicy.defaults()
        try:
            raw = json.loads(raw)
        except ValueError:
            _logger.warning("notify_policy_parse_failed")
            return NotifyPolicy.defaults()
    if not isinstance(raw, Mapping):
        return NotifyPolicy.defaults()
    return NotifyPolicy(
        {event: _normalize_rule(raw.get(event), DEFAULT_NOTIFY_RULE) for event in NOTIFY_EVENTS}
    )


def _parse_role_map(raw: Any) -> dict[str, tuple[str, ...]]:
    if not isinstance(raw, Mapping):
        return {}
    return {
        str(role): tuple(str(v) for v in (values or ()))
        for role, values in raw.items()
    }


def parse_config(data: Mapping[str, Any]) -> BizflowConfig:
    """Parse a full configuration set from its raw mapping."""
    workflows_raw = data.get("workflows") or {}
    return BizflowConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        app_base_url=str(data.get("app_base_url", "http://localhost:3000")).rstrip("/"),
        max_traversal_steps=int(data.get("max_traversal_steps", 100)),
        workflows={
            str(doc_type): parse_workflow(str(doc_type), entry or {})
            for doc_type, entry in workflows_raw.items()
        },
        notify_policy=parse_notify_policy(data.get("notify_policy")),
        role_permissions=_parse_role_map(data.get("permissions")),
        role_members=_parse_role_map(data.get("role_members")),
        checksum=compute_checksum(dict(data)),
    )


def load_config_file(path: Path) -> BizflowConfig:
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization.  Deterministic."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
