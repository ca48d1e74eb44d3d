"""
Configuration schema (``bizflow_config.schema``).

Responsibility
--------------
Frozen dataclasses describing a loaded configuration set: published
workflows per document type, the notification policy, role permissions and
role membership.

Architecture position
---------------------
**Config layer** -- pure data.  Imports kernel domain value objects only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from bizflow_kernel.domain.workflow import PublishedWorkflow


class NotifyChannel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"


NOTIFY_EVENTS: tuple[str, ...] = (
    "purchase_submitted",
    "purchase_approved",
    "purchase_rejected",
    "purchase_transferred",
    "reimbursement_submitted",
    "purchase_paid",
    "payment_issue_marked",
    "payment_issue_resolved",
    "reimbursement_approved",
    "reimbursement_rejected",
    "reimbursement_transferred",
    "reimbursement_paid",
    "workflow_cc",
)


@dataclass(frozen=True)
class NotifyRule:
    enabled: bool = True
    channels: tuple[NotifyChannel, ...] = (NotifyChannel.IN_APP, NotifyChannel.EMAIL)

    def allows(self, channel: NotifyChannel) -> bool:
        return self.enabled and channel in self.channels


DEFAULT_NOTIFY_RULE = NotifyRule()


@dataclass(frozen=True)
class NotifyPolicy:
    """Per-event delivery rules.  Unknown events use the default rule."""

    rules: dict[str, NotifyRule] = field(default_factory=dict)

    def rule_for(self, event_type: str) -> NotifyRule:
        return self.rules.get(event_type, DEFAULT_NOTIFY_RULE)

    @classmethod
    def defaults(cls) -> NotifyPolicy:
        return cls({event: DEFAULT_NOTIFY_RULE for event in NOTIFY_EVENTS})


@dataclass(frozen=True)
class BizflowConfig:
    """
    The single runtime configuration artifact.

    Contract
    --------
    * ``workflows`` maps a document type to its published workflow.
    * ``role_permissions`` maps a role to the permission keys it grants.
    * ``role_members`` maps a role to user ids (used by the static user
      directory when no external directory is wired).
    """

    config_id: str
    version: int
    app_base_url: str = "http://localhost:3000"
    max_traversal_steps: int = 100
    workflows: dict[str, PublishedWorkflow] = field(default_factory=dict)
    notify_policy: NotifyPolicy = field(default_factory=NotifyPolicy.defaults)
    role_permissions: dict[str, tuple[str, ...]] = field(default_factory=dict)
    role_members: dict[str, tuple[str, ...]] = field(default_factory=dict)
    checksum: str = ""

    def workflow_for(self, document_type: str) -> PublishedWorkflow | None:
        workflow = self.workflows.get(document_type)
        if workflow is None or not workflow.published:
            return None
        return workflow
