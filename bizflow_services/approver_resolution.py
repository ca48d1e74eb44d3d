"""
bizflow_services.approver_resolution -- Turn workflow nodes into user ids.

Responsibility:
    Resolve the concrete approver of an APPROVAL node and the recipients of
    a CC / NOTIFY node for a given document.

Architecture position:
    Services -- reads the UserDirectory port; no storage writes.

Invariants enforced:
    - USER mode picks the first listed user; ROLE mode picks the first
      member of the first role that has members.
    - Role ``applicant`` always resolves to the document's originator.
    - Recipient lists are de-duplicated in first-seen order.

Failure modes:
    - ApproverNotFoundError when an APPROVAL node resolves to nobody.
"""

from __future__ import annotations

from bizflow_kernel.domain.documents import Document
from bizflow_kernel.domain.ports import UserDirectory, iter_nonblank
from bizflow_kernel.domain.workflow import ApprovalNode, ApproverType, WorkflowNode
from bizflow_kernel.exceptions import ApproverNotFoundError
from bizflow_kernel.logging_config import get_logger

logger = get_logger("services.approver_resolution")

APPLICANT_ROLE = "applicant"


class ApproverResolver:
    """Resolves approvers and notification recipients for workflow nodes."""

    def __init__(self, directory: UserDirectory) -> None:
        self._directory = directory

    @property
    def directory(self) -> UserDirectory:
        return self._directory

    def _role_members(self, role: str, document: Document) -> list[str]:
        if role == APPLICANT_ROLE:
            return [document.originator_id] if document.originator_id else []
        return list(self._directory.list_user_ids_by_role(role))

    def resolve_approver(self, node: ApprovalNode, document: Document) -> str:
        """Pick the single user who must act on ``node``."""
        if node.effective_approver_type is ApproverType.USER:
            for user_id in iter_nonblank(node.users):
                return user_id
        else:
            for role in iter_nonblank(node.roles):
                for user_id in iter_nonblank(self._role_members(role, document)):
                    return user_id

        logger.warning(
            "approver_not_resolved",
            extra={"node_id": node.id, "roles": list(node.roles or ())},
        )
        raise ApproverNotFoundError(node.id, tuple(node.roles or ()))

    def resolve_recipients(self, node: WorkflowNode, document: Document) -> list[str]:
        """All users a CC / NOTIFY node addresses: listed users, then roles."""
        users = list(getattr(node, "users", None) or ())
        for role in iter_nonblank(getattr(node, "roles", None)):
            users.extend(self._role_members(role, document))
        return list(iter_nonblank(users))
