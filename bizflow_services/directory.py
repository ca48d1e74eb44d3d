"""
bizflow_services.directory -- Static permission checker and user directory.

Responsibility:
    Role-based adapters for the PermissionChecker and UserDirectory ports,
    backed by plain mappings (typically the ``permissions`` and
    ``role_members`` sections of the active configuration).

Architecture position:
    Services -- adapters.  Callers with an HR system or identity provider
    wire their own implementations of the same ports instead.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from bizflow_config.schema import BizflowConfig
from bizflow_kernel.domain.documents import Actor
from bizflow_kernel.domain.ports import PermissionResult, iter_nonblank


class PermissionKeys:
    """Permission keys checked by the action handler."""

    WORKFLOW_ADMIN = "workflow.admin"
    BUDGET_OVERRIDE = "purchase.budget_override"
    FINANCE_MANAGE = "finance.manage"

    @staticmethod
    def for_action(document_type: str, verb: str) -> str:
        return f"{document_type}.{verb}"


class StaticPermissionChecker:
    """Grants a permission when any of the actor's roles lists it."""

    def __init__(self, role_permissions: Mapping[str, Sequence[str]]) -> None:
        self._grants = {role: frozenset(keys) for role, keys in role_permissions.items()}

    @classmethod
    def from_config(cls, config: BizflowConfig) -> StaticPermissionChecker:
        return cls(config.role_permissions)

    def check_permission(self, actor: Actor, permission_key: str) -> PermissionResult:
        for role in actor.roles:
            if permission_key in self._grants.get(role, ()):
                return PermissionResult(True)
        return PermissionResult(False, f"no role of {list(actor.roles)} grants {permission_key}")


class StaticUserDirectory:
    """Role membership and contact details from in-process mappings."""

    def __init__(
        self,
        role_members: Mapping[str, Sequence[str]],
        emails: Mapping[str, str] | None = None,
        phones: Mapping[str, str] | None = None,
    ) -> None:
        self._members = {role: tuple(users) for role, users in role_members.items()}
        self._emails = dict(emails or {})
        self._phones = dict(phones or {})

    @classmethod
    def from_config(
        cls,
        config: BizflowConfig,
        emails: Mapping[str, str] | None = None,
        phones: Mapping[str, str] | None = None,
    ) -> StaticUserDirectory:
        return cls(config.role_members, emails, phones)

    def list_user_ids_by_role(self, role: str) -> list[str]:
        return list(self._members.get(role, ()))

    def roles_for(self, user_id: str) -> tuple[str, ...]:
        return tuple(role for role, users in self._members.items() if user_id in users)

    def actor(self, user_id: str) -> Actor:
        return Actor(user_id, self.roles_for(user_id))

    def emails_for(self, user_ids: Sequence[str]) -> list[str]:
        return [self._emails[u] for u in iter_nonblank(user_ids) if self._emails.get(u)]

    def phones_for(self, user_ids: Sequence[str]) -> list[str]:
        return [self._phones[u] for u in iter_nonblank(user_ids) if self._phones.get(u)]
