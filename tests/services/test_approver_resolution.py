"""
Approver resolution and the static directory / permission adapters.
"""

import pytest

from bizflow_kernel.domain.documents import ActionRequest, Actor
from bizflow_kernel.domain.workflow import ApprovalNode, CcNode
from bizflow_kernel.exceptions import ApproverNotFoundError
from bizflow_services import ApproverResolver, StaticPermissionChecker, WorkflowRegistry
from tests.support import ALICE, BOB, FINANCE, FINANCE_2, MANAGER, make_purchase, make_reimbursement


@pytest.fixture
def resolver(directory):
    return ApproverResolver(directory)


class TestResolveApprover:

    def test_user_mode_takes_first_listed(self, resolver):
        node = ApprovalNode(id="a", users=("  ", BOB, MANAGER))

        assert resolver.resolve_approver(node, make_purchase()) == BOB

    def test_role_mode_skips_empty_roles(self, resolver):
        node = ApprovalNode(id="a", approver_type="ROLE", roles=("auditor", "finance"))

        assert resolver.resolve_approver(node, make_purchase()) == FINANCE

    def test_applicant_role_is_the_originator(self, resolver):
        node = ApprovalNode(id="a", approver_type="ROLE", roles=("applicant",))

        assert resolver.resolve_approver(node, make_reimbursement(applicant_id=BOB, created_by=BOB)) == BOB

    def test_unknown_approver_type_routes_to_users(self, resolver):
        node = ApprovalNode(id="a", approver_type="GROUP", users=(MANAGER,), roles=("finance",))

        assert resolver.resolve_approver(node, make_purchase()) == MANAGER

    def test_nobody_resolved(self, resolver, captured_logs):
        node = ApprovalNode(id="a", approver_type="ROLE", roles=("auditor",))

        with pytest.raises(ApproverNotFoundError) as exc_info:
            resolver.resolve_approver(node, make_purchase())

        assert exc_info.value.code == "APPROVER_NOT_FOUND"
        assert exc_info.value.node_id == "a"
        assert any(r["message"] == "approver_not_resolved" for r in captured_logs())


class TestResolveRecipients:

    def test_users_then_roles_deduplicated(self, resolver):
        node = CcNode(id="c", users=(FINANCE, ALICE), roles=("finance", "applicant"))

        assert resolver.resolve_recipients(node, make_purchase()) == [FINANCE, ALICE, FINANCE_2]


class TestStaticAdapters:

    def test_permission_from_any_role(self, permission_checker):
        actor = Actor(MANAGER, ("employee", "dept_manager"))

        assert permission_checker.check_permission(actor, "purchase.approve").allowed
        denied = permission_checker.check_permission(actor, "purchase.pay")
        assert not denied.allowed
        assert "purchase.pay" in denied.reason

    def test_unknown_role_grants_nothing(self):
        checker = StaticPermissionChecker({"finance": ["purchase.pay"]})

        assert not checker.check_permission(Actor(BOB, ("intern",)), "purchase.pay").allowed

    def test_directory_contacts(self, directory):
        assert directory.roles_for(FINANCE) == ("finance",)
        assert directory.emails_for([FINANCE, FINANCE_2, FINANCE]) == ["finance@example.com"]
        assert directory.phones_for([MANAGER, ALICE]) == ["+10000000001"]


class TestActionRequestPayload:

    def test_camel_case_wire_shape(self):
        request = ActionRequest.from_payload(
            {"action": "transfer", "toApproverId": FINANCE_2, "comment": " over to you "}
        )

        assert request.to_approver_id == FINANCE_2
        assert request.remark == "over to you"

    def test_amount_parsed_as_decimal(self):
        request = ActionRequest.from_payload({"action": "pay", "amount": "12.30"})

        assert str(request.amount) == "12.30"
        assert ActionRequest.from_payload({"action": "pay", "amount": ""}).amount is None


class TestRegistry:

    def test_unpublished_workflow_is_ignored(self, bizflow_config):
        registry = WorkflowRegistry.from_config(bizflow_config)
        workflow = registry.workflow_for("purchase")

        assert not registry.register(
            type(workflow)(
                workflow_key="draft", document_type="purchase",
                definition=workflow.definition, published=False,
            )
        )
        assert registry.workflow_for("purchase").workflow_key == "purchase_default"

    def test_engines_are_shared_per_version(self, bizflow_config):
        registry = WorkflowRegistry.from_config(bizflow_config)

        assert registry.engine_for("purchase") is registry.engine_for("purchase")
