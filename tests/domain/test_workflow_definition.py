"""
Tests for the workflow definition exchange format.

Covers:
- Parsing each node variant from camelCase keys
- Lossless round-trip, including unknown keys and unknown node types
- Tolerant normalization of malformed input
- Condition field schema and operator tables
"""

import json

import pytest

from bizflow_kernel.domain.workflow import (
    ApprovalNode,
    ApproverType,
    CcNode,
    ConditionFieldType,
    ConditionNode,
    ConditionOperator,
    EndNode,
    NotifyNode,
    PassThroughNode,
    StartNode,
    WorkflowDefinition,
    condition_fields_for,
    operators_for_field_type,
    parse_edge,
    parse_node,
    parse_workflow_definition,
)

RAW_DEFINITION = {
    "nodes": [
        {"id": "s", "type": "START", "name": "Start", "position": {"x": 10, "y": 20}},
        {
            "id": "c",
            "type": "CONDITION",
            "conditionField": "totalAmount",
            "conditionFieldType": "number",
            "conditionOp": "between",
            "conditionValue": 100,
            "conditionValue2": 500,
        },
        {"id": "a", "type": "APPROVAL", "approverType": "ROLE", "roles": ["finance"]},
        {"id": "cc", "type": "CC", "users": ["u1"], "sendEmail": True, "emailTemplate": "hi"},
        {"id": "n", "type": "NOTIFY", "roles": ["applicant"]},
        {"id": "x", "type": "WEBHOOK", "url": "https://example.invalid"},
        {"id": "e", "type": "END"},
    ],
    "edges": [
        {"source": "s", "target": "c"},
        {"source": "c", "target": "a", "condition": "CONDITION_TRUE", "label": "big"},
        {"source": "c", "target": "cc", "condition": "CONDITION_FALSE"},
        {"source": "a", "target": "n", "condition": "APPROVED"},
        {"source": "cc", "target": "x"},
        {"source": "x", "target": "e"},
        {"source": "n", "target": "e"},
    ],
    "viewport": {"zoom": 1.5},
}


class TestNodeParsing:
    """Each type tag becomes its own variant."""

    def test_variants(self):
        definition = parse_workflow_definition(RAW_DEFINITION)
        kinds = [type(n) for n in definition.nodes]

        assert kinds == [
            StartNode, ConditionNode, ApprovalNode, CcNode, NotifyNode, PassThroughNode, EndNode,
        ]

    def test_condition_fields_map_to_attributes(self):
        node = parse_node(RAW_DEFINITION["nodes"][1])

        assert isinstance(node, ConditionNode)
        assert node.condition_field == "totalAmount"
        assert node.condition_field_type == "number"
        assert node.condition_op == "between"
        assert node.condition_value == 100
        assert node.condition_value2 == 500

    def test_role_approver(self):
        node = parse_node(RAW_DEFINITION["nodes"][2])

        assert node.roles == ("finance",)
        assert node.effective_approver_type is ApproverType.ROLE

    def test_approver_type_defaults_to_user(self):
        node = parse_node({"id": "a", "type": "APPROVAL", "users": ["u9"]})

        assert node.approver_type is None
        assert node.effective_approver_type is ApproverType.USER

    def test_cc_email_is_opt_in(self):
        assert parse_node({"id": "c", "type": "CC"}).sends_email is False
        assert parse_node({"id": "c", "type": "CC", "sendEmail": True}).sends_email is True

    def test_notify_email_is_opt_out(self):
        assert parse_node({"id": "n", "type": "NOTIFY"}).sends_email is True
        assert parse_node({"id": "n", "type": "NOTIFY", "sendEmail": False}).sends_email is False

    def test_unknown_type_passes_through(self):
        node = parse_node({"id": "x", "type": "WEBHOOK"})

        assert isinstance(node, PassThroughNode)
        assert node.type == "WEBHOOK"

    @pytest.mark.parametrize("raw", [{}, {"id": ""}, {"type": "START"}, "not-a-node", None])
    def test_entries_without_id_are_dropped(self, raw):
        assert parse_node(raw) is None

    def test_edge_without_target_is_dropped(self):
        assert parse_edge({"source": "a"}) is None
        assert parse_edge({"source": "a", "target": "b"}).is_unconditional

    def test_always_edge_is_unconditional(self):
        assert parse_edge({"source": "a", "target": "b", "condition": "ALWAYS"}).is_unconditional
        assert not parse_edge({"source": "a", "target": "b", "condition": "APPROVED"}).is_unconditional


class TestRoundTrip:
    """Serialization emits exactly what was parsed."""

    def test_dict_round_trip_is_exact(self):
        definition = parse_workflow_definition(RAW_DEFINITION)

        assert definition.to_dict() == RAW_DEFINITION

    def test_nulls_scalars_and_numeric_ids_survive(self):
        raw = {
            "nodes": [
                {"id": "s", "type": "START", "name": None},
                {"id": "cc", "type": "CC", "users": None, "sendEmail": None},
                {"id": "a", "type": "APPROVAL", "users": "u1"},
                {"id": 7, "type": "END"},
            ],
            "edges": [
                {"source": "s", "target": "cc", "condition": None},
                {"source": "cc", "target": "a"},
                {"source": "a", "target": 7, "condition": "APPROVED"},
            ],
        }

        definition = parse_workflow_definition(raw)

        assert definition.to_dict() == raw
        assert json.loads(definition.to_json()) == raw
        assert definition.nodes[2].users == ("u1",)
        assert definition.nodes[3].id == "7"
        assert definition.edges[2].target == "7"

    def test_serialized_dict_is_a_copy(self):
        definition = parse_workflow_definition(RAW_DEFINITION)

        definition.to_dict()["nodes"][0]["position"]["x"] = 999

        assert definition.to_dict() == RAW_DEFINITION

    def test_nodes_built_in_code_serialize_from_fields(self):
        node = ApprovalNode(id="a", approver_type="ROLE", roles=("finance",))

        assert node.to_dict() == {
            "id": "a", "type": "APPROVAL", "approverType": "ROLE", "roles": ["finance"],
        }

    def test_json_round_trip(self):
        definition = parse_workflow_definition(json.dumps(RAW_DEFINITION))

        assert json.loads(definition.to_json()) == RAW_DEFINITION

    def test_reparse_is_equal(self):
        first = parse_workflow_definition(RAW_DEFINITION)
        second = parse_workflow_definition(first.to_dict())

        assert first == second

    def test_existing_definition_is_returned_as_is(self):
        definition = parse_workflow_definition(RAW_DEFINITION)

        assert parse_workflow_definition(definition) is definition


class TestMalformedInput:
    """Anything unusable normalizes to an empty graph."""

    @pytest.mark.parametrize(
        "raw",
        [None, "", "{not json", "[1, 2]", 42, {"nodes": "oops"}, {"edges": None}],
    )
    def test_normalizes_to_empty(self, raw):
        definition = parse_workflow_definition(raw)

        assert definition.nodes == ()
        assert definition.edges == ()

    def test_empty_definition_serializes_to_empty_arrays(self):
        assert WorkflowDefinition.empty().to_dict() == {"nodes": [], "edges": []}

    def test_bad_entries_are_skipped_not_fatal(self):
        definition = parse_workflow_definition(
            {"nodes": [{"id": "s", "type": "START"}, 7, {"name": "no id"}], "edges": [{"x": 1}]}
        )

        assert [n.id for n in definition.nodes] == ["s"]
        assert definition.edges == ()


class TestConditionFieldSchema:

    def test_purchase_fields(self):
        keys = {f.key for f in condition_fields_for("purchase")}

        assert {"totalAmount", "purchaseDate", "itemName", "paymentType"} <= keys

    def test_reimbursement_fields(self):
        keys = {f.key for f in condition_fields_for("reimbursement")}

        assert {"amount", "occurredAt", "category", "sourceType"} <= keys

    def test_unknown_document_type_has_no_fields(self):
        assert condition_fields_for("invoice") == ()

    def test_between_is_offered_for_numbers_and_dates(self):
        assert ConditionOperator.BETWEEN in operators_for_field_type(ConditionFieldType.NUMBER)
        assert ConditionOperator.BETWEEN in operators_for_field_type("date")
        assert ConditionOperator.BETWEEN not in operators_for_field_type("text")

    def test_unknown_field_type(self):
        assert operators_for_field_type("geo") == ()
