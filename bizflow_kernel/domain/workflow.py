"""
Workflow graph value objects (``bizflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for configurable approval graphs: one frozen dataclass
per node kind, edges, the definition that owns them, and the condition-field
schema offered to workflow authors.  ``parse_workflow_definition`` turns the
JSON exchange format into these objects; ``WorkflowDefinition.to_dict``
turns them back without loss.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``models/`` or outer layers.

Invariants enforced
-------------------
* Parsing never raises: malformed input yields an empty definition and
  malformed node/edge entries are skipped.
* Parsed nodes and edges keep a copy of the entry they came from and
  serialize back to exactly that entry: explicit nulls, scalar ``users``,
  numeric ids and unknown keys all survive a parse / serialize cycle.
  Keys not modelled by a node kind are also exposed in ``extra``.
* Structural rules (single START, reachability) are NOT checked here;
  see ``bizflow_config.validator``.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar


class NodeType(str, Enum):
    START = "START"
    APPROVAL = "APPROVAL"
    CC = "CC"
    NOTIFY = "NOTIFY"
    CONDITION = "CONDITION"
    END = "END"


class EdgeCondition(str, Enum):
    """Routing tag on an edge.  Untagged edges route like ALWAYS."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CONDITION_TRUE = "CONDITION_TRUE"
    CONDITION_FALSE = "CONDITION_FALSE"
    ALWAYS = "ALWAYS"


class ApproverType(str, Enum):
    USER = "USER"
    ROLE = "ROLE"


class ConditionFieldType(str, Enum):
    NUMBER = "number"
    DATE = "date"
    TEXT = "text"
    ENUM = "enum"


class ConditionOperator(str, Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"
    BETWEEN = "between"
    BEFORE = "before"
    AFTER = "after"
    ON = "on"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    IN = "in"


OPERATORS_BY_FIELD_TYPE: dict[ConditionFieldType, tuple[ConditionOperator, ...]] = {
    ConditionFieldType.NUMBER: (
        ConditionOperator.GT,
        ConditionOperator.GTE,
        ConditionOperator.LT,
        ConditionOperator.LTE,
        ConditionOperator.EQ,
        ConditionOperator.NEQ,
        ConditionOperator.BETWEEN,
    ),
    ConditionFieldType.DATE: (
        ConditionOperator.BEFORE,
        ConditionOperator.AFTER,
        ConditionOperator.ON,
        ConditionOperator.BETWEEN,
    ),
    ConditionFieldType.TEXT: (
        ConditionOperator.EQ,
        ConditionOperator.NEQ,
        ConditionOperator.CONTAINS,
        ConditionOperator.NOT_CONTAINS,
        ConditionOperator.STARTS_WITH,
    ),
    ConditionFieldType.ENUM: (
        ConditionOperator.EQ,
        ConditionOperator.NEQ,
        ConditionOperator.IN,
    ),
}


def operators_for_field_type(field_type: str | ConditionFieldType) -> tuple[ConditionOperator, ...]:
    """Operators an author may pick for a condition field of this type.

    Unknown field types get an empty tuple.
    """
    try:
        return OPERATORS_BY_FIELD_TYPE[ConditionFieldType(field_type)]
    except ValueError:
        return ()


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


def _as_str_tuple(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    return (str(value),)


@dataclass(frozen=True, kw_only=True)
class WorkflowNode:
    """Fields shared by every node kind.

    Optional fields use ``None`` for "absent or null".  A node built by
    ``parse_node`` serializes back to its ``exchange`` entry verbatim; a
    node built in code serializes from its fields.
    """

    id: str
    name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)
    exchange: Mapping[str, Any] | None = field(default=None, compare=False, repr=False)

    node_type: ClassVar[NodeType | None] = None
    # exchange-format key -> attribute name, for the variant's own fields
    _FIELDS: ClassVar[tuple[tuple[str, str], ...]] = ()

    @property
    def type(self) -> str:
        assert self.node_type is not None
        return self.node_type.value

    def to_dict(self) -> dict[str, Any]:
        if self.exchange is not None:
            return copy.deepcopy(dict(self.exchange))
        data: dict[str, Any] = {"id": self.id, "type": self.type}
        if self.name is not None:
            data["name"] = self.name
        for key, attr in self._FIELDS:
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, Enum):
                value = value.value
            data[key] = value
        data.update(self.extra)
        return data


@dataclass(frozen=True, kw_only=True)
class StartNode(WorkflowNode):
    node_type: ClassVar[NodeType] = NodeType.START


@dataclass(frozen=True, kw_only=True)
class EndNode(WorkflowNode):
    node_type: ClassVar[NodeType] = NodeType.END


@dataclass(frozen=True, kw_only=True)
class ApprovalNode(WorkflowNode):
    """Blocking step: the document waits for the resolved approver."""

    approver_type: str | None = None
    users: tuple[str, ...] | None = None
    roles: tuple[str, ...] | None = None

    node_type: ClassVar[NodeType] = NodeType.APPROVAL
    _FIELDS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("approverType", "approver_type"),
        ("users", "users"),
        ("roles", "roles"),
    )

    @property
    def effective_approver_type(self) -> ApproverType:
        """ROLE only when explicitly declared; anything else routes to users."""
        if self.approver_type == ApproverType.ROLE.value:
            return ApproverType.ROLE
        return ApproverType.USER


@dataclass(frozen=True, kw_only=True)
class CcNode(WorkflowNode):
    """Non-blocking carbon copy.  Email only when ``send_email`` is set."""

    users: tuple[str, ...] | None = None
    roles: tuple[str, ...] | None = None
    send_email: bool | None = None
    email_template: str | None = None

    node_type: ClassVar[NodeType] = NodeType.CC
    _FIELDS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("users", "users"),
        ("roles", "roles"),
        ("sendEmail", "send_email"),
        ("emailTemplate", "email_template"),
    )

    @property
    def sends_email(self) -> bool:
        return bool(self.send_email)


@dataclass(frozen=True, kw_only=True)
class NotifyNode(WorkflowNode):
    """Non-blocking notification.  Sends email unless ``send_email`` is False."""

    users: tuple[str, ...] | None = None
    roles: tuple[str, ...] | None = None
    send_email: bool | None = None
    email_template: str | None = None

    node_type: ClassVar[NodeType] = NodeType.NOTIFY
    _FIELDS: ClassVar[tuple[tuple[str, str], ...]] = CcNode._FIELDS

    @property
    def sends_email(self) -> bool:
        return self.send_email is not False


@dataclass(frozen=True, kw_only=True)
class ConditionNode(WorkflowNode):
    """Auto-evaluated branch point routed via CONDITION_TRUE / CONDITION_FALSE."""

    condition_field: str | None = None
    condition_field_type: str | None = None
    condition_op: str | None = None
    condition_value: Any = None
    condition_value2: Any = None

    node_type: ClassVar[NodeType] = NodeType.CONDITION
    _FIELDS: ClassVar[tuple[tuple[str, str], ...]] = (
        ("conditionField", "condition_field"),
        ("conditionFieldType", "condition_field_type"),
        ("conditionOp", "condition_op"),
        ("conditionValue", "condition_value"),
        ("conditionValue2", "condition_value2"),
    )


@dataclass(frozen=True, kw_only=True)
class PassThroughNode(WorkflowNode):
    """A node whose type tag this version does not know.

    Traversal neither pauses on it nor records it.
    """

    raw_type: str = ""

    @property
    def type(self) -> str:
        return self.raw_type


SideChannelNode = CcNode | NotifyNode

_NODE_CLASSES: dict[str, type[WorkflowNode]] = {
    cls.node_type.value: cls
    for cls in (StartNode, EndNode, ApprovalNode, CcNode, NotifyNode, ConditionNode)
}

_LIST_FIELDS = frozenset({"users", "roles"})


def parse_node(raw: Mapping[str, Any]) -> WorkflowNode | None:
    """Build the node variant for one exchange-format entry.

    Returns None for entries without an id.
    """
    if not isinstance(raw, Mapping) or raw.get("id") in (None, ""):
        return None

    type_tag = str(raw.get("type", ""))
    cls = _NODE_CLASSES.get(type_tag, PassThroughNode)
    known = {"id", "type", "name"} | {key for key, _ in cls._FIELDS}

    kwargs: dict[str, Any] = {
        "id": str(raw["id"]),
        "name": raw.get("name"),
        "extra": {k: v for k, v in raw.items() if k not in known},
        "exchange": copy.deepcopy(dict(raw)),
    }
    for key, attr in cls._FIELDS:
        if key not in raw:
            continue
        value = raw[key]
        kwargs[attr] = _as_str_tuple(value) if key in _LIST_FIELDS else value
    if cls is PassThroughNode:
        kwargs["raw_type"] = type_tag
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Edges & definition
# ---------------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class WorkflowEdge:
    source: str
    target: str
    condition: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)
    exchange: Mapping[str, Any] | None = field(default=None, compare=False, repr=False)

    @property
    def is_unconditional(self) -> bool:
        return self.condition is None or self.condition == EdgeCondition.ALWAYS.value

    def to_dict(self) -> dict[str, Any]:
        if self.exchange is not None:
            return copy.deepcopy(dict(self.exchange))
        data: dict[str, Any] = {"source": self.source, "target": self.target}
        if self.condition is not None:
            data["condition"] = self.condition
        data.update(self.extra)
        return data


def parse_edge(raw: Mapping[str, Any]) -> WorkflowEdge | None:
    if not isinstance(raw, Mapping):
        return None
    if raw.get("source") is None or raw.get("target") is None:
        return None
    condition = raw.get("condition")
    return WorkflowEdge(
        source=str(raw["source"]),
        target=str(raw["target"]),
        condition=str(condition) if condition is not None else None,
        extra={
            k: v for k, v in raw.items()
            if k not in ("source", "target", "condition")
        },
        exchange=copy.deepcopy(dict(raw)),
    )


@dataclass(frozen=True)
class WorkflowDefinition:
    """A directed graph of nodes and edges.

    Contract: frozen; the same definition may be shared across threads.
    Non-goals: no structural validation; see ``bizflow_config.validator``.
    """

    nodes: tuple[WorkflowNode, ...] = ()
    edges: tuple[WorkflowEdge, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def empty(cls) -> WorkflowDefinition:
        return cls()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }
        data.update(self.extra)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def parse_workflow_definition(raw: Any) -> WorkflowDefinition:
    """Normalize any input into a WorkflowDefinition.

    Accepts a JSON string, a mapping, an existing definition or anything
    else.  Invalid JSON, non-mapping payloads and missing arrays all
    normalize to empty node / edge tuples.
    """
    if isinstance(raw, WorkflowDefinition):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return WorkflowDefinition.empty()
    if not isinstance(raw, Mapping):
        return WorkflowDefinition.empty()

    raw_nodes = raw.get("nodes")
    raw_edges = raw.get("edges")
    nodes = tuple(
        n for n in (parse_node(r) for r in (raw_nodes if isinstance(raw_nodes, list) else []))
        if n is not None
    )
    edges = tuple(
        e for e in (parse_edge(r) for r in (raw_edges if isinstance(raw_edges, list) else []))
        if e is not None
    )
    return WorkflowDefinition(
        nodes=nodes,
        edges=edges,
        extra={k: v for k, v in raw.items() if k not in ("nodes", "edges")},
    )


@dataclass(frozen=True)
class PublishedWorkflow:
    """A definition together with its ownership metadata."""

    workflow_key: str
    document_type: str
    definition: WorkflowDefinition
    version: int = 1
    published: bool = True
    updated_by: str | None = None


# ---------------------------------------------------------------------------
# Condition field schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConditionFieldSpec:
    """A document field a CONDITION node may branch on."""

    key: str
    label: str
    field_type: ConditionFieldType
    options: tuple[str, ...] = ()


PURCHASE_CONDITION_FIELDS: tuple[ConditionFieldSpec, ...] = (
    ConditionFieldSpec("totalAmount", "Total amount", ConditionFieldType.NUMBER),
    ConditionFieldSpec("quantity", "Quantity", ConditionFieldType.NUMBER),
    ConditionFieldSpec("unitPrice", "Unit price", ConditionFieldType.NUMBER),
    ConditionFieldSpec("feeAmount", "Fee amount", ConditionFieldType.NUMBER),
    ConditionFieldSpec("purchaseDate", "Purchase date", ConditionFieldType.DATE),
    ConditionFieldSpec("itemName", "Item name", ConditionFieldType.TEXT),
    ConditionFieldSpec("specification", "Specification", ConditionFieldType.TEXT),
    ConditionFieldSpec("purpose", "Purpose", ConditionFieldType.TEXT),
    ConditionFieldSpec(
        "organizationType", "Organization", ConditionFieldType.ENUM,
        ("school", "company"),
    ),
    ConditionFieldSpec(
        "purchaseChannel", "Purchase channel", ConditionFieldType.ENUM,
        ("online", "offline"),
    ),
    ConditionFieldSpec(
        "paymentType", "Payment type", ConditionFieldType.ENUM,
        ("deposit", "full_payment", "installment", "balance", "other"),
    ),
)

REIMBURSEMENT_CONDITION_FIELDS: tuple[ConditionFieldSpec, ...] = (
    ConditionFieldSpec("amount", "Amount", ConditionFieldType.NUMBER),
    ConditionFieldSpec("occurredAt", "Occurred at", ConditionFieldType.DATE),
    ConditionFieldSpec("title", "Title", ConditionFieldType.TEXT),
    ConditionFieldSpec(
        "category", "Category", ConditionFieldType.ENUM,
        ("travel", "meal", "office", "transport", "other"),
    ),
    ConditionFieldSpec(
        "organizationType", "Organization", ConditionFieldType.ENUM,
        ("school", "company"),
    ),
    ConditionFieldSpec(
        "sourceType", "Source", ConditionFieldType.ENUM,
        ("purchase", "direct"),
    ),
)


def condition_fields_for(document_type: str) -> tuple[ConditionFieldSpec, ...]:
    if document_type == "purchase":
        return PURCHASE_CONDITION_FIELDS
    if document_type == "reimbursement":
        return REIMBURSEMENT_CONDITION_FIELDS
    return ()
