"""
Workflow Validator (``bizflow_config.validator``).

Responsibility
--------------
Authoring-time checks for workflow graphs and whole configuration sets.
Runtime traversal tolerates malformed graphs; this module is where they
are reported.

Architecture position
---------------------
**Config layer** -- build-time validation.  Called by
``bizflow_config.get_active_config`` and by ``scripts/validate_workflow.py``.

Invariants enforced
-------------------
* Exactly one START node.
* Node ids are unique.
* Every non-START node is reachable from START.
* CONDITION operators are legal for their field type.
* APPROVAL nodes name at least one user or role.

Failure modes
-------------
* Errors (``WorkflowValidationResult.errors``) -> the workflow MUST NOT be
  published.
* Warnings -> publishable, but the graph has dead ends worth reviewing
  (dangling edges, missing branches, no END node).
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from bizflow_config.schema import BizflowConfig
from bizflow_kernel.domain.workflow import (
    ApprovalNode,
    ApproverType,
    ConditionFieldType,
    ConditionNode,
    EdgeCondition,
    NodeType,
    WorkflowDefinition,
    condition_fields_for,
    operators_for_field_type,
)


@dataclass
class WorkflowValidationResult:
    """
    Result of workflow validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block publishing but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def merge(self, other: WorkflowValidationResult, prefix: str = "") -> None:
        self.errors.extend(f"{prefix}{e}" for e in other.errors)
        self.warnings.extend(f"{prefix}{w}" for w in other.warnings)


def _reachable_from(start_id: str, definition: WorkflowDefinition) -> set[str]:
    outgoing: dict[str, list[str]] = {}
    for edge in definition.edges:
        outgoing.setdefault(edge.source, []).append(edge.target)
    seen = {start_id}
    queue: deque[str] = deque([start_id])
    while queue:
        for target in outgoing.get(queue.popleft(), []):
            if target not in seen:
                seen.add(target)
                queue.append(target)
    return seen


def _check_condition(
    node: ConditionNode,
    result: WorkflowValidationResult,
    known_fields: set[str] | None,
) -> None:
    field_type = node.condition_field_type or ConditionFieldType.NUMBER.value
    if not node.condition_field:
        result.add_error(f"Condition node '{node.id}' has no conditionField")
    elif known_fields is not None and node.condition_field not in known_fields:
        result.add_warning(
            f"Condition node '{node.id}' uses unknown field '{node.condition_field}'"
        )
    allowed = {op.value for op in operators_for_field_type(field_type)}
    if not allowed:
        result.add_error(f"Condition node '{node.id}' has unknown field type '{field_type}'")
    elif node.condition_op not in allowed:
        result.add_error(
            f"Condition node '{node.id}': operator '{node.condition_op}' "
            f"is not valid for {field_type} fields"
        )
    if node.condition_op == "between" and node.condition_value2 is None:
        result.add_error(f"Condition node '{node.id}': 'between' requires conditionValue2")


def _check_approval(node: ApprovalNode, result: WorkflowValidationResult) -> None:
    if node.effective_approver_type is ApproverType.ROLE:
        if not node.roles:
            result.add_error(f"Approval node '{node.id}' is ROLE-based but lists no roles")
    elif not node.users:
        result.add_error(f"Approval node '{node.id}' lists no users")


def validate_workflow_definition(
    definition: WorkflowDefinition,
    document_type: str | None = None,
) -> WorkflowValidationResult:
    """
    Validate one workflow graph.

    Args:
        definition: The parsed graph.
        document_type: When given, condition fields are checked against
            the fields that document type offers.
    """
    result = WorkflowValidationResult()
    node_ids: set[str] = set()
    for node in definition.nodes:
        if node.id in node_ids:
            result.add_error(f"Duplicate node id '{node.id}'")
        node_ids.add(node.id)

    starts = [n for n in definition.nodes if n.type == NodeType.START.value]
    if len(starts) != 1:
        result.add_error(f"Workflow must have exactly one START node, found {len(starts)}")
    if not any(n.type == NodeType.END.value for n in definition.nodes):
        result.add_warning("Workflow has no END node")

    for edge in definition.edges:
        if edge.source not in node_ids:
            result.add_warning(f"Edge source '{edge.source}' does not exist")
        if edge.target not in node_ids:
            result.add_warning(f"Edge target '{edge.target}' does not exist")

    if len(starts) == 1:
        reachable = _reachable_from(starts[0].id, definition)
        for node in definition.nodes:
            if node.id not in reachable:
                result.add_error(f"Node '{node.id}' is not reachable from START")

    known_fields = (
        {spec.key for spec in condition_fields_for(document_type)}
        if document_type else None
    )
    branch_tags: dict[str, set[str | None]] = {}
    for edge in definition.edges:
        branch_tags.setdefault(edge.source, set()).add(edge.condition)

    for node in definition.nodes:
        if isinstance(node, ConditionNode):
            _check_condition(node, result, known_fields or None)
            tags = branch_tags.get(node.id, set())
            for tag in (EdgeCondition.CONDITION_TRUE.value, EdgeCondition.CONDITION_FALSE.value):
                if tag not in tags:
                    result.add_warning(f"Condition node '{node.id}' has no {tag} branch")
        elif isinstance(node, ApprovalNode):
            _check_approval(node, result)

    return result


def validate_configuration(config: BizflowConfig) -> WorkflowValidationResult:
    """Validate every workflow of a configuration set plus global settings."""
    result = WorkflowValidationResult()
    if config.max_traversal_steps < 1:
        result.add_error("max_traversal_steps must be at least 1")
    for document_type, workflow in sorted(config.workflows.items()):
        result.merge(
            validate_workflow_definition(workflow.definition, document_type),
            prefix=f"[{workflow.workflow_key}] ",
        )
    return result
