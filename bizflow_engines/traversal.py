"""
Module: bizflow_engines.traversal
Responsibility:
    Interpret a WorkflowDefinition: from the node a document currently sits
    on, plus the outcome of the action just taken, find the next node the
    document must pause on and the side-channel nodes passed on the way.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Stateless after
    construction; one engine instance may serve concurrent callers.

Invariants enforced:
    - Determinism: identical (definition, node, action, context) always
      yield the identical StepResult.
    - Termination: at most MAX_TRAVERSAL_STEPS hops, so cyclic graphs
      return instead of spinning.
    - CC / NOTIFY nodes never block; CONDITION nodes are auto-evaluated;
      only APPROVAL and END pause traversal.

Failure modes:
    - NodeNotFoundError when the starting node id is not in the graph.
    - Everything else (dangling edge, no matching edge, loop ceiling)
      stops traversal and returns what was accumulated.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from bizflow_engines.conditions import evaluate_condition
from bizflow_engines.tracer import traced_engine
from bizflow_kernel.domain.workflow import (
    ApprovalNode,
    ConditionNode,
    EdgeCondition,
    NodeType,
    StartNode,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    parse_workflow_definition,
)
from bizflow_kernel.exceptions import NodeNotFoundError
from bizflow_kernel.logging_config import get_logger

logger = get_logger("engines.traversal")

MAX_TRAVERSAL_STEPS = 100

_PAUSE_TYPES = frozenset({NodeType.APPROVAL.value, NodeType.END.value})
_SIDE_CHANNEL_TYPES = frozenset({NodeType.CC.value, NodeType.NOTIFY.value})


@dataclass(frozen=True)
class StepResult:
    """Where traversal paused and what it passed on the way.

    ``next_node`` is None when traversal ran out of edges, hit a dangling
    target, or reached the hop ceiling.
    """

    next_node: WorkflowNode | None
    passed_side_channel_nodes: tuple[WorkflowNode, ...] = field(default=())

    @property
    def is_end(self) -> bool:
        return self.next_node is None or self.next_node.type == NodeType.END.value

    @property
    def next_approval(self) -> ApprovalNode | None:
        if isinstance(self.next_node, ApprovalNode):
            return self.next_node
        return None


def _trace_step(step: StepResult) -> dict[str, Any]:
    return {
        "next_node_id": step.next_node.id if step.next_node is not None else None,
        "side_channel_count": len(step.passed_side_channel_nodes),
    }


class WorkflowEngine:
    """
    Runtime interpreter for one workflow graph.

    Contract:
        Built from anything ``parse_workflow_definition`` accepts; malformed
        input yields an empty graph rather than an error.

    Guarantees:
        - Node and edge indexes are built once; traversal only reads them.
        - Outgoing edges are considered in definition order.

    Non-goals:
        - Does not validate graph structure (see bizflow_config.validator).
        - Does not resolve approvers or send notifications.
    """

    def __init__(
        self,
        definition: WorkflowDefinition | Mapping[str, Any] | str | None,
        max_steps: int = MAX_TRAVERSAL_STEPS,
    ) -> None:
        self._definition = parse_workflow_definition(definition)
        self._max_steps = max_steps
        self._nodes: dict[str, WorkflowNode] = {}
        for node in self._definition.nodes:
            # First definition of a duplicated id wins.
            self._nodes.setdefault(node.id, node)
        self._outgoing: dict[str, list[WorkflowEdge]] = {}
        self._incoming: dict[str, list[str]] = {}
        for edge in self._definition.edges:
            self._outgoing.setdefault(edge.source, []).append(edge)
            self._incoming.setdefault(edge.target, []).append(edge.source)

    @property
    def definition(self) -> WorkflowDefinition:
        return self._definition

    def get_node_by_id(self, node_id: str | None) -> WorkflowNode | None:
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def start_node(self) -> WorkflowNode | None:
        for node in self._definition.nodes:
            if isinstance(node, StartNode):
                return node
        return None

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    @staticmethod
    def _first_edge(edges: list[WorkflowEdge], tag: str | None) -> WorkflowEdge | None:
        for edge in edges:
            if tag is None:
                if edge.is_unconditional:
                    return edge
            elif edge.condition == tag:
                return edge
        return None

    def _select_edge(
        self,
        processing: WorkflowNode,
        action: str | None,
        first_hop: bool,
        context: Mapping[str, Any] | None,
    ) -> WorkflowEdge | None:
        edges = self._outgoing.get(processing.id, [])
        if not edges:
            return None

        if isinstance(processing, ConditionNode):
            tag = (
                EdgeCondition.CONDITION_TRUE.value
                if evaluate_condition(processing, context)
                else EdgeCondition.CONDITION_FALSE.value
            )
            return self._first_edge(edges, tag) or self._first_edge(edges, None)

        if first_hop and action:
            return self._first_edge(edges, str(action)) or self._first_edge(edges, None)

        return self._first_edge(edges, None)

    @traced_engine(
        "workflow_traversal", "1.0", ("current_node_id", "action"), summarize=_trace_step
    )
    def calculate_next_step(
        self,
        current_node_id: str | None,
        action: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> StepResult:
        """Advance from ``current_node_id`` to the next pause point.

        Args:
            current_node_id: Node the document sits on; None starts at START.
            action: Outcome of the action just taken (``APPROVED`` or
                ``REJECTED``).  Only consulted on the first hop.
            context: Document field snapshot for CONDITION nodes.

        Raises:
            NodeNotFoundError: ``current_node_id`` is not in the graph, or
                it is None and the graph has no START node.
        """
        if current_node_id is None:
            processing = self.start_node()
            if processing is None:
                raise NodeNotFoundError(NodeType.START.value)
        else:
            processing = self._nodes.get(current_node_id)
            if processing is None:
                raise NodeNotFoundError(current_node_id)

        side_channel: list[WorkflowNode] = []
        first_hop = True

        for _ in range(self._max_steps):
            edge = self._select_edge(processing, action, first_hop, context)
            first_hop = False
            if edge is None:
                return StepResult(None, tuple(side_channel))

            target = self._nodes.get(edge.target)
            if target is None:
                logger.debug(
                    "workflow_dangling_edge",
                    extra={"source": edge.source, "target": edge.target},
                )
                return StepResult(None, tuple(side_channel))

            if target.type in _PAUSE_TYPES:
                return StepResult(target, tuple(side_channel))
            if target.type in _SIDE_CHANNEL_TYPES:
                side_channel.append(target)
            processing = target

        logger.warning(
            "workflow_traversal_ceiling_hit",
            extra={
                "start_node_id": current_node_id,
                "max_steps": self._max_steps,
                "side_channel_count": len(side_channel),
            },
        )
        return StepResult(None, tuple(side_channel))

    def resolve_initial_step(
        self, context: Mapping[str, Any] | None = None
    ) -> StepResult:
        """Traverse from START, as done when a document is submitted."""
        return self.calculate_next_step(None, None, context)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_historical_nodes(self, current_node_id: str) -> list[WorkflowNode]:
        """APPROVAL ancestors of ``current_node_id``, closest first.

        Reverse breadth-first walk over incoming edges.  The start node and
        the current node itself are never included; each ancestor appears
        once even when several paths reach it.
        """
        result: list[WorkflowNode] = []
        visited = {current_node_id}
        queue: deque[str] = deque([current_node_id])

        while queue:
            node_id = queue.popleft()
            for source_id in self._incoming.get(node_id, []):
                if source_id in visited:
                    continue
                visited.add(source_id)
                node = self._nodes.get(source_id)
                if node is None:
                    continue
                if isinstance(node, ApprovalNode):
                    result.append(node)
                queue.append(source_id)
        return result
