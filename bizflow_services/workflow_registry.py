"""
bizflow_services.workflow_registry -- Published workflow per document type.

Responsibility:
    Map each document type to the workflow graph its documents follow, and
    hand out a ready WorkflowEngine for it.  Workflows come from the active
    configuration, from the ``workflow_definitions`` table, or both (later
    registrations replace earlier ones).

Invariants enforced:
    - Only published workflows are registered.
    - A document type without a published workflow uses the built-in
      single step: START -> APPROVAL (role ``finance``) -> END.
    - Engines are built once per (document type, version) and shared;
      WorkflowEngine is read-only after construction.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping

from bizflow_config.schema import BizflowConfig
from bizflow_engines.traversal import MAX_TRAVERSAL_STEPS, WorkflowEngine
from bizflow_kernel.domain.documents import DocumentType
from bizflow_kernel.domain.workflow import PublishedWorkflow, parse_workflow_definition
from bizflow_kernel.logging_config import get_logger
from bizflow_services.repositories import SqlWorkflowDefinitionStore

logger = get_logger("services.workflow_registry")

DEFAULT_APPROVER_ROLE = "finance"


def default_workflow(document_type: str) -> PublishedWorkflow:
    definition = parse_workflow_definition(
        {
            "nodes": [
                {"id": "start", "type": "START", "name": "Start"},
                {
                    "id": "finance_approval",
                    "type": "APPROVAL",
                    "name": "Finance approval",
                    "approverType": "ROLE",
                    "roles": [DEFAULT_APPROVER_ROLE],
                },
                {"id": "end", "type": "END", "name": "End"},
            ],
            "edges": [
                {"source": "start", "target": "finance_approval"},
                {"source": "finance_approval", "target": "end", "condition": "APPROVED"},
                {"source": "finance_approval", "target": "end", "condition": "REJECTED"},
            ],
        }
    )
    return PublishedWorkflow(
        workflow_key=f"{document_type}_builtin",
        document_type=document_type,
        definition=definition,
        version=0,
    )


class WorkflowRegistry:
    """Published workflows and their engines, keyed by document type."""

    def __init__(
        self,
        workflows: Mapping[str, PublishedWorkflow] | None = None,
        max_steps: int = MAX_TRAVERSAL_STEPS,
    ) -> None:
        self._lock = threading.Lock()
        self._max_steps = max_steps
        self._workflows: dict[str, PublishedWorkflow] = {}
        self._engines: dict[tuple[str, str, int], WorkflowEngine] = {}
        for workflow in (workflows or {}).values():
            self.register(workflow)

    @classmethod
    def from_config(cls, config: BizflowConfig) -> WorkflowRegistry:
        published = {
            doc_type: wf for doc_type, wf in config.workflows.items() if wf.published
        }
        return cls(published, max_steps=config.max_traversal_steps)

    def register(self, workflow: PublishedWorkflow) -> bool:
        """Register ``workflow``; unpublished workflows are ignored."""
        if not workflow.published:
            return False
        with self._lock:
            self._workflows[workflow.document_type] = workflow
        logger.info(
            "workflow_registered",
            extra={
                "document_type": workflow.document_type,
                "workflow_key": workflow.workflow_key,
                "version": workflow.version,
            },
        )
        return True

    def load_from_store(self, store: SqlWorkflowDefinitionStore) -> int:
        """Register the latest published version of every document type."""
        loaded = 0
        for doc_type in DocumentType:
            workflow = store.latest_published(doc_type.value)
            if workflow is not None and self.register(workflow):
                loaded += 1
        return loaded

    def workflow_for(self, document_type: DocumentType | str) -> PublishedWorkflow:
        key = DocumentType(document_type).value
        with self._lock:
            workflow = self._workflows.get(key)
        return workflow if workflow is not None else default_workflow(key)

    def engine_for(self, document_type: DocumentType | str) -> WorkflowEngine:
        workflow = self.workflow_for(document_type)
        cache_key = (workflow.document_type, workflow.workflow_key, workflow.version)
        with self._lock:
            engine = self._engines.get(cache_key)
            if engine is None:
                engine = WorkflowEngine(workflow.definition, max_steps=self._max_steps)
                self._engines[cache_key] = engine
        return engine
