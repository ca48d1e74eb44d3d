"""
Module: bizflow_engines
Responsibility:
    Re-exports the pure calculation engines: graph traversal, condition
    evaluation, guard tables and payment arithmetic.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import bizflow_kernel (domain, exceptions, logging_config)
    and sibling engine modules.  MUST NOT import bizflow_services.

Invariants enforced:
    - Purity: engines never read the clock.  Timestamps are supplied by
      services.
    - Decimal-only arithmetic for money.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from bizflow_engines import WorkflowEngine, purchase_guard_rules
"""

from bizflow_engines.conditions import evaluate_condition
from bizflow_engines.guard_rules import (
    ActionRule,
    DocumentGuardRules,
    GuardContext,
    GuardExecutor,
    default_guard_executor,
    guard_rules_for,
    purchase_guard_rules,
    reimbursement_guard_rules,
)
from bizflow_engines.payment import PaymentOutcome, apply_payment
from bizflow_engines.traversal import MAX_TRAVERSAL_STEPS, StepResult, WorkflowEngine

__all__ = [
    "evaluate_condition",
    "ActionRule",
    "DocumentGuardRules",
    "GuardContext",
    "GuardExecutor",
    "default_guard_executor",
    "guard_rules_for",
    "purchase_guard_rules",
    "reimbursement_guard_rules",
    "PaymentOutcome",
    "apply_payment",
    "MAX_TRAVERSAL_STEPS",
    "StepResult",
    "WorkflowEngine",
]
