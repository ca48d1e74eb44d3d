"""
Workflow Kernel

Domain values, typed errors, structured logging and persistence for the
approval workflow engine:
- Configurable approval graphs interpreted at runtime
- Guarded document lifecycles for purchases and reimbursements
- Append-only workflow history
"""

__version__ = "0.1.0"
