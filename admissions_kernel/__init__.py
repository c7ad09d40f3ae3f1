"""
Admissions Workflow Kernel

A versioned stage/transition state machine for admissions applications:
- Immutable-once-active workflow definitions, one active per application type
- Append-only status history with monotonic ordering
- Optimistic concurrency on application state
- Hash-chained audit trail
"""

__version__ = "0.1.0"
