"""
Admissions services -- the transition engine and its collaborators.

Sits above ``admissions_kernel``: the kernel owns persistence, definitions
and audit; this package owns moving applications through their workflow.
"""

from admissions_services.collaborators import (
    ApplicationDataProvider,
    AuditSink,
    DocumentVerificationProvider,
    InMemoryDocumentStatusProvider,
    InMemoryPaymentStatusProvider,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NullAuditSink,
    PaymentStatusProvider,
    RoleProvider,
    StaticApplicationDataProvider,
    StaticRoleProvider,
)
from admissions_services.guard_executor import GuardExecutor, default_guard_executor
from admissions_services.transition_engine import TransitionEngine
from admissions_services.workflow_events import WorkflowEventHandler

__all__ = [
    "ApplicationDataProvider",
    "AuditSink",
    "DocumentVerificationProvider",
    "GuardExecutor",
    "InMemoryDocumentStatusProvider",
    "InMemoryPaymentStatusProvider",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "NullAuditSink",
    "PaymentStatusProvider",
    "RoleProvider",
    "StaticApplicationDataProvider",
    "StaticRoleProvider",
    "TransitionEngine",
    "WorkflowEventHandler",
    "default_guard_executor",
]
