"""
admissions_services.collaborators -- interfaces the transition engine consumes.

Responsibility:
    Structural protocols for everything outside the workflow engine's
    ownership: document verification status, payment status, applicant
    data, role checks, notification delivery and the audit sink.  Also
    ships small in-process implementations for wiring, local runs and tests.

Architecture position:
    Services layer.  Imports domain types only.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from admissions_kernel.domain.workflow import StatusRecord, TransitionCompleted
from admissions_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class DocumentVerificationProvider(Protocol):
    def is_document_verified(self, application_id: UUID, document_type: str) -> bool: ...


@runtime_checkable
class PaymentStatusProvider(Protocol):
    def is_payment_complete(self, application_id: UUID) -> bool: ...


@runtime_checkable
class ApplicationDataProvider(Protocol):
    def get_application_data(self, application_id: UUID) -> Mapping[str, Any]: ...


@runtime_checkable
class RoleProvider(Protocol):
    def has_role(self, user_id: str, role: str) -> bool: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Fire-and-forget delivery of transition events."""

    def notify(self, application_id: UUID, event: TransitionCompleted) -> None: ...


@runtime_checkable
class AuditSink(Protocol):
    """Durable record of every committed transition."""

    def record(self, record: StatusRecord) -> None: ...


# ---------------------------------------------------------------------------
# In-process implementations
# ---------------------------------------------------------------------------


class StaticRoleProvider:
    """RoleProvider backed by a simple dict of user id -> roles.

    Can be replaced with a database-backed or directory-backed implementation.
    """

    def __init__(self, role_map: Mapping[str, tuple[str, ...]] | None = None) -> None:
        self._role_map: dict[str, tuple[str, ...]] = dict(role_map or {})

    def grant(self, user_id: str, *roles: str) -> None:
        self._role_map[user_id] = tuple(sorted(set(self._role_map.get(user_id, ())) | set(roles)))

    def get_roles(self, user_id: str) -> tuple[str, ...]:
        return self._role_map.get(user_id, ())

    def has_role(self, user_id: str, role: str) -> bool:
        return role in self._role_map.get(user_id, ())


class InMemoryDocumentStatusProvider:
    """Verification statuses keyed by (application, document type)."""

    def __init__(self) -> None:
        self._verified: set[tuple[UUID, str]] = set()
        self._lock = threading.Lock()

    def mark_verified(self, application_id: UUID, document_type: str) -> None:
        with self._lock:
            self._verified.add((application_id, document_type))

    def mark_unverified(self, application_id: UUID, document_type: str) -> None:
        with self._lock:
            self._verified.discard((application_id, document_type))

    def is_document_verified(self, application_id: UUID, document_type: str) -> bool:
        with self._lock:
            return (application_id, document_type) in self._verified


class InMemoryPaymentStatusProvider:
    """Payment completion flags keyed by application."""

    def __init__(self) -> None:
        self._paid: set[UUID] = set()
        self._lock = threading.Lock()

    def mark_paid(self, application_id: UUID) -> None:
        with self._lock:
            self._paid.add(application_id)

    def is_payment_complete(self, application_id: UUID) -> bool:
        with self._lock:
            return application_id in self._paid


class StaticApplicationDataProvider:
    """Applicant data (form fields) keyed by application."""

    def __init__(self, data: Mapping[UUID, Mapping[str, Any]] | None = None) -> None:
        self._data: dict[UUID, dict[str, Any]] = {
            k: dict(v) for k, v in (data or {}).items()
        }

    def update(self, application_id: UUID, **fields: Any) -> None:
        self._data.setdefault(application_id, {}).update(fields)

    def get_application_data(self, application_id: UUID) -> Mapping[str, Any]:
        return dict(self._data.get(application_id, {}))


class LoggingNotificationDispatcher:
    """Writes each event to the structured log instead of delivering it."""

    def __init__(self, channels: tuple[str, ...] = ("email", "in_app")) -> None:
        self.channels = tuple(channels)

    def notify(self, application_id: UUID, event: TransitionCompleted) -> None:
        logger.info(
            "notification_dispatched",
            extra={
                "application_id": str(application_id),
                "to_stage": event.to_stage_name,
                "templates": list(event.notifications),
                "channels": list(self.channels),
                "triggered_by": event.triggered_by,
            },
        )


class NullAuditSink:
    """AuditSink that discards records (structured logs still carry them)."""

    def record(self, record: StatusRecord) -> None:
        return None
