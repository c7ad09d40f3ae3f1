"""
AdmissionsOrchestrator -- composes a running admissions workflow from settings.

Contract:
    ``from_settings()`` configures logging and the database from an
    ``EngineSettings``, then wires one ``TransitionEngine``, one
    ``WorkflowEventHandler`` and (on request) a ``TriggerScheduler`` that all
    share the same session factory, Clock and collaborators.

Non-goals:
    - Does NOT start the scheduler; the caller decides when.
    - Does NOT own collaborator implementations; in-process defaults are
      used for any not supplied.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from sqlalchemy.orm import Session

from admissions_config.installer import install_templates
from admissions_config.loader import load_default_templates
from admissions_config.settings import EngineSettings, load_settings
from admissions_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from admissions_kernel.domain.clock import Clock, SystemClock
from admissions_kernel.domain.workflow import WorkflowDefinition
from admissions_kernel.logging_config import configure_logging, get_logger
from admissions_kernel.services.auditor_service import DurableAuditSink
from admissions_kernel.services.definition_service import DefinitionService
from admissions_services.collaborators import (
    ApplicationDataProvider,
    AuditSink,
    DocumentVerificationProvider,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    PaymentStatusProvider,
    RoleProvider,
)
from admissions_services.guard_executor import GuardExecutor, default_guard_executor
from admissions_services.transition_engine import TransitionEngine
from admissions_services.workflow_events import WorkflowEventHandler

from admissions_batch.services.trigger_scheduler import TriggerScheduler

logger = get_logger("batch.orchestrator")


class AdmissionsOrchestrator:
    """DI container for the workflow runtime."""

    def __init__(
        self,
        settings: EngineSettings,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        guard_executor: GuardExecutor | None = None,
        role_provider: RoleProvider | None = None,
        documents: DocumentVerificationProvider | None = None,
        payments: PaymentStatusProvider | None = None,
        application_data: ApplicationDataProvider | None = None,
        notifier: NotificationDispatcher | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self.settings = settings
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._guard_executor = guard_executor or default_guard_executor()

        self.engine = TransitionEngine(
            session_factory,
            self._clock,
            self._guard_executor,
            role_provider,
            documents,
            payments,
            application_data=application_data,
            notifier=notifier or LoggingNotificationDispatcher(settings.notification_channels),
            audit_sink=audit_sink or DurableAuditSink(session_factory, self._clock),
        )
        self.events = WorkflowEventHandler(self.engine, max_chain=settings.max_automatic_chain)

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings | None = None,
        *,
        settings_path: Path | None = None,
        create_schema: bool = False,
        install_defaults: bool = False,
        **collaborators,
    ) -> AdmissionsOrchestrator:
        """Initialize logging and the database, then build the runtime.

        Args:
            settings: Ready settings. If None, read from ``settings_path``
                (or the packaged ``settings.yaml``) with environment overrides.
            create_schema: Create tables and seed sequence counters.
            install_defaults: Install and activate the packaged templates.
            **collaborators: Passed to ``__init__`` (clock, role_provider, ...).
        """
        settings = settings or load_settings(settings_path)
        configure_logging(level=settings.log_level)
        init_engine_from_url(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
        if create_schema:
            create_tables()

        orchestrator = cls(settings, get_session_factory(), **collaborators)
        if install_defaults:
            orchestrator.install_default_templates()
        logger.info(
            "orchestrator_ready",
            extra={
                "auto_process_transitions": settings.auto_process_transitions,
                "max_automatic_chain": settings.max_automatic_chain,
            },
        )
        return orchestrator

    def install_default_templates(self) -> list[WorkflowDefinition]:
        """Install the packaged templates. Unchanged templates are left as they are."""
        with session_scope(self._session_factory) as session:
            service = DefinitionService(
                session, self._clock, known_predicates=self._guard_executor.names(),
            )
            return install_templates(
                service, load_default_templates(self._guard_executor.names()),
            )

    def create_scheduler(self) -> TriggerScheduler:
        return TriggerScheduler(
            self._session_factory,
            self.engine,
            self._clock,
            tick_interval_seconds=self.settings.scheduler_interval_seconds,
            item_timeout_seconds=self.settings.scheduler_item_timeout_seconds,
            max_workers=self.settings.scheduler_max_workers,
            include_automatic=self.settings.auto_process_transitions,
        )
