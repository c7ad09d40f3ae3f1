"""
TriggerScheduler -- In-process polling scheduler for time- and data-driven transitions.

Contract:
    Polls on a configurable interval for applications whose current stage
    has an expired SLA with an outgoing SLA_TIMEOUT transition, or has
    outgoing AUTO_CONDITION transitions (backstop for missed events), and
    applies at most one transition per application per sweep through the
    ``TransitionEngine`` as actor ``"system"``.

Architecture: admissions_batch/services.  Uses admissions_batch.domain for
    pure SLA evaluation and result DTOs, admissions_kernel selectors for the
    scan, and admissions_services.TransitionEngine for every write.

Invariants enforced:
    - All timestamps from the injected Clock.
    - SLA evaluation is pure (is_sla_expired).
    - Each application is evaluated in isolation: its own unit of work, its
      own worker, its own time limit.  One failing or slow application never
      blocks the others.
    - ``tick()`` never raises.
    - Graceful shutdown (respects the stop signal between submissions).
"""

from __future__ import annotations

import contextvars
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from admissions_kernel.db.engine import session_scope
from admissions_kernel.domain.clock import Clock, SystemClock
from admissions_kernel.domain.workflow import SYSTEM_ACTOR, TriggerType, WorkflowDefinition
from admissions_kernel.exceptions import (
    GuardFailedError,
    IllegalTransitionError,
    StaleStateError,
    WorkflowKernelError,
)
from admissions_kernel.logging_config import LogContext, get_logger
from admissions_kernel.selectors.application_selector import ApplicationSelector
from admissions_kernel.selectors.definition_selector import DefinitionSelector
from admissions_services.transition_engine import TransitionEngine

from admissions_batch.domain.eligibility import is_sla_expired
from admissions_batch.domain.types import (
    SweepCandidate,
    SweepItemResult,
    SweepItemStatus,
    SweepResult,
)

logger = get_logger("batch.trigger_scheduler")


class TriggerScheduler:
    """In-process polling scheduler for SLA-timeout and automatic transitions.

    Contract:
        - ``scan()`` lists candidates without writing anything.
        - ``tick()`` runs one sweep and returns a ``SweepResult``.
        - ``start()`` / ``stop()`` for background thread operation.
        - ``include_automatic=False`` limits sweeps to SLA timeouts.

    Non-goals:
        - NOT a distributed scheduler (no leader election); concurrent
          sweeps on several hosts are safe only because the engine rejects
          stale writes.
        - Does NOT retry within a sweep; retriable failures are picked up
          by the next one.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        engine: TransitionEngine,
        clock: Clock | None = None,
        tick_interval_seconds: float = 300,
        item_timeout_seconds: float = 30,
        max_workers: int = 4,
        include_automatic: bool = True,
    ):
        self._session_factory = session_factory
        self._engine = engine
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._item_timeout = item_timeout_seconds
        self._max_workers = max_workers
        self._include_automatic = include_automatic
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def scan(self) -> list[SweepCandidate]:
        """Applications with an expired SLA or a pending automatic transition."""
        now = self._clock.now()
        with session_scope(self._session_factory) as session:
            selector = ApplicationSelector(session)
            sla_rows = [
                row for row in selector.states_with_outgoing(TriggerType.SLA_TIMEOUT)
                if is_sla_expired(row[0].entered_stage_at, row[1].sla_duration, now)
            ]
            auto_rows = (
                selector.states_with_outgoing(TriggerType.AUTO_CONDITION)
                if self._include_automatic else []
            )

            definitions: dict[UUID, WorkflowDefinition] = {}
            for state, _, _ in sla_rows + auto_rows:
                if state.workflow_definition_id not in definitions:
                    definitions[state.workflow_definition_id] = DefinitionSelector(
                        session
                    ).get(state.workflow_definition_id)

        grouped: dict[UUID, list] = {}
        for state, stage, transition in sla_rows + auto_rows:
            grouped.setdefault(state.application_id, []).append((state, stage, transition))

        candidates: list[SweepCandidate] = []
        for application_id, rows in grouped.items():
            state, stage, _ = rows[0]
            definition = definitions[state.workflow_definition_id]
            order = {t.id: i for i, t in enumerate(definition.outgoing(stage.id))}
            transitions = sorted(
                (t for _, _, t in rows),
                key=lambda t: (
                    0 if t.trigger_type == TriggerType.SLA_TIMEOUT else 1,
                    order.get(t.id, len(order)),
                ),
            )
            candidates.append(SweepCandidate(
                application_id=application_id,
                version=state.version,
                stage_id=stage.id,
                stage_name=stage.name,
                entered_stage_at=state.entered_stage_at,
                transition_ids=tuple(t.id for t in transitions),
                trigger_types=tuple(t.trigger_type for t in transitions),
            ))
        return candidates

    def tick(self) -> SweepResult:
        """Run one sweep (public for testing). Never raises."""
        started_at = self._clock.now()
        t0 = time.monotonic()
        results: list[SweepItemResult] = []

        with LogContext.bind(correlation_id=f"sweep-{uuid4()}"):
            try:
                candidates = self.scan()
                results = self._run_candidates(candidates)
            except Exception:
                logger.exception("trigger_sweep_failed")

            sweep = SweepResult(
                started_at=started_at,
                completed_at=self._clock.now(),
                item_results=tuple(results),
                duration_ms=int((time.monotonic() - t0) * 1000),
            )
            logger.info(
                "trigger_sweep_completed",
                extra={
                    "candidates": sweep.total,
                    "fired": sweep.fired,
                    "not_eligible": sweep.not_eligible,
                    "skipped": sweep.skipped,
                    "failed": sweep.failed,
                    "timed_out": sweep.timed_out,
                    "duration_ms": sweep.duration_ms,
                },
            )
            return sweep

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="admissions-trigger-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            # Wait for interval or until stopped
            self._stop_event.wait(timeout=self._tick_interval)

    def _run_candidates(self, candidates: list[SweepCandidate]) -> list[SweepItemResult]:
        """Run candidates on the pool under per-item and per-sweep deadlines.

        Each item gets ``item_timeout`` from the moment a worker picks it up.
        The sweep as a whole ends after ``item_timeout`` times the number of
        pool-sized rounds; items still queued then were never started and are
        reported SKIPPED, not TIMED_OUT.
        """
        if not candidates:
            return []

        pool = ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="admissions-sweep",
        )
        started: dict[UUID, float] = {}
        started_lock = threading.Lock()

        def run(candidate: SweepCandidate) -> SweepItemResult:
            with started_lock:
                started[candidate.application_id] = time.monotonic()
            return self._process(candidate)

        futures: dict[Future, SweepCandidate] = {}
        try:
            for candidate in candidates:
                # Check stop signal between submissions
                if self._stop_event.is_set():
                    break
                ctx = contextvars.copy_context()
                futures[pool.submit(ctx.run, run, candidate)] = candidate

            rounds = -(-len(futures) // self._max_workers)
            sweep_deadline = time.monotonic() + self._item_timeout * rounds
            results: dict[Future, SweepItemResult] = {}
            pending = set(futures)

            while pending:
                now = time.monotonic()
                with started_lock:
                    item_deadlines = {
                        f: started[futures[f].application_id] + self._item_timeout
                        for f in pending
                        if futures[f].application_id in started
                    }
                for future, deadline in item_deadlines.items():
                    if deadline <= now and not future.done():
                        pending.discard(future)
                        results[future] = self._timed_out(futures[future])

                if pending and now >= sweep_deadline:
                    for future in pending:
                        results[future] = self._abandon(future, futures[future])
                    break

                wake_at = min(
                    [d for f, d in item_deadlines.items() if f in pending] + [sweep_deadline]
                )
                done, pending = wait(
                    pending,
                    timeout=max(0.0, wake_at - now),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    results[future] = future.result()

            return [results[f] for f in futures if f in results]
        finally:
            # Timed-out items keep their worker; do not block the sweep on them.
            pool.shutdown(wait=False, cancel_futures=True)

    def _timed_out(self, candidate: SweepCandidate) -> SweepItemResult:
        logger.warning(
            "trigger_item_timed_out",
            extra={
                "application_id": str(candidate.application_id),
                "timeout_seconds": self._item_timeout,
            },
        )
        return SweepItemResult(
            application_id=candidate.application_id,
            status=SweepItemStatus.TIMED_OUT,
            error_message=f"exceeded {self._item_timeout}s",
            duration_ms=int(self._item_timeout * 1000),
        )

    def _abandon(self, future: Future, candidate: SweepCandidate) -> SweepItemResult:
        """Settle an item still pending when the sweep deadline passes."""
        if future.cancel():
            logger.info(
                "trigger_item_not_started",
                extra={"application_id": str(candidate.application_id)},
            )
            return SweepItemResult(
                application_id=candidate.application_id,
                status=SweepItemStatus.SKIPPED,
                error_code="NOT_STARTED",
                error_message="sweep deadline passed before a worker was free",
            )
        if future.done():
            return future.result()
        return self._timed_out(candidate)

    def _process(self, candidate: SweepCandidate) -> SweepItemResult:
        """Try the candidate's transitions in order; apply the first that holds."""
        t0 = time.monotonic()
        application_id = candidate.application_id

        def result(status: SweepItemStatus, **kwargs) -> SweepItemResult:
            return SweepItemResult(
                application_id=application_id,
                status=status,
                duration_ms=int((time.monotonic() - t0) * 1000),
                **kwargs,
            )

        last_error: WorkflowKernelError | None = None
        with LogContext.bind(application_id=application_id, actor_id=SYSTEM_ACTOR):
            for transition_id in candidate.transition_ids:
                try:
                    state = self._engine.apply_transition(
                        application_id,
                        transition_id,
                        SYSTEM_ACTOR,
                        expected_version=candidate.version,
                    )
                except (GuardFailedError, IllegalTransitionError) as exc:
                    last_error = exc
                    continue
                except StaleStateError as exc:
                    logger.info(
                        "trigger_item_skipped",
                        extra={"reason": str(exc)},
                    )
                    return result(
                        SweepItemStatus.SKIPPED,
                        transition_id=transition_id,
                        error_code=exc.code,
                        error_message=str(exc),
                    )
                except WorkflowKernelError as exc:
                    logger.warning(
                        "trigger_item_failed",
                        extra={"error_code": exc.code, "error": str(exc)},
                    )
                    return result(
                        SweepItemStatus.FAILED,
                        transition_id=transition_id,
                        error_code=exc.code,
                        error_message=str(exc),
                    )
                except Exception as exc:
                    logger.exception("trigger_item_failed")
                    return result(
                        SweepItemStatus.FAILED,
                        transition_id=transition_id,
                        error_code=type(exc).__name__,
                        error_message=str(exc),
                    )

                logger.info(
                    "trigger_item_fired",
                    extra={
                        "transition_id": str(transition_id),
                        "from_stage": candidate.stage_name,
                        "to_stage_id": str(state.current_stage_id),
                    },
                )
                return result(
                    SweepItemStatus.FIRED,
                    transition_id=transition_id,
                    to_stage_id=state.current_stage_id,
                )

        return result(
            SweepItemStatus.NOT_ELIGIBLE,
            error_code=last_error.code if last_error else None,
            error_message=str(last_error) if last_error else None,
        )
