"""
Engine and session management for the workflow store.

One process-wide engine is initialized from a URL. PostgreSQL runs at
READ COMMITTED behind a pre-pinged ``QueuePool``; SQLite (tests, local runs)
keeps the driver's default transaction handling. In both cases the version
columns on application state and on the activation pointer, not row locks,
decide concurrent writes.

The transition engine, auditor and trigger scheduler each open their own
unit of work with ``session_scope(factory)``.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from admissions_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Database engine not initialized; call init_engine_from_url() first"


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    Pool arguments apply to PostgreSQL only. A second call replaces the
    previous engine without disposing it; use ``reset_engine()`` for that.
    """
    global _engine, _SessionFactory

    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        options = {"connect_args": {"check_same_thread": False}}
    else:
        options = {
            "poolclass": QueuePool,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_pre_ping": pool_pre_ping,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
            "isolation_level": "READ COMMITTED",
        }

    _engine = create_engine(database_url, echo=echo, **options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": backend, "echo": echo})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Commit on normal exit; roll back, log and re-raise on error. Always closes.

    Usage:
        with session_scope(factory) as session:
            DefinitionService(session, clock).activate(definition_id, actor)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create all workflow tables and seed the sequence counters."""
    from admissions_kernel.db.base import Base
    from admissions_kernel.models import import_all_models
    from admissions_kernel.services.sequence_service import SequenceService

    import_all_models()
    Base.metadata.create_all(get_engine())
    with session_scope() as session:
        SequenceService(session).initialize_sequences()


def drop_tables() -> None:
    """Drop all workflow tables. Test and local use only."""
    from admissions_kernel.db.base import Base
    from admissions_kernel.models import import_all_models

    import_all_models()
    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
