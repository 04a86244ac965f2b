"""Audio Dedup Pipeline - Database engine and session management.

SQLAlchemy sync engine/session factory for SQLite.
"""

from __future__ import annotations

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import sessionmaker

from audiodedup.config import DB_PATH
from audiodedup.models import Base

# Process-wide session factory, set by configure_session_factory()
_session_factory: sessionmaker | None = None


def get_database_url(db_path: str | None = None) -> str:
    """Get SQLite database URL.

    Args:
        db_path: Optional path override. Defaults to config.DB_PATH.

    Returns:
        SQLite connection URL string.
    """
    path = db_path if db_path is not None else DB_PATH
    return f"sqlite:///{path}"


def create_db_engine(db_path: str | None = None, echo: bool = False) -> Engine:
    """Create SQLAlchemy engine.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = get_database_url(db_path)
    return create_engine(
        url,
        echo=echo,
        # Sessions are used by the API threadpool and the analysis workers.
        # One session per unit of work, never shared across threads.
        # timeout: seconds a writer waits on SQLite's database lock.
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the given engine.

    Args:
        engine: SQLAlchemy Engine instance.

    Returns:
        Configured sessionmaker.
    """
    # - autoflush=False: explicit flush control for deterministic primitives
    # - expire_on_commit=False: objects remain usable post-commit
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(db_path: str | None = None, echo: bool = False) -> tuple[Engine, sessionmaker]:
    """Initialize the database: create engine, session factory, and all tables.

    This is idempotent - safe to call multiple times.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        Tuple of (engine, SessionFactory).
    """
    engine = create_db_engine(db_path, echo=echo)
    SessionFactory = create_session_factory(engine)

    # Create all tables (idempotent via checkfirst=True default)
    Base.metadata.create_all(engine)

    return engine, SessionFactory


def configure_session_factory(factory: sessionmaker | None) -> None:
    """Install the process-wide session factory.

    Called by the API lifespan on startup and by tests. Passing None resets it.
    """
    global _session_factory
    _session_factory = factory


def get_session_factory() -> sessionmaker:
    """Get the process-wide session factory.

    Falls back to init_db() with the configured DB_PATH the first time it is
    needed outside the API process (stand-alone huey consumer, CLI worker).
    """
    global _session_factory
    if _session_factory is None:
        _, _session_factory = init_db()
    return _session_factory
