"""
Database initialization and connection management utilities.

One engine and session factory are kept per process. Asking for a session on
a different database URL disposes the old engine and initializes a new one,
which lets tests point each case at its own SQLite file.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event, pool
from sqlalchemy.orm import Session, sessionmaker

from dex_migration.client.exceptions import ConfigurationError, DexMigrationError, StateError
from dex_migration.migration.models import Base
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None
_SessionFactory: sessionmaker | None = None
_database_url: str | None = None

_URL_PREFIXES = ("postgresql://", "postgresql+", "sqlite://", "mysql://", "mysql+")


def resolve_database_url(db_path: str) -> str:
    """Return ``db_path`` unchanged if it is a database URL, else a SQLite URL for the file."""
    if db_path.startswith(_URL_PREFIXES):
        return db_path
    return f"sqlite:///{db_path}"


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite has foreign keys disabled by default; turn them on per connection."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:/// or postgresql://)
        echo: Whether to log SQL statements
        pool_size: Number of connections to maintain in the pool
        max_overflow: Connections allowed beyond pool_size
        pool_timeout: Seconds to wait for a pooled connection
        pool_recycle: Recycle connections after this many seconds

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        is_sqlite = database_url.startswith("sqlite")

        if is_sqlite:
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(
                database_url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,
                pool_recycle=pool_recycle,
            )

        logger.debug(
            "database_engine_created",
            database_type="sqlite" if is_sqlite else engine.dialect.name,
            pool_size="NullPool" if is_sqlite else pool_size,
        )
        return engine

    except Exception as e:
        logger.error("database_engine_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to create database engine: {e}") from e


def init_database(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
) -> Engine:
    """
    Initialize the state database, creating tables that do not exist yet.

    Idempotent. Any previously initialized engine is disposed first.

    Raises:
        ConfigurationError: If database initialization fails
    """
    global _engine, _SessionFactory, _database_url

    if _engine is not None:
        _engine.dispose()
        _engine = None
        _SessionFactory = None
        _database_url = None

    try:
        engine = create_database_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )
        Base.metadata.create_all(engine)

        _engine = engine
        _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)
        _database_url = database_url

        logger.debug(
            "database_initialized",
            database_url=database_url,
            tables=len(Base.metadata.tables),
        )
        return engine

    except ConfigurationError:
        raise
    except Exception as e:
        logger.error("database_init_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to initialize database: {e}") from e


def get_engine(database_url: str | None = None, echo: bool = False) -> Engine:
    """
    Get the process-wide engine, initializing it on first use.

    Raises:
        ConfigurationError: If nothing is initialized and no URL is given
    """
    if database_url is not None and database_url != _database_url:
        init_database(database_url, echo=echo)

    if _engine is None:
        raise ConfigurationError(
            "Database engine not initialized. Call init_database() first or provide database_url."
        )
    return _engine


def get_session_factory() -> sessionmaker:
    """
    Get the process-wide session factory.

    Raises:
        ConfigurationError: If the session factory is not initialized
    """
    if _SessionFactory is None:
        raise ConfigurationError("Session factory not initialized. Call init_database() first.")
    return _SessionFactory


@contextmanager
def get_session(database_url: str | None = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on exception and always closes the session.
    Errors from this package pass through unchanged; anything else is wrapped.

    Usage:
        with get_session(url) as session:
            session.add(obj)

    Raises:
        StateError: If the database operation fails
    """
    get_engine(database_url)
    session = get_session_factory()()

    try:
        yield session
        session.commit()
    except DexMigrationError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.debug("database_session_rolled_back", error=str(e))
        raise StateError(f"Database operation failed: {e}") from e
    finally:
        session.close()
