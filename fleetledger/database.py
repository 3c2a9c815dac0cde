import logging
from typing import AsyncGenerator, Any, Sequence

from sqlalchemy import event, insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.dialects import postgresql, sqlite

from fleetledger.config import settings


logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """Route PostgreSQL URLs through the async psycopg driver."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://")
    return url


def configure_sqlite_engine(engine: AsyncEngine) -> AsyncEngine:
    """
    Make SQLite transactions start with BEGIN IMMEDIATE.

    The driver's deferred BEGIN takes a read lock first and fails with
    "database is locked" when two writers try to upgrade at once. Taking
    the write lock up front makes concurrent writers queue on the busy
    timeout instead.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine with timeouts bounded at the storage boundary."""
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=settings.DEBUG,
            future=True,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.SQLITE_BUSY_TIMEOUT,
            },
        )
        return configure_sqlite_engine(engine)

    return create_async_engine(
        normalize_database_url(url),
        echo=settings.DEBUG,
        future=True,
        pool_pre_ping=True,  # Check connection health before use
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        connect_args={
            "connect_timeout": 30,
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        },
    )


# Primary engine: all writes (claim, transition, payouts) go here
engine = build_engine(settings.DATABASE_URL)

# Relaxed read path for polling-heavy list endpoints
read_engine = build_engine(settings.DATABASE_READ_URL) if settings.DATABASE_READ_URL else engine


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async_session_factory = make_session_factory(engine)
read_session_factory = make_session_factory(read_engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for read-only, possibly replica-backed sessions."""
    async with read_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all tables (dev/test only; production uses alembic)."""
    import fleetledger.models  # noqa: F401  (register mappers)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def insert_ignore(
    session: AsyncSession,
    model: Any,
    values: dict,
    conflict_columns: Sequence[str],
) -> bool:
    """
    INSERT a row unless it collides on `conflict_columns`.

    Returns True when the row was written, False when an existing row
    already held the key. Runs inside the caller's transaction.
    """
    table = model.__table__
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values)
    else:
        stmt = None

    if stmt is not None:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
        result = await session.execute(stmt)
        return result.rowcount == 1

    # Other backends: plain INSERT; a unique violation surfaces to the caller
    await session.execute(insert(table).values(**values))
    return True
