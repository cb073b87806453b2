from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.pool import StaticPool

from messaging_core.config.settings import Settings


def is_sqlite_memory_url(url: str) -> bool:
    """True for `sqlite+aiosqlite://` and `sqlite+aiosqlite:///:memory:` style URLs."""
    if not url.startswith("sqlite"):
        return False
    _, _, path = url.partition("://")
    return path in ("", "/", "/:memory:")


def _configure_sqlite(engine: AsyncEngine) -> None:
    """
    Make SQLite behave like the production database for the code paths we rely on.

    - foreign keys (and ON DELETE CASCADE) are off by default in SQLite;
    - the driver's implicit transaction handling breaks SAVEPOINT semantics, so the
      driver is put in autocommit mode and BEGIN is emitted by SQLAlchemy instead;
    - transactions start with BEGIN IMMEDIATE. A deferred transaction that reads and
      then writes cannot wait for a concurrent writer and fails with "database is
      locked"; taking the write lock up front makes it wait for busy_timeout instead.
      Units of work on SQLite are therefore serialised, reads included.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the AsyncEngine for the configured database.

    An in-memory SQLite database only exists per connection, so it is pinned to a
    single shared connection (StaticPool); every other URL uses the default pool
    with health checks.
    """
    return create_engine_for_url(settings.DATABASE_URL, echo=settings.SQLALCHEMY_ECHO)


def create_engine_for_url(url: str, *, echo: bool = False) -> AsyncEngine:
    if is_sqlite_memory_url(url):
        engine = create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(
            url,
            echo=echo,               # Set to False in production
            pool_pre_ping=True,      # Enables connection health checks
        )

    if engine.dialect.name == "sqlite":
        _configure_sqlite(engine)

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects readable after the service layer commits.
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables registered on Base.metadata (development / tests)."""
    from messaging_core.database.base import Base
    import messaging_core.models  # noqa: F401 - registers the models with Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_schema(engine: AsyncEngine) -> None:
    from messaging_core.database.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
