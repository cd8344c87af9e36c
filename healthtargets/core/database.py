from contextlib import contextmanager
from typing import Any, AsyncGenerator, Iterator

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from healthtargets.core.config import settings
from healthtargets.core.errors import TransientStorageError


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {}
    return {"pool_size": 20, "max_overflow": 10, "pool_timeout": 10}


engine: AsyncEngine = create_async_engine(
    settings.database_url, echo=settings.database_echo, **_engine_options(settings.database_url)
)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession, autocommit=False)


class Base(DeclarativeBase):
    pass


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionLocal


def insert_ignoring_conflicts(session: AsyncSession, model: type[Base], *index_elements: str):
    """INSERT ... ON CONFLICT (index_elements) DO NOTHING for the session's dialect.

    Uniqueness constraints are the only arbiter between concurrent writers, so
    callers pair this with RETURNING and treat an empty result as "someone else
    won" instead of catching IntegrityError.
    """
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise RuntimeError(f"Unsupported database dialect: {dialect}")
    return stmt.on_conflict_do_nothing(index_elements=list(index_elements))


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Re-raise connectivity and timeout failures as TransientStorageError.

    Only failures a retry can fix are mapped. Integrity, data and programming
    errors pass through untouched; uniqueness conflicts are resolved by the
    callers through ON CONFLICT.
    """
    try:
        yield
    except (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError, TimeoutError) as exc:
        raise TransientStorageError(f"Storage unavailable while trying to {action}") from exc
