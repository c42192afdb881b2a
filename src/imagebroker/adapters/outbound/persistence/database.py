"""SQLAlchemy async database session factory."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from imagebroker.config import Settings

from .models import Base


def create_engine(settings: Settings) -> AsyncEngine:
    url = settings.database_url
    connect_args: dict = {}

    if url.startswith("sqlite"):
        # SQLite uses a single-connection static pool; sizing args do not apply.
        return create_async_engine(url, echo=settings.app_debug)

    # asyncpg doesn't like 'sslmode' in the query string, it wants 'ssl' in connect_args
    if "sslmode=" in url:
        import ssl
        from sqlalchemy.engine.url import make_url

        parsed_url = make_url(url)
        query = dict(parsed_url.query)
        ssl_mode = query.pop("sslmode", "require")
        url = parsed_url.set(query=query).render_as_string(hide_password=False)

        if ssl_mode in ("require", "verify-full", "verify-ca"):
            connect_args["ssl"] = ssl.create_default_context()

    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.app_debug,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def create_session_factory(
    settings: Settings | None = None, *, engine: AsyncEngine | None = None
) -> async_sessionmaker[AsyncSession]:
    if engine is None:
        if settings is None:
            raise ValueError("either settings or engine is required")
        engine = create_engine(settings)
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly (tests and local SQLite runs; use alembic elsewhere)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

