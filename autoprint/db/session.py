from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from autoprint.settings import settings

class Base(DeclarativeBase):
    pass

def build_engine(database_uri: str) -> AsyncEngine:
    url = make_url(database_uri)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        # Concurrent worker pools write through separate connections.
        connect_args["timeout"] = 30
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(
        database_uri,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )

def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)

AsyncSessionLocal = build_session_factory(engine)

async def init_models(bind: AsyncEngine = engine) -> None:
    # Import for side effect: registers tables on Base.metadata
    from autoprint.db import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
