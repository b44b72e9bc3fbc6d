from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from digistore.config import settings


def build_engine(url: str):
    return create_async_engine(url, pool_pre_ping=True)


def build_session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL) if settings.POSTGRES_CONNECTION_STRING else None
AsyncSessionLocal = build_session_factory(engine) if engine is not None else None
