from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from settings import settings

DATABASE_URL = settings.DATABASE_URL

engine_kwargs = {"echo": settings.SQL_ECHO}
if DATABASE_URL.startswith("sqlite"):
    # An in-memory SQLite database only lives as long as its single connection.
    engine_kwargs.update({"poolclass": StaticPool, "connect_args": {"check_same_thread": False}})
else:
    engine_kwargs["pool_pre_ping"] = True

# Creates the async database engine
engine = create_async_engine(DATABASE_URL, **engine_kwargs)

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    autocommit=False, autoflush=False, bind=engine, class_=AsyncSession, expire_on_commit=False
)

async def get_db():
    """
    Dependency that provides a database session for every request.
    """
    async with AsyncSessionLocal() as session:
        yield session

async def create_tables():
    import models
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
