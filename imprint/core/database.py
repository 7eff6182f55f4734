from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from imprint.core.config import settings

# Import ALL models to ensure they're registered with SQLModel.metadata
from imprint.modules.templates.models import Template
from imprint.modules.uploads.models import Upload


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine; in-memory SQLite shares one connection."""
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_async_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(database_url, echo=False, future=True)


engine = build_engine(settings.DATABASE_URL)

async_session_maker = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def create_db_and_tables(target: AsyncEngine = engine):
    """Create all tables if they don't exist."""
    async with target.begin() as conn:
        await conn.run_sync(lambda sync_conn: SQLModel.metadata.create_all(sync_conn, checkfirst=True))


async def get_session() -> AsyncSession:
    async with async_session_maker() as session:
        yield session
