"""
Database connection and session management.
"""
from sqlmodel import create_engine, SQLModel, Session
from apps.core.settings import settings


def _engine_kwargs(database_url: str) -> dict:
    kwargs = {
        "echo": settings.database_echo,
        "pool_pre_ping": True,  # Verify connections before use
    }
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_recycle"] = 300  # Recycle connections every 5 minutes
    return kwargs


# Create database engine
engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))


def create_db_and_tables():
    """Create database tables."""
    import apps.db.models  # noqa: F401 - registers table metadata
    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency to get database session."""
    with Session(engine) as session:
        yield session
