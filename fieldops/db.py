from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from fieldops.config import settings


class Base(DeclarativeBase):
    pass


_engine = None


def get_engine():
    global _engine
    if _engine is None:
        if settings.database_url.startswith("sqlite"):
            _engine = create_engine(settings.database_url)
        else:
            _engine = create_engine(
                settings.database_url,
                pool_pre_ping=True,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
                pool_recycle=settings.db_pool_recycle,
            )
    return _engine


SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)


def get_db():
    """Centralized database session dependency for FastAPI.

    Yields a database session and ensures it is closed after the request.
    Service-order operations commit or roll back their own unit of work.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables for the configured engine."""
    import fieldops.models  # noqa: F401

    Base.metadata.create_all(get_engine())
