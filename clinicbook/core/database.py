from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator, Optional
import redis
from .config import settings

def build_engine(url: str) -> Engine:
    """Create an engine with pool settings suited to the database backend."""
    if url.startswith("sqlite"):
        # SQLite serializes writers; give concurrent bookings time to queue
        connect_args = {"check_same_thread": False, "timeout": 30}
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(url, connect_args=connect_args)

    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
    )

engine = build_engine(settings.get_database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Redis is only used for the advisory slot cache
redis_client: Optional[redis.Redis] = None
if settings.SLOT_CACHE_ENABLED:
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis() -> Optional[redis.Redis]:
    """Get Redis client, or None when the slot cache is disabled."""
    return redis_client

# Database initialization
def init_db(bind: Optional[Engine] = None):
    """Initialize database tables."""
    from ..models import appointment, doctor, patient  # noqa: F401  register tables

    Base.metadata.create_all(bind=bind or engine)
