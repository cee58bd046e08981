"""
Database engine, session factory and the FastAPI session dependency
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings

MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def build_engine(url: str, echo: bool = False):
    """
    PostgreSQL in production. SQLite runs in WAL mode with foreign keys
    enforced; an in-memory database keeps a single shared connection.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, echo=echo)

    options = {"connect_args": {"check_same_thread": False}}
    if url in MEMORY_URLS:
        options["poolclass"] = StaticPool
    sqlite_engine = create_engine(url, echo=echo, **options)

    @event.listens_for(sqlite_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Request-scoped session; services commit, this only closes"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
