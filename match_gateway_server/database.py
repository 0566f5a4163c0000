"""Database engine and session setup"""
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from match_gateway_server.config import settings
from match_gateway_server.db_models import Base


def build_engine(database_url: str = None, echo: bool = None) -> Engine:
    """
    Create a database engine for the given URL.

    SQLite URLs get a thread-shareable connection (FastAPI runs sync
    dependencies in a threadpool); in-memory SQLite shares one connection so
    every session sees the same tables.
    """
    database_url = database_url or settings.database_url
    echo = settings.database_echo if echo is None else echo

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
        echo=echo,
        connect_args={"connect_timeout": settings.database_connect_timeout},
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine) -> None:
    """Create gateway tables if they do not exist yet"""
    Base.metadata.create_all(bind=engine)


def ping(engine: Engine) -> None:
    """Round-trip a trivial query; raises on connectivity failure"""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1")).fetchone()


engine = build_engine()
