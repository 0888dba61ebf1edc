"""
Database connection and session management.
Provides SQLAlchemy engine, session factory, and base class.
"""
import logging
import os
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from lunarus.core.config import settings

logger = logging.getLogger(__name__)

# Production connection pool settings
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_PRE_PING = os.getenv("DB_POOL_PRE_PING", "true").lower() == "true"
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))  # 1 hour


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for database_url.

    SQLite is used for local development and tests; its connections are
    shared with the request thread pool, so same-thread checks are off.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=settings.log_level == "DEBUG"
        )
    return create_engine(
        database_url,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_pre_ping=DB_POOL_PRE_PING,
        pool_recycle=DB_POOL_RECYCLE,
        echo=settings.log_level == "DEBUG"
    )


engine = build_engine(settings.database_url)

# Create SessionLocal class for database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()

# Seed channels for every new server; ids are prefixed with the server id
# except for the default server, whose channel ids predate multi-server support.
DEFAULT_CHANNELS = [
    {"suffix": "general", "name": "general", "type": "text", "position": 10, "icon": "#", "linked": None, "room": None},
    {"suffix": "random", "name": "random", "type": "text", "position": 20, "icon": "#", "linked": None, "room": None},
    {"suffix": "voice-lobby", "name": "Lobby", "type": "voice", "position": 30, "icon": "\U0001F50A", "linked": "lobby-chat", "room": "lobby"},
    # Text chat that lives inside the voice channel
    {"suffix": "lobby-chat", "name": "lobby-chat", "type": "text", "position": 31, "icon": "#", "linked": None, "room": None},
]


def init_db(bind: Engine = None) -> None:
    """
    Initialize database by creating all tables.
    Should be called once during application setup.
    """
    from lunarus.db import models  # noqa: F401  Import models to register them with Base
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")


def seed_db(session_factory=None) -> None:
    """
    Seed the default server and its channels if they do not exist yet.
    """
    from lunarus.db.models import Server
    from lunarus.db.repository import Repository

    db = (session_factory or SessionLocal)()
    try:
        if db.get(Server, settings.default_server_id) is not None:
            logger.info(f"Default server '{settings.default_server_id}' already seeded")
            return

        Repository(db).create_server(
            name="Lunarus",
            icon=None,
            owner_id="system",
            server_id=settings.default_server_id,
            channel_prefix=None,
        )
        logger.info(f"Seeded default server '{settings.default_server_id}'")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
