"""
SQLAlchemy mapping of River's ``river_job`` table and session handling.

Only the columns the migration reads are mapped. The adapter never writes
to the table.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# River's states for jobs that have not run to completion yet
PENDING_STATES = ("available", "scheduled", "retryable")

Base = declarative_base()


class RiverJob(Base):
    """One row of River's job table."""

    __tablename__ = "river_job"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    kind = Column(Text, nullable=False)
    # jsonb in PostgreSQL; drivers hand it back decoded, SQLite as text.
    args = Column(Text, nullable=True)
    queue = Column(Text, nullable=False, default="default")
    state = Column(String(32), nullable=False, default="available", index=True)
    priority = Column(Integer, nullable=False, default=1)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    metadata_ = Column("metadata", Text, nullable=True)


def create_river_engine(database_url: str, timeout: float = 30.0) -> Engine:
    """Create an engine for the River database with a bounded connect time."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": timeout},
            poolclass=StaticPool,
            echo=False,
        )
    return create_engine(
        database_url,
        connect_args={"connect_timeout": max(1, int(timeout))},
        pool_pre_ping=True,
        echo=False,
    )


def init_db(engine: Engine):
    """Create the River table. Used for local fixtures only."""
    Base.metadata.create_all(bind=engine)
    logger.info(f"River table ensured on {engine.url.render_as_string(hide_password=True)}")


@contextmanager
def get_db_session(engine: Engine):
    """Context manager for read-only database sessions."""
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db: Session = session_factory()
    try:
        yield db
    except Exception as e:
        db.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        db.close()
