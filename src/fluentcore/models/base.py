"""Base model configuration."""
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import Column, DateTime, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from fluentcore.config import settings

# Create declarative base class
Base = declarative_base()


class TimestampMixin:
    """Mixin to add timestamp columns to models."""
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


def make_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create an engine for the given database URL (configured URL by default)."""
    url = url or settings.database.url
    echo = settings.database.echo if echo is None else echo
    if url in ("sqlite://", "sqlite:///:memory:"):
        # Every session must see the same in-memory database
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Initialize database."""
    # Imported for its side effect of registering the tables
    from fluentcore.models import models  # noqa: F401

    Base.metadata.create_all(bind=engine)  # Create tables if they don't exist
