"""Database models for the key-value storage backend."""
from sqlalchemy import Column, Integer, String, Text

from fluentcore.models.base import Base, TimestampMixin


class StorageEntry(Base, TimestampMixin):
    """One key of one storage namespace, stored as JSON text."""

    __tablename__ = "storage_entries"

    namespace = Column(String, primary_key=True)  # "sync" or "local"
    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
