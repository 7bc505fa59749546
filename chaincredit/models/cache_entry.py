from sqlalchemy import Column, DateTime, LargeBinary, String
from sqlalchemy.sql import func

from chaincredit.core.database import Base


class CacheEntryRow(Base):
    """Persistent cache tier and transaction journal, keyed by namespaced string."""

    __tablename__ = "cache_entries"

    key = Column(String(255), primary_key=True, index=True)
    value = Column(LargeBinary, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
