from sqlalchemy import JSON, Column, DateTime, Integer, String

from signatura.clock import utcnow
from signatura.database import Base


class Record(Base):
    """One keyed document: wallet entries, share grants, token indexes, OTP state."""

    __tablename__ = "records"

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class RecordEntry(Base):
    """Append-only log line (access logs, wallet audit). One row per entry."""

    __tablename__ = "record_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False, index=True)
    value = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
