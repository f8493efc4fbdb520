"""
Database models for the persisted instant-upload index

Sidecar metadata files remain the source of truth; this table is a
hash -> location map that can be rebuilt from them at any time.
"""
from datetime import datetime

from sqlalchemy import String, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


class DedupRecord(Base):
    """Content hash of a stored file and where it lives under the storage root"""
    __tablename__ = "dedup_records"

    file_hash: Mapped[str] = mapped_column(String(128), primary_key=True)
    relative_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<DedupRecord(file_hash={self.file_hash}, relative_path={self.relative_path})>"
