"""Persistent cache table definitions"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, LargeBinary, String
from sqlmodel import Field, SQLModel


class CacheEntry(SQLModel, table=True):
    """A rendered artifact keyed by its fingerprint"""
    __tablename__ = "artifacts"
    fingerprint: str = Field(..., primary_key=True, max_length=64)
    content: bytes = Field(..., sa_column=Column(LargeBinary, nullable=False))
    checksum: str = Field(..., sa_column=Column(String(64), nullable=False))
    size: int = Field(..., nullable=False, description="Length of content in bytes")
    last_access: int = Field(default=0, sa_column=Column(Integer, nullable=False, index=True))
    created_at: datetime = Field(default_factory=datetime.now, sa_column=Column(DateTime(timezone=False), nullable=False))


class CacheInfo(SQLModel, table=True):
    """Key-value facts about the store itself (e.g. format_version)"""
    __tablename__ = "cache_info"
    key: str = Field(primary_key=True)
    value: str = Field(..., nullable=False)
