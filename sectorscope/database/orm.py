"""SQLAlchemy ORM models for the research pipeline.

Entity hierarchy:
    SectorAnalysis -> SubSector -> Stock -> StockAnalysis (one per stock)

JobStatus rows mirror queued work and point at any of the above through
``related_id``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# JSONB on PostgreSQL, generic JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class SectorAnalysis(Base):
    """Root research request for one sector."""
    __tablename__ = "sector_analyses"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sector_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="in_progress")
    full_report: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    sub_sectors: Mapped[list[SubSector]] = relationship(
        back_populates="sector_analysis", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'failed')",
            name="status",
        ),
        Index("idx_sector_analyses_user", "user_id"),
    )


class SubSector(Base):
    """Thematic grouping discovered by sector research."""
    __tablename__ = "sub_sectors"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    sector_analysis_id: Mapped[str] = mapped_column(
        ForeignKey("sector_analyses.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    sector_analysis: Mapped[SectorAnalysis] = relationship(back_populates="sub_sectors")
    stocks: Mapped[list[Stock]] = relationship(
        back_populates="sub_sector", cascade="all, delete-orphan", order_by="Stock.rank"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'analyzing', 'completed')",
            name="status",
        ),
        Index("idx_sub_sectors_sector_analysis", "sector_analysis_id"),
    )


class Stock(Base):
    """Company candidate within a sub-sector. Rank 0 means not yet ranked."""
    __tablename__ = "stocks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    sub_sector_id: Mapped[str] = mapped_column(
        ForeignKey("sub_sectors.id", ondelete="CASCADE"), nullable=False
    )
    company_name: Mapped[str] = mapped_column(String(200), nullable=False)
    ticker: Mapped[str | None] = mapped_column(String(20))
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    preliminary_notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    sub_sector: Mapped[SubSector] = relationship(back_populates="stocks")
    analysis: Mapped[StockAnalysis | None] = relationship(
        back_populates="stock", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("rank >= 0", name="rank_non_negative"),
        Index("idx_stocks_sub_sector", "sub_sector_id"),
    )


class StockAnalysis(Base):
    """Deep-dive artifact for one stock."""
    __tablename__ = "stock_analyses"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    stock_id: Mapped[str] = mapped_column(
        ForeignKey("stocks.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    raw_analysis: Mapped[str] = mapped_column(Text, nullable=False, default="")
    judge_review: Mapped[str] = mapped_column(Text, nullable=False, default="")
    insights: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    stock: Mapped[Stock] = relationship(back_populates="analysis")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'analyzing', 'review_failed', 'completed')",
            name="status",
        ),
        CheckConstraint("attempt_count BETWEEN 1 AND 3", name="attempt_count"),
    )


class JobStatus(Base):
    """Tracking record for one unit of queued work."""
    __tablename__ = "job_statuses"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    job_type: Mapped[str] = mapped_column(String(30), nullable=False)
    related_id: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="waiting")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting', 'active', 'completed', 'failed')",
            name="status",
        ),
        CheckConstraint("progress BETWEEN 0 AND 100", name="progress_range"),
        Index("idx_job_statuses_related", "related_id"),
        Index("idx_job_statuses_status_updated", "status", "updated_at"),
    )
