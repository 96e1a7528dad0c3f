"""Job status tracking - SQLAlchemy ORM version.

One row per enqueued job id. Rows are owned by a single worker invocation
at a time, so writes are plain last-write-wins updates.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any, AsyncContextManager

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sectorscope.core.logging import get_logger
from sectorscope.database.connection import get_session
from sectorscope.database.orm import JobStatus


logger = get_logger("repositories.job_status")

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def _status_to_dict(row: JobStatus) -> dict[str, Any]:
    """Convert ORM model to dictionary."""
    return {
        "id": row.id,
        "job_id": row.job_id,
        "job_type": row.job_type,
        "related_id": row.related_id,
        "status": row.status,
        "progress": row.progress,
        "error_message": row.error_message,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def clamp_progress(progress: int | float) -> int:
    return max(0, min(100, int(progress)))


class JobStatusTracker:
    """Persistent status and progress for queued jobs."""

    def __init__(self, session_factory: SessionFactory = get_session):
        self._session_factory = session_factory

    async def create(self, job_id: str, job_type: str, related_id: str) -> bool:
        """Create a waiting record. Returns False if the job id already exists."""
        async with self._session_factory() as session:
            session.add(
                JobStatus(
                    job_id=job_id,
                    job_type=job_type,
                    related_id=related_id,
                    status="waiting",
                    progress=0,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def _update(self, job_id: str, **values: Any) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(JobStatus).where(JobStatus.job_id == job_id).values(**values)
            )
            await session.commit()

        if result.rowcount == 0:
            logger.warning(
                f"Status update for unknown job {job_id} ignored",
                extra={"extra_fields": {"values": list(values)}},
            )

    async def mark_active(self, job_id: str, progress: int = 0) -> None:
        await self._update(job_id, status="active", progress=clamp_progress(progress))

    async def update_progress(self, job_id: str, progress: int | float) -> None:
        """Store progress clamped to [0, 100]; status is left unchanged."""
        await self._update(job_id, progress=clamp_progress(progress))

    async def mark_completed(self, job_id: str) -> None:
        await self._update(job_id, status="completed", progress=100)

    async def mark_failed(self, job_id: str, error_message: str) -> None:
        await self._update(job_id, status="failed", error_message=error_message)

    async def get(self, job_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(JobStatus).where(JobStatus.job_id == job_id)
            )
            row = result.scalar_one_or_none()
            return _status_to_dict(row) if row else None

    async def list_by_related_id(self, related_id: str) -> list[dict[str, Any]]:
        """All jobs for one entity, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(JobStatus)
                .where(JobStatus.related_id == related_id)
                .order_by(JobStatus.created_at.desc(), JobStatus.id.desc())
            )
            return [_status_to_dict(row) for row in result.scalars().all()]

    async def list_by_related_ids(
        self, related_ids: Iterable[str]
    ) -> list[dict[str, Any]]:
        """All jobs for a set of entities, least recently updated first."""
        ids = list(dict.fromkeys(related_ids))
        if not ids:
            return []

        async with self._session_factory() as session:
            result = await session.execute(
                select(JobStatus)
                .where(JobStatus.related_id.in_(ids))
                .order_by(JobStatus.updated_at.asc(), JobStatus.id.asc())
            )
            return [_status_to_dict(row) for row in result.scalars().all()]

    async def discard(self, job_id: str) -> None:
        """Remove a record whose job never reached the queue."""
        async with self._session_factory() as session:
            await session.execute(delete(JobStatus).where(JobStatus.job_id == job_id))
            await session.commit()

    async def purge_older_than(self, retention_days: int) -> int:
        """Delete completed records last updated before the retention horizon."""
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(JobStatus).where(
                    JobStatus.status == "completed",
                    JobStatus.updated_at < cutoff,
                )
            )
            await session.commit()

        deleted = result.rowcount or 0
        logger.info(f"Purged {deleted} completed job status records older than {retention_days}d")
        return deleted
