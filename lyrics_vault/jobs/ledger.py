"""Idempotent status ledger for background enrichment jobs.

One row per ``(song_id, kind, run_id)``. Every transition is a single
atomic ``INSERT ... ON CONFLICT DO UPDATE`` against the unique constraint,
so two concurrent writers for the same run converge on one row instead of
racing a find-then-create.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lyrics_vault.errors import DatabaseError
from lyrics_vault.models.job import JobKind, JobStatus, ProcessingJob

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class JobRecord:
    """Snapshot of a ledger row after a transition."""

    id: uuid.UUID
    song_id: uuid.UUID
    kind: JobKind
    run_id: str
    status: JobStatus
    error: str | None
    started_at: datetime | None
    completed_at: datetime | None


def _to_record(row: ProcessingJob) -> JobRecord:
    return JobRecord(
        id=row.id,
        song_id=row.song_id,
        kind=JobKind(row.kind),
        run_id=row.run_id,
        status=JobStatus(row.status),
        error=row.error,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


class JobLedger:
    """Pure status ledger. No retry or timeout logic lives here.

    Args:
        session_factory: Async SQLAlchemy session factory. Each transition
            runs in its own short transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record_transition(
        self,
        song_id: uuid.UUID,
        kind: JobKind,
        run_id: str,
        status: JobStatus,
        error: str | None = None,
    ) -> JobRecord:
        """Upsert the ledger row for ``(song_id, kind, run_id)``.

        ``started_at`` is written only by the first PROCESSING transition and
        never overwritten. ``completed_at`` is written only when ``status`` is
        terminal. A FAILED transition keeps the previous ``error`` unless a new
        one is given; any other transition replaces it (normally clearing it).

        Raises:
            DatabaseError: The upsert failed. Callers must not proceed
                without a recorded status.
        """
        now = datetime.now(UTC)
        try:
            async with self._session_factory() as session:
                dialect = session.get_bind().dialect.name
                insert = _INSERT_BY_DIALECT.get(dialect)
                if insert is None:
                    raise DatabaseError("record_transition", f"unsupported dialect {dialect!r}")

                stmt = insert(ProcessingJob).values(
                    id=uuid.uuid4(),
                    song_id=song_id,
                    kind=kind,
                    run_id=run_id,
                    status=status,
                    error=error,
                    started_at=now if status == JobStatus.PROCESSING else None,
                    completed_at=now if status.is_terminal else None,
                )
                excluded = stmt.excluded
                stmt = stmt.on_conflict_do_update(
                    index_elements=["song_id", "kind", "run_id"],
                    set_={
                        "status": excluded.status,
                        "error": (
                            func.coalesce(excluded.error, ProcessingJob.error)
                            if status == JobStatus.FAILED
                            else excluded.error
                        ),
                        "started_at": func.coalesce(ProcessingJob.started_at, excluded.started_at),
                        "completed_at": func.coalesce(
                            excluded.completed_at, ProcessingJob.completed_at
                        ),
                        "updated_at": func.now(),
                    },
                ).returning(ProcessingJob)

                result = await session.execute(stmt)
                row = result.scalar_one()
                record = _to_record(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "Ledger write failed for song=%s kind=%s run=%s: %s", song_id, kind, run_id, exc
            )
            raise DatabaseError("record_transition", str(exc)) from exc

        logger.info("Job %s/%s run=%s -> %s", song_id, kind, run_id, status)
        return record

    async def list_for_song(self, song_id: uuid.UUID) -> list[JobRecord]:
        """Return every ledger row for a song, newest first."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ProcessingJob)
                    .where(ProcessingJob.song_id == song_id)
                    .order_by(ProcessingJob.created_at.desc())
                )
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise DatabaseError("list_jobs", str(exc)) from exc
