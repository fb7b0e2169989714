"""Job store — durable export job records and the pending-job queue."""

from __future__ import annotations

import json
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.export_job import ExportJob
from ..utils.logging import get_logger
from .filters import ExportRequest

logger = get_logger("export.job_store")

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})

_STATUS_RANK = {
    STATUS_PENDING: 0,
    STATUS_PROCESSING: 1,
    STATUS_COMPLETED: 2,
    STATUS_FAILED: 2,
}

UPDATABLE_FIELDS = frozenset(
    {"status", "progress", "file_path", "file_size", "error_message", "completed_at"}
)


def job_data_types(job: ExportJob) -> dict:
    return json.loads(job.data_types_json) if job.data_types_json else {}


def job_filters(job: ExportJob) -> dict:
    return json.loads(job.filters_json) if job.filters_json else {}


def job_scheduling(job: ExportJob) -> dict:
    return json.loads(job.scheduling_json) if job.scheduling_json else {}


async def enqueue_export_job(
    session: AsyncSession,
    user_id: str,
    request: ExportRequest,
    retention_days: int = 7,
    now: Optional[datetime] = None,
) -> ExportJob:
    """Insert a validated request as a ``pending`` job at progress 0."""
    created_at = now or datetime.now(timezone.utc)
    job = ExportJob(
        user_id=user_id,
        name=request.name,
        data_types_json=json.dumps(request.data_types.model_dump()),
        filters_json=json.dumps(request.filters.model_dump(by_alias=True, exclude_none=True)),
        format=request.format,
        scheduling_json=json.dumps(request.scheduling.model_dump(exclude_none=True)),
        status=STATUS_PENDING,
        progress=0,
        created_at=created_at,
        expires_at=created_at + timedelta(days=retention_days),
    )
    session.add(job)
    await session.commit()
    await session.refresh(job)
    logger.info("export_job_enqueued", job_id=job.id, user_id=user_id, format=job.format)
    return job


async def get_export_job(
    session: AsyncSession, job_id: str, owner_id: Optional[str] = None
) -> Optional[ExportJob]:
    """Fetch a job, scoped to ``owner_id`` unless it is None."""
    query = select(ExportJob).where(ExportJob.id == job_id)
    if owner_id is not None:
        query = query.where(ExportJob.user_id == owner_id)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def list_export_jobs_by_user(
    session: AsyncSession,
    user_id: Optional[str],
    page: int = 1,
    page_size: int = 10,
    status: Optional[str] = None,
) -> tuple[list[ExportJob], dict]:
    """Newest-first history page. ``user_id=None`` lists every user's jobs."""
    page = max(page, 1)
    query = select(ExportJob)
    count_query = select(func.count(ExportJob.id))
    if user_id is not None:
        query = query.where(ExportJob.user_id == user_id)
        count_query = count_query.where(ExportJob.user_id == user_id)
    if status:
        query = query.where(ExportJob.status == status)
        count_query = count_query.where(ExportJob.status == status)

    total = (await session.execute(count_query)).scalar() or 0
    query = (
        query.order_by(ExportJob.created_at.desc(), ExportJob.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    jobs = list((await session.execute(query)).scalars().all())

    pagination = {
        "page": page,
        "limit": page_size,
        "total": total,
        "totalPages": math.ceil(total / page_size) if page_size else 0,
    }
    return jobs, pagination


def _check_transition(job: ExportJob, fields: dict) -> None:
    new_status = fields.get("status", job.status)
    if new_status not in _STATUS_RANK:
        raise ValueError(f"Unknown export status: {new_status}")
    if job.status in TERMINAL_STATUSES and new_status != job.status:
        raise ValueError(f"Export job {job.id} is already {job.status}")
    if _STATUS_RANK[new_status] < _STATUS_RANK[job.status]:
        raise ValueError(f"Export job {job.id} cannot move from {job.status} to {new_status}")

    progress = fields.get("progress")
    if progress is not None:
        if not 0 <= progress <= 100:
            raise ValueError("Progress must be between 0 and 100")
        if progress < (job.progress or 0):
            raise ValueError(
                f"Export job {job.id} progress cannot go from {job.progress} to {progress}"
            )


async def update_export_job(session: AsyncSession, job_id: str, **fields) -> Optional[ExportJob]:
    """Partially update a job's lifecycle fields.

    Only ``UPDATABLE_FIELDS`` may be patched; nothing else on the row is
    stamped. Returns None for an unknown job.
    """
    if not fields:
        raise ValueError("No fields to update")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update export job fields: {', '.join(sorted(unknown))}")

    job = await get_export_job(session, job_id)
    if job is None:
        return None

    _check_transition(job, fields)
    for key, value in fields.items():
        setattr(job, key, value)
    await session.commit()
    return job


async def delete_export_job(
    session: AsyncSession, job_id: str, owner_id: Optional[str] = None
) -> Optional[ExportJob]:
    """Delete a job row and return it, or None when missing or not owned."""
    job = await get_export_job(session, job_id, owner_id=owner_id)
    if job is None:
        return None
    await session.delete(job)
    await session.commit()
    logger.info("export_job_deleted", job_id=job_id)
    return job


async def list_pending_export_jobs(session: AsyncSession, limit: int = 5) -> list[ExportJob]:
    """Oldest pending jobs first, at most ``limit``."""
    result = await session.execute(
        select(ExportJob)
        .where(ExportJob.status == STATUS_PENDING)
        .order_by(ExportJob.created_at.asc(), ExportJob.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_expired_export_jobs(
    session: AsyncSession, now: Optional[datetime] = None
) -> list[ExportJob]:
    """Completed jobs with a file whose ``expires_at`` has passed."""
    now = now or datetime.now(timezone.utc)
    result = await session.execute(
        select(ExportJob).where(
            ExportJob.expires_at < now,
            ExportJob.status == STATUS_COMPLETED,
            ExportJob.file_path.is_not(None),
        )
    )
    return list(result.scalars().all())
