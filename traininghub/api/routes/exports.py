"""Export routes — create, track, download and delete asynchronous exports.

Jobs created here are picked up by the background ``ExportProcessor``; these
endpoints never render files themselves.
"""

import os
from typing import Literal, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ...dependencies import get_app_config, get_current_user, get_db
from ...config import TrainingHubConfig
from ...export.filters import ROLE_SUPER_ADMIN, validate_export_request
from ...export.job_store import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    delete_export_job,
    enqueue_export_job,
    get_export_job,
    list_export_jobs_by_user,
)
from ...export.renderers import MEDIA_TYPES
from ...models.export_job import ExportJob
from ...utils.logging import get_logger

logger = get_logger("api.exports")

router = APIRouter(prefix="/exports", tags=["exports"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _owner_scope(current_user: dict) -> Optional[str]:
    """Super admins see every job; everyone else only their own."""
    if current_user.get("role") == ROLE_SUPER_ADMIN:
        return None
    return current_user["sub"]


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _job_to_dict(job: ExportJob) -> dict:
    data = {
        "id": job.id,
        "name": job.name,
        "status": job.status,
        "progress": job.progress,
        "format": job.format,
        "createdAt": _iso(job.created_at),
        "completedAt": _iso(job.completed_at),
    }
    if job.status == STATUS_COMPLETED and job.file_path:
        data["fileSize"] = job.file_size
        data["downloadUrl"] = f"/api/v1/exports/{job.id}/download"
    if job.status == STATUS_FAILED:
        data["errorMessage"] = job.error_message
    return data


def _envelope(status_code: int, data=None, message: Optional[str] = None) -> dict:
    body = {"success": True, "statusCode": status_code}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


async def _get_job_or_404(db: AsyncSession, export_id: str, current_user: dict) -> ExportJob:
    job = await get_export_job(db, export_id, owner_id=_owner_scope(current_user))
    if job is None:
        raise HTTPException(status_code=404, detail="Export job not found")
    return job


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_export(
    payload: dict = Body(...),
    db: AsyncSession = Depends(get_db),
    config: TrainingHubConfig = Depends(get_app_config),
    current_user: dict = Depends(get_current_user),
):
    """Validate an export request and queue it for background processing."""
    request = validate_export_request(payload, current_user.get("role", ""))
    job = await enqueue_export_job(
        db,
        user_id=current_user["sub"],
        request=request,
        retention_days=config.export_retention_days,
    )
    return _envelope(
        status.HTTP_201_CREATED,
        {"exportId": job.id, "status": job.status},
        message="Export job created successfully",
    )


@router.get("/")
async def list_exports(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[Literal["pending", "processing", "completed", "failed"]] = Query(
        None, alias="status"
    ),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Export history, newest first."""
    jobs, pagination = await list_export_jobs_by_user(
        db,
        _owner_scope(current_user),
        page=page,
        page_size=limit,
        status=status_filter,
    )
    return _envelope(200, {"exports": [_job_to_dict(j) for j in jobs], "pagination": pagination})


@router.get("/{export_id}")
async def get_export_status(
    export_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Status, progress and (when finished) file or error details of one export."""
    job = await _get_job_or_404(db, export_id, current_user)
    return _envelope(200, _job_to_dict(job))


@router.get("/{export_id}/download")
async def download_export(
    export_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Stream the rendered export file."""
    job = await _get_job_or_404(db, export_id, current_user)

    if job.status != STATUS_COMPLETED:
        raise HTTPException(
            status_code=400,
            detail=f"Export is not ready - current status: {job.status}",
        )

    if not job.file_path or not os.path.isfile(job.file_path):
        raise HTTPException(status_code=404, detail="Export file not found on disk")

    return FileResponse(
        path=job.file_path,
        media_type=MEDIA_TYPES.get(job.format, "application/octet-stream"),
        filename=os.path.basename(job.file_path),
    )


@router.delete("/{export_id}")
async def delete_export(
    export_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Delete an export job and its file."""
    job = await delete_export_job(db, export_id, owner_id=_owner_scope(current_user))
    if job is None:
        raise HTTPException(status_code=404, detail="Export job not found")

    if job.file_path and os.path.isfile(job.file_path):
        try:
            os.remove(job.file_path)
        except OSError as e:
            logger.warning("export_file_delete_failed", job_id=export_id, error=str(e))

    return _envelope(200, message="Export deleted successfully")
