"""Export retention manager — removes expired export files and their job rows."""

import os
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..export.job_store import list_expired_export_jobs
from ..models.export_job import ExportJob
from ..utils.logging import get_logger

logger = get_logger("maintenance.retention")


class ExportRetentionManager:
    """Deletes completed exports whose ``expires_at`` has passed."""

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = db_session_factory

    async def run_cleanup(self, now: Optional[datetime] = None) -> dict:
        """Run one cleanup pass.

        Returns a summary dict with the number of deleted job rows and files.
        """
        now = now or datetime.now(timezone.utc)
        files_deleted = 0

        async with self._session_factory() as session:
            expired = await list_expired_export_jobs(session, now=now)

            for export in expired:
                if export.file_path and os.path.exists(export.file_path):
                    try:
                        os.remove(export.file_path)
                        files_deleted += 1
                    except OSError as e:
                        logger.warning(
                            "retention_file_delete_failed",
                            job_id=export.id,
                            file_path=export.file_path,
                            error=str(e),
                        )

            deleted_rows = 0
            if expired:
                result = await session.execute(
                    delete(ExportJob).where(ExportJob.id.in_([e.id for e in expired]))
                )
                deleted_rows = result.rowcount
            await session.commit()

        summary = {"export_jobs": deleted_rows, "export_files_deleted": files_deleted}
        logger.info("retention_cleanup_complete", summary=summary)
        return summary
