"""Export processor — background worker that turns pending export jobs into files.

Polls the job store for pending jobs, dispatches each one as its own asyncio
task and walks it through processing -> collect -> render -> completed, or
failed with an error message. Every job task owns its own session.
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import TrainingHubConfig
from ..models.export_job import ExportJob
from ..utils.logging import bind_job_context, clear_job_context
from ..workers.base_worker import BackgroundWorker
from .collectors import DataCollector, get_collectors
from .errors import CollectionError, CollectionTimeoutError, ExportError, TransientStorageError
from .filters import ENTITY_TYPES, FilterSet, normalize_filters
from .job_store import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    job_data_types,
    job_filters,
    list_pending_export_jobs,
    update_export_job,
)
from .renderers import build_export_file_name, render_export_file


class ExportProcessor(BackgroundWorker):
    """Polls for pending export jobs and processes them concurrently."""

    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        config: TrainingHubConfig,
        collectors: Optional[dict[str, DataCollector]] = None,
    ):
        super().__init__(name="export_processor")
        self._session_factory = db_session_factory
        self._collectors = collectors if collectors is not None else get_collectors()
        self._output_dir: Path = config.export_path

        self._poll_interval = config.export_poll_interval
        self._batch_size = config.export_batch_size
        self._collection_timeout = config.export_collection_timeout
        self._connect_timeout = config.export_connect_timeout
        self._connect_retries = config.export_connect_retries
        self._backoff_base = config.export_retry_backoff_base
        self._drain_check_interval = config.export_drain_check_interval

        # Job ids currently being processed; only touched from the event loop
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None

        self._polls = 0
        self._jobs_dispatched = 0
        self._jobs_completed = 0
        self._jobs_failed = 0
        self._last_poll_at: Optional[datetime] = None

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    # ── Lifecycle ──────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self.health_status = "running"
        self._poll_task = asyncio.create_task(self._poll_loop())
        self.heartbeat()
        self.logger.info(
            "export_processor_started",
            poll_interval=self._poll_interval,
            batch_size=self._batch_size,
        )

    async def stop(self) -> None:
        """Stop polling, then wait for every in-flight job to finish."""
        self.running = False
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass

        while self._in_flight:
            self.logger.info("export_processor_draining", in_flight=len(self._in_flight))
            await asyncio.sleep(self._drain_check_interval)

        self.health_status = "stopped"
        self.logger.info("export_processor_stopped")

    async def cancel_in_flight(self) -> int:
        """Cancel job tasks still running and wait for their cleanup. Returns the count."""
        tasks = [t for t in self._tasks if not t.done()]
        if not tasks:
            return 0
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.warning("export_jobs_cancelled", count=len(tasks))
        return len(tasks)

    async def health_check(self) -> dict:
        self.heartbeat()
        return {
            "status": self.health_status,
            "details": {
                "in_flight": len(self._in_flight),
                "polls": self._polls,
                "jobs_dispatched": self._jobs_dispatched,
                "jobs_completed": self._jobs_completed,
                "jobs_failed": self._jobs_failed,
                "last_poll_at": self._last_poll_at.isoformat() if self._last_poll_at else None,
            },
        }

    def get_status(self) -> dict:
        status = super().get_status()
        status["in_flight"] = len(self._in_flight)
        status["last_poll_at"] = self._last_poll_at.isoformat() if self._last_poll_at else None
        return status

    # ── Polling ────────────────────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while self.running:
            try:
                await self.poll_once()
                await asyncio.sleep(self._poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("export_poll_error", error=str(e))
                await asyncio.sleep(self._poll_interval)

    async def _acquire_session(self) -> AsyncSession:
        """Open a session with a live connection, retrying with exponential backoff."""
        last_error: Optional[BaseException] = None
        for attempt in range(1, self._connect_retries + 1):
            session = self._session_factory()
            try:
                await asyncio.wait_for(session.connection(), timeout=self._connect_timeout)
                return session
            except (asyncio.TimeoutError, SQLAlchemyError, OSError) as exc:
                last_error = exc
                await session.close()
                self.logger.warning(
                    "export_connection_attempt_failed",
                    attempt=attempt,
                    max_attempts=self._connect_retries,
                    error=str(exc) or exc.__class__.__name__,
                )
                if attempt < self._connect_retries:
                    await asyncio.sleep(self._backoff_base * 2 ** attempt)
            except BaseException:
                await session.close()
                raise

        raise TransientStorageError(
            f"Could not acquire a database connection after "
            f"{self._connect_retries} attempts: {last_error}"
        )

    async def poll_once(self) -> list[str]:
        """Run one poll cycle. Returns the ids of the jobs dispatched."""
        self._polls += 1
        self._last_poll_at = datetime.now(timezone.utc)
        self.heartbeat()

        try:
            session = await self._acquire_session()
        except TransientStorageError as exc:
            self.logger.error("export_poll_skipped", error=str(exc))
            return []

        try:
            jobs = await list_pending_export_jobs(session, limit=self._batch_size)
        finally:
            await session.close()

        dispatched = []
        for job in jobs:
            if job.id in self._in_flight:
                continue
            # Claimed before the task starts so the next poll cannot re-dispatch it
            self._in_flight.add(job.id)
            task = asyncio.create_task(self.process_job(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            dispatched.append(job.id)

        if dispatched:
            self._jobs_dispatched += len(dispatched)
            self.logger.info("export_jobs_dispatched", count=len(dispatched), job_ids=dispatched)
        return dispatched

    # ── Job processing ─────────────────────────────────────────────────────

    async def _advance(self, session: AsyncSession, job_id: str, **fields) -> None:
        job = await update_export_job(session, job_id, **fields)
        if job is None:
            raise ExportError(f"Export job {job_id} no longer exists")

    async def process_job(self, job: ExportJob) -> None:
        """Run one job to a terminal state. Never raises."""
        job_id = job.id
        session: Optional[AsyncSession] = None
        self._in_flight.add(job_id)
        bind_job_context(job_id)
        self.logger.info("export_job_started", job_id=job_id, format=job.format)

        try:
            session = await self._acquire_session()
            await self._advance(session, job_id, status=STATUS_PROCESSING, progress=0)

            filters = normalize_filters(job_filters(job), now=datetime.now(timezone.utc))
            try:
                dataset = await asyncio.wait_for(
                    self.collect_data(session, job, filters),
                    timeout=self._collection_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise CollectionTimeoutError() from exc
            await self._advance(session, job_id, progress=75)

            file_name = build_export_file_name(job.name, job_id)
            loop = asyncio.get_running_loop()
            file_path, file_size = await loop.run_in_executor(
                None, render_export_file, dataset, job.format, file_name, self._output_dir
            )
            await self._advance(session, job_id, progress=90)

            await self._advance(
                session,
                job_id,
                status=STATUS_COMPLETED,
                progress=100,
                file_path=file_path,
                file_size=file_size,
                completed_at=datetime.now(timezone.utc),
            )
            self._jobs_completed += 1
            self.logger.info(
                "export_job_completed",
                job_id=job_id,
                file_path=file_path,
                file_size=file_size,
                records={k: len(v) for k, v in dataset.items()},
            )
        except Exception as exc:
            self._jobs_failed += 1
            message = str(exc) or exc.__class__.__name__
            self.logger.error("export_job_failed", job_id=job_id, error=message)
            await self._mark_failed(session, job_id, message)
        finally:
            if session is not None:
                await session.close()
            self._in_flight.discard(job_id)
            clear_job_context()

    async def _mark_failed(
        self, session: Optional[AsyncSession], job_id: str, message: str
    ) -> None:
        """Best-effort write of the failed status; a failing write is only logged."""
        owned = session is None
        try:
            if owned:
                session = await self._acquire_session()
            else:
                await session.rollback()
            await update_export_job(
                session, job_id, status=STATUS_FAILED, error_message=message
            )
        except Exception as exc:
            self.logger.error(
                "export_job_status_write_failed",
                job_id=job_id,
                status=STATUS_FAILED,
                error=str(exc),
            )
        finally:
            if owned and session is not None:
                await session.close()

    async def collect_data(
        self, session: AsyncSession, job: ExportJob, filters: FilterSet
    ) -> dict[str, list[dict]]:
        """Collect every requested entity type.

        A failing type is logged and left out of the dataset; only when every
        requested type fails does the job fail.
        """
        data_types = job_data_types(job)
        requested = [name for name in ENTITY_TYPES if data_types.get(name)]
        dataset: dict[str, list[dict]] = {}
        failures: dict[str, str] = {}

        for entity_type in requested:
            collector = self._collectors.get(entity_type)
            if collector is None:
                failures[entity_type] = f"No collector registered for {entity_type}"
                continue
            try:
                dataset[entity_type] = await collector.collect(filters, session)
            except CollectionError as exc:
                failures[entity_type] = str(exc)
                await session.rollback()
                self.logger.warning(
                    "export_collection_failed",
                    job_id=job.id,
                    entity_type=entity_type,
                    error=str(exc),
                )

        if requested and len(failures) == len(requested):
            detail = "; ".join(f"{k}: {v}" for k, v in failures.items())
            raise CollectionError(f"Data collection failed for all requested types ({detail})")
        return dataset
