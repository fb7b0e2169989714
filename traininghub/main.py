"""TrainingHub export service — FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.router import api_router
from .database import close_engine, create_tables
from .dependencies import get_app_config, get_export_processor, get_retention_manager
from .middleware.error_handler import register_error_handlers
from .middleware.request_id import RequestIDMiddleware
from .utils.logging import get_logger, setup_logging

config = get_app_config()
logger = get_logger("main")

_background_tasks: dict[str, asyncio.Task] = {}


def _register_task(name: str, coro_factory) -> asyncio.Task:
    """Register and start a named background task."""
    task = asyncio.create_task(coro_factory())
    _background_tasks[name] = task
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(
        debug=config.debug,
        log_dir=config.log_dir,
        log_max_bytes=config.log_max_bytes,
        log_backup_count=config.log_backup_count,
        database_log_level=config.database_log_level,
    )
    logger.info("traininghub_starting", version=__version__)

    await create_tables(config)

    processor = None
    if config.export_processor_enabled:
        processor = get_export_processor()
        await processor.start()

    async def _retention_cleanup_loop():
        manager = get_retention_manager()
        while True:
            try:
                await asyncio.sleep(config.export_cleanup_interval)
                logger.info("retention_cleanup_starting")
                await manager.run_cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("retention_cleanup_error", error=str(e))

    if config.export_cleanup_interval > 0:
        _register_task("retention_cleanup", _retention_cleanup_loop)

    logger.info("traininghub_started")
    yield

    logger.info("traininghub_stopping")

    if processor is not None:
        try:
            await asyncio.wait_for(processor.stop(), timeout=config.export_stop_timeout)
        except asyncio.TimeoutError:
            logger.error("export_processor_stop_timeout", in_flight=len(processor.in_flight))
            # Job tasks must not outlive the engine
            await processor.cancel_in_flight()
        except Exception as e:
            logger.error("export_processor_stop_failed", error=str(e))

    for task in _background_tasks.values():
        if not task.done():
            task.cancel()
    pending = [t for t in _background_tasks.values() if not t.done()]
    if pending:
        await asyncio.wait(pending, timeout=3.0)
    _background_tasks.clear()

    await close_engine()
    logger.info("traininghub_stopped")


app = FastAPI(
    title="TRAININGHUB",
    description="Training application workflow API: asynchronous data exports",
    version=__version__,
    lifespan=lifespan,
)

# Register standard error handlers
register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

# Request ID — added last so it runs first
app.add_middleware(RequestIDMiddleware)

app.include_router(api_router)


@app.get("/health")
async def health():
    """Service health, including the export processor."""
    processor = get_export_processor()
    return {
        "status": "ok",
        "version": __version__,
        "export_processor": await processor.health_check(),
    }


def main():
    """Run the TrainingHub server."""
    uvicorn.run(
        "traininghub.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
