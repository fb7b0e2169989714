"""Abstract base class for long-running background workers."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from ..utils.logging import get_logger


class BackgroundWorker(ABC):
    """Base class for workers that run alongside the API on the event loop.

    Provides a standard lifecycle (start/stop) and health reporting interface.
    """

    def __init__(self, name: str):
        self.name = name
        self.running = False
        self.health_status = "initialized"
        self.last_heartbeat: Optional[datetime] = None
        self.logger = get_logger(f"worker.{name}")

    @abstractmethod
    async def start(self) -> None:
        """Start the worker's processing loop."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully stop the worker."""
        ...

    @abstractmethod
    async def health_check(self) -> dict:
        """Return worker health status.

        Returns:
            dict with keys: status (str), details (dict)
        """
        ...

    def heartbeat(self) -> None:
        """Update the last heartbeat timestamp."""
        self.last_heartbeat = datetime.now(timezone.utc)

    def get_status(self) -> dict:
        """Get current worker status."""
        return {
            "name": self.name,
            "running": self.running,
            "health_status": self.health_status,
            "last_heartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
        }
