"""Export pipeline error taxonomy."""


class ExportError(Exception):
    """Base class for all export pipeline errors."""


class ValidationError(ExportError):
    """Malformed or inconsistent export request. The job is never created."""


class PermissionDeniedError(ExportError):
    """The caller's role may not export the requested data types."""


class TransientStorageError(ExportError):
    """A storage connection could not be acquired within the retry budget."""


class CollectionError(ExportError):
    """A data collector failed for one entity type."""

    def __init__(self, message: str, entity_type: str | None = None):
        super().__init__(message)
        self.entity_type = entity_type


class CollectionTimeoutError(ExportError, TimeoutError):
    """Data collection exceeded its deadline."""

    def __init__(self, message: str = "Data collection timeout"):
        super().__init__(message)


class RenderError(ExportError):
    """A file renderer could not produce its output."""
