"""Asynchronous export pipeline: filters, collectors, renderers, job store, processor."""

from .errors import (
    CollectionError,
    CollectionTimeoutError,
    ExportError,
    PermissionDeniedError,
    RenderError,
    TransientStorageError,
    ValidationError,
)
from .filters import ExportRequest, FilterSet, normalize_filters, validate_export_request
from .processor import ExportProcessor

__all__ = [
    "CollectionError",
    "CollectionTimeoutError",
    "ExportError",
    "ExportProcessor",
    "ExportRequest",
    "FilterSet",
    "PermissionDeniedError",
    "RenderError",
    "TransientStorageError",
    "ValidationError",
    "normalize_filters",
    "validate_export_request",
]
