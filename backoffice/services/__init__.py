"""Domain services backing the backoffice API."""

from .catalog import build_services
from .documents import DocumentNotFoundError, DocumentRepository, Query
from .uploads import UploadStore

__all__ = [
    "DocumentNotFoundError",
    "DocumentRepository",
    "Query",
    "UploadStore",
    "build_services",
]
