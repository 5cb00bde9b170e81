"""Apply layer - send YAML documents to orchestration servers."""

from .client import (
    ApplyAuthError,
    ApplyError,
    Changes,
    OrchestrationClient,
    TaskFailedError,
    TaskState,
    find_server,
)
from .documents import Document, load_documents, parse_documents, parse_value_overrides

__all__ = [
    "ApplyAuthError",
    "ApplyError",
    "Changes",
    "Document",
    "OrchestrationClient",
    "TaskFailedError",
    "TaskState",
    "find_server",
    "load_documents",
    "parse_documents",
    "parse_value_overrides",
]
