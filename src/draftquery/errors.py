"""Structured error types for draftquery."""

from __future__ import annotations


class DraftQueryError(Exception):
    """Base error for all draftquery errors."""


class AccessDeniedError(DraftQueryError):
    """Raised when access control denies the query outright."""

    def __init__(self, collection: str) -> None:
        self.collection = collection
        super().__init__(f"Access denied to versions of '{collection}'")


class InvalidQueryError(DraftQueryError):
    """Raised when a query predicate or sort specification is malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class StorageBackendError(DraftQueryError):
    """Raised when backend storage operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")
