"""Exception hierarchy for notegraph.

Every error carries an ``ErrorCode`` and a ``details`` dict so a CLI or
API layer can relay it without parsing messages. Logic errors propagate
to the caller unchanged; only embedding failures during note capture are
caught and degraded.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

# Longest string kept for free-text values copied into ``details``
_DETAIL_CHARS = 100


class ErrorCode(Enum):
    """Stable numeric codes, grouped by area."""

    # Notes (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_BODY_REQUIRED = 1004

    # Edges and the edge event log (2xxx)
    EDGE_INVALID = 2001
    EDGE_NOT_FOUND = 2003
    EDGE_SELF_REFERENCE = 2004
    EDGE_ALREADY_ACCEPTED = 2005
    EDGE_NOT_SUGGESTED = 2006
    EDGE_NOTHING_TO_UNDO = 2007

    # Tags (3xxx)
    TAG_INVALID = 3002

    # Record store (4xxx)
    STORAGE_WRITE_FAILED = 4002
    STORAGE_BATCH_FAILED = 4008

    # Bulk edge operations (45xx)
    BULK_OPERATION_PARTIAL = 4502

    # Search (5xxx)
    SEARCH_FAILED = 5001
    SEARCH_INVALID_QUERY = 5002
    SEARCH_NO_QUERY_VECTOR = 5003

    # Settings (6xxx)
    CONFIG_INVALID = 6001

    # Input validation (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_DATE = 7006

    # Embedding provider (8xxx)
    EMBEDDING_MODEL_LOAD_FAILED = 8001
    EMBEDDING_INFERENCE_FAILED = 8002

    # Context assembly (9xxx)
    CONTEXT_SEED_REQUIRED = 9001
    CONTEXT_EMPTY_SEED = 9002


def _details(**values: Any) -> Dict[str, Any]:
    """Drop empty values and clip long strings."""
    details: Dict[str, Any] = {}
    for key, value in values.items():
        if value is None or value == "":
            continue
        if isinstance(value, str):
            value = value[:_DETAIL_CHARS]
        details[key] = value
    return details


class NotegraphError(Exception):
    """Base class for every notegraph error.

    Attributes:
        message: Human-readable description.
        code: Machine-readable ``ErrorCode``.
        details: Identifiers and values relevant to the failure.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.code.name}] {self.message}"
        pairs = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"[{self.code.name}] {self.message} ({pairs})"


class NoteNotFoundError(NotegraphError):
    """No note matches an id or short-id prefix."""

    def __init__(
        self,
        note_id: str,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOTE_NOT_FOUND,
    ):
        super().__init__(
            message or f"Note '{note_id}' does not exist",
            code=code,
            details={"note_id": note_id},
        )
        self.note_id = note_id


class NoteValidationError(NotegraphError):
    """Note input (title, body, document text) was rejected."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED,
    ):
        super().__init__(
            message,
            code=code,
            details=_details(field=field, value=None if value is None else str(value)),
        )
        self.field = field
        self.value = value


class EdgeError(NotegraphError):
    """An edge transition is not allowed in the edge's current state."""

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
        status: Optional[str] = None,
        code: ErrorCode = ErrorCode.EDGE_INVALID,
    ):
        super().__init__(
            message,
            code=code,
            details=_details(source_id=source_id, target_id=target_id, status=status),
        )
        self.source_id = source_id
        self.target_id = target_id
        self.status = status


class EventError(EdgeError):
    """The pair has no event left to undo."""

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.EDGE_NOTHING_TO_UNDO,
    ):
        super().__init__(message, source_id=source_id, target_id=target_id, code=code)


class TagError(NotegraphError):
    def __init__(
        self,
        message: str,
        tag_name: Optional[str] = None,
        code: ErrorCode = ErrorCode.TAG_INVALID,
    ):
        super().__init__(message, code=code, details=_details(tag_name=tag_name))
        self.tag_name = tag_name


class StorageError(NotegraphError):
    """The record store failed; the transaction was rolled back."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            code=code,
            details=_details(
                operation=operation,
                original_error=str(original_error) if original_error else None,
            ),
        )
        self.operation = operation
        self.original_error = original_error


class SearchError(NotegraphError):
    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        code: ErrorCode = ErrorCode.SEARCH_FAILED,
    ):
        super().__init__(message, code=code, details=_details(query=query))
        self.query = query


class ContextError(NotegraphError):
    """A context request named no seed, or its seed set is empty."""

    def __init__(
        self,
        message: str,
        tag: Optional[str] = None,
        query: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONTEXT_SEED_REQUIRED,
    ):
        super().__init__(message, code=code, details=_details(tag=tag, query=query))
        self.tag = tag
        self.query = query


class ConfigurationError(NotegraphError):
    """A setting cannot be used to build a service."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        super().__init__(message, code=code, details=_details(config_key=config_key))
        self.config_key = config_key


class ValidationError(NotegraphError):
    """A generic argument (date, score, index range) was rejected."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        super().__init__(
            message,
            code=code,
            details=_details(field=field, value=None if value is None else str(value)),
        )
        self.field = field
        self.value = value


class EmbeddingError(NotegraphError):
    """The embedding provider failed to load or to embed a text."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EMBEDDING_INFERENCE_FAILED,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            code=code,
            details=_details(
                operation=operation,
                original_error=str(original_error) if original_error else None,
            ),
        )
        self.operation = operation
        self.original_error = original_error


class BulkOperationError(NotegraphError):
    """Some items of a bulk operation failed.

    Raised only after every item was attempted, so the items that
    succeeded stay applied and each remains individually undoable.

    Attributes:
        operation: Bulk operation name ("promote", "sweep", "auto-link", ...).
        total_count: Items attempted.
        success_count: Items that succeeded.
        failed_ids: Every failed id; ``details`` only lists the first ten.
        errors: Failed id -> error message.
    """

    def __init__(
        self,
        message: str,
        operation: str,
        total_count: int = 0,
        success_count: int = 0,
        failed_ids: Optional[List[str]] = None,
        errors: Optional[Dict[str, str]] = None,
        code: ErrorCode = ErrorCode.BULK_OPERATION_PARTIAL,
    ):
        if total_count < 0 or success_count < 0:
            raise ValueError("bulk operation counts must be non-negative")
        if success_count > total_count:
            raise ValueError("success_count cannot exceed total_count")

        details: Dict[str, Any] = {
            "operation": operation,
            "total_count": total_count,
            "success_count": success_count,
            "failed_count": total_count - success_count,
        }
        if failed_ids:
            details["failed_ids"] = list(failed_ids[:10])
        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.total_count = total_count
        self.success_count = success_count
        self.failed_ids: List[str] = list(failed_ids or [])
        self.errors: Dict[str, str] = dict(errors or {})

    @property
    def failed_count(self) -> int:
        return self.total_count - self.success_count
