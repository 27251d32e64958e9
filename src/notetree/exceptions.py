"""Custom exceptions for the note tree core.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Every error raised inside a
transaction aborts it and reaches the caller unchanged.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Argument errors (1xxx)
    INVALID_ARGUMENT = 1001
    INVALID_TARGET = 1002

    # Lookup errors (2xxx)
    NOTE_NOT_FOUND = 2001
    PLACEMENT_NOT_FOUND = 2002
    HISTORY_NOT_FOUND = 2003

    # Storage errors (3xxx)
    STORAGE_READ_FAILED = 3001
    STORAGE_WRITE_FAILED = 3002
    TRANSACTION_FAILED = 3004

    # Crypto errors (4xxx)
    DECRYPTION_FAILED = 4001
    INVALID_KEY = 4003

    # Structural errors (5xxx)
    CYCLE_DETECTED = 5001

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002


class NotetreeError(Exception):
    """Base exception for all note tree errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_ARGUMENT,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class InvalidArgumentError(NotetreeError):
    """Raised when a caller passes a value the operation cannot act on."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.INVALID_ARGUMENT
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class ConfigurationError(InvalidArgumentError):
    """Raised when a config store option is missing or malformed."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        super().__init__(message, value=value, code=code)
        self.config_key = config_key
        if config_key:
            self.details["config_key"] = config_key


class NotFoundError(NotetreeError):
    """Raised when a referenced row does not exist."""

    def __init__(
        self,
        message: str,
        entity_kind: str,
        entity_id: str,
        code: ErrorCode
    ):
        super().__init__(
            message,
            code=code,
            details={"entity_kind": entity_kind, "entity_id": entity_id}
        )
        self.entity_kind = entity_kind
        self.entity_id = entity_id


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            entity_kind="note",
            entity_id=note_id,
            code=ErrorCode.NOTE_NOT_FOUND
        )
        self.note_id = note_id


class PlacementNotFoundError(NotFoundError):
    """Raised when a tree placement cannot be found."""

    def __init__(self, note_tree_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Tree placement with ID '{note_tree_id}' not found",
            entity_kind="note_tree",
            entity_id=note_tree_id,
            code=ErrorCode.PLACEMENT_NOT_FOUND
        )
        self.note_tree_id = note_tree_id


class HistoryNotFoundError(NotFoundError):
    """Raised when a history snapshot cannot be found."""

    def __init__(self, note_history_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"History snapshot with ID '{note_history_id}' not found",
            entity_kind="note_history",
            entity_id=note_history_id,
            code=ErrorCode.HISTORY_NOT_FOUND
        )
        self.note_history_id = note_history_id


class StorageError(NotetreeError):
    """Raised for storage/persistence errors, including failed commits."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class CryptoError(NotetreeError):
    """Raised when encryption fails or a ciphertext cannot be decrypted.

    Decrypting with the wrong key either breaks the padding or yields
    plaintext whose digest prefix does not match; both end up here.
    """

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        field: Optional[str] = None,
        code: ErrorCode = ErrorCode.DECRYPTION_FAILED
    ):
        details = {}
        if entity_id:
            details["entity_id"] = entity_id
        if field:
            details["field"] = field

        super().__init__(message, code=code, details=details)
        self.entity_id = entity_id
        self.field = field


class StructuralError(NotetreeError):
    """Raised when a tree traversal runs into a cycle."""

    def __init__(
        self,
        message: str,
        note_id: str,
        path: Optional[List[str]] = None,
        code: ErrorCode = ErrorCode.CYCLE_DETECTED
    ):
        path = list(path) if path else []
        super().__init__(
            message,
            code=code,
            details={"note_id": note_id, "path": " > ".join(path[-10:])}
        )
        self.note_id = note_id
        self.path = path
