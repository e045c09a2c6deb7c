"""EditPlane error types with typed error codes.

Every failure surfaced to a caller is an ``EditPlaneError``. The ``code``
drives programmatic handling; ``error_type`` is the stable wire string printed
in ``{"error": {"type": ..., "message": ...}}`` responses.

Error code ranges:
- 1xxx: Request shape
- 2xxx: Config
- 3xxx: Resolution
- 4xxx: Filesystem
- 5xxx: Transaction
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Request shape (1xxx)
    INVALID_REQUEST = 1001

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002

    # Resolution (3xxx)
    PRECONDITION_FAILED = 3001
    TARGET_MISSING = 3002
    AMBIGUOUS_TARGET = 3003
    PARSE_FAILURE = 3004
    NO_PROVIDER = 3005

    # Filesystem (4xxx)
    IO_ERROR = 4001
    RESOURCE_BUSY = 4002
    PATH_CHANGED = 4003

    # Transaction (5xxx)
    ROLLBACK_FAILED = 5001

    # Internal (9xxx)
    SERIALIZATION_ERROR = 9001


_WIRE_TYPES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_REQUEST: "invalid_request",
    ErrorCode.CONFIG_PARSE_ERROR: "invalid_request",
    ErrorCode.CONFIG_INVALID_VALUE: "invalid_request",
    ErrorCode.PRECONDITION_FAILED: "precondition_failed",
    ErrorCode.TARGET_MISSING: "target_missing",
    ErrorCode.AMBIGUOUS_TARGET: "ambiguous_target",
    ErrorCode.PARSE_FAILURE: "parse_failure",
    ErrorCode.NO_PROVIDER: "no_provider",
    ErrorCode.IO_ERROR: "io_error",
    ErrorCode.RESOURCE_BUSY: "resource_busy",
    ErrorCode.PATH_CHANGED: "path_changed",
    ErrorCode.ROLLBACK_FAILED: "rollback_failed",
    ErrorCode.SERIALIZATION_ERROR: "serialization_error",
}


@dataclass(frozen=True, slots=True)
class EditPlaneError(Exception):
    """Base error with structured context for JSON responses."""

    code: ErrorCode
    message: str
    retryable: bool = False
    suggestion: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'PRECONDITION_FAILED')."""
        return self.code.name

    @property
    def error_type(self) -> str:
        """Public wire type (e.g., 'precondition_failed')."""
        return _WIRE_TYPES[self.code]

    def to_dict(self) -> dict[str, Any]:
        """Serialize with full context, for logs."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def to_response(self) -> dict[str, Any]:
        """Serialize as the public error response body."""
        body: dict[str, Any] = {"type": self.error_type, "message": self.message}
        if self.suggestion is not None:
            body["suggestion"] = self.suggestion
        return {"error": body}

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class InvalidRequestError(EditPlaneError):
    """Malformed, ambiguous or conflicting request payloads."""

    @classmethod
    def because(cls, message: str, **details: Any) -> "InvalidRequestError":
        return cls(code=ErrorCode.INVALID_REQUEST, message=message, details=details)


class ConfigError(EditPlaneError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class PreconditionFailedError(EditPlaneError):
    """Content digests no longer match the current bytes."""

    @classmethod
    def hash_mismatch(cls, expected_hash: str, actual_hash: str) -> "PreconditionFailedError":
        return cls(
            code=ErrorCode.PRECONDITION_FAILED,
            message=(
                "Target node has changed since selection. "
                f"Expected hash '{expected_hash}', got '{actual_hash}'"
            ),
            retryable=True,
            details={"expected_hash": expected_hash, "actual_hash": actual_hash},
        )

    @classmethod
    def hashline(cls, reason: str, report: str) -> "PreconditionFailedError":
        return cls(
            code=ErrorCode.PRECONDITION_FAILED,
            message=(
                f"Hashline preconditions failed ({reason}); refresh anchors with "
                f"'epl hashline show --json <file>' and retry.\n{report}"
            ),
            retryable=True,
            details={"reason": reason},
        )


class TargetMissingError(EditPlaneError):
    """A target resolved to zero candidates."""

    @classmethod
    def for_identity(cls, identity: str, file: str) -> "TargetMissingError":
        return cls(
            code=ErrorCode.TARGET_MISSING,
            message=f"No target matched identity '{identity}' in file '{file}'",
            details={"identity": identity, "file": file},
        )


class AmbiguousTargetError(EditPlaneError):
    """A target resolved to more than one candidate."""

    @classmethod
    def for_identity(cls, identity: str, file: str, candidates: int) -> "AmbiguousTargetError":
        return cls(
            code=ErrorCode.AMBIGUOUS_TARGET,
            message=(
                f"Multiple targets matched identity '{identity}' in file '{file}' "
                f"({candidates} candidates)"
            ),
            details={"identity": identity, "file": file, "candidates": candidates},
        )


class ParseFailureError(EditPlaneError):
    """A source file cannot be parsed as its detected language."""

    @classmethod
    def from_provider(cls, provider: str, reason: str) -> "ParseFailureError":
        return cls(
            code=ErrorCode.PARSE_FAILURE,
            message=f"Provider '{provider}' failed to parse input: {reason}",
            details={"provider": provider},
        )


class NoProviderError(EditPlaneError):
    """No structure provider claims a file."""

    @classmethod
    def for_extension(cls, extension: str, supported: list[str]) -> "NoProviderError":
        return cls(
            code=ErrorCode.NO_PROVIDER,
            message=f"No structure provider available for extension '{extension}'",
            suggestion="Supported extensions: " + ", ".join(f".{ext}" for ext in supported),
            details={"extension": extension},
        )


class IOFailureError(EditPlaneError):
    """Filesystem errors: missing files, permissions, undecodable bytes."""

    @classmethod
    def from_os_error(cls, path: str, err: OSError) -> "IOFailureError":
        reason = err.strerror or str(err)
        return cls(
            code=ErrorCode.IO_ERROR,
            message=f"Failed to read file '{path}': {reason}",
            details={"path": path, "errno": err.errno},
        )

    @classmethod
    def not_utf8(cls, path: str, err: UnicodeDecodeError) -> "IOFailureError":
        return cls(
            code=ErrorCode.IO_ERROR,
            message=f"Failed to read file '{path}': stream did not contain valid UTF-8",
            details={"path": path, "position": err.start},
        )

    @classmethod
    def write_failed(cls, path: str, err: OSError) -> "IOFailureError":
        reason = err.strerror or str(err)
        return cls(
            code=ErrorCode.IO_ERROR,
            message=f"Failed to write file '{path}': {reason}",
            details={"path": path, "errno": err.errno},
        )


class ResourceBusyError(EditPlaneError):
    """Another apply holds the advisory lock on a file."""

    @classmethod
    def for_path(cls, path: str) -> "ResourceBusyError":
        return cls(
            code=ErrorCode.RESOURCE_BUSY,
            message=f"File '{path}' is busy: another apply operation is in progress",
            retryable=True,
            details={"path": path},
        )


class PathChangedError(EditPlaneError):
    """A file was replaced between preflight and commit."""

    @classmethod
    def for_path(cls, path: str) -> "PathChangedError":
        return cls(
            code=ErrorCode.PATH_CHANGED,
            message=f"File '{path}' changed during apply; retry with a fresh selection",
            retryable=True,
            details={"path": path},
        )


class RollbackFailedError(EditPlaneError):
    """Commit failed and restoring the original state failed too."""

    @classmethod
    def after(cls, commit_error: str, rollback_error: str) -> "RollbackFailedError":
        return cls(
            code=ErrorCode.ROLLBACK_FAILED,
            message=(
                "Commit failed and rollback did not fully succeed: "
                f"Commit failed ({commit_error}); rollback failed ({rollback_error})"
            ),
            details={"commit_error": commit_error, "rollback_error": rollback_error},
        )


class SerializationError(EditPlaneError):
    """A response could not be serialized."""

    @classmethod
    def for_response(cls, reason: str) -> "SerializationError":
        return cls(
            code=ErrorCode.SERIALIZATION_ERROR,
            message=f"Failed to serialize response JSON: {reason}",
        )
