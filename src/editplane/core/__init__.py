"""Core module exports."""

from editplane.core.errors import (
    EditPlaneError,
    ErrorCode,
    InvalidRequestError,
)
from editplane.core.hashing import compute_identity, compute_line_hash, hash_bytes, hash_text
from editplane.core.logging import (
    clear_request_id,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Errors
    "EditPlaneError",
    "ErrorCode",
    "InvalidRequestError",
    # Hashing
    "compute_identity",
    "compute_line_hash",
    "hash_bytes",
    "hash_text",
    # Logging
    "clear_request_id",
    "configure_logging",
    "get_logger",
    "get_request_id",
    "set_request_id",
]
