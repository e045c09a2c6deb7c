"""Content digests for targets, lines and selection identities.

All digests are computed over raw UTF-8 bytes. No Unicode normalization is
applied, so canonically-equivalent strings with different bytes never compare
equal.
"""

from __future__ import annotations

import hashlib

from editplane.config.constants import HASH_HEX_LEN, LINE_HASH_HEX_LEN


def hash_bytes(data: bytes) -> str:
    """Short hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()[:HASH_HEX_LEN]


def hash_text(text: str) -> str:
    """Short hex digest of a text snippet (``expected_old_hash``, ``old_hash``)."""
    return hash_bytes(text.encode("utf-8", "surrogatepass"))


def compute_line_hash_full(line: str) -> str:
    return hashlib.sha256(line.encode("utf-8", "surrogatepass")).hexdigest()


def compute_line_hash(line: str) -> str:
    """Hash of one line's content, terminator excluded."""
    return compute_line_hash_full(line)[:LINE_HASH_HEX_LEN]


def compute_identity(kind: str, name: str | None, text: str) -> str:
    """Stable selection identity derived from node kind, name and text."""
    hasher = hashlib.sha256()
    hasher.update(kind.encode("utf-8"))
    hasher.update(b"\n")
    if name is not None:
        hasher.update(name.encode("utf-8"))
    hasher.update(b"\n")
    hasher.update(text.encode("utf-8", "surrogatepass"))
    return hasher.hexdigest()[:HASH_HEX_LEN]
