"""Filesystem primitives for the apply executor.

Locks, path guards and atomic writes. A guard records what a path looked
like at preflight (device, inode, size, mtime and a content digest); every
write re-verifies it so that a file swapped or edited behind our back fails
the transaction instead of being clobbered.
"""

from __future__ import annotations

import contextlib
import errno
import fcntl
import itertools
import os
import stat
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from editplane.config.constants import TEMP_FILE_TAG
from editplane.core.errors import (
    InvalidRequestError,
    IOFailureError,
    PathChangedError,
    PreconditionFailedError,
    ResourceBusyError,
)
from editplane.core.hashing import hash_bytes

DEFAULT_TEMP_ATTEMPTS = 64

_temp_counter = itertools.count()


class WritePhase(StrEnum):
    """Checkpoints inside ``write_atomically``; hooks may fail at any of them."""

    TEMP_WRITTEN = "temp_written"
    TEMP_SYNCED = "temp_synced"
    RENAMED = "renamed"


PhaseHook = Callable[[WritePhase], None]
RenameFn = Callable[[Path, Path], None]


# =============================================================================
# Locks
# =============================================================================


class FileLock:
    """Exclusive advisory lock held for the lifetime of an apply.

    Files that cannot be opened for writing are locked through a read-only
    descriptor; ``writable`` records which one we got.
    """

    def __init__(self, path: Path, fd: int, *, writable: bool) -> None:
        self.path = path
        self.writable = writable
        self._fd: int | None = fd

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def __enter__(self) -> FileLock:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


def acquire_lock(path: Path) -> FileLock:
    """Take a non-blocking exclusive lock on ``path``.

    Raises:
        ResourceBusyError: Another process holds the lock.
        IOFailureError: The file cannot be opened.
    """
    writable = True
    try:
        fd = os.open(path, os.O_RDWR)
    except PermissionError:
        writable = False
        try:
            fd = os.open(path, os.O_RDONLY)
        except OSError as e:
            raise IOFailureError.from_os_error(str(path), e) from e
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e

    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        os.close(fd)
        if e.errno in (errno.EWOULDBLOCK, errno.EAGAIN):
            raise ResourceBusyError.for_path(str(path)) from e
        raise IOFailureError.from_os_error(str(path), e) from e
    return FileLock(path, fd, writable=writable)


# =============================================================================
# Guards
# =============================================================================


@dataclass(frozen=True)
class PathFingerprint:
    device: int
    inode: int
    size: int
    mtime_ns: int


@dataclass(frozen=True)
class GuardState:
    fingerprint: PathFingerprint
    source_hash: str


def capture_path_fingerprint(path: Path) -> PathFingerprint:
    """lstat-based fingerprint; symbolic links are refused outright."""
    try:
        st = os.lstat(path)
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e
    if stat.S_ISLNK(st.st_mode):
        raise InvalidRequestError.because(
            f"Refusing to apply changes through symbolic link '{path}'", path=str(path)
        )
    return PathFingerprint(
        device=st.st_dev, inode=st.st_ino, size=st.st_size, mtime_ns=st.st_mtime_ns
    )


def _read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e


def read_guarded(path: Path) -> tuple[GuardState, bytes]:
    """Fingerprint ``path`` and read it; the guard hashes exactly the bytes returned."""
    fingerprint = capture_path_fingerprint(path)
    data = _read_bytes(path)
    return GuardState(fingerprint=fingerprint, source_hash=hash_bytes(data)), data


def verify_guard_state(path: Path, expected: GuardState) -> None:
    """Raises ``PathChangedError`` or ``PreconditionFailedError`` on drift."""
    if capture_path_fingerprint(path) != expected.fingerprint:
        raise PathChangedError.for_path(str(path))
    current = hash_bytes(_read_bytes(path))
    if current != expected.source_hash:
        raise PreconditionFailedError.hash_mismatch(expected.source_hash, current)


def path_exists(path: Path) -> bool:
    """True for anything at ``path``, dangling symlinks included."""
    try:
        os.lstat(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e
    return True


# =============================================================================
# Atomic writes
# =============================================================================


def _parent_directory(path: Path) -> Path:
    parent = path.parent
    return parent if str(parent) else Path(".")


def sync_parent_directory(path: Path) -> None:
    parent = _parent_directory(path)
    try:
        fd = os.open(parent, os.O_RDONLY)
    except OSError as e:
        raise IOFailureError.from_os_error(str(parent), e) from e
    try:
        os.fsync(fd)
    except OSError as e:
        raise IOFailureError.write_failed(str(parent), e) from e
    finally:
        os.close(fd)


def _create_adjacent_temp(path: Path, attempts: int) -> tuple[Path, int]:
    parent = _parent_directory(path)
    for _ in range(attempts):
        name = f".{path.name}.{TEMP_FILE_TAG}-{time.time_ns()}-{next(_temp_counter)}"
        temp_path = parent / name
        try:
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            continue
        except OSError as e:
            raise IOFailureError.write_failed(str(temp_path), e) from e
        return temp_path, fd
    raise InvalidRequestError.because(
        f"Failed to allocate an adjacent temporary file for '{path}'"
    )


def _rename(source: Path, destination: Path) -> None:
    os.replace(source, destination)


def write_atomically(
    path: Path,
    data: bytes,
    *,
    guard: GuardState | None = None,
    temp_attempts: int = DEFAULT_TEMP_ATTEMPTS,
    phase_hook: PhaseHook | None = None,
    rename: RenameFn = _rename,
) -> None:
    """Replace ``path`` with ``data`` via a synced sibling temp file.

    The guard (when given) is re-verified after the temp file is durable and
    immediately before the rename. The temp file never survives a failure.

    Args:
        path: Existing file to replace.
        data: New content, written verbatim.
        guard: Preflight state the target must still match.
        temp_attempts: Unique temp names to try before giving up.
        phase_hook: Called after each ``WritePhase``; raising aborts the write.
        rename: Final rename step.

    Raises:
        IOFailureError: Any filesystem failure.
        PathChangedError: The path was replaced since preflight.
        PreconditionFailedError: The content changed since preflight.
    """
    try:
        mode = stat.S_IMODE(os.stat(path).st_mode)
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e

    temp_path, fd = _create_adjacent_temp(path, temp_attempts)
    try:
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                if phase_hook is not None:
                    phase_hook(WritePhase.TEMP_WRITTEN)
                os.fsync(f.fileno())
                if phase_hook is not None:
                    phase_hook(WritePhase.TEMP_SYNCED)
        except OSError as e:
            raise IOFailureError.write_failed(str(path), e) from e

        if guard is not None:
            verify_guard_state(path, guard)

        try:
            os.chmod(temp_path, mode)
            rename(temp_path, path)
            if phase_hook is not None:
                phase_hook(WritePhase.RENAMED)
        except OSError as e:
            raise IOFailureError.write_failed(str(path), e) from e
        sync_parent_directory(path)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise
