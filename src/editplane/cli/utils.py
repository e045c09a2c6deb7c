"""CLI utilities."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, NoReturn

import click

from editplane.config.models import EditPlaneConfig
from editplane.core.errors import EditPlaneError, IOFailureError, SerializationError


def dump_json(payload: Any) -> str:
    """Serialize a response the way every command prints it (indent 2)."""
    try:
        return json.dumps(payload, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError.for_response(str(e)) from e


def emit_json(payload: Any) -> None:
    try:
        text = dump_json(payload)
    except SerializationError as e:
        text = json.dumps(e.to_response(), indent=2)
    click.echo(text)


def fail(error: EditPlaneError) -> NoReturn:
    """Print ``error`` as a JSON response on stdout and exit 1."""
    emit_json(error.to_response())
    raise click.exceptions.Exit(1)


@contextmanager
def reported_errors() -> Iterator[None]:
    """Turn any ``EditPlaneError`` raised inside the block into a JSON exit."""
    try:
        yield
    except EditPlaneError as e:
        fail(e)


def read_stdin() -> bytes:
    return click.get_binary_stream("stdin").read()


def read_input(path: Path | None) -> bytes:
    """Read a request body from ``path``, or from stdin when it is None or ``-``."""
    if path is None or str(path) == "-":
        return read_stdin()
    try:
        return path.read_bytes()
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e


def get_config(ctx: click.Context) -> EditPlaneConfig:
    """Config loaded by the root group; defaults when a command runs standalone."""
    obj = ctx.find_object(dict)
    if obj is not None and isinstance(obj.get("config"), EditPlaneConfig):
        return obj["config"]  # type: ignore[no-any-return]
    return EditPlaneConfig()
