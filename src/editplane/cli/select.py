"""epl select command - list selectable handles with their preconditions."""

import fnmatch
from pathlib import Path
from typing import Any

import click

from editplane.cli.utils import emit_json, reported_errors
from editplane.core.errors import IOFailureError
from editplane.core.hashing import hash_bytes
from editplane.providers.base import Handle, ProviderRegistry


def _matches(handle: Handle, kind: str | None, name: str | None, excluded: tuple[str, ...]) -> bool:
    if kind is not None and handle.kind != kind:
        return False
    if handle.kind in excluded:
        return False
    if name is not None:
        return handle.name is not None and fnmatch.fnmatchcase(handle.name, name)
    return True


def _handle_payload(handle: Handle, *, verbose: bool) -> dict[str, Any]:
    payload = handle.to_dict()
    if payload["name"] is None:
        del payload["name"]
    if not verbose:
        del payload["text"]
    return payload


@click.command()
@click.argument(
    "files", nargs=-1, required=True, type=click.Path(dir_okay=False, path_type=Path)
)
@click.option("--kind", default=None, help="Node kind to select")
@click.option("--name", default=None, help="Glob pattern for symbol names")
@click.option("--exclude-kind", "exclude_kinds", multiple=True, help="Exclude a node kind")
@click.option("--verbose", is_flag=True, help="Include full matched text in each handle")
def select_command(
    files: tuple[Path, ...],
    kind: str | None,
    name: str | None,
    exclude_kinds: tuple[str, ...],
    verbose: bool,
) -> None:
    """Select structural handles from FILES.

    Prints each matching handle with the identity and expected_old_hash a
    changeset needs, plus each file's expected_file_hash.
    """
    registry = ProviderRegistry.default()
    handles: list[dict[str, Any]] = []
    preconditions: list[dict[str, str]] = []
    with reported_errors():
        for path in files:
            try:
                data = path.read_bytes()
            except OSError as e:
                raise IOFailureError.from_os_error(str(path), e) from e
            for handle in registry.select(path, data):
                if _matches(handle, kind, name, exclude_kinds):
                    handles.append(_handle_payload(handle, verbose=verbose))
            preconditions.append({"file": str(path), "expected_file_hash": hash_bytes(data)})

    emit_json(
        {
            "handles": handles,
            "summary": {"files_scanned": len(files), "matches": len(handles)},
            "file_preconditions": preconditions,
        }
    )
