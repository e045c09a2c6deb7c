"""epl edit command - build a previewed changeset from targets and ops."""

from pathlib import Path

import click

from editplane.changeset.models import Changeset
from editplane.changeset.parse import load_edit_request
from editplane.cli.utils import emit_json, read_stdin, reported_errors
from editplane.core.errors import InvalidRequestError
from editplane.core.logging import get_logger
from editplane.providers.base import ProviderRegistry
from editplane.transform.build import build_changeset, build_identity_edit

log = get_logger("cli.edit")

_OP_FLAGS = ("--replace", "--delete", "--insert-before", "--insert-after")


def _identity_op(
    replacement: str | None, delete: bool, insert_before: str | None, insert_after: str | None
) -> tuple[str, str]:
    chosen = [
        (op_type, text)
        for op_type, text, given in (
            ("replace", replacement or "", replacement is not None),
            ("delete", "", delete),
            ("insert_before", insert_before or "", insert_before is not None),
            ("insert_after", insert_after or "", insert_after is not None),
        )
        if given
    ]
    if not chosen:
        raise InvalidRequestError.because(
            f"one of {', '.join(_OP_FLAGS)} is required unless --json mode is enabled"
        )
    if len(chosen) > 1:
        raise InvalidRequestError.because(f"{', '.join(_OP_FLAGS)} cannot be used together")
    return chosen[0]


def _from_flags(
    file: Path | None,
    identity: str | None,
    op: tuple[str, str],
    registry: ProviderRegistry,
    verbose: bool,
) -> Changeset:
    if file is None:
        raise InvalidRequestError.because("FILE is required unless --json mode is enabled")
    if identity is None:
        raise InvalidRequestError.because("--identity is required unless --json mode is enabled")
    op_type, text = op
    return build_identity_edit(file, identity, op_type, registry, new_text=text, verbose=verbose)


@click.command()
@click.argument("file", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--identity", default=None, help="Target identity from select output")
@click.option("--replace", "replacement", default=None, help="Replacement text for the target")
@click.option("--delete", is_flag=True, help="Delete the target node")
@click.option("--insert-before", default=None, help="Text to insert before the target")
@click.option("--insert-after", default=None, help="Text to insert after the target")
@click.option("--json", "as_json", is_flag=True, help="Read an edit request JSON from stdin")
@click.option("--verbose", is_flag=True, help="Emit old_text instead of old_hash/old_len")
def edit_command(
    file: Path | None,
    identity: str | None,
    replacement: str | None,
    delete: bool,
    insert_before: str | None,
    insert_after: str | None,
    as_json: bool,
    verbose: bool,
) -> None:
    """Build a changeset whose previews match FILE as it reads now.

    Flag mode edits one node of FILE by --identity. With --json the request
    ({"command": "edit", "file"/"files", "operations", ...}) is read from
    stdin and may target nodes, file edges and hashline anchors in several
    files. The printed changeset can be passed straight to ``epl apply``.
    """
    registry = ProviderRegistry.default()
    with reported_errors():
        if as_json:
            given = [replacement, insert_before, insert_after, identity, file]
            if delete or any(value is not None for value in given):
                raise InvalidRequestError.because(
                    "--json reads the edit request from stdin; omit FILE and edit flags"
                )
            changeset = build_changeset(load_edit_request(read_stdin()), registry, verbose=verbose)
        else:
            op = _identity_op(replacement, delete, insert_before, insert_after)
            changeset = _from_flags(file, identity, op, registry, verbose)
        log.debug(
            "changeset_built", files=len(changeset.files), operations=changeset.operation_count
        )
    emit_json(changeset.to_wire())
