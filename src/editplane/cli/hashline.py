"""epl hashline commands - line-anchored show, check, apply and patch."""

import errno
import os
from pathlib import Path
from typing import Any

import click

from editplane.apply.io import acquire_lock, read_guarded, write_atomically
from editplane.cli.utils import emit_json, get_config, read_input, reported_errors
from editplane.core.errors import IOFailureError
from editplane.core.hashing import hash_bytes
from editplane.hashline.anchors import format_hashed_lines, show_lines, split_lines
from editplane.hashline.apply import ApplyMode, HashlineApplyResult, apply_edits
from editplane.hashline.check import CheckResult, check_anchors
from editplane.hashline.edits import HashlineEdit, edit_anchors, parse_edits_request
from editplane.hashline.repair import hashline_failure

_EDITS_HELP = "Edits JSON path, or '-' to read edits from stdin"


def _ensure_utf8(path: Path, data: bytes) -> bytes:
    try:
        data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise IOFailureError.not_utf8(str(path), e) from e
    return data


def _read_text_file(path: Path) -> bytes:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e
    return _ensure_utf8(path, data)


def _read_edits(edits: str) -> list[HashlineEdit]:
    return parse_edits_request(read_input(None if edits == "-" else Path(edits)))


def _check_payload(check: CheckResult, *, verbose: bool) -> dict[str, Any]:
    return check.to_dict(include_mismatches=verbose or not check.ok)


def _apply_locked(
    path: Path, edits: list[HashlineEdit], mode: ApplyMode, *, write: bool, temp_attempts: int
) -> tuple[bytes, HashlineApplyResult]:
    """Apply under the file lock; writes go through the guarded atomic writer."""
    with acquire_lock(path) as lock:
        guard, data = read_guarded(path)
        _ensure_utf8(path, data)
        result = apply_edits(data, edits, mode)
        if write and result.changed_from(data):
            if not lock.writable:
                denied = PermissionError(errno.EACCES, os.strerror(errno.EACCES))
                raise IOFailureError.write_failed(str(path), denied)
            write_atomically(path, result.content, guard=guard, temp_attempts=temp_attempts)
    return data, result


@click.group()
def hashline_group() -> None:
    """Line-anchored editing with `<line>:<hash>` anchors."""


@hashline_group.command("show")
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output structured JSON")
def show_command(file: Path, as_json: bool) -> None:
    """Show hashed line anchors for FILE."""
    with reported_errors():
        data = _read_text_file(file)
    if not as_json:
        click.echo(format_hashed_lines(data))
        return
    lines = show_lines(data)
    emit_json(
        {
            "command": "show",
            "file": str(file),
            "lines": lines,
            "summary": {"total_lines": len(lines)},
        }
    )


@hashline_group.command("check")
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--edits", default="-", show_default=True, help=_EDITS_HELP)
@click.option("--verbose", is_flag=True, help="Include mismatch details even when check passes")
def check_command(file: Path, edits: str, verbose: bool) -> None:
    """Check whether edit anchors are still valid for FILE."""
    with reported_errors():
        data = _read_text_file(file)
        parsed = _read_edits(edits)
        check = check_anchors(split_lines(data), edit_anchors(parsed))
    emit_json(
        {"command": "check", "file": str(file), "check": _check_payload(check, verbose=verbose)}
    )


@hashline_group.command("apply")
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--edits", default="-", show_default=True, help=_EDITS_HELP)
@click.option("--repair", is_flag=True, help="Remap stale anchors that have one candidate line")
@click.option("--dry-run", is_flag=True, help="Do not write; return a preview result only")
@click.option("--include-content", is_flag=True, help="Include full output content in dry-run")
@click.pass_context
def apply_command(
    ctx: click.Context, file: Path, edits: str, repair: bool, dry_run: bool, include_content: bool
) -> None:
    """Apply line-anchored edits to FILE in strict or repair mode."""
    mode = ApplyMode.REPAIR if repair else ApplyMode.STRICT
    with reported_errors():
        parsed = _read_edits(edits)
        original, result = _apply_locked(
            file,
            parsed,
            mode,
            write=not dry_run,
            temp_attempts=get_config(ctx).apply.temp_attempts,
        )

    response: dict[str, Any] = {
        "command": "apply",
        "file": str(file),
        "mode": str(result.mode),
        "dry_run": dry_run,
        "changed": result.changed_from(original),
        "operations_total": result.operations_total,
        "operations_applied": result.operations_applied,
    }
    if dry_run and include_content:
        response["content"] = result.content.decode("utf-8")
    elif dry_run:
        response["output_hash"] = hash_bytes(result.content)
        response["output_bytes"] = len(result.content)
    emit_json(response)


@hashline_group.command("patch")
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--edits", default="-", show_default=True, help=_EDITS_HELP)
@click.option(
    "--auto-repair",
    is_flag=True,
    help="If the strict check fails with unique remap candidates, retry once in repair mode",
)
@click.pass_context
def patch_command(ctx: click.Context, file: Path, edits: str, auto_repair: bool) -> None:
    """One-shot patch: strict check, then at most one repair retry."""
    with reported_errors():
        parsed = _read_edits(edits)
        strict = check_anchors(split_lines(_read_text_file(file)), edit_anchors(parsed))
        if strict.ok:
            mode = ApplyMode.STRICT
        elif auto_repair and strict.can_retry_with_repair:
            mode = ApplyMode.REPAIR
        else:
            raise hashline_failure(strict, repairing=False)
        original, result = _apply_locked(
            file, parsed, mode, write=True, temp_attempts=get_config(ctx).apply.temp_attempts
        )

    emit_json(
        {
            "command": "patch",
            "file": str(file),
            "auto_repair": auto_repair,
            "strict_check": _check_payload(strict, verbose=auto_repair or not strict.ok),
            "applied_mode": str(result.mode),
            "changed": result.changed_from(original),
            "operations_total": result.operations_total,
            "operations_applied": result.operations_applied,
        }
    )
