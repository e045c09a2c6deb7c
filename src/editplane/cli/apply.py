"""epl apply command - validate and commit a changeset."""

from pathlib import Path

import click

from editplane.apply.executor import ApplyOptions, apply_changeset
from editplane.changeset.models import Changeset
from editplane.changeset.parse import ParseOptions, load_apply_request, load_changeset
from editplane.cli.utils import emit_json, get_config, read_input, read_stdin, reported_errors
from editplane.config.models import EditPlaneConfig
from editplane.core.errors import InvalidRequestError
from editplane.core.logging import get_logger

log = get_logger("cli.apply")


def _load(plan: Path | None, as_json: bool, options: ParseOptions) -> Changeset:
    if as_json:
        if plan is not None:
            raise InvalidRequestError.because("--json reads the request from stdin; omit PLAN")
        return load_apply_request(read_stdin(), options)
    return load_changeset(read_input(plan), options)


def _apply_options(
    config: EditPlaneConfig,
    *,
    dry_run: bool,
    repair: bool,
    include_content: bool,
    inject_failure_after_writes: int | None,
) -> ApplyOptions:
    if inject_failure_after_writes is not None and not config.apply.experimental:
        raise InvalidRequestError.because(
            "--inject-failure-after-writes requires apply.experimental "
            "(set EDITPLANE__APPLY__EXPERIMENTAL=true)"
        )
    if include_content and not dry_run:
        raise InvalidRequestError.because("--include-content is only valid with --dry-run")
    return ApplyOptions(
        dry_run=dry_run,
        repair=repair,
        include_content=include_content,
        inject_failure_after_writes=inject_failure_after_writes,
        temp_attempts=config.apply.temp_attempts,
    )


@click.command()
@click.argument(
    "plan", required=False, type=click.Path(dir_okay=False, allow_dash=True, path_type=Path)
)
@click.option("--json", "as_json", is_flag=True, help="Read wrapped apply request JSON from stdin")
@click.option("--dry-run", is_flag=True, help="Validate and preview without writing files")
@click.option("--repair", is_flag=True, help="Remap stale line anchors that have one candidate")
@click.option("--verbose", is_flag=True, help="Include per-file apply results in output")
@click.option(
    "--include-content", is_flag=True, help="With --dry-run, print full resulting content"
)
@click.option("--inject-failure-after-writes", type=int, default=None, hidden=True)
@click.pass_context
def apply_command(
    ctx: click.Context,
    plan: Path | None,
    as_json: bool,
    dry_run: bool,
    repair: bool,
    verbose: bool,
    include_content: bool,
    inject_failure_after_writes: int | None,
) -> None:
    """Apply a changeset as one all-or-nothing transaction.

    PLAN is a changeset JSON file; when omitted (or '-') the raw changeset is
    read from stdin.
    """
    config = get_config(ctx)
    with reported_errors():
        options = _apply_options(
            config,
            dry_run=dry_run,
            repair=repair,
            include_content=include_content,
            inject_failure_after_writes=inject_failure_after_writes,
        )
        changeset = _load(plan, as_json, ParseOptions(allow_legacy=config.apply.allow_legacy))
        log.debug(
            "changeset_parsed", files=len(changeset.files), operations=changeset.operation_count
        )
        response = apply_changeset(changeset, options=options)
    emit_json(response.to_dict(verbose=verbose))
