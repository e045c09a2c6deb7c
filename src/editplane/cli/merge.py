"""epl merge command - combine changeset files into one transaction."""

from pathlib import Path

import click

from editplane.changeset.parse import ParseOptions, load_changeset
from editplane.cli.utils import emit_json, get_config, read_input, reported_errors
from editplane.providers.base import ProviderRegistry
from editplane.transform.merge import merge_changesets


@click.command()
@click.argument(
    "plans", nargs=-1, required=True, type=click.Path(dir_okay=False, path_type=Path)
)
@click.pass_context
def merge_command(ctx: click.Context, plans: tuple[Path, ...]) -> None:
    """Merge the changesets in PLANS into one all-or-nothing changeset.

    Operations on the same file are combined and checked for conflicts
    against the current file contents.
    """
    config = get_config(ctx)
    options = ParseOptions(allow_legacy=config.apply.allow_legacy)
    with reported_errors():
        changesets = [load_changeset(read_input(plan), options) for plan in plans]
        merged = merge_changesets(changesets, ProviderRegistry.default())
    emit_json(merged.to_wire())
