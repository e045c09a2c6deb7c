"""EditPlane CLI - epl command."""

import click

from editplane.cli.apply import apply_command
from editplane.cli.edit import edit_command
from editplane.cli.hashline import hashline_group
from editplane.cli.merge import merge_command
from editplane.cli.select import select_command
from editplane.cli.utils import reported_errors
from editplane.config.loader import load_config
from editplane.core.logging import configure_logging, set_request_id


@click.group()
@click.version_option(version="0.1.0", prog_name="epl")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """EditPlane - verified structural edits with transactional apply."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    with reported_errors():
        config = load_config()
    ctx.obj["config"] = config

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    configure_logging(config=logging_config)
    set_request_id()


cli.add_command(apply_command, name="apply")
cli.add_command(edit_command, name="edit")
cli.add_command(hashline_group, name="hashline")
cli.add_command(merge_command, name="merge")
cli.add_command(select_command, name="select")


if __name__ == "__main__":
    cli()
