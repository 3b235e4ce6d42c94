"""CLI main entry point."""

import click

from .commands.cluster import down, logs, status, up
from .shared.logging import configure_logging, level_for_verbosity


@click.group()
@click.option("-c", "--config", type=click.Path(), help="Defaults file path")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("--log-file", type=click.Path(), help="Write logs to a file as JSON")
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: int, log_file: str | None) -> None:
    """Start and manage a single-node cluster."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    configure_logging(
        level=level_for_verbosity(verbose),
        log_file=log_file,
        json_output=bool(log_file),
    )


cli.add_command(up)
cli.add_command(down)
cli.add_command(status)
cli.add_command(logs)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
