"""CLI entry point for the task runner.

Registered as the `taskrunner` console script in pyproject.toml.
"""

from __future__ import annotations

import click

from cli.run_cmd import run_cmd
from cli.status_cmd import status_cmd
from core import __version__


@click.group()
@click.version_option(version=__version__, prog_name="taskrunner")
def cli() -> None:
    """taskrunner -- run autonomous, tool-using agent tasks."""


cli.add_command(run_cmd, "run")
cli.add_command(status_cmd, "status")


if __name__ == "__main__":
    cli()
