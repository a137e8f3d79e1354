#!/usr/bin/env python3
"""Main CLI entry point for node group stack management."""

import click

from version import __version__

from .cloudformation import main as cf_commands


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Manage the CloudFormation stacks of cluster node groups."""
    pass


cli.add_command(cf_commands, name="cloudformation")


if __name__ == "__main__":
    cli()
