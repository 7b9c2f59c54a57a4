"""
Main CLI entry point for asoaudit
"""

import click

from .audit import audit_command
from .rulesets import rulesets_group


@click.group()
@click.version_option(version='0.1.0')
def cli():
    """
    asoaudit - App Store Optimization metadata audit

    Score a listing's title, subtitle and description against layered
    vertical, market and client rules, and list what to fix first.
    """
    pass


# Register commands
cli.add_command(audit_command)
cli.add_command(rulesets_group)


if __name__ == '__main__':
    cli()
