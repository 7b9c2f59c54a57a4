"""
Ruleset CLI Commands

Inspect the bundled rule library and the merged RuleSet for a layer stack.
"""

import json
import logging
from typing import Optional

import click

from ..core.config import Config, dump_yaml
from ..core.exceptions import AsoAuditError
from ..services.ruleset_loader import RuleSetLoader, load_rule_library

logger = logging.getLogger(__name__)


@click.group(name="rulesets")
def rulesets_group():
    """Inspect rule layers."""
    pass


@rulesets_group.command(name="list")
@click.option("--path", type=click.Path(exists=True, file_okay=False),
              help="Rule library directory (default: bundled rulesets)")
def list_rulesets(path: Optional[str]):
    """List available verticals and markets."""
    try:
        library = load_rule_library(path or Config.RULESETS_DIR)
    except AsoAuditError as e:
        raise click.ClickException(str(e))

    click.echo(f"📚 Rule library: {path or Config.RULESETS_DIR}")
    click.echo(f"\nVerticals ({len(library.verticals)}):")
    for layer in library.verticals.values():
        categories = ", ".join(library.vertical_categories.get(layer.id, []))
        click.echo(f"  {layer.id:<20} {layer.label}" + (f"  [{categories}]" if categories else ""))
    click.echo(f"\nMarkets ({len(library.markets)}):")
    for layer in library.markets.values():
        click.echo(f"  {layer.id:<20} {layer.label}")

    if library.warnings:
        click.echo(f"\n⚠️  {len(library.warnings)} warning(s) while loading:")
        for warning in library.warnings:
            click.echo(f"  - {warning.message}")


@rulesets_group.command(name="show")
@click.option("--vertical", help="Vertical id")
@click.option("--market", help="Market id")
@click.option("--path", type=click.Path(exists=True, file_okay=False),
              help="Rule library directory (default: bundled rulesets)")
@click.option("--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml", show_default=True)
def show_ruleset(vertical: Optional[str], market: Optional[str], path: Optional[str], fmt: str):
    """
    Print the merged RuleSet for a vertical/market stack.

    Example:
        asoaudit rulesets show --vertical finance --market uk --format json
    """
    try:
        library = load_rule_library(path or Config.RULESETS_DIR)
        rule_set = RuleSetLoader(library, drift_threshold=Config.DRIFT_THRESHOLD).load(
            vertical=vertical, market=market
        )
    except AsoAuditError as e:
        raise click.ClickException(str(e))

    data = rule_set.model_dump(mode="json")
    if fmt == "json":
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        click.echo(dump_yaml(data))
