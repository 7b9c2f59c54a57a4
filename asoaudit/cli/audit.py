"""
Audit CLI Command

Scores one store listing and prints the scores and recommendations.
"""

import logging
from pathlib import Path
from typing import Optional

import click

from ..core.config import Config, load_yaml
from ..core.exceptions import AsoAuditError
from ..services.audit_orchestrator import AuditOrchestrator
from ..services.models import AuditResult, Severity

logger = logging.getLogger(__name__)

SEVERITY_ICONS = {Severity.CRITICAL: "❌", Severity.WARNING: "⚠️ ", Severity.INFO: "💡"}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def _load_overrides(path: Optional[str]):
    if not path:
        return None
    # JSON is valid YAML, so one loader handles both
    overrides = load_yaml(Path(path))
    if not isinstance(overrides, dict):
        raise click.BadParameter(f"{path} must contain a mapping", param_hint="--overrides")
    return overrides


def _print_report(result: AuditResult, verbose: bool) -> None:
    provenance = result.provenance

    click.echo(f"\n{'='*60}")
    click.echo(f"📊 ASO METADATA AUDIT")
    click.echo(f"{'='*60}")
    click.echo(f"Layers: {' → '.join(provenance.layers)}")
    click.echo(f"\nOverall score:   {result.overall_score:.1f}/100")
    click.echo(f"Title score:     {result.title_element_score:.1f}/100")
    click.echo(f"Subtitle score:  {result.subtitle_element_score:.1f}/100")

    click.echo(f"\n📈 KPI FAMILIES")
    for family in result.families.values():
        click.echo(f"  {family.label:<28} {family.score:6.1f}  (weight {family.weight:.2f})")

    if verbose:
        click.echo(f"\n🔢 KPIS")
        for kpi in result.kpis.values():
            value = f"{kpi.value:.3f}" if kpi.available else "n/a"
            click.echo(f"  {kpi.id:<42} {value:>8}  → {kpi.score:6.1f}")

        click.echo(f"\n🧮 FORMULAS")
        for formula in result.formulas.values():
            status = provenance.formula_status.get(formula.id)
            suffix = f" [{status.value}]" if status is not None else ""
            click.echo(f"  {formula.id:<32} {formula.score:6.1f}{suffix}")

        click.echo(f"\n🔑 KEYWORD COMBOS")
        for combo in result.combos.unique:
            click.echo(f"  {combo.text:<32} {combo.type.value:<10} intent={combo.intent} hook={combo.hook}")

    if result.recommendations:
        click.echo(f"\n💡 RECOMMENDATIONS")
        for i, rec in enumerate(result.recommendations, 1):
            click.echo(f"  {i}. {SEVERITY_ICONS[rec.severity]} [{rec.severity.value}] {rec.message}")
    else:
        click.echo(f"\n✅ No recommendations")

    if provenance.warnings:
        click.echo(f"\n⚠️  RULE WARNINGS")
        for warning in provenance.warnings:
            click.echo(f"  - {warning.kind}: {warning.message}")


@click.command(name="audit")
@click.option("--title", required=True, help="App title as shown in the store")
@click.option("--subtitle", help="Subtitle / short description")
@click.option("--description", help="Long description")
@click.option("--description-file", type=click.Path(exists=True, dir_okay=False),
              help="Read the long description from a file")
@click.option("--category", help="Store category (e.g. Education)")
@click.option("--locale", default="en-US", show_default=True, help="Store locale")
@click.option("--app-name", help="Brand name (defaults to the title's brand segment)")
@click.option("--vertical", help="Vertical id (default: detect from category)")
@click.option("--market", help="Market id (default: detect from locale)")
@click.option("--overrides", type=click.Path(exists=True, dir_okay=False),
              help="YAML or JSON file with client rule overrides")
@click.option("--client-id", help="Client identifier recorded in provenance")
@click.option("--limit", type=int, help="Maximum number of recommendations")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.option("--verbose", is_flag=True, help="Show KPIs, formulas and combos")
def audit_command(
    title: str,
    subtitle: Optional[str],
    description: Optional[str],
    description_file: Optional[str],
    category: Optional[str],
    locale: str,
    app_name: Optional[str],
    vertical: Optional[str],
    market: Optional[str],
    overrides: Optional[str],
    client_id: Optional[str],
    limit: Optional[int],
    as_json: bool,
    verbose: bool,
):
    """
    Audit one listing's metadata.

    Example:
        asoaudit audit --title "Duolingo: Language Lessons" \\
            --subtitle "Learn Spanish, French & more" --category Education
    """
    _configure_logging(verbose)

    if description_file:
        description = Path(description_file).read_text(encoding="utf-8")

    metadata = {
        "title": title,
        "subtitle": subtitle,
        "description": description,
        "category": category,
        "locale": locale,
        "app_name": app_name,
    }

    try:
        settings = Config.engine_settings(max_recommendations=limit)
        orchestrator = AuditOrchestrator(settings=settings)
        result = orchestrator.evaluate(
            metadata,
            vertical=vertical,
            market=market,
            client_overrides=_load_overrides(overrides),
            client_id=client_id,
        )
    except (AsoAuditError, ValueError) as e:
        logger.error(f"Audit failed: {e}")
        raise click.ClickException(str(e))

    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return

    _print_report(result, verbose)
