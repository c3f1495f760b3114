"""Main CLI entry point for the prospect-engine command."""

import json
import logging
import sys
import click
from pathlib import Path
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.panel import Panel
from typing import Optional

from ..automation.webhooks import RetryPolicy, WebhookManager, WebhookEvent
from ..core.config import EngineConfigManager, settings
from ..core.engine import ProspectEngine, RecomputeResult
from ..core.errors import EngineError
from ..storage.database import ProspectDatabase
from ..storage.models import AnalysisStatus, AnalysisType, CompanySize, ProspectStage, ServiceTier

console = Console()

TEMPERATURE_COLORS = {"cold": "dim", "warm": "yellow", "hot": "red", "interested": "magenta", "qualified": "green"}


def get_engine(ctx: click.Context) -> ProspectEngine:
    """Build an engine from the group options."""
    opts = ctx.obj
    db = ProspectDatabase(Path(opts["db_path"]) if opts["db_path"] else None)
    config = EngineConfigManager(Path(opts["config_path"]) if opts["config_path"] else None).config
    # Delivery runs inline here, so keep the retry budget short
    webhooks = WebhookManager(async_delivery=False, retry=RetryPolicy(attempts=2, base_delay=0.5, timeout=5))
    return ProspectEngine(db=db, config=config, webhooks=webhooks if webhooks.webhooks else None)


def fail(message: str):
    console.print(f"[red]{escape(message)}[/red]")
    sys.exit(1)


def print_result(result: RecomputeResult):
    """Render a recompute outcome."""
    score = result.score
    color = TEMPERATURE_COLORS.get(score.temperature.value, "")
    lines = [
        f"[bold]Prospect:[/bold] {result.prospect.display_name} ({result.prospect.id})",
        f"[bold]Stage:[/bold] {result.prospect.stage.value}",
        f"[bold]Lead score:[/bold] {score.lead_score}",
        f"[bold]Engagement score:[/bold] {score.engagement_score}",
        f"[bold]Temperature:[/bold] [{color}]{score.temperature.value}[/{color}]" if color
        else f"[bold]Temperature:[/bold] {score.temperature.value}",
        f"[bold]Status:[/bold] {score.lead_status.value}",
    ]
    if result.transition:
        lines.append(
            f"[green]Stage advanced {result.transition.from_stage.value} -> {result.transition.to_stage.value}[/green]"
        )
    if result.assignment:
        lines.append(
            f"[green]Assigned {result.assignment.campaign_id} / {result.assignment.sequence_id}[/green]"
        )
    console.print(Panel.fit("\n".join(lines), title="Score"))


@click.group()
@click.version_option(version="1.0.0", prog_name="prospect-engine")
@click.option("--db", "db_path", help="Custom database path")
@click.option("--config", "config_path", help="Custom engine config path")
@click.option("--tenant", default=None, help="Tenant ID (defaults to PE_TENANT)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, db_path: Optional[str], config_path: Optional[str], tenant: Optional[str], verbose: bool):
    """Prospect Engine - lead scoring and campaign assignment.

    \b
    Quick Start:
      prospect-engine init
      prospect-engine add-prospect acme --name "Acme Law" --industry legal --size medium
      prospect-engine record-analysis acme --type website
      prospect-engine ingest events.json
      prospect-engine show
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj.update({
        "db_path": db_path,
        "config_path": config_path,
        "tenant": tenant or settings.default_tenant,
    })


# ============================================================================
# CORE COMMANDS
# ============================================================================

@cli.command()
@click.pass_context
def init(ctx: click.Context):
    """Initialize the prospect database and engine config."""
    opts = ctx.obj
    db = ProspectDatabase(Path(opts["db_path"]) if opts["db_path"] else None)
    manager = EngineConfigManager(Path(opts["config_path"]) if opts["config_path"] else None)
    if not manager.config_path.exists():
        manager.save_config()

    console.print(Panel.fit(
        f"[green]✓ Database initialized![/green]\n\n"
        f"Database: [cyan]{db.db_path}[/cyan]\n"
        f"Config:   [cyan]{manager.config_path}[/cyan]\n"
        f"Tenant:   [cyan]{opts['tenant']}[/cyan]",
        title="Prospect Engine"
    ))


@cli.command("add-prospect")
@click.argument("prospect_id")
@click.option("--name", default="", help="Company name")
@click.option("--industry", default="", help="Industry")
@click.option("--size", "company_size", type=click.Choice([s.value for s in CompanySize]), default="unknown")
@click.option("--revenue-band", help="Revenue band")
@click.option("--website", help="Company website")
@click.pass_context
def add_prospect(ctx, prospect_id, name, industry, company_size, revenue_band, website):
    """Register a prospect or update its attributes."""
    engine = get_engine(ctx)
    try:
        prospect = engine.register_prospect(ctx.obj["tenant"], {
            "id": prospect_id,
            "name": name,
            "industry": industry,
            "company_size": company_size,
            "revenue_band": revenue_band,
            "website": website,
        })
        result = engine.recompute(ctx.obj["tenant"], prospect.id)
    except EngineError as e:
        fail(str(e))

    console.print(f"[green]✓ Prospect {prospect.id} saved[/green] ({prospect.stage.value})")
    print_result(result)


@cli.command("add-opportunity")
@click.argument("prospect_id")
@click.option("--priority", "-p", type=click.IntRange(1, 100), required=True, help="Priority score 1-100")
@click.option("--process", "process_name", default="", help="Process name")
@click.option("--tier", "service_tier", type=click.Choice([t.value for t in ServiceTier]), help="Service tier")
@click.option("--savings", type=float, default=0.0, help="Estimated annual savings")
@click.pass_context
def add_opportunity(ctx, prospect_id, priority, process_name, service_tier, savings):
    """Add an automation opportunity and rescore."""
    engine = get_engine(ctx)
    try:
        record, result = engine.add_opportunity(ctx.obj["tenant"], prospect_id, {
            "priority_score": priority,
            "process_name": process_name,
            "service_tier": service_tier,
            "annual_savings": savings,
        })
    except EngineError as e:
        fail(str(e))

    console.print(f"[green]✓ Opportunity #{record.id} added[/green]")
    print_result(result)


@cli.command("record-analysis")
@click.argument("prospect_id")
@click.option("--type", "analysis_type", type=click.Choice([t.value for t in AnalysisType]), required=True)
@click.option("--status", type=click.Choice([s.value for s in AnalysisStatus]), default="completed")
@click.option("--version", "version", type=int, help="Snapshot version (defaults to next)")
@click.option("--quality", type=click.IntRange(0, 100), help="Content quality score")
@click.pass_context
def record_analysis(ctx, analysis_type, prospect_id, status, version, quality):
    """Record an analysis snapshot for a prospect."""
    engine = get_engine(ctx)
    try:
        result = engine.record_analysis(
            ctx.obj["tenant"],
            prospect_id,
            analysis_type,
            status=status,
            version=version,
            content_quality_score=quality,
        )
    except EngineError as e:
        fail(str(e))
    print_result(result)


@cli.command()
@click.argument("path", type=click.Path(exists=True))
@click.pass_context
def ingest(ctx, path: str):
    """Ingest engagement events from a JSON file (object or list)."""
    try:
        with open(path) as f:
            data = json.load(f)
    except ValueError as e:
        fail(f"Invalid JSON in {path}: {e}")

    payloads = data if isinstance(data, list) else [data]
    engine = get_engine(ctx)
    result = engine.ingest_many(ctx.obj["tenant"], payloads)
    batch = result.collected

    output = (
        f"[green]✓ Ingest complete[/green]\n\n"
        f"Accepted:   [cyan]{batch.accepted_count}[/cyan]\n"
        f"Duplicates: [cyan]{batch.duplicate_count}[/cyan]\n"
        f"Rejected:   [cyan]{len(batch.errors)}[/cyan]\n"
        f"Rescored:   [cyan]{len(result.recomputes)}[/cyan]"
    )
    for index, error in batch.errors[:10]:
        output += f"\n[red]#{index}: {escape(str(error))}[/red]"
    console.print(Panel.fit(output, title=f"Ingested {Path(path).name}"))


@cli.command()
@click.argument("prospect_id")
@click.option("--explain", is_flag=True, help="Show the score breakdown")
@click.pass_context
def score(ctx, prospect_id: str, explain: bool):
    """Recompute a prospect's scores from its full history."""
    engine = get_engine(ctx)
    try:
        result = engine.recompute(ctx.obj["tenant"], prospect_id)
        explanation = engine.explain(ctx.obj["tenant"], prospect_id) if explain else None
    except EngineError as e:
        fail(str(e))

    print_result(result)
    if explanation:
        console.print(explanation)


@cli.command()
@click.argument("text")
@click.pass_context
def classify(ctx, text: str):
    """Classify reply text."""
    engine = get_engine(ctx)
    result = engine.classify_reply(text)

    console.print(Panel.fit(
        f"[bold]Sentiment:[/bold] {result.sentiment.value}\n"
        f"[bold]Intent:[/bold] {result.intent.value}\n"
        f"[bold]Confidence:[/bold] {result.confidence}\n"
        f"[bold]Needs review:[/bold] {'yes' if result.needs_human_review else 'no'}\n"
        f"[bold]Matched:[/bold] {', '.join(result.matched_phrases) or 'none'}",
        title="Reply Classification"
    ))


@cli.command()
@click.argument("prospect_id")
@click.pass_context
def assign(ctx, prospect_id: str):
    """Show the campaign a prospect resolves to now."""
    engine = get_engine(ctx)
    try:
        assignment = engine.resolve_assignment(ctx.obj["tenant"], prospect_id)
    except EngineError as e:
        fail(str(e))

    console.print(Panel.fit(
        f"[bold]Campaign:[/bold] {assignment.campaign_id}\n"
        f"[bold]Sequence:[/bold] {assignment.sequence_id}\n"
        f"[bold]Delay:[/bold] {assignment.delay_hours:g}h\n"
        f"[bold]Priority:[/bold] {assignment.priority}\n"
        f"[dim]{assignment.reason}[/dim]",
        title=f"Assignment for {prospect_id}"
    ))


@cli.command()
@click.option("--stage", type=click.Choice([s.value for s in ProspectStage]), help="Filter by stage")
@click.option("--limit", "-n", default=20, help="Number of prospects to show")
@click.pass_context
def show(ctx, stage: Optional[str], limit: int):
    """Display prospects with their current scores."""
    engine = get_engine(ctx)
    tenant = ctx.obj["tenant"]
    prospects = engine.db.list_prospects(tenant, stage=ProspectStage(stage) if stage else None, limit=limit)

    if not prospects:
        console.print("[yellow]No prospects found matching criteria.[/yellow]")
        return

    table = Table(title=f"Prospects ({len(prospects)})" + (f" - {stage}" if stage else ""))
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan", max_width=25)
    table.add_column("Stage")
    table.add_column("Lead", justify="right", style="bold")
    table.add_column("Engage", justify="right")
    table.add_column("Temp", justify="center")
    table.add_column("Campaign", max_width=30)

    for prospect in prospects:
        record = engine.db.get_score(tenant, prospect.id)
        assignment = engine.db.latest_assignment(tenant, prospect.id)
        temperature = record.temperature.value if record else "-"
        color = TEMPERATURE_COLORS.get(temperature, "")
        table.add_row(
            prospect.id,
            prospect.display_name[:25],
            prospect.stage.value,
            str(record.lead_score) if record else "-",
            str(record.engagement_score) if record else "-",
            f"[{color}]{temperature}[/{color}]" if color else temperature,
            assignment.campaign_id if assignment else "-",
        )

    console.print(table)


@cli.command()
@click.argument("prospect_id")
@click.pass_context
def history(ctx, prospect_id: str):
    """Show stage transitions and assignment history."""
    engine = get_engine(ctx)
    tenant = ctx.obj["tenant"]
    try:
        engine.get_prospect(tenant, prospect_id)
    except EngineError as e:
        fail(str(e))

    transitions = engine.db.list_transitions(tenant, prospect_id)
    table = Table(title=f"Stage transitions ({len(transitions)})")
    table.add_column("When", style="dim")
    table.add_column("From")
    table.add_column("To", style="bold")
    table.add_column("Trigger")
    for t in transitions:
        table.add_row(t.occurred_at.strftime("%Y-%m-%d %H:%M"), t.from_stage.value, t.to_stage.value, t.trigger)
    console.print(table)

    assignments = engine.db.assignment_history(tenant, prospect_id)
    table = Table(title=f"Assignments ({len(assignments)})")
    table.add_column("When", style="dim")
    table.add_column("Campaign", style="cyan")
    table.add_column("Sequence")
    table.add_column("Delay", justify="right")
    table.add_column("Priority")
    for a in assignments:
        table.add_row(
            a.assigned_at.strftime("%Y-%m-%d %H:%M"),
            a.campaign_id,
            a.sequence_id,
            f"{a.delay_hours:g}h",
            a.priority,
        )
    console.print(table)


@cli.command()
@click.argument("prospect_id")
@click.argument("to_stage", type=click.Choice([s.value for s in ProspectStage]))
@click.option("--operator", default="cli", help="Who made the change")
@click.pass_context
def stage(ctx, prospect_id: str, to_stage: str, operator: str):
    """Manually set a prospect's stage."""
    engine = get_engine(ctx)
    try:
        transition = engine.manual_transition(ctx.obj["tenant"], prospect_id, to_stage, operator=operator)
    except EngineError as e:
        fail(str(e))

    if transition is None:
        console.print(f"[yellow]Prospect {prospect_id} already at {to_stage}[/yellow]")
    else:
        console.print(
            f"[green]✓ {prospect_id}: {transition.from_stage.value} -> {transition.to_stage.value}[/green]"
        )


# ============================================================================
# CONFIG
# ============================================================================

@cli.group()
def config():
    """View and adjust scoring configuration."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx):
    """Print the engine configuration as JSON."""
    path = ctx.obj["config_path"]
    manager = EngineConfigManager(Path(path) if path else None)
    console.print_json(json.dumps(manager.config.to_dict()))


@config.command("thresholds")
@click.option("--enterprise", type=int, required=True)
@click.option("--professional", type=int, required=True)
@click.option("--warm", type=int, required=True)
@click.pass_context
def config_thresholds(ctx, enterprise: int, professional: int, warm: int):
    """Set lead score thresholds for the campaign tiers."""
    path = ctx.obj["config_path"]
    manager = EngineConfigManager(Path(path) if path else None)
    try:
        manager.update_assignment_thresholds(enterprise, professional, warm)
    except ValueError as e:
        fail(str(e))
    console.print(f"[green]✓ Thresholds set: {enterprise}/{professional}/{warm}[/green]")


@config.command("size-points")
@click.argument("size", type=click.Choice([s.value for s in CompanySize]))
@click.argument("points", type=int)
@click.pass_context
def config_size_points(ctx, size: str, points: int):
    """Set lead score points for a company size."""
    path = ctx.obj["config_path"]
    manager = EngineConfigManager(Path(path) if path else None)
    try:
        manager.set_size_points(size, points)
    except ValueError as e:
        fail(str(e))
    console.print(f"[green]✓ {size} = {points} points[/green]")


@config.command("regulated")
@click.argument("pattern")
@click.pass_context
def config_regulated(ctx, pattern: str):
    """Add a regulated industry pattern."""
    path = ctx.obj["config_path"]
    manager = EngineConfigManager(Path(path) if path else None)
    manager.add_regulated_industry(pattern)
    console.print(f"Regulated industries: {', '.join(manager.config.regulated_industries)}")


# ============================================================================
# WEBHOOKS
# ============================================================================

@cli.group()
def webhooks():
    """Manage notification webhooks."""
    pass


@webhooks.command("add")
@click.argument("webhook_id")
@click.argument("url")
@click.option("--event", "-e", "events", multiple=True,
              type=click.Choice([e.value for e in WebhookEvent]),
              help="Event to subscribe to (repeatable, default all)")
@click.option("--secret", help="HMAC signing secret")
def webhooks_add(webhook_id: str, url: str, events, secret: Optional[str]):
    """Register a webhook endpoint."""
    manager = WebhookManager()
    selected = [WebhookEvent(e) for e in events] or list(WebhookEvent)
    try:
        manager.register(webhook_id, url, selected, secret=secret)
    except ValueError as e:
        fail(str(e))
    console.print(f"[green]✓ Webhook {webhook_id} registered[/green] ({', '.join(e.value for e in selected)})")


@webhooks.command("list")
def webhooks_list():
    """List registered webhooks."""
    manager = WebhookManager()
    hooks = manager.list_webhooks()
    if not hooks:
        console.print("[yellow]No webhooks registered.[/yellow]")
        return

    table = Table(title=f"Webhooks ({len(hooks)})")
    table.add_column("ID", style="cyan")
    table.add_column("URL")
    table.add_column("Events")
    table.add_column("Signed", justify="center")
    for hook in hooks:
        table.add_row(hook.id, hook.url, ", ".join(e.value for e in hook.events), "yes" if hook.secret else "no")
    console.print(table)


@webhooks.command("remove")
@click.argument("webhook_id")
def webhooks_remove(webhook_id: str):
    """Remove a webhook endpoint."""
    manager = WebhookManager()
    if manager.unregister(webhook_id):
        console.print(f"[green]✓ Webhook {webhook_id} removed[/green]")
    else:
        fail(f"Webhook {webhook_id} not found")


if __name__ == "__main__":
    cli()
