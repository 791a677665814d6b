#!/usr/bin/env python3
"""
AssessMatch CLI - command-line interface for assessment recommendations.
"""

import json
import sys

import click
from rich.console import Console
from rich.table import Table

from . import __version__

console = Console()


def _print_progress(msg_type, message):
    style = {"success": "green", "error": "red"}.get(msg_type, "dim")
    console.print(f"[{style}]{message}[/{style}]")


@click.group()
@click.version_option(version=__version__)
def main():
    """AssessMatch - recommend skill assessments for a job description."""
    pass


@main.command("recommend")
@click.argument("text", required=False)
@click.option("--file", "-f", "text_file", type=click.Path(exists=True, dir_okay=False),
              help="Read the job description from a file")
@click.option("--limit", "-n", type=int, help="Maximum number of assessments to return")
@click.option("--no-rerank", is_flag=True, help="Skip LLM reranking")
@click.option("--remote-only", is_flag=True, help="Only assessments that support remote testing")
@click.option("--adaptive-only", is_flag=True, help="Only adaptive/IRT assessments")
@click.option("--test-type", "test_types", multiple=True, help="Allowed test type (repeatable)")
@click.option("--max-duration", type=int, help="Maximum duration in minutes")
@click.option("--catalog", "catalog_path", type=click.Path(), help="Catalog CSV to load")
@click.option("--backend", type=click.Choice(["ollama", "openai", "hashing"]), help="Embedding backend")
@click.option("--json", "as_json", is_flag=True, help="Print the response as JSON")
def recommend(text, text_file, limit, no_rerank, remote_only, adaptive_only, test_types,
              max_duration, catalog_path, backend, as_json):
    """Recommend assessments for a job description."""
    from .errors import AssessMatchError
    from .matching import get_recommendation_engine
    from .models import RecommendationFilters, RecommendationOptions

    if text_file:
        with open(text_file, 'r', encoding='utf-8') as f:
            text = f.read()
    elif text is None and not sys.stdin.isatty():
        text = sys.stdin.read()
    if not text:
        console.print("[red]Provide a job description as an argument, with --file, or on stdin[/red]")
        raise click.Abort()

    options = RecommendationOptions(
        max_results=limit,
        filters=RecommendationFilters(
            test_types=list(test_types),
            remote_only=remote_only,
            adaptive_only=adaptive_only,
            max_duration_minutes=max_duration,
        ),
        rerank=False if no_rerank else None,
    )

    try:
        with get_recommendation_engine(catalog_path=catalog_path, embedding_backend=backend) as engine:
            response = engine.recommend(text, options, progress=None if as_json else _print_progress)
    except AssessMatchError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort()

    if as_json:
        click.echo(json.dumps(response.to_dict(), indent=2))
        return

    if not response.recommendations:
        console.print("[yellow]No assessments matched the criteria[/yellow]")
        return

    title = "Recommended Assessments"
    if response.reranked:
        title += " (reranked)"
    table = Table(title=title)
    table.add_column("#", style="cyan", width=3)
    table.add_column("Assessment", style="bold")
    table.add_column("Type", style="yellow")
    table.add_column("Duration", style="magenta")
    table.add_column("Remote", justify="center")
    table.add_column("Adaptive", justify="center")
    table.add_column("Score", style="green", justify="right")
    table.add_column("URL", style="blue", overflow="fold")

    for item in response.recommendations:
        record = item.record
        table.add_row(
            str(item.rank),
            record.name,
            record.test_type or "N/A",
            record.duration or "N/A",
            "✓" if record.remote_testing else "✗",
            "✓" if record.adaptive_irt else "✗",
            f"{item.relevance:.3f}",
            record.url,
        )

    console.print(table)
    start = "cold start" if response.was_cold_start else "warm"
    console.print(f"[dim]{len(response.recommendations)} results in {response.elapsed_ms:.0f} ms ({start})[/dim]")


@main.group()
def catalog():
    """Inspect the assessment catalog."""
    pass


def _catalog_path(path):
    if path:
        return path
    from .config import get_config_manager
    return get_config_manager().get('catalog', 'path')


@catalog.command("validate")
@click.argument("path", required=False)
def validate_catalog(path):
    """Check the catalog CSV for missing columns and malformed rows."""
    from .catalog import CatalogLoader

    path = _catalog_path(path)
    issues = CatalogLoader().validate(path)
    if not issues:
        console.print(f"[green]✓ Catalog {path} is valid[/green]")
        return

    console.print(f"[red]Catalog {path} has {len(issues)} problem(s):[/red]")
    for issue in issues:
        console.print(f"[red]• {issue}[/red]")
    raise click.Abort()


@catalog.command("list")
@click.argument("path", required=False)
@click.option("--limit", type=int, default=50, help="Maximum assessments to display")
def list_catalog(path, limit):
    """List assessments in the catalog."""
    from .catalog import CatalogLoader
    from .errors import MalformedCatalog

    path = _catalog_path(path)
    try:
        records = CatalogLoader().parse(path)
    except MalformedCatalog as e:
        console.print(f"[red]Error reading catalog: {e}[/red]")
        raise click.Abort()

    shown = records[:limit]
    table = Table(title=f"Assessments ({len(shown)} of {len(records)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Type", style="yellow")
    table.add_column("Duration", style="magenta")
    table.add_column("Remote", justify="center")
    table.add_column("Adaptive", justify="center")

    for record in shown:
        table.add_row(
            record.id,
            record.name[:50] + "..." if len(record.name) > 50 else record.name,
            record.test_type or "N/A",
            record.duration or "N/A",
            "✓" if record.remote_testing else "✗",
            "✓" if record.adaptive_irt else "✗",
        )
    console.print(table)


@main.group()
def config():
    """Manage configuration settings."""
    pass


@config.command("show")
@click.option("--section", help="Show specific configuration section only")
def show_config(section):
    """Display current configuration."""
    from .config import get_config_manager

    config_manager = get_config_manager()
    if section:
        section_data = config_manager.get(section)
        if section_data:
            console.print(f"[bold cyan]{section.title()} Configuration:[/bold cyan]")
            for key, value in section_data.items():
                console.print(f"  {key}: {value}")
        else:
            console.print(f"[red]Configuration section '{section}' not found[/red]")
    else:
        config_manager.display_config()


@config.command("set")
@click.argument("section")
@click.argument("key")
@click.argument("value")
def set_config(section, key, value):
    """Set configuration value (format: section key value)."""
    from .config import get_config_manager

    config_manager = get_config_manager()
    existing_value = config_manager.get(section, key)
    if existing_value is not None:
        try:
            value = config_manager.convert_value(value, existing_value)
        except ValueError:
            console.print(f"[red]Invalid {type(existing_value).__name__} value: {value}[/red]")
            raise click.Abort()

    if config_manager.set(section, key, value):
        console.print(f"[green]✓ Set {section}.{key} = {value}[/green]")
    else:
        console.print("[red]✗ Failed to set configuration[/red]")


@config.command("env")
@click.argument("key")
@click.argument("value")
def set_env_var(key, value):
    """Set environment variable in .env file."""
    from .config import get_config_manager

    if get_config_manager().set_env_var(key, value):
        console.print(f"[green]✓ Set environment variable {key}[/green]")
        console.print("[dim]Configuration reloaded with new environment variable[/dim]")
    else:
        console.print("[red]✗ Failed to set environment variable[/red]")


@config.command("unset")
@click.argument("key")
def unset_env_var(key):
    """Remove environment variable from .env file."""
    from .config import get_config_manager

    if get_config_manager().unset_env_var(key):
        console.print(f"[green]✓ Removed environment variable {key}[/green]")
    else:
        console.print("[red]✗ Failed to remove environment variable[/red]")


@config.command("validate")
def validate_config():
    """Validate current configuration."""
    from .config import get_config_manager

    issues = get_config_manager().validate_config()
    if not issues:
        console.print("[green]✓ Configuration validation passed[/green]")
    else:
        console.print("[red]Configuration validation failed:[/red]")
        for issue in issues:
            console.print(f"[red]• {issue}[/red]")


@config.command("reset")
@click.option("--confirm", is_flag=True, help="Skip confirmation prompt")
def reset_config(confirm):
    """Reset configuration to default values."""
    from .config import get_config_manager

    if not confirm:
        if not click.confirm("Reset all configuration to defaults?"):
            console.print("[yellow]Reset cancelled[/yellow]")
            return

    if get_config_manager().reset_to_defaults():
        console.print("[green]✓ Configuration reset to defaults[/green]")
    else:
        console.print("[red]✗ Failed to reset configuration[/red]")


@config.command("template")
@click.option("--output", "-o", help="Output file path")
def export_template(output):
    """Export .env template file."""
    from .config import get_config_manager

    if get_config_manager().export_env_template(output):
        console.print("[cyan]💡 Edit the template file and rename to .env to use[/cyan]")


@main.command("status")
@click.option("--load", is_flag=True, help="Load the catalog to check the full pipeline")
def status(load):
    """Show backend and catalog status."""
    from .config import get_config_manager
    from .matching import get_recommendation_engine

    config_manager = get_config_manager()
    info = config_manager.get_connection_info()

    console.print("[bold green]AssessMatch System Status[/bold green]")

    table = Table(title="System Overview")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Details", style="green")

    catalog_info = info["catalog"]
    table.add_row("Catalog", "Found" if catalog_info["exists"] else "Missing", str(catalog_info["path"]))

    try:
        with get_recommendation_engine() as engine:
            if load:
                engine.initialize(progress=_print_progress)
            engine_status = engine.get_status()
        embedding = engine_status["embedding"]
        details = embedding["backend"]
        if embedding.get("dimension"):
            details += f" ({embedding['dimension']} dims)"
        table.add_row("Embeddings", embedding["state"].title(), details)
        table.add_row("Reranker", "Enabled" if engine_status["reranker"] != "none" else "Disabled",
                      engine_status["reranker"])
        table.add_row("Engine", engine_status["state"].title(),
                      f"{engine_status['catalog_size']} assessments loaded")
    except Exception as e:
        table.add_row("Engine", "Error", f"Status check failed: {str(e)[:60]}")

    console.print(table)


@main.command("test-embedding")
@click.option("--text", default="Numerical reasoning for data analysts.",
              help="Text to use for testing embeddings")
@click.option("--backend", type=click.Choice(["ollama", "openai", "hashing"]), help="Embedding backend")
def test_embedding(text, backend):
    """Test the configured embedding backend."""
    from .embeddings import test_embedding_client

    if test_embedding_client(text, backend=backend):
        console.print("[bold green]Embedding test completed successfully![/bold green]")
    else:
        console.print("[bold red]Embedding test failed![/bold red]")
        raise click.Abort()


@main.command("serve")
@click.option("--host", help="Interface to bind (default from config)")
@click.option("--port", type=int, help="Port to listen on (default from config)")
@click.option("--preload", is_flag=True, help="Load the catalog before accepting requests")
def serve(host, port, preload):
    """Run the web API."""
    from .config import get_config_manager
    from .webapp import app, get_engine, socketio

    config_manager = get_config_manager()
    host = host or config_manager.get('web', 'host')
    port = port or config_manager.get('web', 'port')

    if preload:
        get_engine().initialize(progress=_print_progress)

    console.print(f"[green]Starting AssessMatch web API on http://{host}:{port}[/green]")
    socketio.run(app, debug=False, host=host, port=port, allow_unsafe_werkzeug=True)


if __name__ == "__main__":
    main()
