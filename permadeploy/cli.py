"""CLI entry point for permadeploy."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich import print as rprint
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from permadeploy_core.analysis import analyze_tree
from permadeploy_core.caching import analyze_cache
from permadeploy_core.config import PermadeployConfig, load_config
from permadeploy_core.config.loader import DEFAULT_CONFIG_TEMPLATE
from permadeploy_core.errors import DeployError, VersionConflictError
from permadeploy_core.orchestrator import (
    DeployCallbacks,
    DeploymentResult,
    DeployRequest,
    create_deployer,
)
from permadeploy_core.plugins import PluginLoader
from permadeploy_core.publish import PublishResult
from permadeploy_core.record import InscribedFile, RecordStore, previous_inscriptions
from permadeploy_core.scheduling import compute_waves, split_root_documents
from permadeploy_core.versioning import VersionReader

app = typer.Typer(
    name="permadeploy",
    help="Publish static web builds permanently on-chain.",
)

config_app = typer.Typer(help="Manage permadeploy configuration.")
app.add_typer(config_app, name="config")

version_app = typer.Typer(help="Query on-chain version history.")
app.add_typer(version_app, name="version")

# Global state
_config: PermadeployConfig | None = None

_LOG_LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(level: str = "info", fmt: str = "text") -> None:
    """Route library logging to the terminal (rich) or to JSON lines."""
    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(_JsonFormatter())
    else:
        handler = RichHandler(show_path=False, markup=False)
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(_LOG_LEVELS.get(level, logging.INFO))


def _get_config() -> PermadeployConfig:
    if _config is None:
        return load_config()
    return _config


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to permadeploy.yaml")
    ] = None,
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
) -> None:
    """Global options."""
    global _config
    try:
        _config = load_config(config)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    configure_logging("debug" if verbose else _config.log_level, _config.log_format)


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


class _ConsoleCallbacks(DeployCallbacks):
    def on_wave_start(self, index: int, total: int, paths: list[str]) -> None:
        rprint(f"[bold]Wave {index + 1}/{total}[/bold] ({len(paths)} files)")

    def on_file_cached(self, file: InscribedFile) -> None:
        rprint(f"  [dim]cached[/dim] {file.original_path}")

    def on_published(self, result: PublishResult) -> None:
        label = result.job.path
        if result.job.kind == "chunk":
            label += f" [dim](chunk {result.job.chunk_index + 1}/{result.job.total_chunks})[/dim]"
        rprint(f"  [green]published[/green] {label} -> {result.url_path}")

    def on_stage(self, message: str) -> None:
        rprint(f"[bold]{message}...[/bold]")


def _display_result(result: DeploymentResult) -> None:
    entry = result.entry
    title = "Dry run complete" if result.dry_run else "Deployment complete"
    lines = [
        f"[dim]Entry point:[/dim] {result.entry_point}",
        f"[dim]Files:[/dim]       {entry.total_files} ({entry.new_files} new, {entry.cached_count} cached)",
        f"[dim]Size:[/dim]        {_format_size(entry.total_size)}",
        f"[dim]Cost:[/dim]        {entry.total_cost} sats",
        f"[dim]Txs:[/dim]         {len(entry.txids)}",
    ]
    if entry.version:
        lines.append(f"[dim]Version:[/dim]     {entry.version}")
    if result.chain_origin:
        lines.append(f"[dim]Chain:[/dim]       {result.chain_origin}")
    if result.record_written:
        lines.append(f"[dim]Record:[/dim]      {result.record_path}")
    rprint(Panel("\n".join(lines), title=title, border_style="green"))


@app.command()
def deploy(
    build_dir: Path = typer.Argument(..., help="Build output directory"),
    version: str | None = typer.Option(None, "--version", "-v", help="Version tag"),
    description: str = typer.Option("", "--description", "-d", help="Version description"),
    app_name: str | None = typer.Option(None, "--app-name", help="Application name"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Simulate without broadcasting"),
    origin: str | None = typer.Option(None, "--origin", help="Version chain origin outpoint"),
    sats_per_kb: int | None = typer.Option(None, "--sats-per-kb", help="Fee rate"),
    record: Path | None = typer.Option(None, "--record", help="Deployment record path"),
) -> None:
    """Publish a build directory."""
    cfg = _get_config()
    if sats_per_kb is not None:
        cfg = cfg.model_copy(
            update={"publish": cfg.publish.model_copy(update={"sats_per_kb": sats_per_kb})}
        )

    if dry_run:
        rprint("[yellow](dry run: nothing will be broadcast)[/yellow]")
    request = DeployRequest(
        build_dir=build_dir,
        version=version,
        description=description,
        app_name=app_name,
        origin=origin,
        record_path=record,
    )
    try:
        deployer = create_deployer(cfg, dry_run=dry_run, callbacks=_ConsoleCallbacks())
        result = asyncio.run(deployer.deploy(request))
    except VersionConflictError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except DeployError as e:
        rprint(f"[red]Error:[/red] {e}")
        rprint("[dim]No deployment record was written; it is safe to re-run.[/dim]")
        raise typer.Exit(1)
    _display_result(result)


@app.command()
def analyze(
    build_dir: Path = typer.Argument(..., help="Build output directory"),
    record: Path | None = typer.Option(None, "--record", help="Deployment record path"),
) -> None:
    """Show the publish waves and what a redeploy would reuse."""
    cfg = _get_config()
    try:
        analysis = analyze_tree(build_dir, cfg.analysis.exclude_patterns)
    except DeployError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    history = RecordStore(record or Path(cfg.record.path)).load()
    previous = previous_inscriptions(history) if cfg.cache.enabled else {}
    cache = analyze_cache(
        analysis.order,
        analysis.graph,
        previous,
        cfg.network.content_url,
        cfg.cache.trust_legacy_chunks,
    )
    waves, roots = split_root_documents(compute_waves(analysis.graph))

    table = Table(title=f"Publish plan ({len(analysis.files)} files)")
    table.add_column("Wave", justify="right")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Deps", justify="right")
    table.add_column("Status")
    for i, wave in enumerate(waves + ([roots] if roots else [])):
        label = str(i) if i < len(waves) else "root"
        for path in wave:
            f = analysis.get(path)
            status = "[dim]cached[/dim]" if path in cache.reused else "[green]publish[/green]"
            table.add_row(label, path, _format_size(f.size), str(len(f.dependencies)), status)
    rprint(table)
    if analysis.skipped:
        rprint(f"[yellow]Skipped:[/yellow] {', '.join(analysis.skipped)}")
    for path in cache.legacy_matches:
        rprint(f"[yellow]Legacy size-only match:[/yellow] {path}")


@app.command()
def history(
    record: Path | None = typer.Option(None, "--record", help="Deployment record path"),
) -> None:
    """List deployments from the local record."""
    cfg = _get_config()
    store = RecordStore(record or Path(cfg.record.path))
    hist = store.load()
    if hist is None or not hist.deployments:
        rprint(f"[yellow]No deployments recorded in {store.path}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Deployments ({hist.total_deployments})")
    table.add_column("Version", style="cyan")
    table.add_column("Date")
    table.add_column("Files", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Cost (sats)", justify="right")
    table.add_column("Entry point", style="green")
    for d in reversed(hist.deployments):
        table.add_row(
            d.version or "-",
            d.timestamp,
            str(d.total_files),
            str(d.new_files),
            str(d.total_cost),
            d.entry_point,
        )
    rprint(table)
    if hist.chain_origin_id:
        rprint(f"[dim]Version chain:[/dim] {hist.chain_origin_id}")


def _reader(cfg: PermadeployConfig) -> VersionReader:
    return VersionReader(PluginLoader(cfg).load_indexer(), cfg.retry.to_policy())


@version_app.command("history")
def version_history(
    origin: str = typer.Argument(..., help="Version chain origin outpoint"),
) -> None:
    """Show every version recorded on a chain."""
    cfg = _get_config()
    try:
        info = asyncio.run(_reader(cfg).get_info(origin))
    except DeployError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not info.history:
        rprint(f"[yellow]No versions recorded on {origin}[/yellow]")
        return
    table = Table(title=f"{info.app_name} ({len(info.history)} versions)")
    table.add_column("Version", style="cyan")
    table.add_column("Outpoint", style="green")
    table.add_column("Description")
    for v in info.history:
        table.add_row(v.version, v.outpoint, v.description or "-")
    rprint(table)


@version_app.command("info")
def version_info(
    origin: str = typer.Argument(..., help="Version chain origin outpoint"),
    version: str = typer.Argument(..., help="Version tag"),
) -> None:
    """Show where one version lives."""
    cfg = _get_config()
    try:
        details = asyncio.run(_reader(cfg).get_version_details(origin, version))
    except DeployError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if details is None:
        rprint(f"[red]Error:[/red] Version {version} not found on {origin}")
        raise typer.Exit(1)
    base = cfg.network.content_url.rstrip("/")
    rprint(
        Panel(
            f"[dim]Outpoint:[/dim]    {details.outpoint}\n"
            f"[dim]URL:[/dim]         {base}/content/{details.outpoint}\n"
            f"[dim]Description:[/dim] {details.description or '-'}",
            title=f"Version {details.version}",
            border_style="blue",
        )
    )


@app.command()
def plugins() -> None:
    """List installed plugins."""
    found = PluginLoader(_get_config()).discover()
    for plugin_type, names in found.items():
        rprint(f"[bold]{plugin_type}:[/bold] {', '.join(names) if names else '[dim]none[/dim]'}")


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    cfg = _get_config()
    rprint(Syntax(yaml.dump(cfg.model_dump(), default_flow_style=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default permadeploy.yaml in current directory."""
    target = Path("permadeploy.yaml")
    if target.exists() and not force:
        rprint("[yellow]permadeploy.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")
