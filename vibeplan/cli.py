"""Typer-based CLI for vibeplan."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import DEFAULT_MODELS, Settings, load_settings, save_llm_config
from .errors import ConfigError, RequestValidationError, ServiceError
from .graph_export import export_dot, export_json
from .planner import analyze_prompt

app = typer.Typer(
    help="vibeplan: turn a repository into a searchable knowledge base and phased work plans.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)

PROVIDERS = ("groq", "openai", "openrouter", "ollama")


class State:
    config_path: Optional[Path] = None
    as_json: bool = False


state = State()


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"vibeplan v{__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit.",
        callback=version_callback, is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Enable debug logging."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.toml."),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON."),
):
    """Index repositories, search them and plan development phases."""
    configure_logging(verbose)
    state.config_path = config
    state.as_json = as_json


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _settings() -> Settings:
    try:
        return load_settings(state.config_path)
    except ConfigError as exc:
        err_console.print(f"[red]❌ {exc}[/red]")
        raise typer.Exit(code=1)


def _service():
    from .service import VibePlanService

    try:
        return VibePlanService(_settings())
    except OSError as exc:
        err_console.print(f"[red]❌ Cannot prepare storage: {exc}[/red]")
        raise typer.Exit(code=1)


def _run(func, *args, **kwargs):
    """Call a service method, mapping boundary errors to exit codes."""
    try:
        return func(*args, **kwargs)
    except RequestValidationError as exc:
        err_console.print("[red]❌ Invalid request:[/red]")
        for error in exc.errors:
            err_console.print(f"  - {error}")
        raise typer.Exit(code=2)
    except ServiceError as exc:
        err_console.print(f"[red]❌ {exc.public_message}[/red]")
        raise typer.Exit(code=1)


def _print_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _parse_file_ref(raw: str) -> Dict[str, Any]:
    """``path[:language[:similarity]]`` -> relevant file reference."""
    parts = raw.rsplit(":", 2)
    ref: Dict[str, Any] = {"path": parts[0], "language": None, "similarity": 1.0}
    if len(parts) >= 2 and parts[1]:
        ref["language"] = parts[1]
    if len(parts) == 3:
        try:
            ref["similarity"] = float(parts[2])
        except ValueError:
            raise typer.BadParameter(f"Invalid similarity in '{raw}'")
    return ref


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------

@app.command("index")
def index_repo(
    repo_url: str = typer.Argument(..., help="Git URL of the repository."),
    branch: str = typer.Option("main", "--branch", "-b", help="Branch to index."),
):
    """Clone, analyse and index a repository."""
    service = _service()
    with console.status(f"Indexing {repo_url} ({branch})..."):
        result = _run(service.index_repository, repo_url, branch)

    if state.as_json:
        _print_json(result.to_dict())
        return

    graph = result.dependency_graph.stats()
    status = "already indexed (graph rebuilt)" if result.cached else "indexed"
    console.print(Panel(
        f"Namespace: [cyan]{result.namespace}[/cyan]\n"
        f"Status: {status}\n"
        f"Files: {graph['totalFiles']} | Dependencies: {graph['totalDependencies']}\n"
        f"Languages: {', '.join(graph['languages']) or '-'}\n"
        f"Entry points: {len(graph['entryPoints'])}",
        title="✅ Repository",
    ))
    enhanced = result.stats.get("enhanced_analysis")
    if enhanced:
        table = Table(title="Analysis", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Value")
        for priority, count in enhanced["priority_breakdown"].items():
            table.add_row(f"{priority} priority files", str(count))
        table.add_row("AI summaries", f"{enhanced['ai_summaries_generated']} ok / {enhanced['ai_summaries_failed']} failed")
        table.add_row("Issues", str(enhanced["total_issues"]))
        table.add_row("Top tags", ", ".join(enhanced["top_tags"]))
        console.print(table)


@app.command("search")
def search(
    repo_url: str = typer.Argument(..., help="Git URL of an indexed repository."),
    query: str = typer.Argument(..., help="Search text."),
    branch: str = typer.Option("main", "--branch", "-b"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum results (1-100)."),
):
    """Search the indexed records of a repository."""
    hits = _run(_service().search, repo_url, query, branch=branch, limit=limit)
    if state.as_json:
        _print_json(hits)
        return
    if not hits:
        typer.echo("No matches found.")
        return
    table = Table(show_header=True)
    table.add_column("Score", justify="right")
    table.add_column("Type", style="magenta")
    table.add_column("File", style="cyan")
    table.add_column("Preview")
    for hit in hits:
        table.add_row(f"{hit['score']:.3f}", hit["type"], hit["filePath"] or "-", hit["contentPreview"][:80])
    console.print(table)


@app.command("phases")
def phases(
    namespace: str = typer.Argument(..., help="Namespace from 'vibeplan index'."),
    prompt: str = typer.Argument(..., help="What you want to change."),
    context_type: Optional[str] = typer.Option(
        None, "--context-type", "-t", help="specific, improvement, refactor, debug or feature.",
    ),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="rules or llm."),
):
    """Break a development goal into atomic phases."""
    result = _run(_service().generate_phases, namespace, prompt, context_type, strategy)
    if state.as_json:
        _print_json(result)
        return

    analysis = result["prompt_analysis"]
    console.print(
        f"[bold]Query type:[/bold] {analysis['queryType']}  "
        f"[bold]Complexity:[/bold] {analysis['complexity']}  "
        f"[bold]Context files:[/bold] {result['context_files_used']}"
    )
    for phase in result["phases"]:
        deps = ", ".join(phase["dependencies"]) or "none"
        files = "\n".join(f"  • {p}" for p in phase["relevantFiles"]) or "  (no files)"
        console.print(Panel(
            f"{phase['description']}\n\n[dim]Files:[/dim]\n{files}\n"
            f"[dim]Depends on: {deps} | {phase['category']} | "
            f"complexity {phase['estimatedComplexity']} | priority {phase['priority']}[/dim]",
            title=f"{phase['id']}: {phase['title']}",
        ))


@app.command("plan")
def plan(
    namespace: str = typer.Argument(..., help="Namespace from 'vibeplan index'."),
    phase_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file holding one phase."),
    files: Optional[List[str]] = typer.Option(
        None, "--file", "-f", help="Relevant file as path[:language[:similarity]]; repeatable.",
    ),
):
    """Expand one phase into a detailed implementation plan."""
    try:
        phase = json.loads(phase_file.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise typer.BadParameter(f"{phase_file} is not valid JSON: {exc}")
    refs = [_parse_file_ref(f) for f in files or []]
    if not refs:
        refs = [{"path": p, "language": None, "similarity": 1.0} for p in phase.get("relevantFiles", [])[:20]]

    result = _run(_service().generate_plan, namespace, phase, refs)
    if state.as_json:
        _print_json(result)
        return
    console.print(Panel(result["instruction"], title="Instruction"))
    typer.echo(result["plan"])


@app.command("context")
def context(
    namespace: str = typer.Argument(..., help="Namespace from 'vibeplan index'."),
    prompt: str = typer.Argument(..., help="Goal to retrieve context for."),
    context_type: Optional[str] = typer.Option(None, "--context-type", "-t"),
):
    """Show the files retrieval would feed to phase generation."""
    result = _run(_service().preview_context, namespace, prompt, context_type)
    if state.as_json:
        _print_json(result)
        return
    summary = result["context_summary"]
    table = Table(title=f"{summary['total_files_found']} files", show_header=True)
    table.add_column("Similarity", justify="right")
    table.add_column("File", style="cyan")
    table.add_column("Language")
    table.add_column("Description")
    for f in summary["relevant_files"]:
        table.add_row(f"{f['similarity']:.2f}", f["path"], f["language"] or "-", (f["description"] or "")[:80])
    console.print(table)


@app.command("analyze-prompt")
def analyze_prompt_cmd(prompt: str = typer.Argument(..., help="Goal to classify.")):
    """Classify a prompt without touching the index."""
    analysis = analyze_prompt(prompt).to_dict()
    if state.as_json:
        _print_json({"user_prompt": prompt, "analysis": analysis})
        return
    for key, value in analysis.items():
        shown = ", ".join(value) if isinstance(value, list) else value
        console.print(f"[cyan]{key}[/cyan]: {shown}")


@app.command("graph")
def graph(
    path: Path = typer.Argument(..., exists=True, file_okay=False, help="Local repository directory."),
    fmt: str = typer.Option("json", "--format", "-f", help="Export format: json or dot."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file path."),
    focus: str = typer.Option("", "--focus", help="Only files whose path contains this text, plus neighbours."),
):
    """Build the dependency graph of a local directory."""
    fmt = fmt.lower()
    if fmt not in {"json", "dot"}:
        raise typer.BadParameter("Format must be one of: json, dot")

    service = _service()
    _, dep_graph = _run(service.analyze_local, path)

    if output is None:
        output = Path.cwd() / f"{path.resolve().name}_graph.{fmt}"
    if fmt == "dot":
        export_dot(dep_graph, output, focus=focus)
    else:
        export_json(dep_graph, output, focus=focus)

    stats = dep_graph.stats()
    typer.echo(f"Exported graph to {output}")
    typer.echo(f"Files: {stats['totalFiles']} | Dependencies: {stats['totalDependencies']}")
    if stats["unresolved"]:
        typer.echo(f"Files in import cycles: {len(stats['unresolved'])}")


@app.command("set-llm")
def set_llm(
    provider: str = typer.Argument(..., help="LLM provider: groq, openai, openrouter, ollama."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name (provider default if not set)."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key for cloud providers."),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", "-e", help="Custom endpoint URL."),
):
    """Switch the LLM provider used for summaries and planning."""
    provider = provider.lower().strip()
    if provider not in PROVIDERS:
        err_console.print(f"[red]❌ Unknown provider '{provider}'. Choose from: {', '.join(PROVIDERS)}[/red]")
        raise typer.Exit(code=1)

    resolved_model = model or DEFAULT_MODELS.get(provider, "")
    try:
        path = save_llm_config(
            provider, resolved_model, api_key or "", endpoint or "", path=state.config_path,
        )
    except ConfigError as exc:
        err_console.print(f"[red]❌ {exc}[/red]")
        raise typer.Exit(code=1)

    typer.echo(f"✅ LLM provider set to: {provider}")
    typer.echo(f"  Model:  {resolved_model or '(default)'}")
    typer.echo(f"  Config: {path}")


@app.command("show-config")
def show_config():
    """Print the effective configuration (API keys masked)."""
    settings = _settings()
    sections = ("llm", "embeddings", "store", "summaries", "retrieval", "planner", "workspace")
    data: Dict[str, Any] = {"home": str(settings.home)}
    for name in sections:
        values = dict(vars(getattr(settings, name)))
        if values.get("api_key"):
            values["api_key"] = values["api_key"][:4] + "…"
        data[name] = values

    if state.as_json:
        _print_json(data)
        return
    table = Table(show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("home", data["home"])
    for name in sections:
        for key, value in data[name].items():
            table.add_row(f"{name}.{key}", str(value))
    console.print(table)


if __name__ == "__main__":
    app()
