"""StoryLoom CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from storyloom.observability import LLMLogger, close_file_logging, configure_logging, get_logger
from storyloom.pipeline.config import ProjectConfigError, load_project_config

if TYPE_CHECKING:
    from storyloom.pipeline.config import ProjectConfig
    from storyloom.providers.base import GenerationPort
    from storyloom.story.sqlite_store import SqliteSceneletStore

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="storyloom",
    help="StoryLoom: grow branching interactive stories with an LLM.",
    no_args_is_help=True,
)
console = Console()

# Default directory for projects
DEFAULT_PROJECTS_DIR = Path("projects")

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False
_projects_dir: Path = DEFAULT_PROJECTS_DIR

ProjectOption = Annotated[
    Path | None,
    typer.Option(
        "--project",
        "-p",
        help="Project directory. Can be a path or name (looks in --projects-dir).",
    ),
]


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to {project}/logs/ (debug.jsonl, llm_calls.jsonl).",
        ),
    ] = False,
    projects_dir: Annotated[
        Path,
        typer.Option(
            "--projects-dir",
            "-d",
            help="Base directory for projects (default: ./projects).",
            envvar="STORYLOOM_PROJECTS_DIR",
        ),
    ] = DEFAULT_PROJECTS_DIR,
) -> None:
    """StoryLoom: grow branching interactive stories with an LLM."""
    global _verbose, _log_enabled, _projects_dir
    _verbose = verbose
    _log_enabled = log
    _projects_dir = projects_dir

    # File logging is configured later, once the project is known
    configure_logging(verbosity=verbose)


def _configure_project_logging(project_path: Path) -> None:
    """Configure file logging if --log flag was set."""
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_to_file=True, project_path=project_path)
        atexit.register(close_file_logging)


def _resolve_project_path(project: Path | None) -> Path:
    """Resolve project path from argument.

    Resolution order:
    1. If project is None, use current directory
    2. If project exists as given, use it
    3. If project is a name (no path separators), look in _projects_dir
    """
    if project is None:
        return Path()

    if project.exists():
        return project

    if len(project.parts) == 1:
        projects_path = _projects_dir / project
        if projects_path.exists():
            return projects_path

    return project


def _load_project(project: Path | None) -> tuple[Path, ProjectConfig]:
    """Resolve the project directory and load its config, exiting on failure."""
    project_path = _resolve_project_path(project)
    if not (project_path / "project.yaml").exists():
        console.print(
            "[red]Error:[/red] No project.yaml found. "
            "Run 'storyloom init <name>' first or use --project."
        )
        raise typer.Exit(1)

    try:
        config = load_project_config(project_path)
    except ProjectConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    _configure_project_logging(project_path)
    return project_path, config


def _open_store(project_path: Path, config: ProjectConfig) -> SqliteSceneletStore:
    from storyloom.story.sqlite_store import SqliteSceneletStore

    return SqliteSceneletStore(config.database_path(project_path))


# =============================================================================
# Commands
# =============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    from storyloom import __version__

    console.print(f"StoryLoom v{__version__}")


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Project name")],
    path: Annotated[
        Path | None,
        typer.Option(
            "--path",
            help="Parent directory for the project (default: --projects-dir).",
        ),
    ] = None,
    provider: Annotated[
        str | None,
        typer.Option(
            "--provider",
            help="Default provider (e.g., openai/gpt-5-mini, ollama/qwen3:8b).",
        ),
    ] = None,
) -> None:
    """Initialize a new story project.

    Creates a project directory containing project.yaml. The scenelet
    database is created on the first growth run.
    """
    from storyloom.pipeline.config import create_default_config, save_project_config

    parent_dir = path if path is not None else _projects_dir
    project_path = parent_dir / name
    if project_path.exists():
        console.print(f"[red]Error:[/red] Directory '{project_path}' already exists")
        raise typer.Exit(1)

    save_project_config(create_default_config(name, provider=provider), project_path)

    console.print(f"[green]✓[/green] Created project: [bold]{name}[/bold]")
    console.print(f"  Location: {project_path.absolute()}")
    console.print()
    console.print("Next steps:")
    console.print(f'  storyloom grow my-story "Your story premise..." --project {name}')


@app.command()
def grow(
    story_id: Annotated[str, typer.Argument(help="Story identifier")],
    brief: Annotated[
        str | None,
        typer.Argument(help="Story premise. Defaults to the stored brief when resuming."),
    ] = None,
    brief_file: Annotated[
        Path | None,
        typer.Option("--brief-file", help="Read the story premise from a file."),
    ] = None,
    project: ProjectOption = None,
    provider: Annotated[
        str | None,
        typer.Option("--provider", help="Provider override (e.g., openai/gpt-5-mini)."),
    ] = None,
    responses_file: Annotated[
        Path | None,
        typer.Option(
            "--responses-file",
            help="Replay model responses from a JSON array instead of calling a provider.",
        ),
    ] = None,
) -> None:
    """Grow a story tree, resuming it if it was interrupted."""
    from storyloom.pipeline.workflow import generate_story
    from storyloom.prompts import TemplateNotFoundError, TemplateParseError, load_system_prompt
    from storyloom.providers import ProviderError, ReplayGenerator, create_generator
    from storyloom.story.errors import GrowthLimitExceededError, StoryTreeError

    log = get_logger(__name__)
    story_id = story_id.strip()
    if not story_id:
        console.print("[red]Error:[/red] Story id must not be empty.")
        raise typer.Exit(1)
    project_path, config = _load_project(project)

    if brief_file is not None:
        if brief is not None:
            console.print("[red]Error:[/red] Pass either BRIEF or --brief-file, not both.")
            raise typer.Exit(1)
        brief = brief_file.read_text(encoding="utf-8")

    store = _open_store(project_path, config)
    try:
        if brief is None or not brief.strip():
            brief = store.get_story_brief(story_id)
            if brief is None:
                console.print(
                    f"[red]Error:[/red] Story '{story_id}' has no stored brief. "
                    "Provide BRIEF or --brief-file."
                )
                raise typer.Exit(1)
        else:
            store.save_story(story_id, brief)

        provider_string = provider or config.get_provider()
        try:
            system_prompt = load_system_prompt(project_path=project_path)
            generator: GenerationPort
            if responses_file is not None:
                generator = ReplayGenerator.from_file(responses_file)
                provider_string = ReplayGenerator.provider
            else:
                generator = create_generator(
                    provider_string, llm_logger=LLMLogger(project_path, enabled=_log_enabled)
                )
        except (ProviderError, TemplateNotFoundError, TemplateParseError) as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1) from e

        log.info("grow_command_started", story_id=story_id, provider=provider_string)
        console.print(f"Growing story [bold]{story_id}[/bold] with {provider_string}...")

        try:
            result = asyncio.run(
                generate_story(
                    story_id,
                    brief,
                    generator=generator,
                    store=store,
                    system_prompt=system_prompt,
                    timeout_ms=config.generation.timeout_ms,
                    target_scenelets_per_path=config.generation.target_scenelets_per_path,
                    max_scenelets=config.generation.max_scenelets,
                )
            )
        except GrowthLimitExceededError as e:
            console.print(f"[yellow]Stopped:[/yellow] {escape(str(e))}")
            console.print("Run the same command again to continue growing.")
            raise typer.Exit(1) from e
        except (StoryTreeError, ProviderError) as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            console.print("Stored scenelets are kept; run the command again to resume.")
            raise typer.Exit(1) from e
    finally:
        store.close()

    report = result.report
    action = "Resumed" if report.resumed else "Grew"
    console.print(
        f"[green]✓[/green] {action} story [bold]{story_id}[/bold]: "
        f"{report.created_scenelets} new scenelets, {report.generation_calls} generation calls"
    )
    if result.is_complete:
        console.print("  Every path has reached an ending.")
    else:
        console.print(f"  [yellow]{len(result.plan.pending_tasks)} open paths remain.[/yellow]")


@app.command()
def plan(
    story_id: Annotated[str, typer.Argument(help="Story identifier")],
    project: ProjectOption = None,
    as_json: Annotated[
        bool, typer.Option("--json", help="Print pending tasks as JSON.")
    ] = False,
) -> None:
    """Validate a stored story tree and show its pending work."""
    from storyloom.story.errors import StoryTreeError
    from storyloom.story.resume import plan_resume

    project_path, config = _load_project(project)
    store = _open_store(project_path, config)
    try:
        resume_plan = plan_resume(story_id, store.list_scenelets_by_story(story_id))
    except StoryTreeError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    finally:
        store.close()

    if as_json:
        typer.echo(json.dumps([task.to_dict() for task in resume_plan.pending_tasks], indent=2))
        return

    if resume_plan.is_complete:
        console.print(f"[green]✓[/green] Story [bold]{story_id}[/bold] has no pending work.")
        return

    table = Table(title=f"Pending work: {story_id}")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Continue after", style="cyan")
    table.add_column("Depth", justify="right")
    table.add_column("Last scene", style="dim")
    for number, task in enumerate(resume_plan.pending_tasks, start=1):
        last = task.path_context[-1].description if task.path_context else "-"
        table.add_row(
            str(number), task.parent_scenelet_id or "(root)", str(len(task.path_context)), last
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def snapshot(
    story_id: Annotated[str, typer.Argument(help="Story identifier")],
    project: ProjectOption = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the snapshot to a file instead of stdout."),
    ] = None,
) -> None:
    """Print the canonical snapshot text of a story tree."""
    from storyloom.story.errors import StoryTreeError
    from storyloom.story.snapshot import load_story_tree_snapshot

    project_path, config = _load_project(project)
    store = _open_store(project_path, config)
    try:
        tree_snapshot = load_story_tree_snapshot(story_id, store)
    except StoryTreeError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    finally:
        store.close()

    if output is None:
        typer.echo(tree_snapshot.text)
        return

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(tree_snapshot.text, encoding="utf-8")
    console.print(f"[green]✓[/green] Snapshot written to {output}")


@app.command()
def status(
    story_id: Annotated[str, typer.Argument(help="Story identifier")],
    project: ProjectOption = None,
) -> None:
    """Show scenelet counts and completion state of a story."""
    from storyloom.story.errors import StoryTreeError
    from storyloom.story.resume import plan_resume

    project_path, config = _load_project(project)
    store = _open_store(project_path, config)
    try:
        records = store.list_scenelets_by_story(story_id)
        resume_plan = plan_resume(story_id, records)
    except StoryTreeError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    finally:
        store.close()

    if not records:
        console.print(f"[yellow]No scenelets stored for story '{story_id}'.[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Story Status: {story_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right", style="bold")
    table.add_row("Scenelets", str(len(records)))
    table.add_row("Branch points", str(sum(r.is_branch_point for r in records)))
    table.add_row("Endings", str(sum(r.is_terminal_node for r in records)))
    table.add_row("Open paths", str(len(resume_plan.pending_tasks)))

    console.print()
    console.print(table)
    state = "[green]complete[/green]" if resume_plan.is_complete else "[yellow]in progress[/yellow]"
    console.print(f"State: {state}")
    console.print()


if __name__ == "__main__":
    app()
