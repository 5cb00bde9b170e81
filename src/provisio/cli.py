"""Provisio CLI - Main entry point."""

import asyncio
import json
import logging
from typing import List

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="provisio",
    help="Provisio - blueprint templating and declarative apply",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Generate files from blueprints and apply documents to servers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> None:
    console.print(f"[red]Error: {escape(message)}[/red]")
    raise typer.Exit(1)


def _load_config(with_env: bool = True):
    from .config import load_config

    try:
        return load_config(with_env=with_env)
    except (OSError, ValueError) as e:
        _fail(f"could not load configuration: {e}")


def _open_repository(config, local: str | None, repository: str | None):
    from .blueprint.errors import BlueprintError
    from .repository import LocalBlueprintRepository, create_repository

    try:
        if local:
            repo = LocalBlueprintRepository("local", local)
        else:
            repo = create_repository(config.repository(repository))
        repo.initialize()
        return repo
    except KeyError as e:
        _fail(str(e.args[0]))
    except BlueprintError as e:
        _fail(e.message)


# ============================================================================
# Blueprint Commands
# ============================================================================


def _choose_blueprint(repo) -> str:
    blueprints = sorted(repo.list_blueprints())
    if not blueprints:
        _fail(f"no blueprints found in {repo.info}")

    for i, name in enumerate(blueprints, start=1):
        console.print(f"  {i}. {escape(name)}")
    while True:
        choice = typer.prompt("Choose a blueprint")
        if choice.isdigit() and 1 <= int(choice) <= len(blueprints):
            return blueprints[int(choice) - 1]
        if choice in blueprints:
            return choice
        console.print(f"[red]{escape(choice)} is not a blueprint in {escape(repo.name)}[/red]")


@app.command()
def blueprint(
    name: str = typer.Argument(None, help="Blueprint path inside the repository"),
    local: str = typer.Option(None, "--local", "-l", help="Use a local directory as the repository"),
    repository: str = typer.Option(None, "--repository", "-r", help="Configured repository name"),
    answers: str = typer.Option(None, "--answers", "-a", help="YAML answers file"),
    strict_answers: bool = typer.Option(
        False, "--strict-answers", "-s", help="Fail on answers that match no parameter"
    ),
    use_defaults: bool = typer.Option(
        False, "--use-defaults", "-d", help="Use default values instead of asking"
    ),
    output: str = typer.Option(".", "--output", "-o", help="Output directory"),
):
    """Generate files from a blueprint."""
    from .blueprint.engine import instantiate_blueprint
    from .blueprint.errors import BlueprintError

    config = _load_config()
    repo = _open_repository(config, local, repository)

    try:
        blueprint_name = name if name is not None else _choose_blueprint(repo)
        result = instantiate_blueprint(
            repo,
            blueprint_name,
            output_root=output,
            answers_file=answers,
            strict_answers=strict_answers,
            use_defaults=use_defaults,
            output_dir=config.output_dir,
        )
    except BlueprintError as e:
        where = f"blueprint [{e.blueprint}]: " if e.blueprint else ""
        _fail(f"{where}{e.message}")
    except OSError as e:
        _fail(str(e))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        raise typer.Exit(1)

    console.print(
        Panel(
            f"[bold green]Blueprint generated![/bold green]\n\n"
            f"Blueprint: {result.blueprint}\n"
            f"Output: {result.output_root}\n"
            f"Files: {len(result.written)} written, {len(result.skipped)} skipped\n\n"
            + "\n".join(f"  {path}" for path in result.written),
            title="Blueprint Complete",
        )
    )
    console.print(
        f"[dim]Please refer to file '{escape(config.output_dir)}/secrets.xlvals' for the default secrets[/dim]"
    )
    if result.metadata.instructions:
        console.print(f"\n[green]{escape(result.metadata.instructions)}[/green]\n")


@app.command()
def blueprints(
    local: str = typer.Option(None, "--local", "-l", help="Use a local directory as the repository"),
    repository: str = typer.Option(None, "--repository", "-r", help="Configured repository name"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List blueprints available in a repository."""
    from .blueprint.errors import BlueprintError

    config = _load_config()
    repo = _open_repository(config, local, repository)

    try:
        found = repo.list_blueprints()
    except BlueprintError as e:
        _fail(e.message)

    if json_output:
        console.print_json(json.dumps(sorted(found)))
        return

    table = Table(title=escape(repo.info))
    table.add_column("Blueprint", style="cyan")
    table.add_column("Definition")
    for key in sorted(found):
        table.add_row(key or ".", found[key].definition_file)
    console.print(table)


# ============================================================================
# Apply Commands
# ============================================================================


@app.command()
def apply(
    files: List[str] = typer.Option(..., "--file", "-f", help="YAML file(s) to apply"),
    values: List[str] = typer.Option(None, "--values", help="Extra values as key=value"),
    detach: bool = typer.Option(False, "--detach", help="Don't wait for started tasks"),
    poll_interval: float = typer.Option(2.0, "--poll-interval", help="Seconds between task polls"),
):
    """Apply YAML documents to the configured servers."""
    from .api import (
        ApplyError,
        OrchestrationClient,
        find_server,
        load_documents,
        parse_value_overrides,
    )

    config = _load_config()

    async def _apply_all() -> int:
        applied = 0
        overrides = parse_value_overrides(values or [])
        for file in files:
            for doc in load_documents(file, overrides, output_dir=config.output_dir):
                server = find_server(config.servers, doc.api_version)
                console.print(
                    f"[dim]Applying document {doc.index} from {escape(file)} to {escape(server.name)}[/dim]"
                )
                async with OrchestrationClient(server) as client:
                    changes = await client.apply(doc.render())
                    applied += 1
                    if not changes.task:
                        continue
                    description = escape(changes.task.description or changes.task.id)
                    if detach:
                        console.print(f"  Task [cyan]{description}[/cyan] started, follow it in the UI")
                        continue
                    task_id = escape(changes.task.id)
                    with console.status(f"[bold cyan]Waiting for task {task_id}...[/bold cyan]") as status:
                        await client.wait_for_task(
                            changes.task.id,
                            poll_interval=poll_interval,
                            on_poll=lambda state: status.update(
                                f"[bold cyan]Task {task_id} is {escape(state.state)}...[/bold cyan]"
                            ),
                        )
                    console.print(f"  [green]Task {task_id} has completed[/green]")
        return applied

    try:
        count = asyncio.run(_apply_all())
    except ApplyError as e:
        _fail(e.message)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        raise typer.Exit(1)

    console.print(f"[green]Applied {count} document(s).[/green]")


# ============================================================================
# Config / Version
# ============================================================================


@app.command("config")
def show_config(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    use: str = typer.Option(None, "--use", help="Make a configured repository the current one"),
):
    """Show the active configuration, or switch the current repository."""
    from .config import config_path, save_config

    if use:
        stored = _load_config(with_env=False)
        try:
            stored.repository(use)
        except KeyError as e:
            _fail(str(e.args[0]))
        stored.current_repository = use
        path = save_config(stored)
        console.print(f"[green]Current repository is now {escape(use)}[/green] [dim]({escape(str(path))})[/dim]")
        return

    config = _load_config()
    data = config.to_dict()
    for entry in data["repositories"] + data["servers"]:
        for secret in ("password", "token"):
            if entry.get(secret):
                entry[secret] = "***"

    if json_output:
        console.print_json(json.dumps(data))
        return

    table = Table(title="Repositories")
    table.add_column("Name", style="cyan")
    table.add_column("Provider")
    table.add_column("Location")
    for repo in config.repositories:
        marker = " *" if repo.name == config.current_repository else ""
        location = repo.url or repo.path or f"{repo.owner}/{repo.repo_name}"
        table.add_row(repo.name + marker, repo.provider, location)
    console.print(table)

    servers = Table(title="Servers")
    servers.add_column("Name", style="cyan")
    servers.add_column("URL")
    servers.add_column("apiVersions")
    for server in config.servers:
        servers.add_row(server.name, server.url, ", ".join(server.api_versions))
    console.print(servers)
    console.print(f"[dim]Config file: {escape(str(config_path()))} | Output dir: {escape(config.output_dir)}[/dim]")


@app.command()
def version():
    """Show version information."""
    from . import __version__

    console.print(f"Provisio v{__version__}")


if __name__ == "__main__":
    app()
