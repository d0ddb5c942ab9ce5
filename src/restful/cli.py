"""Command-line interface for the Restful Resource Engine.

Resources are described in YAML files:

    name: my-post            # key in the state store
    kind: resource           # resource | operation
    config:
      path: posts
      body: {title: hello}

Engine settings (base URL, security, retry, defaults) come from ``--config``
or from RESTFUL_* environment variables.
"""

import asyncio
import json
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, TypeVar

import structlog
import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import EngineConfig, load_config
from .models.resource import ActionConfig, ImportSpec, OperationConfig, ResourceConfig
from .observability import configure_logging
from .observability.metrics import get_global_collector
from .persistence.state_store import StateStore
from .provider import Provider
from .utils.exceptions import EngineError, GoneError

app = typer.Typer(
    name="restful",
    help="Restful Resource Engine - declarative reconciler for REST APIs",
    add_completion=False,
)

console = Console()
logger = structlog.get_logger(__name__)

T = TypeVar("T")

KIND_RESOURCE = "resource"
KIND_OPERATION = "operation"

DEFAULT_STATE_PATH = Path(".restful/state.db")


# =============================================================================
# Helpers
# =============================================================================


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise typer.BadParameter(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{path}: expected a mapping, got {type(data).__name__}")
    return data


def _load_definition(path: Path) -> tuple[str, str, dict[str, Any]]:
    data = _load_yaml(path)
    name = data.get("name") or path.stem
    kind = data.get("kind", KIND_RESOURCE)
    if kind not in (KIND_RESOURCE, KIND_OPERATION):
        raise typer.BadParameter(f"{path}: unknown kind {kind!r}")
    config = data.get("config")
    if not isinstance(config, dict):
        raise typer.BadParameter(f"{path}: `config` must be a mapping")
    return name, kind, config


def _persisted_config(config: dict[str, Any]) -> dict[str, Any]:
    # The ephemeral body never reaches the state store
    return {key: value for key, value in config.items() if key != "ephemeral_body"}


def _setup(config_file: Path | None, log_level: str | None) -> EngineConfig:
    engine_config = load_config(config_file)
    configure_logging(
        level=log_level or engine_config.logging.level,
        json_logs=engine_config.logging.format == "json",
        log_file=engine_config.logging.file,
    )
    return engine_config


def _run(work: Awaitable[T]) -> T:
    try:
        return asyncio.run(work)  # type: ignore[arg-type]
    except EngineError as e:
        logger.debug("Command failed", error_type=type(e).__name__, error=str(e))
        console.print(f"\n[red]ERROR ({type(e).__name__}):[/red] {e}")
        raise typer.Exit(code=1) from e
    finally:
        get_global_collector().log_summary()


def _print_json(value: Any) -> None:
    console.print_json(json.dumps(value))


ConfigOption = typer.Option(None, "--config", "-c", help="Engine configuration file")
StateOption = typer.Option(DEFAULT_STATE_PATH, "--state", "-s", help="State database")
LogLevelOption = typer.Option(None, "--log-level", help="Log level (TRACE, DEBUG, VERBOSE, INFO...)")


# =============================================================================
# Commands
# =============================================================================


@app.command()
def apply(
    definition: Path = typer.Argument(..., help="Resource YAML file", exists=True),
    config_file: Path | None = ConfigOption,
    state_path: Path = StateOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """
    Create the resource, or bring it in line with its definition.

    Examples:
        restful apply post.yaml
        restful apply post.yaml --config prod.yaml
    """
    engine_config = _setup(config_file, log_level)
    name, kind, raw = _load_definition(definition)

    async def run_apply() -> str:
        with StateStore(state_path) as store:
            async with Provider() as provider:
                await provider.configure(engine_config)
                stored = store.load(name)

                if kind == KIND_OPERATION:
                    operation = OperationConfig.parse(raw)
                    state = await provider.operations().create(operation)
                    store.save(name, kind, _persisted_config(raw), state)
                    return "invoked"

                config = ResourceConfig.parse(raw)
                orchestrator = provider.resources()
                if stored is None:
                    state = await orchestrator.create(config)
                    store.save(name, kind, _persisted_config(raw), state)
                    return "created"

                plan = orchestrator.plan_update(config, stored.state)
                if plan.requires_replace:
                    for reason in plan.replace_reasons:
                        console.print(f"[yellow]Replacing:[/yellow] {reason}")
                    previous = ResourceConfig.parse(stored.config)
                    await orchestrator.delete(previous, stored.state)
                    state = await orchestrator.create(config)
                    store.save(name, kind, _persisted_config(raw), state)
                    return "replaced"
                if not plan.has_changes:
                    return "unchanged"
                if plan.body_changed:
                    _print_json(plan.merge_patch)
                state = await orchestrator.update(config, stored.state)
                store.save(name, kind, _persisted_config(raw), state)
                return "updated"

    outcome = _run(run_apply())
    console.print(f"[green]{name}: {outcome}[/green]")


@app.command()
def refresh(
    name: str = typer.Argument(..., help="Resource name"),
    config_file: Path | None = ConfigOption,
    state_path: Path = StateOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Re-read a resource; a resource gone remotely is removed from state."""
    engine_config = _setup(config_file, log_level)

    async def run_refresh() -> bool:
        with StateStore(state_path) as store:
            stored = store.load(name)
            if stored is None:
                raise typer.BadParameter(f"no resource named {name!r} in state")
            if stored.kind != KIND_RESOURCE:
                return True
            async with Provider() as provider:
                await provider.configure(engine_config)
                config = ResourceConfig.parse(stored.config)
                try:
                    state = await provider.resources().read(config, stored.state)
                except GoneError:
                    store.delete(name)
                    return False
                store.save(name, stored.kind, stored.config, state)
                return True

    if _run(run_refresh()):
        console.print(f"[green]{name}: refreshed[/green]")
    else:
        console.print(f"[yellow]{name}: gone, removed from state[/yellow]")


@app.command()
def destroy(
    name: str = typer.Argument(..., help="Resource name"),
    config_file: Path | None = ConfigOption,
    state_path: Path = StateOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Delete a resource (or run an operation's delete call) and forget it."""
    engine_config = _setup(config_file, log_level)

    async def run_destroy() -> None:
        with StateStore(state_path) as store:
            stored = store.load(name)
            if stored is None:
                raise typer.BadParameter(f"no resource named {name!r} in state")
            async with Provider() as provider:
                await provider.configure(engine_config)
                if stored.kind == KIND_OPERATION:
                    operation = OperationConfig.parse(stored.config)
                    await provider.operations().delete(operation, stored.state)
                else:
                    config = ResourceConfig.parse(stored.config)
                    await provider.resources().delete(config, stored.state)
            store.delete(name)

    _run(run_destroy())
    console.print(f"[green]{name}: destroyed[/green]")


@app.command("import")
def import_resource(
    definition: Path = typer.Argument(..., help="Resource YAML file", exists=True),
    descriptor: Path = typer.Argument(..., help="Import descriptor JSON file", exists=True),
    config_file: Path | None = ConfigOption,
    state_path: Path = StateOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """
    Adopt an existing remote object.

    Examples:
        restful import post.yaml import.json
    """
    engine_config = _setup(config_file, log_level)
    name, kind, raw = _load_definition(definition)
    if kind != KIND_RESOURCE:
        raise typer.BadParameter("only resources can be imported")
    try:
        spec = ImportSpec.parse(json.loads(descriptor.read_text()))
    except ValueError as e:
        raise typer.BadParameter(f"{descriptor}: invalid JSON: {e}") from e

    async def run_import() -> None:
        with StateStore(state_path) as store:
            async with Provider() as provider:
                await provider.configure(engine_config)
                base = ResourceConfig.parse(raw)
                state = await provider.resources().import_state(spec, base)
                config = spec.to_config(base).model_dump(exclude_none=True)
                store.save(name, kind, _persisted_config(config), state)

    _run(run_import())
    console.print(f"[green]{name}: imported[/green]")


@app.command()
def show(
    name: str | None = typer.Argument(None, help="Resource name, all resources when omitted"),
    state_path: Path = StateOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show recorded state."""
    # Logs go to stderr so the JSON on stdout stays parseable
    configure_logging(level=log_level or "WARNING")
    with StateStore(state_path) as store:
        if name is not None:
            stored = store.load(name)
            if stored is None:
                console.print(f"[red]No resource named {name!r}[/red]")
                raise typer.Exit(code=1)
            public = stored.state.to_dict()
            public.pop("private", None)
            if public.get("sensitive_output") is not None:
                public["sensitive_output"] = "(sensitive)"
            _print_json(public)
            return

        table = Table(title="Resources")
        table.add_column("Name", style="cyan")
        table.add_column("Kind")
        table.add_column("ID", style="green")
        table.add_column("Updated")
        for stored in store.list_all():
            table.add_row(stored.name, stored.kind, stored.state.id, stored.updated_at)
        console.print(table)


@app.command()
def invoke(
    definition: Path = typer.Argument(..., help="Action YAML file", exists=True),
    config_file: Path | None = ConfigOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """
    Invoke an action and stream its progress.

    Examples:
        restful invoke restart.yaml
    """
    engine_config = _setup(config_file, log_level)
    data = _load_yaml(definition)
    action = ActionConfig.parse(data.get("config", data))

    async def run_invoke() -> int:
        async with Provider() as provider:
            await provider.configure(engine_config)
            response = await provider.actions().invoke(
                action, on_progress=lambda message: console.print(f"[blue]>[/blue] {message}")
            )
            return response.status_code

    status = _run(run_invoke())
    console.print(f"[green]Action finished ({status})[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(
        Panel.fit(
            "[bold]Restful Resource Engine[/bold]\n\n"
            f"Version: [cyan]{__version__}[/cyan]\n\n"
            "[bold]Features:[/bold]\n"
            "- Create, read, update, delete and import of REST resources\n"
            "- Asynchronous operation polling\n"
            "- Prechecks and named mutexes\n"
            "- Retry with Retry-After support\n"
            "- Operations, actions, data sources and ephemeral resources",
            title="About",
            border_style="blue",
        )
    )


if __name__ == "__main__":
    app()
