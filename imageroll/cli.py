"""Typer command line for ``imageroll``.

Every command loads Settings from imageroll.toml, connects a Client to the
configured backend and runs one operation. Any ImagerollError is printed
and turns into exit code 1.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from imageroll.client import Client
from imageroll.config import Settings, resolve_settings
from imageroll.core.exceptions import ConfigurationError, ImagerollError
from imageroll.observability.logging import setup_logging, teardown_logging

app = typer.Typer(
    help="Replace cloud instances with new images and swap load balancer members.",
    no_args_is_help=True,
)
console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)

IDENTIFIER_OPTION = typer.Option(
    ...,
    "--identifier",
    "-i",
    help="Pattern matched against instance names; must match exactly one.",
)

type Operation[T] = Callable[[Client], Awaitable[T]]


@dataclass(slots=True)
class CLIState:
    project_dir: Path | None = None
    global_config: Path | None = None
    log_level: str | None = None
    quiet: bool = False


async def connect(settings: Settings) -> Client:
    return await Client.from_settings(settings)


def _fail(message: str, *, rc: int = 1) -> NoReturn:
    err_console.print(f"[red]error:[/red] {escape(message)}")
    raise typer.Exit(code=rc)


def _settings(ctx: typer.Context) -> Settings:
    state = ctx.ensure_object(CLIState)
    try:
        settings = resolve_settings(
            project_dir=state.project_dir, global_path=state.global_config,
        )
        log = settings.logging
        if state.log_level:
            log = dataclasses.replace(log, level=state.log_level.upper())
    except ImagerollError as e:
        _fail(str(e))

    if state.quiet:
        log = dataclasses.replace(log, console=False)
    return dataclasses.replace(settings, logging=log)


def _execute[T](settings: Settings, operation: Operation[T]) -> T:
    async def main() -> T:
        async with await connect(settings) as client:
            return await operation(client)

    handler_ids = setup_logging(settings.logging)
    try:
        return asyncio.run(main())
    except ImagerollError as e:
        _fail(str(e))
    finally:
        teardown_logging(handler_ids)


@app.callback()
def _root(
    ctx: typer.Context,
    project_dir: Path | None = typer.Option(
        None,
        "--project-dir",
        help="Directory holding imageroll.toml (defaults to the current directory).",
    ),
    global_config: Path | None = typer.Option(
        None,
        "--global-config",
        help="Path to the global defaults file (defaults to ~/.imageroll/defaults.toml).",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Console log level (DEBUG, INFO, WARNING, ERROR).",
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Disable console logging."),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    ctx.obj = CLIState(
        project_dir=project_dir,
        global_config=global_config,
        log_level=log_level,
        quiet=quiet,
    )


@app.command("replace-vm")
def replace_vm(
    ctx: typer.Context,
    identifier: str = IDENTIFIER_OPTION,
    image: str | None = typer.Option(
        None,
        "--image",
        help="Image for the new instance (defaults to 'image' in imageroll.toml).",
    ),
) -> None:
    """Stop the matching instance and recreate it from a new image."""
    settings = _settings(ctx)
    image = image or settings.image
    if not image:
        _fail(str(ConfigurationError(
            "no image given: pass --image or set 'image' in imageroll.toml",
            identifier=identifier,
        )))

    new_id = _execute(settings, lambda client: client.replace(identifier, image))
    console.print(new_id)


@app.command("swap-lb")
def swap_lb(
    ctx: typer.Context,
    identifier: str = typer.Option(
        ..., "--identifier", "-i", help="Load balancer name.",
    ),
    vm_identifiers: list[str] = typer.Option(
        ...,
        "--vm-identifier",
        help="Instance name pattern; repeat for every member of the new set.",
    ),
) -> None:
    """Replace the load balancer's membership with the given instances."""
    settings = _settings(ctx)
    membership = _execute(
        settings, lambda client: client.swap_load_balancer(identifier, vm_identifiers),
    )
    console.print(f"{membership.load_balancer}: {', '.join(sorted(membership.instance_ids))}")


@app.command("delete-vm")
def delete_vm(ctx: typer.Context, identifier: str = IDENTIFIER_OPTION) -> None:
    """Delete the matching instance."""
    settings = _settings(ctx)
    deleted = _execute(settings, lambda client: client.delete(identifier))
    console.print(deleted)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
