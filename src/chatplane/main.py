"""CLI entrypoint for chatplane."""

import rich_click as click

from chatplane import __version__
from chatplane.config import SUPPORTED_MODES
from chatplane.controllers import AskCommand, ControlPlaneController, RunCommand

click.rich_click.USE_MARKDOWN = True
CONTROLLER = ControlPlaneController()

_BACKEND_CHOICES = ["openai", "anthropic", "codex", "claude-code"]


@click.group()
@click.version_option(version=__version__, prog_name="chatplane")
def chatplane() -> None:
    """Chat control plane CLI."""


@chatplane.command("run")
@click.option(
    "--mode",
    type=click.Choice(list(SUPPORTED_MODES), case_sensitive=False),
    default=None,
    help="Transport to serve. Defaults to CHATPLANE_MODE or auto-detection.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Worker count. Defaults to CHATPLANE_CONCURRENCY (4).",
)
@click.option(
    "--queue-size",
    type=click.IntRange(min=1),
    default=None,
    help="Job queue capacity. Defaults to CHATPLANE_QUEUE_SIZE (128).",
)
@click.option(
    "--shutdown-timeout",
    default=None,
    help="Hard drain deadline such as 10s, 500ms or 1m. Defaults to 10s.",
)
@click.option(
    "--backend",
    type=click.Choice(_BACKEND_CHOICES, case_sensitive=False),
    default=None,
    help="AI backend for free text and !ask. Defaults to CHATPLANE_AI_BACKEND (codex).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level. Defaults to CHATPLANE_LOG_LEVEL (INFO).",
)
def run(  # noqa: PLR0913
    mode: str | None,
    concurrency: int | None,
    queue_size: int | None,
    shutdown_timeout: str | None,
    backend: str | None,
    log_level: str | None,
) -> None:
    """Serve a chat transport until EOF or SIGINT/SIGTERM, then drain the queue."""

    try:
        lines = CONTROLLER.run(
            RunCommand(
                mode=mode,
                concurrency=concurrency,
                queue_size=queue_size,
                shutdown_timeout=shutdown_timeout,
                backend=backend,
                log_level=log_level,
            ),
        )
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    _emit_lines(lines)


@chatplane.command("ask")
@click.argument("text")
@click.option(
    "--backend",
    type=click.Choice(_BACKEND_CHOICES, case_sensitive=False),
    default=None,
    help="AI backend override for this call.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Backend call timeout. Defaults to CHATPLANE_BACKEND_TIMEOUT (120s).",
)
def ask(text: str, backend: str | None, timeout_seconds: float | None) -> None:
    """Route one message (!ping, !echo hi, or free text) and print the result."""

    try:
        result = CONTROLLER.ask(
            AskCommand(text=text, backend=backend, timeout_seconds=timeout_seconds),
        )
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Command failed.")


@chatplane.command("commands")
def commands() -> None:
    """List registered ! commands."""

    _emit_lines(CONTROLLER.list_commands())


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    chatplane()
