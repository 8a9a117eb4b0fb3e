import logging

import typer

from .commands.chat import register_chat_commands
from .commands.utils import get_version
from .commands.utils import raise_exit as _raise_exit

logger = logging.getLogger("findmyworker_chat.cli")

app = typer.Typer(add_completion=False)


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(f"findmyworker-chat {get_version()}")
    raise typer.Exit(code=0)


@app.callback()
def _root(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    # Subcommands implement behavior; `--version` is handled eagerly.
    return


def main() -> None:
    """Entrypoint for CLI execution."""
    app()


register_chat_commands(app, raise_exit=_raise_exit)
