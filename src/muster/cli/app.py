"""Main CLI application."""

import typer

from muster.cli.commands import events, serve

app = typer.Typer(
    name="muster",
    help="Muster - Discord event scheduler",
    no_args_is_help=True,
)

serve.register(app)
events.register(app)


if __name__ == "__main__":
    app()
