from typing import Optional

import typer
from rich.table import Table

from cli.chat import app as chat_app
from cli.common import async_command, console, err_console
from cli.db import app as db_app
from llm.base import UpstreamError
from llm.factory import build_gateway

app = typer.Typer(
    name="courselens",
    help="CourseLens — ask questions about learning-platform data in plain language.",
    no_args_is_help=True,
)

app.add_typer(db_app, name="db")
app.add_typer(chat_app)


@app.command()
@async_command
async def models(
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model selector used to pick the provider."),
) -> None:
    """List the generation models available to the configured provider."""
    gateway = build_gateway(model)
    try:
        available = await gateway.list_models()
    except UpstreamError as exc:
        err_console.print(f"[red]Error: {exc.message}[/]")
        raise typer.Exit(code=1)

    table = Table(title=f"{gateway.provider_name()} models")
    table.add_column("Name", style="bold")
    table.add_column("Display name")
    table.add_column("Version")
    table.add_column("Description")
    for info in available:
        marker = " [green]*[/]" if info.name == gateway.model else ""
        table.add_row(info.name + marker, info.display_name, info.version, info.description)
    console.print(table)


if __name__ == "__main__":
    app()
