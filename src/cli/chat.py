import os
from typing import Optional

import typer
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.key_binding import KeyBindings
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax

from cli.common import (
    async_command,
    console,
    err_console,
    get_pool,
    load_identity,
    resolve_username,
    setup_logging,
)
from llm.factory import build_gateway
from nlq.conversation import ConversationContext
from nlq.engine import PipelineResponse, PipelineSettings, ask


def _build_key_bindings() -> KeyBindings:
    """Enter submits. Trailing \\ + Enter inserts a newline."""
    kb = KeyBindings()

    @kb.add("enter")
    def _submit(event):
        buf = event.current_buffer
        if buf.text.endswith("\\"):
            buf.text = buf.text[:-1]
            buf.insert_text("\n")
        else:
            buf.validate_and_handle()

    return kb

app = typer.Typer(help="Ask questions about courses, classes and students.")


def _render_details(result: PipelineResponse) -> None:
    for attempt in result.attempts:
        status = "[green]ok[/]" if attempt.succeeded else f"[red]{attempt.error}[/]"
        console.print(f"[dim]Attempt {attempt.number}:[/] {status}")
    if result.query:
        console.print(Syntax(result.query, "javascript", theme="ansi_dark", word_wrap=True))
    if result.ok:
        rows = len(result.data) if isinstance(result.data, list) else 1
        console.print(f"[dim]Records:[/] {rows}")


def _render_result(result: PipelineResponse, verbose: bool) -> None:
    if verbose:
        _render_details(result)
    if not result.ok:
        err_console.print(f"[red]Error: {result.error}[/]")
        return
    console.print()
    console.print(Panel(Markdown(result.response or ""), title="CourseLens", border_style="green"))
    console.print()


@app.command("ask")
@async_command
async def one_shot(
    question: str = typer.Argument(..., help="The question to ask."),
    username: Optional[str] = typer.Option(None, "--as", help="Username to act as."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model selector."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show the generated query and attempts."),
) -> None:
    """Ask a single question and get an answer."""
    setup_logging()
    pool = await get_pool()
    settings = PipelineSettings.from_env()
    gateway = build_gateway(model)

    try:
        with console.status("[bold cyan]Thinking...", spinner="dots"):
            async with pool.acquire() as conn:
                identity = await load_identity(conn, resolve_username(username))
                result = await ask(question, identity, conn, gateway=gateway, settings=settings)
    finally:
        await pool.close()

    _render_result(result, verbose)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("chat")
@async_command
async def chat_repl(
    username: Optional[str] = typer.Option(None, "--as", help="Username to act as."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model selector."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show the generated query and attempts."),
) -> None:
    """Start an interactive chat session."""
    setup_logging()
    pool = await get_pool()
    settings = PipelineSettings.from_env()
    gateway = build_gateway(model)
    history = ConversationContext(int(os.getenv("CONTEXT_MAX_TURNS", "5")))

    async with pool.acquire() as conn:
        identity = await load_identity(conn, resolve_username(username))
    if identity is None:
        err_console.print("[red]Error: Not authenticated. Pass --as USERNAME or set COURSELENS_USERNAME.[/]")
        await pool.close()
        raise typer.Exit(code=1)

    console.print(
        Panel(
            f"[bold]Welcome to CourseLens, {identity.display_name or identity.username}[/]\n"
            "Ask questions about your courses, classes, assignments and attendance.\n"
            "Press [bold cyan]Enter[/] to submit. "
            "Type [bold cyan][\\] then [bold cyan]Enter[/] for a new line.\n"
            "Type [bold cyan]/reset[/] to forget the conversation, "
            "[bold cyan]exit[/] or [bold cyan]quit[/] to leave.",
            border_style="blue",
        )
    )

    session = PromptSession(
        key_bindings=_build_key_bindings(),
        multiline=True,
        prompt_continuation="… ",
    )

    while True:
        try:
            question = (await session.prompt_async(
                HTML("<b><ansicyan>&gt; </ansicyan></b>"),
            )).strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Goodbye.[/]")
            break

        if not question:
            continue
        if question.lower() in ("exit", "quit", ":q"):
            console.print("[dim]Goodbye.[/]")
            break
        if question == "/reset":
            history.clear()
            console.print("[dim]Conversation cleared.[/]")
            continue

        with console.status("[bold cyan]Thinking...", spinner="dots"):
            async with pool.acquire() as conn:
                result = await ask(
                    question,
                    identity,
                    conn,
                    previous_context=history.render(),
                    gateway=gateway,
                    settings=settings,
                )

        _render_result(result, verbose)
        if result.ok:
            history.add(question, result.response or "")

    await pool.close()
