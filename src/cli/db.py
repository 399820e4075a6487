import typer
from rich.table import Table

from cli.common import async_command, console, err_console, get_pool
from db.access import AccessSettings, DataAccessError, ReadOnlyDataAccess
from db.schema import COLLECTIONS

app = typer.Typer(help="Database inspection commands.")


@app.command()
def schema() -> None:
    """Show the collections and fields generated queries can read."""
    for c in COLLECTIONS.values():
        table = Table(title=f"db.{c.accessor}  ({c.model})", title_justify="left")
        table.add_column("Field", style="bold")
        table.add_column("Type")
        for f in c.visible_fields():
            type_ = f.type + ("[]" if f.is_list else "") + ("?" if f.optional else "")
            table.add_row(f.name, type_)
        for r in c.relations:
            target = COLLECTIONS[r.target].model
            table.add_row(f"[cyan]{r.name}[/]", f"{target}[]" if r.many else target)
        console.print(table)


@app.command()
@async_command
async def stats() -> None:
    """Show record counts per collection, read through the query capability."""
    pool = await get_pool()

    table = Table(title="Database Statistics")
    table.add_column("Collection", style="bold")
    table.add_column("Count", justify="right")

    try:
        async with pool.acquire() as conn:
            access = ReadOnlyDataAccess(conn, AccessSettings.from_env())
            for accessor in COLLECTIONS:
                try:
                    count = await access.count(accessor, {})
                except DataAccessError as exc:
                    err_console.print(f"[red]{accessor}: {exc}[/]")
                    continue
                table.add_row(accessor, str(count))
    finally:
        await pool.close()

    console.print(table)
