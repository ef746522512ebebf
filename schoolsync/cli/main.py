#!/usr/bin/env python3
"""CLI for the SchoolSync resource API.

Commands:
    list        List records of a resource in the current school/campus
    create      Create a record
    update      Update fields of a record
    delete      Delete a record
    next-grade  Set which grade follows another at year rollover
    progression Show the grade progression chain
"""

import asyncio
import json
from contextlib import asynccontextmanager

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from schoolsync.cache import CacheConfig, SynchronizedCache
from schoolsync.client import ClientConfig, ResourceClient, ResourceError
from schoolsync.logutils import get_logger
from schoolsync.resources import GRADUATE, GradeProgression, ResourceCollection, Scope, grade_levels

# Load .env file from current directory if available
load_dotenv()

console = Console()
logger = get_logger(__name__)


class ConsoleNotifier:
    """Prints write outcomes to the terminal."""

    def success(self, message: str) -> None:
        console.print(f"[green]✓ {message}[/green]")

    def warning(self, message: str) -> None:
        console.print(f"[yellow]{message}[/yellow]")

    def error(self, message: str) -> None:
        console.print(f"[red]Error: {message}[/red]")


def parse_fields(pairs: tuple[str, ...]) -> dict:
    """Turn ``key=value`` pairs into a dict; values are parsed as JSON when possible."""
    fields = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"Expected key=value, got {pair!r}")
        name, raw = pair.split("=", 1)
        try:
            fields[name.strip()] = json.loads(raw)
        except ValueError:
            fields[name.strip()] = raw
    return fields


@asynccontextmanager
async def open_session(ctx: click.Context):
    """Client plus a fresh cache for one command invocation."""
    options = ctx.obj
    async with ResourceClient(options["client_config"]) as client:
        cache = SynchronizedCache(CacheConfig.from_env())
        yield client, cache


def run(coro):
    try:
        return asyncio.run(coro)
    except ResourceError as e:
        console.print(f"[red]Error: {e.user_message}[/red]")
        raise SystemExit(1) from e


@click.group()
@click.version_option(version="0.1.0", prog_name="schoolsync")
@click.option("--school", "school_id", envvar="SCHOOLSYNC_SCHOOL_ID", required=True, help="School (tenant) id")
@click.option("--campus", "campus_id", envvar="SCHOOLSYNC_CAMPUS_ID", default=None, help="Campus id")
@click.pass_context
def cli(ctx: click.Context, school_id: str, campus_id: str | None):
    """SchoolSync CLI - Query and edit school resources."""
    try:
        client_config = ClientConfig.from_env()
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    ctx.obj = {"client_config": client_config, "scope": Scope(school_id, campus_id)}


@cli.command(name="list")
@click.argument("resource")
@click.option("--filter", "-f", "filters", multiple=True, help="Filter as key=value (repeatable)")
@click.option("--columns", "-c", default=None, help="Comma-separated columns to show")
@click.pass_context
def list_records(ctx: click.Context, resource: str, filters: tuple[str, ...], columns: str | None):
    """List records of RESOURCE (e.g. academics/grades)."""

    async def _list():
        async with open_session(ctx) as (client, cache):
            collection = ResourceCollection(cache, client, resource, ctx.obj["scope"], filters=parse_fields(filters))
            return await collection.load()

    records = run(_list())
    if not records:
        console.print(Panel(f"[yellow]No {resource} found[/yellow]", title=resource))
        return

    names = [c.strip() for c in columns.split(",")] if columns else _default_columns(records)
    table = Table(title=resource)
    for name in names:
        table.add_column(name)
    for record in records:
        table.add_row(*(_cell(record.get(name)) for name in names))
    console.print(table)
    console.print(f"\n[bold]Total: {len(records)}[/bold]")


@cli.command()
@click.argument("resource")
@click.option("--field", "-f", "fields", multiple=True, required=True, help="Field as key=value (repeatable)")
@click.pass_context
def create(ctx: click.Context, resource: str, fields: tuple[str, ...]):
    """Create a RESOURCE record."""

    async def _create():
        async with open_session(ctx) as (client, cache):
            collection = ResourceCollection(cache, client, resource, ctx.obj["scope"], notifier=ConsoleNotifier())
            return await collection.create(parse_fields(fields))

    envelope = run(_create())
    if not envelope.success:
        raise SystemExit(1)
    if isinstance(envelope.data, dict) and envelope.data.get("id"):
        console.print(f"  id: {envelope.data['id']}")


@cli.command()
@click.argument("resource")
@click.argument("record_id")
@click.option("--field", "-f", "fields", multiple=True, required=True, help="Field as key=value (repeatable)")
@click.pass_context
def update(ctx: click.Context, resource: str, record_id: str, fields: tuple[str, ...]):
    """Update fields of a RESOURCE record."""

    async def _update():
        async with open_session(ctx) as (client, cache):
            collection = ResourceCollection(cache, client, resource, ctx.obj["scope"], notifier=ConsoleNotifier())
            return await collection.update(record_id, parse_fields(fields))

    if not run(_update()).success:
        raise SystemExit(1)


@cli.command()
@click.argument("resource")
@click.argument("record_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, resource: str, record_id: str, yes: bool):
    """Delete a RESOURCE record."""
    if not yes and not click.confirm(f"Delete {resource} {record_id}?", default=False):
        console.print("[yellow]Aborted.[/yellow]")
        return

    async def _delete():
        async with open_session(ctx) as (client, cache):
            collection = ResourceCollection(cache, client, resource, ctx.obj["scope"], notifier=ConsoleNotifier())
            return await collection.delete(record_id)

    if not run(_delete()).success:
        raise SystemExit(1)


@cli.command(name="next-grade")
@click.argument("grade_id")
@click.argument("next_grade_id")
@click.pass_context
def next_grade(ctx: click.Context, grade_id: str, next_grade_id: str):
    """Set the grade that follows GRADE_ID (use GRADUATE for the final grade)."""

    async def _set():
        async with open_session(ctx) as (client, cache):
            grades = grade_levels(cache, client, ctx.obj["scope"], notifier=ConsoleNotifier())
            await grades.load()
            return await GradeProgression(grades).set_next_grade(grade_id, next_grade_id)

    if not run(_set()).success:
        raise SystemExit(1)


@cli.command()
@click.pass_context
def progression(ctx: click.Context):
    """Show the grade progression chain and each grade's successor."""

    async def _load():
        async with open_session(ctx) as (client, cache):
            grades = grade_levels(cache, client, ctx.obj["scope"])
            await grades.load()
            return GradeProgression(grades)

    progression_ = run(_load())
    chain = progression_.progression_chain()
    if not chain:
        console.print("[yellow]No grade levels configured[/yellow]")
        return

    console.print(Panel(" → ".join(chain), title="Progression"))

    by_id = {g["id"]: g for g in progression_.ordered()}
    table = Table(title="Grade Levels")
    table.add_column("Order", justify="right")
    table.add_column("Grade", style="cyan")
    table.add_column("Next Grade")
    table.add_column("Active")
    for grade in progression_.ordered():
        successor = by_id.get(grade.get("next_grade_id") or "")
        table.add_row(
            str(grade.get("order_index", "")),
            grade.get("name", grade["id"]),
            successor.get("name", successor["id"]) if successor else f"[green]{GRADUATE}[/green]",
            "✓" if grade.get("is_active") else "[dim]no[/dim]",
        )
    console.print(table)


def _default_columns(records: list[dict]) -> list[str]:
    preferred = ["id", "name", "title", "order_index", "is_active"]
    present = [c for c in preferred if any(c in r for r in records)]
    return present or list(records[0].keys())[:6]


def _cell(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "✓" if value else "no"
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)[:40]


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
