"""Command-line front-end for the bake logger.

Every command goes through the server's HTTP API, so the CLI and the web
clients always see the same bake.
"""

import functools
import sys
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .client import BakeClient, ClientError
from .constants import DEFAULT_HISTORY_LIMIT, DEFAULT_SERVER_URL, MAX_RATING, MIN_RATING
from .models import MILESTONE_KINDS, Bake, Event, fahrenheit_from_celsius
from .timeutil import format_duration, format_relative_time, parse_time_reference

console = Console()


def _reports_errors(fn):
    """Print client errors in red and exit non-zero."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ClientError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(1)

    return wrapper


def _event_details(event: Event) -> str:
    info = []
    if event.ambient_temp_f is not None:
        info.append(f"{event.ambient_temp_f:.1f}°F")
    if event.oven_temp_f is not None:
        info.append(f"oven: {event.oven_temp_f:.0f}°F")
    if event.dough_temp_f is not None:
        info.append(f"dough: {event.dough_temp_f:.1f}°F")
    if event.fold_count is not None:
        info.append(f"#{event.fold_count}")
    if event.note:
        info.append(event.note)
    if event.image_ref:
        info.append(f"[photo {event.image_ref}]")
    return escape("  ".join(info))


def _print_events(bake: Bake, title: str) -> None:
    table = Table(title=title)
    table.add_column("Time", style="cyan")
    table.add_column("Event")
    table.add_column("Details")
    table.add_column("Elapsed", style="dim", justify="right")

    previous = None
    for event in bake.events:
        elapsed = f"+{format_duration(event.timestamp - previous.timestamp)}" if previous else ""
        table.add_row(event.timestamp.strftime("%H:%M"), event.kind, _event_details(event), elapsed)
        previous = event

    console.print(table)


def _print_assessment(bake: Bake) -> None:
    a = bake.assessment
    if a is None:
        return
    console.print("[bold]Assessment[/bold]")
    console.print(f"  Proof level:   {a.proof_level or '-'}")
    console.print(f"  Crumb quality: {a.crumb_quality or '-'}/10")
    console.print(f"  Browning:      {a.browning or '-'}")
    console.print(f"  Overall score: {a.score or '-'}/10")
    if a.notes:
        console.print(f"  Notes:         {escape(a.notes)}")


@click.group()
@click.option(
    "--server-url",
    envvar="SOURDOUGH_SERVER_URL",
    default=DEFAULT_SERVER_URL,
    show_default=True,
    help="Base URL of the sourdough server",
)
@click.pass_context
def cli(ctx, server_url):
    """Sourdough bread logger."""
    ctx.ensure_object(dict)
    ctx.obj["client"] = BakeClient(server_url)


@cli.command()
@click.option("--temp", type=float, help="Kitchen temperature (°F)")
@click.pass_context
@_reports_errors
def start(ctx, temp):
    """Start a new bake."""
    event = ctx.obj["client"].start(temp)
    console.print("[green]✓[/green] Bake started!")
    console.print(f"Date: {event.timestamp.strftime('%Y-%m-%d %H:%M')}")


@cli.command()
@click.argument("kind", type=click.Choice(MILESTONE_KINDS))
@click.option("--temp", type=float, help="Temperature (°F); oven setting for oven-in/remove-lid")
@click.option("--dough-temp", type=float, help="Dough temperature (°F)")
@click.option("--note", help="Free-text note")
@click.pass_context
@_reports_errors
def log(ctx, kind, temp, dough_temp, note):
    """Log a baking milestone."""
    event = ctx.obj["client"].log(kind, temp_f=temp, dough_temp_f=dough_temp, note=note)
    suffix = f" #{event.fold_count}" if event.fold_count is not None else ""
    console.print(f"[green]✓[/green] Logged: {event.kind}{suffix}")
    console.print(f"Time: {event.timestamp.strftime('%H:%M')}")


@cli.command()
@click.argument("value", type=float)
@click.option(
    "--type", "reading",
    type=click.Choice(["kitchen", "dough", "oven"]),
    default="kitchen",
    show_default=True,
)
@click.option("--celsius", is_flag=True, help="VALUE is in Celsius")
@click.pass_context
@_reports_errors
def temp(ctx, value, reading, celsius):
    """Log a temperature reading."""
    value_f = fahrenheit_from_celsius(value) if celsius else value
    ctx.obj["client"].temperature(round(value_f, 1), reading)
    console.print(f"[green]✓[/green] Temperature logged: {value_f:.1f}°F ({reading})")


@cli.command()
@click.argument("text", required=False, default="")
@click.option("--image", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Photo to attach")
@click.option("--dough-temp", type=float, help="Dough temperature (°F)")
@click.pass_context
@_reports_errors
def note(ctx, text, image, dough_temp):
    """Add a note, optionally with a photo."""
    if not text.strip() and image is None:
        raise click.UsageError("Enter a note or attach an image")
    event = ctx.obj["client"].note(text, dough_temp_f=dough_temp, image=image)
    console.print("[green]✓[/green] Note saved" + (f" with photo {event.image_ref}" if event.image_ref else ""))


@cli.command()
@click.pass_context
@_reports_errors
def status(ctx):
    """Show the current bake."""
    bake = ctx.obj["client"].status()
    if not bake.events:
        console.print("No bake in progress.")
        if bake.assessment is not None:
            _print_assessment(bake)
        console.print("Run 'sourdough start' to begin a new bake.")
        return

    _print_events(bake, f"Bake Status - {bake.date}")
    elapsed = datetime.now().astimezone() - bake.events[0].timestamp
    console.print(f"Total elapsed: {format_duration(elapsed)}")


@cli.command()
@click.pass_context
@_reports_errors
def complete(ctx):
    """Complete the bake with an assessment."""
    client = ctx.obj["client"]
    if not client.status().events:
        console.print("No bake in progress.")
        sys.exit(1)

    console.print("[bold]Complete Bake Assessment[/bold]")
    assessment = {
        "proof_level": click.prompt(
            "Proof level", type=click.Choice(["underproofed", "good", "overproofed"])
        ),
        "crumb_quality": click.prompt("Crumb quality (1-10)", type=click.IntRange(MIN_RATING, MAX_RATING)),
        "browning": click.prompt("Browning", type=click.Choice(["none", "slight", "good", "over"])),
        "score": click.prompt("Overall score (1-10)", type=click.IntRange(MIN_RATING, MAX_RATING)),
        "notes": click.prompt("Notes", default="", show_default=False),
    }

    client.complete(assessment)
    console.print("[green]✓[/green] Bake completed and assessed!")
    console.print(
        f"Proof: {assessment['proof_level']} | Crumb: {assessment['crumb_quality']}/10 | "
        f"Browning: {assessment['browning']} | Score: {assessment['score']}/10"
    )


@cli.command()
@click.option("-n", "--limit", default=DEFAULT_HISTORY_LIMIT, show_default=True, help="Number of bakes to show")
@click.option("--since", help="Only bakes started since, e.g. '2 weeks ago' or 2025-10-01")
@click.pass_context
@_reports_errors
def history(ctx, limit, since):
    """Show recent bakes."""
    summaries = ctx.obj["client"].history()

    if since:
        try:
            since_dt = parse_time_reference(since)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--since") from e
        summaries = [s for s in summaries if s.start_time >= since_dt]

    if not summaries:
        console.print("No bakes found.")
        return

    table = Table(title="Recent Bakes")
    table.add_column("Bake", style="cyan", no_wrap=True)
    table.add_column("Started")
    table.add_column("Events", justify="right")
    table.add_column("Status")

    for s in summaries[:limit]:
        if s.assessment is not None and s.assessment.score is not None:
            state = f"Score: {s.assessment.score}/10 | Proof: {s.assessment.proof_level or '-'}"
        elif s.completed:
            state = "Completed"
        else:
            state = "[yellow]In progress[/yellow]"
        table.add_row(s.date, format_relative_time(s.start_time), str(s.event_count), state)

    console.print(table)
    console.print(f"Showing {min(limit, len(summaries))} of {len(summaries)} bakes")


@cli.command()
@click.argument("identity")
@click.pass_context
@_reports_errors
def review(ctx, identity):
    """Review a specific bake."""
    bake = ctx.obj["client"].bake(identity)
    _print_events(bake, f"Bake Review - {identity}")
    _print_assessment(bake)
    if len(bake.events) > 1:
        total = bake.events[-1].timestamp - bake.events[0].timestamp
        console.print(f"Total time: {format_duration(total)}")


@cli.command()
@click.argument("identity")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
@_reports_errors
def delete(ctx, identity, yes):
    """Move a bake to the trash."""
    if not yes and not click.confirm(f"Move bake {identity} to trash?"):
        console.print("Aborted.")
        return
    ctx.obj["client"].delete(identity)
    console.print(f"[green]✓[/green] Moved {identity} to trash")


if __name__ == "__main__":
    cli()
