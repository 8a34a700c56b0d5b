"""
Main CLI application using Typer.
"""

import logging
from datetime import time
from pathlib import Path
from typing import Annotated, Optional

import pendulum
import typer
from pendulum import DateTime
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..adapters.graph_calendar import GraphCalendarGateway
from ..adapters.memory_store import JsonFileBookingRepository
from ..adapters.mock_calendar import MockCalendarGateway
from ..config import AppConfig, load_config
from ..domain.exceptions import SlotbookError
from ..domain.models import Booking, Interval
from ..domain.outcomes import BookingOutcome
from ..services.availability import AvailabilityEngine
from ..services.booking_service import BookingService
from ..services.calendar_transfer import CalendarTransferService, write_ical_file
from ..services.gateways import ExternalCalendarGateway

app = typer.Typer(
    name="slotbook",
    help="Book conflict-free time slots and exchange them as iCalendar files",
    add_completion=False
)

console = Console()
err_console = Console(stderr=True)

ConfigOption = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")]
MockOption = Annotated[bool, typer.Option("--mock", help="Use an in-memory mock calendar instead of the configured one.")]
ProviderOption = Annotated[Optional[int], typer.Option("--provider", "-p", help="Provider id")]


class Context:
    """Wired-up services for one command invocation."""

    def __init__(self, config: AppConfig, calendar: Optional[ExternalCalendarGateway]):
        self.config = config
        self.calendar = calendar
        # A mock calendar only lives for one command, so bookings are not pushed to it
        sync_bookings = config.calendar.sync_bookings and not isinstance(calendar, MockCalendarGateway)
        self.repository = JsonFileBookingRepository(config.store_path)
        self.availability = AvailabilityEngine(
            repository=self.repository,
            calendar=calendar,
            working_hours=config.working_hours(),
            calendar_padding_minutes=config.calendar.padding_minutes,
        )
        self.service = BookingService(
            repository=self.repository,
            availability=self.availability,
            calendar=calendar if sync_bookings else None,
            slot_duration_range=config.defaults.slot_duration_range(),
            organizer=config.get_organizer(),
        )
        self.transfer = CalendarTransferService(calendar=calendar)


def _build_calendar(config: AppConfig, mock: bool) -> Optional[ExternalCalendarGateway]:
    if mock or config.calendar.provider == "mock":
        return MockCalendarGateway(data_file=config.calendar.mock_data_file, timezone=config.timezone)
    if config.calendar.provider == "graph":
        return GraphCalendarGateway(
            access_token=config.calendar.access_token,
            calendar_id=config.calendar.calendar_id,
        )
    return None


def _load_context(config_file: Optional[Path], mock: bool) -> Context:
    """Load configuration, set up logging and wire the services."""
    try:
        config = load_config(config_file)
        logging.basicConfig(
            level=config.log_level,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )
        context = Context(config, _build_calendar(config, mock))
    except (FileNotFoundError, ValueError, SlotbookError) as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    if mock:
        console.print("[yellow]⚠  MOCK MODE: using an in-memory calendar[/yellow]\n")
    return context


def _parse_datetime(value: str, tz: str, label: str) -> DateTime:
    try:
        parsed = pendulum.parse(value, tz=tz)
    except ValueError as e:
        console.print(f"[red]Could not parse {label} '{value}': {escape(str(e))}[/red]")
        raise typer.Exit(1)

    if not isinstance(parsed, DateTime):
        console.print(f"[red]Could not parse {label} '{value}': not a date and time[/red]")
        raise typer.Exit(1)
    return parsed


def _parse_date(value: str, tz: str) -> DateTime:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).start_of("day")
    except ValueError as e:
        console.print(f"[red]Could not parse date '{value}': {escape(str(e))}[/red]")
        raise typer.Exit(1)


def _parse_time(value: Optional[str]) -> Optional[time]:
    if value is None:
        return None
    try:
        return pendulum.from_format(value, "HH:mm").time()
    except ValueError as e:
        console.print(f"[red]Could not parse time '{value}' (expected HH:MM): {escape(str(e))}[/red]")
        raise typer.Exit(1)


def _date_range(config: AppConfig, start: Optional[str], end: Optional[str]):
    tz = config.timezone
    start_date = _parse_date(start, tz) if start else pendulum.now(tz).start_of("day")
    end_date = _parse_date(end, tz).end_of("day") if end else start_date.add(days=30).end_of("day")
    return start_date, end_date


def _booking_panel(booking: Booking, title: str) -> Panel:
    lines = [
        f"[bold]ID:[/bold] {booking.id}",
        f"[bold]Title:[/bold] {booking.title}",
        f"[bold]Time:[/bold] {booking.interval} ({booking.formatted_duration()})",
        f"[bold]Status:[/bold] {booking.status.value}",
    ]
    if booking.location:
        lines.append(f"[bold]Location:[/bold] {booking.location}")
    if booking.attendee_email:
        lines.append(f"[bold]Attendee:[/bold] {booking.attendee_name or ''} <{booking.attendee_email}>")
    if booking.external_event_id:
        lines.append(f"[bold]External event:[/bold] {booking.external_event_id}")
    return Panel.fit("\n".join(lines), title=title)


def _report(outcome: BookingOutcome, title: str) -> None:
    """Print an outcome and exit with status 1 unless it succeeded."""
    if outcome.ok:
        console.print(_booking_panel(outcome.booking, f"✓ {title}"))
        if outcome.sync is not None and not outcome.sync.ok:
            console.print(f"[yellow]⚠ External calendar not updated: {outcome.sync.error}[/yellow]")
        return

    console.print(f"[bold red]✗ {outcome.status.value}:[/bold red]")
    for error in outcome.errors:
        console.print(f"  • {error}")
    if outcome.availability is not None:
        for conflict in outcome.availability.conflicts:
            console.print(f"  - conflicts with {conflict}")
    raise typer.Exit(1)


@app.command()
def slots(
    day: Annotated[str, typer.Argument(help="Day to list slots for (YYYY-MM-DD)")],
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Slot length in minutes")] = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Working hours start (HH:MM)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="Working hours end (HH:MM)")] = None,
    provider: ProviderOption = None,
    show_all: Annotated[bool, typer.Option("--all", help="Also list slots that are taken.")] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Print slots as JSON.")] = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List bookable slots for a day.

    Examples:

        slotbook slots 2026-11-02
        slotbook slots 2026-11-02 --duration 30 --start 08:00 --end 12:00
    """
    context = _load_context(config_file, mock)
    target = _parse_date(day, context.config.timezone)

    try:
        result = context.service.available_slots(
            target,
            slot_duration_minutes=duration or context.config.defaults.slot_duration_minutes,
            working_hours_start=_parse_time(start),
            working_hours_end=_parse_time(end),
            provider_id=provider,
            include_unavailable=show_all,
        )
    except SlotbookError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(data=[slot.to_dict() for slot in result])
        return

    if not result:
        console.print("[yellow]⚠ No available slots found.[/yellow]")
        return

    table = Table(title=f"Slots on {target.format('DD.MM.YYYY')}", show_header=True, header_style="bold cyan")
    table.add_column("Time", style="bold")
    table.add_column("Available")
    for slot in result:
        table.add_row(slot.formatted_label, "[green]yes[/green]" if slot.available else "[red]no[/red]")

    console.print(table)


@app.command()
def check(
    start: Annotated[str, typer.Argument(help="Start (e.g. '2026-11-02 10:00')")],
    end: Annotated[str, typer.Argument(help="End (e.g. '2026-11-02 11:00')")],
    provider: ProviderOption = None,
    exclude: Annotated[Optional[int], typer.Option("--exclude", help="Booking id to ignore")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Check whether a time range is free.
    """
    context = _load_context(config_file, mock)
    tz = context.config.timezone

    try:
        result = context.service.check_availability(
            _parse_datetime(start, tz, "start"),
            _parse_datetime(end, tz, "end"),
            provider_id=provider,
            exclude_booking_id=exclude,
        )
    except SlotbookError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    if result.available:
        console.print(f"[bold green]✓ {result.interval} is available[/bold green]")
        return

    console.print(f"[bold red]✗ {result.interval} is not available[/bold red] ({result.reason.value})")
    if result.error:
        console.print(f"  {result.error}")
    for conflict in result.conflicts:
        console.print(f"  - conflicts with {conflict}")
    raise typer.Exit(1)


@app.command()
def book(
    title: Annotated[str, typer.Argument(help="Booking title")],
    start: Annotated[str, typer.Option("--start", "-s", help="Start (e.g. '2026-11-02 10:00')")],
    end: Annotated[str, typer.Option("--end", "-e", help="End (e.g. '2026-11-02 11:00')")],
    owner: Annotated[int, typer.Option("--owner", "-o", help="Owner id")] = 1,
    provider: ProviderOption = None,
    booking_type: Annotated[str, typer.Option("--type", "-t", help="appointment, meeting, event or consultation")] = "appointment",
    location: Annotated[str, typer.Option("--location", "-l")] = "",
    description: Annotated[str, typer.Option("--description")] = "",
    email: Annotated[Optional[str], typer.Option("--email", help="Attendee email")] = None,
    name: Annotated[Optional[str], typer.Option("--name", help="Attendee name")] = None,
    notes: Annotated[str, typer.Option("--notes")] = "",
    sync: Annotated[bool, typer.Option("--sync/--no-sync", help="Push the booking to the external calendar.")] = True,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Create a booking if the time range is free.
    """
    context = _load_context(config_file, mock)
    tz = context.config.timezone

    outcome = context.service.create({
        "owner_id": owner,
        "provider_id": provider,
        "title": title,
        "start_time": _parse_datetime(start, tz, "start"),
        "end_time": _parse_datetime(end, tz, "end"),
        "booking_type": booking_type,
        "location": location,
        "description": description,
        "attendee_email": email,
        "attendee_name": name,
        "notes": notes,
        "sync_external_calendar": sync,
    })
    _report(outcome, "Booking created")


@app.command()
def reschedule(
    booking_id: Annotated[int, typer.Argument(help="Booking id")],
    start: Annotated[str, typer.Option("--start", "-s", help="New start")],
    end: Annotated[str, typer.Option("--end", "-e", help="New end")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Move a booking to a new time range.
    """
    context = _load_context(config_file, mock)
    tz = context.config.timezone

    outcome = context.service.update(booking_id, {
        "start_time": _parse_datetime(start, tz, "start"),
        "end_time": _parse_datetime(end, tz, "end"),
    })
    _report(outcome, "Booking rescheduled")


@app.command()
def cancel(
    booking_id: Annotated[int, typer.Argument(help="Booking id")],
    reason: Annotated[str, typer.Option("--reason", "-r")] = "",
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Cancel a booking and free its time range.
    """
    context = _load_context(config_file, mock)
    _report(context.service.cancel(booking_id, reason), "Booking cancelled")


@app.command()
def delete(
    booking_id: Annotated[int, typer.Argument(help="Booking id")],
    reason: Annotated[str, typer.Option("--reason", "-r")] = "",
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Cancel and remove a booking.
    """
    context = _load_context(config_file, mock)
    _report(context.service.delete(booking_id, reason), "Booking deleted")


@app.command("list")
def list_bookings(
    start: Annotated[Optional[str], typer.Option("--from", help="First day (YYYY-MM-DD), default today")] = None,
    end: Annotated[Optional[str], typer.Option("--to", help="Last day (YYYY-MM-DD), default 30 days later")] = None,
    owner: Annotated[Optional[int], typer.Option("--owner", "-o")] = None,
    provider: ProviderOption = None,
    config_file: ConfigOption = None,
):
    """
    List active bookings.
    """
    context = _load_context(config_file, False)
    start_date, end_date = _date_range(context.config, start, end)

    bookings = context.service.list_bookings(start_date, end_date, owner_id=owner, provider_id=provider)
    if not bookings:
        console.print("[yellow]No bookings found.[/yellow]")
        return

    table = Table(title="Bookings", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold yellow")
    table.add_column("Title")
    table.add_column("Time")
    table.add_column("Duration", style="dim")
    table.add_column("Status")
    table.add_column("Sync", style="dim")

    for booking in bookings:
        table.add_row(
            str(booking.id),
            booking.title,
            str(booking.interval),
            booking.formatted_duration(),
            booking.status.value,
            booking.sync_status.value,
        )

    console.print()
    console.print(table)
    console.print()


@app.command("export")
def export_ical(
    output: Annotated[Path, typer.Argument(help="Target .ics file")],
    start: Annotated[Optional[str], typer.Option("--from", help="First day (YYYY-MM-DD), default today")] = None,
    end: Annotated[Optional[str], typer.Option("--to", help="Last day (YYYY-MM-DD), default 30 days later")] = None,
    name: Annotated[str, typer.Option("--name", help="Calendar name")] = "My Bookings",
    external: Annotated[bool, typer.Option("--external", help="Export the external calendar instead of local bookings.")] = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Export bookings (or external calendar events) as an iCalendar file.
    """
    context = _load_context(config_file, mock)
    start_date, end_date = _date_range(context.config, start, end)

    try:
        if external:
            result = context.transfer.export_calendar(Interval(start=start_date, end=end_date), name)
            write_ical_file(result, output)
        else:
            bookings = context.service.list_bookings(start_date, end_date)
            result = context.service.export_bookings(bookings, calendar_name=name)
            write_ical_file(result, output)
    except (OSError, SlotbookError) as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    console.print(f"[green]✓ {result.encoded} event(s) exported to {output}[/green]")
    for skipped in result.skipped:
        console.print(f"[yellow]⚠ Skipped record {skipped.index}: {skipped.reason}[/yellow]")


@app.command("import")
def import_ical(
    source: Annotated[Path, typer.Argument(help=".ics file to read")],
    push: Annotated[bool, typer.Option("--push", help="Create the events in the external calendar.")] = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Read an iCalendar file and optionally push its events to the external calendar.
    """
    context = _load_context(config_file, mock)

    try:
        records = context.transfer.import_from_file(source)
    except (OSError, SlotbookError) as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    table = Table(title=f"Events in {source.name}", show_header=True, header_style="bold cyan")
    table.add_column("Title", style="bold")
    table.add_column("Time")
    table.add_column("Location", style="dim")
    table.add_column("Status")
    for record in records:
        table.add_row(
            record.title,
            str(record.interval) if record.interval else "[red]no valid time[/red]",
            record.location,
            record.status.value,
        )
    console.print(table)

    if not push:
        return

    try:
        report = context.transfer.import_to_calendar(records)
    except SlotbookError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    console.print(
        f"[green]✓ Imported {report.imported} of {report.total} events "
        f"({report.skipped} skipped)[/green]"
    )
    for error in report.errors:
        console.print(f"[red]  • {error}[/red]")
    if report.errors:
        raise typer.Exit(1)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotbook[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
