"""
Main CLI application using Typer.

The CLI works on the businesses, appointments and blocked slots of a YAML
configuration file, loaded into the in-memory store.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.memory_store import InMemoryBookingStore
from ..config import AppConfig, BusinessConfig, get_default_config_path
from ..domain.exceptions import ConflictError, SlotguardError
from ..domain.models import AppointmentStatus
from ..services.availability import AvailabilityService
from ..services.booking_guard import BookingConflictGuard

app = typer.Typer(
    name="slotguard",
    help="Compute bookable appointment slots and check bookings for conflicts",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
NowOption = Annotated[
    Optional[str],
    typer.Option("--now", help="Evaluate as of this instant (ISO 8601) instead of the wall clock"),
]


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _load(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    config = AppConfig.load_from_yaml(config_path)
    _configure_logging(config.log_level)
    return config


def _require_business(config: AppConfig, business_id: str) -> BusinessConfig:
    business = config.find_business(business_id)
    if business is None:
        console.print(f"[bold red]Error:[/bold red] Unknown business '{business_id}'")
        raise typer.Exit(1)
    return business


def _parse_instant(value: Optional[str], tz: str, label: str):
    if value is None:
        return None
    try:
        return pendulum.parse(value, tz=tz)
    except ValueError as e:
        console.print(f"[red]Could not parse {label}: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def slots(
    business_id: Annotated[str, typer.Argument(help="Business id from the config file")],
    date: Annotated[str, typer.Argument(help="Date to list slots for (YYYY-MM-DD)")],
    as_list: Annotated[bool, typer.Option("--list", help="Print one line per slot instead of a table")] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Print the slots as JSON")] = False,
    config_file: ConfigOption = None,
    now: NowOption = None,
):
    """
    List the bookable slots of a business on a date.

    Examples:

        slotguard slots salon 2024-11-25
        slotguard slots salon 2024-11-25 --now 2024-11-25T08:00
        slotguard slots salon 2024-11-25 --json
    """
    try:
        config = _load(config_file)
        business = _require_business(config, business_id)
        tz = business.timezone

        try:
            target_date = pendulum.from_format(date, "YYYY-MM-DD", tz=tz).date()
        except ValueError as e:
            console.print(f"[red]Could not parse date: {e}[/red]")
            raise typer.Exit(1)

        service = AvailabilityService(InMemoryBookingStore.from_config(config))
        found = asyncio.run(
            service.find_slots(business_id, target_date, now=_parse_instant(now, tz, "--now"))
        )

        if as_json:
            console.print_json(data=[slot.to_dict() for slot in found])
            return

        console.print()
        if not found:
            console.print(
                f"[yellow]⚠ No bookable slots for {business.name or business_id} "
                f"on {target_date.isoformat()}.[/yellow]\n"
            )
            return

        if as_list:
            console.print(f"[bold green]✓ {len(found)} slot(s) available:[/bold green]\n")
            for slot in found:
                console.print(f"  {slot.format_display()}")
            console.print()
            return

        table = Table(
            title=f"Available slots – {business.name or business_id}",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("#", style="dim")
        table.add_column("Start", style="bold yellow")
        table.add_column("End")
        table.add_column("Minutes", justify="right")

        for idx, slot in enumerate(found, 1):
            table.add_row(
                str(idx),
                slot.start.format("YYYY-MM-DD HH:mm"),
                slot.end.format("HH:mm"),
                str(slot.duration_minutes()),
            )

        console.print(table)
        console.print(f"\n[bold green]✓ {len(found)} slot(s) available[/bold green]\n")

    except (FileNotFoundError, ValueError, SlotguardError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def book(
    business_id: Annotated[str, typer.Argument(help="Business id from the config file")],
    start: Annotated[str, typer.Argument(help="Start of the appointment (ISO 8601)")],
    end: Annotated[str, typer.Argument(help="End of the appointment (ISO 8601)")],
    name: Annotated[str, typer.Option("--name", help="Customer name")],
    email: Annotated[str, typer.Option("--email", help="Customer email")],
    phone: Annotated[Optional[str], typer.Option("--phone", help="Customer phone")] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Notes for the business")] = None,
    confirm: Annotated[bool, typer.Option("--confirm", help="Create the appointment as confirmed")] = False,
    config_file: ConfigOption = None,
    now: NowOption = None,
):
    """
    Check a booking against the configured appointments and blocks.

    Exits with code 2 when the interval is already taken.
    """
    try:
        config = _load(config_file)
        business = _require_business(config, business_id)
        tz = business.timezone

        guard = BookingConflictGuard(
            InMemoryBookingStore.from_config(config),
            policy=config.booking.to_policy(),
        )
        customer = {"name": name, "email": email, "phone": phone, "notes": notes}
        status = AppointmentStatus.CONFIRMED if confirm else None

        appointment = asyncio.run(
            guard.try_create_appointment(
                business_id,
                (_parse_instant(start, tz, "start"), _parse_instant(end, tz, "end")),
                customer,
                status=status,
                now=_parse_instant(now, tz, "--now"),
            )
        )

        console.print(Panel.fit(
            f"[bold green]✓ Appointment created[/bold green]\n\n"
            f"[bold]When:[/bold] {appointment.time_range}\n"
            f"[bold]Status:[/bold] {appointment.status.value}\n"
            f"[bold]Booking token:[/bold] {appointment.booking_token}",
            title=business.name or business_id
        ))

    except ConflictError as e:
        if e.kind == "blocked":
            console.print("[bold red]✗ This time is blocked by the business.[/bold red]")
        else:
            console.print("[bold red]✗ This time overlaps an existing appointment.[/bold red]")
        console.print("Please choose a different slot.")
        raise typer.Exit(2)

    except (FileNotFoundError, ValueError, SlotguardError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def businesses(config_file: ConfigOption = None):
    """
    List all configured businesses.
    """
    try:
        config = _load(config_file)

        if not config.businesses:
            console.print("[yellow]No businesses defined in the config file.[/yellow]")
            return

        table = Table(
            title="Configured businesses",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("Id", style="bold yellow")
        table.add_column("Name")
        table.add_column("Days", style="dim")
        table.add_column("Hours")
        table.add_column("Breaks", style="dim")
        table.add_column("Slot", justify="right")

        for business in config.businesses:
            schedule = business.to_schedule()
            table.add_row(
                business.id,
                business.name,
                ", ".join(day[:3] for day in business.available_days),
                str(schedule.available_hours),
                ", ".join(str(b) for b in schedule.break_times) or "–",
                f"{business.slot_duration_minutes} min",
            )

        console.print()
        console.print(table)
        console.print()

    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def check_config(config_file: ConfigOption = None):
    """
    Validate the configuration file.
    """
    try:
        config = _load(config_file)
        store = InMemoryBookingStore.from_config(config)
    except (FileNotFoundError, ValueError, SlotguardError) as e:
        console.print(f"\n[bold red]✗ Invalid configuration:[/bold red] {e}\n")
        raise typer.Exit(1)

    console.print(
        f"\n[green]✓ Configuration OK[/green]: {len(store.business_ids())} business(es), "
        f"{len(config.appointments)} appointment(s), {len(config.blocked_slots)} blocked slot(s)\n"
    )


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotguard[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
