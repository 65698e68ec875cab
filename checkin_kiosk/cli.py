"""
Flask CLI commands for the check-in kiosk.

    flask --app checkin_kiosk.app:create_app events
    flask --app checkin_kiosk.app:create_app check-in FCS/24/1001 --event evt-1
    flask --app checkin_kiosk.app:create_app kiosk --event evt-1
"""

import sys

import click
from flask import Flask, current_app
from flask.cli import with_appcontext

from .models import CheckInMethod
from .renderer import render_feedback


def _kiosk():
    from .app import get_kiosk
    return get_kiosk(current_app)


def _echo_notifications(session) -> None:
    for level, message in session.drain_notifications():
        click.echo(f"[{level}] {message}", err=(level == 'error'))


@click.command("events")
@with_appcontext
def list_events():
    """List the published events a kiosk can check people in for."""
    session = _kiosk().session
    events = session.load_events()
    _echo_notifications(session)
    if not events:
        click.echo("No active events found")
        return
    for event in events:
        dates = " - ".join(d for d in (event.start_date, event.end_date) if d)
        click.echo(f"{event.id}\t{event.title}\t{dates}")


@click.command("check-in")
@click.argument("code")
@click.option("--event", "event_id", required=True, help="Event to check the code in for")
@click.option("--method", type=click.Choice([m.value for m in CheckInMethod]), default="MANUAL",
              show_default=True, help="Check-in method recorded by the server")
@click.option("--notes", default=None, help="Note stored with the attendance record")
@with_appcontext
def check_in(code, event_id, method, notes):
    """
    Run one lookup-and-check-in cycle for CODE.

    Exits with status 1 when the check-in did not succeed.
    """
    kiosk = _kiosk()
    kiosk.session.select_event(event_id)
    state = kiosk.session.handle_check_in(code, CheckInMethod(method), notes)
    if state is None:
        click.echo("Nothing to check in", err=True)
        sys.exit(1)
    click.echo(render_feedback(state).as_text())
    if state.phase.value not in ("success", "duplicate"):
        sys.exit(1)


@click.command("kiosk")
@click.option("--event", "event_id", required=True, help="Event to check people in for")
@with_appcontext
def run_kiosk(event_id):
    """
    Terminal kiosk for hardware barcode scanners.

    Each line read from standard input is one submission. Type 'pick ID'
    to resolve an ambiguous match; end input (Ctrl+D) to stop.
    """
    kiosk = _kiosk()
    session = kiosk.session
    session.set_kiosk_mode(True)
    session.select_event(event_id)
    click.echo(render_feedback(session.state).as_text())

    try:
        for line in sys.stdin:
            line = line.strip()
            if not line:
                continue
            if line.startswith("pick "):
                state = session.choose_candidate(line[5:].strip())
            else:
                state = session.submit_manual(line)
            if state is not None:
                click.echo(render_feedback(state).as_text())
            _echo_notifications(session)
    except KeyboardInterrupt:
        click.echo("\nExiting kiosk...")
    finally:
        kiosk.shutdown()


def register_commands(app: Flask) -> None:
    app.cli.add_command(list_events)
    app.cli.add_command(check_in)
    app.cli.add_command(run_kiosk)
