# Overview: Flask CLI command groups for bootstrap, agency setup, and scheduled jobs.

# backend/lettings/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Agencies:
# - python -m flask agencies list
# - python -m flask agencies create --name "Northside Lettings" --code "NSL"
#
# Rolling continuation:
# - python -m flask rolling due [--date 2025-03-01]
#   List tenancy ids the daily job would process.
# - python -m flask rolling run [--date 2025-03-01] [--agency-id 1]
#   Run one continuation pass now (cron-friendly).
# - python -m flask rolling schedule
#   Run the daily job in the foreground with APScheduler (blocks).
#
# Events:
# - python -m flask events dispatch [--limit 100]
#   Deliver pending outbox events through the log dispatcher.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Agency, Property, Tenancy
from .time_utils import parse_iso_date


def _parse_date_option(value):
    if value is None:
        return None
    try:
        return parse_iso_date(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc))


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System maintenance commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask agencies create' to add an agency.")


# =============================================================================
# AGENCIES
# =============================================================================

@click.group('agencies')
def agencies_group():
    """Agency (tenant) management."""


@agencies_group.command('list')
@with_appcontext
def list_agencies():
    """List all agencies."""
    agencies = db.session.query(Agency).order_by(Agency.id).all()

    if not agencies:
        click.echo("No agencies found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Props':<8} {'Tenancies'}")
    click.echo("="*80)

    for agency in agencies:
        property_count = db.session.query(Property).filter_by(agency_id=agency.id).count()
        tenancy_count = db.session.query(Tenancy).filter_by(agency_id=agency.id).count()
        active_str = "Yes" if agency.is_active else "No"

        click.echo(
            f"{agency.id:<5} {agency.name:<30} {agency.code or '-':<15} "
            f"{active_str:<8} {property_count:<8} {tenancy_count}"
        )

    click.echo("="*80 + "\n")


@agencies_group.command('create')
@click.option('--name', required=True, help='Agency name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_agency_cli(name, code):
    """Create a new agency (tenant)."""
    existing = db.session.query(Agency).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Agency with code '{code}' already exists")
        return

    agency = Agency(name=name, code=code, is_active=True)
    db.session.add(agency)
    db.session.commit()

    click.echo(f"PASS Created agency: {agency.name} (ID: {agency.id}, Code: {agency.code})")


# =============================================================================
# ROLLING CONTINUATION
# =============================================================================

@click.group('rolling')
def rolling_group():
    """Rolling periodic tenancy continuation."""


@rolling_group.command('due')
@click.option('--date', 'run_date', default=None, help='Evaluate as of this date (YYYY-MM-DD)')
@click.option('--agency-id', type=int, default=None, help='Limit to one agency')
@with_appcontext
def rolling_due(run_date, agency_id):
    """List tenancy ids eligible for continuation."""
    from .services.rolling_service import due_tenancies

    ids = due_tenancies(_parse_date_option(run_date), agency_id=agency_id)
    if not ids:
        click.echo("No rolling tenancies due.")
        return
    for tenancy_id in ids:
        click.echo(str(tenancy_id))


@rolling_group.command('run')
@click.option('--date', 'run_date', default=None, help='Run as of this date (YYYY-MM-DD)')
@click.option('--agency-id', type=int, default=None, help='Limit to one agency')
@with_appcontext
def rolling_run(run_date, agency_id):
    """Run one continuation pass and print the report."""
    from .services.rolling_service import run_rolling_continuation

    report = run_rolling_continuation(_parse_date_option(run_date), agency_id=agency_id)

    click.echo(
        f"Run {report.run_date.isoformat()}: processed={report.processed} "
        f"created={report.created} skipped={report.skipped} failed={report.failed}"
    )
    for error in report.errors:
        click.echo(f"  FAIL tenancy {error['tenancy_id']}: {error['error_type']}: {error['error']}")

    if report.failed:
        raise SystemExit(1)


@rolling_group.command('schedule')
@with_appcontext
def rolling_schedule():
    """Run the daily continuation job in the foreground."""
    from .scheduler import build_scheduler

    app = current_app._get_current_object()
    scheduler = build_scheduler(app, blocking=True)
    click.echo(
        f"Scheduling rolling continuation daily at "
        f"{app.config['ROLLING_JOB_HOUR']:02d}:{app.config['ROLLING_JOB_MINUTE']:02d} "
        f"{app.config['AGENCY_TIMEZONE']} (Ctrl+C to stop)"
    )
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        click.echo("Scheduler stopped.")


# =============================================================================
# EVENTS
# =============================================================================

@click.group('events')
def events_group():
    """Outbound event outbox."""


@events_group.command('dispatch')
@click.option('--limit', type=int, default=100, show_default=True, help='Maximum events to deliver')
@click.option('--agency-id', type=int, default=None, help='Limit to one agency')
@with_appcontext
def dispatch_events(limit, agency_id):
    """Deliver pending events through the log dispatcher."""
    from .services.event_service import dispatch_pending_events, log_dispatcher

    result = dispatch_pending_events(log_dispatcher, agency_id=agency_id, limit=limit)
    click.echo(f"PASS dispatched={result['dispatched']} failed={result['failed']}")
    for error in result["errors"]:
        click.echo(f"  FAIL event {error['event_id']}: {error['error']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(agencies_group)
    app.cli.add_command(rolling_group)
    app.cli.add_command(events_group)
