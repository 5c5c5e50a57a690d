#!/usr/bin/env python3
"""
CLI for the Convergence Engine

Commands:
    ingest          - Upsert normalized scraped records from a JSON file
    match           - Match unlinked scraped records of a kind
    refresh         - Re-fuse one canonical entity from its sources
    enrich-artists  - Enrich artists lacking a MusicBrainz link
    reject-past     - Reject pending events dated before today
    link            - Manually link a scraped record to a canonical entity
    apply-changes   - Apply pending changes of a scraped record
    dismiss-changes - Dismiss pending changes of a scraped record

Usage:
    python cli.py ingest data/ra_events.json --kind event
    python cli.py match events --dry-run
    python cli.py refresh event 5f0c...

Examples:
    # Preview matching without writing anything
    python cli.py match events --dry-run --json

    # Apply only the title change of scraped event 42
    python cli.py apply-changes event 42 --field title --by editor@example.com
"""

import json
import logging
import sys

import click
from sqlalchemy.exc import OperationalError

KINDS = ["event", "events", "venue", "venues", "artist", "artists", "organizer", "organizers"]


def get_app_context():
    """Get Flask app context for database access."""
    from app import create_app
    app = create_app()
    return app.app_context()


def get_orchestrator(with_gateway: bool = True):
    """Orchestrator on the app's session; call inside the app context."""
    from flask import current_app
    from convergence.gateway import build_gateway
    from convergence.orchestrator import ConvergenceOrchestrator
    from models.database import db

    gateway = build_gateway(current_app.config) if with_gateway else None
    return ConvergenceOrchestrator(db.session, gateway=gateway, config=current_app.config)


def load_payloads(file_path):
    """A JSON list of records, {"records": [...]}, or JSON lines."""
    with open(file_path, encoding="utf-8") as f:
        if file_path.endswith(".jsonl"):
            return [json.loads(line) for line in f if line.strip()]
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("records", [data])
    return data


def print_report(report, output_json=False, verbose=False):
    if output_json:
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
        return

    summary = report.summary()
    click.echo("=" * 60)
    title = f"{report.run_type.upper()} {report.kind or ''}".strip()
    if report.dry_run:
        title += " (DRY RUN)"
    click.secho(title, fg="cyan", bold=True)
    click.echo("=" * 60)
    click.echo(click.style("  Total:    ", fg="white") + str(summary["total"]))
    if report.run_type == "match":
        click.echo(click.style("  Matched:  ", fg="white") + click.style(str(summary["matched"]), fg="green"))
        click.echo(click.style("  Created:  ", fg="white") + click.style(str(summary["created"]), fg="blue"))
    click.echo(click.style("  Skipped:  ", fg="white") + click.style(str(summary["skipped"]), fg="yellow"))
    click.echo(click.style("  Failed:   ", fg="white") + click.style(
        str(summary["failed"]), fg="red" if summary["failed"] else "green"))
    click.echo(click.style("  Audit:    ", fg="white") + str(summary["audit_entries"]))

    if "ingest" in summary:
        click.echo()
        click.secho("INGEST:", fg="green", bold=True)
        for name, count in summary["ingest"].items():
            click.echo(f"  {name.replace('_', ' ').capitalize()}: {count}")

    if verbose:
        click.echo()
        for item in report.items:
            line = f"  [{item.status}] {item.ref}"
            if item.action:
                line += f" {item.action}"
            if item.error:
                line += f" - {item.error}"
            click.echo(line)


@click.group()
@click.version_option(version="1.0.0", prog_name="convergence-cli")
@click.option("--log-level", default="INFO", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
def cli(log_level):
    """Convergence Engine CLI - Ingest, match and converge scraped records."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    )


@cli.command("ingest")
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--kind", type=click.Choice(["event", "venue", "artist", "organizer"]), default=None,
              help="Record kind when the payloads carry no 'kind' key")
@click.option("--no-geocode", is_flag=True, help="Skip geocoding and enrichment lookups")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="List every record")
def ingest(file_path, kind, no_geocode, output_json, verbose):
    """
    Upsert normalized scraped records.

    FILE_PATH: JSON file with the records
    """
    payloads = load_payloads(file_path)
    click.echo(f"Ingesting {len(payloads)} record(s) from {file_path}...")

    with get_app_context():
        try:
            report = get_orchestrator(with_gateway=not no_geocode).run_ingest(payloads, kind=kind)
        except OperationalError as e:
            click.secho(f"Error: database unreachable: {e}", fg="red")
            sys.exit(1)
        print_report(report, output_json, verbose)


@cli.command("match")
@click.argument("kind", type=click.Choice(KINDS))
@click.option("--limit", type=int, default=None, help="Limit number of records")
@click.option("--dry-run", is_flag=True, help="Show what would be done without making changes")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="List every record")
def match(kind, limit, dry_run, output_json, verbose):
    """
    Match unlinked scraped records to canonical entities.

    KIND: event, venue, artist or organizer
    """
    with get_app_context():
        try:
            report = get_orchestrator().run_matching(kind, limit=limit, dry_run=dry_run)
        except OperationalError as e:
            click.secho(f"Error: database unreachable: {e}", fg="red")
            sys.exit(1)
        print_report(report, output_json, verbose)


@cli.command("refresh")
@click.argument("kind", type=click.Choice(KINDS))
@click.argument("canonical_id")
def refresh(kind, canonical_id):
    """Re-fuse one canonical entity from its linked sources."""
    with get_app_context():
        result = get_orchestrator(with_gateway=False).refresh(kind, canonical_id)
        if result is None:
            click.secho(f"Error: {kind} {canonical_id} not found", fg="red")
            sys.exit(1)
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))


@cli.command("enrich-artists")
@click.option("--limit", type=int, default=None, help="Limit number of artists")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def enrich_artists(limit, output_json):
    """Enrich canonical artists that have no MusicBrainz link yet."""
    with get_app_context():
        report = get_orchestrator().enrich_artists(limit=limit)
        print_report(report, output_json, verbose=True)


@cli.command("reject-past")
def reject_past():
    """Reject pending, unpublished events dated before today."""
    with get_app_context():
        report = get_orchestrator(with_gateway=False).reject_past_events()
        rejected = report.items[0].value if report.items and report.items[0].ok else []
        click.echo(f"Rejected {len(rejected)} past event(s)")


@cli.command("link")
@click.argument("kind", type=click.Choice(KINDS))
@click.argument("canonical_id")
@click.argument("scraped_id", type=int)
def link(kind, canonical_id, scraped_id):
    """Link SCRAPED_ID to CANONICAL_ID at full confidence and refresh."""
    with get_app_context():
        report = get_orchestrator(with_gateway=False).link_manually(kind, canonical_id, scraped_id)
        item = report.items[0]
        if not item.ok:
            click.secho(f"Error: {item.error}", fg="red")
            sys.exit(1)
        click.echo(json.dumps(item.to_dict(), indent=2, default=str))


@cli.command("apply-changes")
@click.argument("kind", type=click.Choice(KINDS))
@click.argument("scraped_id", type=int)
@click.option("--field", "fields", multiple=True, help="Apply only this scraped field (repeatable)")
@click.option("--by", "performed_by", default=None, help="Who applied the changes")
def apply_changes(kind, scraped_id, fields, performed_by):
    """Apply pending changes of a scraped record to its canonical entity."""
    from convergence.errors import ValidationError

    with get_app_context():
        try:
            outcome = get_orchestrator(with_gateway=False).apply_changes(
                kind, scraped_id, list(fields) or None, performed_by,
            )
        except ValidationError as e:
            click.secho(f"Error: {e}", fg="red")
            sys.exit(1)
        click.echo(json.dumps(outcome.to_dict(), indent=2))


@cli.command("dismiss-changes")
@click.argument("kind", type=click.Choice(KINDS))
@click.argument("scraped_id", type=int)
def dismiss_changes(kind, scraped_id):
    """Dismiss pending changes of a scraped record."""
    from convergence.errors import ValidationError

    with get_app_context():
        try:
            get_orchestrator(with_gateway=False).dismiss_changes(kind, scraped_id)
        except ValidationError as e:
            click.secho(f"Error: {e}", fg="red")
            sys.exit(1)
        click.echo(f"Dismissed changes of {kind} scraped record {scraped_id}")


if __name__ == "__main__":
    cli()
