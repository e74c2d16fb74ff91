"""
CLI interface for Contact Congress.

Commands:
    perform-fills  — Run pending fill jobs (captcha recipients first)
    submit         — Submit a message to a CWC office code
    enqueue        — Queue a fill job for a recipient
    jobs           — List pending fill jobs
    stats          — Show delivery statistics and campaign tags
    add-recipient  — Register a recipient
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

import click

from contact_congress import __version__


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=__version__, prog_name="contact-congress")
@click.option("--config", "config_path", default=None, help="Path to a settings JSON file.")
@click.option("--db", default=None, help="Database URL (overrides the settings file).")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db: Optional[str], verbose: bool) -> None:
    """Contact Congress — deliver constituent messages via CWC or web forms."""
    from contact_congress.dispatch.config import Settings, load_settings

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = load_settings(config_path) if config_path else Settings()
    if db:
        settings.db_url = db
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# ---------------------------------------------------------------------------
# perform-fills
# ---------------------------------------------------------------------------

@cli.command(name="perform-fills")
@click.option("--regex", "-r", default=None, help="Only run jobs whose recipient bioguide matches.")
@click.option("--override", "-o", "overrides", multiple=True,
              help="Field override KEY=VALUE applied to every job (repeatable).")
@click.option("--workers", "-w", type=int, default=None, help="Worker threads (default from settings).")
@click.option("--queue", "-q", default=None, help="Job queue to run (default from settings).")
@click.option("--limit", type=int, default=None, help="Run at most this many jobs.")
@click.pass_context
def perform_fills(
    ctx: click.Context,
    regex: Optional[str],
    overrides: tuple[str, ...],
    workers: Optional[int],
    queue: Optional[str],
    limit: Optional[int],
) -> None:
    """Run pending fill jobs, deleting the ones that succeed."""
    from contact_congress.dispatch.executors import make_executor
    from contact_congress.dispatch.runner import PerformFills
    from contact_congress.filers.form_filler import FormFiller, HttpFormDriver
    from contact_congress.tracker.directory import RecipientDirectory
    from contact_congress.tracker.tracker import TrackerDB

    settings = ctx.obj["settings"]
    db = TrackerDB(settings.db_url)
    jobs = db.list_jobs(queue=queue or settings.queue, limit=limit)
    if not jobs:
        click.echo("No pending jobs.")
        return

    driver = HttpFormDriver(timeout=settings.form_timeout)
    cwc_offices = settings.cwc.supported_offices if settings.cwc_enabled else None

    with make_executor(workers or settings.max_workers) as executor, \
            _cwc_delivery(settings, db) as cwc:
        task = PerformFills(
            jobs,
            db=db,
            directory=RecipientDirectory(db),
            cwc=cwc,
            regex=regex,
            overrides=_parse_overrides(overrides),
            form_filler_factory=lambda recipient, fields, tag: FormFiller(
                recipient, fields, tag, db, driver=driver
            ),
            executor=executor,
            cwc_offices=cwc_offices,
        )
        report = task.execute()

    click.echo(report.summary())


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("office_code")
@click.option("--payload", "-p", required=True,
              help='JSON payload {"fields": {...}, "organization"?, "campaign_tag"?} or @file.')
@click.pass_context
def submit(ctx: click.Context, office_code: str, payload: str) -> None:
    """Submit a message to the office with the given CWC office code."""
    from contact_congress.intake import accept_submission
    from contact_congress.tracker.directory import RecipientDirectory
    from contact_congress.tracker.tracker import TrackerDB

    settings = ctx.obj["settings"]
    db = TrackerDB(settings.db_url)
    with _cwc_delivery(settings, db) as cwc:
        response = accept_submission(
            office_code,
            _load_payload(payload),
            directory=RecipientDirectory(db),
            db=db,
            cwc=cwc,
            queue=settings.queue,
        )
    click.echo(json.dumps(response, indent=2))
    if response["status"] != "success":
        ctx.exit(1)


# ---------------------------------------------------------------------------
# enqueue
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("bioguide_id")
@click.option("--payload", "-p", required=True,
              help='JSON payload {"fields": {...}, "campaign_tag"?} or @file.')
@click.pass_context
def enqueue(ctx: click.Context, bioguide_id: str, payload: str) -> None:
    """Queue a fill job for a recipient."""
    from contact_congress.errors import MissingFields
    from contact_congress.intake import parse_fields
    from contact_congress.tracker.tracker import TrackerDB

    settings = ctx.obj["settings"]
    db = TrackerDB(settings.db_url)
    if db.get_recipient(bioguide_id) is None:
        raise click.ClickException(f"Unknown recipient: {bioguide_id}")

    data = _load_payload(payload)
    try:
        fields = parse_fields(data)
    except MissingFields as e:
        raise click.ClickException(str(e))

    job = db.enqueue_fill(
        bioguide_id,
        fields,
        campaign_tag=data.get("campaign_tag"),
        queue=settings.queue,
        organization=data.get("organization"),
    )
    click.echo(f"Queued job #{job.id} for {bioguide_id}")


# ---------------------------------------------------------------------------
# jobs
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--queue", "-q", default=None, help="Only list jobs in this queue.")
@click.pass_context
def jobs(ctx: click.Context, queue: Optional[str]) -> None:
    """List pending fill jobs."""
    from contact_congress.tracker.tracker import TrackerDB

    db = TrackerDB(ctx.obj["settings"].db_url)
    pending = db.list_jobs(queue=queue)
    if not pending:
        click.echo("No pending jobs.")
        return

    click.echo(f"Pending jobs ({len(pending)}):")
    for job in pending:
        click.echo(
            f"  #{job.id:4d} | {job.recipient_id:10s} | {job.queue:18s} | "
            f"tag: {job.campaign_tag or '-'}"
        )


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------

@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show delivery statistics and campaign tags."""
    from contact_congress.tracker.tracker import TrackerDB

    db = TrackerDB(ctx.obj["settings"].db_url)
    stats_data = db.get_stats()

    click.echo("=== Contact Congress Statistics ===")
    click.echo(f"Recipients:    {stats_data['recipients']}")
    click.echo(f"Pending jobs:  {stats_data['pending_jobs']}")
    click.echo(f"Campaign tags: {stats_data['campaign_tags']}")
    click.echo("\nFill statuses:")
    for status, count in stats_data.get("by_status", {}).items():
        click.echo(f"  {status:10s}: {count}")

    tags = db.list_campaign_tags()
    if tags:
        click.echo("\nCampaign tags:")
        for tag in tags:
            click.echo(f"  {tag.name}")


# ---------------------------------------------------------------------------
# add-recipient
# ---------------------------------------------------------------------------

@cli.command(name="add-recipient")
@click.argument("bioguide_id")
@click.option("--name", default="", help="Display name.")
@click.option("--office-code", default=None, help="CWC member office code (e.g. HCA01).")
@click.option("--form-url", default=None, help="Contact form URL.")
@click.option("--steps", default=None, help="Form steps as a JSON list, or @file.")
@click.option("--success-text", default=None, help="Text that appears on a successful submission.")
@click.pass_context
def add_recipient(
    ctx: click.Context,
    bioguide_id: str,
    name: str,
    office_code: Optional[str],
    form_url: Optional[str],
    steps: Optional[str],
    success_text: Optional[str],
) -> None:
    """Register a recipient."""
    from contact_congress.tracker.tracker import TrackerDB

    form_steps = _load_json(steps) if steps else []
    if not isinstance(form_steps, list):
        raise click.BadParameter("Form steps must be a JSON list.", param_hint="--steps")

    db = TrackerDB(ctx.obj["settings"].db_url)
    recipient = db.add_recipient(
        bioguide_id,
        name=name,
        cwc_office_code=office_code,
        form_url=form_url,
        form_steps=form_steps,
        success_text=success_text,
    )
    click.echo(f"Added recipient {recipient.bioguide_id}")


# ---------------------------------------------------------------------------
# Utility
# ---------------------------------------------------------------------------

@contextmanager
def _cwc_delivery(settings, db):
    """Yield a CwcDelivery for the configured endpoint, or None when CWC is not set up."""
    if not settings.cwc_enabled:
        yield None
        return
    from contact_congress.cwc.client import CwcClient
    from contact_congress.cwc.delivery import CwcDelivery

    with CwcClient(settings.cwc.client_config()) as client:
        yield CwcDelivery(client, settings.cwc.agent(), db)


def _parse_overrides(values: tuple[str, ...]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--override")
        overrides[key] = value
    return overrides


def _load_json(value: str) -> Any:
    text = Path(value[1:]).read_text(encoding="utf-8") if value.startswith("@") else value
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}")


def _load_payload(value: str) -> dict[str, Any]:
    data = _load_json(value)
    if not isinstance(data, dict):
        raise click.BadParameter("Payload must be a JSON object.", param_hint="--payload")
    return data


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
