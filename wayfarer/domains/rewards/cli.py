"""Operator commands for the rewards domain.

Usage:
    flask rewards show-claim <fingerprint>
    flask rewards archive-events --batch-size 100
"""

from __future__ import annotations

import click
from flask import Flask
from flask.cli import AppGroup

from wayfarer.domains.rewards.services import BonusClaimService, short_fingerprint

rewards_cli = AppGroup("rewards", help="Startup bonus maintenance commands.")


@rewards_cli.command("show-claim")
@click.argument("fingerprint")
def show_claim_command(fingerprint: str):
    """Print the claim bound to a device fingerprint, if any."""
    from flask import current_app

    record = BonusClaimService.from_config(current_app.config).get_claim(fingerprint)
    if record is None:
        click.echo("No claim recorded for this device.")
        return
    click.echo(
        f"Device {short_fingerprint(record.fingerprint)} claimed by account "
        f"{record.claiming_account_id}: {record.bonus_amount} credits at {record.claimed_at.isoformat()}"
    )


@rewards_cli.command("archive-events")
@click.option("--batch-size", type=int, default=100, show_default=True, help="Messages per transaction")
@click.option("--max-batches", type=int, default=None, help="Stop after this many batches")
def archive_events_command(batch_size: int, max_batches):
    """Move pending outbox events (claims, registrations) into the event log."""
    from wayfarer.wayfarer_platform.outbox import archive_all

    archived = archive_all(batch_size=batch_size, max_batches=max_batches)
    click.echo(f"Archived {archived} event(s).")


def register_commands(app: Flask) -> None:
    app.cli.add_command(rewards_cli)
