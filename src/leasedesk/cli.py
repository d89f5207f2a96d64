#!/usr/bin/env python
"""
CLI management commands for the LeaseDesk billing service.
"""

import asyncio
import json

import click

from leasedesk.billing.autopay.runner import AutopayBatchRunner, BillingPeriod
from leasedesk.billing.payments.gateway import build_gateway
from leasedesk.db import create_all_tables_async, dispose_engine
from leasedesk.logging import setup_logging


@click.group()
def cli() -> None:
    """LeaseDesk billing CLI."""
    setup_logging()


@cli.command()
def init_db() -> None:
    """Create the billing tables (development databases; use alembic elsewhere)."""

    async def _init() -> None:
        try:
            await create_all_tables_async()
        finally:
            await dispose_engine()

    asyncio.run(_init())
    click.echo("Database tables created")


@cli.command()
@click.option("--period", default=None, help="Billing month as YYYY-MM (defaults to current)")
def run_autopay(period: str | None) -> None:
    """Charge every active autopay enrollment for a billing month."""
    try:
        billing_period = BillingPeriod.parse(period) if period else None
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--period") from e

    async def _run() -> dict:
        try:
            summary = await AutopayBatchRunner(build_gateway()).run(billing_period)
        finally:
            await dispose_engine()
        return summary.to_dict()

    result = asyncio.run(_run())
    click.echo(json.dumps(result, indent=2))
    if result["failed"]:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
