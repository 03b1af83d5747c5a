# app/cli/poll_tenant.py
import asyncio
import logging
import click

from app.core.logging_config import configure_logging
from app.database import async_session
from app.services.sync_scheduler import PollingSyncScheduler

logger = logging.getLogger(__name__)


@click.command()
@click.option('--company-id', required=True, help='Tenant to poll')
@click.option('--respect-interval', is_flag=True, help='Skip the pass when the tenant is not due yet')
def poll_tenant(company_id, respect_interval):
    """Run one polling pass for a tenant immediately"""
    configure_logging()
    scheduler = PollingSyncScheduler(async_session)
    try:
        result = asyncio.run(scheduler.run_tenant(company_id, force=not respect_interval, triggered_by="cli"))
    except Exception as e:
        logger.exception("Error during polling pass")
        click.echo(f"Error: {str(e)}")
        raise SystemExit(1)

    click.echo(f"Status: {result['status']}")
    for key in ("imported", "updated", "skipped", "failed", "pages"):
        if key in result:
            click.echo(f"{key.capitalize()}: {result[key]}")
    if result.get("error"):
        click.echo(f"Error: {result['error']}")


if __name__ == "__main__":
    poll_tenant()
