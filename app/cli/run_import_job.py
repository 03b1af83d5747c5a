# app/cli/run_import_job.py
import asyncio
import logging
import click
from datetime import datetime

from app.core.logging_config import configure_logging
from app.database import async_session
from app.services.import_jobs import ImportJobRunner

logger = logging.getLogger(__name__)


class ConsoleProgress:
    """Prints each progress event instead of pushing it to websockets"""

    async def publish(self, company_id, message):
        click.echo(f"[{message['status']}] {message['message']}")


@click.command()
@click.option('--company-id', required=True, help='Tenant whose store is imported')
@click.option('--batch-size', type=int, default=None, help='Orders per page (default IMPORT_BATCH_SIZE)')
@click.option('--resume', 'resume_job_id', default=None, help='Resume an existing paused/failed job instead of creating one')
def run_import_job(company_id, batch_size, resume_job_id):
    """Run a batch import of all remote orders to completion in this process"""
    configure_logging()
    start_time = datetime.now()
    logger.info(f"Starting order import for {company_id} at {start_time}")

    try:
        job = asyncio.run(_run(company_id, batch_size, resume_job_id))
    except Exception as e:
        logger.exception("Error during order import")
        click.echo(f"Error during import: {str(e)}")
        raise SystemExit(1)

    progress = job.progress or {}
    click.echo(f"\nImport job {job.id} finished with status {job.status}")
    click.echo(f"Processed: {progress.get('processedCount')} of {progress.get('grandTotal')}")
    click.echo(f"Imported: {progress.get('imported')}  Updated: {progress.get('updated')}  "
               f"Skipped: {progress.get('skipped')}  Failed: {progress.get('failed')}")
    if job.error_message:
        click.echo(f"Error: {job.error_message}")
    logger.info(f"Completed order import in {datetime.now() - start_time}")


async def _run(company_id, batch_size, resume_job_id):
    runner = ImportJobRunner(async_session, publisher=ConsoleProgress(), batch_size=batch_size)
    if resume_job_id:
        job = await runner.resume_job(company_id, resume_job_id, spawn=False)
    else:
        job = await runner.create_job(company_id, {"batch_size": runner.batch_size})
        job = await runner.start_job(company_id, job.id, spawn=False)
    return await runner.run_job(job.id)


if __name__ == "__main__":
    run_import_job()
