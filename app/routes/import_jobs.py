import logging

from fastapi import APIRouter, Depends

from app.core.exceptions import BaseServiceError
from app.core.security import get_company_id
from app.core.utils import isoformat_utc
from app.routes.responses import ok, service_error_response
from app.schemas.import_job import ImportJobCreate, ImportJobRead
from app.services.registry import ServiceRegistry, get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/import-jobs", tags=["import-jobs"])


def _job_data(job) -> dict:
    return ImportJobRead.model_validate(job).model_dump(by_alias=True, mode="json")


@router.post("")
async def create_import_job(
    request: ImportJobCreate,
    company_id: str = Depends(get_company_id),
    registry: ServiceRegistry = Depends(get_registry),
):
    """Create a batch import of all historical orders; it starts only when asked to."""
    options = {"batch_size": request.batch_size or registry.import_jobs.batch_size}
    if request.order_status:
        options["order_status"] = request.order_status
    if request.after:
        options["after"] = isoformat_utc(request.after)
    try:
        job = await registry.import_jobs.create_job(company_id, options)
        if request.auto_start:
            job = await registry.import_jobs.start_job(company_id, job.id)
    except BaseServiceError as e:
        return service_error_response(e)
    return ok(f"Import job {job.id} created", data=_job_data(job))


@router.get("")
async def list_import_jobs(
    company_id: str = Depends(get_company_id),
    registry: ServiceRegistry = Depends(get_registry),
):
    jobs = await registry.import_jobs.list_jobs(company_id)
    return ok(f"{len(jobs)} import jobs", data=[_job_data(job) for job in jobs])


@router.get("/{job_id}")
async def get_import_job(
    job_id: str,
    company_id: str = Depends(get_company_id),
    registry: ServiceRegistry = Depends(get_registry),
):
    try:
        job = await registry.import_jobs.get_job(company_id, job_id)
    except BaseServiceError as e:
        return service_error_response(e)
    return ok(f"Import job {job.status}", data=_job_data(job))


async def _transition(action: str, job_id: str, company_id: str, registry: ServiceRegistry):
    runner = registry.import_jobs
    handlers = {
        "start": runner.start_job,
        "pause": runner.pause_job,
        "resume": runner.resume_job,
        "cancel": runner.cancel_job,
    }
    try:
        job = await handlers[action](company_id, job_id)
    except BaseServiceError as e:
        logger.warning(f"Import job {job_id}: {action} rejected: {e}")
        return service_error_response(e)
    return ok(f"Import job {job.status}", data=_job_data(job))


@router.post("/{job_id}/start")
async def start_import_job(job_id: str, company_id: str = Depends(get_company_id),
                           registry: ServiceRegistry = Depends(get_registry)):
    return await _transition("start", job_id, company_id, registry)


@router.post("/{job_id}/pause")
async def pause_import_job(job_id: str, company_id: str = Depends(get_company_id),
                           registry: ServiceRegistry = Depends(get_registry)):
    return await _transition("pause", job_id, company_id, registry)


@router.post("/{job_id}/resume")
async def resume_import_job(job_id: str, company_id: str = Depends(get_company_id),
                            registry: ServiceRegistry = Depends(get_registry)):
    return await _transition("resume", job_id, company_id, registry)


@router.post("/{job_id}/cancel")
async def cancel_import_job(job_id: str, company_id: str = Depends(get_company_id),
                            registry: ServiceRegistry = Depends(get_registry)):
    return await _transition("cancel", job_id, company_id, registry)
