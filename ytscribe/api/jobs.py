from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ytscribe.api.deps import get_services
from ytscribe.services.jobs import JOB_STATUSES, JOB_TYPES
from ytscribe.services.registry import ServiceRegistry

router = APIRouter(prefix="/jobs", tags=["jobs"])


class JobGetResponse(BaseModel):
    ok: bool
    job: dict


class JobResultsResponse(BaseModel):
    ok: bool
    job_id: str
    count: int
    results: list[dict]


class JobAbortResponse(BaseModel):
    ok: bool
    job_id: str
    aborted: bool


class DeleteResponse(BaseModel):
    ok: bool
    deleted: int


@router.get("")
async def list_jobs(
    status: str | None = Query(default=None),
    type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    services: ServiceRegistry = Depends(get_services),
):
    if status and status not in JOB_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    if type and type not in JOB_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown job type: {type}")

    if status and type:
        jobs = services.jobs.list_by_type_and_status(type, status)[:limit]
    elif status:
        jobs = services.jobs.list_by_status(status)[:limit]
    elif type:
        jobs = services.jobs.list_by_type(type, limit)
    else:
        jobs = services.jobs.list_recent(limit)

    return {"ok": True, "count": len(jobs), "jobs": [j.to_dict() for j in jobs]}


@router.get("/summary")
async def job_summary(services: ServiceRegistry = Depends(get_services)):
    return {"ok": True, "summary": services.get_job_summary().to_dict()}


@router.delete("", response_model=DeleteResponse)
async def delete_old_jobs(
    older_than_days: float = Query(..., gt=0),
    services: ServiceRegistry = Depends(get_services),
) -> DeleteResponse:
    return DeleteResponse(ok=True, deleted=services.delete_old_jobs(older_than_days))


@router.get("/{job_id}", response_model=JobGetResponse)
async def get_job(job_id: str, services: ServiceRegistry = Depends(get_services)) -> JobGetResponse:
    job = services.get_job(job_id)
    return JobGetResponse(ok=True, job=job.to_dict())


@router.get("/{job_id}/results", response_model=JobResultsResponse)
async def get_job_results(job_id: str, services: ServiceRegistry = Depends(get_services)) -> JobResultsResponse:
    results = services.get_job_results(job_id)
    return JobResultsResponse(ok=True, job_id=job_id, count=len(results), results=[r.to_dict() for r in results])


@router.post("/{job_id}/abort", response_model=JobAbortResponse)
async def abort_job(job_id: str, services: ServiceRegistry = Depends(get_services)) -> JobAbortResponse:
    services.get_job(job_id)
    aborted = services.orchestrator.abort(job_id)
    return JobAbortResponse(ok=True, job_id=job_id, aborted=aborted)


@router.delete("/{job_id}", response_model=DeleteResponse)
async def delete_job(job_id: str, services: ServiceRegistry = Depends(get_services)) -> DeleteResponse:
    services.delete_job(job_id)
    return DeleteResponse(ok=True, deleted=1)
