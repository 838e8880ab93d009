"""Admin API router: request and batch listings plus queue statistics."""

from fastapi import APIRouter, Depends, Query

from docbatch.api.deps import get_job_store, get_request_store
from docbatch.schemas.batch import BatchJobPage, BatchJobSummary, QueueStats
from docbatch.schemas.request import RequestDetail, RequestPage, RequestSummary
from docbatch.services.extraction import NotFoundError
from docbatch.services.stores import BatchJobStore, RequestStore

router = APIRouter()


@router.get("/requests")
def list_requests(
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=500),
    requests: RequestStore = Depends(get_request_store),
) -> RequestPage:
    rows = requests.list_all(skip, take)
    return RequestPage(
        data=[
            RequestSummary(
                id=r.id,
                document_name=r.document_name,
                processing_mode=r.processing_mode,
                status=r.status,
                created_at=r.created_at,
                completed_at=r.completed_at,
                error_message=r.error_message,
                has_result=bool(r.result),
            )
            for r in rows
        ],
        total=requests.count(),
        skip=skip,
        take=take,
    )


@router.get("/requests/{request_id}")
def get_request(
    request_id: str,
    requests: RequestStore = Depends(get_request_store),
) -> RequestDetail:
    request = requests.get(request_id)
    if request is None:
        raise NotFoundError(f"Request {request_id} not found")
    return RequestDetail.model_validate(request)


@router.get("/batches")
def list_batches(
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=500),
    jobs: BatchJobStore = Depends(get_job_store),
) -> BatchJobPage:
    return BatchJobPage(
        data=[BatchJobSummary.model_validate(j) for j in jobs.list_all(skip, take)],
        total=jobs.count(),
        skip=skip,
        take=take,
    )


@router.get("/stats")
def queue_stats(
    requests: RequestStore = Depends(get_request_store),
    jobs: BatchJobStore = Depends(get_job_store),
) -> QueueStats:
    return QueueStats(
        queued_requests=requests.count_queued(),
        total_requests=requests.count(),
        total_batches=jobs.count(),
    )
