from fastapi import APIRouter, Depends, HTTPException
from api.dependencies import get_job_service, get_current_user
from api.models import JobResponse
from api.services.job_service import JobService, JobServiceException
from db.models.user import User

router = APIRouter()


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(
    job_id: int,
    current_user: User = Depends(get_current_user),
    job_service: JobService = Depends(get_job_service),
):
    try:
        return job_service.get_job(job_id, current_user.wallet_address)
    except JobServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
def retry_job(
    job_id: int,
    current_user: User = Depends(get_current_user),
    job_service: JobService = Depends(get_job_service),
):
    try:
        return job_service.retry(job_id, current_user.wallet_address)
    except JobServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
