from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backoffice.api.auth import get_current_user
from backoffice.database import get_db
from backoffice.models.user import User
from backoffice.schemas.job import JobCreate, JobOut
from backoffice.services import job_service

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post("", response_model=JobOut, status_code=201)
def enqueue_job(data: JobCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return job_service.enqueue_job(
        db, data.job_type, data.payload,
        resource_type=data.resource_type, resource_id=data.resource_id, created_by=user.id,
    )


@router.get("", response_model=list[JobOut])
def list_jobs(
    status: str | None = None,
    job_type: str | None = None,
    resource_id: str | None = None,
    skip: int = 0,
    limit: int = 50,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return job_service.list_jobs(db, status=status, job_type=job_type, resource_id=resource_id, skip=skip,
                                 limit=limit)


@router.get("/{job_id}", response_model=JobOut)
def get_job(job_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return job_service.get_job_or_404(db, job_id)


@router.post("/{job_id}/run", response_model=JobOut)
def run_job(job_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Run a pending job in-process when no worker picked it up."""
    return job_service.run_job(db, job_id)


@router.post("/{job_id}/cancel", response_model=JobOut)
def cancel_job(job_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return job_service.cancel_job(db, job_id)
