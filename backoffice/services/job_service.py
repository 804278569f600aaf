"""Job records polled by the background queue.

The queue is optional: ``run_job`` executes the same handler inline, so
PDF and email work still happens when no worker is running.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import update
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models.job import Job, JobStatus, JobType

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)

# job_type -> callable(payload) -> result, registered by the PDF renderer and email sender
_handlers: dict[str, Callable[[dict], dict | None]] = {}


def register_handler(job_type: JobType | str, handler: Callable[[dict], dict | None]) -> None:
    _handlers[JobType(job_type).value] = handler


def get_handler(job_type: JobType | str) -> Callable[[dict], dict | None] | None:
    return _handlers.get(JobType(job_type).value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def job_payload(job: Job) -> dict:
    return json.loads(job.payload) if job.payload else {}


def job_result(job: Job) -> dict:
    return json.loads(job.result) if job.result else {}


def enqueue_job(
    db: Session,
    job_type: JobType | str,
    payload: dict | None = None,
    *,
    resource_type: str = "",
    resource_id: str = "",
    created_by: str = "",
    max_retries: int | None = None,
) -> Job:
    """Create a job, or return the one already queued for the same resource."""
    job_type = JobType(job_type).value
    if resource_id:
        existing = (
            db.query(Job)
            .filter(
                Job.job_type == job_type,
                Job.resource_type == resource_type,
                Job.resource_id == resource_id,
                Job.status.in_(ACTIVE_STATUSES),
            )
            .first()
        )
        if existing:
            logger.debug("Job %s already queued for %s %s", existing.id, resource_type, resource_id)
            return existing

    job = Job(
        job_type=job_type,
        status=JobStatus.PENDING.value,
        payload=json.dumps(payload or {}, default=str),
        resource_type=resource_type,
        resource_id=resource_id,
        created_by=created_by,
        max_retries=settings.JOB_MAX_RETRIES if max_retries is None else max_retries,
        created_at=_utcnow(),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("Queued %s job %s for %s %s", job_type, job.id, resource_type or "-", resource_id or "-")
    return job


def get_job(db: Session, job_id: str) -> Job | None:
    return db.query(Job).filter(Job.id == job_id).first()


def get_job_or_404(db: Session, job_id: str) -> Job:
    job = get_job(db, job_id)
    if not job:
        raise NotFoundError(f"Job {job_id} not found")
    return job


def list_jobs(
    db: Session,
    status: str | None = None,
    job_type: str | None = None,
    resource_id: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[Job]:
    q = db.query(Job)
    if status:
        q = q.filter(Job.status == status)
    if job_type:
        q = q.filter(Job.job_type == job_type)
    if resource_id:
        q = q.filter(Job.resource_id == resource_id)
    return q.order_by(Job.created_at.desc()).offset(skip).limit(limit).all()


def run_job(db: Session, job_id: str, handler: Callable[[dict], dict | None] | None = None) -> Job:
    """Run one attempt of a job in-process, with the registered handler by default.

    A failing handler puts the job back to pending until ``max_retries``
    attempts have failed, then marks it failed.
    """
    job = get_job_or_404(db, job_id)
    if job.status != JobStatus.PENDING.value:
        raise ConflictError(f"Job {job.id} is {job.status} and cannot be run")
    handler = handler or get_handler(job.job_type)
    if handler is None:
        raise ValidationError(f"No handler registered for {job.job_type} jobs")

    # Claimed only if still pending, so a job never runs twice at once
    claimed = db.execute(
        update(Job)
        .where(Job.id == job.id, Job.status == JobStatus.PENDING.value)
        .values(status=JobStatus.PROCESSING.value, started_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        raise ConflictError(f"Job {job.id} was claimed by another runner")
    db.commit()
    db.refresh(job)

    try:
        result = handler(job_payload(job))
    except Exception as exc:
        job.retries += 1
        job.error = str(exc)
        if job.retries >= job.max_retries:
            job.status = JobStatus.FAILED.value
            job.completed_at = _utcnow()
            logger.exception("Job %s (%s) failed after %d attempts", job.id, job.job_type, job.retries)
        else:
            job.status = JobStatus.PENDING.value
            logger.warning("Job %s (%s) attempt %d failed: %s", job.id, job.job_type, job.retries, exc)
    else:
        job.status = JobStatus.COMPLETED.value
        job.result = json.dumps(result or {}, default=str)
        job.error = ""
        job.completed_at = _utcnow()
        logger.info("Job %s (%s) completed", job.id, job.job_type)
    db.commit()
    db.refresh(job)
    return job


def cancel_job(db: Session, job_id: str) -> Job:
    job = get_job_or_404(db, job_id)
    if job.status != JobStatus.PENDING.value:
        raise ConflictError(f"Only pending jobs can be cancelled (job is {job.status})")
    job.status = JobStatus.CANCELLED.value
    job.completed_at = _utcnow()
    db.commit()
    db.refresh(job)
    return job
