"""
Discussion Routes

Read-only status view and manual reprocessing for operators.
"""

from fastapi import APIRouter, Depends, HTTPException
import logging

from threadrouter.models.api_responses import DiscussionDetailResponse, ReprocessResponse
from threadrouter.models.records import DiscussionStatus, Job, JobStage, JobStatus
from threadrouter.services.runtime import Runtime, get_runtime

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{discussion_id}", response_model=DiscussionDetailResponse)
async def get_discussion(discussion_id: str, runtime: Runtime = Depends(get_runtime)):
    """Discussion with its jobs, newest first."""
    discussion = await runtime.store.get_discussion(discussion_id)
    if discussion is None:
        raise HTTPException(status_code=404, detail="Discussion not found")

    jobs = await runtime.store.list_jobs(discussion_id)
    return DiscussionDetailResponse(discussion=discussion, jobs=jobs)


@router.post("/{discussion_id}/reprocess", response_model=ReprocessResponse, status_code=202)
async def reprocess_discussion(discussion_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Start a fresh job for a discussion from thread_building.

    Responses:
    - 202: new job created and started
    - 404: discussion not found
    - 409: another job for the discussion is still pending, processing or retrying
    """
    discussion = await runtime.store.get_discussion(discussion_id)
    if discussion is None:
        raise HTTPException(status_code=404, detail="Discussion not found")

    active = await runtime.store.get_active_job(discussion_id)
    if active is not None:
        raise HTTPException(
            status_code=409,
            detail=f"Job {active.id} is already {active.status.value}",
        )

    job = await runtime.store.create_job(
        Job(
            discussion_id=discussion_id,
            stage=JobStage.THREAD_BUILDING,
            status=JobStatus.PENDING,
            max_attempts=runtime.settings.job_max_attempts,
        )
    )
    await runtime.store.update_discussion(
        discussion_id, {"status": DiscussionStatus.PENDING, "error": None}
    )

    runtime.runner.spawn(job.id)
    logger.info(f"Reprocessing discussion {discussion_id} with job {job.id}")
    return ReprocessResponse(discussion_id=discussion_id, job_id=job.id, status=job.status.value)
