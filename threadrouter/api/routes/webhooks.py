"""
Webhook Ingress Routes

POST /api/webhooks/{platform}

Verifies the request, records the discussion and its job, hands the job to
the background runner and acknowledges immediately. Processing never
happens on the request path.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
import json
import logging

from threadrouter.integrations.base import (
    AdapterError,
    IgnoredEvent,
    SignatureVerificationError,
)
from threadrouter.models.api_responses import WebhookAck
from threadrouter.models.records import Discussion, Job, JobStage, JobStatus
from threadrouter.services.flows import FlowConfigurationError, load_flow_by_workspace
from threadrouter.services.runtime import Runtime, get_runtime

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{platform}", response_model=WebhookAck, response_model_exclude_none=True)
async def receive_webhook(
    platform: str,
    request: Request,
    runtime: Runtime = Depends(get_runtime),
):
    """
    Ingest a webhook event from a source platform.

    Responses:
    - 200: accepted (discussion_id, job_id), ignored, or handshake answered
    - 400: malformed payload
    - 401: invalid signature or stale timestamp
    - 404: unknown platform or no flow configured for the workspace
    - 503: event details could not be fetched (transient)
    """
    if not runtime.registry.has_source(platform):
        raise HTTPException(status_code=404, detail=f"Unknown platform: {platform}")

    source = runtime.registry.get_source(platform)
    body = await request.body()

    try:
        source.verify_request(request.headers, body, runtime.secret_for(platform))
    except SignatureVerificationError as e:
        logger.warning(f"Rejected {platform} webhook: {e}")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    challenge = source.challenge_response(payload)
    if challenge is not None:
        logger.info(f"Answered {platform} URL verification challenge")
        return JSONResponse(challenge)

    if source.is_retry_delivery(request.headers):
        logger.info(f"Acknowledged {platform} retry delivery without re-ingesting")
        return WebhookAck(ignored="retry delivery")

    try:
        parsed = source.parse_incoming(payload)
    except IgnoredEvent as e:
        logger.debug(f"Ignored {platform} event: {e.reason}")
        return WebhookAck(ignored=e.reason)
    except AdapterError as e:
        logger.warning(f"Malformed {platform} payload: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    try:
        loaded = await load_flow_by_workspace(runtime.store, platform, parsed.workspace_id)
    except FlowConfigurationError as e:
        logger.error(f"Flow configuration error for {platform}/{parsed.workspace_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if loaded is None:
        raise HTTPException(
            status_code=404,
            detail=f"No flow configured for {platform} workspace {parsed.workspace_id}",
        )

    try:
        parsed = await source.complete_incoming(parsed, loaded.input)
    except IgnoredEvent as e:
        logger.debug(f"Ignored {platform} event: {e.reason}")
        return WebhookAck(ignored=e.reason)
    except AdapterError as e:
        logger.warning(f"Could not complete {platform} event: {e}")
        # Platforms redeliver on 503
        raise HTTPException(status_code=503 if e.retryable else 400, detail=str(e))

    discussion = await runtime.store.create_discussion(
        Discussion(
            flow_id=loaded.flow.id,
            input_id=loaded.input.id,
            platform=platform,
            workspace_id=parsed.workspace_id,
            source_thread_id=parsed.source_thread_id,
            source_url=parsed.source_url,
            title=parsed.title,
            content=parsed.content,
            author_handle=parsed.author_handle,
            participants=parsed.participants,
            raw_payload=payload,
            metadata=parsed.metadata,
        )
    )
    job = await runtime.store.create_job(
        Job(
            discussion_id=discussion.id,
            stage=JobStage.JOB_CREATION,
            status=JobStatus.PENDING,
            max_attempts=runtime.settings.job_max_attempts,
        )
    )

    runtime.runner.spawn(job.id)
    logger.info(
        f"Accepted {platform} event: discussion {discussion.id}, job {job.id} "
        f"(flow {loaded.flow.name})"
    )
    return WebhookAck(discussion_id=discussion.id, job_id=job.id)
