"""
Pipeline Processor

Drives one Job through the pipeline stages:

    ingestion -> job_creation -> thread_building -> ai_analysis
      -> task_delivery -> notification -> completion

Ingress performs ingestion and job_creation; run() drives the rest. Every
transition is persisted before the next stage starts. A failed stage is
retried with exponential backoff (status "retrying") until the job's
max_attempts is exhausted, then the job and its discussion are marked failed.
Non-retryable errors fail the job immediately.

Stage inputs are read back from the stored Discussion and Job, so a job
resumed or reprocessed at any stage sees the same data.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from threadrouter.ai_core.classification import TaskClassifier
from threadrouter.config import Settings, get_settings
from threadrouter.integrations.base import SinkAdapter, SinkContext
from threadrouter.integrations.registry import AdapterRegistry
from threadrouter.models.records import (
    DeliveryRecord,
    DeliveryStatus,
    Discussion,
    DiscussionStatus,
    Job,
    JobStage,
    JobStatus,
    LoadedFlow,
    Output,
    STAGE_ORDER,
    utcnow,
)
from threadrouter.models.tasks import AISummary, DetectedTask
from threadrouter.models.thread import DestinationUser
from threadrouter.services.flows import load_flow_for_discussion
from threadrouter.services.mention_resolver import MentionResolver
from threadrouter.services.retry import with_retry
from threadrouter.services.router import ConfidenceRouter
from threadrouter.services.store import Store
from threadrouter.services.throttle import CredentialThrottle, credential_fingerprint

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Raised by a stage; retryable decides whether the stage is retried."""

    def __init__(self, message: str, stage: JobStage, retryable: bool = True):
        super().__init__(message)
        self.stage = stage
        self.retryable = retryable


class StageFailed(Exception):
    """A stage gave up; carries the last error and the number of attempts made."""

    def __init__(self, error: Exception, attempts: int):
        super().__init__(str(error))
        self.error = error
        self.attempts = attempts


def next_stage(stage: JobStage) -> Optional[JobStage]:
    index = STAGE_ORDER.index(stage)
    return STAGE_ORDER[index + 1] if index + 1 < len(STAGE_ORDER) else None


def build_confirmation_message(deliveries: List[DeliveryRecord], total: int) -> str:
    """
    Reply posted to the source thread.

    One task gets a single line, several get a numbered list, and partial
    success states how many of the detected tasks were created.
    """
    if total == 0:
        return "✅ Discussion processed (no actionable tasks found)"

    ordered = sorted(deliveries, key=lambda d: d.task_index)
    delivered = [d for d in ordered if d.status == DeliveryStatus.DELIVERED]

    if total == 1 and len(delivered) == 1:
        d = delivered[0]
        return f"✅ Task created in {d.output_name or 'destination'}: {d.title}\n🔗 {d.external_url}"

    lines = []
    for i, d in enumerate(ordered, start=1):
        if d.status == DeliveryStatus.DELIVERED:
            lines.append(f"{i}. {d.title} ({d.output_name}): {d.external_url}")
        else:
            lines.append(f"{i}. {d.title}: ❌ not created")

    if len(delivered) == total:
        header = f"✅ Created {total} tasks:"
    else:
        header = f"⚠️ {len(delivered)} of {total} tasks created:"
    return header + "\n" + "\n".join(lines)


class Processor:
    """
    Runs jobs through the pipeline.

    Args:
        store: Record store
        registry: Source and sink adapters
        classifier: AI task classifier
        resolver: Mention resolver
        router: Confidence router
        throttle: Per-credential call throttle for sinks
        settings: Application settings (retry limits and delays)
        sleep: Sleep coroutine used for backoff (injectable for tests)
    """

    def __init__(
        self,
        store: Store,
        registry: AdapterRegistry,
        classifier: TaskClassifier,
        resolver: MentionResolver,
        router: Optional[ConfidenceRouter] = None,
        throttle: Optional[CredentialThrottle] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.registry = registry
        self.classifier = classifier
        self.resolver = resolver
        self.router = router or ConfidenceRouter(self.settings.routing_gap_threshold)
        self.throttle = throttle or CredentialThrottle()
        self.sleep = sleep

        self._handlers: Dict[JobStage, Callable[[Job, Discussion], Awaitable[None]]] = {
            JobStage.THREAD_BUILDING: self._build_thread,
            JobStage.AI_ANALYSIS: self._analyze,
            JobStage.TASK_DELIVERY: self._deliver_tasks,
            JobStage.NOTIFICATION: self._notify,
            JobStage.COMPLETION: self._complete,
        }

    async def run(self, job_id: str) -> Job:
        """
        Drive a job from its current stage to completion or failure.

        Returns:
            The job as last persisted
        """
        job = await self.store.get_job(job_id)
        if job is None:
            raise ValueError(f"Job not found: {job_id}")

        if not job.is_active:
            logger.info(f"Job {job_id} is {job.status.value}; nothing to run")
            return job

        logger.info(f"Running job {job_id} from stage {job.stage.value}")
        job = await self.store.persist_job_transition(
            job_id,
            {"status": JobStatus.PROCESSING, "started_at": job.started_at or utcnow()},
        )

        # Ingress already did the first two stages
        while job.stage in (JobStage.INGESTION, JobStage.JOB_CREATION):
            job = await self.store.persist_job_transition(
                job_id, {"stage": next_stage(job.stage), "attempts": 0}
            )

        while job.status == JobStatus.PROCESSING:
            stage = job.stage
            try:
                await self._run_stage(job)
            except StageFailed as failure:
                return await self._fail(job_id, stage, failure.error, failure.attempts)

            following = next_stage(stage)
            if following is None:
                return await self.store.get_job(job_id)

            job = await self.store.persist_job_transition(
                job_id,
                {"stage": following, "status": JobStatus.PROCESSING, "attempts": 0, "error": None},
            )

        return job

    async def _run_stage(self, job: Job) -> None:
        stage = job.stage
        handler = self._handlers[stage]
        attempts = 0

        async def attempt() -> None:
            nonlocal attempts
            attempts += 1
            current_job = await self.store.get_job(job.id)
            discussion = await self.store.get_discussion(current_job.discussion_id)
            if discussion is None:
                raise ProcessingError(
                    f"Discussion {current_job.discussion_id} not found", stage, retryable=False
                )
            await handler(current_job, discussion)

        async def on_retry(attempt_number: int, error: BaseException) -> None:
            logger.warning(
                f"Job {job.id} stage {stage.value} failed "
                f"(attempt {attempt_number}/{job.max_attempts}): {error}"
            )
            await self.store.persist_job_transition(
                job.id,
                {"status": JobStatus.RETRYING, "attempts": attempt_number, "error": str(error)},
            )

        try:
            await with_retry(
                attempt,
                max_attempts=job.max_attempts,
                base_delay=self.settings.retry_base_delay,
                on_retry=on_retry,
                sleep=self._sleep_then_resume(job.id),
            )
        except Exception as e:
            raise StageFailed(e, attempts) from e

    def _sleep_then_resume(self, job_id: str) -> Callable[[float], Awaitable[None]]:
        async def sleep(delay: float) -> None:
            await self.sleep(delay)
            await self.store.persist_job_transition(job_id, {"status": JobStatus.PROCESSING})

        return sleep

    async def _fail(
        self, job_id: str, stage: JobStage, error: Exception, attempts: int
    ) -> Job:
        logger.error(
            f"Job {job_id} failed at stage {stage.value} after {attempts} attempt(s): {error}",
            exc_info=error,
        )
        job = await self.store.persist_job_transition(
            job_id,
            {
                "status": JobStatus.FAILED,
                "attempts": attempts,
                "error": str(error),
                "completed_at": utcnow(),
            },
        )

        discussion = await self.store.update_discussion(
            job.discussion_id, {"status": DiscussionStatus.FAILED, "error": str(error)}
        )
        await self._update_source_status(discussion, DiscussionStatus.FAILED)
        return job

    # Stages

    async def _build_thread(self, job: Job, discussion: Discussion) -> None:
        loaded = await load_flow_for_discussion(self.store, discussion)
        source = self.registry.get_source(discussion.platform)

        thread = await source.fetch_thread(discussion.source_thread_id, loaded.input.credentials)
        logger.info(
            f"Built thread for discussion {discussion.id}: {thread.message_count} messages"
        )

        discussion = await self.store.update_discussion(
            discussion.id,
            {
                "thread": thread,
                "participants": thread.participants or discussion.participants,
                "status": DiscussionStatus.PROCESSING,
                "error": None,
            },
        )
        await self._update_source_status(discussion, DiscussionStatus.PROCESSING, loaded)

    async def _analyze(self, job: Job, discussion: Discussion) -> None:
        if discussion.thread is None:
            raise ProcessingError("Thread snapshot missing", JobStage.AI_ANALYSIS, retryable=False)

        loaded = await load_flow_for_discussion(self.store, discussion)
        flow = loaded.flow

        if not flow.ai.enabled:
            logger.info(f"AI disabled for flow {flow.id}; creating a single task")
            summary = AISummary(summary=discussion.content[:500])
            tasks = [
                DetectedTask(title=discussion.title, description=discussion.content, topic=None)
            ]
        else:
            topics = list(flow.accepted_topics)
            for output in loaded.outputs:
                topics.extend(output.accepted_topics)
            analysis = await self.classifier.classify(
                discussion.thread,
                accepted_topics=topics,
                ai_settings=flow.ai,
                source_type=discussion.platform,
            )
            summary, tasks = analysis.summary, analysis.tasks

        await self.store.update_discussion(
            discussion.id, {"summary": summary, "detected_tasks": tasks}
        )

    async def _deliver_tasks(self, job: Job, discussion: Discussion) -> None:
        tasks = discussion.detected_tasks
        if not tasks:
            logger.info(f"No tasks to deliver for discussion {discussion.id}")
            await self.store.persist_job_transition(job.id, {"deliveries": [], "task_ids": []})
            return

        loaded = await load_flow_for_discussion(self.store, discussion)
        delivered = {
            d.task_index: d for d in job.deliveries if d.status == DeliveryStatus.DELIVERED
        }
        directories: Dict[str, List[DestinationUser]] = {}
        records: List[DeliveryRecord] = []
        retryable_failures = False

        for index, task in enumerate(tasks):
            if index in delivered:
                records.append(delivered[index])
                continue
            record, retryable = await self._deliver_one(
                index, task, discussion, loaded, directories
            )
            records.append(record)
            retryable_failures = retryable_failures or retryable

        task_ids = [r.external_id for r in records if r.status == DeliveryStatus.DELIVERED]
        await self.store.persist_job_transition(
            job.id,
            {
                "deliveries": records,
                "task_ids": task_ids,
                "partial": len(task_ids) < len(tasks),
            },
        )
        await self.store.update_discussion(discussion.id, {"task_ids": task_ids})

        if not task_ids:
            raise ProcessingError(
                f"All {len(tasks)} task deliveries failed",
                JobStage.TASK_DELIVERY,
                retryable=retryable_failures,
            )

        logger.info(f"Delivered {len(task_ids)} of {len(tasks)} tasks for {discussion.id}")

    async def _deliver_one(
        self,
        index: int,
        task: DetectedTask,
        discussion: Discussion,
        loaded: LoadedFlow,
        directories: Dict[str, List[DestinationUser]],
    ) -> Tuple[DeliveryRecord, bool]:
        """Route and deliver one task; returns the record and whether a failure may be retried."""
        decision = self.router.route(task, loaded.outputs)
        output = decision.output
        logger.info(
            f"Task {index} '{task.title}' -> output {output.name} "
            f"({decision.reason}, confidence {decision.confidence:.2f})"
        )

        try:
            sink = self.registry.get_sink(output.platform)
            context = await self._build_sink_context(task, discussion, loaded, output, sink, directories)
            key = credential_fingerprint(output.platform, output.credentials)

            async def create():
                async with self.throttle.slot(key, sink.min_call_interval):
                    return await sink.create_task(task, output.settings, output.credentials, context)

            created = await with_retry(
                create,
                max_attempts=self.settings.delivery_max_attempts,
                base_delay=self.settings.retry_base_delay,
                sleep=self.sleep,
            )
        except Exception as e:
            logger.error(f"Delivery of task {index} to {output.name} failed: {e}")
            record = DeliveryRecord(
                task_index=index,
                title=task.title,
                output_id=output.id,
                output_name=output.name,
                confidence=decision.confidence,
                status=DeliveryStatus.FAILED,
                error=str(e),
            )
            return record, bool(getattr(e, "retryable", True))

        return DeliveryRecord(
            task_index=index,
            title=task.title,
            output_id=output.id,
            output_name=output.name,
            confidence=decision.confidence,
            status=DeliveryStatus.DELIVERED,
            external_id=created.external_id,
            external_url=created.external_url,
        ), False

    async def _build_sink_context(
        self,
        task: DetectedTask,
        discussion: Discussion,
        loaded: LoadedFlow,
        output: Output,
        sink: SinkAdapter,
        directories: Dict[str, List[DestinationUser]],
    ) -> SinkContext:
        """Resolve the assignee and participant mentions for one output."""
        if output.id not in directories:
            try:
                directories[output.id] = await sink.list_users(output.credentials)
            except Exception as e:
                logger.warning(f"Could not load user directory for {output.name}: {e}")
                directories[output.id] = []
        directory = directories[output.id]

        source = self.registry.get_source(discussion.platform)
        credentials = loaded.input.credentials
        # Emails delivered with the webhook (e.g. Figma triggered_by)
        known_emails: Dict[str, str] = discussion.metadata.get("participant_emails") or {}

        async def resolve(token: str):
            async def lookup_email():
                try:
                    return await source.lookup_user_email(token, credentials)
                except Exception as e:
                    logger.warning(f"Email lookup for {token} failed: {e}")
                    return None

            return await self.resolver.resolve(
                discussion.platform,
                discussion.workspace_id,
                token,
                destination_platform=output.platform,
                email=known_emails.get(token),
                directory=directory,
                email_lookup=lookup_email,
            )

        mentions: Dict[str, str] = {}
        thread = discussion.thread
        for handle in thread.participants:
            resolution = await resolve(handle)
            if resolution.resolved:
                mentions[handle] = resolution.destination_user_id

        assignee_id = None
        if task.assignee:
            if task.assignee in mentions:
                assignee_id = mentions[task.assignee]
            else:
                assignee_id = (await resolve(task.assignee)).destination_user_id

        return SinkContext(
            discussion_id=discussion.id,
            source_platform=discussion.platform,
            source_url=discussion.source_url,
            thread=thread,
            summary=discussion.summary,
            assignee_id=assignee_id,
            mentions=mentions,
            output=output,
        )

    async def _notify(self, job: Job, discussion: Discussion) -> None:
        loaded = await load_flow_for_discussion(self.store, discussion)
        source = self.registry.get_source(discussion.platform)
        text = build_confirmation_message(job.deliveries, len(discussion.detected_tasks))
        await source.post_reply(discussion.source_thread_id, text, loaded.input.credentials)
        logger.info(f"Posted confirmation to {discussion.platform} thread {discussion.source_thread_id}")

    async def _complete(self, job: Job, discussion: Discussion) -> None:
        await self.store.persist_job_transition(
            job.id,
            {
                "status": JobStatus.COMPLETED,
                "error": None,
                "completed_at": utcnow(),
            },
        )
        discussion = await self.store.update_discussion(
            discussion.id,
            {"status": DiscussionStatus.COMPLETED, "processed_at": utcnow(), "error": None},
        )
        logger.info(
            f"Job {job.id} completed: {len(job.task_ids)} task(s)"
            f"{' (partial)' if job.partial else ''}"
        )
        await self._update_source_status(discussion, DiscussionStatus.COMPLETED)

    async def _update_source_status(
        self,
        discussion: Discussion,
        status: DiscussionStatus,
        loaded: Optional[LoadedFlow] = None,
    ) -> None:
        """Best-effort status indicator on the source thread."""
        try:
            if loaded is None:
                input_ = await self.store.get_input(discussion.input_id)
                credentials = input_.credentials if input_ else {}
            else:
                credentials = loaded.input.credentials
            source = self.registry.get_source(discussion.platform)
            await source.update_status(discussion.source_thread_id, status, credentials)
        except Exception as e:
            logger.warning(f"Could not update source status to {status.value}: {e}")
