"""ResumePipeline - the parse -> analyze job orchestrator.

One instance is created at process start and owns the durable queue, the
parse-result cache, the rolling-window limiter and the AI client. Both job
kinds share a single worker because the bottleneck is the upstream AI
quota, not local CPU.
"""

import asyncio
import math
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, NamedTuple

from ..errors import (
    AttemptsExhausted,
    InvalidTransition,
    JobExpired,
    JobInactive,
    PipelineError,
    ResumeNotFound,
    ResumeNotParsed,
    is_quota_exhausted,
    is_retryable,
)
from ..extraction import text_extractor
from ..matching.engine import calculate_match, suggest_status
from ..models.base import utc_now
from ..models.candidate import ParsedCandidateData
from ..models.enums import JobKind, JobState
from ..models.queue import JobHandle, ProcessingJob, QueueStats
from ..models.resume import ResumeRecord
from ..state.resume_state import ResumeStateController
from ..storage.cache import TTLCache
from ..storage.object_store import ObjectStore
from .job_queue import JobQueue
from .limits import RollingWindowLimiter
from ...integrations.ai_client import AIExtractionClient
from ...observability.logger import get_logger, job_log_context

logger = get_logger(__name__)

PARSE_CACHE_PREFIX = "parsed_cv:"


class JobOutcome(NamedTuple):
    result: dict[str, Any]
    follow_ups: list[ProcessingJob] | None = None


class ResumePipeline:
    """Queue API plus the worker that drains it."""

    WORKER_CONCURRENCY = 1

    def __init__(
        self,
        store: ObjectStore,
        ai_client: AIExtractionClient,
        config: dict[str, Any] | None = None,
        *,
        queue: JobQueue | None = None,
        cache: TTLCache[ParsedCandidateData] | None = None,
        limiter: RollingWindowLimiter | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        config = config or {}
        queue_cfg = config.get("queue", {})
        cache_cfg = config.get("cache", {})
        extraction_cfg = config.get("extraction", {})

        self.store = store
        self.ai_client = ai_client
        self.states = ResumeStateController(store)
        self._clock = clock
        self._sleep = sleep

        self.queue = queue or JobQueue(store, clock=clock)
        self.cache = cache or TTLCache(ttl_seconds=cache_cfg.get("parse_ttl_seconds", 3600))
        self.limiter = limiter or RollingWindowLimiter(
            max_calls=queue_cfg.get("max_calls", 10),
            window_ms=queue_cfg.get("window_ms", 60000),
            sleep=sleep,
        )

        self.max_attempts = queue_cfg.get("max_attempts", 3)
        self.backoff_base_ms = queue_cfg.get("backoff_base_ms", 2000)
        self.parse_priority = queue_cfg.get("parse_priority", 1)
        self.analyze_priority = queue_cfg.get("analyze_priority", 2)
        self.stalled_grace = timedelta(seconds=queue_cfg.get("stalled_grace_seconds", 600))
        self.clean_grace = timedelta(hours=queue_cfg.get("clean_grace_hours", 24))
        self.poll_interval = queue_cfg.get("poll_interval_ms", 1000) / 1000
        self.extraction_limits = {
            "min_chars": extraction_cfg.get("min_chars", text_extractor.MIN_CHARS),
            "max_chars": extraction_cfg.get("max_chars", text_extractor.MAX_CHARS),
            "min_words": extraction_cfg.get("min_words", text_extractor.MIN_WORDS),
        }
        self.max_file_bytes = extraction_cfg.get("max_file_bytes", text_extractor.MAX_FILE_BYTES)

        self._handlers: dict[JobKind, Callable[[ProcessingJob], Awaitable[JobOutcome]]] = {
            JobKind.PARSE: self._handle_parse,
            JobKind.ANALYZE: self._handle_analyze,
        }
        self._workers: list[asyncio.Task] = []
        self._wakeup: asyncio.Event | None = None
        self._stopping = False

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any],
        store: ObjectStore | None = None,
        ai_client: AIExtractionClient | None = None,
    ) -> "ResumePipeline":
        if store is None:
            store = ObjectStore(config.get("storage", {}).get("object_store_dir", "data/processed"))
        if ai_client is None:
            ai_client = AIExtractionClient.from_config(config)
        return cls(store, ai_client, config)

    # ------------------------------------------------------------------
    # Caller API
    # ------------------------------------------------------------------
    def submit_upload(
        self,
        file_path: str | Path,
        job_posting_id: str | None = None,
        resume_id: str | None = None,
    ) -> tuple[ResumeRecord, JobHandle]:
        """Validate an uploaded file, create its résumé record and queue parsing."""
        text_extractor.validate_upload(file_path, max_bytes=self.max_file_bytes)
        resume = self.states.register_upload(file_path, job_posting_id, resume_id)
        return resume, self.enqueue_parse(resume.id, str(file_path), job_posting_id)

    def submit_profile(
        self,
        parsed_data: ParsedCandidateData,
        job_posting_id: str | None = None,
    ) -> tuple[ResumeRecord, JobHandle | None]:
        """Register a structured profile and queue its analysis right away."""
        resume = self.states.register_profile(parsed_data, job_posting_id)
        if not job_posting_id:
            return resume, None
        return resume, self.enqueue_analyze(resume.id, job_posting_id)

    def enqueue_parse(
        self,
        resume_id: str,
        file_path: str,
        job_posting_id: str | None = None,
        force: bool = False,
    ) -> JobHandle:
        """Queue text extraction + AI parsing for a résumé.

        ``force`` bypasses the parse-result cache (explicit re-parse).
        """
        payload: dict[str, Any] = {"resume_id": resume_id, "file_path": str(file_path)}
        if job_posting_id:
            payload["job_posting_id"] = job_posting_id
        if force:
            payload["force"] = True
        job = self.queue.add(
            JobKind.PARSE,
            payload,
            priority=self.parse_priority,
            max_attempts=self.max_attempts,
            backoff_base_ms=self.backoff_base_ms,
        )
        self._wake()
        return JobHandle.from_job(job, estimated_seconds=self.estimate_wait_seconds())

    def enqueue_analyze(self, resume_id: str, job_posting_id: str) -> JobHandle:
        """Queue scoring of an already parsed résumé against a job posting."""
        self.states.ensure_can_analyze(resume_id)
        job = self.queue.add(
            JobKind.ANALYZE,
            {"resume_id": resume_id, "job_posting_id": job_posting_id},
            priority=self.analyze_priority,
            max_attempts=self.max_attempts,
            backoff_base_ms=self.backoff_base_ms,
        )
        self._wake()
        return JobHandle.from_job(job, estimated_seconds=self.estimate_wait_seconds())

    def reparse(self, resume_id: str) -> JobHandle:
        resume = self.states.get(resume_id)
        if not resume.file_path:
            raise InvalidTransition(resume_id, str(resume.state), "PARSING")
        self.cache.delete(PARSE_CACHE_PREFIX + resume_id)
        return self.enqueue_parse(resume_id, resume.file_path, resume.job_posting_id, force=True)

    def get_queue_stats(self) -> QueueStats:
        return self.queue.stats()

    def get_job(self, job_id: str) -> JobHandle | None:
        job = self.queue.get(job_id)
        return JobHandle.from_job(job) if job else None

    def remove_job(self, job_id: str) -> bool:
        return self.queue.remove(job_id)

    def clean_old_jobs(self, grace: timedelta | None = None) -> int:
        return self.queue.clean(grace or self.clean_grace)

    def estimate_wait_seconds(self) -> int:
        """Queue depth times the AI pacing interval."""
        stats = self.queue.stats()
        pending = stats.waiting + stats.delayed + stats.active
        interval_ms = getattr(self.ai_client, "min_interval_ms", 0)
        return math.ceil(pending * interval_ms / 1000)

    def sweep_stalled_analyses(self, grace: timedelta | None = None) -> list[JobHandle]:
        """Re-enqueue ANALYZE for parsed résumés stuck without analysis.

        Covers a crash between persisting a parse result and committing the
        chained analyze job.
        """
        grace = self.stalled_grace if grace is None else grace
        now = self._clock()
        handles = []
        for resume in self.states.stalled_analyses():
            if not resume.job_posting_id:
                continue
            if now - resume.updated_at < grace:
                continue
            if self.queue.has_in_flight(JobKind.ANALYZE, resume.id):
                continue
            handles.append(self.enqueue_analyze(resume.id, resume.job_posting_id))
            logger.warning("stalled_analysis_requeued", resume_id=resume.id)
        return handles

    # ------------------------------------------------------------------
    # Worker lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._workers:
            return
        self._stopping = False
        self._wakeup = asyncio.Event()
        self.queue.recover_abandoned()
        self._workers = [
            asyncio.create_task(self._worker_loop(f"worker-{i}"))
            for i in range(self.WORKER_CONCURRENCY)
        ]
        logger.info("pipeline_started", workers=self.WORKER_CONCURRENCY)

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers; with ``drain`` they finish all ready jobs first."""
        self._stopping = True
        self._wake()
        if not drain:
            for task in self._workers:
                task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self.queue.close()
        logger.info("pipeline_stopped", drained=drain, stats=self.queue.stats().model_dump())

    async def run_until_idle(self) -> QueueStats:
        """Process jobs until nothing is waiting or delayed."""
        self.queue.recover_abandoned()
        while True:
            if await self.process_next():
                continue
            delay = self._idle_delay()
            if delay is None:
                return self.queue.stats()
            await self._sleep(delay)

    async def process_next(self) -> bool:
        """Run one ready job, if any. Returns whether a job ran."""
        if not self.queue.has_ready():
            return False
        await self.limiter.acquire()
        job = self.queue.claim_next()
        if job is None:
            return False
        await self._execute(job)
        return True

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def _worker_loop(self, name: str) -> None:
        while True:
            if await self.process_next():
                continue
            if self._stopping:
                return
            await self._wait_for_work()

    def _idle_delay(self) -> float | None:
        """Seconds until a job may be claimable, or None when nothing is queued.

        While another worker process holds the lane, wait at least one poll
        interval rather than spinning on a job that is ready but blocked.
        """
        next_at = self.queue.next_ready_at()
        if next_at is None:
            return None
        delay = max(0.0, (next_at - self._clock()).total_seconds())
        if self.queue.busy_elsewhere():
            delay = max(delay, self.poll_interval)
        return delay

    async def _wait_for_work(self) -> None:
        # Other processes add jobs to the shared store without waking us
        delay = self._idle_delay()
        timeout = self.poll_interval if delay is None else min(delay, self.poll_interval)
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def _execute(self, job: ProcessingJob) -> None:
        handler = self._handlers[JobKind(job.kind)]
        with job_log_context(job.id, str(job.kind), job.resume_id):
            logger.info("job_started", attempt=job.attempt, max_attempts=job.max_attempts)
            try:
                outcome = await handler(job)
            except Exception as e:
                self._on_failure(job, e)
                return

            self.queue.complete(job.id, outcome.result, outcome.follow_ups)
            logger.info("job_completed", result=outcome.result)

    def _on_failure(self, job: ProcessingJob, error: Exception) -> None:
        message = str(error)
        kind = JobKind(job.kind)

        if is_quota_exhausted(error):
            self.queue.mark_quota_exhausted(job.id, message)
            self._record_failure(kind, job.resume_id, message, quota=True)
            logger.warning("job_quota_exhausted", job_id=job.id, kind=job.kind, error=message)
            return

        retryable = is_retryable(error)
        if not isinstance(error, PipelineError):
            logger.exception("job_unexpected_error", job_id=job.id, kind=job.kind, error=message)

        updated = self.queue.fail_attempt(job.id, message, retryable=retryable)
        if updated.state == JobState.DELAYED:
            logger.warning(
                "job_retry_scheduled",
                job_id=job.id,
                kind=job.kind,
                attempt=updated.attempt,
                max_attempts=updated.max_attempts,
                available_at=updated.available_at.isoformat(),
                error=message,
            )
            return

        final = AttemptsExhausted(updated.attempt, message) if retryable else error
        self._record_failure(kind, job.resume_id, str(final))
        logger.error(
            "job_failed",
            job_id=job.id,
            kind=job.kind,
            attempts=updated.attempt,
            error_type=type(final).__name__,
            error=message,
        )

    def _record_failure(self, kind: JobKind, resume_id: str | None, message: str, quota: bool = False) -> None:
        if not resume_id:
            return
        try:
            if kind == JobKind.PARSE:
                self.states.mark_parse_failed(resume_id, message, quota=quota)
            else:
                self.states.mark_analysis_failed(resume_id, message, quota=quota)
        except (ResumeNotFound, InvalidTransition) as e:
            logger.warning("resume_failure_not_recorded", resume_id=resume_id, kind=kind.value, error=str(e))

    async def _handle_parse(self, job: ProcessingJob) -> JobOutcome:
        resume_id = job.payload["resume_id"]
        resume = self.states.mark_parsing(resume_id)
        job_posting_id = job.payload.get("job_posting_id") or resume.job_posting_id
        cache_key = PARSE_CACHE_PREFIX + resume_id

        parsed = None if job.payload.get("force") else self.cache.get(cache_key)
        cached = parsed is not None
        extracted_length = None
        if parsed is None:
            text, extracted_length = await asyncio.to_thread(
                text_extractor.extract_clean_text,
                job.payload["file_path"],
                **self.extraction_limits,
            )
            parsed = await self.ai_client.extract_structured_data(text)
            self.cache.set(cache_key, parsed)
        else:
            logger.info("parse_cache_hit", resume_id=resume_id)

        self.states.mark_parsed(resume_id, parsed)

        follow_ups = []
        if not job_posting_id:
            logger.info("analysis_not_chained", resume_id=resume_id, reason="no_job_posting")
        elif self.queue.find_pending(JobKind.ANALYZE, resume_id) is None:
            follow_ups.append(
                self.queue.build_job(
                    JobKind.ANALYZE,
                    {"resume_id": resume_id, "job_posting_id": job_posting_id},
                    priority=self.analyze_priority,
                    max_attempts=self.max_attempts,
                    backoff_base_ms=self.backoff_base_ms,
                )
            )

        return JobOutcome(
            {
                "success": True,
                "parsed_fields": parsed.field_names_present(),
                "extracted_length": extracted_length,
                "cached": cached,
            },
            follow_ups,
        )

    async def _handle_analyze(self, job: ProcessingJob) -> JobOutcome:
        resume_id = job.payload["resume_id"]
        job_posting_id = job.payload["job_posting_id"]

        resume = self.states.mark_analyzing(resume_id)
        if resume.parsed_data is None:
            raise ResumeNotParsed(resume_id)

        posting = self.store.find_job_posting(job_posting_id)
        if not posting.is_active:
            raise JobInactive(job_posting_id)
        if posting.is_expired(self._clock()):
            raise JobExpired(job_posting_id)

        result = calculate_match(resume.parsed_data, posting, analyzed_at=self._clock())
        self.states.mark_analyzed(resume_id, result)

        logger.info(
            "resume_analyzed",
            resume_id=resume_id,
            job_posting_id=job_posting_id,
            score=result.score,
            priority=result.priority,
        )
        return JobOutcome(
            {
                "success": True,
                "score": result.score,
                "priority": result.priority,
                "suggested_status": suggest_status(result, posting).value,
            }
        )
