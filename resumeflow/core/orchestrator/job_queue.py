"""Durable priority queue persisted as one JSON snapshot.

The snapshot is shared by every process pointed at the same store: CLI
submitters add jobs while a long-running worker claims them. Each change
re-reads the snapshot under the store's exclusive queue lock and writes it
back before releasing, so completing a job and adding the jobs it chains
land on disk together and no process overwrites another's jobs.

A claimed job records the worker that holds it. A worker keeps a lock file
for its whole life; an ACTIVE job whose worker no longer holds that lock was
abandoned mid-run and goes back to WAITING. Only one job is ACTIVE across
all workers at a time.
"""

import os
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import IO, Any, Callable, Iterator

from ..models.base import generate_id, utc_now
from ..models.enums import JobKind, JobState
from ..models.queue import ProcessingJob, QueueStats
from ..storage.object_store import ObjectStore
from ...observability.logger import get_logger

logger = get_logger(__name__)

TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED, JobState.QUOTA_EXHAUSTED)


class JobQueue:
    """Priority + FIFO queue of ProcessingJobs backed by the object store."""

    def __init__(
        self,
        store: ObjectStore,
        clock: Callable[[], datetime] = utc_now,
        worker_id: str | None = None,
    ):
        self.store = store
        self._clock = clock
        self.worker_id = worker_id or generate_id(f"worker-{os.getpid()}-")
        self._worker_lock: IO[str] | None = None
        self._jobs: dict[str, ProcessingJob] = {}
        self._seq = 0
        self._reload()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _reload(self) -> None:
        """Replace the in-memory view with the snapshot on disk."""
        snapshot = self.store.load_queue_snapshot() or {}
        self._seq = snapshot.get("seq", 0)
        self._jobs = {data["id"]: ProcessingJob(**data) for data in snapshot.get("jobs", [])}

    def _persist(self) -> None:
        self.store.save_queue_snapshot(
            {
                "seq": self._seq,
                "jobs": [job.model_dump(mode="json") for job in self._jobs.values()],
            }
        )

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Read-modify-write of the shared snapshot. Must not be nested."""
        with self.store.queue_lock():
            self._reload()
            yield
            self._persist()

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    # ------------------------------------------------------------------
    # Worker ownership
    # ------------------------------------------------------------------
    def _register_worker(self) -> None:
        if self._worker_lock is None:
            self._worker_lock = self.store.acquire_worker_lock(self.worker_id)
            logger.info("queue_worker_registered", worker_id=self.worker_id)

    def close(self) -> None:
        """Give up this queue's worker identity; its ACTIVE jobs become recoverable."""
        if self._worker_lock is not None:
            self.store.release_worker_lock(self.worker_id, self._worker_lock)
            self._worker_lock = None

    def _owner_alive(self, job: ProcessingJob) -> bool:
        if job.claimed_by == self.worker_id:
            return self._worker_lock is not None
        return self.store.worker_alive(job.claimed_by)

    def _abandoned(self) -> list[ProcessingJob]:
        return [
            job
            for job in self._jobs.values()
            if job.state == JobState.ACTIVE and not self._owner_alive(job)
        ]

    def _busy_elsewhere(self) -> bool:
        return any(
            job.state == JobState.ACTIVE
            and job.claimed_by != self.worker_id
            and self.store.worker_alive(job.claimed_by)
            for job in self._jobs.values()
        )

    def _recover(self) -> int:
        abandoned = self._abandoned()
        now = self._clock()
        for job in abandoned:
            # The worker died mid-job; the attempt counts, the job runs again
            job.state = JobState.WAITING
            job.available_at = now
            job.claimed_by = None
        if abandoned:
            logger.warning("queue_recovered_active_jobs", count=len(abandoned))
        return len(abandoned)

    def recover_abandoned(self) -> int:
        """Return jobs left ACTIVE by dead workers to WAITING."""
        with self._transaction():
            return self._recover()

    def busy_elsewhere(self) -> bool:
        """Whether another live worker is running a job right now."""
        self._reload()
        return self._busy_elsewhere()

    # ------------------------------------------------------------------
    # Adding and claiming
    # ------------------------------------------------------------------
    def build_job(
        self,
        kind: JobKind,
        payload: dict[str, Any],
        priority: int,
        max_attempts: int = 3,
        backoff_base_ms: int = 2000,
    ) -> ProcessingJob:
        """Create a job without queuing it (see ``add`` and ``complete``).

        The arrival sequence is assigned when the job is committed.
        """
        now = self._clock()
        return ProcessingJob(
            kind=kind,
            payload=payload,
            priority=priority,
            max_attempts=max_attempts,
            backoff_base_ms=backoff_base_ms,
            created_at=now,
            available_at=now,
        )

    def add(
        self,
        kind: JobKind,
        payload: dict[str, Any],
        priority: int,
        max_attempts: int = 3,
        backoff_base_ms: int = 2000,
    ) -> ProcessingJob:
        job = self.build_job(kind, payload, priority, max_attempts, backoff_base_ms)
        with self._transaction():
            job.seq = self._next_seq()
            self._jobs[job.id] = job
        logger.info("job_enqueued", job_id=job.id, kind=job.kind, priority=priority, resume_id=job.resume_id)
        return job

    def _ready(self, now: datetime) -> list[ProcessingJob]:
        return [
            job
            for job in self._jobs.values()
            if job.state in (JobState.WAITING, JobState.DELAYED) and job.available_at <= now
        ]

    def has_ready(self) -> bool:
        """Whether ``claim_next`` would find work right now."""
        self._reload()
        if self._abandoned():
            return True
        return bool(self._ready(self._clock())) and not self._busy_elsewhere()

    def claim_next(self) -> ProcessingJob | None:
        """Mark the best ready job active and return it.

        Lowest priority number first, then arrival order. Returns None while
        another live worker has a job active.
        """
        self._register_worker()
        with self._transaction():
            self._recover()
            if self._busy_elsewhere():
                return None
            now = self._clock()
            ready = self._ready(now)
            if not ready:
                return None
            job = min(ready, key=lambda j: (j.priority, j.seq))
            job.state = JobState.ACTIVE
            job.attempt += 1
            job.started_at = now
            job.claimed_by = self.worker_id
        return job

    def next_ready_at(self) -> datetime | None:
        """Earliest time a waiting or delayed job becomes claimable."""
        self._reload()
        times = [
            job.available_at
            for job in self._jobs.values()
            if job.state in (JobState.WAITING, JobState.DELAYED)
        ]
        return min(times) if times else None

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------
    def complete(
        self,
        job_id: str,
        result: dict[str, Any] | None = None,
        follow_ups: list[ProcessingJob] | None = None,
    ) -> ProcessingJob:
        """Mark a job completed and queue its follow-ups in one write."""
        with self._transaction():
            job = self._jobs[job_id]
            job.state = JobState.COMPLETED
            job.finished_at = self._clock()
            job.result = result
            job.last_error = None
            job.claimed_by = None
            for follow_up in follow_ups or []:
                follow_up.seq = self._next_seq()
                self._jobs[follow_up.id] = follow_up
        for follow_up in follow_ups or []:
            logger.info(
                "job_chained",
                job_id=follow_up.id,
                kind=follow_up.kind,
                parent_job_id=job_id,
                resume_id=follow_up.resume_id,
            )
        return job

    def fail_attempt(self, job_id: str, error: str, retryable: bool = True) -> ProcessingJob:
        """Record a failed attempt; schedule a retry or fail the job.

        Retry delay after attempt ``n`` (1-based) is ``base * 2^(n-1)``.
        """
        with self._transaction():
            job = self._jobs[job_id]
            job.last_error = error
            job.claimed_by = None
            now = self._clock()
            if retryable and job.attempt < job.max_attempts:
                delay_ms = job.backoff_base_ms * (2 ** (job.attempt - 1))
                job.state = JobState.DELAYED
                job.available_at = now + timedelta(milliseconds=delay_ms)
            else:
                job.state = JobState.FAILED
                job.finished_at = now
        return job

    def mark_quota_exhausted(self, job_id: str, error: str) -> ProcessingJob:
        with self._transaction():
            job = self._jobs[job_id]
            job.state = JobState.QUOTA_EXHAUSTED
            job.last_error = error
            job.finished_at = self._clock()
            job.claimed_by = None
        return job

    # ------------------------------------------------------------------
    # Inspection and maintenance
    # ------------------------------------------------------------------
    def get(self, job_id: str) -> ProcessingJob | None:
        self._reload()
        return self._jobs.get(job_id)

    def jobs(self) -> list[ProcessingJob]:
        self._reload()
        return sorted(self._jobs.values(), key=lambda j: j.seq)

    def find_pending(self, kind: JobKind, resume_id: str) -> ProcessingJob | None:
        """A waiting or delayed job of ``kind`` for ``resume_id``, if any."""
        self._reload()
        for job in self._jobs.values():
            if (
                job.kind == kind
                and job.resume_id == resume_id
                and job.state in (JobState.WAITING, JobState.DELAYED)
            ):
                return job
        return None

    def has_in_flight(self, kind: JobKind, resume_id: str) -> bool:
        self._reload()
        return any(
            job.kind == kind and job.resume_id == resume_id and job.is_pending
            for job in self._jobs.values()
        )

    def remove(self, job_id: str) -> bool:
        """Remove a job that is not currently running."""
        with self._transaction():
            job = self._jobs.get(job_id)
            if job is None or job.state == JobState.ACTIVE:
                return False
            del self._jobs[job_id]
        logger.info("job_removed", job_id=job_id, kind=job.kind)
        return True

    def clean(self, grace: timedelta) -> int:
        """Drop finished jobs: completed after ``grace``, failed after 7x ``grace``."""
        with self._transaction():
            now = self._clock()
            expired = []
            for job in self._jobs.values():
                if job.state not in TERMINAL_STATES or job.finished_at is None:
                    continue
                keep_for = grace if job.state == JobState.COMPLETED else grace * 7
                if now - job.finished_at > keep_for:
                    expired.append(job.id)
            for job_id in expired:
                del self._jobs[job_id]
        logger.info("queue_cleaned", removed=len(expired))
        return len(expired)

    def stats(self) -> QueueStats:
        self._reload()
        counts = {state: 0 for state in JobState}
        for job in self._jobs.values():
            counts[JobState(job.state)] += 1
        return QueueStats(
            waiting=counts[JobState.WAITING],
            active=counts[JobState.ACTIVE],
            completed=counts[JobState.COMPLETED],
            failed=counts[JobState.FAILED],
            delayed=counts[JobState.DELAYED],
            quota_exhausted=counts[JobState.QUOTA_EXHAUSTED],
            total=len(self._jobs),
        )
