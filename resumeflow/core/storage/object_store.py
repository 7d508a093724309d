"""File-based object store for résumés, job postings, and the queue snapshot.

Plain JSON files under one base directory. It backs the persistence
contracts the pipeline consumes (résumé updates, job lookups) and the
durable queue. Several processes (CLI submitters, one worker) may share a
base directory: the queue snapshot is only rewritten under an exclusive
``flock`` on ``queue/jobs.lock``, and each worker holds a lock file of its
own for as long as it lives.
"""

from __future__ import annotations

import fcntl
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator

from ..errors import JobPostingNotFound, ResumeNotFound
from ..models.job_posting import JobPosting
from ..models.resume import ResumeRecord
from ..models.base import utc_now


class ObjectStore:
    """Simple JSON-backed persistence layer."""

    def __init__(self, base_dir: str | Path | None = None):
        self.base_dir = Path(base_dir) if base_dir else Path("data/processed")
        self.base_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------
    def _dump(self, path: Path, data: dict[str, Any]) -> None:
        """Write atomically: temp file in the same directory, then rename."""
        path.parent.mkdir(parents=True, exist_ok=True)
        # One temp file per writer process so concurrent writers never share it
        tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp_path, path)

    def _load(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    # ------------------------------------------------------------------
    # Résumés
    # ------------------------------------------------------------------
    def _resume_path(self, resume_id: str) -> Path:
        return self.base_dir / "resumes" / f"{resume_id}.json"

    def save_resume(self, resume: ResumeRecord) -> None:
        self._dump(self._resume_path(resume.id), resume.model_dump(mode="json"))

    def load_resume(self, resume_id: str) -> ResumeRecord | None:
        data = self._load(self._resume_path(resume_id))
        return ResumeRecord(**data) if data else None

    def get_resume(self, resume_id: str) -> ResumeRecord:
        resume = self.load_resume(resume_id)
        if resume is None:
            raise ResumeNotFound(resume_id)
        return resume

    def update_resume(self, resume_id: str, patch: dict[str, Any]) -> ResumeRecord:
        """Apply a partial update and persist it.

        Patch values go through model validation, so nested models may be
        given either as instances or as plain dicts.
        """
        resume = self.get_resume(resume_id)
        merged = {**resume.model_dump(), **patch, "updated_at": utc_now()}
        updated = ResumeRecord.model_validate(merged)
        self.save_resume(updated)
        return updated

    def list_resumes(self) -> list[ResumeRecord]:
        resume_dir = self.base_dir / "resumes"
        if not resume_dir.exists():
            return []
        resumes: list[ResumeRecord] = []
        for path in sorted(resume_dir.glob("*.json")):
            data = self._load(path)
            if data:
                resumes.append(ResumeRecord(**data))
        return resumes

    # ------------------------------------------------------------------
    # Job postings
    # ------------------------------------------------------------------
    def _posting_path(self, job_posting_id: str) -> Path:
        return self.base_dir / "job_postings" / f"{job_posting_id}.json"

    def save_job_posting(self, posting: JobPosting) -> None:
        self._dump(self._posting_path(posting.id), posting.model_dump(mode="json"))

    def load_job_posting(self, job_posting_id: str) -> JobPosting | None:
        data = self._load(self._posting_path(job_posting_id))
        return JobPosting(**data) if data else None

    def find_job_posting(self, job_posting_id: str) -> JobPosting:
        posting = self.load_job_posting(job_posting_id)
        if posting is None:
            raise JobPostingNotFound(job_posting_id)
        return posting

    # ------------------------------------------------------------------
    # Queue snapshot
    # ------------------------------------------------------------------
    def _queue_path(self) -> Path:
        return self.base_dir / "queue" / "jobs.json"

    def save_queue_snapshot(self, snapshot: dict[str, Any]) -> None:
        self._dump(self._queue_path(), snapshot)

    def load_queue_snapshot(self) -> dict[str, Any] | None:
        return self._load(self._queue_path())

    # ------------------------------------------------------------------
    # Cross-process locks
    # ------------------------------------------------------------------
    def _lock_path(self, name: str) -> Path:
        path = self.base_dir / "queue" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    @contextmanager
    def queue_lock(self) -> Iterator[None]:
        """Hold the exclusive queue lock (blocking) for a read-modify-write."""
        with open(self._lock_path("jobs.lock"), "a+") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _worker_lock_path(self, worker_id: str) -> Path:
        path = self.base_dir / "queue" / "workers" / f"{worker_id}.lock"
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def acquire_worker_lock(self, worker_id: str) -> IO[str]:
        """Lock the worker's liveness file; the lock lasts until the handle is closed."""
        handle = open(self._worker_lock_path(worker_id), "a+")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            handle.close()
            raise
        return handle

    def release_worker_lock(self, worker_id: str, handle: IO[str]) -> None:
        self._worker_lock_path(worker_id).unlink(missing_ok=True)
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        handle.close()

    def worker_alive(self, worker_id: str | None) -> bool:
        """Whether the worker that owns ``worker_id`` still holds its lock.

        A lock file nobody holds was left behind by a worker that died.
        """
        if not worker_id:
            return False
        path = self._worker_lock_path(worker_id)
        if not path.exists():
            return False
        with open(path, "a+") as handle:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        return False
