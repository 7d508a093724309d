"""End-to-end runs of the parse -> analyze pipeline with a stubbed AI transport."""

import asyncio
import json
import os
import subprocess
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from resumeflow.core.config.loader import load_config
from resumeflow.core.errors import ResumeNotParsed
from resumeflow.core.models.candidate import ParsedCandidateData
from resumeflow.core.models.enums import JobKind, JobState, ResumeState
from resumeflow.core.models.job_posting import JobPosting
from resumeflow.core.orchestrator.pipeline import ResumePipeline
from resumeflow.core.storage.object_store import ObjectStore
from resumeflow.integrations.ai_client import AIExtractionClient

CANDIDATE_JSON = json.dumps(
    {
        "fullName": "Nguyễn Văn An",
        "skills": ["Node.js", "MongoDB", "Docker", "TypeScript", "PostgreSQL"],
        "experience": [{"company": "ShopCo", "position": "Senior Backend Engineer", "duration": "2019 - 2025"}],
        "education": [{"school": "HUST", "degree": "Bachelor of Computer Science"}],
        "yearsOfExperience": 6,
    }
)

PIPELINE_CONFIG = {"queue": {"max_calls": 100, "backoff_base_ms": 0}}


class StubAIClient(AIExtractionClient):
    """Replays scripted answers instead of calling the upstream service."""

    def __init__(self, responses=None):
        super().__init__(
            api_key="test-key",
            min_interval_ms=0,
            initial_delay_ms=0,
            max_jitter_ms=0,
            test_mode=False,
        )
        self.responses = list(responses or [CANDIDATE_JSON])

    async def _generate(self, prompt):
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def store(tmp_path):
    store = ObjectStore(tmp_path / "store")
    store.save_job_posting(
        JobPosting(
            id="job-backend",
            title="Senior Backend Engineer",
            required_skills=["NodeJS", "MongoDB", "Kubernetes"],
            level="SENIOR",
        )
    )
    return store


@pytest.fixture
def cv_file(tmp_path, resume_text):
    path = tmp_path / "uploads" / "an-nguyen.txt"
    path.parent.mkdir(parents=True)
    path.write_text(resume_text, encoding="utf-8")
    return path


def _pipeline(store, ai_client):
    return ResumePipeline(store, ai_client, PIPELINE_CONFIG)


def test_upload_is_parsed_then_analyzed(store, cv_file):
    ai = StubAIClient()
    pipeline = _pipeline(store, ai)

    resume, handle = pipeline.submit_upload(cv_file, job_posting_id="job-backend")
    assert handle.kind == JobKind.PARSE
    assert handle.state == JobState.WAITING

    stats = asyncio.run(pipeline.run_until_idle())

    assert (stats.completed, stats.failed, stats.total) == (2, 0, 2)
    record = store.get_resume(resume.id)
    assert record.state == ResumeState.ANALYZED
    assert record.is_parsed and record.is_analyzed
    assert record.parsed_data.full_name == "Nguyễn Văn An"
    assert record.parsed_data.email == "an.nguyen@example.com"
    assert record.ai_analysis.skills_match_percentage == 47
    assert record.ai_analysis.experience_score == 75
    assert record.ai_analysis.education_score == 80
    assert record.ai_analysis.score == 62
    assert record.priority == "MEDIUM"

    parse_job = pipeline.get_job(handle.job_id)
    assert parse_job.result["success"] is True
    assert parse_job.result["cached"] is False
    assert "skills" in parse_job.result["parsed_fields"]
    analyze_job = next(job for job in pipeline.queue.jobs() if job.kind == JobKind.ANALYZE)
    assert analyze_job.result["score"] == 62
    assert analyze_job.result["suggested_status"] == "REVIEWING"
    assert ai.calls_made == 1


def test_parse_result_is_cached_until_forced(store, cv_file):
    ai = StubAIClient()
    pipeline = _pipeline(store, ai)
    resume, _ = pipeline.submit_upload(cv_file, job_posting_id="job-backend")

    async def run():
        await pipeline.run_until_idle()
        again = pipeline.enqueue_parse(resume.id, str(cv_file), "job-backend")
        await pipeline.run_until_idle()
        assert pipeline.get_job(again.job_id).result["cached"] is True
        assert ai.calls_made == 1

        pipeline.reparse(resume.id)
        await pipeline.run_until_idle()

    asyncio.run(run())

    assert ai.calls_made == 2
    assert store.get_resume(resume.id).state == ResumeState.ANALYZED


def test_sparse_text_fails_without_calling_the_ai(store, tmp_path):
    path = tmp_path / "short.txt"
    path.write_text(" ".join(["experience"] * 40), encoding="utf-8")
    ai = StubAIClient()
    pipeline = _pipeline(store, ai)

    resume, handle = pipeline.submit_upload(path, job_posting_id="job-backend")
    asyncio.run(pipeline.run_until_idle())

    record = store.get_resume(resume.id)
    assert record.state == ResumeState.PARSE_FAILED
    assert record.parse_error == "Invalid CV text: Not enough words (< 50)"
    job = pipeline.get_job(handle.job_id)
    assert job.state == JobState.FAILED
    assert job.attempt == 1
    assert ai.calls_made == 0


def test_quota_exhaustion_is_terminal(store, cv_file):
    ai = StubAIClient([Exception("429 You exceeded your current quota (insufficient_quota)")])
    pipeline = _pipeline(store, ai)

    resume, handle = pipeline.submit_upload(cv_file, job_posting_id="job-backend")
    stats = asyncio.run(pipeline.run_until_idle())

    assert stats.quota_exhausted == 1
    assert pipeline.get_job(handle.job_id).state == JobState.QUOTA_EXHAUSTED
    record = store.get_resume(resume.id)
    assert record.state == ResumeState.PARSE_FAILED_QUOTA
    assert "insufficient_quota" in record.parse_error
    assert ai.calls_made == 1


def test_upstream_errors_use_the_job_retry_budget(store, cv_file):
    ai = StubAIClient([Exception("502 Bad Gateway")])
    pipeline = _pipeline(store, ai)

    resume, handle = pipeline.submit_upload(cv_file, job_posting_id="job-backend")
    asyncio.run(pipeline.run_until_idle())

    job = pipeline.get_job(handle.job_id)
    assert job.state == JobState.FAILED
    assert job.attempt == 3
    assert ai.calls_made == 3
    record = store.get_resume(resume.id)
    assert record.state == ResumeState.PARSE_FAILED
    assert record.parse_error == "502 Bad Gateway"


def test_transient_failure_recovers_on_retry(store, cv_file):
    ai = StubAIClient([Exception("connection reset by peer"), CANDIDATE_JSON])
    pipeline = _pipeline(store, ai)

    resume, handle = pipeline.submit_upload(cv_file, job_posting_id="job-backend")
    asyncio.run(pipeline.run_until_idle())

    assert pipeline.get_job(handle.job_id).attempt == 2
    assert store.get_resume(resume.id).state == ResumeState.ANALYZED


def test_inactive_posting_fails_analysis(store, cv_file):
    posting = store.find_job_posting("job-backend")
    posting.is_active = False
    store.save_job_posting(posting)
    pipeline = _pipeline(store, StubAIClient())

    resume, _ = pipeline.submit_upload(cv_file, job_posting_id="job-backend")
    stats = asyncio.run(pipeline.run_until_idle())

    record = store.get_resume(resume.id)
    assert record.state == ResumeState.ANALYSIS_FAILED
    assert record.analysis_error == "Job is no longer active"
    assert record.is_parsed and not record.is_analyzed
    assert (stats.completed, stats.failed) == (1, 1)


def _analyze_job(pipeline):
    return next(job for job in pipeline.queue.jobs() if job.kind == JobKind.ANALYZE)


@pytest.mark.parametrize(
    "end_date",
    [datetime(2020, 1, 1, tzinfo=timezone.utc), datetime(2020, 1, 1)],
    ids=["aware", "naive"],
)
def test_expired_posting_fails_analysis_without_retrying(store, cv_file, end_date):
    posting = store.find_job_posting("job-backend")
    posting.end_date = end_date
    store.save_job_posting(posting)
    pipeline = _pipeline(store, StubAIClient())

    resume, _ = pipeline.submit_upload(cv_file, job_posting_id="job-backend")
    stats = asyncio.run(pipeline.run_until_idle())

    record = store.get_resume(resume.id)
    assert record.state == ResumeState.ANALYSIS_FAILED
    assert record.analysis_error == "Job posting has expired"
    analyze_job = _analyze_job(pipeline)
    assert analyze_job.state == JobState.FAILED
    assert analyze_job.attempt == 1
    assert (stats.completed, stats.failed) == (1, 1)


def test_posting_with_naive_future_end_date_is_analyzed(store, cv_file):
    posting = store.find_job_posting("job-backend")
    posting.end_date = datetime(2099, 1, 1)
    store.save_job_posting(posting)
    pipeline = _pipeline(store, StubAIClient())

    resume, _ = pipeline.submit_upload(cv_file, job_posting_id="job-backend")
    asyncio.run(pipeline.run_until_idle())

    assert store.get_resume(resume.id).state == ResumeState.ANALYZED
    assert _analyze_job(pipeline).attempt == 1


def test_upload_without_posting_stops_after_parse(store, cv_file):
    pipeline = _pipeline(store, StubAIClient())

    resume, _ = pipeline.submit_upload(cv_file)
    stats = asyncio.run(pipeline.run_until_idle())

    assert stats.total == 1
    assert store.get_resume(resume.id).state == ResumeState.PARSED


def test_structured_profile_goes_straight_to_analysis(store):
    ai = StubAIClient()
    pipeline = _pipeline(store, ai)
    profile = ParsedCandidateData(
        skills=["Expert NodeJS", "MongoDB", "Kubernetes"],
        years_of_experience=8,
        education=[{"degree": "Master of Science"}],
    )

    resume, handle = pipeline.submit_profile(profile, job_posting_id="job-backend")
    assert handle.kind == JobKind.ANALYZE
    asyncio.run(pipeline.run_until_idle())

    record = store.get_resume(resume.id)
    assert record.state == ResumeState.ANALYZED
    assert record.ai_analysis.skills_match_percentage == 80
    assert ai.calls_made == 0


def test_sweep_requeues_stalled_analyses(store):
    pipeline = _pipeline(store, StubAIClient())
    stalled = pipeline.states.register_profile(ParsedCandidateData(skills=["MongoDB"]), job_posting_id="job-backend")

    handles = pipeline.sweep_stalled_analyses(grace=timedelta(0))
    assert [h.resume_id for h in handles] == [stalled.id]
    # Already queued, so a second sweep adds nothing
    assert pipeline.sweep_stalled_analyses(grace=timedelta(0)) == []

    asyncio.run(pipeline.run_until_idle())
    assert store.get_resume(stalled.id).state == ResumeState.ANALYZED


def test_analysis_of_unparsed_resume_is_refused(store, cv_file):
    pipeline = _pipeline(store, StubAIClient())
    resume = pipeline.states.register_upload(cv_file, job_posting_id="job-backend")

    with pytest.raises(ResumeNotParsed):
        pipeline.enqueue_analyze(resume.id, "job-backend")
    assert pipeline.get_queue_stats().total == 0


def test_workers_drain_on_stop(store, cv_file):
    pipeline = _pipeline(store, StubAIClient())

    async def run():
        await pipeline.start()
        resume, _ = pipeline.submit_upload(cv_file, job_posting_id="job-backend")
        await pipeline.stop(drain=True)
        return resume

    resume = asyncio.run(run())

    assert store.get_resume(resume.id).state == ResumeState.ANALYZED
    assert pipeline.get_queue_stats().completed == 2


def test_pipeline_test_mode(store, cv_file, monkeypatch):
    monkeypatch.setenv("RESUMEFLOW_TEST_MODE", "1")
    monkeypatch.setenv("RESUMEFLOW_ENV", "test")

    pipeline = ResumePipeline.from_config(load_config(), store=store)
    resume, _ = pipeline.submit_upload(cv_file, job_posting_id="job-backend")
    asyncio.run(pipeline.run_until_idle())

    record = store.get_resume(resume.id)
    assert record.state == ResumeState.ANALYZED
    assert "Kubernetes" in record.parsed_data.skills


def test_worker_picks_up_jobs_submitted_by_another_pipeline(store, cv_file):
    worker = _pipeline(store, StubAIClient())
    submitter = _pipeline(store, StubAIClient())

    own, _ = worker.submit_upload(cv_file, job_posting_id="job-backend")
    other, _ = submitter.submit_upload(cv_file, job_posting_id="job-backend")
    stats = asyncio.run(worker.run_until_idle())

    assert store.get_resume(own.id).state == ResumeState.ANALYZED
    assert store.get_resume(other.id).state == ResumeState.ANALYZED
    assert (stats.completed, stats.total) == (4, 4)
    assert submitter.get_queue_stats().completed == 4


def test_worker_process_sees_cli_submissions(store, cv_file):
    repo_root = Path(__file__).resolve().parents[2]
    worker = _pipeline(store, StubAIClient())
    own, _ = worker.submit_upload(cv_file, job_posting_id="job-backend")

    env = {
        **os.environ,
        "RESUMEFLOW_ENV": "test",
        "RESUMEFLOW_TEST_MODE": "1",
        "RESUMEFLOW_STORAGE__OBJECT_STORE_DIR": str(store.base_dir),
        "PYTHONIOENCODING": "utf-8",
    }
    submitted = subprocess.run(
        [
            sys.executable, "-m", "resumeflow.cli.main", "submit",
            "--file", str(cv_file), "--posting", "job-backend", "--resume-id", "res-from-cli",
        ],
        cwd=repo_root,
        env=env,
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert submitted.returncode == 0, submitted.stdout + submitted.stderr

    stats = asyncio.run(worker.run_until_idle())

    assert store.get_resume(own.id).state == ResumeState.ANALYZED
    assert store.get_resume("res-from-cli").state == ResumeState.ANALYZED
    assert (stats.completed, stats.failed, stats.total) == (4, 0, 4)
