"""Résumé state machine transitions and flag consistency."""

import pytest

from resumeflow.core.errors import InvalidTransition, ResumeNotParsed
from resumeflow.core.matching.engine import calculate_match
from resumeflow.core.models.candidate import ParsedCandidateData
from resumeflow.core.models.enums import ResumeState
from resumeflow.core.models.job_posting import JobRequirements
from resumeflow.core.state.resume_state import ResumeStateController, can_transition
from resumeflow.core.storage.object_store import ObjectStore

PARSED = ParsedCandidateData(skills=["Python", "Docker"], years_of_experience=6)


@pytest.fixture
def controller(tmp_path):
    return ResumeStateController(ObjectStore(tmp_path / "store"))


def _match():
    return calculate_match(PARSED, JobRequirements(required_skills=["Python"], level="SENIOR"))


def test_happy_path_keeps_flags_consistent(controller):
    resume = controller.register_upload("/data/cv.pdf", job_posting_id="job1")
    assert resume.state == ResumeState.UPLOADED

    controller.mark_parsing(resume.id)
    parsed = controller.mark_parsed(resume.id, PARSED)
    assert parsed.is_parsed and not parsed.is_analyzed
    assert parsed.parsed_data.skills == ["Python", "Docker"]

    controller.mark_analyzing(resume.id)
    analyzed = controller.mark_analyzed(resume.id, _match())
    assert analyzed.state == ResumeState.ANALYZED
    assert analyzed.is_parsed and analyzed.is_analyzed
    assert analyzed.priority == analyzed.ai_analysis.priority
    assert [h.state for h in analyzed.history] == ["UPLOADED", "PARSING", "PARSED", "ANALYZING", "ANALYZED"]


def test_parse_failure_records_reason(controller):
    resume = controller.register_upload("/data/cv.pdf")
    controller.mark_parsing(resume.id)

    failed = controller.mark_parse_failed(resume.id, "Invalid CV text: Text too short (< 100 characters)")

    assert failed.state == ResumeState.PARSE_FAILED
    assert not failed.is_parsed
    assert failed.parse_error.startswith("Invalid CV text")
    assert failed.history[-1].note == failed.parse_error


def test_quota_failures_have_their_own_states(controller):
    resume = controller.register_upload("/data/cv.pdf")
    controller.mark_parsing(resume.id)
    assert controller.mark_parse_failed(resume.id, "quota", quota=True).state == ResumeState.PARSE_FAILED_QUOTA

    profile = controller.register_profile(PARSED)
    controller.mark_analyzing(profile.id)
    failed = controller.mark_analysis_failed(profile.id, "quota", quota=True)
    assert failed.state == ResumeState.ANALYSIS_FAILED_QUOTA
    assert failed.is_parsed and not failed.is_analyzed


def test_illegal_transitions_are_rejected(controller):
    resume = controller.register_upload("/data/cv.pdf")

    with pytest.raises(InvalidTransition):
        controller.mark_analyzing(resume.id)
    with pytest.raises(InvalidTransition):
        controller.mark_parsed(resume.id, PARSED)

    assert not can_transition(ResumeState.PARSE_FAILED, ResumeState.ANALYZING)
    assert can_transition("PARSE_FAILED", "PARSING")
    assert can_transition(ResumeState.PARSING, ResumeState.PARSING)


def test_analysis_requires_parsed_data(controller):
    resume = controller.register_upload("/data/cv.pdf")
    with pytest.raises(ResumeNotParsed) as exc:
        controller.ensure_can_analyze(resume.id)
    assert str(exc.value) == "Resume must be parsed before analysis"

    controller.mark_parsing(resume.id)
    controller.mark_parse_failed(resume.id, "broken")
    with pytest.raises(ResumeNotParsed):
        controller.ensure_can_analyze(resume.id)


def test_reparse_clears_previous_analysis(controller):
    resume = controller.register_profile(PARSED, job_posting_id="job1", resume_id="res1")
    controller.mark_analyzing(resume.id)
    controller.mark_analyzed(resume.id, _match())

    controller.mark_parsing(resume.id)
    reparsed = controller.mark_parsed(resume.id, ParsedCandidateData(skills=["Go"]))

    assert reparsed.state == ResumeState.PARSED
    assert reparsed.is_parsed and not reparsed.is_analyzed
    assert reparsed.ai_analysis is None and reparsed.priority is None


def test_stalled_analyses_lists_parsed_only(controller):
    stalled = controller.register_profile(PARSED, job_posting_id="job1")
    done = controller.register_profile(PARSED, job_posting_id="job1")
    controller.mark_analyzing(done.id)
    controller.mark_analyzed(done.id, _match())
    controller.register_upload("/data/cv.pdf")

    assert [r.id for r in controller.stalled_analyses()] == [stalled.id]
