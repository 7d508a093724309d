"""Résumé processing state machine.

UPLOADED -> PARSING -> PARSED | PARSE_FAILED | PARSE_FAILED_QUOTA
PARSED -> ANALYZING -> ANALYZED | ANALYSIS_FAILED | ANALYSIS_FAILED_QUOTA

Failed states are left only by an explicit re-parse or re-analyze. The
controller is the only writer of ``state``, ``is_parsed`` and
``is_analyzed``.
"""

from pathlib import Path
from typing import Any

from ..errors import InvalidTransition, ResumeNotParsed
from ..models.base import generate_id
from ..models.candidate import ParsedCandidateData
from ..models.enums import ResumeState
from ..models.match_result import MatchResult
from ..models.resume import ResumeRecord, StateChange
from ..storage.object_store import ObjectStore
from ...observability.logger import get_logger

logger = get_logger(__name__)

S = ResumeState

_AFTER_PARSE = frozenset({S.PARSED, S.ANALYZED, S.ANALYSIS_FAILED, S.ANALYSIS_FAILED_QUOTA})

TRANSITIONS: dict[ResumeState, frozenset[ResumeState]] = {
    S.UPLOADED: frozenset({S.PARSING}),
    # Self-loops cover job retries and crash recovery
    S.PARSING: frozenset({S.PARSING, S.PARSED, S.PARSE_FAILED, S.PARSE_FAILED_QUOTA}),
    S.PARSED: frozenset({S.PARSING, S.ANALYZING}),
    S.PARSE_FAILED: frozenset({S.PARSING}),
    S.PARSE_FAILED_QUOTA: frozenset({S.PARSING}),
    S.ANALYZING: frozenset({S.ANALYZING, S.ANALYZED, S.ANALYSIS_FAILED, S.ANALYSIS_FAILED_QUOTA}),
    S.ANALYZED: frozenset({S.PARSING, S.ANALYZING}),
    S.ANALYSIS_FAILED: frozenset({S.PARSING, S.ANALYZING}),
    S.ANALYSIS_FAILED_QUOTA: frozenset({S.PARSING, S.ANALYZING}),
}


def can_transition(current: ResumeState | str, target: ResumeState | str) -> bool:
    return ResumeState(target) in TRANSITIONS[ResumeState(current)]


class ResumeStateController:
    """Owns résumé state and persists each stage's outcome."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def get(self, resume_id: str) -> ResumeRecord:
        return self.store.get_resume(resume_id)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def register_upload(
        self,
        file_path: str | Path,
        job_posting_id: str | None = None,
        resume_id: str | None = None,
    ) -> ResumeRecord:
        resume = ResumeRecord(
            id=resume_id or generate_id("res_"),
            file_path=str(file_path),
            job_posting_id=job_posting_id,
            state=ResumeState.UPLOADED,
            history=[StateChange(state=ResumeState.UPLOADED, note="uploaded")],
        )
        self.store.save_resume(resume)
        logger.info("resume_registered", resume_id=resume.id, job_posting_id=job_posting_id)
        return resume

    def register_profile(
        self,
        parsed_data: ParsedCandidateData,
        job_posting_id: str | None = None,
        resume_id: str | None = None,
    ) -> ResumeRecord:
        """Create a résumé from an already structured profile; it starts PARSED."""
        resume = ResumeRecord(
            id=resume_id or generate_id("res_"),
            job_posting_id=job_posting_id,
            state=ResumeState.PARSED,
            is_parsed=True,
            parsed_data=parsed_data,
            history=[StateChange(state=ResumeState.PARSED, note="structured profile submitted")],
        )
        self.store.save_resume(resume)
        logger.info("resume_profile_registered", resume_id=resume.id, job_posting_id=job_posting_id)
        return resume

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _transition(
        self,
        resume_id: str,
        target: ResumeState,
        patch: dict[str, Any] | None = None,
        note: str | None = None,
    ) -> ResumeRecord:
        resume = self.get(resume_id)
        current = ResumeState(resume.state)
        if not can_transition(current, target):
            raise InvalidTransition(resume_id, current.value, target.value)

        history = list(resume.history)
        if current != target:
            history.append(StateChange(state=target, note=note))
        updated = self.store.update_resume(
            resume_id,
            {**(patch or {}), "state": target, "history": history},
        )
        if current != target:
            logger.info("resume_state_changed", resume_id=resume_id, previous=current.value, state=target.value)
        return updated

    def mark_parsing(self, resume_id: str) -> ResumeRecord:
        return self._transition(resume_id, S.PARSING)

    def mark_parsed(self, resume_id: str, parsed_data: ParsedCandidateData) -> ResumeRecord:
        # New parsed data invalidates any earlier analysis
        return self._transition(
            resume_id,
            S.PARSED,
            {
                "parsed_data": parsed_data,
                "is_parsed": True,
                "parse_error": None,
                "is_analyzed": False,
                "ai_analysis": None,
                "priority": None,
                "analysis_error": None,
            },
        )

    def mark_parse_failed(self, resume_id: str, error: str, quota: bool = False) -> ResumeRecord:
        target = S.PARSE_FAILED_QUOTA if quota else S.PARSE_FAILED
        return self._transition(
            resume_id,
            target,
            {"is_parsed": False, "is_analyzed": False, "parse_error": error},
            note=error,
        )

    def ensure_can_analyze(self, resume_id: str) -> ResumeRecord:
        """Refuse analysis requests for résumés that never reached PARSED."""
        resume = self.get(resume_id)
        if not resume.is_parsed or resume.parsed_data is None:
            raise ResumeNotParsed(resume_id)
        if ResumeState(resume.state) not in _AFTER_PARSE | {S.ANALYZING}:
            raise InvalidTransition(resume_id, ResumeState(resume.state).value, S.ANALYZING.value)
        return resume

    def mark_analyzing(self, resume_id: str) -> ResumeRecord:
        return self._transition(resume_id, S.ANALYZING)

    def mark_analyzed(self, resume_id: str, result: MatchResult) -> ResumeRecord:
        return self._transition(
            resume_id,
            S.ANALYZED,
            {
                "ai_analysis": result,
                "priority": result.priority,
                "is_analyzed": True,
                "analysis_error": None,
            },
        )

    def mark_analysis_failed(self, resume_id: str, error: str, quota: bool = False) -> ResumeRecord:
        target = S.ANALYSIS_FAILED_QUOTA if quota else S.ANALYSIS_FAILED
        return self._transition(
            resume_id,
            target,
            {"is_analyzed": False, "analysis_error": error},
            note=error,
        )

    def stalled_analyses(self) -> list[ResumeRecord]:
        """Résumés parsed successfully but never analyzed."""
        return [
            resume
            for resume in self.store.list_resumes()
            if resume.is_parsed
            and not resume.is_analyzed
            and ResumeState(resume.state) == S.PARSED
        ]
