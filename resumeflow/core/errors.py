"""Error taxonomy for the résumé pipeline.

Every error carries a ``retryable`` flag read by the job layer: retryable
errors consume the job's attempt budget, the rest fail the job outright.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = False


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------


class UnsupportedFormat(PipelineError):
    """File extension is not one of the supported résumé formats."""

    def __init__(self, extension: str):
        super().__init__(f"Unsupported file type: {extension}")
        self.extension = extension


class ExtractionFailure(PipelineError):
    """The file could not be turned into text."""


class FileMissing(ExtractionFailure):
    """The résumé file does not exist in storage."""


class InvalidText(PipelineError):
    """Extracted text failed validation."""

    def __init__(self, reason: str):
        super().__init__(f"Invalid CV text: {reason}")
        self.reason = reason


class TextTooSparse(InvalidText):
    """Too few characters or words to parse reliably."""


class TextTooLong(InvalidText):
    """Text exceeds the cost/latency guard."""


# ---------------------------------------------------------------------------
# AI client
# ---------------------------------------------------------------------------


class RateLimited(PipelineError):
    """Upstream quota or rate limit hit.

    ``retry_after_ms`` holds an explicit upstream hint when one was given.
    ``quota_exhausted`` marks a hard quota wall (as opposed to a per-minute
    throttle); the job layer stops retrying those.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        retry_after_ms: int | None = None,
        quota_exhausted: bool = False,
    ):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms
        self.quota_exhausted = quota_exhausted


class InvalidResponse(PipelineError):
    """Upstream answered with something that is not the agreed JSON shape."""


class UpstreamError(PipelineError):
    """Any other upstream failure (network, 5xx, bad request)."""

    retryable = True


# ---------------------------------------------------------------------------
# Analysis preconditions
# ---------------------------------------------------------------------------


class ResumeNotFound(PipelineError):
    def __init__(self, resume_id: str):
        super().__init__(f"Resume not found: {resume_id}")
        self.resume_id = resume_id


class ResumeNotParsed(PipelineError):
    def __init__(self, resume_id: str):
        super().__init__("Resume must be parsed before analysis")
        self.resume_id = resume_id


class JobPostingNotFound(PipelineError):
    def __init__(self, job_posting_id: str):
        super().__init__(f"Job not found: {job_posting_id}")
        self.job_posting_id = job_posting_id


class JobInactive(PipelineError):
    def __init__(self, job_posting_id: str):
        super().__init__("Job is no longer active")
        self.job_posting_id = job_posting_id


class JobExpired(PipelineError):
    def __init__(self, job_posting_id: str):
        super().__init__("Job posting has expired")
        self.job_posting_id = job_posting_id


# ---------------------------------------------------------------------------
# Queue and state machine
# ---------------------------------------------------------------------------


class AttemptsExhausted(PipelineError):
    """A job used its whole retry budget; wraps the last error message."""

    def __init__(self, attempts: int, last_error: str):
        super().__init__(last_error)
        self.attempts = attempts
        self.last_error = last_error


class InvalidTransition(PipelineError):
    def __init__(self, resume_id: str, current: str, target: str):
        super().__init__(f"Resume {resume_id} cannot move from {current} to {target}")
        self.resume_id = resume_id
        self.current = current
        self.target = target


def is_retryable(error: BaseException) -> bool:
    """Whether the job layer may spend another attempt on ``error``.

    Exceptions outside the taxonomy (I/O errors, bugs) are treated as transient.
    """
    if isinstance(error, PipelineError):
        return error.retryable
    return True


def is_quota_exhausted(error: BaseException) -> bool:
    return isinstance(error, RateLimited) and error.quota_exhausted
