"""Error taxonomy shared by the pipeline calls and the session orchestrator."""

from typing import Optional


class InsightError(Exception):
    """Base class for every failure the pipeline reports."""


class PreconditionNotMet(InsightError):
    """A required input (image, API key, webhook URL, extraction) is missing."""


class NetworkError(InsightError):
    pass


class UpstreamError(InsightError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitExhausted(InsightError):
    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class MalformedResponse(InsightError):
    """The payload could not be parsed into the expected structured shape."""


class StageBusy(PreconditionNotMet):
    """The requested stage already has a call in flight."""
