"""
Extraction error taxonomy.
Extractors raise these; the worker classifies them into a code and a retryable flag.
"""

from typing import Optional

from taxhelper.models.enums import ErrorCode


class ExtractionError(Exception):
    """Base class for extraction failures."""

    code: str = ErrorCode.UNKNOWN_ERROR.value
    retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None, retryable: Optional[bool] = None):
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)


class RateLimitedError(ExtractionError):
    code = ErrorCode.RATE_LIMITED.value
    retryable = True

    def __init__(self, message: str = "Rate limit exceeded", retry_after_seconds: Optional[float] = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class BudgetExceededError(ExtractionError):
    code = ErrorCode.BUDGET_EXCEEDED.value
    retryable = False

    def __init__(self, user_id: str, budget_usd: float, used_usd: float):
        self.user_id = user_id
        self.budget_usd = budget_usd
        self.used_usd = used_usd
        super().__init__(
            f"Daily budget exceeded for user {user_id}: ${used_usd:.2f}/${budget_usd:.2f}"
        )


class ExtractionTimeoutError(ExtractionError):
    code = ErrorCode.TIMEOUT.value
    retryable = True

    def __init__(self, message: str = "Extraction request timed out"):
        super().__init__(message)


class ParsingError(ExtractionError):
    code = ErrorCode.PARSING_ERROR.value
    retryable = False

    def __init__(self, message: str, raw_response: Optional[str] = None):
        self.raw_response = raw_response
        super().__init__(message)


def classify_error(error: BaseException) -> tuple[str, bool]:
    """Map an exception to (error_code, retryable)."""
    if isinstance(error, ExtractionError):
        return error.code, error.retryable
    if isinstance(error, TimeoutError):
        return ErrorCode.TIMEOUT.value, True
    return ErrorCode.UNKNOWN_ERROR.value, False


def format_job_error(code: str, message: str) -> str:
    """Structured last_error string stored on the job."""
    return f"[{code}] {message}"
