"""Error hierarchy for scrape and fan-out retry classification.

The task queue owns retries. Anything deriving from TransientError is safe to
hand back to the queue for another attempt; PermanentError means a retry with
the same input will fail the same way and someone should look at it.

Example usage with tenacity:
    @retry(retry=retry_if_exception_type(TransientError), stop=stop_after_attempt(2))
    def publish(jobs):
        ...
"""


class ScrapingError(Exception):
    """Base exception for all schedule sync errors."""

    pass


class TransientError(ScrapingError):
    """Temporary failure that may succeed on retry."""

    pass


class NetworkError(TransientError):
    """Transport failure talking to the portal (DNS, connect, timeout)."""

    pass


class HttpError(TransientError):
    """Portal answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(TransientError):
    """Batch commit to the schedule store failed.

    Nothing from the invocation was written; the whole scrape must be retried.
    """

    pass


class PublishError(TransientError):
    """Task queue rejected or did not acknowledge a batch of jobs."""

    pass


class PermanentError(ScrapingError):
    """Failure that won't succeed on retry."""

    pass


class JobValidationError(PermanentError):
    """Job payload is missing required fields or has malformed values."""

    pass


class NotFoundError(PermanentError):
    """No stored credential for the requested student."""

    pass


class AuthenticationError(PermanentError):
    """Session expired or invalid credentials - need re-authentication.

    Requires human intervention or a fresh credential capture, cannot be fixed
    by retry.
    """

    pass


class SessionInvalidError(AuthenticationError):
    """Portal served a robot/verification page instead of the requested one."""

    pass


class ParseError(ScrapingError):
    """A single schedule tile could not be parsed.

    Raised and caught inside the parser; only increments a skip counter.
    """

    pass
