"""
Domain exceptions for the job lifecycle and the credit ledger.

Routes translate these into HTTP errors; background tasks log them and
record the failure on the job instead of letting them escape.
"""


class AppError(Exception):
    """Base class for all Realtor360 domain errors."""


class NotFound(AppError):
    """A record was not found (or belongs to someone else)."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class JobNotFound(NotFound):
    """Unknown or evicted job id."""

    def __init__(self, kind: str, job_id: str):
        self.kind = kind
        super().__init__(kind, job_id)


class InsufficientCredits(AppError):
    """The balance does not cover the requested amount. Nothing was mutated."""

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class DispatchRejected(AppError):
    """The AI provider refused the request or could not be reached."""

    def __init__(self, reason: str, status_code: int | None = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(reason)


class InvalidTransition(AppError):
    """A status change that the job state machine does not allow."""

    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id} cannot move from {current} to {requested}")


class InvalidImage(AppError, ValueError):
    """Submitted image data could not be decoded."""
