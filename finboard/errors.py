"""Exception hierarchy for the analytics backend"""


class FinboardError(Exception):
    """Base exception for finboard errors"""
    pass


class NotFoundError(FinboardError):
    """Requested tenant or record does not exist"""
    pass


class ValidationError(FinboardError):
    """Input or state rejected by a business rule"""
    pass


class TransientStoreError(FinboardError):
    """Cache or queue backend unreachable"""
    pass


class ComputationError(FinboardError):
    """Aggregation produced an unexpected shape"""
    pass


class JobRetryExhausted(FinboardError):
    """A queued job failed on its final attempt"""

    def __init__(self, job_id: str, attempts: int, reason: str):
        super().__init__(f"Job {job_id} failed after {attempts} attempts: {reason}")
        self.job_id = job_id
        self.attempts = attempts
        self.reason = reason
