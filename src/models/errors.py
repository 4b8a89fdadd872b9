"""Exception hierarchy for the orchestrator.

Budget rejections and failed scrape attempts are not exceptions; they are
returned as values. Only admission, configuration and persistence problems
are raised.
"""

from typing import Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class ConfigurationError(OrchestratorError):
    """Malformed vendor or orchestrator configuration."""


class QueueFullError(OrchestratorError):
    """Job queue is at capacity."""

    def __init__(self, max_size: int):
        super().__init__(f"Job queue is full (max_queue_size={max_size})")
        self.max_size = max_size


class JobNotFoundError(OrchestratorError):
    """No job with the given id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class PersistenceError(OrchestratorError):
    """A write to the backing store failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class BudgetWriteError(PersistenceError):
    """Budget usage could not be persisted after an allocation."""


class BatchStartError(OrchestratorError):
    """A scheduled batch could not start at all."""


class VendorNotFoundError(OrchestratorError):
    """No vendor with the given id."""

    def __init__(self, vendor_id: str):
        super().__init__(f"Vendor {vendor_id} not found")
        self.vendor_id = vendor_id


class JobStateError(OrchestratorError):
    """Operation not valid for the job's current status."""

    def __init__(self, job_id: str, status: str, operation: str):
        super().__init__(f"Cannot {operation} job {job_id} in status {status}")
        self.job_id = job_id
        self.status = status
