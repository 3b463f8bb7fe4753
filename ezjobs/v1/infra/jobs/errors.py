"""Errors raised by the job system."""


class JobError(Exception):
    """Base class for job system errors."""


class UnknownJobTypeError(JobError):
    """A job type that the target queue does not accept."""

    def __init__(self, queue_name: str, job_type: str):
        self.queue_name = queue_name
        self.job_type = job_type
        super().__init__(f"Queue '{queue_name}' does not accept job type '{job_type}'")


class JobStoreError(JobError):
    """The job store could not complete an operation."""


class StalledJobError(JobError):
    """An active job missed its heartbeat lease."""

    def __init__(self, lease_timeout_s: int):
        self.lease_timeout_s = lease_timeout_s
        super().__init__(f"Job stalled: no heartbeat for more than {lease_timeout_s}s")


class WorkerShutdownError(JobError):
    """The worker stopped before the handler finished."""
