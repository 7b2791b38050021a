"""Background job scheduling."""

from session_gateway.infra.jobs.scheduler import STORE_FLUSH_JOB_ID, JobScheduler

__all__ = ["JobScheduler", "STORE_FLUSH_JOB_ID"]
