"""Scrape job queue."""

from .factory import build_job
from .job_queue import EXPIRED_REASON, JobQueue

__all__ = ["EXPIRED_REASON", "JobQueue", "build_job"]
