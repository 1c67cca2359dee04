"""
Job definitions and the per-tick runner for notification jobs.
"""

from .job_table import JobConfigurationError, JobTable, load_job_table
from .notification_job import NotificationJobError, NotificationJobRunner

__all__ = [
    "JobConfigurationError",
    "JobTable",
    "load_job_table",
    "NotificationJobError",
    "NotificationJobRunner",
]
