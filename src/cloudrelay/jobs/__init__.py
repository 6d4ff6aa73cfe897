"""Scheduler-agnostic upload and token refresh jobs."""

from cloudrelay.jobs.base import JobOutcome, JobStatus
from cloudrelay.jobs.refresh import RefreshTokenJob
from cloudrelay.jobs.upload import UploadJob

__all__ = ["JobOutcome", "JobStatus", "RefreshTokenJob", "UploadJob"]
