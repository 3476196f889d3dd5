from .cleanup_service import FormCleanupService, RunResult, RunSummary, CandidateResult, CandidateOutcome
from .job_status import JobDescriptor, JobStatusReporter, SqlJobStatusReporter, run_cleanup_job

__all__ = [
    "FormCleanupService",
    "RunResult",
    "RunSummary",
    "CandidateResult",
    "CandidateOutcome",
    "JobDescriptor",
    "JobStatusReporter",
    "SqlJobStatusReporter",
    "run_cleanup_job"
]
