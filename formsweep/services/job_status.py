"""
Job status reporting - the only place the scheduler's run table is written
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional
import uuid

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from formsweep.core.config import CleanupSettings, load_settings
from formsweep.core.exceptions import ConfigurationError, JobStatusError
from formsweep.database import get_session_factory, session_scope
from formsweep.models import JobScheduleQueue
from formsweep.services.cleanup_service import FormCleanupService, RunResult

logger = structlog.get_logger("form_cleanup.job_status")

JOB_NAME = "cleanup_unsubmitted_forms"


class JobDescriptor(BaseModel):
    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    job_name: str = JOB_NAME


class JobStatusReporter(ABC):
    @abstractmethod
    def report(self, result: RunResult) -> None:
        """Record the terminal status of a run."""


class SqlJobStatusReporter(JobStatusReporter):
    """Writes run outcomes to job_schedule_queue."""

    def __init__(self, session_factory: sessionmaker, job_name: str = JOB_NAME):
        self.session_factory = session_factory
        self.job_name = job_name

    def report(self, result: RunResult) -> None:
        now = datetime.now(timezone.utc)
        try:
            with session_scope(self.session_factory) as db:
                job = db.get(JobScheduleQueue, result.run_id)
                if job is None:
                    # Manual runs have no queue row yet
                    job = JobScheduleQueue(id=result.run_id, job_name=self.job_name, created_at=now)
                    db.add(job)
                job.status = result.status
                job.summary = result.summary.model_dump(mode="json")
                job.error = result.error
                job.updated_at = now
                job.completed_at = now
        except SQLAlchemyError as e:
            logger.error("job_status_update_failed", run_id=result.run_id, status=result.status, error=str(e))
            raise JobStatusError(f"Could not record status for run {result.run_id}: {e}", original_error=e)

        logger.info("job_status_updated", run_id=result.run_id, status=result.status)


def run_cleanup_job(
    job: JobDescriptor,
    reporter: JobStatusReporter,
    session_factory: Optional[sessionmaker] = None,
    settings: Optional[CleanupSettings] = None,
    now: Optional[datetime] = None,
) -> RunResult:
    """
    Entry point invoked by the scheduler.

    The reporter is called exactly once whatever happens. Configuration and
    selection problems come back as a failed result; anything unexpected is
    reported as failed and re-raised for the worker's error monitoring.
    """
    try:
        settings = settings or load_settings()
        session_factory = session_factory or get_session_factory()
        service = FormCleanupService(session_factory, settings)
        result = service.run(job.run_id, now=now)
    except ConfigurationError as e:
        logger.error("cleanup_failed", run_id=job.run_id, stage="configuration", error=str(e))
        result = RunResult.failure(job.run_id, str(e))
    except Exception as e:
        logger.error("cleanup_failed", run_id=job.run_id, stage="unexpected", error=str(e), exc_info=True)
        reporter.report(RunResult.failure(job.run_id, str(e)))
        raise

    reporter.report(result)
    return result
