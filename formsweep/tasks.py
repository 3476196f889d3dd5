"""
Celery Tasks - scheduled cleanup of unsubmitted public forms

Run the worker and the daily schedule with:
    celery -A formsweep.tasks worker --beat --schedule=/tmp/celerybeat-schedule
"""

from celery import Celery
from celery.schedules import crontab
import os
import structlog

from formsweep.core.exceptions import ConfigurationError
from formsweep.core.logging import configure_logging
from formsweep.database import get_session_factory
from formsweep.services.job_status import JobDescriptor, SqlJobStatusReporter, run_cleanup_job

configure_logging()

# Celery app configuration
app = Celery('formsweep')
app.conf.broker_url = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
app.conf.result_backend = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
app.conf.task_serializer = 'json'
app.conf.result_serializer = 'json'
app.conf.accept_content = ['json']
app.conf.timezone = 'UTC'
app.conf.enable_utc = True

logger = structlog.get_logger("celery_tasks")


@app.task(name='tasks.cleanup_unsubmitted_forms')
def cleanup_unsubmitted_forms(run_id: str = None):
    """
    Periodic task removing public form sessions abandoned for longer than
    the retention window.

    Returns:
        {
            "run_id": str,
            "status": "completed" | "failed",
            "summary": {...},
            "error": str | None
        }
    """
    job = JobDescriptor(run_id=run_id) if run_id else JobDescriptor()
    logger.info("cleanup_task_started", run_id=job.run_id)

    try:
        session_factory = get_session_factory()
    except ConfigurationError as e:
        # No store means no status row to write either
        logger.error("cleanup_failed", run_id=job.run_id, stage="configuration", error=str(e))
        raise
    reporter = SqlJobStatusReporter(session_factory, job_name=job.job_name)

    result = run_cleanup_job(job, reporter, session_factory=session_factory)

    logger.info(
        "cleanup_task_finished",
        run_id=job.run_id,
        status=result.status,
        candidates_seen=result.summary.candidates_seen,
        errors=result.summary.errors,
    )
    return result.model_dump(mode="json")


# Celery Beat schedule (periodic tasks)
app.conf.beat_schedule = {
    'cleanup-unsubmitted-forms-daily': {
        'task': 'tasks.cleanup_unsubmitted_forms',
        'schedule': crontab(minute=0, hour=0),  # Every day at midnight UTC
    },
}
