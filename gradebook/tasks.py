"""
Celery tasks for gradebook app.
Runs the grade record consistency sweep and assessment type cascades in the
background, retrying on transient database failures.
"""
import logging

from celery import shared_task
from django.db import DatabaseError

from . import config
from .exceptions import CascadeIncomplete


logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=config.TASK_MAX_RETRIES,
    default_retry_delay=config.TASK_RETRY_DELAY,
)
def sweep_grade_records_task(self, dry_run=False):
    """
    Check every grade record and repair the inconsistent ones.

    Retries with exponential backoff if the database is unavailable.
    Records that fail individually are reported in the result, not retried.
    """
    from .cascade import sweep_orphaned_entries

    try:
        return sweep_orphaned_entries(dry_run=dry_run)
    except DatabaseError as e:
        logger.warning(f"Grade record sweep interrupted: {e}")
        raise self.retry(exc=e, countdown=config.TASK_RETRY_DELAY * (2 ** self.request.retries))


@shared_task(
    bind=True,
    max_retries=config.TASK_MAX_RETRIES,
    default_retry_delay=config.TASK_RETRY_DELAY,
)
def cascade_remove_task(self, assessment_type_id):
    """
    Remove an assessment type's scores from every grade record.

    An incomplete cascade is retried; records already updated are left
    alone on the next attempt because they no longer reference the type.
    """
    from .cascade import cascade_remove

    try:
        affected = cascade_remove(assessment_type_id)
    except (CascadeIncomplete, DatabaseError) as e:
        logger.warning(f"Cascade for assessment type {assessment_type_id} incomplete: {e}")
        raise self.retry(exc=e, countdown=config.TASK_RETRY_DELAY * (2 ** self.request.retries))

    return {'success': True, 'assessment_type_id': assessment_type_id, 'affected': affected}
