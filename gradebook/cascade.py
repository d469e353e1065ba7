"""
Cascading recalculation when assessment types are deleted or edited, and
the standing consistency sweep over all grade records.
"""
import logging

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction

from . import config
from . import ledger
from .exceptions import ConsistencyViolation, NotFoundError
from .models import AssessmentType, GradeRecord
from .signals import signals_disabled

logger = logging.getLogger(__name__)


def cascade_remove(assessment_type_id):
    """
    Remove an assessment type's scores from every grade record.

    Returns the number of grade records updated. Raises CascadeIncomplete
    if some records could not be updated.
    """
    if not assessment_type_id:
        raise ValidationError('Assessment type ID is required.', code='missing_data')

    affected = ledger.remove_entries_for_assessment(assessment_type_id)
    logger.info(f"Removed assessment type {assessment_type_id} from {affected} grade record(s)")
    return affected


def delete_assessment_type(assessment_type_id):
    """
    Delete an assessment type after pruning its scores.

    Both steps share one transaction: if the cascade is incomplete the
    assessment type is kept. Returns the number of grade records updated.
    """
    with transaction.atomic():
        try:
            assessment_type = AssessmentType.objects.select_for_update().get(pk=assessment_type_id)
        except AssessmentType.DoesNotExist:
            raise NotFoundError('AssessmentType', assessment_type_id)

        affected = cascade_remove(assessment_type.pk)

        with signals_disabled():
            assessment_type.delete()

    logger.info(f"Deleted assessment type {assessment_type_id} ({affected} grade record(s) updated)")
    return affected


def recalculate_for_assessment(assessment_type_id):
    """Recompute the sum of every record that holds a score for this assessment type."""
    record_ids = [record.pk for record in ledger.find_all_by_assessment(assessment_type_id)]

    updated = 0
    for record_id in record_ids:
        try:
            if ledger.recalculate_record(record_id) is not None:
                updated += 1
        except DatabaseError as e:
            logger.error(f"Error recalculating grade record {record_id}: {e}")

    logger.debug(f"Recalculated {updated} grade record(s) for assessment type {assessment_type_id}")
    return updated


def sweep_orphaned_entries(dry_run=False):
    """
    Check every grade record and repair the inconsistent ones.

    A record is inconsistent when it holds scores for assessment types that
    no longer exist, more than one score for an assessment type, or a
    final score that differs from the sum of its scores. Safe to rerun.

    Returns:
        dict: {
            'examined': int,
            'inconsistent': int,
            'repaired': int,
            'failed': list of record ids that could not be repaired
        }
    """
    known_type_ids = set(AssessmentType.objects.values_list('pk', flat=True))
    summary = {'examined': 0, 'inconsistent': 0, 'repaired': 0, 'failed': []}

    records = GradeRecord.objects.prefetch_related('assessments').order_by('pk')
    for record in records.iterator(chunk_size=config.SWEEP_CHUNK_SIZE):
        summary['examined'] += 1
        try:
            record.check_consistency(known_type_ids=known_type_ids)
            continue
        except ConsistencyViolation as violation:
            logger.warning(str(violation))
            summary['inconsistent'] += 1

        if dry_run:
            continue

        try:
            if ledger.repair_record(record.pk):
                summary['repaired'] += 1
        except DatabaseError as e:
            logger.error(f"Error repairing grade record {record.pk}: {e}")
            summary['failed'].append(record.pk)

    logger.info(
        f"Grade record sweep{' (dry run)' if dry_run else ''}: "
        f"{summary['examined']} examined, {summary['inconsistent']} inconsistent, "
        f"{summary['repaired']} repaired, {len(summary['failed'])} failed"
    )
    return summary
