"""
Grade sheets: one assessment type's scores for a whole class.
"""
import logging

from django.core.exceptions import ObjectDoesNotExist, ValidationError

from students.models import Student

from . import ledger
from .utils import parse_score

logger = logging.getLogger(__name__)


def get_grade_sheet(assessment_type_id):
    """
    Active students of the assessment type's grade level, sorted by name,
    each with their current score for it (None if not yet graded).
    """
    if not assessment_type_id:
        raise ValidationError('Assessment type ID is required.', code='missing_data')

    assessment_type = ledger.get_assessment_type(assessment_type_id)
    students = list(
        Student.objects.roster(assessment_type.grade_level).order_by('first_name', 'last_name')
    )

    latest = ledger.latest_scores(assessment_type.pk, [student.pk for student in students])

    sheet = []
    for student in students:
        entry = latest.get(student.pk)
        sheet.append({
            'id': student.pk,
            'full_name': student.full_name,
            'admission_number': student.admission_number,
            'score': entry.score if entry else None,
            'percentage': entry.get_percentage() if entry else None,
        })

    return {'assessment_type': assessment_type, 'students': sheet}


def save_grade_sheet(assessment_type_id, subject_id, semester, academic_year, rows):
    """
    Save one assessment type's scores for a batch of students.

    ``rows`` is an iterable of mappings with ``student_id`` and ``score``.
    Rows with a blank or non-numeric score are skipped, keeping any earlier
    score. Each remaining row is applied on its own; a row that fails
    validation is reported and does not stop the others. Submitting the
    same sheet again leaves the ledger unchanged.

    Returns:
        dict: {
            'saved': int,
            'skipped': int,
            'failed': list of {'student_id', 'error', 'code'}
        }
    """
    ledger.require_fields(
        assessment_type_id=assessment_type_id,
        subject_id=subject_id,
        semester=semester,
        academic_year=academic_year,
    )
    if rows is None:
        raise ValidationError('Missing required data: rows', code='missing_data')

    assessment_type = ledger.get_assessment_type(assessment_type_id)
    mismatched = []
    if str(assessment_type.subject_id) != str(subject_id):
        mismatched.append('subject')
    if assessment_type.semester != semester:
        mismatched.append('semester')
    if assessment_type.academic_year != str(academic_year):
        mismatched.append('academic year')
    if mismatched:
        raise ValidationError(
            f"Assessment type '{assessment_type.name}' does not match the sheet's {', '.join(mismatched)}",
            code='mismatched_assessment',
        )

    result = {'saved': 0, 'skipped': 0, 'failed': []}

    for row in rows:
        student_id = row.get('student_id')
        score = row.get('score')

        if parse_score(score) is None:
            result['skipped'] += 1
            continue

        try:
            ledger.upsert_entry(
                (student_id, subject_id, semester, academic_year),
                assessment_type.pk,
                score,
            )
        except ValidationError as e:
            logger.warning(f"Rejected score {score!r} for student {student_id}: {'; '.join(e.messages)}")
            result['failed'].append({'student_id': student_id, 'error': '; '.join(e.messages), 'code': e.code})
            continue
        except ObjectDoesNotExist as e:
            logger.warning(f"Rejected score for student {student_id}: {e}")
            result['failed'].append({'student_id': student_id, 'error': str(e), 'code': 'not_found'})
            continue

        result['saved'] += 1

    logger.info(
        f"Grade sheet for assessment type {assessment_type.pk}: "
        f"{result['saved']} saved, {result['skipped']} skipped, {len(result['failed'])} failed"
    )
    return result
