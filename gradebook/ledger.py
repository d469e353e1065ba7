"""
Score ledger: the only code that writes grade records and their scores.

Every mutation runs in one transaction holding a row lock on the grade
record, changes the entries and recomputes ``final_score`` before
committing, so a record's sum always matches its entries.
"""
import logging

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction

from academics.models import Subject
from students.models import Student

from .exceptions import CascadeIncomplete, NotFoundError
from .models import AssessmentScore, AssessmentType, GradeRecord
from .signals import signals_disabled
from .utils import parse_score, validate_score

logger = logging.getLogger(__name__)


def require_fields(**fields):
    """Raise ValidationError naming every missing key field."""
    missing = [name for name, value in fields.items() if value in (None, '')]
    if missing:
        raise ValidationError(
            f"Missing required data: {', '.join(missing)}",
            code='missing_data',
        )


def clean_id(model, value, field_name):
    """
    Convert a submitted id to the model's primary key type.

    Raises ValidationError (code ``invalid_id``) for values such as 'abc'
    that could never match a row.
    """
    try:
        return model._meta.pk.to_python(value)
    except ValidationError:
        raise ValidationError(f"Invalid {field_name}: {value!r}", code='invalid_id')


def get_assessment_type(assessment_type_id):
    """Fetch an assessment type or raise NotFoundError."""
    assessment_type_id = clean_id(AssessmentType, assessment_type_id, 'assessment_type_id')
    try:
        return AssessmentType.objects.select_related('subject').get(pk=assessment_type_id)
    except AssessmentType.DoesNotExist:
        raise NotFoundError('AssessmentType', assessment_type_id)


# ============ Reads ============

def find_by_key(student_id, subject_id, semester, academic_year):
    return GradeRecord.objects.filter(
        student_id=student_id,
        subject_id=subject_id,
        semester=semester,
        academic_year=academic_year,
    ).first()


def find_all_by_assessment(assessment_type_id):
    """Grade records holding a score for the given assessment type."""
    return list(
        GradeRecord.objects.filter(
            assessments__assessment_type_id=assessment_type_id
        ).distinct().order_by('pk')
    )


def find_all_for_student(student_id):
    """All of a student's grade records with their scores and assessment types."""
    return list(
        GradeRecord.objects.filter(
            student_id=student_id
        ).select_related(
            'subject'
        ).prefetch_related(
            'assessments__assessment_type'
        ).order_by('academic_year', 'semester', 'subject__name')
    )


def latest_scores(assessment_type_id, student_ids):
    """
    Map student id -> AssessmentScore for one assessment type.

    Only the most recently written score counts if a record still holds
    duplicates.
    """
    entries = AssessmentScore.objects.filter(
        assessment_type_id=assessment_type_id,
        grade_record__student_id__in=list(student_ids),
    ).select_related('grade_record', 'assessment_type').order_by('updated_at', 'pk')

    latest = {}
    for entry in entries:
        latest[entry.grade_record.student_id] = entry
    return latest


def final_scores(subject_id, semester, academic_year, student_ids):
    """Map student id -> final score for records of one subject that hold at least one score."""
    records = GradeRecord.objects.filter(
        subject_id=subject_id,
        semester=semester,
        academic_year=academic_year,
        student_id__in=list(student_ids),
        assessments__isnull=False,
    ).distinct().values_list('student_id', 'final_score')
    return dict(records)


# ============ Writes ============

def _require_student_and_subject(student_id, subject_id):
    if not Student.objects.filter(pk=student_id).exists():
        raise NotFoundError('Student', student_id)
    if not Subject.objects.filter(pk=subject_id).exists():
        raise NotFoundError('Subject', subject_id)


def upsert_entry(key, assessment_type_id, score):
    """
    Set a student's score for one assessment type.

    ``key`` is (student_id, subject_id, semester, academic_year). The grade
    record is created if it does not exist yet. An existing score for the
    assessment type is overwritten, never duplicated, and ``final_score`` is
    recomputed in the same transaction.

    A blank or non-numeric ``score`` is ignored and returns None, leaving
    any earlier score in place.
    """
    student_id, subject_id, semester, academic_year = key
    require_fields(
        student_id=student_id,
        subject_id=subject_id,
        semester=semester,
        academic_year=academic_year,
        assessment_type_id=assessment_type_id,
    )

    if parse_score(score) is None:
        logger.debug(f"Skipping blank score for student {student_id}, assessment type {assessment_type_id}")
        return None

    student_id = clean_id(Student, student_id, 'student_id')
    subject_id = clean_id(Subject, subject_id, 'subject_id')

    assessment_type = get_assessment_type(assessment_type_id)
    points, error = validate_score(score, max_points=assessment_type.total_marks)
    if error:
        raise ValidationError(error.message, code=error.error_code)

    _require_student_and_subject(student_id, subject_id)

    with signals_disabled(), transaction.atomic():
        record, created = GradeRecord.objects.select_for_update().get_or_create(
            student_id=student_id,
            subject_id=subject_id,
            semester=semester,
            academic_year=academic_year,
        )

        entries = list(
            record.assessments.filter(
                assessment_type_id=assessment_type.pk
            ).order_by('updated_at', 'pk')
        )
        if entries:
            entry = entries[-1]
            stale = [e.pk for e in entries[:-1]]
            if stale:
                logger.warning(
                    f"Grade record {record.pk} had {len(entries)} scores for assessment type "
                    f"{assessment_type.pk}; keeping the latest"
                )
                AssessmentScore.objects.filter(pk__in=stale).delete()
            entry.score = points
            entry.save(update_fields=['score', 'updated_at'])
        else:
            AssessmentScore.objects.create(
                grade_record=record,
                assessment_type=assessment_type,
                score=points,
            )

        record.recalculate()

    logger.debug(
        f"{'Created' if created else 'Updated'} grade record {record.pk} "
        f"({assessment_type.name}={points}, final={record.final_score})"
    )
    return record


def replace_entries(record, entries):
    """
    Replace every score of one grade record in a single step.

    ``record`` is a grade record id, or a (student_id, subject_id, semester,
    academic_year) key; a key without a record yet creates it. ``entries``
    is an iterable of mappings with ``assessment_type_id`` and ``score``.

    All entries are validated before anything is written: each score must
    be a number from 0 to the assessment type's total marks, and each
    assessment type must belong to the record's subject, semester and year.
    If an assessment type is listed twice the last entry wins. An empty
    ``entries`` clears the record.
    """
    if entries is None:
        raise ValidationError('Missing required data: entries', code='missing_data')

    if isinstance(record, (tuple, list)):
        student_id, subject_id, semester, academic_year = record
        require_fields(
            student_id=student_id,
            subject_id=subject_id,
            semester=semester,
            academic_year=academic_year,
        )
        student_id = clean_id(Student, student_id, 'student_id')
        subject_id = clean_id(Subject, subject_id, 'subject_id')
        _require_student_and_subject(student_id, subject_id)
        record_id = None
    else:
        require_fields(record_id=record)
        record_id = clean_id(GradeRecord, record, 'record_id')
        key = GradeRecord.objects.filter(pk=record_id).values(
            'student_id', 'subject_id', 'semester', 'academic_year'
        ).first()
        if key is None:
            raise NotFoundError('GradeRecord', record_id)
        student_id, subject_id = key['student_id'], key['subject_id']
        semester, academic_year = key['semester'], key['academic_year']

    scores = {}
    for entry in entries:
        require_fields(assessment_type_id=entry.get('assessment_type_id'))
        assessment_type = get_assessment_type(entry['assessment_type_id'])

        if (assessment_type.subject_id != subject_id
                or assessment_type.semester != semester
                or assessment_type.academic_year != str(academic_year)):
            raise ValidationError(
                f"Assessment type '{assessment_type.name}' does not belong to this grade record",
                code='mismatched_assessment',
            )

        points, error = validate_score(
            entry.get('score'),
            max_points=assessment_type.total_marks,
            allow_empty=False,
        )
        if error:
            raise ValidationError(f"{assessment_type.name}: {error.message}", code=error.error_code)
        scores[assessment_type.pk] = (assessment_type, points)

    with signals_disabled(), transaction.atomic():
        if record_id is None:
            grade_record, _ = GradeRecord.objects.select_for_update().get_or_create(
                student_id=student_id,
                subject_id=subject_id,
                semester=semester,
                academic_year=academic_year,
            )
        else:
            grade_record = GradeRecord.objects.select_for_update().filter(pk=record_id).first()
            if grade_record is None:
                raise NotFoundError('GradeRecord', record_id)

        grade_record.assessments.all().delete()
        AssessmentScore.objects.bulk_create([
            AssessmentScore(grade_record=grade_record, assessment_type=assessment_type, score=points)
            for assessment_type, points in scores.values()
        ])
        grade_record.recalculate()

    logger.info(
        f"Replaced scores of grade record {grade_record.pk}: "
        f"{len(scores)} score(s), final score {grade_record.final_score}"
    )
    return grade_record


def recalculate_record(record_id):
    """Recompute and persist one record's ``final_score``. Returns None if it is gone."""
    with transaction.atomic():
        record = GradeRecord.objects.select_for_update().filter(pk=record_id).first()
        if record is None:
            return None
        record.recalculate()
    return record


def _remove_entries(record_id, assessment_type_id):
    with signals_disabled(), transaction.atomic():
        record = GradeRecord.objects.select_for_update().filter(pk=record_id).first()
        if record is None:
            return False
        removed, _ = record.assessments.filter(assessment_type_id=assessment_type_id).delete()
        record.recalculate()
    return removed > 0


def remove_entries_for_assessment(assessment_type_id):
    """
    Remove an assessment type's scores from every grade record and
    recompute their sums.

    Each record is updated in its own savepoint; a failing record does not
    stop the others. Returns the number of records updated, or raises
    CascadeIncomplete once all records have been tried if any failed.
    """
    record_ids = list(
        GradeRecord.objects.filter(
            assessments__assessment_type_id=assessment_type_id
        ).order_by('pk').values_list('pk', flat=True).distinct()
    )

    affected = 0
    failed = []
    for record_id in record_ids:
        try:
            if _remove_entries(record_id, assessment_type_id):
                affected += 1
        except DatabaseError as e:
            logger.error(f"Error removing assessment type {assessment_type_id} from grade record {record_id}: {e}")
            failed.append(record_id)

    if failed:
        raise CascadeIncomplete(assessment_type_id, affected, failed)
    return affected


def repair_record(record_id):
    """
    Restore a record's invariants: drop scores whose assessment type no
    longer exists, keep only the latest score per assessment type, and
    recompute the sum. Returns True if anything changed.
    """
    with signals_disabled(), transaction.atomic():
        record = GradeRecord.objects.select_for_update().filter(pk=record_id).first()
        if record is None:
            return False

        entries = list(record.assessments.order_by('updated_at', 'pk'))
        referenced = {e.assessment_type_id for e in entries if e.assessment_type_id is not None}
        known = set(AssessmentType.objects.filter(pk__in=referenced).values_list('pk', flat=True))

        latest = {}
        to_delete = []
        for entry in entries:
            if entry.assessment_type_id not in known:
                to_delete.append(entry.pk)
                continue
            if entry.assessment_type_id in latest:
                to_delete.append(latest[entry.assessment_type_id].pk)
            latest[entry.assessment_type_id] = entry

        if to_delete:
            AssessmentScore.objects.filter(pk__in=to_delete).delete()

        previous = record.final_score
        record.recalculate(save=False)
        changed = bool(to_delete) or record.final_score != previous
        if changed:
            record.save(update_fields=['final_score', 'updated_at'])

    if changed:
        logger.info(
            f"Repaired grade record {record_id}: removed {len(to_delete)} score(s), "
            f"final score {previous} -> {record.final_score}"
        )
    return changed


def delete(record_id):
    """Delete a grade record and its scores."""
    with signals_disabled(), transaction.atomic():
        try:
            record = GradeRecord.objects.select_for_update().get(pk=record_id)
        except GradeRecord.DoesNotExist:
            raise NotFoundError('GradeRecord', record_id)
        record.delete()
    logger.info(f"Deleted grade record {record_id}")
