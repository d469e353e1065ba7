"""
Class rankings by summed final score.
"""
import logging

from django.db.models import Sum

from students.models import Student

from . import config
from .ledger import require_fields
from .models import GradeRecord

logger = logging.getLogger(__name__)


def rank_cohort(grade_level, academic_year, semester=None):
    """
    Active students of a grade level ordered by the total of their final
    scores, highest first.

    With ``semester`` the total covers that semester only; without it both
    semesters of the academic year are summed. Students with equal totals
    keep the order the database returned them in (by student id).

    Returns:
        list of (student_id, total) tuples
    """
    records = GradeRecord.objects.filter(
        student__grade_level=grade_level,
        student__status=Student.Status.ACTIVE,
        academic_year=academic_year,
    )
    if semester:
        records = records.filter(semester=semester)

    totals = records.values('student_id').annotate(
        total=Sum('final_score')
    ).order_by('student_id')

    cohort = [(row['student_id'], row['total']) for row in totals]
    cohort.sort(key=lambda item: item[1], reverse=True)
    return cohort


def _format_rank(student_id, cohort):
    for position, (candidate, _) in enumerate(cohort):
        if str(candidate) == str(student_id):
            return f"{position + 1} / {len(cohort)}"
    return config.UNRANKED_MARKER


def get_rank(student_id, grade_level, semester, academic_year):
    """Semester rank as ``"rank / cohort"``, or the unranked marker."""
    require_fields(
        student_id=student_id,
        grade_level=grade_level,
        semester=semester,
        academic_year=academic_year,
    )
    return _format_rank(student_id, rank_cohort(grade_level, academic_year, semester))


def get_overall_rank(student_id, grade_level, academic_year):
    """Rank over both semesters of an academic year, or the unranked marker."""
    require_fields(student_id=student_id, grade_level=grade_level, academic_year=academic_year)
    return _format_rank(student_id, rank_cohort(grade_level, academic_year))
