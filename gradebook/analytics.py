"""
Class-wide score statistics: participation, score ranges, pass rates and
percentage distributions, split by gender.

All functions are read-only. They may run while grade sheets are being
saved and then reflect whatever rows were written so far.
"""
from decimal import Decimal
import logging

from django.db.models import Sum

from academics.models import Subject
from core.choices import Gender
from students.models import Student, find_students

from . import config
from . import ledger
from .exceptions import NotFoundError
from .models import AssessmentType
from .utils import quantize, to_percentage

logger = logging.getLogger(__name__)

# (label, lower bound inclusive, upper bound exclusive); the last upper bound
# sits above 100 so a perfect score lands in the top bucket.
BUCKETS = (
    ('under_50', Decimal('0'), Decimal('50')),
    ('between_50_and_75', Decimal('50'), Decimal('75')),
    ('between_75_and_90', Decimal('75'), Decimal('90')),
    ('over_90', Decimal('90'), Decimal('101')),
)


def normalize_gender(gender):
    """Students without a recorded gender are counted under UNKNOWN_GENDER."""
    if gender in (Gender.MALE, Gender.FEMALE):
        return str(gender)
    return str(config.UNKNOWN_GENDER)


def bucket_for(percentage):
    """Label of the bucket a normalized score falls into."""
    for label, _, upper in BUCKETS:
        if percentage < upper:
            return label
    return BUCKETS[-1][0]


def gender_split(people):
    """Count people by gender as {'M', 'F', 'T'}."""
    split = {Gender.MALE.value: 0, Gender.FEMALE.value: 0, 'T': 0}
    for person in people:
        split[normalize_gender(person['gender'])] += 1
        split['T'] += 1
    return split


def no_data_result(total_students, message='No students have taken this assessment yet.'):
    return {
        'has_data': False,
        'message': message,
        'general': {
            'total_students': total_students,
            'participants': 0,
            'missed': total_students,
            'male': 0,
            'female': 0,
        },
        'score_stats': None,
        'distribution': None,
        'scores': [],
    }


def build_distribution(participants, total_students):
    """
    Compute participation, score statistics and the percentage distribution.

    Args:
        participants: list of dicts with 'student_id', 'name', 'gender',
            'score' and 'percentage' (unrounded, of the applicable maximum)
        total_students: size of the roster the participants were drawn from

    Returns:
        dict with 'general', 'score_stats', 'distribution' and 'scores', or
        the no-data result when nobody took part.
    """
    count = len(participants)
    if not count:
        return no_data_result(total_students)

    genders = [normalize_gender(p['gender']) for p in participants]
    scores = [p['score'] for p in participants]
    percentages = [p['percentage'] for p in participants]

    pass_mark = config.PASS_MARK
    pass_count = sum(1 for pct in percentages if pct >= pass_mark)
    fail_count = count - pass_count

    distribution = {
        label: {'female': 0, 'male': 0, 'total': 0, 'percentage': Decimal('0.0')}
        for label, _, _ in BUCKETS
    }
    for gender, pct in zip(genders, percentages):
        bucket = distribution[bucket_for(pct)]
        bucket['total'] += 1
        if gender == Gender.FEMALE:
            bucket['female'] += 1
        else:
            bucket['male'] += 1
    for bucket in distribution.values():
        bucket['percentage'] = quantize(Decimal(bucket['total']) / count * 100, 1)

    return {
        'has_data': True,
        'general': {
            'total_students': total_students,
            'participants': count,
            'missed': total_students - count,
            'male': genders.count(Gender.MALE),
            'female': genders.count(Gender.FEMALE),
        },
        'score_stats': {
            'highest': max(scores),
            'lowest': min(scores),
            'average': quantize(sum(scores) / count, 2),
            'highest_percent': quantize(max(percentages), 2),
            'lowest_percent': quantize(min(percentages), 2),
            'average_percent': quantize(sum(percentages) / count, 2),
            'pass_count': pass_count,
            'fail_count': fail_count,
            'pass_rate': quantize(Decimal(pass_count) / count * 100, 1),
            'fail_rate': quantize(Decimal(fail_count) / count * 100, 1),
        },
        'distribution': distribution,
        'scores': [dict(p, percentage=quantize(p['percentage'], 2)) for p in participants],
    }


def _load_roster(grade_level):
    """Active students of a grade level, keyed by id, in roster order."""
    students = find_students(grade_level=grade_level, status=Student.Status.ACTIVE)
    return {student['id']: student for student in students}


def _participant(student, score, maximum):
    return {
        'student_id': student['id'],
        'name': student['full_name'],
        'gender': student['gender'],
        'score': score,
        'percentage': to_percentage(score, maximum),
    }


def subject_total_possible(subject_id, semester, academic_year):
    """Sum of total marks over a subject's assessment types for one semester."""
    total = AssessmentType.objects.filter(
        subject_id=subject_id,
        semester=semester,
        academic_year=academic_year,
    ).aggregate(total=Sum('total_marks'))['total']
    return total if total is not None else Decimal('0')


# ============ Per-assessment ============

def get_assessment_distribution(assessment_type_id, grade_level):
    """Statistics for one assessment type across the active students of a grade level."""
    ledger.require_fields(assessment_type_id=assessment_type_id, grade_level=grade_level)

    assessment_type = ledger.get_assessment_type(assessment_type_id)
    roster = _load_roster(grade_level)
    latest = ledger.latest_scores(assessment_type.pk, roster.keys())

    participants = [
        _participant(student, latest[student_id].score, assessment_type.total_marks)
        for student_id, student in roster.items()
        if student_id in latest
    ]

    return {
        'assessment_type': assessment_type,
        'analysis': build_distribution(participants, len(roster)),
    }


# ============ Per-subject ============

def _subject_analysis(subject, semester, academic_year, roster):
    total_possible = subject_total_possible(subject.pk, semester, academic_year)
    if not total_possible:
        analysis = no_data_result(len(roster), 'No assessments are defined for this subject.')
    else:
        finals = ledger.final_scores(subject.pk, semester, academic_year, roster.keys())
        participants = [
            _participant(student, finals[student_id], total_possible)
            for student_id, student in roster.items()
            if student_id in finals
        ]
        analysis = build_distribution(participants, len(roster))

    return {'subject': subject, 'total_possible': total_possible, 'analysis': analysis}


def get_subject_distribution(subject_id, semester, academic_year):
    """Statistics for one subject, using each student's final score against the subject's total marks."""
    ledger.require_fields(subject_id=subject_id, semester=semester, academic_year=academic_year)

    subject_id = ledger.clean_id(Subject, subject_id, 'subject_id')
    try:
        subject = Subject.objects.get(pk=subject_id)
    except Subject.DoesNotExist:
        raise NotFoundError('Subject', subject_id)

    return _subject_analysis(subject, semester, academic_year, _load_roster(subject.grade_level))


def get_subject_performance(grade_level, semester, academic_year):
    """
    Per-subject summary for a grade level, best average raw score first.
    Subjects without data are listed last.
    """
    ledger.require_fields(grade_level=grade_level, semester=semester, academic_year=academic_year)

    roster = _load_roster(grade_level)
    subjects = Subject.objects.filter(grade_level=grade_level, is_active=True).order_by('name')

    rows = []
    for subject in subjects:
        result = _subject_analysis(subject, semester, academic_year, roster)
        analysis = result['analysis']
        stats = analysis['score_stats'] or {}
        rows.append({
            'subject_id': subject.pk,
            'subject': subject.name,
            'total_possible': result['total_possible'],
            'participants': analysis['general']['participants'],
            'missed': analysis['general']['missed'],
            'average_score': stats.get('average'),
            'average_percent': stats.get('average_percent'),
            'highest_percent': stats.get('highest_percent'),
            'lowest_percent': stats.get('lowest_percent'),
            'pass_rate': stats.get('pass_rate'),
            'fail_rate': stats.get('fail_rate'),
            'analysis': analysis,
        })

    rows.sort(key=lambda row: (row['average_score'] is None, -(row['average_score'] or 0)))
    return rows


# ============ Class analytics ============

def get_class_analytics(grade_level, assessment_name, semester, academic_year):
    """
    Subject-by-subject breakdown for every assessment type of a grade level
    whose name matches ``assessment_name`` (case-insensitive).

    Each row holds M/F/T counts for the roster, attendance, absences and
    each distribution bucket.
    """
    ledger.require_fields(
        grade_level=grade_level,
        assessment_name=(assessment_name or '').strip(),
        semester=semester,
        academic_year=academic_year,
    )

    assessment_types = AssessmentType.objects.filter(
        grade_level=grade_level,
        semester=semester,
        academic_year=academic_year,
        name__iexact=assessment_name.strip(),
    ).select_related('subject').order_by('subject__name')

    roster = _load_roster(grade_level)
    roster_split = gender_split(roster.values())

    rows = []
    for assessment_type in assessment_types:
        latest = ledger.latest_scores(assessment_type.pk, roster.keys())
        participants = [
            _participant(student, latest[student_id].score, assessment_type.total_marks)
            for student_id, student in roster.items()
            if student_id in latest
        ]
        analysis = build_distribution(participants, len(roster))
        attended = gender_split(participants)

        row = {
            'assessment_type_id': assessment_type.pk,
            'subject': assessment_type.subject.name,
            'total_marks': assessment_type.total_marks,
            'students': roster_split,
            'attended': attended,
            'missed': {key: roster_split[key] - attended[key] for key in roster_split},
        }
        for label, _, _ in BUCKETS:
            bucket = analysis['distribution'][label] if analysis['has_data'] else None
            row[label] = {
                Gender.MALE.value: bucket['male'] if bucket else 0,
                Gender.FEMALE.value: bucket['female'] if bucket else 0,
                'T': bucket['total'] if bucket else 0,
            }
        rows.append(row)

    return rows


def assessment_names(semester, academic_year, grade_level=None):
    """Distinct assessment names for a semester, first spelling kept."""
    qs = AssessmentType.objects.filter(semester=semester, academic_year=academic_year)
    if grade_level:
        qs = qs.filter(grade_level=grade_level)

    names = {}
    for name in qs.order_by('created_at', 'pk').values_list('name', flat=True):
        names.setdefault(name.strip().lower(), name)
    return sorted(names.values(), key=str.lower)


# ============ At-risk students ============

def get_at_risk_students(grade_level, semester, academic_year, threshold=None):
    """
    Per subject, the active students whose final score is below
    ``threshold`` percent of the subject's total marks, weakest first.
    Subjects with nobody at risk are left out.
    """
    ledger.require_fields(grade_level=grade_level, semester=semester, academic_year=academic_year)
    if threshold is None:
        threshold = config.AT_RISK_THRESHOLD
    threshold = Decimal(str(threshold))

    roster = _load_roster(grade_level)
    subjects = Subject.objects.filter(grade_level=grade_level, is_active=True).order_by('name')

    results = []
    for subject in subjects:
        total_possible = subject_total_possible(subject.pk, semester, academic_year)
        if not total_possible:
            continue

        finals = ledger.final_scores(subject.pk, semester, academic_year, roster.keys())
        students = []
        for student_id, final in finals.items():
            percentage = to_percentage(final, total_possible)
            if percentage < threshold:
                student = roster[student_id]
                students.append({
                    'id': student_id,
                    'name': student['full_name'],
                    'admission_number': student['admission_number'],
                    'gender': student['gender'],
                    'score': final,
                    'percentage': quantize(percentage, 2),
                })

        if students:
            students.sort(key=lambda s: s['percentage'])
            results.append({
                'subject_id': subject.pk,
                'subject': subject.name,
                'total_possible': total_possible,
                'students': students,
            })

    logger.debug(f"At-risk report for {grade_level}: {sum(len(r['students']) for r in results)} student(s)")
    return results
