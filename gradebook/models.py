from collections import Counter
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from academics.models import Subject
from core.choices import GradeLevel, Semester
from students.models import Student

from .exceptions import ConsistencyViolation
from .utils import quantize, to_percentage


class AssessmentType(models.Model):
    """
    A gradable event for one subject in one semester.
    e.g., Quiz 1, Mid-term Test, Final Exam
    """
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='assessment_types',
        db_index=True
    )
    name = models.CharField(
        max_length=100,
        help_text='Assessment name (e.g., Quiz 1, Mid-term Test)'
    )
    grade_level = models.CharField(
        max_length=20,
        choices=GradeLevel.choices,
        db_index=True
    )
    semester = models.CharField(max_length=20, choices=Semester.choices)
    academic_year = models.CharField(
        max_length=20,
        help_text='Academic year label (e.g., 2018)'
    )
    total_marks = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text='Maximum points available for this assessment'
    )
    month = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.subject.name} - {self.name} ({self.semester} {self.academic_year})"

    class Meta:
        db_table = 'assessment_type'
        ordering = ['academic_year', 'semester', 'subject', 'created_at']
        verbose_name = 'Assessment Type'
        verbose_name_plural = 'Assessment Types'
        unique_together = ['subject', 'name', 'semester', 'academic_year']
        indexes = [
            models.Index(fields=['grade_level', 'semester', 'academic_year'], name='assess_type_level_sem_yr_idx'),
        ]


class GradeRecord(models.Model):
    """
    A student's scores in one subject for one semester, with their sum.

    ``final_score`` is derived from ``assessments`` and is only written
    through ``recalculate``.
    """
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='grade_records',
        db_index=True
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='grade_records',
        db_index=True
    )
    semester = models.CharField(max_length=20, choices=Semester.choices)
    academic_year = models.CharField(max_length=20)
    final_score = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))]
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.student} - {self.subject.name} ({self.semester} {self.academic_year}): {self.final_score}"

    @property
    def key(self):
        return (self.student_id, self.subject_id, self.semester, self.academic_year)

    def compute_final_score(self):
        """Sum of the scores currently stored for this record."""
        total = self.assessments.aggregate(total=models.Sum('score'))['total']
        return total if total is not None else Decimal('0.00')

    def recalculate(self, save=True):
        """Recompute ``final_score`` from the entries and optionally persist it."""
        self.final_score = self.compute_final_score()
        if save:
            self.save(update_fields=['final_score', 'updated_at'])
        return self.final_score

    def check_consistency(self, known_type_ids=None):
        """
        Raise ConsistencyViolation if the record breaks a ledger invariant.

        If ``known_type_ids`` is given, scores pointing at an id outside it
        count as broken along with scores that have no assessment type.
        """
        entries = list(self.assessments.all())
        problems = []

        broken = [
            e for e in entries
            if e.assessment_type_id is None
            or (known_type_ids is not None and e.assessment_type_id not in known_type_ids)
        ]
        if broken:
            problems.append(f"{len(broken)} score(s) without a valid assessment type")

        counts = Counter(e.assessment_type_id for e in entries if e.assessment_type_id is not None)
        duplicated = sorted(type_id for type_id, n in counts.items() if n > 1)
        if duplicated:
            problems.append(f"duplicate entries for assessment type(s) {duplicated}")

        expected = sum((e.score for e in entries), Decimal('0.00'))
        if self.final_score != expected:
            problems.append(f"final score {self.final_score} != sum of entries {expected}")

        if problems:
            raise ConsistencyViolation(self.pk, problems)

    class Meta:
        db_table = 'grade_record'
        ordering = ['academic_year', 'semester', 'subject', 'student']
        verbose_name = 'Grade Record'
        verbose_name_plural = 'Grade Records'
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'subject', 'semester', 'academic_year'],
                name='unique_grade_record_key',
            ),
        ]
        indexes = [
            models.Index(fields=['academic_year', 'semester'], name='grade_record_year_sem_idx'),
        ]


class AssessmentScore(models.Model):
    """A student's score for one assessment type, held by a GradeRecord."""
    grade_record = models.ForeignKey(
        GradeRecord,
        on_delete=models.CASCADE,
        related_name='assessments'
    )
    # Nulled if the assessment type is removed without the cascade; the sweep prunes these.
    assessment_type = models.ForeignKey(
        AssessmentType,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='scores'
    )
    score = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0'))],
        help_text='Points earned on this assessment'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        name = self.assessment_type.name if self.assessment_type else 'missing assessment'
        return f"{name}: {self.score}"

    def clean(self):
        """Validate that the score doesn't exceed total marks"""
        if self.assessment_type and self.score is not None and self.score > self.assessment_type.total_marks:
            raise ValidationError(
                f'Score ({self.score}) cannot exceed total marks ({self.assessment_type.total_marks})'
            )

    def get_percentage(self):
        """Get the percentage score for this assessment"""
        return quantize(to_percentage(self.score, self.assessment_type.total_marks), 2)

    class Meta:
        db_table = 'assessment_score'
        ordering = ['created_at', 'id']
        verbose_name = 'Assessment Score'
        verbose_name_plural = 'Assessment Scores'
        indexes = [
            models.Index(fields=['grade_record', 'assessment_type'], name='assess_score_record_type_idx'),
        ]
