from django.db import models
from django.utils.translation import gettext_lazy as _

from core.choices import Gender, GradeLevel


class StudentQuerySet(models.QuerySet):

    def active(self):
        return self.filter(status=Student.Status.ACTIVE)

    def roster(self, grade_level, active_only=True):
        """Students of one grade level, the class roster used by analytics."""
        qs = self.filter(grade_level=grade_level)
        if active_only:
            qs = qs.active()
        return qs


class Student(models.Model):
    """
    Represents a student enrolled in the school.
    """
    class Status(models.TextChoices):
        ACTIVE = 'Active', _('Active')
        GRADUATED = 'Graduated', _('Graduated')
        WITHDRAWN = 'Withdrawn', _('Withdrawn')
        SUSPENDED = 'Suspended', _('Suspended')
        TRANSFERRED = 'Transferred', _('Transferred')

    # Personal Information
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    other_names = models.CharField(max_length=100, blank=True)
    gender = models.CharField(max_length=1, choices=Gender.choices, blank=True)

    # Admission Details
    admission_number = models.CharField(
        max_length=50,
        unique=True,
        help_text="Unique student ID/admission number"
    )

    # Enrollment
    grade_level = models.CharField(
        max_length=20,
        choices=GradeLevel.choices,
        db_index=True,
        help_text="e.g., Grade 7"
    )

    # Status
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE
    )

    # Metadata
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = StudentQuerySet.as_manager()

    class Meta:
        ordering = ['last_name', 'first_name']
        verbose_name = "Student"
        verbose_name_plural = "Students"
        indexes = [
            models.Index(fields=['grade_level', 'status'], name='student_grade_status_idx'),
        ]

    def __str__(self):
        return f"{self.full_name} ({self.admission_number})"

    @property
    def full_name(self):
        """Return full name of student."""
        names = [self.first_name]
        if self.other_names:
            names.append(self.other_names)
        names.append(self.last_name)
        return ' '.join(names)

    @property
    def is_enrolled(self):
        return self.status == self.Status.ACTIVE


def find_students(grade_level=None, status=None, ids=None):
    """
    Roster directory lookup.

    Returns a list of dicts with the identity fields the gradebook joins
    against: id, full_name, gender, grade_level and status.
    """
    qs = Student.objects.all()
    if grade_level is not None:
        qs = qs.filter(grade_level=grade_level)
    if status is not None:
        qs = qs.filter(status=status)
    if ids is not None:
        qs = qs.filter(pk__in=ids)

    return [
        {
            'id': student.pk,
            'full_name': student.full_name,
            'admission_number': student.admission_number,
            'gender': student.gender,
            'grade_level': student.grade_level,
            'status': student.status,
        }
        for student in qs
    ]
