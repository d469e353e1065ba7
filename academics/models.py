from django.db import models

from core.choices import GradeLevel


class Subject(models.Model):
    """
    Represents a subject taught at one grade level.
    """
    name = models.CharField(
        max_length=100,
        help_text="e.g., Mathematics, English Language, Integrated Science"
    )
    code = models.CharField(
        max_length=20,
        blank=True,
        help_text="Optional subject code"
    )
    grade_level = models.CharField(
        max_length=20,
        choices=GradeLevel.choices,
        db_index=True,
        help_text="Grade level this subject is taught at"
    )

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['grade_level', 'name']
        verbose_name = "Subject"
        verbose_name_plural = "Subjects"
        unique_together = ['name', 'grade_level']

    def __str__(self):
        return f"{self.name} ({self.grade_level})"
