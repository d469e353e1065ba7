from django.db import models
from django.utils.translation import gettext_lazy as _

class Gender(models.TextChoices):
    MALE = 'M', _('Male')
    FEMALE = 'F', _('Female')

class Semester(models.TextChoices):
    FIRST = 'First Semester', _('First Semester')
    SECOND = 'Second Semester', _('Second Semester')

class GradeLevel(models.TextChoices):
    GRADE_1 = 'Grade 1', _('Grade 1')
    GRADE_2 = 'Grade 2', _('Grade 2')
    GRADE_3 = 'Grade 3', _('Grade 3')
    GRADE_4 = 'Grade 4', _('Grade 4')
    GRADE_5 = 'Grade 5', _('Grade 5')
    GRADE_6 = 'Grade 6', _('Grade 6')
    GRADE_7 = 'Grade 7', _('Grade 7')
    GRADE_8 = 'Grade 8', _('Grade 8')
