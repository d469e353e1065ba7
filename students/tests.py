from django.test import TestCase

from core.choices import Gender, GradeLevel
from .models import Student, find_students


class StudentModelTest(TestCase):
    """Tests for Student model and roster lookups."""

    def setUp(self):
        self.ama = Student.objects.create(
            first_name='Ama',
            other_names='Serwaa',
            last_name='Mensah',
            gender=Gender.FEMALE,
            admission_number='ADM001',
            grade_level=GradeLevel.GRADE_7,
        )
        self.kofi = Student.objects.create(
            first_name='Kofi',
            last_name='Boateng',
            gender=Gender.MALE,
            admission_number='ADM002',
            grade_level=GradeLevel.GRADE_7,
            status=Student.Status.WITHDRAWN,
        )
        self.yaw = Student.objects.create(
            first_name='Yaw',
            last_name='Asante',
            admission_number='ADM003',
            grade_level=GradeLevel.GRADE_8,
        )

    def test_full_name(self):
        """Test full name includes other names."""
        self.assertEqual(self.ama.full_name, 'Ama Serwaa Mensah')
        self.assertEqual(self.kofi.full_name, 'Kofi Boateng')

    def test_default_status(self):
        """Test new students are active."""
        self.assertEqual(self.ama.status, Student.Status.ACTIVE)
        self.assertTrue(self.ama.is_enrolled)
        self.assertFalse(self.kofi.is_enrolled)

    def test_roster(self):
        """Test roster only holds active students of the grade level."""
        self.assertEqual(list(Student.objects.roster(GradeLevel.GRADE_7)), [self.ama])
        self.assertEqual(
            set(Student.objects.roster(GradeLevel.GRADE_7, active_only=False)),
            {self.ama, self.kofi},
        )

    def test_find_students(self):
        """Test the directory filters by grade level and status."""
        results = find_students(grade_level=GradeLevel.GRADE_7, status=Student.Status.ACTIVE)

        self.assertEqual(results, [{
            'id': self.ama.pk,
            'full_name': 'Ama Serwaa Mensah',
            'admission_number': 'ADM001',
            'gender': 'F',
            'grade_level': 'Grade 7',
            'status': 'Active',
        }])

    def test_find_students_by_ids(self):
        """Test the directory looks students up by id."""
        results = find_students(ids=[self.kofi.pk, self.yaw.pk])

        self.assertEqual({r['id'] for r in results}, {self.kofi.pk, self.yaw.pk})
        self.assertEqual(next(r for r in results if r['id'] == self.yaw.pk)['gender'], '')
