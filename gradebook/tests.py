from decimal import Decimal
from io import StringIO
import threading
from unittest import mock

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.db import DatabaseError, IntegrityError, connection, transaction
from django.test import TestCase, TransactionTestCase, override_settings, skipUnlessDBFeature

from academics.models import Subject
from core.choices import Gender, GradeLevel, Semester
from students.models import Student

from . import analytics, cascade, grade_sheet, ledger, ranking
from .exceptions import CascadeIncomplete, ConsistencyViolation, NotFoundError
from .models import AssessmentScore, AssessmentType, GradeRecord
from .signals import signals_disabled
from .tasks import cascade_remove_task, sweep_grade_records_task
from .utils import parse_score, quantize, validate_score


YEAR = '2018'


class GradebookTestMixin:
    """Shared fixtures: a Grade 7 class with two subjects."""

    def make_student(self, first_name, gender=Gender.MALE, status=Student.Status.ACTIVE,
                     grade_level=GradeLevel.GRADE_7):
        self._admission = getattr(self, '_admission', 0) + 1
        return Student.objects.create(
            first_name=first_name,
            last_name='Test',
            gender=gender,
            admission_number=f'ADM{self._admission:04d}',
            grade_level=grade_level,
            status=status,
        )

    def make_assessment(self, subject, name, total_marks, semester=Semester.FIRST):
        return AssessmentType.objects.create(
            subject=subject,
            name=name,
            grade_level=subject.grade_level,
            semester=semester,
            academic_year=YEAR,
            total_marks=Decimal(str(total_marks)),
        )

    def key(self, student, subject=None, semester=Semester.FIRST):
        subject = subject or self.math
        return (student.pk, subject.pk, semester, YEAR)

    def setUp(self):
        self.math = Subject.objects.create(name='Mathematics', grade_level=GradeLevel.GRADE_7)
        self.english = Subject.objects.create(name='English Language', grade_level=GradeLevel.GRADE_7)


class ScoreParsingTest(TestCase):
    """Tests for score parsing and validation helpers."""

    def test_parse_score_numbers(self):
        """Test numeric input is converted to Decimal."""
        self.assertEqual(parse_score('15'), Decimal('15'))
        self.assertEqual(parse_score(' 7.5 '), Decimal('7.5'))
        self.assertEqual(parse_score(0), Decimal('0'))

    def test_parse_score_rejects_non_numbers(self):
        """Test blank, boolean and non-finite input parses to None."""
        for value in (None, '', '   ', 'abc', 'NaN', 'inf', True):
            self.assertIsNone(parse_score(value), value)

    def test_validate_score_bounds(self):
        """Test scores are checked against zero and total marks."""
        points, error = validate_score('20', max_points=Decimal('20'))
        self.assertEqual(points, Decimal('20'))
        self.assertIsNone(error)

        _, error = validate_score('20.5', max_points=Decimal('20'))
        self.assertEqual(error.error_code, 'score_too_high')

        _, error = validate_score('-1', max_points=Decimal('20'))
        self.assertEqual(error.error_code, 'negative_score')

    def test_validate_score_empty(self):
        """Test blank scores are only an error when not allowed."""
        self.assertEqual(validate_score(''), (None, None))
        _, error = validate_score('abc', allow_empty=False)
        self.assertEqual(error.error_code, 'invalid_score')

    def test_quantize_rounds_half_up(self):
        """Test halves round away from zero."""
        self.assertEqual(quantize(Decimal('6.25'), 1), Decimal('6.3'))
        self.assertEqual(quantize(Decimal('12.345'), 2), Decimal('12.35'))
        self.assertEqual(quantize(Decimal('0.125'), 2), Decimal('0.13'))
        self.assertEqual(quantize(80, 2), Decimal('80.00'))


class LedgerUpsertTest(GradebookTestMixin, TestCase):
    """Tests for writing scores through the ledger."""

    def setUp(self):
        super().setUp()
        self.student = self.make_student('Ama', gender=Gender.FEMALE)
        self.quiz = self.make_assessment(self.math, 'Quiz 1', 20)
        self.exam = self.make_assessment(self.math, 'Final Exam', 100)

    def test_creates_record_on_first_score(self):
        """Test the first score for a key creates the grade record."""
        record = ledger.upsert_entry(self.key(self.student), self.quiz.pk, '15')

        self.assertEqual(GradeRecord.objects.count(), 1)
        self.assertEqual(record.final_score, Decimal('15'))
        self.assertEqual(record.assessments.count(), 1)
        self.assertEqual(ledger.find_by_key(*self.key(self.student)).pk, record.pk)

    def test_last_write_wins_without_duplicates(self):
        """Test repeated writes overwrite one entry."""
        for score in ('10', '12', '7'):
            ledger.upsert_entry(self.key(self.student), self.quiz.pk, score)

        record = GradeRecord.objects.get()
        entries = list(record.assessments.all())
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].score, Decimal('7'))
        self.assertEqual(record.final_score, Decimal('7'))

    def test_final_score_is_sum_of_entries(self):
        """Test final score tracks the sum of entries."""
        ledger.upsert_entry(self.key(self.student), self.quiz.pk, '15')
        ledger.upsert_entry(self.key(self.student), self.exam.pk, '62.5')
        ledger.upsert_entry(self.key(self.student), self.quiz.pk, '18')

        record = GradeRecord.objects.get()
        self.assertEqual(record.final_score, Decimal('80.5'))
        self.assertEqual(record.final_score, record.compute_final_score())
        record.check_consistency()

    def test_blank_score_is_skipped(self):
        """Test blank scores keep the earlier score."""
        ledger.upsert_entry(self.key(self.student), self.quiz.pk, '12')

        self.assertIsNone(ledger.upsert_entry(self.key(self.student), self.quiz.pk, ''))
        self.assertIsNone(ledger.upsert_entry(self.key(self.student), self.quiz.pk, 'absent'))

        record = GradeRecord.objects.get()
        self.assertEqual(record.final_score, Decimal('12'))

    def test_blank_score_creates_nothing(self):
        """Test a blank score does not create a record."""
        ledger.upsert_entry(self.key(self.student), self.quiz.pk, None)
        self.assertFalse(GradeRecord.objects.exists())

    def test_score_above_total_marks_rejected(self):
        """Test scores above total marks are rejected."""
        with self.assertRaises(ValidationError) as cm:
            ledger.upsert_entry(self.key(self.student), self.quiz.pk, '25')
        self.assertEqual(cm.exception.code, 'score_too_high')
        self.assertFalse(GradeRecord.objects.exists())

    def test_negative_score_rejected(self):
        """Test negative scores are rejected."""
        with self.assertRaises(ValidationError) as cm:
            ledger.upsert_entry(self.key(self.student), self.quiz.pk, '-3')
        self.assertEqual(cm.exception.code, 'negative_score')

    def test_missing_key_field_rejected(self):
        """Test a missing key field names the field."""
        with self.assertRaises(ValidationError) as cm:
            ledger.upsert_entry((self.student.pk, self.math.pk, '', YEAR), self.quiz.pk, '10')
        self.assertEqual(cm.exception.code, 'missing_data')
        self.assertIn('semester', cm.exception.message)

    def test_unknown_references(self):
        """Test unknown ids raise NotFoundError."""
        with self.assertRaises(NotFoundError):
            ledger.upsert_entry(self.key(self.student), 99999, '10')

        with self.assertRaises(NotFoundError) as cm:
            ledger.upsert_entry((99999, self.math.pk, Semester.FIRST, YEAR), self.quiz.pk, '10')
        self.assertEqual(cm.exception.model_name, 'Student')

    def test_malformed_ids_rejected(self):
        """Test ids that are not numbers raise ValidationError instead of ValueError."""
        with self.assertRaises(ValidationError) as cm:
            ledger.upsert_entry(('abc', self.math.pk, Semester.FIRST, YEAR), self.quiz.pk, '10')
        self.assertEqual(cm.exception.code, 'invalid_id')

        with self.assertRaises(ValidationError) as cm:
            ledger.upsert_entry(self.key(self.student), 'quiz', '10')
        self.assertEqual(cm.exception.code, 'invalid_id')
        self.assertFalse(GradeRecord.objects.exists())

    def test_record_key_is_unique(self):
        """Test the database refuses a second record for a key."""
        ledger.upsert_entry(self.key(self.student), self.quiz.pk, '10')

        with self.assertRaises(IntegrityError), transaction.atomic():
            GradeRecord.objects.create(
                student=self.student,
                subject=self.math,
                semester=Semester.FIRST,
                academic_year=YEAR,
            )

    def test_find_all_for_student(self):
        """Test a student's records are listed by subject."""
        ledger.upsert_entry(self.key(self.student), self.quiz.pk, '10')
        reading = self.make_assessment(self.english, 'Reading', 10)
        ledger.upsert_entry(self.key(self.student, self.english), reading.pk, '8')

        records = ledger.find_all_for_student(self.student.pk)
        self.assertEqual([r.subject.name for r in records], ['English Language', 'Mathematics'])

    def test_delete_record(self):
        """Test deleting a record removes its scores."""
        record = ledger.upsert_entry(self.key(self.student), self.quiz.pk, '10')
        ledger.delete(record.pk)

        self.assertFalse(GradeRecord.objects.exists())
        self.assertFalse(AssessmentScore.objects.exists())
        with self.assertRaises(NotFoundError):
            ledger.delete(record.pk)


class ReplaceEntriesTest(GradebookTestMixin, TestCase):
    """Tests for replacing all scores of a grade record at once."""

    def setUp(self):
        super().setUp()
        self.student = self.make_student('Esi', gender=Gender.FEMALE)
        self.quiz = self.make_assessment(self.math, 'Quiz 1', 20)
        self.exam = self.make_assessment(self.math, 'Final Exam', 80)

    def scores(self, record):
        return {entry.assessment_type_id: entry.score for entry in record.assessments.all()}

    def test_key_creates_record(self):
        """Test a key without a record creates it with the summed scores."""
        record = ledger.replace_entries(self.key(self.student), [
            {'assessment_type_id': self.quiz.pk, 'score': '15'},
            {'assessment_type_id': self.exam.pk, 'score': '60.5'},
        ])

        self.assertEqual(GradeRecord.objects.get().pk, record.pk)
        self.assertEqual(record.final_score, Decimal('75.5'))
        self.assertEqual(self.scores(record), {self.quiz.pk: Decimal('15'), self.exam.pk: Decimal('60.5')})

    def test_record_id_replaces_scores(self):
        """Test scores left out of the new set are removed."""
        record = ledger.upsert_entry(self.key(self.student), self.quiz.pk, '10')
        ledger.upsert_entry(self.key(self.student), self.exam.pk, '50')

        record = ledger.replace_entries(record.pk, [{'assessment_type_id': self.exam.pk, 'score': '70'}])

        self.assertEqual(self.scores(record), {self.exam.pk: Decimal('70')})
        self.assertEqual(record.final_score, Decimal('70'))
        record.check_consistency()

    def test_repeated_assessment_type_keeps_last(self):
        """Test the last entry wins when an assessment type is listed twice."""
        record = ledger.replace_entries(self.key(self.student), [
            {'assessment_type_id': self.quiz.pk, 'score': '5'},
            {'assessment_type_id': self.quiz.pk, 'score': '12'},
        ])

        self.assertEqual(record.assessments.count(), 1)
        self.assertEqual(record.final_score, Decimal('12'))

    def test_invalid_score_writes_nothing(self):
        """Test one bad entry leaves the stored scores untouched."""
        record = ledger.upsert_entry(self.key(self.student), self.quiz.pk, '10')

        for score, code in (('25', 'score_too_high'), ('', 'invalid_score'), ('abc', 'invalid_score')):
            with self.assertRaises(ValidationError) as cm:
                ledger.replace_entries(record.pk, [
                    {'assessment_type_id': self.exam.pk, 'score': '70'},
                    {'assessment_type_id': self.quiz.pk, 'score': score},
                ])
            self.assertEqual(cm.exception.code, code)

        record.refresh_from_db()
        self.assertEqual(self.scores(record), {self.quiz.pk: Decimal('10')})
        self.assertEqual(record.final_score, Decimal('10'))

    def test_mismatched_assessment_rejected(self):
        """Test assessment types from another subject or semester are rejected."""
        reading = self.make_assessment(self.english, 'Reading', 10)
        second_quiz = self.make_assessment(self.math, 'Quiz 2', 20, semester=Semester.SECOND)

        for assessment_type in (reading, second_quiz):
            with self.assertRaises(ValidationError) as cm:
                ledger.replace_entries(self.key(self.student), [
                    {'assessment_type_id': assessment_type.pk, 'score': '5'},
                ])
            self.assertEqual(cm.exception.code, 'mismatched_assessment')
        self.assertFalse(GradeRecord.objects.exists())

    def test_empty_entries_clear_record(self):
        """Test an empty list removes every score and zeroes the sum."""
        record = ledger.upsert_entry(self.key(self.student), self.quiz.pk, '10')

        record = ledger.replace_entries(record.pk, [])

        self.assertFalse(record.assessments.exists())
        self.assertEqual(record.final_score, Decimal('0'))

    def test_missing_and_unknown_records(self):
        """Test missing entries, unknown records and malformed ids are rejected."""
        with self.assertRaises(ValidationError) as cm:
            ledger.replace_entries(self.key(self.student), None)
        self.assertEqual(cm.exception.code, 'missing_data')

        with self.assertRaises(NotFoundError):
            ledger.replace_entries(99999, [])

        with self.assertRaises(ValidationError) as cm:
            ledger.replace_entries('abc', [])
        self.assertEqual(cm.exception.code, 'invalid_id')

        with self.assertRaises(NotFoundError) as cm:
            ledger.replace_entries((99999, self.math.pk, Semester.FIRST, YEAR), [])
        self.assertEqual(cm.exception.model_name, 'Student')


@skipUnlessDBFeature('has_select_for_update')
class ConcurrentUpsertTest(GradebookTestMixin, TransactionTestCase):
    """Tests for simultaneous first writes to the same grade record."""

    def test_concurrent_first_writes_share_one_record(self):
        """Test two threads creating the same record end with one record and both scores."""
        student = self.make_student('Kwame')
        quiz = self.make_assessment(self.math, 'Quiz 1', 20)
        exam = self.make_assessment(self.math, 'Final Exam', 80)
        barrier = threading.Barrier(2)
        errors = []

        def write(assessment_type, score):
            try:
                barrier.wait()
                ledger.upsert_entry(self.key(student), assessment_type.pk, score)
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [
            threading.Thread(target=write, args=(quiz, '15')),
            threading.Thread(target=write, args=(exam, '70')),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        record = GradeRecord.objects.get()
        self.assertEqual(record.assessments.count(), 2)
        self.assertEqual(record.final_score, Decimal('85'))
        record.check_consistency()


class GradeSheetTest(GradebookTestMixin, TestCase):
    """Tests for saving and loading grade sheets."""

    def setUp(self):
        super().setUp()
        self.kofi = self.make_student('Kofi')
        self.ama = self.make_student('Ama', gender=Gender.FEMALE)
        self.yaw = self.make_student('Yaw')
        self.quiz = self.make_assessment(self.math, 'Quiz 1', 20)

    def save(self, rows, **overrides):
        kwargs = {
            'assessment_type_id': self.quiz.pk,
            'subject_id': self.math.pk,
            'semester': Semester.FIRST,
            'academic_year': YEAR,
            'rows': rows,
        }
        kwargs.update(overrides)
        return grade_sheet.save_grade_sheet(**kwargs)

    def snapshot(self):
        return sorted(
            (entry.grade_record.student_id, entry.assessment_type_id, entry.score, entry.grade_record.final_score)
            for entry in AssessmentScore.objects.select_related('grade_record')
        )

    def test_saving_twice_is_idempotent(self):
        """Test saving the same sheet twice changes nothing."""
        rows = [
            {'student_id': self.kofi.pk, 'score': '15'},
            {'student_id': self.ama.pk, 'score': '18.5'},
        ]
        self.save(rows)
        first = self.snapshot()

        result = self.save(rows)
        self.assertEqual(result['saved'], 2)
        self.assertEqual(self.snapshot(), first)
        self.assertEqual(AssessmentScore.objects.count(), 2)

    def test_rows_fail_independently(self):
        """Test a failing row does not stop the others."""
        result = self.save([
            {'student_id': self.kofi.pk, 'score': '15'},
            {'student_id': self.ama.pk, 'score': ''},
            {'student_id': self.yaw.pk, 'score': '25'},
            {'student_id': 99999, 'score': '10'},
        ])

        self.assertEqual(result['saved'], 1)
        self.assertEqual(result['skipped'], 1)
        self.assertEqual(
            [(f['student_id'], f['code']) for f in result['failed']],
            [(self.yaw.pk, 'score_too_high'), (99999, 'not_found')],
        )
        self.assertEqual(GradeRecord.objects.get().student, self.kofi)

    def test_malformed_student_id_fails_row_only(self):
        """Test a non-numeric student id fails its own row and the batch continues."""
        result = self.save([
            {'student_id': 'abc', 'score': '5'},
            {'student_id': self.kofi.pk, 'score': '7'},
        ])

        self.assertEqual(result['saved'], 1)
        self.assertEqual(
            [(f['student_id'], f['code']) for f in result['failed']],
            [('abc', 'invalid_id')],
        )
        record = GradeRecord.objects.get()
        self.assertEqual(record.student, self.kofi)
        self.assertEqual(record.final_score, Decimal('7'))

    def test_mismatched_assessment_rejected(self):
        """Test the assessment type must match the sheet."""
        with self.assertRaises(ValidationError) as cm:
            self.save([{'student_id': self.kofi.pk, 'score': '10'}], semester=Semester.SECOND)
        self.assertEqual(cm.exception.code, 'mismatched_assessment')

        with self.assertRaises(ValidationError) as cm:
            self.save([{'student_id': self.kofi.pk, 'score': '10'}], subject_id=self.english.pk)
        self.assertEqual(cm.exception.code, 'mismatched_assessment')
        self.assertFalse(GradeRecord.objects.exists())

    def test_missing_rows_rejected(self):
        """Test a sheet without rows is rejected."""
        with self.assertRaises(ValidationError) as cm:
            self.save(None)
        self.assertEqual(cm.exception.code, 'missing_data')

    def test_get_grade_sheet(self):
        """Test the sheet lists active students with their scores."""
        self.make_student('Esi', status=Student.Status.WITHDRAWN)
        self.save([{'student_id': self.kofi.pk, 'score': '15'}])

        sheet = grade_sheet.get_grade_sheet(self.quiz.pk)

        self.assertEqual(sheet['assessment_type'], self.quiz)
        self.assertEqual([row['full_name'] for row in sheet['students']], ['Ama Test', 'Kofi Test', 'Yaw Test'])
        scores = {row['id']: row['score'] for row in sheet['students']}
        self.assertEqual(scores[self.kofi.pk], Decimal('15'))
        self.assertIsNone(scores[self.ama.pk])
        kofi_row = next(row for row in sheet['students'] if row['id'] == self.kofi.pk)
        self.assertEqual(kofi_row['percentage'], Decimal('75.00'))


class CascadeTest(GradebookTestMixin, TestCase):
    """Tests for removing assessment types and recalculating records."""

    def setUp(self):
        super().setUp()
        self.student = self.make_student('Kwame')
        self.a = self.make_assessment(self.math, 'A', 50)
        self.b = self.make_assessment(self.math, 'B', 50)
        self.c = self.make_assessment(self.math, 'C', 50)
        for assessment, score in ((self.a, '10'), (self.b, '20'), (self.c, '30')):
            ledger.upsert_entry(self.key(self.student), assessment.pk, score)
        self.record = GradeRecord.objects.get()

    def entries(self):
        return {
            entry.assessment_type_id: entry.score
            for entry in self.record.assessments.all()
        }

    def test_cascade_remove(self):
        """Test removing an assessment type recomputes the sum."""
        self.assertEqual(self.record.final_score, Decimal('60'))

        affected = cascade.cascade_remove(self.b.pk)

        self.record.refresh_from_db()
        self.assertEqual(affected, 1)
        self.assertEqual(self.record.final_score, Decimal('40'))
        self.assertEqual(self.entries(), {self.a.pk: Decimal('10'), self.c.pk: Decimal('30')})

    def test_cascade_remove_requires_id(self):
        """Test cascade requires an assessment type id."""
        with self.assertRaises(ValidationError):
            cascade.cascade_remove(None)

    def test_cascade_remove_unused_type(self):
        """Test an unused assessment type touches no records."""
        unused = self.make_assessment(self.english, 'Essay', 20)
        self.assertEqual(cascade.cascade_remove(unused.pk), 0)

    def test_delete_assessment_type(self):
        """Test deleting an assessment type prunes its scores."""
        affected = cascade.delete_assessment_type(self.b.pk)

        self.assertEqual(affected, 1)
        self.assertFalse(AssessmentType.objects.filter(pk=self.b.pk).exists())
        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('40'))

        with self.assertRaises(NotFoundError):
            cascade.delete_assessment_type(self.b.pk)

    def test_deleting_type_directly_cascades(self):
        """Test an ORM delete of an assessment type cascades."""
        self.b.delete()

        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('40'))
        self.assertEqual(len(self.entries()), 2)

    def test_incomplete_cascade_keeps_assessment_type(self):
        """Test a failed cascade rolls back the delete."""
        with mock.patch('gradebook.ledger._remove_entries', side_effect=DatabaseError('lock timeout')):
            with self.assertRaises(CascadeIncomplete) as cm:
                cascade.delete_assessment_type(self.b.pk)

        self.assertEqual(cm.exception.failed_ids, [self.record.pk])
        self.assertTrue(AssessmentType.objects.filter(pk=self.b.pk).exists())
        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('60'))

    def test_recalculate_for_assessment(self):
        """Test recalculation restores drifted sums."""
        GradeRecord.objects.filter(pk=self.record.pk).update(final_score=Decimal('99'))

        self.assertEqual(cascade.recalculate_for_assessment(self.a.pk), 1)
        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('60'))

    def test_editing_assessment_type_recalculates(self):
        """Test editing an assessment type recalculates its records."""
        GradeRecord.objects.filter(pk=self.record.pk).update(final_score=Decimal('99'))

        self.a.month = 'October'
        self.a.save()

        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('60'))

    def test_direct_score_edit_recalculates(self):
        """Test saving a score directly recalculates the record."""
        entry = self.record.assessments.get(assessment_type=self.c)
        entry.score = Decimal('5')
        entry.save()

        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('35'))

    def test_direct_score_delete_recalculates(self):
        """Test deleting a score directly recalculates the record."""
        self.record.assessments.get(assessment_type=self.a).delete()

        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('50'))

    def test_cascade_task(self):
        """Test the cascade task removes the assessment type's scores."""
        result = cascade_remove_task.apply(args=[self.b.pk]).get()

        self.assertEqual(result['affected'], 1)
        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('40'))


class ConsistencySweepTest(GradebookTestMixin, TestCase):
    """Tests for detecting and repairing inconsistent grade records."""

    def setUp(self):
        super().setUp()
        self.student = self.make_student('Akua', gender=Gender.FEMALE)
        self.quiz = self.make_assessment(self.math, 'Quiz 1', 20)
        self.exam = self.make_assessment(self.math, 'Final Exam', 100)
        ledger.upsert_entry(self.key(self.student), self.quiz.pk, '10')
        ledger.upsert_entry(self.key(self.student), self.exam.pk, '70')
        self.record = GradeRecord.objects.get()

    def test_consistent_record(self):
        """Test a clean record is left alone."""
        summary = cascade.sweep_orphaned_entries()

        self.assertEqual(summary, {'examined': 1, 'inconsistent': 0, 'repaired': 0, 'failed': []})

    def test_repairs_duplicate_entries(self):
        """Test duplicates collapse to the latest score."""
        with signals_disabled():
            AssessmentScore.objects.create(grade_record=self.record, assessment_type=self.quiz, score=Decimal('16'))

        with self.assertRaises(ConsistencyViolation):
            self.record.check_consistency()

        summary = cascade.sweep_orphaned_entries()

        self.assertEqual(summary['inconsistent'], 1)
        self.assertEqual(summary['repaired'], 1)
        self.record.refresh_from_db()
        self.assertEqual(self.record.assessments.filter(assessment_type=self.quiz).get().score, Decimal('16'))
        self.assertEqual(self.record.final_score, Decimal('86'))
        self.record.check_consistency()

    def test_repairs_broken_entries(self):
        """Test scores without an assessment type are dropped."""
        with signals_disabled():
            AssessmentScore.objects.create(grade_record=self.record, assessment_type=None, score=Decimal('5'))

        cascade.sweep_orphaned_entries()

        self.record.refresh_from_db()
        self.assertEqual(self.record.assessments.count(), 2)
        self.assertEqual(self.record.final_score, Decimal('80'))

    def test_repairs_stale_final_score(self):
        """Test a drifted final score is recomputed."""
        GradeRecord.objects.filter(pk=self.record.pk).update(final_score=Decimal('99'))

        summary = cascade.sweep_orphaned_entries()

        self.assertEqual(summary['repaired'], 1)
        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('80'))

    def test_dry_run_changes_nothing(self):
        """Test dry run only reports."""
        GradeRecord.objects.filter(pk=self.record.pk).update(final_score=Decimal('99'))

        summary = cascade.sweep_orphaned_entries(dry_run=True)

        self.assertEqual(summary['inconsistent'], 1)
        self.assertEqual(summary['repaired'], 0)
        self.record.refresh_from_db()
        self.assertEqual(self.record.final_score, Decimal('99'))

    def test_sweep_is_rerunnable(self):
        """Test a second sweep finds nothing."""
        GradeRecord.objects.filter(pk=self.record.pk).update(final_score=Decimal('99'))
        cascade.sweep_orphaned_entries()

        summary = cascade.sweep_orphaned_entries()
        self.assertEqual(summary['inconsistent'], 0)

    def test_repair_command(self):
        """Test the repair command output."""
        GradeRecord.objects.filter(pk=self.record.pk).update(final_score=Decimal('99'))
        out = StringIO()

        call_command('repair_grade_records', '--dry-run', stdout=out)
        self.assertIn('[DRY RUN] Found 1 inconsistent record(s)', out.getvalue())

        call_command('repair_grade_records', stdout=out)
        self.assertIn('Repaired 1 grade record(s)', out.getvalue())

    def test_sweep_task(self):
        """Test the sweep task repairs records."""
        GradeRecord.objects.filter(pk=self.record.pk).update(final_score=Decimal('99'))

        summary = sweep_grade_records_task.apply().get()

        self.assertEqual(summary['repaired'], 1)


class DistributionTest(TestCase):
    """Tests for the shared distribution statistics."""

    def participant(self, student_id, percentage, gender=Gender.MALE):
        percentage = Decimal(percentage)
        return {
            'student_id': student_id,
            'name': f'Student {student_id}',
            'gender': gender,
            'score': percentage,
            'percentage': percentage,
        }

    def test_bucket_boundaries(self):
        """Test bucket lower bounds are inclusive."""
        self.assertEqual(analytics.bucket_for(Decimal('49.999')), 'under_50')
        self.assertEqual(analytics.bucket_for(Decimal('50')), 'between_50_and_75')
        self.assertEqual(analytics.bucket_for(Decimal('75')), 'between_75_and_90')
        self.assertEqual(analytics.bucket_for(Decimal('90')), 'over_90')
        self.assertEqual(analytics.bucket_for(Decimal('100')), 'over_90')

    def test_buckets_partition_participants(self):
        """Test every participant lands in exactly one bucket."""
        participants = [
            self.participant(1, '49.999'),
            self.participant(2, '50', Gender.FEMALE),
            self.participant(3, '75'),
            self.participant(4, '100', Gender.FEMALE),
            self.participant(5, '0'),
        ]

        result = analytics.build_distribution(participants, total_students=6)

        distribution = result['distribution']
        self.assertEqual(sum(bucket['total'] for bucket in distribution.values()), 5)
        self.assertEqual(distribution['under_50']['total'], 2)
        self.assertEqual(distribution['between_50_and_75']['female'], 1)
        self.assertEqual(distribution['over_90']['total'], 1)
        self.assertEqual(distribution['under_50']['percentage'], Decimal('40.0'))

    def test_pass_boundary(self):
        """Test the pass mark is inclusive."""
        result = analytics.build_distribution(
            [self.participant(1, '49.999'), self.participant(2, '50')],
            total_students=2,
        )

        stats = result['score_stats']
        self.assertEqual(stats['pass_count'], 1)
        self.assertEqual(stats['fail_count'], 1)
        self.assertEqual(stats['pass_rate'], Decimal('50.0'))

    def test_rates_round_half_up(self):
        """Test one failure in sixteen is reported as 6.3 percent."""
        participants = [self.participant(1, '30')]
        participants += [self.participant(i, '80') for i in range(2, 17)]

        result = analytics.build_distribution(participants, total_students=16)

        self.assertEqual(result['distribution']['under_50']['percentage'], Decimal('6.3'))
        self.assertEqual(result['score_stats']['fail_rate'], Decimal('6.3'))
        self.assertEqual(result['score_stats']['pass_rate'], Decimal('93.8'))

    @override_settings(GRADEBOOK_PASS_MARK=Decimal('40'))
    def test_pass_mark_setting(self):
        """Test the pass mark can be configured."""
        result = analytics.build_distribution([self.participant(1, '45')], total_students=1)
        self.assertEqual(result['score_stats']['pass_count'], 1)

    def test_statistics(self):
        """Test participation and score statistics."""
        result = analytics.build_distribution(
            [self.participant(1, '80'), self.participant(2, '55', Gender.FEMALE), self.participant(3, '60', '')],
            total_students=4,
        )

        self.assertEqual(result['general'], {
            'total_students': 4,
            'participants': 3,
            'missed': 1,
            'male': 2,
            'female': 1,
        })
        stats = result['score_stats']
        self.assertEqual(stats['highest'], Decimal('80'))
        self.assertEqual(stats['lowest'], Decimal('55'))
        self.assertEqual(stats['average'], Decimal('65.00'))

    def test_no_participants(self):
        """Test an empty class gives the no-data result."""
        result = analytics.build_distribution([], total_students=5)

        self.assertFalse(result['has_data'])
        self.assertEqual(result['general']['missed'], 5)
        self.assertIsNone(result['score_stats'])


class AnalyticsTest(GradebookTestMixin, TestCase):
    """Tests for class analytics over stored grade records."""

    def setUp(self):
        super().setUp()
        self.s1 = self.make_student('Kofi')
        self.s2 = self.make_student('Ama', gender=Gender.FEMALE)

    def test_single_assessment_end_to_end(self):
        """Test statistics for a saved grade sheet."""
        exam = self.make_assessment(self.math, 'Final Exam', 100)
        grade_sheet.save_grade_sheet(exam.pk, self.math.pk, Semester.FIRST, YEAR, [
            {'student_id': self.s1.pk, 'score': '80'},
            {'student_id': self.s2.pk, 'score': ''},
        ])

        result = analytics.get_assessment_distribution(exam.pk, GradeLevel.GRADE_7)
        analysis = result['analysis']

        self.assertEqual(analysis['general']['participants'], 1)
        self.assertEqual(analysis['general']['missed'], 1)
        self.assertEqual(analysis['score_stats']['average'], Decimal('80.00'))
        self.assertEqual(analysis['score_stats']['average_percent'], Decimal('80.00'))
        self.assertEqual(analysis['score_stats']['pass_count'], 1)
        self.assertEqual(analysis['score_stats']['pass_rate'], Decimal('100.0'))
        self.assertEqual(analysis['distribution']['between_75_and_90']['total'], 1)

    def test_inactive_students_excluded(self):
        """Test inactive students are not counted."""
        graduate = self.make_student('Yaw', status=Student.Status.GRADUATED)
        exam = self.make_assessment(self.math, 'Final Exam', 100)
        ledger.upsert_entry(self.key(graduate), exam.pk, '90')
        ledger.upsert_entry(self.key(self.s1), exam.pk, '40')

        analysis = analytics.get_assessment_distribution(exam.pk, GradeLevel.GRADE_7)['analysis']

        self.assertEqual(analysis['general']['total_students'], 2)
        self.assertEqual(analysis['general']['participants'], 1)
        self.assertEqual(analysis['score_stats']['highest'], Decimal('40'))

    def test_no_participants(self):
        """Test an empty class gives the no-data result."""
        exam = self.make_assessment(self.math, 'Final Exam', 100)

        analysis = analytics.get_assessment_distribution(exam.pk, GradeLevel.GRADE_7)['analysis']

        self.assertFalse(analysis['has_data'])
        self.assertEqual(analysis['general']['missed'], 2)

    def test_subject_distribution(self):
        """Test subject statistics use the subject's total marks."""
        quiz = self.make_assessment(self.math, 'Quiz 1', 20)
        exam = self.make_assessment(self.math, 'Final Exam', 80)
        ledger.upsert_entry(self.key(self.s1), quiz.pk, '15')
        ledger.upsert_entry(self.key(self.s1), exam.pk, '60')

        result = analytics.get_subject_distribution(self.math.pk, Semester.FIRST, YEAR)

        self.assertEqual(result['total_possible'], Decimal('100'))
        self.assertEqual(result['analysis']['score_stats']['highest_percent'], Decimal('75.00'))
        with self.assertRaises(NotFoundError):
            analytics.get_subject_distribution(99999, Semester.FIRST, YEAR)

    def test_subject_performance_ordering(self):
        """Test subjects are ordered by average score."""
        Subject.objects.create(name='French', grade_level=GradeLevel.GRADE_7)
        math_exam = self.make_assessment(self.math, 'Final Exam', 200)
        english_exam = self.make_assessment(self.english, 'Final Exam', 50)
        ledger.upsert_entry(self.key(self.s1), math_exam.pk, '100')
        ledger.upsert_entry(self.key(self.s1, self.english), english_exam.pk, '40')

        rows = analytics.get_subject_performance(GradeLevel.GRADE_7, Semester.FIRST, YEAR)

        # Mathematics has the higher average score but the lower percentage.
        self.assertEqual([row['subject'] for row in rows], ['Mathematics', 'English Language', 'French'])
        self.assertEqual(rows[0]['average_score'], Decimal('100.00'))
        self.assertEqual(rows[0]['average_percent'], Decimal('50.00'))
        self.assertEqual(rows[1]['average_score'], Decimal('40.00'))
        self.assertEqual(rows[1]['average_percent'], Decimal('80.00'))
        self.assertEqual(rows[1]['pass_rate'], Decimal('100.0'))
        self.assertIsNone(rows[2]['average_score'])
        self.assertIsNone(rows[2]['average_percent'])

    def test_class_analytics(self):
        """Test per-subject M/F/T breakdown for one assessment name."""
        self.make_student('Yaw')
        math_quiz = self.make_assessment(self.math, 'Quiz 1', 20)
        english_quiz = self.make_assessment(self.english, 'quiz 1', 10)
        self.make_assessment(self.math, 'Quiz 2', 20)
        ledger.upsert_entry(self.key(self.s1), math_quiz.pk, '19')
        ledger.upsert_entry(self.key(self.s2), math_quiz.pk, '8')
        ledger.upsert_entry(self.key(self.s2, self.english), english_quiz.pk, '6')

        rows = analytics.get_class_analytics(GradeLevel.GRADE_7, 'QUIZ 1', Semester.FIRST, YEAR)

        self.assertEqual([row['subject'] for row in rows], ['English Language', 'Mathematics'])
        math_row = rows[1]
        self.assertEqual(math_row['students'], {'M': 2, 'F': 1, 'T': 3})
        self.assertEqual(math_row['attended'], {'M': 1, 'F': 1, 'T': 2})
        self.assertEqual(math_row['missed'], {'M': 1, 'F': 0, 'T': 1})
        self.assertEqual(math_row['over_90'], {'M': 1, 'F': 0, 'T': 1})
        self.assertEqual(math_row['under_50'], {'M': 0, 'F': 1, 'T': 1})
        self.assertEqual(rows[0]['between_50_and_75'], {'M': 0, 'F': 1, 'T': 1})

    def test_class_analytics_requires_name(self):
        """Test class analytics requires an assessment name."""
        with self.assertRaises(ValidationError):
            analytics.get_class_analytics(GradeLevel.GRADE_7, '  ', Semester.FIRST, YEAR)

    def test_unknown_gender_counts_as_male(self):
        """Test students without a gender count as male."""
        unknown = self.make_student('Sam', gender='')
        exam = self.make_assessment(self.math, 'Final Exam', 100)
        ledger.upsert_entry(self.key(unknown), exam.pk, '70')

        analysis = analytics.get_assessment_distribution(exam.pk, GradeLevel.GRADE_7)['analysis']

        self.assertEqual(analysis['general']['male'], 1)
        self.assertEqual(analysis['distribution']['between_50_and_75']['male'], 1)

    def test_at_risk_students(self):
        """Test students below the threshold are listed weakest first."""
        exam = self.make_assessment(self.math, 'Final Exam', 50)
        ledger.upsert_entry(self.key(self.s1), exam.pk, '40')
        ledger.upsert_entry(self.key(self.s2), exam.pk, '20')

        results = analytics.get_at_risk_students(GradeLevel.GRADE_7, Semester.FIRST, YEAR)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]['subject'], 'Mathematics')
        self.assertEqual([s['id'] for s in results[0]['students']], [self.s2.pk])
        self.assertEqual(results[0]['students'][0]['percentage'], Decimal('40.00'))

        results = analytics.get_at_risk_students(GradeLevel.GRADE_7, Semester.FIRST, YEAR, threshold=90)
        self.assertEqual([s['id'] for s in results[0]['students']], [self.s2.pk, self.s1.pk])

    def test_assessment_names(self):
        """Test assessment names are listed once each."""
        self.make_assessment(self.math, 'Quiz 1', 20)
        self.make_assessment(self.english, 'quiz 1', 10)
        self.make_assessment(self.math, 'Final Exam', 100)
        self.make_assessment(self.math, 'Mid-term', 50, semester=Semester.SECOND)

        self.assertEqual(analytics.assessment_names(Semester.FIRST, YEAR), ['Final Exam', 'Quiz 1'])


class RankingTest(GradebookTestMixin, TestCase):
    """Tests for class rankings."""

    def setUp(self):
        super().setUp()
        self.math_exam = self.make_assessment(self.math, 'Final Exam', 50)
        self.english_exam = self.make_assessment(self.english, 'Final Exam', 50)
        self.s1 = self.make_student('Kofi')
        self.s2 = self.make_student('Ama', gender=Gender.FEMALE)
        self.s3 = self.make_student('Yaw')
        # Totals: s1 = 90, s2 = 75, s3 = 60
        for student, math_score, english_score in ((self.s1, 50, 40), (self.s2, 45, 30), (self.s3, 30, 30)):
            ledger.upsert_entry(self.key(student), self.math_exam.pk, math_score)
            ledger.upsert_entry(self.key(student, self.english), self.english_exam.pk, english_score)

    def test_rank(self):
        """Test ranks follow total scores."""
        self.assertEqual(ranking.get_rank(self.s1.pk, GradeLevel.GRADE_7, Semester.FIRST, YEAR), '1 / 3')
        self.assertEqual(ranking.get_rank(self.s2.pk, GradeLevel.GRADE_7, Semester.FIRST, YEAR), '2 / 3')
        self.assertEqual(ranking.get_rank(str(self.s3.pk), GradeLevel.GRADE_7, Semester.FIRST, YEAR), '3 / 3')

    def test_unranked_student(self):
        """Test students without records are unranked."""
        newcomer = self.make_student('Esi', gender=Gender.FEMALE)

        self.assertEqual(ranking.get_rank(newcomer.pk, GradeLevel.GRADE_7, Semester.FIRST, YEAR), '-')
        self.assertEqual(ranking.get_rank(self.s1.pk, GradeLevel.GRADE_7, Semester.SECOND, YEAR), '-')

    def test_inactive_students_not_ranked(self):
        """Test inactive students are left out of the cohort."""
        self.s1.status = Student.Status.SUSPENDED
        self.s1.save()

        self.assertEqual(ranking.get_rank(self.s1.pk, GradeLevel.GRADE_7, Semester.FIRST, YEAR), '-')
        self.assertEqual(ranking.get_rank(self.s2.pk, GradeLevel.GRADE_7, Semester.FIRST, YEAR), '1 / 2')

    def test_overall_rank_spans_semesters(self):
        """Test overall rank sums both semesters."""
        second_exam = self.make_assessment(self.math, 'Final Exam', 50, semester=Semester.SECOND)
        ledger.upsert_entry(self.key(self.s3, semester=Semester.SECOND), second_exam.pk, 50)

        self.assertEqual(ranking.get_overall_rank(self.s3.pk, GradeLevel.GRADE_7, YEAR), '1 / 3')
        self.assertEqual(ranking.get_rank(self.s3.pk, GradeLevel.GRADE_7, Semester.FIRST, YEAR), '3 / 3')
        self.assertEqual(
            ranking.rank_cohort(GradeLevel.GRADE_7, YEAR),
            [(self.s3.pk, Decimal('110')), (self.s1.pk, Decimal('90')), (self.s2.pk, Decimal('75'))],
        )

    def test_missing_fields(self):
        """Test ranking requires a student id."""
        with self.assertRaises(ValidationError):
            ranking.get_rank(None, GradeLevel.GRADE_7, Semester.FIRST, YEAR)
