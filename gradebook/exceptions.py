"""
Exceptions raised by the gradebook engine.

Input problems use Django's ``ValidationError`` directly; the classes here
cover lookups and ledger consistency.
"""
from django.core.exceptions import ObjectDoesNotExist


class GradebookError(Exception):
    """Base class for gradebook engine errors."""


class NotFoundError(GradebookError, ObjectDoesNotExist):
    """A referenced student, subject, assessment type or record does not exist."""

    def __init__(self, model_name, object_id):
        self.model_name = model_name
        self.object_id = object_id
        super().__init__(f"{model_name} not found: {object_id}")


class ConsistencyViolation(GradebookError):
    """
    A grade record breaks one of its invariants (broken or duplicate
    entries, or a final score that no longer matches its entries).

    Raised by ``GradeRecord.check_consistency`` and repaired by the sweep.
    """

    def __init__(self, record_id, problems):
        self.record_id = record_id
        self.problems = list(problems)
        super().__init__(f"Grade record {record_id} is inconsistent: {'; '.join(self.problems)}")


class CascadeIncomplete(GradebookError):
    """Some grade records could not be updated during a cascade."""

    def __init__(self, assessment_type_id, affected, failed_ids):
        self.assessment_type_id = assessment_type_id
        self.affected = affected
        self.failed_ids = list(failed_ids)
        super().__init__(
            f"Cascade for assessment type {assessment_type_id} incomplete: "
            f"{len(self.failed_ids)} record(s) failed, {affected} updated"
        )
