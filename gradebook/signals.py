"""
Signals that keep grade records consistent when scores or assessment types
change outside the ledger.

Ledger operations recompute ``final_score`` themselves and run with signals
disabled; these receivers cover direct model edits (admin, shell, data
fixes) and deletions of assessment types.
"""
import logging
import threading

from django.db.models.signals import post_save, post_delete, pre_delete
from django.dispatch import receiver

from .models import AssessmentScore, AssessmentType

logger = logging.getLogger(__name__)

# Thread-local storage for signal disabling (thread-safe)
_thread_locals = threading.local()


def _is_signals_disabled():
    """Check if signals are disabled for the current thread."""
    return getattr(_thread_locals, 'signals_disabled', False)


def disable_signals():
    """Disable auto-calculation signals for the current thread (for bulk operations)."""
    _thread_locals.signals_disabled = True


def enable_signals():
    """Re-enable auto-calculation signals for the current thread."""
    _thread_locals.signals_disabled = False


class signals_disabled:
    """Context manager to temporarily disable signals (thread-safe)."""

    def __enter__(self):
        self._previous_state = _is_signals_disabled()
        disable_signals()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self._previous_state:
            enable_signals()
        return False


@receiver(post_save, sender=AssessmentScore)
def score_saved(sender, instance, created, **kwargs):
    """Recalculate the owning record when a score is saved directly."""
    if _is_signals_disabled():
        return

    from .ledger import recalculate_record
    recalculate_record(instance.grade_record_id)


@receiver(post_delete, sender=AssessmentScore)
def score_deleted(sender, instance, **kwargs):
    """Recalculate the owning record when a score is deleted directly."""
    if _is_signals_disabled():
        return

    from .ledger import recalculate_record
    recalculate_record(instance.grade_record_id)


@receiver(pre_delete, sender=AssessmentType)
def assessment_type_deleting(sender, instance, **kwargs):
    """Prune the assessment type's scores before the type itself goes away."""
    if _is_signals_disabled():
        return

    from .cascade import cascade_remove
    affected = cascade_remove(instance.pk)
    logger.info(f"Assessment type {instance.pk} deleted; {affected} grade record(s) updated")


@receiver(post_save, sender=AssessmentType)
def assessment_type_saved(sender, instance, created, **kwargs):
    """Recompute sums of records that reference an edited assessment type."""
    if created or _is_signals_disabled():
        return

    from .cascade import recalculate_for_assessment
    recalculate_for_assessment(instance.pk)
