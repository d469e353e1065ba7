"""
Utility functions for the gradebook app.
Score parsing and percentage helpers shared by the ledger and analytics.
"""
from collections import namedtuple
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


ScoreValidationError = namedtuple('ScoreValidationError', ['message', 'error_code', 'hint'])

HUNDRED = Decimal('100')


def parse_score(value):
    """
    Convert a submitted score to a Decimal.

    Returns None for anything that is not a finite number: None, blank
    strings, booleans, text such as 'abc', NaN and infinities.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None

    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None

    if not number.is_finite():
        return None
    return number


def validate_score(value, max_points=None, allow_empty=True):
    """
    Parse and range-check a score.

    Args:
        value: Raw submitted value
        max_points: Upper bound (inclusive), or None to skip the check
        allow_empty: If True, a blank or non-numeric value is not an error

    Returns:
        tuple: (points: Decimal or None, error: ScoreValidationError or None)
    """
    points = parse_score(value)

    if points is None:
        if allow_empty:
            return None, None
        return None, ScoreValidationError(
            message=f"'{value}' is not a valid score",
            error_code='invalid_score',
            hint='Enter a number',
        )

    if points < 0:
        return None, ScoreValidationError(
            message=f"Score ({points}) cannot be negative",
            error_code='negative_score',
            hint='Enter a score of 0 or more',
        )

    if max_points is not None and points > Decimal(str(max_points)):
        return None, ScoreValidationError(
            message=f"Score ({points}) cannot exceed total marks ({max_points})",
            error_code='score_too_high',
            hint=f'Enter a score between 0 and {max_points}',
        )

    return points, None


def to_percentage(score, maximum):
    """Express ``score`` as a percentage of ``maximum`` (unrounded)."""
    return Decimal(str(score)) / Decimal(str(maximum)) * HUNDRED


def quantize(value, places=2):
    """Round to ``places`` decimals, halves away from zero (12.345 -> 12.35)."""
    return Decimal(str(value)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
