"""
Configuration settings for the gradebook app.

These values can be overridden in Django settings by prefixing with GRADEBOOK_.
For example, to change the pass mark:
    GRADEBOOK_PASS_MARK = Decimal('40')

All configuration values are lazily loaded to avoid Django setup issues.
"""
from decimal import Decimal


def _get_setting(name, default):
    """Get a gradebook setting from Django settings or use default."""
    from django.conf import settings
    return getattr(settings, f'GRADEBOOK_{name}', default)


_DEFAULTS = {
    # Normalized percentage needed to pass (inclusive)
    'PASS_MARK': Decimal('50'),

    # Students below this percentage of a subject's total are at risk
    'AT_RISK_THRESHOLD': Decimal('60'),

    # Gender counted for students with no recorded gender
    'UNKNOWN_GENDER': 'M',

    # Returned by the rank engine when a student has no eligible record
    'UNRANKED_MARKER': '-',

    # Records loaded per query by the consistency sweep
    'SWEEP_CHUNK_SIZE': 500,

    # Celery task settings
    'TASK_MAX_RETRIES': 3,
    'TASK_RETRY_DELAY': 60,  # seconds
}


class _ConfigProxy:
    """
    Lazy configuration proxy that loads settings only when accessed.
    This avoids Django setup issues during module import.
    """

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


# Module-level proxy object for attribute access
_config = _ConfigProxy()


def __getattr__(name):
    """Enable module-level attribute access via the config proxy."""
    return getattr(_config, name)
