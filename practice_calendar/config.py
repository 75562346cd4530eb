"""Runtime configuration for the practice calendar service.

Values are read from environment variables so limits can be tuned per
deployment without code changes. A developer may drop a
``practice_calendar/local_config.py`` next to this file to override any
of them locally; it is imported last.
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


# Echo every SQL statement issued by the async engine.
SQL_ECHO = _trueish(os.getenv('SQL_ECHO', '0'))

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Safety caps used only when a rule carries neither COUNT nor UNTIL.
# Weekly rules (with or without BYDAY) are capped by week slots, the
# others by total instances including the origin.
MAX_WEEK_SLOTS = _int_env('MAX_WEEK_SLOTS', 104)
MAX_DAILY_OCCURRENCES = _int_env('MAX_DAILY_OCCURRENCES', 365)
MAX_MONTHLY_OCCURRENCES = _int_env('MAX_MONTHLY_OCCURRENCES', 24)
MAX_YEARLY_OCCURRENCES = _int_env('MAX_YEARLY_OCCURRENCES', 5)

# Hard ceiling on the size of any one series, applied even when COUNT or
# UNTIL is present.
MAX_SERIES_INSTANCES = _int_env('MAX_SERIES_INSTANCES', 1000)

# Well-known tags attached to newly created appointments. init_db seeds
# them when missing.
TAG_NEW_CLIENT = os.getenv('TAG_NEW_CLIENT', 'New Client')
TAG_APPOINTMENT_UNPAID = os.getenv('TAG_APPOINTMENT_UNPAID', 'Appointment Unpaid')
TAG_NO_NOTE = os.getenv('TAG_NO_NOTE', 'No Note')

DEFAULT_TAG_COLORS = {
    TAG_NEW_CLIENT: '#00FF00',
    TAG_APPOINTMENT_UNPAID: '#FF0000',
    TAG_NO_NOTE: '#FFFF00',
}


try:
    from .local_config import *  # noqa: F401,F403
except ImportError:
    pass
