"""Recurrence rules and occurrence expansion.

Rules are a compact subset of RFC 5545 RRULE syntax, e.g.
``FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;COUNT=6``. Parsing is forgiving: a
malformed part falls back to its default instead of raising, so a stored
rule can always be expanded.

Expansion does not go through ``dateutil.rrule``: weekly
rules with BYDAY are anchored on the Sunday that starts the origin's week
and never repeat the origin's own date, and ``COUNT`` counts the origin as
the first instance even when its weekday is outside BYDAY. Calendar
arithmetic for monthly/yearly steps uses ``relativedelta``.
"""
import calendar
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Iterator, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from . import config

logger = logging.getLogger(__name__)

Occurrence = Tuple[datetime, datetime]


class Frequency(str, Enum):
    DAILY = 'DAILY'
    WEEKLY = 'WEEKLY'
    MONTHLY = 'MONTHLY'
    YEARLY = 'YEARLY'


class Weekday(IntEnum):
    SU = 0
    MO = 1
    TU = 2
    WE = 3
    TH = 4
    FR = 5
    SA = 6

    @classmethod
    def of(cls, dt: datetime) -> 'Weekday':
        # datetime.weekday() is Monday=0; rules count from Sunday
        return cls((dt.weekday() + 1) % 7)


@dataclass
class RecurrenceRule:
    freq: Frequency = Frequency.WEEKLY
    interval: int = 1
    # 0 means unbounded
    count: int = 0
    by_days: List[Weekday] = field(default_factory=list)
    by_month_day: Optional[int] = None
    # naive UTC, second precision
    until: Optional[datetime] = None

    @property
    def uses_week_days(self) -> bool:
        return self.freq is Frequency.WEEKLY and bool(self.by_days)

    @property
    def bounded(self) -> bool:
        return self.count > 0 or self.until is not None

    def to_string(self) -> str:
        """Canonical rule string; two rules with the same pattern render identically."""
        parts = [f'FREQ={self.freq.value}']
        if self.interval != 1:
            parts.append(f'INTERVAL={self.interval}')
        if self.count:
            parts.append(f'COUNT={self.count}')
        if self.by_days:
            parts.append('BYDAY=' + ','.join(d.name for d in sorted(self.by_days)))
        if self.by_month_day:
            parts.append(f'BYMONTHDAY={self.by_month_day}')
        if self.until is not None:
            parts.append('UNTIL=' + self.until.strftime('%Y%m%dT%H%M%SZ'))
        return ';'.join(parts)


def _int_or(value: str, default: Optional[int]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# (format, is date-only)
_UNTIL_FORMATS = (
    ('%Y%m%dT%H%M%SZ', False),
    ('%Y%m%dT%H%M%S', False),
    ('%Y%m%d', True),
)


def _parse_until(value: str) -> Optional[datetime]:
    value = value.strip().upper()
    for fmt, date_only in _UNTIL_FORMATS:
        try:
            dt = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if date_only:
            # a bare date includes the whole day
            dt = dt.replace(hour=23, minute=59, second=59)
        return dt
    logger.warning('ignoring unparseable UNTIL value %r', value)
    return None


def parse_rule(text: Optional[str]) -> RecurrenceRule:
    """Parse a ``KEY=VALUE;...`` rule string. Never raises."""
    rule = RecurrenceRule()
    if not text:
        return rule
    body = text.strip()
    if body.upper().startswith('RRULE:'):
        body = body[len('RRULE:'):]
    for part in body.split(';'):
        if '=' not in part:
            continue
        key, _, value = part.partition('=')
        key = key.strip().upper()
        value = value.strip()
        if key == 'FREQ':
            try:
                rule.freq = Frequency(value.upper())
            except ValueError:
                logger.debug('unknown FREQ %r, using WEEKLY', value)
        elif key == 'INTERVAL':
            n = _int_or(value, 1)
            rule.interval = n if n >= 1 else 1
        elif key == 'COUNT':
            n = _int_or(value, 0)
            rule.count = n if n >= 0 else 0
        elif key == 'BYDAY':
            days: List[Weekday] = []
            for token in value.split(','):
                day = Weekday.__members__.get(token.strip().upper())
                if day is not None and day not in days:
                    days.append(day)
            rule.by_days = days
        elif key == 'BYMONTHDAY':
            n = _int_or(value, None)
            if n is not None and 1 <= n <= 31:
                rule.by_month_day = n
        elif key == 'UNTIL':
            rule.until = _parse_until(value)
    return rule


def same_rule(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return not a and not b
    return parse_rule(a).to_string() == parse_rule(b).to_string()


def matches_pattern(dt: datetime, rule: RecurrenceRule) -> bool:
    """False only when a weekly BYDAY rule excludes ``dt``'s weekday."""
    if not rule.uses_week_days:
        return True
    return Weekday.of(dt) in rule.by_days


def next_pattern_start(start: datetime, end: datetime, rule: RecurrenceRule) -> Occurrence:
    """Move an off-pattern range forward to the first day the rule allows."""
    if matches_pattern(start, rule):
        return start, end
    for offset in range(1, 7):
        shift = timedelta(days=offset)
        if matches_pattern(start + shift, rule):
            return start + shift, end + shift
    return start, end


def _pin_day(dt: datetime, day: int) -> datetime:
    last = calendar.monthrange(dt.year, dt.month)[1]
    return dt.replace(day=min(day, last))


def _align_until(until: Optional[datetime], origin: datetime) -> Optional[datetime]:
    if until is None:
        return None
    if origin.tzinfo is not None and until.tzinfo is None:
        return until.replace(tzinfo=timezone.utc)
    if origin.tzinfo is None and until.tzinfo is not None:
        return until.astimezone(timezone.utc).replace(tzinfo=None)
    return until


def ends_before(dt: datetime, rule: RecurrenceRule) -> bool:
    """True when the rule's UNTIL is earlier than ``dt``."""
    until = _align_until(rule.until, dt)
    return until is not None and dt > until


def _candidates(start: datetime, rule: RecurrenceRule, capped: bool) -> Iterator[datetime]:
    """Yield start times after the origin in ascending order.

    With ``capped`` the stream ends at the frequency's safety cap;
    otherwise it is unbounded and the caller stops it.
    """
    step = rule.interval
    if rule.uses_week_days:
        anchor = start - timedelta(days=int(Weekday.of(start)))
        days = sorted(rule.by_days)
        slot = 0
        while not capped or slot < config.MAX_WEEK_SLOTS:
            week_start = anchor + timedelta(weeks=slot * step)
            for day in days:
                candidate = week_start + timedelta(days=int(day))
                if candidate < start or candidate.date() == start.date():
                    continue
                yield candidate
            slot += 1
    elif rule.freq in (Frequency.MONTHLY, Frequency.YEARLY):
        monthly = rule.freq is Frequency.MONTHLY
        cap = config.MAX_MONTHLY_OCCURRENCES if monthly else config.MAX_YEARLY_OCCURRENCES
        k = 1
        while not capped or k < cap:
            if monthly:
                candidate = start + relativedelta(months=k * step)
            else:
                candidate = start + relativedelta(years=k * step)
            if rule.by_month_day:
                candidate = _pin_day(candidate, rule.by_month_day)
            if candidate > start:
                yield candidate
            k += 1
    else:
        daily = rule.freq is Frequency.DAILY
        delta = timedelta(days=step) if daily else timedelta(weeks=step)
        cap = config.MAX_DAILY_OCCURRENCES if daily else config.MAX_WEEK_SLOTS
        k = 1
        while not capped or k < cap:
            yield start + delta * k
            k += 1


def generate_occurrences(start: datetime, end: datetime, rule: RecurrenceRule,
                         limit: Optional[int] = None) -> List[Occurrence]:
    """Expand an origin range into the ordered list of series instances.

    Item zero is always the origin itself. ``COUNT`` is the total number of
    instances including the origin. ``limit`` replaces ``COUNT`` and lifts
    the unbounded safety caps; it is used when re-dating an existing set of
    rows. ``MAX_SERIES_INSTANCES`` applies in every case.
    """
    duration = end - start
    until = _align_until(rule.until, start)
    if limit is not None:
        total = limit
    elif rule.count:
        total = rule.count
    else:
        total = config.MAX_SERIES_INSTANCES
    total = min(total, config.MAX_SERIES_INSTANCES)

    out: List[Occurrence] = [(start, end)]
    if total <= 1:
        return out
    capped = limit is None and not rule.bounded
    for candidate in _candidates(start, rule, capped):
        if until is not None and candidate > until:
            break
        out.append((candidate, candidate + duration))
        if len(out) >= total:
            break
    return out


def reschedule(start: datetime, end: datetime, rule: RecurrenceRule, n: int) -> List[Occurrence]:
    """Return up to ``n`` slots following an anchor, ignoring COUNT.

    Fewer than ``n`` slots come back when UNTIL ends the pattern first.
    """
    if n <= 0:
        return []
    return generate_occurrences(start, end, replace(rule, count=0), limit=n + 1)[1:]
