import pytest
from datetime import datetime, timedelta, timezone

from practice_calendar import config
from practice_calendar.recurrence import (
    generate_occurrences,
    matches_pattern,
    next_pattern_start,
    parse_rule,
    reschedule,
)


def _starts(occurrences):
    return [s for s, _ in occurrences]


def test_weekly_with_days_scenario_a():
    start = datetime(2024, 1, 1, 9, 0)
    end = datetime(2024, 1, 1, 9, 45)
    occ = generate_occurrences(start, end, parse_rule('FREQ=WEEKLY;BYDAY=MO,WE,FR;COUNT=6'))
    assert _starts(occ) == [datetime(2024, 1, d, 9, 0) for d in (1, 3, 5, 8, 10, 12)]
    assert all(e - s == timedelta(minutes=45) for s, e in occ)


def test_weekly_with_days_off_pattern_origin_counts_toward_count():
    # Tuesday origin, Tuesday not in BYDAY
    start = datetime(2024, 1, 2, 9, 0)
    rule = parse_rule('FREQ=WEEKLY;BYDAY=MO,WE,FR;COUNT=4')
    occ = generate_occurrences(start, start + timedelta(hours=1), rule)
    assert _starts(occ) == [datetime(2024, 1, d, 9, 0) for d in (2, 3, 5, 8)]
    assert not matches_pattern(start, rule)
    assert all(matches_pattern(s, rule) for s in _starts(occ)[1:])


def test_weekly_with_days_and_interval():
    start = datetime(2024, 1, 1, 9, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1),
                               parse_rule('FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;COUNT=6'))
    assert _starts(occ) == [datetime(2024, 1, d, 9, 0) for d in (1, 3, 15, 17, 29, 31)]


def test_weekly_with_days_visits_sunday_first_within_a_week():
    # Wednesday origin; Sunday of the same week is before the origin and skipped
    start = datetime(2024, 1, 3, 18, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1),
                               parse_rule('FREQ=WEEKLY;BYDAY=SA,SU;COUNT=4'))
    assert _starts(occ) == [
        datetime(2024, 1, 3, 18, 0),
        datetime(2024, 1, 6, 18, 0),
        datetime(2024, 1, 7, 18, 0),
        datetime(2024, 1, 13, 18, 0),
    ]


@pytest.mark.parametrize('rule_text', [
    'FREQ=DAILY;COUNT=5',
    'FREQ=DAILY;INTERVAL=3;COUNT=5',
    'FREQ=WEEKLY;COUNT=5',
    'FREQ=WEEKLY;BYDAY=TU,TH;COUNT=7',
    'FREQ=MONTHLY;COUNT=5',
    'FREQ=MONTHLY;BYMONTHDAY=30;COUNT=5',
    'FREQ=YEARLY;COUNT=3',
])
def test_duration_and_ordering_hold_for_every_frequency(rule_text):
    start = datetime(2024, 1, 30, 14, 30)
    end = start + timedelta(minutes=50)
    occ = generate_occurrences(start, end, parse_rule(rule_text))
    assert occ[0] == (start, end)
    assert len(occ) == parse_rule(rule_text).count
    assert all(e - s == timedelta(minutes=50) for s, e in occ)
    starts = _starts(occ)
    assert all(a < b for a, b in zip(starts, starts[1:]))


def test_until_bounds_weekly_with_days():
    start = datetime(2024, 1, 1, 9, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1),
                               parse_rule('FREQ=WEEKLY;BYDAY=MO,WE,FR;UNTIL=20240110'))
    assert _starts(occ) == [datetime(2024, 1, d, 9, 0) for d in (1, 3, 5, 8, 10)]


def test_until_with_aware_origin():
    start = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
    occ = generate_occurrences(start, start + timedelta(hours=1),
                               parse_rule('FREQ=DAILY;UNTIL=20240103T090000Z'))
    assert _starts(occ) == [datetime(2024, 1, d, 9, 0, tzinfo=timezone.utc) for d in (1, 2, 3)]


def test_count_wins_over_later_until():
    start = datetime(2024, 1, 1, 9, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1),
                               parse_rule('FREQ=DAILY;COUNT=3;UNTIL=20241231'))
    assert len(occ) == 3


def test_monthly_clamps_to_month_end():
    start = datetime(2024, 1, 31, 10, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1), parse_rule('FREQ=MONTHLY;COUNT=4'))
    assert _starts(occ) == [
        datetime(2024, 1, 31, 10, 0),
        datetime(2024, 2, 29, 10, 0),
        datetime(2024, 3, 31, 10, 0),
        datetime(2024, 4, 30, 10, 0),
    ]


def test_monthly_bymonthday_pins_the_day():
    start = datetime(2024, 1, 10, 10, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1),
                               parse_rule('FREQ=MONTHLY;BYMONTHDAY=15;COUNT=3'))
    assert _starts(occ) == [
        datetime(2024, 1, 10, 10, 0),
        datetime(2024, 2, 15, 10, 0),
        datetime(2024, 3, 15, 10, 0),
    ]


def test_yearly_with_interval():
    start = datetime(2024, 2, 29, 8, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1),
                               parse_rule('FREQ=YEARLY;INTERVAL=2;COUNT=3'))
    assert _starts(occ) == [
        datetime(2024, 2, 29, 8, 0),
        datetime(2026, 2, 28, 8, 0),
        datetime(2028, 2, 29, 8, 0),
    ]


@pytest.mark.parametrize('rule_text, expected', [
    ('FREQ=WEEKLY;BYDAY=MO', 104),
    ('FREQ=WEEKLY', 104),
    ('FREQ=MONTHLY', 24),
    ('FREQ=YEARLY', 5),
    ('FREQ=DAILY', 365),
])
def test_unbounded_rules_are_capped(rule_text, expected):
    start = datetime(2024, 1, 1, 9, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1), parse_rule(rule_text))
    assert len(occ) == expected


def test_weekly_days_cap_counts_week_slots():
    # two days per week over 104 week slots, minus the origin's own date
    start = datetime(2024, 1, 1, 9, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1), parse_rule('FREQ=WEEKLY;BYDAY=MO,TH'))
    assert len(occ) == 1 + 104 * 2 - 1


def test_global_ceiling_applies_to_counted_rules(monkeypatch):
    monkeypatch.setattr(config, 'MAX_SERIES_INSTANCES', 10)
    start = datetime(2024, 1, 1, 9, 0)
    occ = generate_occurrences(start, start + timedelta(hours=1), parse_rule('FREQ=DAILY;COUNT=50'))
    assert len(occ) == 10


def test_limit_overrides_count():
    start = datetime(2024, 1, 1, 9, 0)
    rule = parse_rule('FREQ=DAILY;COUNT=10')
    assert len(generate_occurrences(start, start + timedelta(hours=1), rule, limit=3)) == 3


def test_reschedule_ignores_count():
    start = datetime(2024, 1, 1, 9, 0)
    slots = reschedule(start, start + timedelta(hours=1), parse_rule('FREQ=WEEKLY;COUNT=2'), 4)
    assert _starts(slots) == [datetime(2024, 1, d, 9, 0) for d in (8, 15, 22, 29)]


def test_reschedule_stops_at_until():
    start = datetime(2024, 1, 1, 9, 0)
    slots = reschedule(start, start + timedelta(hours=1), parse_rule('FREQ=WEEKLY;UNTIL=20240115'), 4)
    assert _starts(slots) == [datetime(2024, 1, 8, 9, 0), datetime(2024, 1, 15, 9, 0)]
    assert reschedule(start, start, parse_rule('FREQ=WEEKLY'), 0) == []


def test_next_pattern_start_moves_forward_and_keeps_duration():
    start = datetime(2024, 1, 2, 9, 0)
    end = datetime(2024, 1, 2, 9, 45)
    s, e = next_pattern_start(start, end, parse_rule('FREQ=WEEKLY;BYDAY=MO,FR'))
    assert s == datetime(2024, 1, 5, 9, 0)
    assert e - s == timedelta(minutes=45)
    assert next_pattern_start(start, end, parse_rule('FREQ=DAILY')) == (start, end)
