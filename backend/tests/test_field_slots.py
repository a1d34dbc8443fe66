"""
Field slot expansion

- Weekly rules expand into starts every increment inside the window
- Season window, rule dates and field usable range clamp the dates
- Exclusion dates and season exclusions remove slots
- Output ordered by (start, field)
"""

from datetime import date, datetime, time, timezone

from app.services.scheduler_types import (
    ExclusionWindow,
    FieldAvailabilityRule,
    FieldExclusionDate,
    FieldInfo,
    SeasonConfig,
)
from app.utils.field_slots import expand_field_slots, rule_date_range, shared_field_slots, slots_for_window
from app.utils.time_utils import local_date

TZ = "America/Chicago"
MWF = 0b0010101
SEASON = SeasonConfig(start_date=date(2026, 4, 6), end_date=date(2026, 4, 12), umpires_per_game=1)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def rule(rule_id="r1", field_id="f1", mask=MWF, start=time(18, 0), end=time(20, 0), **kwargs):
    return FieldAvailabilityRule(
        rule_id=rule_id,
        field_id=field_id,
        days_of_week_mask=mask,
        start_time_local=start,
        end_time_local=end,
        **kwargs,
    )


def test_expands_mon_wed_fri_every_half_hour():
    slots = expand_field_slots([FieldInfo("f1")], [rule()], [], [], SEASON, TZ, 30)

    # 3 days x (18:00, 18:30, 19:00, 19:30)
    assert len(slots) == 12
    assert slots[0].start_time == utc(2026, 4, 6, 23, 0)  # 18:00 CDT
    assert slots[0].end_time == utc(2026, 4, 7, 1, 0)  # window end 20:00 CDT
    assert slots[0].slot_id == "f1@2026-04-06T23:00:00Z"
    local_days = {local_date(s.start_time, TZ) for s in slots}
    assert local_days == {date(2026, 4, 6), date(2026, 4, 8), date(2026, 4, 10)}


def test_field_increment_overrides_default():
    slots = expand_field_slots([FieldInfo("f1", start_increment_minutes=60)], [rule()], [], [], SEASON, TZ, 30)
    assert len(slots) == 6


def test_exclusion_date_removes_that_day():
    exclusion = FieldExclusionDate("x1", "f1", date(2026, 4, 8))
    slots = expand_field_slots([FieldInfo("f1")], [rule()], [exclusion], [], SEASON, TZ, 30)
    assert len(slots) == 8
    assert all(local_date(s.start_time, TZ) != date(2026, 4, 8) for s in slots)


def test_disabled_exclusion_date_is_ignored():
    exclusion = FieldExclusionDate("x1", "f1", date(2026, 4, 8), enabled=False)
    slots = expand_field_slots([FieldInfo("f1")], [rule()], [exclusion], [], SEASON, TZ, 30)
    assert len(slots) == 12


def test_season_exclusion_drops_starts_inside_window():
    blackout = ExclusionWindow("s1", utc(2026, 4, 6, 23, 0), utc(2026, 4, 7, 0, 0), note="Opening ceremony")
    slots = expand_field_slots([FieldInfo("f1")], [rule()], [], [blackout], SEASON, TZ, 30)
    starts = {s.start_time for s in slots}
    assert utc(2026, 4, 6, 23, 0) not in starts
    assert utc(2026, 4, 6, 23, 30) not in starts
    assert utc(2026, 4, 7, 0, 0) in starts


def test_field_usable_range_and_rule_dates_clamp():
    field = FieldInfo("f1", usable_from=date(2026, 4, 7))
    limited = rule(end_date=date(2026, 4, 9))
    assert rule_date_range(limited, SEASON, field) == (date(2026, 4, 7), date(2026, 4, 9))

    slots = expand_field_slots([field], [limited], [], [], SEASON, TZ, 30)
    # only Wednesday survives
    assert {local_date(s.start_time, TZ) for s in slots} == {date(2026, 4, 8)}


def test_overlapping_rules_keep_later_window_end():
    rules = [rule("r1"), rule("r2", start=time(19, 0), end=time(21, 0))]
    slots = expand_field_slots([FieldInfo("f1")], rules, [], [], SEASON, TZ, 30)
    monday_19 = [s for s in slots if s.start_time == utc(2026, 4, 7, 0, 0)]
    assert len(monday_19) == 1
    assert monday_19[0].end_time == utc(2026, 4, 7, 2, 0)


def test_disabled_rule_and_unknown_field_are_skipped():
    rules = [rule("r1", enabled=False), rule("r2", field_id="missing")]
    assert expand_field_slots([FieldInfo("f1")], rules, [], [], SEASON, TZ, 30) == ()


def test_ordered_by_start_then_field():
    fields = [FieldInfo("10"), FieldInfo("2")]
    rules = [rule("r1", field_id="10"), rule("r2", field_id="2")]
    slots = expand_field_slots(fields, rules, [], [], SEASON, TZ, 60)
    assert [s.field_id for s in slots[:2]] == ["2", "10"]
    assert slots == tuple(sorted(slots, key=lambda s: s.start_time))


def test_slots_for_window_filters_by_start():
    slots = expand_field_slots([FieldInfo("f1")], [rule()], [], [], SEASON, TZ, 30)
    monday = slots_for_window(slots, utc(2026, 4, 6, 5, 0), utc(2026, 4, 7, 5, 0))
    assert len(monday) == 4


def test_shared_slots_offer_every_field_the_rule_grid():
    rules = [rule("r1", "f1", mask=0b0000001), rule("r2", "f2", mask=0b0000001, end=time(21, 0))]
    slots = expand_field_slots([FieldInfo("f1"), FieldInfo("f2")], rules, [], [], SEASON, TZ, 60)

    shared = shared_field_slots([FieldInfo("f1"), FieldInfo("f2"), FieldInfo("f3")], slots)

    # Monday starts 18:00, 19:00 (both rules) and 20:00 (f2 only), on all three fields
    assert len(shared) == 9
    assert [s.field_id for s in shared[:3]] == ["f1", "f2", "f3"]
    assert {s.end_time for s in shared} == {utc(2026, 4, 7, 2, 0)}
