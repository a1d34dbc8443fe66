"""
Field slot expansion - turns weekly availability rules into concrete candidate starts.

Each enabled rule is intersected with the season window, the rule's own date
range and the field's usable range. Every local date whose weekday bit is set
and which is not an enabled exclusion date for the field yields starts every
start_increment_minutes from start_time_local up to (not including)
end_time_local. A slot's end_time is the end of its availability window, so a
game fits a slot when start + duration <= end_time.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from app.config import DEFAULT_START_INCREMENT_MINUTES
from app.services.scheduler_types import (
    ExclusionWindow,
    FieldAvailabilityRule,
    FieldExclusionDate,
    FieldInfo,
    FieldSlot,
    SeasonConfig,
    id_sort_key,
)
from app.utils.time_utils import is_weekday_in_mask, iso_utc, local_to_utc

logger = logging.getLogger(__name__)


def rule_date_range(
    rule: FieldAvailabilityRule, season: SeasonConfig, field: Optional[FieldInfo] = None
) -> Tuple[date, date]:
    """Inclusive local date range a rule applies to, clamped to the season and field."""
    first = season.start_date
    last = season.end_date
    if rule.start_date is not None and rule.start_date > first:
        first = rule.start_date
    if rule.end_date is not None and rule.end_date < last:
        last = rule.end_date
    if field is not None:
        if field.usable_from is not None and field.usable_from > first:
            first = field.usable_from
        if field.usable_until is not None and field.usable_until < last:
            last = field.usable_until
    return first, last


def excluded_field_dates(exclusions: Iterable[FieldExclusionDate]) -> Set[Tuple[str, date]]:
    return {(e.field_id, e.exclusion_date) for e in exclusions if e.enabled}


def _iter_dates(first: date, last: date):
    current = first
    while current <= last:
        yield current
        current += timedelta(days=1)


def expand_field_slots(
    fields: Iterable[FieldInfo],
    rules: Iterable[FieldAvailabilityRule],
    exclusion_dates: Iterable[FieldExclusionDate],
    season_exclusions: Iterable[ExclusionWindow],
    season: SeasonConfig,
    time_zone: str,
    default_increment_minutes: int = DEFAULT_START_INCREMENT_MINUTES,
) -> Tuple[FieldSlot, ...]:
    """
    Expand availability rules into field slots.

    Two rules for the same field that produce the same start keep the later
    window end. Slots whose start falls inside an enabled season exclusion are
    dropped. Result is ordered by (start_time, field_id).
    """
    fields_by_id: Dict[str, FieldInfo] = {f.field_id: f for f in fields}
    excluded = excluded_field_dates(exclusion_dates)
    blackout = [w for w in season_exclusions if w.enabled]

    slots: Dict[Tuple[str, object], FieldSlot] = {}
    skipped_rules = 0

    for rule in sorted(rules, key=lambda r: (id_sort_key(r.field_id), id_sort_key(r.rule_id))):
        field = fields_by_id.get(rule.field_id)
        if not rule.enabled or field is None:
            skipped_rules += 1
            continue

        increment = field.start_increment_minutes or default_increment_minutes
        if increment <= 0:
            increment = default_increment_minutes

        first, last = rule_date_range(rule, season, field)
        for day in _iter_dates(first, last):
            if not is_weekday_in_mask(rule.days_of_week_mask, day):
                continue
            if (field.field_id, day) in excluded:
                continue

            window_start = local_to_utc(day, rule.start_time_local, time_zone)
            window_end = local_to_utc(day, rule.end_time_local, time_zone)
            if window_end <= window_start:
                continue

            cursor = window_start
            while cursor < window_end:
                in_blackout = any(w.start_time <= cursor < w.end_time for w in blackout)
                if not in_blackout:
                    key = (field.field_id, cursor)
                    existing = slots.get(key)
                    if existing is None or existing.end_time < window_end:
                        slots[key] = FieldSlot(
                            slot_id=f"{field.field_id}@{iso_utc(cursor)}",
                            field_id=field.field_id,
                            start_time=cursor,
                            end_time=window_end,
                        )
                cursor += timedelta(minutes=increment)

    ordered = sorted(slots.values(), key=lambda s: (s.start_time, id_sort_key(s.field_id)))
    logger.debug(
        "FIELD_SLOTS_EXPANDED: fields=%s slots=%s skipped_rules=%s",
        len(fields_by_id),
        len(ordered),
        skipped_rules,
    )
    return tuple(ordered)


def slots_for_window(
    slots: Iterable[FieldSlot], earliest_start=None, latest_end=None
) -> List[FieldSlot]:
    """Slots whose start lies inside [earliest_start, latest_end)."""
    result = []
    for slot in slots:
        if earliest_start is not None and slot.start_time < earliest_start:
            continue
        if latest_end is not None and slot.start_time >= latest_end:
            continue
        result.append(slot)
    return result



def shared_field_slots(fields: Iterable[FieldInfo], slots: Iterable[FieldSlot]) -> Tuple[FieldSlot, ...]:
    """
    Offer every field the start grid of all expanded slots.

    Used when field availability is not enforced: rules still define when
    games may start, but not which field hosts them. A start shared by several
    rules keeps the latest window end. Ordered by (start_time, field_id).
    """
    window_ends: Dict[datetime, datetime] = {}
    for slot in slots:
        current = window_ends.get(slot.start_time)
        if current is None or current < slot.end_time:
            window_ends[slot.start_time] = slot.end_time

    shared = [
        FieldSlot(
            slot_id=f"{field.field_id}@{iso_utc(start)}",
            field_id=field.field_id,
            start_time=start,
            end_time=end,
        )
        for field in fields
        for start, end in window_ends.items()
    ]
    return tuple(sorted(shared, key=lambda s: (s.start_time, id_sort_key(s.field_id))))
