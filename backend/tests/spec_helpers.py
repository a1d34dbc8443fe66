"""In-memory ProblemSpec construction for engine and constraint tests"""

from datetime import date, datetime, time, timezone

from app.services.scheduler_types import (
    FieldAvailabilityRule,
    FieldInfo,
    GameRequest,
    HardConstraints,
    ProblemSpec,
    SeasonConfig,
    SoftConstraints,
    TeamInfo,
    UmpireInfo,
)
from app.utils.field_slots import expand_field_slots
from app.utils.time_utils import local_day_bounds

TZ = "America/Chicago"
MWF = 0b0010101
SEASON_START = date(2026, 4, 6)
SEASON_END = date(2026, 4, 12)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def game(game_id, home, visitor, day=None, duration=60, preferred=()):
    """Game restricted to one local day when day is given, else the whole season."""
    first = day or SEASON_START
    last = day or SEASON_END
    earliest, _ = local_day_bounds(first, TZ)
    _, latest = local_day_bounds(last, TZ)
    return GameRequest(
        game_id=game_id,
        league_season_id="L1",
        home_team_id=home,
        visitor_team_id=visitor,
        earliest_start=earliest,
        latest_end=latest,
        duration_minutes=duration,
        preferred_field_ids=tuple(preferred),
    )


def mwf_rule(field_id="F1", rule_id=None, start=time(18, 0), end=time(20, 0), mask=MWF):
    return FieldAvailabilityRule(
        rule_id=rule_id or f"R-{field_id}",
        field_id=field_id,
        days_of_week_mask=mask,
        start_time_local=start,
        end_time_local=end,
    )


def make_spec(
    games,
    umpires=("U1",),
    fields=None,
    rules=None,
    teams=("T1", "T2", "T3", "T4"),
    umpires_per_game=1,
    increment=30,
    constraints=None,
    soft=None,
    **extra,
):
    fields = tuple(fields) if fields is not None else (FieldInfo("F1", name="Field 1", has_lights=True),)
    rules = tuple(rules) if rules is not None else (mwf_rule("F1"),)
    season = SeasonConfig(start_date=SEASON_START, end_date=SEASON_END, umpires_per_game=umpires_per_game)
    constraints = constraints or HardConstraints()
    slots = extra.pop("field_slots", None)
    if slots is None:
        slots = expand_field_slots(
            fields,
            rules,
            extra.get("field_exclusion_dates", ()),
            extra.get("season_exclusions", ()) if constraints.respect_season_exclusions else (),
            season,
            TZ,
            increment,
        )
    return ProblemSpec(
        account_id="1",
        season_id="7",
        time_zone=TZ,
        season=season,
        teams=tuple(TeamInfo(t, "L1") for t in teams),
        fields=fields,
        umpires=tuple(u if isinstance(u, UmpireInfo) else UmpireInfo(u) for u in umpires),
        games=tuple(games),
        field_availability_rules=rules,
        field_slots=slots,
        constraints=constraints,
        soft_constraints=soft or SoftConstraints(),
        **extra,
    )
