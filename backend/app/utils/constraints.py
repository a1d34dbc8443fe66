"""
Constraint model - hard constraint predicates and booking trackers.

Predicates are pure functions over (candidate placement, ConstraintContext)
and return a ConstraintCheck with a machine-readable code and a human detail.
The booking trackers hold what has been placed so far (fixed assignments plus
accepted candidates) and answer the pairwise checks: field capacity, team and
umpire overlap, and per-day limits.

Used by the solver to prune candidates and by the apply service to
re-validate a proposal before commit.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app.services.scheduler_types import (
    Assignment,
    ExclusionWindow,
    FieldInfo,
    GameRequest,
    ProblemSpec,
    id_sort_key,
)
from app.utils.field_slots import excluded_field_dates, rule_date_range
from app.utils.time_utils import (
    intervals_overlap,
    is_weekday_in_mask,
    local_date,
    local_hour,
    local_to_utc,
    to_utc,
)

# ============================================================================
# Violation codes
# ============================================================================

CONFLICT_INVALID_INTERVAL = "INVALID_INTERVAL"
CONFLICT_UNKNOWN_GAME = "UNKNOWN_GAME"
CONFLICT_UNKNOWN_FIELD = "UNKNOWN_FIELD"
CONFLICT_UNKNOWN_UMPIRE = "UNKNOWN_UMPIRE"
CONFLICT_OUTSIDE_GAME_WINDOW = "OUTSIDE_GAME_WINDOW"
CONFLICT_FIELD_UNAVAILABLE = "FIELD_UNAVAILABLE"
CONFLICT_FIELD_EXCLUDED_DATE = "FIELD_EXCLUDED_DATE"
CONFLICT_FIELD_OVERLAP = "FIELD_OVERLAP"
CONFLICT_LIGHTS_REQUIRED = "LIGHTS_REQUIRED"
CONFLICT_SEASON_EXCLUSION = "SEASON_EXCLUSION"
CONFLICT_TEAM_EXCLUSION = "TEAM_EXCLUSION"
CONFLICT_TEAM_OVERLAP = "TEAM_OVERLAP"
CONFLICT_TEAM_DAILY_LIMIT = "TEAM_DAILY_LIMIT"
CONFLICT_UMPIRE_EXCLUSION = "UMPIRE_EXCLUSION"
CONFLICT_UMPIRE_COUNT = "UMPIRE_COUNT"
CONFLICT_UMPIRE_OVERLAP = "UMPIRE_OVERLAP"
CONFLICT_UMPIRE_DAILY_LIMIT = "UMPIRE_DAILY_LIMIT"


@dataclass(frozen=True)
class ConstraintCheck:
    ok: bool
    code: Optional[str] = None
    detail: str = ""


PASS = ConstraintCheck(ok=True)


def _fail(code: str, detail: str) -> ConstraintCheck:
    return ConstraintCheck(ok=False, code=code, detail=detail)


@dataclass(frozen=True)
class ConstraintViolation:
    game_id: str
    code: str
    detail: str

    def to_dict(self) -> Dict[str, str]:
        return {"game_id": self.game_id, "code": self.code, "detail": self.detail}


class ConstraintContext:
    """Lookup tables over one ProblemSpec, built once per solve or validation"""

    def __init__(self, spec: ProblemSpec):
        self.spec = spec
        self.time_zone = spec.time_zone
        self.constraints = spec.constraints
        self.fields: Dict[str, FieldInfo] = {f.field_id: f for f in spec.fields}
        self.umpires = {u.umpire_id: u for u in spec.umpires}
        self.teams = {t.team_season_id: t for t in spec.teams}
        self.games: Dict[str, GameRequest] = {g.game_id: g for g in spec.games}

        self.rules_by_field = defaultdict(list)
        for rule in spec.field_availability_rules:
            if rule.enabled:
                self.rules_by_field[rule.field_id].append(rule)

        self.excluded_dates = excluded_field_dates(spec.field_exclusion_dates)
        self.season_windows = [w for w in spec.season_exclusions if w.enabled]
        self.team_windows = _group_windows(spec.team_exclusions)
        self.umpire_windows = _group_windows(spec.umpire_exclusions)

    def duration_minutes(self, game: GameRequest) -> int:
        return self.spec.game_duration(game)

    def local_date(self, value: datetime) -> date:
        return local_date(value, self.time_zone)

    def umpire_daily_limit(self, umpire_id: str) -> Optional[int]:
        return self.spec.umpire_daily_limit(self.umpires.get(umpire_id))

    def field_capacity(self, field_id: str) -> int:
        field = self.fields.get(field_id)
        if field is None:
            return 1
        return max(1, int(field.max_parallel_games or 1))


def _group_windows(windows: Iterable[ExclusionWindow]) -> Dict[str, List[ExclusionWindow]]:
    grouped: Dict[str, List[ExclusionWindow]] = defaultdict(list)
    for window in windows:
        if window.enabled and window.subject_id is not None:
            grouped[window.subject_id].append(window)
    return grouped


def _first_hit(windows: Iterable[ExclusionWindow], start: datetime, end: datetime) -> Optional[ExclusionWindow]:
    for window in windows:
        if intervals_overlap(start, end, window.start_time, window.end_time):
            return window
    return None


# ============================================================================
# Single-placement predicates
# ============================================================================


def check_interval(start: datetime, end: datetime) -> ConstraintCheck:
    if end <= start:
        return _fail(CONFLICT_INVALID_INTERVAL, f"start {start.isoformat()} is not before end {end.isoformat()}")
    return PASS


def check_game_window(game: GameRequest, start: datetime, end: datetime) -> ConstraintCheck:
    if game.earliest_start is not None and start < game.earliest_start:
        return _fail(
            CONFLICT_OUTSIDE_GAME_WINDOW,
            f"Game {game.game_id} starts before its earliest start {game.earliest_start.isoformat()}",
        )
    if game.latest_end is not None and end > game.latest_end:
        return _fail(
            CONFLICT_OUTSIDE_GAME_WINDOW,
            f"Game {game.game_id} ends after its latest end {game.latest_end.isoformat()}",
        )
    return PASS


def check_field_open(ctx: ConstraintContext, field_id: str, day: date) -> ConstraintCheck:
    """Field is within its usable range and not excluded on the local date."""
    field = ctx.fields.get(field_id)
    if field is None:
        return _fail(CONFLICT_UNKNOWN_FIELD, f"Unknown field {field_id}")
    if not ctx.constraints.respect_field_availability:
        return PASS
    if not field.is_usable_on(day):
        return _fail(CONFLICT_FIELD_UNAVAILABLE, f"Field {field_id} is not usable on {day.isoformat()}")
    if (field_id, day) in ctx.excluded_dates:
        return _fail(CONFLICT_FIELD_EXCLUDED_DATE, f"Field {field_id} is excluded on {day.isoformat()}")
    return PASS


def check_field_availability(
    ctx: ConstraintContext, field_id: str, start: datetime, end: datetime
) -> ConstraintCheck:
    """
    Field must be usable on the local date, not excluded that date, and
    [start, end) must lie inside at least one enabled weekly window.
    """
    field = ctx.fields.get(field_id)
    if field is None:
        return _fail(CONFLICT_UNKNOWN_FIELD, f"Unknown field {field_id}")
    if not ctx.constraints.respect_field_availability:
        return PASS

    day = ctx.local_date(start)
    opened = check_field_open(ctx, field_id, day)
    if not opened.ok:
        return opened

    for rule in ctx.rules_by_field.get(field_id, []):
        first, last = rule_date_range(rule, ctx.spec.season, field)
        if day < first or day > last:
            continue
        if not is_weekday_in_mask(rule.days_of_week_mask, day):
            continue
        window_start = local_to_utc(day, rule.start_time_local, ctx.time_zone)
        window_end = local_to_utc(day, rule.end_time_local, ctx.time_zone)
        if window_start <= start and end <= window_end:
            return PASS

    return _fail(
        CONFLICT_FIELD_UNAVAILABLE,
        f"Field {field_id} has no availability window covering {start.isoformat()}-{end.isoformat()}",
    )


def check_lights(ctx: ConstraintContext, field_id: str, start: datetime) -> ConstraintCheck:
    rule = ctx.constraints.require_lights_after
    if rule is None or not rule.enabled:
        return PASS
    field = ctx.fields.get(field_id)
    if field is None or field.has_lights:
        return PASS
    if local_hour(start, ctx.time_zone) < rule.start_hour_local:
        return PASS
    return _fail(
        CONFLICT_LIGHTS_REQUIRED,
        f"Field {field_id} has no lights for a start at/after {rule.start_hour_local:02d}:00 local",
    )


def check_season_exclusions(ctx: ConstraintContext, start: datetime, end: datetime) -> ConstraintCheck:
    if not ctx.constraints.respect_season_exclusions:
        return PASS
    hit = _first_hit(ctx.season_windows, start, end)
    if hit is not None:
        return _fail(CONFLICT_SEASON_EXCLUSION, f"Season exclusion {hit.exclusion_id} ({hit.note or 'no note'})")
    return PASS


def check_team_exclusions(
    ctx: ConstraintContext, game: GameRequest, start: datetime, end: datetime
) -> ConstraintCheck:
    if not ctx.constraints.respect_team_exclusions:
        return PASS
    for team_id in (game.home_team_id, game.visitor_team_id):
        hit = _first_hit(ctx.team_windows.get(team_id, []), start, end)
        if hit is not None:
            return _fail(CONFLICT_TEAM_EXCLUSION, f"Team {team_id} is unavailable (exclusion {hit.exclusion_id})")
    return PASS


def check_umpire_exclusion(
    ctx: ConstraintContext, umpire_id: str, start: datetime, end: datetime
) -> ConstraintCheck:
    if not ctx.constraints.respect_umpire_exclusions:
        return PASS
    hit = _first_hit(ctx.umpire_windows.get(umpire_id, []), start, end)
    if hit is not None:
        return _fail(
            CONFLICT_UMPIRE_EXCLUSION, f"Umpire {umpire_id} is unavailable (exclusion {hit.exclusion_id})"
        )
    return PASS


def check_umpire_roster(ctx: ConstraintContext, umpire_ids: Sequence[str]) -> List[ConstraintCheck]:
    """Exact count of distinct, known umpires."""
    failures = []
    required = ctx.spec.season.umpires_per_game
    if len(set(umpire_ids)) != len(umpire_ids):
        failures.append(_fail(CONFLICT_UMPIRE_COUNT, "Umpire listed more than once"))
    elif len(umpire_ids) != required:
        failures.append(_fail(CONFLICT_UMPIRE_COUNT, f"Expected {required} umpires, got {len(umpire_ids)}"))
    for umpire_id in umpire_ids:
        if umpire_id not in ctx.umpires:
            failures.append(_fail(CONFLICT_UNKNOWN_UMPIRE, f"Unknown umpire {umpire_id}"))
    return failures


# ============================================================================
# Booking trackers
# ============================================================================


class Booking:
    """One occupied interval"""

    def __init__(self, game_id: str, start: datetime, end: datetime):
        self.game_id = game_id
        self.start = start
        self.end = end


class BookingTracker:
    """Intervals and per-local-date counts keyed by field, team or umpire id"""

    def __init__(self):
        self.bookings: Dict[str, List[Booking]] = defaultdict(list)
        self.daily_counts: Dict[Tuple[str, date], int] = defaultdict(int)
        self.total_counts: Dict[str, int] = defaultdict(int)

    def add(self, key: str, game_id: str, start: datetime, end: datetime, day: date):
        self.bookings[key].append(Booking(game_id, start, end))
        self.daily_counts[(key, day)] += 1
        self.total_counts[key] += 1

    def overlapping(self, key: str, start: datetime, end: datetime) -> List[Booking]:
        return [b for b in self.bookings.get(key, []) if intervals_overlap(start, end, b.start, b.end)]

    def count_on(self, key: str, day: date) -> int:
        return self.daily_counts.get((key, day), 0)

    def total(self, key: str) -> int:
        return self.total_counts.get(key, 0)

    def min_gap_minutes(self, key: str, start: datetime, end: datetime) -> Optional[float]:
        """Smallest gap between [start, end) and any non-overlapping booking."""
        best = None
        for booking in self.bookings.get(key, []):
            if booking.end <= start:
                gap = (start - booking.end).total_seconds() / 60
            elif end <= booking.start:
                gap = (booking.start - end).total_seconds() / 60
            else:
                continue
            if best is None or gap < best:
                best = gap
        return best


class ScheduleState:
    """
    Everything placed so far. Seeded from fixed assignments, then grown one
    accepted placement at a time.
    """

    def __init__(self, ctx: ConstraintContext):
        self.ctx = ctx
        self.fields = BookingTracker()
        self.teams = BookingTracker()
        self.umpires = BookingTracker()

    def book(self, game: Optional[GameRequest], assignment: Assignment, team_ids: Sequence[str] = ()):
        day = self.ctx.local_date(assignment.start_time)
        start, end = assignment.start_time, assignment.end_time
        self.fields.add(assignment.field_id, assignment.game_id, start, end, day)
        teams = list(team_ids)
        if game is not None:
            teams = [game.home_team_id, game.visitor_team_id]
        for team_id in teams:
            self.teams.add(team_id, assignment.game_id, start, end, day)
        for umpire_id in assignment.umpire_ids:
            self.umpires.add(umpire_id, assignment.game_id, start, end, day)

    def check_field(self, field_id: str, start: datetime, end: datetime) -> ConstraintCheck:
        if not self.ctx.constraints.no_field_overlap:
            return PASS
        overlapping = self.fields.overlapping(field_id, start, end)
        capacity = self.ctx.field_capacity(field_id)
        if len(overlapping) >= capacity:
            others = ", ".join(sorted({b.game_id for b in overlapping}, key=id_sort_key))
            return _fail(CONFLICT_FIELD_OVERLAP, f"Field {field_id} already hosts game(s) {others}")
        return PASS

    def check_teams(self, game: GameRequest, start: datetime, end: datetime) -> ConstraintCheck:
        constraints = self.ctx.constraints
        day = self.ctx.local_date(start)
        for team_id in (game.home_team_id, game.visitor_team_id):
            if constraints.no_team_overlap:
                overlapping = self.teams.overlapping(team_id, start, end)
                if overlapping:
                    return _fail(
                        CONFLICT_TEAM_OVERLAP, f"Team {team_id} already plays game {overlapping[0].game_id}"
                    )
            limit = constraints.max_games_per_team_per_day
            if limit is not None and self.teams.count_on(team_id, day) >= limit:
                return _fail(
                    CONFLICT_TEAM_DAILY_LIMIT,
                    f"Team {team_id} already has {limit} game(s) on {day.isoformat()}",
                )
        return PASS

    def check_umpire(self, umpire_id: str, start: datetime, end: datetime) -> ConstraintCheck:
        """Exclusions, overlap and daily limit for one umpire."""
        excluded = check_umpire_exclusion(self.ctx, umpire_id, start, end)
        if not excluded.ok:
            return excluded
        if self.ctx.constraints.no_umpire_overlap:
            overlapping = self.umpires.overlapping(umpire_id, start, end)
            if overlapping:
                return _fail(
                    CONFLICT_UMPIRE_OVERLAP, f"Umpire {umpire_id} already works game {overlapping[0].game_id}"
                )
        limit = self.ctx.umpire_daily_limit(umpire_id)
        day = self.ctx.local_date(start)
        if limit is not None and self.umpires.count_on(umpire_id, day) >= limit:
            return _fail(
                CONFLICT_UMPIRE_DAILY_LIMIT,
                f"Umpire {umpire_id} already has {limit} game(s) on {day.isoformat()}",
            )
        return PASS


def seed_fixed_assignments(state: ScheduleState, skip_game_ids: Iterable[str] = ()) -> int:
    """Book fixed assignments (except skipped game ids) into state."""
    skip = set(skip_game_ids)
    teams_by_game = state.ctx.spec.fixed_team_ids()
    seeded = 0
    for fixed in state.ctx.spec.fixed_assignments:
        if fixed.game_id in skip:
            continue
        state.book(None, fixed, team_ids=teams_by_game.get(fixed.game_id, ()))
        seeded += 1
    return seeded


# ============================================================================
# Whole-proposal validation
# ============================================================================


def placement_checks(
    ctx: ConstraintContext,
    game: GameRequest,
    field_id: str,
    start: datetime,
    end: datetime,
    from_slot: bool = False,
) -> List[ConstraintCheck]:
    """
    Stateless checks for one candidate placement; returns failures only.

    from_slot=True means the start came from an expanded field slot, so the
    weekly window is already satisfied and only the date-level field checks run.
    """
    if from_slot:
        field_check = check_field_open(ctx, field_id, ctx.local_date(start))
    else:
        field_check = check_field_availability(ctx, field_id, start, end)
    checks = [
        check_interval(start, end),
        check_game_window(game, start, end),
        field_check,
        check_lights(ctx, field_id, start),
        check_season_exclusions(ctx, start, end),
        check_team_exclusions(ctx, game, start, end),
    ]
    return [c for c in checks if not c.ok]


def validate_assignments(assignments: Sequence[Assignment], spec: ProblemSpec) -> List[ConstraintViolation]:
    """
    Check a whole proposal against spec.

    Each assignment is checked on its own, against earlier assignments of the
    proposal, and against the spec's fixed assignments. Returns every
    violation found; empty list means the proposal is valid.
    """
    ctx = ConstraintContext(spec)
    state = ScheduleState(ctx)
    proposal_ids = {a.game_id for a in assignments}
    seed_fixed_assignments(state, skip_game_ids=proposal_ids)

    violations: List[ConstraintViolation] = []

    def record(game_id: str, check: ConstraintCheck):
        violations.append(ConstraintViolation(game_id=game_id, code=check.code, detail=check.detail))

    ordered = sorted(assignments, key=lambda a: (to_utc(a.start_time), id_sort_key(a.game_id)))
    for assignment in ordered:
        start = to_utc(assignment.start_time)
        end = to_utc(assignment.end_time)

        game = ctx.games.get(assignment.game_id)
        if game is None:
            record(assignment.game_id, _fail(CONFLICT_UNKNOWN_GAME, f"Game {assignment.game_id} is not in scope"))
            continue

        for failure in placement_checks(ctx, game, assignment.field_id, start, end):
            record(game.game_id, failure)

        expected_end = start + timedelta(minutes=ctx.duration_minutes(game))
        if end < expected_end:
            record(
                game.game_id,
                _fail(
                    CONFLICT_INVALID_INTERVAL,
                    f"Game {game.game_id} needs {ctx.duration_minutes(game)} minutes",
                ),
            )

        for failure in check_umpire_roster(ctx, assignment.umpire_ids):
            record(game.game_id, failure)

        field_check = state.check_field(assignment.field_id, start, end)
        if not field_check.ok:
            record(game.game_id, field_check)
        team_check = state.check_teams(game, start, end)
        if not team_check.ok:
            record(game.game_id, team_check)
        for umpire_id in assignment.umpire_ids:
            if umpire_id not in ctx.umpires:
                continue
            umpire_check = state.check_umpire(umpire_id, start, end)
            if not umpire_check.ok:
                record(game.game_id, umpire_check)

        if end > start:
            state.book(game, Assignment(game.game_id, assignment.field_id, start, end, assignment.umpire_ids))

    return violations
