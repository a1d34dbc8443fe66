"""
Scheduler Engine - deterministic greedy placement of games into field slots.

Policy (same inputs → same outputs):
- Games are processed by (earliest_start, game id); games without a window go last
- Candidate slots are scanned in (start, field id) order within the game's window,
  preferred fields first (two passes)
- Each slot is filtered by the hard constraint predicates and the booking trackers;
  umpires are chosen greedily by (umpire/date load, total load, id). If fewer than
  the required umpires are feasible, the search backtracks to the next slot
- At most max_candidates_per_game feasible candidates are collected per pass; the
  winner minimizes (soft penalty, field/date load, umpire/date load, start, field id).
  This is the "tightest slot first" tie-break
- Placed games are never revisited. Games with no feasible candidate are reported
  as unscheduled; that is a normal result, not an error

Metrics are computed from the final assignments only and never feed back into
placement decisions.
"""

import hashlib
import json
import logging
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.config import MAX_CANDIDATES_PER_GAME, MAX_UMPIRES_PER_GAME
from app.services.scheduler_types import (
    OBJECTIVE_MAXIMIZE_SCHEDULED,
    RUN_STATUS_COMPLETED,
    RUN_STATUS_INFEASIBLE,
    RUN_STATUS_PARTIAL,
    VALID_OBJECTIVES,
    Assignment,
    FieldSlot,
    GameRequest,
    ProblemSpec,
    SolveMetrics,
    SolveResult,
    UnscheduledGame,
    id_sort_key,
)
from app.utils.constraints import (
    CONFLICT_UMPIRE_COUNT,
    ConstraintContext,
    ScheduleState,
    placement_checks,
    seed_fixed_assignments,
)
from app.utils.errors import ValidationError
from app.utils.field_slots import shared_field_slots, slots_for_window
from app.utils.time_utils import get_zone, local_date

logger = logging.getLogger(__name__)

# Rejection code for a slot whose availability window ends before the game would
CONFLICT_DURATION_TOO_LONG = "DURATION_TOO_LONG"

# Unscheduled reason codes
REASON_NO_CANDIDATE_SLOTS = "NO_CANDIDATE_SLOTS"
REASON_NO_FEASIBLE_SLOT = "NO_FEASIBLE_SLOT"

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


# ============================================================================
# Run id
# ============================================================================


def canonical_hash(payload: Any) -> str:
    """Short stable hash of a JSON-serializable payload."""
    text = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(text.encode()).hexdigest()[:16]


def derive_run_id(spec: ProblemSpec, idempotency_key: Optional[str] = None) -> str:
    """
    Explicit spec.run_id wins; otherwise the idempotency key or, without one,
    the canonical spec is hashed into sched_account_<account>_<digest>.
    """
    if spec.run_id:
        return spec.run_id
    if idempotency_key:
        digest = hashlib.sha256(idempotency_key.encode()).hexdigest()[:16]
    else:
        payload = spec.to_dict()
        payload.pop("run_id", None)
        digest = canonical_hash(payload)
    return f"sched_account_{spec.account_id}_{digest}"


# ============================================================================
# Problem spec validation (closure + intervals)
# ============================================================================


def _duplicates(values: Sequence[str]) -> List[str]:
    counts = Counter(values)
    return sorted((v for v, n in counts.items() if n > 1), key=id_sort_key)


def validate_problem_spec(spec: ProblemSpec) -> None:
    """
    Fail fast on a malformed spec.

    Raises:
        ValidationError: closure violated, duplicate ids, inverted intervals,
            bad configuration values, or no games
    """
    if spec.season.start_date > spec.season.end_date:
        raise ValidationError("Season start_date must be on or before end_date")
    if not spec.games:
        raise ValidationError("At least one game is required")
    get_zone(spec.time_zone)

    required = spec.season.umpires_per_game
    if required < 0 or required > MAX_UMPIRES_PER_GAME:
        raise ValidationError(f"umpires_per_game must be between 0 and {MAX_UMPIRES_PER_GAME}")
    if spec.season.default_game_minutes <= 0:
        raise ValidationError("default_game_minutes must be positive")
    if spec.objective not in VALID_OBJECTIVES:
        raise ValidationError(f"Unknown objective: {spec.objective}")

    collections = {
        "team_season_id": [t.team_season_id for t in spec.teams],
        "field_id": [f.field_id for f in spec.fields],
        "umpire_id": [u.umpire_id for u in spec.umpires],
        "game_id": [g.game_id for g in spec.games] + [g.game_id for g in spec.fixed_games],
        "slot_id": [s.slot_id for s in spec.field_slots],
    }
    for label, values in collections.items():
        dupes = _duplicates(values)
        if dupes:
            raise ValidationError(f"Duplicate {label} values: {', '.join(dupes)}")

    team_ids = set(collections["team_season_id"])
    field_ids = set(collections["field_id"])
    umpire_ids = set(collections["umpire_id"])

    for field in spec.fields:
        if field.max_parallel_games < 1:
            raise ValidationError(f"Field {field.field_id} max_parallel_games must be at least 1")

    for game in list(spec.games) + list(spec.fixed_games):
        if game.home_team_id not in team_ids:
            raise ValidationError(f"Unknown home team for game {game.game_id}: {game.home_team_id}")
        if game.visitor_team_id not in team_ids:
            raise ValidationError(f"Unknown visitor team for game {game.game_id}: {game.visitor_team_id}")
        if game.home_team_id == game.visitor_team_id:
            raise ValidationError(f"Game {game.game_id} must reference two different teams")
        if game.earliest_start and game.latest_end and game.earliest_start >= game.latest_end:
            raise ValidationError(f"Game {game.game_id} earliest_start must be before latest_end")
        if game.duration_minutes is not None and game.duration_minutes < 0:
            raise ValidationError(f"Game {game.game_id} duration_minutes must not be negative")
        for preferred in game.preferred_field_ids:
            if preferred not in field_ids:
                raise ValidationError(f"Unknown preferred field for game {game.game_id}: {preferred}")

    for rule in spec.field_availability_rules:
        if rule.field_id not in field_ids:
            raise ValidationError(f"Unknown field for availability rule {rule.rule_id}: {rule.field_id}")
        if rule.start_time_local >= rule.end_time_local:
            raise ValidationError(f"Availability rule {rule.rule_id} start time must be before end time")
        if not 0 < rule.days_of_week_mask < 128:
            raise ValidationError(f"Availability rule {rule.rule_id} has an invalid days_of_week_mask")
        if rule.start_date and rule.end_date and rule.start_date > rule.end_date:
            raise ValidationError(f"Availability rule {rule.rule_id} start_date must be on or before end_date")

    for exclusion in spec.field_exclusion_dates:
        if exclusion.field_id not in field_ids:
            raise ValidationError(
                f"Unknown field for exclusion date {exclusion.exclusion_id}: {exclusion.field_id}"
            )

    for slot in spec.field_slots:
        if slot.field_id not in field_ids:
            raise ValidationError(f"Unknown field for field slot {slot.slot_id}: {slot.field_id}")
        if slot.start_time >= slot.end_time:
            raise ValidationError(f"Field slot {slot.slot_id} start_time must be before end_time")

    windows = [
        ("season", spec.season_exclusions, None),
        ("team", spec.team_exclusions, team_ids),
        ("umpire", spec.umpire_exclusions, umpire_ids),
    ]
    for scope, exclusions, known in windows:
        for window in exclusions:
            if window.start_time >= window.end_time:
                raise ValidationError(
                    f"{scope.capitalize()} exclusion {window.exclusion_id} start_time must be before end_time"
                )
            if known is not None and window.subject_id not in known:
                raise ValidationError(f"Unknown {scope} for exclusion {window.exclusion_id}: {window.subject_id}")

    for fixed in spec.fixed_assignments:
        if fixed.field_id not in field_ids:
            raise ValidationError(f"Unknown field for fixed game {fixed.game_id}: {fixed.field_id}")
        if fixed.start_time >= fixed.end_time:
            raise ValidationError(f"Fixed game {fixed.game_id} start_time must be before end_time")
        for umpire_id in fixed.umpire_ids:
            if umpire_id not in umpire_ids:
                raise ValidationError(f"Unknown umpire for fixed game {fixed.game_id}: {umpire_id}")


# ============================================================================
# Ordering
# ============================================================================


def get_game_sort_key(game: GameRequest) -> Tuple:
    """(earliest_start, game id); games without a window sort last"""
    return (game.earliest_start or _FAR_FUTURE, id_sort_key(game.game_id))


def get_slot_sort_key(slot: FieldSlot) -> Tuple:
    return (slot.start_time, id_sort_key(slot.field_id))


# ============================================================================
# Engine
# ============================================================================


class _Candidate:
    """Feasible placement plus its ranking key"""

    def __init__(self, assignment: Assignment, penalty: int, rank: Tuple):
        self.assignment = assignment
        self.penalty = penalty
        self.rank = rank


class SchedulerEngine:
    """Pure solver: no I/O, no shared state between solve() calls."""

    def __init__(self, max_candidates_per_game: int = MAX_CANDIDATES_PER_GAME):
        self.max_candidates_per_game = max(1, max_candidates_per_game)

    def solve(self, spec: ProblemSpec, idempotency_key: Optional[str] = None) -> SolveResult:
        start_clock = time.perf_counter()
        validate_problem_spec(spec)
        run_id = derive_run_id(spec, idempotency_key)

        ctx = ConstraintContext(spec)
        state = ScheduleState(ctx)
        seeded = seed_fixed_assignments(state, skip_game_ids=(g.game_id for g in spec.games))

        field_slots = spec.field_slots
        if not spec.constraints.respect_field_availability:
            field_slots = shared_field_slots(spec.fields, field_slots)
        slots = sorted(field_slots, key=get_slot_sort_key)
        assignments: List[Assignment] = []
        unassigned: List[UnscheduledGame] = []
        diagnostics: Counter = Counter()
        total_penalty = 0

        for game in sorted(spec.games, key=get_game_sort_key):
            window = slots_for_window(slots, game.earliest_start, game.latest_end)
            if not window:
                unassigned.append(
                    UnscheduledGame(
                        game_id=game.game_id,
                        reason=REASON_NO_CANDIDATE_SLOTS,
                        detail="No field slots inside the game window",
                    )
                )
                continue

            candidate, rejections = self._place_game(ctx, state, game, window)
            diagnostics.update(rejections)

            if candidate is None:
                detail = "No valid slot found given hard constraints"
                if rejections:
                    code, _ = max(rejections.items(), key=lambda kv: (kv[1], kv[0]))
                    detail = f"{detail} (most common: {code})"
                unassigned.append(
                    UnscheduledGame(
                        game_id=game.game_id,
                        reason=REASON_NO_FEASIBLE_SLOT,
                        detail=detail,
                        rejection_counts=dict(rejections),
                    )
                )
                continue

            state.book(game, candidate.assignment)
            assignments.append(candidate.assignment)
            total_penalty += candidate.penalty

        metrics = compute_metrics(spec, assignments, unassigned, total_penalty)
        if metrics.scheduled_games == metrics.total_games:
            status = RUN_STATUS_COMPLETED
        elif metrics.scheduled_games > 0:
            status = RUN_STATUS_PARTIAL
        else:
            status = RUN_STATUS_INFEASIBLE

        duration_ms = int((time.perf_counter() - start_clock) * 1000)
        logger.info(
            "SOLVE_COMPLETE: run_id=%s status=%s scheduled=%s/%s fixed=%s slots=%s duration_ms=%s",
            run_id,
            status,
            metrics.scheduled_games,
            metrics.total_games,
            seeded,
            len(slots),
            duration_ms,
        )

        return SolveResult(
            run_id=run_id,
            status=status,
            assignments=assignments,
            unassigned=unassigned,
            metrics=metrics,
            diagnostics=dict(diagnostics),
            time_zone=spec.time_zone,
            duration_ms=duration_ms,
        )

    def _place_game(
        self, ctx: ConstraintContext, state: ScheduleState, game: GameRequest, window: List[FieldSlot]
    ) -> Tuple[Optional[_Candidate], Counter]:
        preferred = set(game.preferred_field_ids)
        if preferred:
            passes = [
                [s for s in window if s.field_id in preferred],
                [s for s in window if s.field_id not in preferred],
            ]
        else:
            passes = [window]

        duration = ctx.duration_minutes(game)
        rejections: Counter = Counter()

        for pass_slots in passes:
            candidates: List[_Candidate] = []
            for slot in pass_slots:
                start = slot.start_time
                end = start + timedelta(minutes=duration)
                if end > slot.end_time:
                    rejections[CONFLICT_DURATION_TOO_LONG] += 1
                    continue

                failures = placement_checks(ctx, game, slot.field_id, start, end, from_slot=True)
                if failures:
                    rejections[failures[0].code] += 1
                    continue

                booked = state.check_field(slot.field_id, start, end)
                if booked.ok:
                    booked = state.check_teams(game, start, end)
                if not booked.ok:
                    rejections[booked.code] += 1
                    continue

                umpire_ids, umpire_failure = self._select_umpires(ctx, state, start, end)
                if umpire_ids is None:
                    rejections[umpire_failure] += 1
                    continue

                assignment = Assignment(
                    game_id=game.game_id,
                    field_id=slot.field_id,
                    start_time=start,
                    end_time=end,
                    umpire_ids=umpire_ids,
                )
                candidates.append(self._rank(ctx, state, game, assignment))
                if len(candidates) >= self.max_candidates_per_game:
                    break

            if candidates:
                return min(candidates, key=lambda c: c.rank), rejections

        return None, rejections

    def _select_umpires(
        self, ctx: ConstraintContext, state: ScheduleState, start: datetime, end: datetime
    ) -> Tuple[Optional[Tuple[str, ...]], Optional[str]]:
        """Least-loaded feasible umpires, or (None, dominant failure code)."""
        required = ctx.spec.season.umpires_per_game
        if required == 0:
            return (), None

        day = ctx.local_date(start)
        feasible = []
        failures: Counter = Counter()
        for umpire in ctx.spec.umpires:
            check = state.check_umpire(umpire.umpire_id, start, end)
            if check.ok:
                feasible.append(umpire.umpire_id)
            else:
                failures[check.code] += 1

        if len(feasible) < required:
            if failures:
                code, _ = max(failures.items(), key=lambda kv: (kv[1], kv[0]))
                return None, code
            return None, CONFLICT_UMPIRE_COUNT

        feasible.sort(key=lambda u: (state.umpires.count_on(u, day), state.umpires.total(u), id_sort_key(u)))
        return tuple(sorted(feasible[:required], key=id_sort_key)), None

    def _rank(self, ctx: ConstraintContext, state: ScheduleState, game: GameRequest, assignment: Assignment):
        start, end = assignment.start_time, assignment.end_time
        day = ctx.local_date(start)
        penalty = soft_penalty(ctx, state, game, assignment)
        field_load = state.fields.count_on(assignment.field_id, day)
        umpire_load = sum(state.umpires.count_on(u, day) for u in assignment.umpire_ids)
        rank = (penalty, field_load, umpire_load, start, id_sort_key(assignment.field_id))
        return _Candidate(assignment, penalty, rank)


# ============================================================================
# Soft objectives
# ============================================================================


def soft_penalty(ctx: ConstraintContext, state: ScheduleState, game: GameRequest, assignment: Assignment) -> int:
    """Weighted penalty of a feasible candidate; 0 when no soft objective is enabled."""
    soft = ctx.spec.soft_constraints
    if not soft.any_enabled():
        return 0

    start, end = assignment.start_time, assignment.end_time
    day = ctx.local_date(start)
    penalty = 0
    teams = (game.home_team_id, game.visitor_team_id)

    if soft.avoid_back_to_back_minutes is not None:
        for team_id in teams:
            gap = state.teams.min_gap_minutes(team_id, start, end)
            if gap is not None and gap < soft.avoid_back_to_back_minutes:
                penalty += soft.avoid_back_to_back_weight

    if soft.spread_games_across_days:
        for team_id in teams:
            if state.teams.count_on(team_id, day) > 0:
                penalty += soft.spread_games_weight

    if soft.balance_umpire_load and assignment.umpire_ids and ctx.umpires:
        average = sum(state.umpires.total(u) for u in ctx.umpires) / len(ctx.umpires)
        for umpire_id in assignment.umpire_ids:
            if state.umpires.total(umpire_id) > average:
                penalty += soft.balance_umpire_weight

    return penalty


# ============================================================================
# Metrics
# ============================================================================


def compute_metrics(
    spec: ProblemSpec,
    assignments: Sequence[Assignment],
    unassigned: Sequence[UnscheduledGame],
    total_penalty: int = 0,
) -> SolveMetrics:
    """Observational metrics over the final assignments."""
    total = len(spec.games)
    scheduled = len(assignments)

    loads = {u.umpire_id: 0 for u in spec.umpires}
    for assignment in assignments:
        for umpire_id in assignment.umpire_ids:
            loads[umpire_id] = loads.get(umpire_id, 0) + 1
    if loads:
        average = sum(loads.values()) / len(loads)
        variance = sum((n - average) ** 2 for n in loads.values()) / len(loads)
    else:
        average = 0.0
        variance = 0.0

    by_field_day: Dict[Tuple[str, Any], List[Assignment]] = {}
    for assignment in assignments:
        key = (assignment.field_id, local_date(assignment.start_time, spec.time_zone))
        by_field_day.setdefault(key, []).append(assignment)

    idle_minutes = 0
    for games in by_field_day.values():
        games.sort(key=lambda a: a.start_time)
        busy_until = games[0].end_time
        for assignment in games[1:]:
            if assignment.start_time > busy_until:
                idle_minutes += int((assignment.start_time - busy_until).total_seconds() // 60)
            busy_until = max(busy_until, assignment.end_time)

    if spec.objective == OBJECTIVE_MAXIMIZE_SCHEDULED:
        objective_value = scheduled
    else:
        objective_value = total_penalty

    return SolveMetrics(
        total_games=total,
        scheduled_games=scheduled,
        unscheduled_games=len(unassigned),
        objective_value=objective_value,
        scheduled_ratio=round(scheduled / total, 4) if total else 0.0,
        average_umpire_load=round(average, 4),
        umpire_load_variance=round(variance, 4),
        idle_minutes_total=idle_minutes,
        fields_used=len({a.field_id for a in assignments}),
    )
