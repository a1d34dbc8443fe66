"""
Scheduler data model.

Immutable value objects exchanged between the problem spec builder, the
constraint model, the solver and the apply service. Identifiers are opaque
strings; only equality and id_sort_key() ordering are assumed.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from app.utils.time_utils import format_hhmm, iso_utc, local_date, parse_iso_datetime

GameId = str

OBJECTIVE_MAXIMIZE_SCHEDULED = "maximize_scheduled_games"
OBJECTIVE_MINIMIZE_CONFLICTS = "minimize_conflicts"
VALID_OBJECTIVES = {OBJECTIVE_MAXIMIZE_SCHEDULED, OBJECTIVE_MINIMIZE_CONFLICTS}

RUN_STATUS_COMPLETED = "completed"
RUN_STATUS_PARTIAL = "partial"
RUN_STATUS_INFEASIBLE = "infeasible"


def id_sort_key(value: Any) -> Tuple[int, int, str]:
    """Deterministic ordering for opaque ids: numeric ids numerically, then the rest lexically."""
    text = str(value)
    if text.isdigit():
        return (0, int(text), text)
    return (1, 0, text)


# ============================================================================
# Season data
# ============================================================================


@dataclass(frozen=True)
class SeasonConfig:
    start_date: date
    end_date: date
    umpires_per_game: int
    max_games_per_umpire_per_day: Optional[int] = None
    default_game_minutes: int = 60

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "umpires_per_game": self.umpires_per_game,
            "max_games_per_umpire_per_day": self.max_games_per_umpire_per_day,
            "default_game_minutes": self.default_game_minutes,
        }


@dataclass(frozen=True)
class TeamInfo:
    team_season_id: str
    league_season_id: str
    name: str = ""
    division_season_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_season_id": self.team_season_id,
            "league_season_id": self.league_season_id,
            "name": self.name,
            "division_season_id": self.division_season_id,
        }


@dataclass(frozen=True)
class FieldInfo:
    field_id: str
    name: str = ""
    has_lights: bool = False
    max_parallel_games: int = 1
    start_increment_minutes: Optional[int] = None
    usable_from: Optional[date] = None
    usable_until: Optional[date] = None

    def is_usable_on(self, day: date) -> bool:
        if self.usable_from is not None and day < self.usable_from:
            return False
        if self.usable_until is not None and day > self.usable_until:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_id": self.field_id,
            "name": self.name,
            "has_lights": self.has_lights,
            "max_parallel_games": self.max_parallel_games,
            "start_increment_minutes": self.start_increment_minutes,
            "usable_from": self.usable_from.isoformat() if self.usable_from else None,
            "usable_until": self.usable_until.isoformat() if self.usable_until else None,
        }


@dataclass(frozen=True)
class UmpireInfo:
    umpire_id: str
    name: str = ""
    max_games_per_day: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"umpire_id": self.umpire_id, "name": self.name, "max_games_per_day": self.max_games_per_day}


@dataclass(frozen=True)
class GameRequest:
    """A game needing a field, start time and umpires."""

    game_id: str
    league_season_id: str
    home_team_id: str
    visitor_team_id: str
    earliest_start: Optional[datetime] = None
    latest_end: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    preferred_field_ids: Tuple[str, ...] = ()
    status: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.game_id,
            "league_season_id": self.league_season_id,
            "home_team_id": self.home_team_id,
            "visitor_team_id": self.visitor_team_id,
            "earliest_start": iso_utc(self.earliest_start),
            "latest_end": iso_utc(self.latest_end),
            "duration_minutes": self.duration_minutes,
            "preferred_field_ids": list(self.preferred_field_ids),
            "status": self.status,
        }


@dataclass(frozen=True)
class FieldAvailabilityRule:
    """Recurring weekly window during which a field may host games."""

    rule_id: str
    field_id: str
    days_of_week_mask: int  # bit 0 = Monday ... bit 6 = Sunday
    start_time_local: time
    end_time_local: time
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "field_id": self.field_id,
            "days_of_week_mask": self.days_of_week_mask,
            "start_time_local": format_hhmm(self.start_time_local),
            "end_time_local": format_hhmm(self.end_time_local),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class FieldExclusionDate:
    exclusion_id: str
    field_id: str
    exclusion_date: date
    note: Optional[str] = None
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exclusion_id": self.exclusion_id,
            "field_id": self.field_id,
            "date": self.exclusion_date.isoformat(),
            "note": self.note,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class ExclusionWindow:
    """[start_time, end_time) during which the season, a team or an umpire is unavailable.

    subject_id is None for season-wide windows, otherwise the team-season or umpire id.
    """

    exclusion_id: str
    start_time: datetime
    end_time: datetime
    subject_id: Optional[str] = None
    note: Optional[str] = None
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exclusion_id": self.exclusion_id,
            "subject_id": self.subject_id,
            "start_time": iso_utc(self.start_time),
            "end_time": iso_utc(self.end_time),
            "note": self.note,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class LeagueSelection:
    league_season_id: str
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"league_season_id": self.league_season_id, "enabled": self.enabled}


@dataclass(frozen=True)
class FieldSlot:
    """Candidate start on a field; end_time is the end of the availability window."""

    slot_id: str
    field_id: str
    start_time: datetime
    end_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "field_id": self.field_id,
            "start_time": iso_utc(self.start_time),
            "end_time": iso_utc(self.end_time),
        }


# ============================================================================
# Constraints
# ============================================================================


@dataclass(frozen=True)
class RequireLightsAfter:
    """Games starting at/after start_hour_local (account zone) need a lit field."""

    enabled: bool
    start_hour_local: int

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "start_hour_local": self.start_hour_local}


@dataclass(frozen=True)
class HardConstraints:
    respect_field_availability: bool = True
    respect_season_exclusions: bool = True
    respect_team_exclusions: bool = True
    respect_umpire_exclusions: bool = True
    no_field_overlap: bool = True
    no_team_overlap: bool = True
    no_umpire_overlap: bool = True
    max_games_per_team_per_day: Optional[int] = None
    max_games_per_umpire_per_day: Optional[int] = None
    require_lights_after: Optional[RequireLightsAfter] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "respect_field_availability": self.respect_field_availability,
            "respect_season_exclusions": self.respect_season_exclusions,
            "respect_team_exclusions": self.respect_team_exclusions,
            "respect_umpire_exclusions": self.respect_umpire_exclusions,
            "no_field_overlap": self.no_field_overlap,
            "no_team_overlap": self.no_team_overlap,
            "no_umpire_overlap": self.no_umpire_overlap,
            "max_games_per_team_per_day": self.max_games_per_team_per_day,
            "max_games_per_umpire_per_day": self.max_games_per_umpire_per_day,
            "require_lights_after": self.require_lights_after.to_dict() if self.require_lights_after else None,
        }


@dataclass(frozen=True)
class SoftConstraints:
    """Preferences used only to rank otherwise-valid candidates."""

    avoid_back_to_back_minutes: Optional[int] = None
    avoid_back_to_back_weight: int = 1
    spread_games_across_days: bool = False
    spread_games_weight: int = 1
    balance_umpire_load: bool = False
    balance_umpire_weight: int = 1

    def any_enabled(self) -> bool:
        return (
            self.avoid_back_to_back_minutes is not None
            or self.spread_games_across_days
            or self.balance_umpire_load
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avoid_back_to_back_minutes": self.avoid_back_to_back_minutes,
            "avoid_back_to_back_weight": self.avoid_back_to_back_weight,
            "spread_games_across_days": self.spread_games_across_days,
            "spread_games_weight": self.spread_games_weight,
            "balance_umpire_load": self.balance_umpire_load,
            "balance_umpire_weight": self.balance_umpire_weight,
        }


# ============================================================================
# Assignments and results
# ============================================================================


@dataclass(frozen=True)
class Assignment:
    game_id: str
    field_id: str
    start_time: datetime
    end_time: datetime
    umpire_ids: Tuple[str, ...] = ()

    def local_date(self, time_zone: str) -> date:
        return local_date(self.start_time, time_zone)

    def to_dict(self, time_zone: Optional[str] = None) -> Dict[str, Any]:
        result = {
            "game_id": self.game_id,
            "field_id": self.field_id,
            "start_time": iso_utc(self.start_time),
            "end_time": iso_utc(self.end_time),
            "umpire_ids": list(self.umpire_ids),
        }
        if time_zone:
            result["date"] = self.local_date(time_zone).isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Assignment":
        return cls(
            game_id=str(data["game_id"]),
            field_id=str(data["field_id"]),
            start_time=parse_iso_datetime(data["start_time"], "start_time"),
            end_time=parse_iso_datetime(data["end_time"], "end_time"),
            umpire_ids=tuple(str(u) for u in data.get("umpire_ids") or ()),
        )


@dataclass(frozen=True)
class ProblemSpec:
    """Complete, self-contained input to one solve call."""

    account_id: str
    season_id: str
    time_zone: str
    season: SeasonConfig
    teams: Tuple[TeamInfo, ...]
    fields: Tuple[FieldInfo, ...]
    umpires: Tuple[UmpireInfo, ...]
    games: Tuple[GameRequest, ...]
    field_availability_rules: Tuple[FieldAvailabilityRule, ...] = ()
    field_exclusion_dates: Tuple[FieldExclusionDate, ...] = ()
    season_exclusions: Tuple[ExclusionWindow, ...] = ()
    team_exclusions: Tuple[ExclusionWindow, ...] = ()
    umpire_exclusions: Tuple[ExclusionWindow, ...] = ()
    league_selections: Tuple[LeagueSelection, ...] = ()
    field_slots: Tuple[FieldSlot, ...] = ()
    fixed_assignments: Tuple[Assignment, ...] = ()
    fixed_games: Tuple[GameRequest, ...] = ()
    constraints: HardConstraints = field(default_factory=HardConstraints)
    soft_constraints: SoftConstraints = field(default_factory=SoftConstraints)
    objective: str = OBJECTIVE_MAXIMIZE_SCHEDULED
    run_id: Optional[str] = None

    def fixed_team_ids(self) -> Dict[str, Tuple[str, str]]:
        """Home/visitor team ids of each fixed game."""
        return {g.game_id: (g.home_team_id, g.visitor_team_id) for g in self.fixed_games}

    def game_duration(self, game: GameRequest) -> int:
        if game.duration_minutes and game.duration_minutes > 0:
            return game.duration_minutes
        return self.season.default_game_minutes

    def umpire_daily_limit(self, umpire: Optional[UmpireInfo]) -> Optional[int]:
        """Effective per-day limit: the tighter of the global and per-umpire limits."""
        limits = [
            limit
            for limit in (
                self.constraints.max_games_per_umpire_per_day,
                self.season.max_games_per_umpire_per_day,
                umpire.max_games_per_day if umpire else None,
            )
            if limit is not None
        ]
        return min(limits) if limits else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "season_id": self.season_id,
            "time_zone": self.time_zone,
            "season": self.season.to_dict(),
            "teams": [t.to_dict() for t in self.teams],
            "fields": [f.to_dict() for f in self.fields],
            "umpires": [u.to_dict() for u in self.umpires],
            "games": [g.to_dict() for g in self.games],
            "field_availability_rules": [r.to_dict() for r in self.field_availability_rules],
            "field_exclusion_dates": [e.to_dict() for e in self.field_exclusion_dates],
            "season_exclusions": [e.to_dict() for e in self.season_exclusions],
            "team_exclusions": [e.to_dict() for e in self.team_exclusions],
            "umpire_exclusions": [e.to_dict() for e in self.umpire_exclusions],
            "league_selections": [s.to_dict() for s in self.league_selections],
            "field_slots": [s.to_dict() for s in self.field_slots],
            "fixed_assignments": [a.to_dict(self.time_zone) for a in self.fixed_assignments],
            "fixed_games": [g.to_dict() for g in self.fixed_games],
            "constraints": self.constraints.to_dict(),
            "soft_constraints": self.soft_constraints.to_dict(),
            "objective": self.objective,
            "run_id": self.run_id,
        }


@dataclass
class UnscheduledGame:
    game_id: str
    reason: str
    detail: str
    rejection_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.game_id,
            "reason": self.reason,
            "detail": self.detail,
            "rejection_counts": dict(sorted(self.rejection_counts.items())),
        }


@dataclass
class SolveMetrics:
    total_games: int = 0
    scheduled_games: int = 0
    unscheduled_games: int = 0
    objective_value: int = 0
    scheduled_ratio: float = 0.0
    average_umpire_load: float = 0.0
    umpire_load_variance: float = 0.0
    idle_minutes_total: int = 0
    fields_used: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_games": self.total_games,
            "scheduled_games": self.scheduled_games,
            "unscheduled_games": self.unscheduled_games,
            "objective_value": self.objective_value,
            "scheduled_ratio": self.scheduled_ratio,
            "average_umpire_load": self.average_umpire_load,
            "umpire_load_variance": self.umpire_load_variance,
            "idle_minutes_total": self.idle_minutes_total,
            "fields_used": self.fields_used,
        }


@dataclass
class SolveResult:
    run_id: str
    status: str
    assignments: List[Assignment]
    unassigned: List[UnscheduledGame]
    metrics: SolveMetrics
    diagnostics: Dict[str, int] = field(default_factory=dict)
    time_zone: Optional[str] = None
    duration_ms: Optional[int] = None

    @property
    def unassigned_game_ids(self) -> List[GameId]:
        return [u.game_id for u in self.unassigned]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "metrics": self.metrics.to_dict(),
            "assignments": [a.to_dict(self.time_zone) for a in self.assignments],
            "unassigned_game_ids": self.unassigned_game_ids,
            "unscheduled": [u.to_dict() for u in self.unassigned],
            "diagnostics": dict(sorted(self.diagnostics.items())),
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class GamePlacement:
    """Current persisted placement of a game (None fields = unassigned)."""

    game_id: str
    field_id: Optional[str]
    start_time: Optional[datetime]
    umpire_ids: Tuple[str, ...] = ()

    @property
    def is_assigned(self) -> bool:
        return self.field_id is not None and self.start_time is not None


@dataclass(frozen=True)
class LedgerEntry:
    """Idempotency ledger row as seen by the core."""

    idempotency_key: str
    account_id: str
    season_id: str
    run_id: str
    mode: str
    request_fingerprint: str
    status: str
    result: Dict[str, Any]
