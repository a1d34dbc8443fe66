"""
Problem Spec Builder - assembles one consistent ProblemSpec snapshot per call.

Reads every collection it needs from the repositories on each call (no caching)
and guarantees the spec's closure: every id a game, rule, exclusion, slot or
fixed assignment references exists in the top-level collections.
"""

import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from app.config import DEFAULT_START_INCREMENT_MINUTES, MAX_UMPIRES_PER_GAME
from app.models.game import GAME_STATUS_POSTPONED, GAME_STATUS_RAINOUT, GAME_STATUS_SCHEDULED
from app.repositories.interfaces import (
    GameRecord,
    SchedulerDataRepository,
    SchedulerRulesRepository,
    SeasonLookup,
)
from app.services.scheduler_types import (
    OBJECTIVE_MAXIMIZE_SCHEDULED,
    Assignment,
    ExclusionWindow,
    GameRequest,
    HardConstraints,
    ProblemSpec,
    SeasonConfig,
    SoftConstraints,
)
from app.utils.errors import NotFoundError, ValidationError
from app.utils.field_slots import expand_field_slots
from app.utils.time_utils import get_zone, local_day_bounds

logger = logging.getLogger(__name__)

# Games in these states do not occupy their field
_NON_OCCUPYING_STATUSES = {GAME_STATUS_RAINOUT, GAME_STATUS_POSTPONED}


@dataclass(frozen=True)
class SolveFilters:
    """Scope and overrides for one build."""

    game_ids: Optional[Tuple[str, ...]] = None
    league_season_ids: Optional[Tuple[str, ...]] = None
    umpires_per_game: Optional[int] = None
    constraints: Optional[HardConstraints] = None
    soft_constraints: Optional[SoftConstraints] = None
    objective: str = OBJECTIVE_MAXIMIZE_SCHEDULED
    run_id: Optional[str] = None


def _dedupe(values: Sequence[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class ProblemSpecBuilder:
    def __init__(
        self,
        lookup: SeasonLookup,
        data: SchedulerDataRepository,
        rules: SchedulerRulesRepository,
        default_start_increment_minutes: int = DEFAULT_START_INCREMENT_MINUTES,
    ):
        self.lookup = lookup
        self.data = data
        self.rules = rules
        self.default_start_increment_minutes = default_start_increment_minutes

    def build(self, account_id: str, season_id: str, filters: Optional[SolveFilters] = None) -> ProblemSpec:
        """
        Build the spec for a solve or an apply re-validation.

        Raises:
            NotFoundError: account missing, or season not owned by the account
            ValidationError: no time zone, no season window, filters outside the
                season, bad overrides, or no games in scope
        """
        return self._assemble(str(account_id), str(season_id), filters or SolveFilters(), allow_empty=False)

    def preview(self, account_id: str, season_id: str) -> ProblemSpec:
        """Snapshot over all scheduled games; an empty game list is allowed."""
        return self._assemble(str(account_id), str(season_id), SolveFilters(), allow_empty=True)

    def _assemble(self, account_id: str, season_id: str, filters: SolveFilters, allow_empty: bool) -> ProblemSpec:
        account = self.lookup.get_account(account_id)
        if not account:
            raise NotFoundError(f"Account {account_id} not found")
        season = self.lookup.get_season(account_id, season_id)
        if not season:
            raise NotFoundError(f"Season {season_id} not found for account {account_id}")

        if not account.time_zone:
            raise ValidationError(f"Account {account_id} has no time zone configured")
        time_zone = account.time_zone
        get_zone(time_zone)

        config = self.rules.get_season_config(season_id)
        if config is None:
            raise ValidationError(f"Season {season_id} has no scheduling window configured")
        if config.start_date > config.end_date:
            raise ValidationError("Season scheduling window start_date must be on or before end_date")

        constraints = filters.constraints or HardConstraints()
        umpires_per_game = filters.umpires_per_game
        if umpires_per_game is None:
            umpires_per_game = config.umpires_per_game
        if umpires_per_game < 0 or umpires_per_game > MAX_UMPIRES_PER_GAME:
            raise ValidationError(f"umpires_per_game must be between 0 and {MAX_UMPIRES_PER_GAME}")

        max_per_umpire = constraints.max_games_per_umpire_per_day
        if max_per_umpire is None:
            max_per_umpire = config.max_games_per_umpire_per_day
        season_config = replace(
            config, umpires_per_game=umpires_per_game, max_games_per_umpire_per_day=max_per_umpire
        )
        constraints = replace(constraints, max_games_per_umpire_per_day=max_per_umpire)

        teams = self.data.list_teams(season_id)
        fields = self.data.list_fields(account_id)
        umpires = self.data.list_umpires(account_id)
        games = self.data.list_games(season_id)
        league_ids = self.data.list_league_season_ids(season_id)

        team_ids = {t.team_season_id for t in teams}
        field_ids = {f.field_id for f in fields}
        umpire_ids = {u.umpire_id for u in umpires}

        selections = self.rules.list_league_selections(season_id)
        enabled_leagues = self._enabled_leagues(filters, selections, league_ids)

        scope_records = self._games_in_scope(filters, games, enabled_leagues)
        if not scope_records and not allow_empty:
            raise ValidationError(f"No games to schedule for season {season_id}")

        window_start, _ = local_day_bounds(season_config.start_date, time_zone)
        _, window_end = local_day_bounds(season_config.end_date, time_zone)

        scope_ids = {g.game_id for g in scope_records}
        requests = tuple(
            GameRequest(
                game_id=g.game_id,
                league_season_id=g.league_season_id,
                home_team_id=g.home_team_id,
                visitor_team_id=g.visitor_team_id,
                earliest_start=window_start,
                latest_end=window_end,
                duration_minutes=g.duration_minutes,
                preferred_field_ids=(g.field_id,) if g.field_id in field_ids else (),
                status=g.status,
            )
            for g in scope_records
        )

        fixed_games, fixed_assignments = self._fixed(games, scope_ids, field_ids, umpire_ids, season_config)

        rules = tuple(r for r in self.rules.list_field_availability_rules(season_id) if r.field_id in field_ids)
        exclusion_dates = tuple(
            e for e in self.rules.list_field_exclusion_dates(season_id) if e.field_id in field_ids
        )
        season_exclusions = tuple(self.rules.list_season_exclusions(season_id))
        team_exclusions = self._known(self.rules.list_team_exclusions(season_id), team_ids)
        umpire_exclusions = self._known(self.rules.list_umpire_exclusions(season_id), umpire_ids)

        slots = expand_field_slots(
            fields,
            rules,
            exclusion_dates,
            season_exclusions if constraints.respect_season_exclusions else (),
            season_config,
            time_zone,
            self.default_start_increment_minutes,
        )

        spec = ProblemSpec(
            account_id=account_id,
            season_id=season_id,
            time_zone=time_zone,
            season=season_config,
            teams=tuple(teams),
            fields=tuple(fields),
            umpires=tuple(umpires),
            games=requests,
            field_availability_rules=rules,
            field_exclusion_dates=exclusion_dates,
            season_exclusions=season_exclusions,
            team_exclusions=team_exclusions,
            umpire_exclusions=umpire_exclusions,
            league_selections=tuple(selections),
            field_slots=slots,
            fixed_assignments=fixed_assignments,
            fixed_games=fixed_games,
            constraints=constraints,
            soft_constraints=filters.soft_constraints or SoftConstraints(),
            objective=filters.objective,
            run_id=filters.run_id,
        )
        logger.info(
            "PROBLEM_SPEC_BUILT: account_id=%s season_id=%s games=%s fixed=%s fields=%s umpires=%s slots=%s",
            account_id,
            season_id,
            len(requests),
            len(fixed_assignments),
            len(fields),
            len(umpires),
            len(slots),
        )
        return spec

    def _enabled_leagues(self, filters: SolveFilters, selections, league_ids: List[str]) -> set:
        known = set(league_ids)
        if filters.league_season_ids is not None:
            unknown = [lid for lid in filters.league_season_ids if lid not in known]
            if unknown:
                raise ValidationError(f"League seasons not in season: {', '.join(unknown)}")
            return set(filters.league_season_ids)
        if not selections:
            return known
        return {s.league_season_id for s in selections if s.enabled and s.league_season_id in known}

    def _games_in_scope(
        self, filters: SolveFilters, games: List[GameRecord], enabled_leagues: set
    ) -> List[GameRecord]:
        if filters.game_ids is None:
            return [g for g in games if g.status == GAME_STATUS_SCHEDULED and g.league_season_id in enabled_leagues]

        by_id: Dict[str, GameRecord] = {g.game_id: g for g in games}
        requested = _dedupe([str(gid) for gid in filters.game_ids])
        unknown = [gid for gid in requested if gid not in by_id]
        if unknown:
            raise ValidationError(f"Games not in season: {', '.join(unknown)}")
        return [by_id[gid] for gid in requested]

    def _fixed(
        self,
        games: List[GameRecord],
        scope_ids: set,
        field_ids: set,
        umpire_ids: set,
        season: SeasonConfig,
    ) -> Tuple[Tuple[GameRequest, ...], Tuple[Assignment, ...]]:
        """Placed season games outside the scope: they hold capacity but never move."""
        fixed_games = []
        fixed_assignments = []
        for g in games:
            if g.game_id in scope_ids or g.status in _NON_OCCUPYING_STATUSES:
                continue
            if g.field_id is None or g.start_time is None:
                continue
            if g.field_id not in field_ids:
                logger.warning("FIXED_GAME_SKIPPED: game_id=%s unknown field_id=%s", g.game_id, g.field_id)
                continue
            duration = g.duration_minutes if g.duration_minutes and g.duration_minutes > 0 else season.default_game_minutes
            request = GameRequest(
                game_id=g.game_id,
                league_season_id=g.league_season_id,
                home_team_id=g.home_team_id,
                visitor_team_id=g.visitor_team_id,
                duration_minutes=duration,
                status=g.status,
            )
            fixed_games.append(request)
            fixed_assignments.append(
                Assignment(
                    game_id=g.game_id,
                    field_id=g.field_id,
                    start_time=g.start_time,
                    end_time=g.start_time + timedelta(minutes=duration),
                    umpire_ids=tuple(u for u in g.umpire_ids if u in umpire_ids),
                )
            )
        return tuple(fixed_games), tuple(fixed_assignments)

    @staticmethod
    def _known(windows: List[ExclusionWindow], known_ids: set) -> Tuple[ExclusionWindow, ...]:
        return tuple(w for w in windows if w.subject_id in known_ids)
