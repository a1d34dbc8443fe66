"""
Collaborator interfaces consumed by the problem spec builder and apply service.

All identifiers cross this boundary as strings; datetimes are aware UTC.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from app.services.scheduler_types import (
    ExclusionWindow,
    FieldAvailabilityRule,
    FieldExclusionDate,
    FieldInfo,
    GamePlacement,
    LeagueSelection,
    LedgerEntry,
    SeasonConfig,
    TeamInfo,
    UmpireInfo,
)


@dataclass(frozen=True)
class AccountRecord:
    account_id: str
    name: str
    time_zone: Optional[str]


@dataclass(frozen=True)
class SeasonRecord:
    season_id: str
    account_id: str
    name: str


@dataclass(frozen=True)
class GameRecord:
    """A season game as persisted (placement fields may be empty)."""

    game_id: str
    league_season_id: str
    home_team_id: str
    visitor_team_id: str
    start_time: Optional[datetime]
    field_id: Optional[str]
    umpire_ids: Tuple[str, ...]
    duration_minutes: Optional[int]
    status: int


class SeasonLookup(Protocol):
    def get_account(self, account_id: str) -> Optional[AccountRecord]: ...

    def get_season(self, account_id: str, season_id: str) -> Optional[SeasonRecord]:
        """None when the season does not exist or belongs to another account."""
        ...


class SchedulerDataRepository(Protocol):
    def list_league_season_ids(self, season_id: str) -> List[str]: ...

    def list_teams(self, season_id: str) -> List[TeamInfo]: ...

    def list_fields(self, account_id: str) -> List[FieldInfo]: ...

    def list_umpires(self, account_id: str) -> List[UmpireInfo]: ...

    def list_games(self, season_id: str) -> List[GameRecord]: ...


class SchedulerRulesRepository(Protocol):
    def get_season_config(self, season_id: str) -> Optional[SeasonConfig]: ...

    def upsert_season_config(self, account_id: str, season_id: str, config: SeasonConfig) -> SeasonConfig: ...

    def list_league_selections(self, season_id: str) -> List[LeagueSelection]: ...

    def replace_league_selections(
        self, account_id: str, season_id: str, selections: Sequence[LeagueSelection]
    ) -> List[LeagueSelection]: ...

    def list_field_availability_rules(self, season_id: str) -> List[FieldAvailabilityRule]: ...

    def list_field_exclusion_dates(self, season_id: str) -> List[FieldExclusionDate]: ...

    def list_season_exclusions(self, season_id: str) -> List[ExclusionWindow]: ...

    def list_team_exclusions(self, season_id: str) -> List[ExclusionWindow]: ...

    def list_umpire_exclusions(self, season_id: str) -> List[ExclusionWindow]: ...


class ScheduleWriter(Protocol):
    """The apply service's only write dependency on the schedule store."""

    def get_placements(self, game_ids: Sequence[str]) -> Dict[str, GamePlacement]: ...

    def write_placement(
        self, game_id: str, field_id: str, start_time: datetime, umpire_ids: Sequence[str]
    ) -> None: ...

    def clear_placement(self, game_id: str) -> None: ...


class IdempotencyLedger(Protocol):
    def get(self, account_id: str, idempotency_key: str) -> Optional[LedgerEntry]:
        """Keys are scoped per account."""
        ...

    def record(self, entry: LedgerEntry) -> None:
        """Claim the key; raises DuplicateRunError when it is already claimed."""
        ...


class ApplyUnitOfWork(Protocol):
    """Writer and ledger sharing one transaction."""

    writer: ScheduleWriter
    ledger: IdempotencyLedger

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
