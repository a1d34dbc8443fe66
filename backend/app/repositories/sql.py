"""
SQLModel implementations of the scheduler repositories.

Integer primary keys are converted to/from the core's string ids here and
naive UTC columns to aware UTC datetimes. Nothing in this module commits
except SqlApplyUnitOfWork.commit(); callers own the transaction.
"""

import json
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.config import DEFAULT_GAME_MINUTES, DEFAULT_UMPIRES_PER_GAME, MAX_UMPIRES_PER_GAME
from app.models.account import Account
from app.models.available_field import AvailableField
from app.models.exclusions import SeasonExclusion, TeamExclusion, UmpireExclusion
from app.models.field_availability_rule import FieldAvailabilityRule as FieldAvailabilityRuleRow
from app.models.field_exclusion_date import FieldExclusionDate as FieldExclusionDateRow
from app.models.game import Game
from app.models.league_season import LeagueSeason
from app.models.scheduler_apply_run import SchedulerApplyRun
from app.models.scheduler_season_config import SchedulerLeagueSelection, SchedulerSeasonConfig
from app.models.season import Season
from app.models.team_season import TeamSeason
from app.models.umpire import Umpire
from app.repositories.interfaces import AccountRecord, GameRecord, SeasonRecord
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
from app.utils.errors import DuplicateRunError
from app.utils.time_utils import parse_hhmm, to_naive_utc, to_utc

logger = logging.getLogger(__name__)


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _sid(value) -> Optional[str]:
    return None if value is None else str(value)


class SqlSeasonLookup:
    def __init__(self, session: Session):
        self.session = session

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        key = _to_int(account_id)
        account = self.session.get(Account, key) if key is not None else None
        if not account:
            return None
        return AccountRecord(account_id=str(account.id), name=account.name, time_zone=account.timezone_id)

    def get_season(self, account_id: str, season_id: str) -> Optional[SeasonRecord]:
        key = _to_int(season_id)
        season = self.session.get(Season, key) if key is not None else None
        if not season or str(season.account_id) != str(account_id):
            return None
        return SeasonRecord(season_id=str(season.id), account_id=str(season.account_id), name=season.name)


class SqlSchedulerDataRepository:
    def __init__(self, session: Session):
        self.session = session

    def list_league_season_ids(self, season_id: str) -> List[str]:
        rows = self.session.exec(
            select(LeagueSeason.id).where(LeagueSeason.season_id == int(season_id)).order_by(LeagueSeason.id)
        ).all()
        return [str(r) for r in rows]

    def list_teams(self, season_id: str) -> List[TeamInfo]:
        rows = self.session.exec(
            select(TeamSeason)
            .join(LeagueSeason, TeamSeason.league_season_id == LeagueSeason.id)
            .where(LeagueSeason.season_id == int(season_id))
            .order_by(TeamSeason.id)
        ).all()
        return [
            TeamInfo(
                team_season_id=str(t.id),
                league_season_id=str(t.league_season_id),
                name=t.name,
                division_season_id=_sid(t.division_season_id),
            )
            for t in rows
        ]

    def list_fields(self, account_id: str) -> List[FieldInfo]:
        rows = self.session.exec(
            select(AvailableField).where(AvailableField.account_id == int(account_id)).order_by(AvailableField.id)
        ).all()
        return [
            FieldInfo(
                field_id=str(f.id),
                name=f.name,
                has_lights=bool(f.has_lights),
                max_parallel_games=f.max_parallel_games or 1,
                start_increment_minutes=f.start_increment_minutes,
                usable_from=f.usable_from,
                usable_until=f.usable_until,
            )
            for f in rows
        ]

    def list_umpires(self, account_id: str) -> List[UmpireInfo]:
        rows = self.session.exec(
            select(Umpire).where(Umpire.account_id == int(account_id)).order_by(Umpire.id)
        ).all()
        return [UmpireInfo(umpire_id=str(u.id), name=u.name, max_games_per_day=u.max_games_per_day) for u in rows]

    def list_games(self, season_id: str) -> List[GameRecord]:
        rows = self.session.exec(
            select(Game)
            .join(LeagueSeason, Game.league_season_id == LeagueSeason.id)
            .where(LeagueSeason.season_id == int(season_id))
            .order_by(Game.id)
        ).all()
        return [
            GameRecord(
                game_id=str(g.id),
                league_season_id=str(g.league_season_id),
                home_team_id=str(g.home_team_season_id),
                visitor_team_id=str(g.visitor_team_season_id),
                start_time=to_utc(g.game_date) if g.game_date else None,
                field_id=_sid(g.field_id),
                umpire_ids=tuple(str(u) for u in g.umpire_ids()),
                duration_minutes=g.duration_minutes,
                status=g.game_status,
            )
            for g in rows
        ]


class SqlSchedulerRulesRepository:
    def __init__(self, session: Session):
        self.session = session

    def _config_row(self, season_id: str) -> Optional[SchedulerSeasonConfig]:
        return self.session.exec(
            select(SchedulerSeasonConfig).where(SchedulerSeasonConfig.season_id == int(season_id))
        ).first()

    def get_season_config(self, season_id: str) -> Optional[SeasonConfig]:
        row = self._config_row(season_id)
        if not row:
            return None
        return SeasonConfig(
            start_date=row.start_date,
            end_date=row.end_date,
            umpires_per_game=row.umpires_per_game if row.umpires_per_game is not None else DEFAULT_UMPIRES_PER_GAME,
            max_games_per_umpire_per_day=row.max_games_per_umpire_per_day,
            default_game_minutes=row.default_game_minutes or DEFAULT_GAME_MINUTES,
        )

    def upsert_season_config(self, account_id: str, season_id: str, config: SeasonConfig) -> SeasonConfig:
        row = self._config_row(season_id)
        if row is None:
            row = SchedulerSeasonConfig(
                account_id=int(account_id),
                season_id=int(season_id),
                start_date=config.start_date,
                end_date=config.end_date,
            )
        row.start_date = config.start_date
        row.end_date = config.end_date
        row.umpires_per_game = config.umpires_per_game
        row.max_games_per_umpire_per_day = config.max_games_per_umpire_per_day
        row.default_game_minutes = config.default_game_minutes
        self.session.add(row)
        self.session.flush()
        logger.info("SEASON_CONFIG_UPSERT: account_id=%s season_id=%s", account_id, season_id)
        return self.get_season_config(season_id)

    def list_league_selections(self, season_id: str) -> List[LeagueSelection]:
        rows = self.session.exec(
            select(SchedulerLeagueSelection)
            .where(SchedulerLeagueSelection.season_id == int(season_id))
            .order_by(SchedulerLeagueSelection.league_season_id)
        ).all()
        return [LeagueSelection(league_season_id=str(r.league_season_id), enabled=r.enabled) for r in rows]

    def replace_league_selections(
        self, account_id: str, season_id: str, selections: Sequence[LeagueSelection]
    ) -> List[LeagueSelection]:
        existing = self.session.exec(
            select(SchedulerLeagueSelection).where(SchedulerLeagueSelection.season_id == int(season_id))
        ).all()
        for row in existing:
            self.session.delete(row)
        self.session.flush()
        for selection in selections:
            self.session.add(
                SchedulerLeagueSelection(
                    account_id=int(account_id),
                    season_id=int(season_id),
                    league_season_id=int(selection.league_season_id),
                    enabled=selection.enabled,
                )
            )
        self.session.flush()
        logger.info(
            "LEAGUE_SELECTIONS_REPLACED: account_id=%s season_id=%s count=%s",
            account_id,
            season_id,
            len(selections),
        )
        return self.list_league_selections(season_id)

    def list_field_availability_rules(self, season_id: str) -> List[FieldAvailabilityRule]:
        rows = self.session.exec(
            select(FieldAvailabilityRuleRow)
            .where(FieldAvailabilityRuleRow.season_id == int(season_id))
            .order_by(FieldAvailabilityRuleRow.id)
        ).all()
        return [
            FieldAvailabilityRule(
                rule_id=str(r.id),
                field_id=str(r.field_id),
                days_of_week_mask=r.days_of_week_mask,
                start_time_local=parse_hhmm(r.start_time_local),
                end_time_local=parse_hhmm(r.end_time_local),
                start_date=r.start_date,
                end_date=r.end_date,
                enabled=r.enabled,
            )
            for r in rows
        ]

    def list_field_exclusion_dates(self, season_id: str) -> List[FieldExclusionDate]:
        rows = self.session.exec(
            select(FieldExclusionDateRow)
            .where(FieldExclusionDateRow.season_id == int(season_id))
            .order_by(FieldExclusionDateRow.id)
        ).all()
        return [
            FieldExclusionDate(
                exclusion_id=str(r.id),
                field_id=str(r.field_id),
                exclusion_date=r.exclusion_date,
                note=r.note,
                enabled=r.enabled,
            )
            for r in rows
        ]

    def _windows(self, model, season_id: str, subject_attr: Optional[str]) -> List[ExclusionWindow]:
        rows = self.session.exec(select(model).where(model.season_id == int(season_id)).order_by(model.id)).all()
        return [
            ExclusionWindow(
                exclusion_id=str(r.id),
                start_time=to_utc(r.start_time),
                end_time=to_utc(r.end_time),
                subject_id=str(getattr(r, subject_attr)) if subject_attr else None,
                note=r.note,
                enabled=r.enabled,
            )
            for r in rows
        ]

    def list_season_exclusions(self, season_id: str) -> List[ExclusionWindow]:
        return self._windows(SeasonExclusion, season_id, None)

    def list_team_exclusions(self, season_id: str) -> List[ExclusionWindow]:
        return self._windows(TeamExclusion, season_id, "team_season_id")

    def list_umpire_exclusions(self, season_id: str) -> List[ExclusionWindow]:
        return self._windows(UmpireExclusion, season_id, "umpire_id")


class SqlScheduleWriter:
    def __init__(self, session: Session):
        self.session = session

    def get_placements(self, game_ids: Sequence[str]) -> Dict[str, GamePlacement]:
        keys = [int(g) for g in game_ids]
        if not keys:
            return {}
        rows = self.session.exec(select(Game).where(Game.id.in_(keys))).all()
        return {
            str(g.id): GamePlacement(
                game_id=str(g.id),
                field_id=_sid(g.field_id),
                start_time=to_utc(g.game_date) if g.game_date else None,
                umpire_ids=tuple(str(u) for u in g.umpire_ids()),
            )
            for g in rows
        }

    def write_placement(self, game_id: str, field_id: str, start_time, umpire_ids: Sequence[str]) -> None:
        game = self.session.get(Game, int(game_id))
        slots = [int(u) for u in umpire_ids][:MAX_UMPIRES_PER_GAME]
        slots += [None] * (MAX_UMPIRES_PER_GAME - len(slots))
        game.field_id = int(field_id)
        game.game_date = to_naive_utc(start_time)
        game.umpire1, game.umpire2, game.umpire3, game.umpire4 = slots[:4]
        self.session.add(game)

    def clear_placement(self, game_id: str) -> None:
        """Drop field and umpires; the nominal game date is kept."""
        game = self.session.get(Game, int(game_id))
        game.field_id = None
        game.umpire1 = game.umpire2 = game.umpire3 = game.umpire4 = None
        self.session.add(game)


class SqlIdempotencyLedger:
    def __init__(self, session: Session):
        self.session = session

    def get(self, account_id: str, idempotency_key: str) -> Optional[LedgerEntry]:
        key = _to_int(account_id)
        if key is None:
            return None
        row = self.session.exec(
            select(SchedulerApplyRun).where(
                SchedulerApplyRun.account_id == key,
                SchedulerApplyRun.idempotency_key == idempotency_key,
            )
        ).first()
        if not row:
            return None
        return LedgerEntry(
            idempotency_key=row.idempotency_key,
            account_id=str(row.account_id),
            season_id=str(row.season_id),
            run_id=row.run_id,
            mode=row.mode,
            request_fingerprint=row.request_fingerprint,
            status=row.status,
            result=json.loads(row.result_json) if row.result_json else {},
        )

    def record(self, entry: LedgerEntry) -> None:
        row = SchedulerApplyRun(
            idempotency_key=entry.idempotency_key,
            account_id=int(entry.account_id),
            season_id=int(entry.season_id),
            run_id=entry.run_id,
            mode=entry.mode,
            request_fingerprint=entry.request_fingerprint,
            status=entry.status,
            result_json=json.dumps(entry.result, sort_keys=True),
        )
        self.session.add(row)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateRunError(f"Idempotency key already applied: {entry.idempotency_key}") from e


class SqlApplyUnitOfWork:
    """Schedule writer and ledger on one Session; commit() ends the transaction."""

    def __init__(self, session: Session):
        self.session = session
        self.writer = SqlScheduleWriter(session)
        self.ledger = SqlIdempotencyLedger(session)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
