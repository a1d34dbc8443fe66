from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.config import DEFAULT_GAME_MINUTES, DEFAULT_UMPIRES_PER_GAME, MAX_UMPIRES_PER_GAME
from app.database import get_session
from app.models.available_field import AvailableField
from app.models.exclusions import SeasonExclusion, TeamExclusion, UmpireExclusion
from app.models.field_availability_rule import FieldAvailabilityRule
from app.models.field_exclusion_date import FieldExclusionDate
from app.models.league_season import LeagueSeason
from app.models.team_season import TeamSeason
from app.models.umpire import Umpire
from app.repositories.sql import SqlSchedulerDataRepository, SqlSchedulerRulesRepository, SqlSeasonLookup
from app.services.scheduler_types import LeagueSelection, SeasonConfig
from app.utils.errors import ConflictError, NotFoundError, SchedulerError, ValidationError
from app.utils.time_utils import parse_hhmm, to_naive_utc

router = APIRouter()

_BASE = "/accounts/{account_id}/seasons/{season_id}/scheduler"


def _to_http(e: SchedulerError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


def _require_season(session: Session, account_id: int, season_id: int) -> None:
    lookup = SqlSeasonLookup(session)
    if not lookup.get_account(str(account_id)):
        raise _to_http(NotFoundError(f"Account {account_id} not found"))
    if not lookup.get_season(str(account_id), str(season_id)):
        raise _to_http(NotFoundError(f"Season {season_id} not found for account {account_id}"))


def _require_field(session: Session, account_id: int, field_id: int) -> None:
    field = session.get(AvailableField, field_id)
    if not field or field.account_id != account_id:
        raise _to_http(ValidationError(f"Field {field_id} does not belong to account {account_id}"))


# ============================================================================
# Season config
# ============================================================================


class SeasonConfigUpdate(BaseModel):
    start_date: date
    end_date: date
    umpires_per_game: int = Field(default=DEFAULT_UMPIRES_PER_GAME, ge=0, le=MAX_UMPIRES_PER_GAME)
    max_games_per_umpire_per_day: Optional[int] = Field(default=None, ge=1)
    default_game_minutes: int = Field(default=DEFAULT_GAME_MINUTES, ge=1)

    @model_validator(mode="after")
    def validate_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


@router.get(_BASE + "/season-config")
def get_season_config(account_id: int, season_id: int, session: Session = Depends(get_session)):
    """Get the season scheduling window and umpire settings"""
    _require_season(session, account_id, season_id)
    config = SqlSchedulerRulesRepository(session).get_season_config(str(season_id))
    if config is None:
        raise _to_http(NotFoundError("Season scheduler config not found"))
    return config.to_dict()


@router.put(_BASE + "/season-config")
def put_season_config(
    account_id: int, season_id: int, config_data: SeasonConfigUpdate, session: Session = Depends(get_session)
):
    """Create or replace the season scheduler config"""
    _require_season(session, account_id, season_id)
    config = SqlSchedulerRulesRepository(session).upsert_season_config(
        str(account_id), str(season_id), SeasonConfig(**config_data.model_dump())
    )
    session.commit()
    return config.to_dict()


# ============================================================================
# League selections
# ============================================================================


class LeagueSelectionItem(BaseModel):
    league_season_id: int
    enabled: bool = True


class LeagueSelectionsUpdate(BaseModel):
    selections: List[LeagueSelectionItem]

    @field_validator("selections")
    @classmethod
    def validate_unique(cls, v):
        ids = [s.league_season_id for s in v]
        if len(ids) != len(set(ids)):
            raise ValueError("league_season_id values must be unique")
        return v


@router.get(_BASE + "/league-selections")
def get_league_selections(account_id: int, season_id: int, session: Session = Depends(get_session)):
    """Leagues participating in this season's solves (empty = all leagues)"""
    _require_season(session, account_id, season_id)
    selections = SqlSchedulerRulesRepository(session).list_league_selections(str(season_id))
    return [s.to_dict() for s in selections]


@router.put(_BASE + "/league-selections")
def put_league_selections(
    account_id: int, season_id: int, data: LeagueSelectionsUpdate, session: Session = Depends(get_session)
):
    """Replace the league selections for a season"""
    _require_season(session, account_id, season_id)
    known = set(SqlSchedulerDataRepository(session).list_league_season_ids(str(season_id)))
    unknown = [str(s.league_season_id) for s in data.selections if str(s.league_season_id) not in known]
    if unknown:
        raise _to_http(ValidationError(f"League seasons not in season: {', '.join(unknown)}"))

    selections = SqlSchedulerRulesRepository(session).replace_league_selections(
        str(account_id),
        str(season_id),
        [LeagueSelection(league_season_id=str(s.league_season_id), enabled=s.enabled) for s in data.selections],
    )
    session.commit()
    return [s.to_dict() for s in selections]


# ============================================================================
# Field availability rules
# ============================================================================


class FieldAvailabilityRuleCreate(BaseModel):
    field_id: int
    days_of_week_mask: int = Field(ge=1, le=127)
    start_time_local: str
    end_time_local: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    enabled: bool = True

    @field_validator("start_time_local", "end_time_local")
    @classmethod
    def validate_hhmm(cls, v):
        try:
            parse_hhmm(v)
        except ValidationError as e:
            raise ValueError(e.message)
        return v

    @model_validator(mode="after")
    def validate_ranges(self):
        if parse_hhmm(self.end_time_local) <= parse_hhmm(self.start_time_local):
            raise ValueError("end_time_local must be after start_time_local")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class FieldAvailabilityRuleResponse(BaseModel):
    id: int
    season_id: int
    field_id: int
    days_of_week_mask: int
    start_time_local: str
    end_time_local: str
    start_date: Optional[date]
    end_date: Optional[date]
    enabled: bool

    class Config:
        from_attributes = True


@router.get(_BASE + "/field-availability-rules", response_model=List[FieldAvailabilityRuleResponse])
def list_field_availability_rules(account_id: int, season_id: int, session: Session = Depends(get_session)):
    _require_season(session, account_id, season_id)
    return session.exec(
        select(FieldAvailabilityRule)
        .where(FieldAvailabilityRule.season_id == season_id)
        .order_by(FieldAvailabilityRule.field_id, FieldAvailabilityRule.id)
    ).all()


@router.post(_BASE + "/field-availability-rules", response_model=FieldAvailabilityRuleResponse)
def create_field_availability_rule(
    account_id: int, season_id: int, rule_data: FieldAvailabilityRuleCreate, session: Session = Depends(get_session)
):
    """Add a weekly availability window for a field"""
    _require_season(session, account_id, season_id)
    _require_field(session, account_id, rule_data.field_id)

    rule = FieldAvailabilityRule(account_id=account_id, season_id=season_id, **rule_data.model_dump())
    session.add(rule)
    session.commit()
    session.refresh(rule)
    return rule


@router.delete(_BASE + "/field-availability-rules/{rule_id}")
def delete_field_availability_rule(
    account_id: int, season_id: int, rule_id: int, session: Session = Depends(get_session)
):
    _require_season(session, account_id, season_id)
    rule = session.get(FieldAvailabilityRule, rule_id)
    if not rule or rule.season_id != season_id:
        raise _to_http(NotFoundError("Field availability rule not found"))
    session.delete(rule)
    session.commit()
    return {"message": "Field availability rule deleted successfully"}


# ============================================================================
# Field exclusion dates
# ============================================================================


class FieldExclusionDateCreate(BaseModel):
    field_id: int
    exclusion_date: date
    note: Optional[str] = Field(default=None, max_length=255)
    enabled: bool = True


class FieldExclusionDateResponse(BaseModel):
    id: int
    season_id: int
    field_id: int
    exclusion_date: date
    note: Optional[str]
    enabled: bool

    class Config:
        from_attributes = True


@router.get(_BASE + "/field-exclusion-dates", response_model=List[FieldExclusionDateResponse])
def list_field_exclusion_dates(account_id: int, season_id: int, session: Session = Depends(get_session)):
    _require_season(session, account_id, season_id)
    return session.exec(
        select(FieldExclusionDate)
        .where(FieldExclusionDate.season_id == season_id)
        .order_by(FieldExclusionDate.exclusion_date, FieldExclusionDate.field_id)
    ).all()


@router.post(_BASE + "/field-exclusion-dates", response_model=FieldExclusionDateResponse)
def create_field_exclusion_date(
    account_id: int, season_id: int, data: FieldExclusionDateCreate, session: Session = Depends(get_session)
):
    """Mark a field unusable for one date"""
    _require_season(session, account_id, season_id)
    _require_field(session, account_id, data.field_id)

    exclusion = FieldExclusionDate(account_id=account_id, season_id=season_id, **data.model_dump())
    session.add(exclusion)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise _to_http(
            ConflictError(f"Field {data.field_id} is already excluded on {data.exclusion_date.isoformat()}")
        )
    session.refresh(exclusion)
    return exclusion


@router.delete(_BASE + "/field-exclusion-dates/{exclusion_id}")
def delete_field_exclusion_date(
    account_id: int, season_id: int, exclusion_id: int, session: Session = Depends(get_session)
):
    _require_season(session, account_id, season_id)
    exclusion = session.get(FieldExclusionDate, exclusion_id)
    if not exclusion or exclusion.season_id != season_id:
        raise _to_http(NotFoundError("Field exclusion date not found"))
    session.delete(exclusion)
    session.commit()
    return {"message": "Field exclusion date deleted successfully"}


# ============================================================================
# Exclusion windows (season / team / umpire)
# ============================================================================


class ExclusionWindowCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    note: Optional[str] = Field(default=None, max_length=255)
    enabled: bool = True

    @model_validator(mode="after")
    def validate_times(self):
        if to_naive_utc(self.end_time) <= to_naive_utc(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self

    def window_values(self) -> dict:
        return {
            "start_time": to_naive_utc(self.start_time),
            "end_time": to_naive_utc(self.end_time),
            "note": self.note,
            "enabled": self.enabled,
        }


class TeamExclusionCreate(ExclusionWindowCreate):
    team_season_id: int


class UmpireExclusionCreate(ExclusionWindowCreate):
    umpire_id: int


class ExclusionWindowResponse(BaseModel):
    id: int
    season_id: int
    start_time: datetime
    end_time: datetime
    note: Optional[str]
    enabled: bool

    class Config:
        from_attributes = True


class TeamExclusionResponse(ExclusionWindowResponse):
    team_season_id: int


class UmpireExclusionResponse(ExclusionWindowResponse):
    umpire_id: int


def _list_windows(session: Session, model, season_id: int):
    return session.exec(select(model).where(model.season_id == season_id).order_by(model.start_time, model.id)).all()


def _delete_window(session: Session, model, season_id: int, exclusion_id: int, label: str):
    row = session.get(model, exclusion_id)
    if not row or row.season_id != season_id:
        raise _to_http(NotFoundError(f"{label} not found"))
    session.delete(row)
    session.commit()
    return {"message": f"{label} deleted successfully"}


@router.get(_BASE + "/season-exclusions", response_model=List[ExclusionWindowResponse])
def list_season_exclusions(account_id: int, season_id: int, session: Session = Depends(get_session)):
    _require_season(session, account_id, season_id)
    return _list_windows(session, SeasonExclusion, season_id)


@router.post(_BASE + "/season-exclusions", response_model=ExclusionWindowResponse)
def create_season_exclusion(
    account_id: int, season_id: int, data: ExclusionWindowCreate, session: Session = Depends(get_session)
):
    """Block the whole season for a time window (holiday, tournament weekend)"""
    _require_season(session, account_id, season_id)
    exclusion = SeasonExclusion(account_id=account_id, season_id=season_id, **data.window_values())
    session.add(exclusion)
    session.commit()
    session.refresh(exclusion)
    return exclusion


@router.delete(_BASE + "/season-exclusions/{exclusion_id}")
def delete_season_exclusion(account_id: int, season_id: int, exclusion_id: int, session: Session = Depends(get_session)):
    _require_season(session, account_id, season_id)
    return _delete_window(session, SeasonExclusion, season_id, exclusion_id, "Season exclusion")


@router.get(_BASE + "/team-exclusions", response_model=List[TeamExclusionResponse])
def list_team_exclusions(account_id: int, season_id: int, session: Session = Depends(get_session)):
    _require_season(session, account_id, season_id)
    return _list_windows(session, TeamExclusion, season_id)


@router.post(_BASE + "/team-exclusions", response_model=TeamExclusionResponse)
def create_team_exclusion(
    account_id: int, season_id: int, data: TeamExclusionCreate, session: Session = Depends(get_session)
):
    _require_season(session, account_id, season_id)
    team = session.exec(
        select(TeamSeason)
        .join(LeagueSeason, TeamSeason.league_season_id == LeagueSeason.id)
        .where(TeamSeason.id == data.team_season_id, LeagueSeason.season_id == season_id)
    ).first()
    if not team:
        raise _to_http(ValidationError(f"Team season {data.team_season_id} is not in season {season_id}"))

    exclusion = TeamExclusion(
        account_id=account_id, season_id=season_id, team_season_id=data.team_season_id, **data.window_values()
    )
    session.add(exclusion)
    session.commit()
    session.refresh(exclusion)
    return exclusion


@router.delete(_BASE + "/team-exclusions/{exclusion_id}")
def delete_team_exclusion(account_id: int, season_id: int, exclusion_id: int, session: Session = Depends(get_session)):
    _require_season(session, account_id, season_id)
    return _delete_window(session, TeamExclusion, season_id, exclusion_id, "Team exclusion")


@router.get(_BASE + "/umpire-exclusions", response_model=List[UmpireExclusionResponse])
def list_umpire_exclusions(account_id: int, season_id: int, session: Session = Depends(get_session)):
    _require_season(session, account_id, season_id)
    return _list_windows(session, UmpireExclusion, season_id)


@router.post(_BASE + "/umpire-exclusions", response_model=UmpireExclusionResponse)
def create_umpire_exclusion(
    account_id: int, season_id: int, data: UmpireExclusionCreate, session: Session = Depends(get_session)
):
    _require_season(session, account_id, season_id)
    umpire = session.get(Umpire, data.umpire_id)
    if not umpire or umpire.account_id != account_id:
        raise _to_http(ValidationError(f"Umpire {data.umpire_id} does not belong to account {account_id}"))

    exclusion = UmpireExclusion(
        account_id=account_id, season_id=season_id, umpire_id=data.umpire_id, **data.window_values()
    )
    session.add(exclusion)
    session.commit()
    session.refresh(exclusion)
    return exclusion


@router.delete(_BASE + "/umpire-exclusions/{exclusion_id}")
def delete_umpire_exclusion(
    account_id: int, season_id: int, exclusion_id: int, session: Session = Depends(get_session)
):
    _require_season(session, account_id, season_id)
    return _delete_window(session, UmpireExclusion, season_id, exclusion_id, "Umpire exclusion")
