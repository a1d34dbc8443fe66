import logging
from datetime import datetime
from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from app.config import MAX_UMPIRES_PER_GAME
from app.database import get_session
from app.repositories.sql import (
    SqlApplyUnitOfWork,
    SqlSchedulerDataRepository,
    SqlSchedulerRulesRepository,
    SqlSeasonLookup,
)
from app.services.apply_service import ApplyRequest, ApplyService
from app.services.problem_spec_builder import ProblemSpecBuilder, SolveFilters
from app.services.scheduler_engine import SchedulerEngine
from app.services.scheduler_types import (
    OBJECTIVE_MAXIMIZE_SCHEDULED,
    VALID_OBJECTIVES,
    Assignment,
    HardConstraints,
    RequireLightsAfter,
    SoftConstraints,
)
from app.utils.errors import SchedulerError
from app.utils.time_utils import to_utc

logger = logging.getLogger(__name__)

router = APIRouter()

# Ids are opaque; JSON clients may send numbers or strings
OpaqueId = Union[int, str]


def _ids(values: Optional[List[OpaqueId]]):
    return None if values is None else tuple(str(v) for v in values)


# ============================================================================
# Request models
# ============================================================================


class RequireLightsAfterModel(BaseModel):
    enabled: bool = True
    start_hour_local: int = Field(ge=0, le=23)


class HardConstraintsModel(BaseModel):
    respect_field_availability: bool = True
    respect_season_exclusions: bool = True
    respect_team_exclusions: bool = True
    respect_umpire_exclusions: bool = True
    no_field_overlap: bool = True
    no_team_overlap: bool = True
    no_umpire_overlap: bool = True
    max_games_per_team_per_day: Optional[int] = Field(default=None, ge=1)
    max_games_per_umpire_per_day: Optional[int] = Field(default=None, ge=1)
    require_lights_after: Optional[RequireLightsAfterModel] = None

    def to_domain(self) -> HardConstraints:
        lights = None
        if self.require_lights_after is not None:
            lights = RequireLightsAfter(
                enabled=self.require_lights_after.enabled,
                start_hour_local=self.require_lights_after.start_hour_local,
            )
        return HardConstraints(
            respect_field_availability=self.respect_field_availability,
            respect_season_exclusions=self.respect_season_exclusions,
            respect_team_exclusions=self.respect_team_exclusions,
            respect_umpire_exclusions=self.respect_umpire_exclusions,
            no_field_overlap=self.no_field_overlap,
            no_team_overlap=self.no_team_overlap,
            no_umpire_overlap=self.no_umpire_overlap,
            max_games_per_team_per_day=self.max_games_per_team_per_day,
            max_games_per_umpire_per_day=self.max_games_per_umpire_per_day,
            require_lights_after=lights,
        )


class ObjectivesModel(BaseModel):
    primary: str = OBJECTIVE_MAXIMIZE_SCHEDULED
    avoid_back_to_back_minutes: Optional[int] = Field(default=None, ge=0)
    avoid_back_to_back_weight: int = Field(default=1, ge=0)
    spread_games_across_days: bool = False
    spread_games_weight: int = Field(default=1, ge=0)
    balance_umpire_load: bool = False
    balance_umpire_weight: int = Field(default=1, ge=0)

    @field_validator("primary")
    @classmethod
    def validate_primary(cls, v):
        if v not in VALID_OBJECTIVES:
            raise ValueError(f"primary must be one of {sorted(VALID_OBJECTIVES)}")
        return v

    def to_domain(self) -> SoftConstraints:
        return SoftConstraints(
            avoid_back_to_back_minutes=self.avoid_back_to_back_minutes,
            avoid_back_to_back_weight=self.avoid_back_to_back_weight,
            spread_games_across_days=self.spread_games_across_days,
            spread_games_weight=self.spread_games_weight,
            balance_umpire_load=self.balance_umpire_load,
            balance_umpire_weight=self.balance_umpire_weight,
        )


class SolveRequest(BaseModel):
    season_id: OpaqueId
    game_ids: Optional[List[OpaqueId]] = None
    league_season_ids: Optional[List[OpaqueId]] = None
    umpires_per_game: Optional[int] = Field(default=None, ge=0, le=MAX_UMPIRES_PER_GAME)
    constraints: Optional[HardConstraintsModel] = None
    objectives: Optional[ObjectivesModel] = None
    run_id: Optional[str] = Field(default=None, max_length=128)

    @field_validator("game_ids")
    @classmethod
    def validate_game_ids(cls, v):
        if v is not None and len(v) == 0:
            raise ValueError("game_ids must not be empty when provided")
        return v

    def to_filters(self) -> SolveFilters:
        objectives = self.objectives or ObjectivesModel()
        return SolveFilters(
            game_ids=_ids(self.game_ids),
            league_season_ids=_ids(self.league_season_ids),
            umpires_per_game=self.umpires_per_game,
            constraints=self.constraints.to_domain() if self.constraints else None,
            soft_constraints=objectives.to_domain(),
            objective=objectives.primary,
            run_id=self.run_id,
        )


class AssignmentModel(BaseModel):
    game_id: OpaqueId
    field_id: OpaqueId
    start_time: datetime
    end_time: datetime
    umpire_ids: List[OpaqueId] = []

    @model_validator(mode="after")
    def validate_times(self):
        if to_utc(self.end_time) <= to_utc(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self

    def to_domain(self) -> Assignment:
        return Assignment(
            game_id=str(self.game_id),
            field_id=str(self.field_id),
            start_time=to_utc(self.start_time),
            end_time=to_utc(self.end_time),
            umpire_ids=tuple(str(u) for u in self.umpire_ids),
        )


class ApplyRequestModel(BaseModel):
    season_id: OpaqueId
    run_id: str = Field(min_length=1, max_length=128)
    mode: Literal["full_replace", "incremental"]
    assignments: List[AssignmentModel] = []
    game_ids: Optional[List[OpaqueId]] = None
    umpires_per_game: Optional[int] = Field(default=None, ge=0, le=MAX_UMPIRES_PER_GAME)
    constraints: Optional[HardConstraintsModel] = None
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=128)

    @model_validator(mode="after")
    def validate_scope(self):
        if self.mode == "full_replace" and not self.game_ids:
            raise ValueError("game_ids is required for full_replace")
        return self

    def to_domain(self, idempotency_key: Optional[str]) -> ApplyRequest:
        return ApplyRequest(
            season_id=str(self.season_id),
            run_id=self.run_id,
            mode=self.mode,
            assignments=tuple(a.to_domain() for a in self.assignments),
            game_ids=_ids(self.game_ids),
            umpires_per_game=self.umpires_per_game,
            constraints=self.constraints.to_domain() if self.constraints else None,
            idempotency_key=self.idempotency_key or idempotency_key,
        )


# ============================================================================
# Wiring
# ============================================================================


def build_problem_spec_builder(session: Session) -> ProblemSpecBuilder:
    return ProblemSpecBuilder(
        lookup=SqlSeasonLookup(session),
        data=SqlSchedulerDataRepository(session),
        rules=SqlSchedulerRulesRepository(session),
    )


def _to_http(e: SchedulerError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/accounts/{account_id}/scheduler/solve")
def solve_schedule(
    account_id: int,
    request: SolveRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    x_idempotency_key: Optional[str] = Header(default=None, alias="X-Idempotency-Key"),
    session: Session = Depends(get_session),
):
    """
    Compute a schedule proposal for a season. Read-only.

    Unplaceable games are listed in the result (status partial/infeasible);
    that is still a 200.
    """
    key = idempotency_key or x_idempotency_key
    try:
        spec = build_problem_spec_builder(session).build(str(account_id), str(request.season_id), request.to_filters())
        result = SchedulerEngine().solve(spec, idempotency_key=key)
    except SchedulerError as e:
        logger.info("SOLVE_REJECTED: account_id=%s code=%s message=%s", account_id, e.code, e.message)
        raise _to_http(e)
    return result.to_dict()


@router.post("/accounts/{account_id}/scheduler/apply")
def apply_schedule(
    account_id: int,
    request: ApplyRequestModel,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    x_idempotency_key: Optional[str] = Header(default=None, alias="X-Idempotency-Key"),
    session: Session = Depends(get_session),
):
    """
    Commit a proposal. Replays the stored result for a key already applied.

    409 when the proposal no longer satisfies hard constraints (detail lists
    each violation) or the key was used for a different request.
    """
    service = ApplyService(build_problem_spec_builder(session), SqlApplyUnitOfWork(session))
    try:
        result = service.apply_proposal(
            str(account_id), request.to_domain(idempotency_key or x_idempotency_key)
        )
    except SchedulerError as e:
        logger.info("APPLY_REJECTED: account_id=%s code=%s message=%s", account_id, e.code, e.message)
        raise _to_http(e)
    except OperationalError:
        logger.exception("APPLY_UNAVAILABLE: account_id=%s run_id=%s", account_id, request.run_id)
        raise HTTPException(
            status_code=503,
            detail={"code": "UNAVAILABLE", "message": "Schedule store unavailable; retry with the same key"},
        )
    return result.to_dict()


@router.get("/accounts/{account_id}/seasons/{season_id}/scheduler/problem-spec")
def get_problem_spec(account_id: int, season_id: int, session: Session = Depends(get_session)):
    """Snapshot of what a solve over all scheduled games would see"""
    try:
        spec = build_problem_spec_builder(session).preview(str(account_id), str(season_id))
    except SchedulerError as e:
        raise _to_http(e)
    return spec.to_dict()
