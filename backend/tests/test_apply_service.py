"""
Apply service

- full_replace: scope games are rewritten or cleared; games outside scope untouched
- incremental: only proposed games are written
- Stale proposals raise ConflictError and write nothing
- Idempotency: same key replays, different request under same key conflicts,
  a lost race replays the winner
"""

from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from app.models.game import Game
from app.models.scheduler_apply_run import SchedulerApplyRun
from app.repositories.sql import SqlApplyUnitOfWork, SqlIdempotencyLedger
from app.routes.scheduler import build_problem_spec_builder
from app.services.apply_service import (
    APPLY_MODE_FULL_REPLACE,
    APPLY_MODE_INCREMENTAL,
    ApplyRequest,
    ApplyResult,
    ApplyService,
)
from app.services.scheduler_types import Assignment, LedgerEntry
from app.utils.constraints import CONFLICT_FIELD_OVERLAP, CONFLICT_UMPIRE_COUNT
from app.utils.errors import ConflictError, ValidationError
from app.utils.season_locks import SeasonLockRegistry
from tests.spec_helpers import utc

MON_18 = utc(2026, 4, 6, 23, 0)
WED_18 = utc(2026, 4, 8, 23, 0)
FRI_18 = utc(2026, 4, 10, 23, 0)


def make_service(session: Session, unit_of_work=None):
    return ApplyService(
        build_problem_spec_builder(session),
        unit_of_work or SqlApplyUnitOfWork(session),
        locks=SeasonLockRegistry(),
    )


def place(session: Session, game_id: int, field_id: int, start: datetime, umpire_id=None):
    game = session.get(Game, game_id)
    game.field_id = field_id
    game.game_date = start.replace(tzinfo=None)
    game.umpire1 = umpire_id
    session.add(game)
    session.commit()


def assignment(season_data, game_key, start, umpire_key="u1", field_key="f1"):
    return Assignment(
        game_id=str(season_data[game_key]),
        field_id=str(season_data[field_key]),
        start_time=start,
        end_time=start + timedelta(minutes=60),
        umpire_ids=(str(season_data[umpire_key]),),
    )


def request(season_data, assignments, mode=APPLY_MODE_INCREMENTAL, game_ids=None, run_id="run-1", key=None):
    return ApplyRequest(
        season_id=str(season_data["season_id"]),
        run_id=run_id,
        mode=mode,
        assignments=tuple(assignments),
        game_ids=tuple(str(season_data[k]) for k in game_ids) if game_ids else None,
        idempotency_key=key,
    )


def test_full_replace_updates_creates_and_leaves_out_of_scope_untouched(session: Session, season_data):
    place(session, season_data["g1"], season_data["f1"], MON_18, season_data["u1"])
    place(session, season_data["g3"], season_data["f2"], MON_18, season_data["u2"])

    result = make_service(session).apply_proposal(
        str(season_data["account_id"]),
        request(
            season_data,
            [assignment(season_data, "g1", WED_18), assignment(season_data, "g2", FRI_18, "u2")],
            mode=APPLY_MODE_FULL_REPLACE,
            game_ids=["g1", "g2"],
        ),
    )

    assert result.updated_game_ids == [str(season_data["g1"])]
    assert result.created_game_ids == [str(season_data["g2"])]
    assert result.cleared_game_ids == []
    assert not result.replayed

    g1 = session.get(Game, season_data["g1"])
    g2 = session.get(Game, season_data["g2"])
    g3 = session.get(Game, season_data["g3"])
    assert g1.game_date == datetime(2026, 4, 8, 23, 0)
    assert g1.field_id == season_data["f1"]
    assert g2.game_date == datetime(2026, 4, 10, 23, 0)
    assert g2.umpire1 == season_data["u2"]
    assert g3.field_id == season_data["f2"]
    assert g3.game_date == datetime(2026, 4, 6, 23, 0)
    assert g3.umpire1 == season_data["u2"]


def test_full_replace_clears_scope_games_without_proposal(session: Session, season_data):
    place(session, season_data["g2"], season_data["f1"], FRI_18, season_data["u2"])

    result = make_service(session).apply_proposal(
        str(season_data["account_id"]),
        request(
            season_data,
            [assignment(season_data, "g1", MON_18)],
            mode=APPLY_MODE_FULL_REPLACE,
            game_ids=["g1", "g2"],
        ),
    )

    assert result.cleared_game_ids == [str(season_data["g2"])]
    g2 = session.get(Game, season_data["g2"])
    assert g2.field_id is None
    assert g2.umpire1 is None
    assert g2.game_date == datetime(2026, 4, 10, 23, 0)


def test_incremental_touches_only_proposed_games(session: Session, season_data):
    place(session, season_data["g2"], season_data["f1"], FRI_18, season_data["u2"])

    result = make_service(session).apply_proposal(
        str(season_data["account_id"]),
        request(season_data, [assignment(season_data, "g1", MON_18)]),
    )

    assert result.created_game_ids == [str(season_data["g1"])]
    g2 = session.get(Game, season_data["g2"])
    assert g2.field_id == season_data["f1"]
    assert g2.game_date == datetime(2026, 4, 10, 23, 0)


def test_unchanged_placement_is_reported(session: Session, season_data):
    place(session, season_data["g1"], season_data["f1"], MON_18, season_data["u1"])

    result = make_service(session).apply_proposal(
        str(season_data["account_id"]),
        request(season_data, [assignment(season_data, "g1", MON_18)]),
    )

    assert result.unchanged_game_ids == [str(season_data["g1"])]
    assert result.updated_game_ids == []


def test_stale_proposal_conflicts_and_writes_nothing(session: Session, season_data):
    # g2 took the Monday 18:00 slot after the proposal was computed
    place(session, season_data["g2"], season_data["f1"], MON_18, season_data["u2"])

    with pytest.raises(ConflictError) as exc_info:
        make_service(session).apply_proposal(
            str(season_data["account_id"]),
            request(
                season_data,
                [assignment(season_data, "g1", MON_18), assignment(season_data, "g3", WED_18, "u2")],
            ),
        )

    violations = exc_info.value.violations
    assert [v["code"] for v in violations] == [CONFLICT_FIELD_OVERLAP]
    assert violations[0]["game_id"] == str(season_data["g1"])

    session.expire_all()
    assert session.get(Game, season_data["g1"]).field_id is None
    assert session.get(Game, season_data["g3"]).field_id is None
    assert session.exec(select(SchedulerApplyRun)).all() == []


def test_wrong_umpire_count_conflicts(session: Session, season_data):
    proposal = Assignment(
        game_id=str(season_data["g1"]),
        field_id=str(season_data["f1"]),
        start_time=MON_18,
        end_time=utc(2026, 4, 7, 0, 0),
        umpire_ids=(str(season_data["u1"]), str(season_data["u2"])),
    )
    with pytest.raises(ConflictError) as exc_info:
        make_service(session).apply_proposal(str(season_data["account_id"]), request(season_data, [proposal]))
    assert CONFLICT_UMPIRE_COUNT in {v["code"] for v in exc_info.value.violations}


def test_same_key_replays_stored_result(session: Session, season_data):
    service = make_service(session)
    apply_request = request(season_data, [assignment(season_data, "g1", MON_18)], key="key-abc")

    first = service.apply_proposal(str(season_data["account_id"]), apply_request)
    second = service.apply_proposal(str(season_data["account_id"]), apply_request)

    assert second.replayed
    assert second.to_dict() == first.to_dict()
    assert len(session.exec(select(SchedulerApplyRun)).all()) == 1


def test_same_key_different_request_conflicts(session: Session, season_data):
    service = make_service(session)
    service.apply_proposal(
        str(season_data["account_id"]),
        request(season_data, [assignment(season_data, "g1", MON_18)], key="key-abc"),
    )

    with pytest.raises(ConflictError):
        service.apply_proposal(
            str(season_data["account_id"]),
            request(season_data, [assignment(season_data, "g1", WED_18)], key="key-abc"),
        )


def test_run_id_is_the_default_key(session: Session, season_data):
    result = make_service(session).apply_proposal(
        str(season_data["account_id"]),
        request(season_data, [assignment(season_data, "g1", MON_18)], run_id="sched_account_1_abc"),
    )
    assert result.idempotency_key == "sched_account_1_abc"
    row = session.exec(select(SchedulerApplyRun)).one()
    assert row.run_id == "sched_account_1_abc"


def test_keys_are_scoped_per_account(session: Session, season_data, other_season_data):
    service = make_service(session)
    first = service.apply_proposal(
        str(season_data["account_id"]),
        request(season_data, [assignment(season_data, "g1", MON_18)], key="retry-1"),
    )

    second = service.apply_proposal(
        str(other_season_data["account_id"]),
        request(other_season_data, [assignment(other_season_data, "g1", MON_18)], key="retry-1"),
    )

    assert not second.replayed
    assert second.created_game_ids == [str(other_season_data["g1"])]
    assert first.created_game_ids == [str(season_data["g1"])]
    assert session.get(Game, other_season_data["g1"]).field_id == other_season_data["f1"]
    assert len(session.exec(select(SchedulerApplyRun)).all()) == 2


class _RacingLedger(SqlIdempotencyLedger):
    """Reports the key as free until record() loses to the pre-existing winner row."""

    def __init__(self, session: Session, blind_gets: int):
        super().__init__(session)
        self.blind_gets = blind_gets

    def get(self, account_id: str, idempotency_key: str):
        if self.blind_gets > 0:
            self.blind_gets -= 1
            return None
        return super().get(account_id, idempotency_key)


def test_lost_race_replays_winner(session: Session, season_data):
    apply_request = request(season_data, [assignment(season_data, "g1", MON_18)], key="race-key")
    winner = ApplyResult(
        run_id="run-1",
        idempotency_key="race-key",
        mode=APPLY_MODE_INCREMENTAL,
        status="applied",
        created_game_ids=[str(season_data["g1"])],
        applied_at="2026-04-01T12:00:00Z",
    )
    SqlIdempotencyLedger(session).record(
        LedgerEntry(
            idempotency_key="race-key",
            account_id=str(season_data["account_id"]),
            season_id=str(season_data["season_id"]),
            run_id="run-1",
            mode=APPLY_MODE_INCREMENTAL,
            request_fingerprint=apply_request.fingerprint(),
            status="applied",
            result=winner.to_dict(),
        )
    )
    session.commit()

    unit_of_work = SqlApplyUnitOfWork(session)
    unit_of_work.ledger = _RacingLedger(session, blind_gets=2)

    result = make_service(session, unit_of_work).apply_proposal(str(season_data["account_id"]), apply_request)

    assert result.replayed
    assert result.applied_at == "2026-04-01T12:00:00Z"
    # the loser's placement write was rolled back
    session.expire_all()
    assert session.get(Game, season_data["g1"]).field_id is None


@pytest.mark.parametrize(
    "build_request, message",
    [
        (lambda d: request(d, []), "at least one assignment"),
        (
            lambda d: request(d, [assignment(d, "g3", MON_18)], mode=APPLY_MODE_FULL_REPLACE, game_ids=["g1"]),
            "outside game_ids scope",
        ),
        (lambda d: request(d, [assignment(d, "g1", MON_18), assignment(d, "g1", WED_18)]), "Duplicate"),
        (lambda d: request(d, [assignment(d, "g1", MON_18)], mode="merge"), "Unknown apply mode"),
    ],
)
def test_malformed_requests_rejected(session: Session, season_data, build_request, message):
    with pytest.raises(ValidationError) as exc_info:
        make_service(session).apply_proposal(str(season_data["account_id"]), build_request(season_data))
    assert message in exc_info.value.message
