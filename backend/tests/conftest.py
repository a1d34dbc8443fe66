from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.database import get_session
from app.main import app
from app.models.account import Account
from app.models.available_field import AvailableField
from app.models.field_availability_rule import FieldAvailabilityRule
from app.models.game import Game
from app.models.league_season import LeagueSeason
from app.models.scheduler_season_config import SchedulerSeasonConfig
from app.models.season import Season
from app.models.team_season import TeamSeason
from app.models.umpire import Umpire

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so ALL sessions share same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models imported (app.models) before create_all()
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables dropped after each test so every test starts empty
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Mon/Wed/Fri
MWF_MASK = 0b0010101


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a fresh schema"""
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    Override is set BEFORE TestClient() and stays in place for the entire
    duration so the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


def _add(session: Session, row):
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def _seed_account(session: Session, name: str):
    account = _add(session, Account(name=name, timezone_id="America/Chicago"))
    season = _add(session, Season(account_id=account.id, name="Spring 2026", is_current=True))
    _add(
        session,
        SchedulerSeasonConfig(
            account_id=account.id,
            season_id=season.id,
            start_date=date(2026, 4, 6),
            end_date=date(2026, 4, 12),
            umpires_per_game=1,
            default_game_minutes=60,
        ),
    )
    league = _add(session, LeagueSeason(season_id=season.id, name="Majors"))
    teams = [_add(session, TeamSeason(league_season_id=league.id, name=f"Team {i}")) for i in range(1, 5)]

    f1 = _add(session, AvailableField(account_id=account.id, name="Field 1", has_lights=True))
    f2 = _add(session, AvailableField(account_id=account.id, name="Field 2", has_lights=False))
    _add(
        session,
        FieldAvailabilityRule(
            account_id=account.id,
            season_id=season.id,
            field_id=f1.id,
            days_of_week_mask=MWF_MASK,
            start_time_local="18:00",
            end_time_local="20:00",
        ),
    )
    u1 = _add(session, Umpire(account_id=account.id, name="Umpire A"))
    u2 = _add(session, Umpire(account_id=account.id, name="Umpire B"))

    pairs = [(0, 1), (2, 3), (0, 2)]
    games = [
        _add(
            session,
            Game(
                league_season_id=league.id,
                home_team_season_id=teams[h].id,
                visitor_team_season_id=teams[v].id,
                duration_minutes=60,
            ),
        )
        for h, v in pairs
    ]

    return {
        "account_id": account.id,
        "season_id": season.id,
        "league_id": league.id,
        "team_ids": [t.id for t in teams],
        "f1": f1.id,
        "f2": f2.id,
        "u1": u1.id,
        "u2": u2.id,
        "g1": games[0].id,
        "g2": games[1].id,
        "g3": games[2].id,
    }


@pytest.fixture
def season_data(session: Session):
    """
    One account (America/Chicago) with:
    - season window Mon 2026-04-06 .. Sun 2026-04-12, 1 umpire per game
    - one league with teams t1..t4
    - field f1 (lights) open Mon/Wed/Fri 18:00-20:00; field f2 (no lights, no rules)
    - umpires u1, u2
    - unplaced 60 minute games g1 (t1-t2), g2 (t3-t4), g3 (t1-t3)

    Returns a dict of integer ids.
    """
    return _seed_account(session, "Riverside Youth Baseball")


@pytest.fixture
def other_season_data(session: Session, season_data):
    """A second account seeded like season_data."""
    return _seed_account(session, "Lakeside Little League")
