import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from app.models.account import Account
from app.models.available_field import AvailableField
from app.models.umpire import Umpire


@pytest.fixture
def base_url(season_data):
    return f"/api/accounts/{season_data['account_id']}/seasons/{season_data['season_id']}/scheduler"


def test_get_and_put_season_config(client: TestClient, base_url):
    current = client.get(f"{base_url}/season-config")
    assert current.status_code == 200
    assert current.json()["start_date"] == "2026-04-06"
    assert current.json()["umpires_per_game"] == 1

    response = client.put(
        f"{base_url}/season-config",
        json={
            "start_date": "2026-04-01",
            "end_date": "2026-06-30",
            "umpires_per_game": 2,
            "max_games_per_umpire_per_day": 3,
            "default_game_minutes": 90,
        },
    )
    assert response.status_code == 200
    assert response.json()["end_date"] == "2026-06-30"

    updated = client.get(f"{base_url}/season-config").json()
    assert updated["umpires_per_game"] == 2
    assert updated["max_games_per_umpire_per_day"] == 3
    assert updated["default_game_minutes"] == 90


def test_put_season_config_rejects_inverted_window(client: TestClient, base_url):
    response = client.put(f"{base_url}/season-config", json={"start_date": "2026-06-30", "end_date": "2026-04-01"})
    assert response.status_code == 400


def test_unknown_season_is_404(client: TestClient, season_data):
    response = client.get(f"/api/accounts/{season_data['account_id']}/seasons/999/scheduler/season-config")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"
    assert "Season 999" in response.json()["detail"]["message"]


def test_league_selections_replace(client: TestClient, base_url, season_data):
    assert client.get(f"{base_url}/league-selections").json() == []

    response = client.put(
        f"{base_url}/league-selections",
        json={"selections": [{"league_season_id": season_data["league_id"], "enabled": False}]},
    )
    assert response.status_code == 200
    assert response.json() == [{"league_season_id": str(season_data["league_id"]), "enabled": False}]

    unknown = client.put(f"{base_url}/league-selections", json={"selections": [{"league_season_id": 777}]})
    assert unknown.status_code == 400

    duplicated = client.put(
        f"{base_url}/league-selections",
        json={"selections": [{"league_season_id": season_data["league_id"]}] * 2},
    )
    assert duplicated.status_code == 400


def test_field_availability_rules_crud(client: TestClient, base_url, season_data):
    created = client.post(
        f"{base_url}/field-availability-rules",
        json={
            "field_id": season_data["f2"],
            "days_of_week_mask": 0b1100000,
            "start_time_local": "09:00",
            "end_time_local": "17:00",
        },
    )
    assert created.status_code == 200
    rule = created.json()
    assert rule["start_time_local"] == "09:00"

    listed = client.get(f"{base_url}/field-availability-rules").json()
    assert {r["field_id"] for r in listed} == {season_data["f1"], season_data["f2"]}

    deleted = client.delete(f"{base_url}/field-availability-rules/{rule['id']}")
    assert deleted.status_code == 200
    assert len(client.get(f"{base_url}/field-availability-rules").json()) == 1

    missing = client.delete(f"{base_url}/field-availability-rules/{rule['id']}")
    assert missing.status_code == 404


@pytest.mark.parametrize(
    "payload",
    [
        {"days_of_week_mask": 1, "start_time_local": "9am", "end_time_local": "17:00"},
        {"days_of_week_mask": 1, "start_time_local": "17:00", "end_time_local": "09:00"},
        {"days_of_week_mask": 0, "start_time_local": "09:00", "end_time_local": "17:00"},
        {"days_of_week_mask": 128, "start_time_local": "09:00", "end_time_local": "17:00"},
    ],
)
def test_field_availability_rule_validation(client: TestClient, base_url, season_data, payload):
    response = client.post(f"{base_url}/field-availability-rules", json={"field_id": season_data["f1"], **payload})
    assert response.status_code == 400


def test_field_from_other_account_rejected(client: TestClient, session: Session, base_url):
    other = Account(name="Other League", timezone_id="America/Denver")
    session.add(other)
    session.commit()
    session.refresh(other)
    foreign = AvailableField(account_id=other.id, name="Foreign Field")
    session.add(foreign)
    session.commit()
    session.refresh(foreign)

    response = client.post(
        f"{base_url}/field-availability-rules",
        json={"field_id": foreign.id, "days_of_week_mask": 1, "start_time_local": "09:00", "end_time_local": "17:00"},
    )
    assert response.status_code == 400


def test_field_exclusion_dates(client: TestClient, base_url, season_data):
    payload = {"field_id": season_data["f1"], "exclusion_date": "2026-04-08", "note": "Reseeding"}
    created = client.post(f"{base_url}/field-exclusion-dates", json=payload)
    assert created.status_code == 200

    duplicate = client.post(f"{base_url}/field-exclusion-dates", json=payload)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "CONFLICT"

    # the solver no longer uses Wednesday on field 1
    spec = client.get(f"{base_url}/problem-spec").json()
    assert len(spec["field_slots"]) == 8

    deleted = client.delete(f"{base_url}/field-exclusion-dates/{created.json()['id']}")
    assert deleted.status_code == 200
    assert client.get(f"{base_url}/field-exclusion-dates").json() == []


def test_season_exclusions(client: TestClient, base_url):
    created = client.post(
        f"{base_url}/season-exclusions",
        json={"start_time": "2026-04-06T23:00:00Z", "end_time": "2026-04-07T01:00:00Z", "note": "Opening day"},
    )
    assert created.status_code == 200
    assert created.json()["start_time"] == "2026-04-06T23:00:00"

    spec = client.get(f"{base_url}/problem-spec").json()
    assert len(spec["season_exclusions"]) == 1
    assert len(spec["field_slots"]) == 8

    inverted = client.post(
        f"{base_url}/season-exclusions",
        json={"start_time": "2026-04-07T01:00:00Z", "end_time": "2026-04-06T23:00:00Z"},
    )
    assert inverted.status_code == 400

    assert client.delete(f"{base_url}/season-exclusions/{created.json()['id']}").status_code == 200
    assert client.get(f"{base_url}/season-exclusions").json() == []


def test_team_exclusions(client: TestClient, base_url, season_data):
    team_id = season_data["team_ids"][0]
    created = client.post(
        f"{base_url}/team-exclusions",
        json={"team_season_id": team_id, "start_time": "2026-04-06T17:00:00-05:00", "end_time": "2026-04-06T21:00:00-05:00"},
    )
    assert created.status_code == 200
    assert created.json()["team_season_id"] == team_id
    # stored as UTC
    assert created.json()["start_time"] == "2026-04-06T22:00:00"

    unknown = client.post(
        f"{base_url}/team-exclusions",
        json={"team_season_id": 9999, "start_time": "2026-04-06T22:00:00Z", "end_time": "2026-04-07T02:00:00Z"},
    )
    assert unknown.status_code == 400
    assert unknown.json()["detail"]["code"] == "VALIDATION_ERROR"
    assert "9999" in unknown.json()["detail"]["message"]

    assert len(client.get(f"{base_url}/team-exclusions").json()) == 1
    assert client.delete(f"{base_url}/team-exclusions/{created.json()['id']}").status_code == 200


def test_umpire_exclusions(client: TestClient, session: Session, base_url, season_data):
    created = client.post(
        f"{base_url}/umpire-exclusions",
        json={"umpire_id": season_data["u1"], "start_time": "2026-04-06T22:00:00Z", "end_time": "2026-04-07T02:00:00Z"},
    )
    assert created.status_code == 200

    other = Account(name="Other League", timezone_id="America/Denver")
    session.add(other)
    session.commit()
    session.refresh(other)
    outsider = Umpire(account_id=other.id, name="Outsider")
    session.add(outsider)
    session.commit()
    session.refresh(outsider)

    rejected = client.post(
        f"{base_url}/umpire-exclusions",
        json={"umpire_id": outsider.id, "start_time": "2026-04-06T22:00:00Z", "end_time": "2026-04-07T02:00:00Z"},
    )
    assert rejected.status_code == 400

    assert client.delete(f"{base_url}/umpire-exclusions/{created.json()['id']}").status_code == 200
    assert client.delete(f"{base_url}/umpire-exclusions/{created.json()['id']}").status_code == 404
