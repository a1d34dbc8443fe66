import hashlib
from datetime import datetime

from fastapi.testclient import TestClient
from sqlmodel import Session

from app.models.game import Game


def solve_url(season_data):
    return f"/api/accounts/{season_data['account_id']}/scheduler/solve"


def apply_url(season_data):
    return f"/api/accounts/{season_data['account_id']}/scheduler/apply"


def test_solve_returns_proposal(client: TestClient, season_data):
    response = client.post(solve_url(season_data), json={"season_id": season_data["season_id"]})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["metrics"]["total_games"] == 3
    assert data["metrics"]["scheduled_games"] == 3
    assert data["unassigned_game_ids"] == []
    by_game = {a["game_id"]: a for a in data["assignments"]}
    g1 = by_game[str(season_data["g1"])]
    assert g1["field_id"] == str(season_data["f1"])
    assert g1["start_time"] == "2026-04-06T23:00:00Z"
    assert g1["date"] == "2026-04-06"
    assert len(g1["umpire_ids"]) == 1
    assert data["run_id"].startswith(f"sched_account_{season_data['account_id']}_")


def test_solve_does_not_write(client: TestClient, session: Session, season_data):
    response = client.post(solve_url(season_data), json={"season_id": season_data["season_id"]})
    assert response.status_code == 200

    session.expire_all()
    assert session.get(Game, season_data["g1"]).field_id is None


def test_solve_run_id_from_idempotency_header(client: TestClient, season_data):
    response = client.post(
        solve_url(season_data),
        json={"season_id": season_data["season_id"]},
        headers={"X-Idempotency-Key": "weekly-run"},
    )

    digest = hashlib.sha256(b"weekly-run").hexdigest()[:16]
    assert response.json()["run_id"] == f"sched_account_{season_data['account_id']}_{digest}"


def test_solve_with_constraints_reports_unscheduled(client: TestClient, season_data):
    response = client.post(
        solve_url(season_data),
        json={
            "season_id": season_data["season_id"],
            "constraints": {"require_lights_after": {"enabled": True, "start_hour_local": 17}},
            "umpires_per_game": 2,
            "objectives": {"primary": "minimize_conflicts", "spread_games_across_days": True},
        },
    )

    assert response.status_code == 200
    data = response.json()
    # both umpires on every game: g1 and g3 share team 1 but can still go on separate days
    assert data["metrics"]["scheduled_games"] == 3
    assert all(len(a["umpire_ids"]) == 2 for a in data["assignments"])


def test_solve_validation_errors(client: TestClient, season_data):
    missing = client.post(solve_url(season_data), json={})
    assert missing.status_code == 400
    assert missing.json()["detail"]["code"] == "VALIDATION_ERROR"

    unknown_game = client.post(solve_url(season_data), json={"season_id": season_data["season_id"], "game_ids": [999]})
    assert unknown_game.status_code == 400
    assert "999" in unknown_game.json()["detail"]["message"]

    bad_objective = client.post(
        solve_url(season_data),
        json={"season_id": season_data["season_id"], "objectives": {"primary": "fastest"}},
    )
    assert bad_objective.status_code == 400


def test_solve_not_found(client: TestClient, season_data):
    response = client.post("/api/accounts/999/scheduler/solve", json={"season_id": season_data["season_id"]})
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"

    response = client.post(solve_url(season_data), json={"season_id": 4242})
    assert response.status_code == 404


def test_solve_then_apply_then_replay(client: TestClient, session: Session, season_data):
    proposal = client.post(solve_url(season_data), json={"season_id": season_data["season_id"]}).json()
    body = {
        "season_id": season_data["season_id"],
        "run_id": proposal["run_id"],
        "mode": "full_replace",
        "game_ids": [season_data["g1"], season_data["g2"], season_data["g3"]],
        "assignments": proposal["assignments"],
    }

    applied = client.post(apply_url(season_data), json=body, headers={"Idempotency-Key": "apply-1"})
    assert applied.status_code == 200
    result = applied.json()
    assert result["status"] == "applied"
    assert result["idempotency_key"] == "apply-1"
    assert sorted(result["created_game_ids"]) == sorted(str(season_data[k]) for k in ("g1", "g2", "g3"))

    session.expire_all()
    g1 = session.get(Game, season_data["g1"])
    assert g1.field_id == season_data["f1"]
    assert g1.game_date == datetime(2026, 4, 6, 23, 0)

    replay = client.post(apply_url(season_data), json=body, headers={"Idempotency-Key": "apply-1"})
    assert replay.status_code == 200
    assert replay.json() == result


def test_apply_stale_proposal_conflict(client: TestClient, session: Session, season_data):
    proposal = client.post(solve_url(season_data), json={"season_id": season_data["season_id"]}).json()
    g1 = next(a for a in proposal["assignments"] if a["game_id"] == str(season_data["g1"]))

    # g2 takes g1's proposed slot before the apply arrives
    g2 = session.get(Game, season_data["g2"])
    g2.field_id = season_data["f1"]
    g2.game_date = datetime(2026, 4, 6, 23, 0)
    g2.umpire1 = season_data["u2"]
    session.add(g2)
    session.commit()

    response = client.post(
        apply_url(season_data),
        json={
            "season_id": season_data["season_id"],
            "run_id": proposal["run_id"],
            "mode": "incremental",
            "assignments": [g1],
        },
    )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "CONFLICT"
    assert detail["violations"][0]["code"] == "FIELD_OVERLAP"
    session.expire_all()
    assert session.get(Game, season_data["g1"]).field_id is None


def test_apply_request_validation(client: TestClient, season_data):
    response = client.post(
        apply_url(season_data),
        json={"season_id": season_data["season_id"], "run_id": "run-1", "mode": "full_replace", "assignments": []},
    )
    assert response.status_code == 400

    response = client.post(
        apply_url(season_data),
        json={"season_id": season_data["season_id"], "run_id": "run-1", "mode": "merge", "assignments": []},
    )
    assert response.status_code == 400


def test_get_problem_spec(client: TestClient, season_data):
    response = client.get(
        f"/api/accounts/{season_data['account_id']}/seasons/{season_data['season_id']}/scheduler/problem-spec"
    )

    assert response.status_code == 200
    spec = response.json()
    assert spec["time_zone"] == "America/Chicago"
    assert len(spec["games"]) == 3
    assert len(spec["field_slots"]) == 12
    assert spec["season"]["start_date"] == "2026-04-06"


def test_health(client: TestClient):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
