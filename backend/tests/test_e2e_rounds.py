"""End-to-end round flow with short timers: join, vote, tally, history."""

import time

from fastapi.testclient import TestClient

from ecogame.dilemmas import DILEMMA_LIBRARY
from ecogame.main import app


def _wait_for_history(client: TestClient, timeout_s: float = 5.0) -> list[dict]:
    deadline = time.time() + timeout_s
    history: list[dict] = []
    while time.time() < deadline:
        history = client.get("/api/v1/history").json()
        if history:
            break
        time.sleep(0.05)
    return history


def test_round_tallies_into_ecosystem_and_history(fast_rounds):
    with TestClient(app) as client:
        for participant_id in ("p1", "p2"):
            assert client.post("/api/v1/players", json={"participant_id": participant_id}).status_code == 200

        current = client.get("/api/v1/rounds/current").json()["round"]
        assert current is not None
        assert current["sequence"] == 1
        assert current["duration_ms"] == 600

        for participant_id in ("p1", "p2"):
            chosen = client.post(
                "/api/v1/rounds/current/choices",
                json={"participant_id": participant_id, "option": "A"},
            )
            assert chosen.status_code == 200

        history = _wait_for_history(client)
        assert len(history) >= 1
        first = history[0]
        assert first["round_id"] == current["round_id"]
        assert first["votes"] == {"A": 2, "B": 0}
        assert first["participants"] == 2
        assert first["dilemma_id"] == DILEMMA_LIBRARY[0].id
        assert first["delta"] == dict(DILEMMA_LIBRARY[0].option_a.impact)
        assert first["metrics"] == {"eco": 9, "pollution": 5, "inclusivity": 8, "transparency": 5, "innovation": 10}
        assert first["status"] == "Stable"

        state = client.get("/api/v1/state").json()
        assert state["ecosystem"]["metrics"]["innovation"] >= 10
        assert state["round"]["sequence"] >= 2
