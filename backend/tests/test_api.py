"""Core frontend-exposed game API flow tests."""

from fastapi.testclient import TestClient

from ecogame.dilemmas import DILEMMA_LIBRARY
from ecogame.main import app


def test_initial_state_uses_default_world():
    with TestClient(app) as client:
        body = client.get("/api/v1/state").json()
        assert body["type"] == "snapshot"
        assert body["ecosystem"]["metrics"] == {
            "eco": 10,
            "pollution": 5,
            "inclusivity": 10,
            "transparency": 8,
            "innovation": 6,
        }
        assert body["ecosystem"]["health_percent"] == 56
        assert body["ecosystem"]["status"] == "Stable"
        assert body["round"] is None
        assert body["participants"] == []
        assert body["progress"] == {"submitted": 0, "total": 0, "ratio": 0.0}


def test_dilemma_catalog_endpoints():
    with TestClient(app) as client:
        listed = client.get("/api/v1/dilemmas")
        assert listed.status_code == 200
        assert len(listed.json()) == len(DILEMMA_LIBRARY)

        one = client.get("/api/v1/dilemmas/1")
        assert one.status_code == 200
        assert one.json()["id"] == DILEMMA_LIBRARY[1].id
        assert one.json()["category_info"]["name"] == "Social"

        missing = client.get(f"/api/v1/dilemmas/{len(DILEMMA_LIBRARY)}")
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "invalid_dilemma_index"


def test_join_vote_and_leave_flow():
    with TestClient(app) as client:
        alice = client.post("/api/v1/players", json={"participant_id": "alice", "name": "Alice", "color": "#112233"})
        assert alice.status_code == 200
        assert alice.json()["participant"]["name"] == "Alice"
        assert client.get("/api/v1/rounds/current").json()["round"] is None

        bob = client.post("/api/v1/players", json={"participant_id": "bob"})
        assert bob.status_code == 200

        current = client.get("/api/v1/rounds/current").json()["round"]
        assert current is not None
        assert current["active"] is True
        assert current["sequence"] == 1
        assert current["dilemma"]["id"] == DILEMMA_LIBRARY[0].id
        assert 0 < current["time_left_ms"] <= current["duration_ms"]

        chosen = client.post("/api/v1/rounds/current/choices", json={"participant_id": "alice", "option": "A"})
        assert chosen.status_code == 200
        assert chosen.json()["choice"]["impact"] == dict(DILEMMA_LIBRARY[0].option_a.impact)

        repeat = client.post("/api/v1/rounds/current/choices", json={"participant_id": "alice", "option": "B"})
        assert repeat.status_code == 409
        assert repeat.json()["detail"]["code"] == "already_submitted"

        ghost = client.post("/api/v1/rounds/current/choices", json={"participant_id": "ghost", "option": "A"})
        assert ghost.status_code == 404

        state = client.get("/api/v1/state").json()
        assert state["progress"]["submitted"] == 1
        assert state["progress"]["total"] == 2
        assert [p["id"] for p in state["participants"]] == ["alice", "bob"]

        renamed = client.patch("/api/v1/players/bob", json={"name": "Robert"})
        assert renamed.status_code == 200
        assert renamed.json()["participant"]["name"] == "Robert"

        assert client.post("/api/v1/players/bob/heartbeat").status_code == 200
        assert client.post("/api/v1/players/nobody/heartbeat").status_code == 404

        assert client.delete("/api/v1/players/bob").status_code == 200
        assert client.delete("/api/v1/players/bob").status_code == 404


def test_request_validation():
    with TestClient(app) as client:
        assert client.post("/api/v1/players", json={"participant_id": "has space"}).status_code == 422
        assert client.post("/api/v1/players", json={"color": "red"}).status_code == 422
        assert client.post("/api/v1/players", json={"unexpected": 1}).status_code == 422
        bad_option = client.post("/api/v1/rounds/current/choices", json={"participant_id": "a", "option": "C"})
        assert bad_option.status_code == 422


def test_choice_without_round_is_conflict():
    with TestClient(app) as client:
        client.post("/api/v1/players", json={"participant_id": "solo"})
        closed = client.post("/api/v1/rounds/current/choices", json={"participant_id": "solo", "option": "A"})
        assert closed.status_code == 409
        assert closed.json()["detail"]["code"] == "round_closed"


def test_history_starts_empty():
    with TestClient(app) as client:
        history = client.get("/api/v1/history?limit=5")
        assert history.status_code == 200
        assert history.json() == []
