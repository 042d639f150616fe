#!/usr/bin/env python
"""Simulated play-through of several short rounds.

Joins a handful of scripted participants, lets each vote according to a
simple persona every round, and prints the tally history and the final
ecosystem health.
"""

import os
import random
import time
from dataclasses import dataclass

from fastapi.testclient import TestClient

PERSONAS = ("steward", "innovator", "coin-flip")


@dataclass
class PlayerPlan:
    participant_id: str
    persona: str


def _pick_option(persona: str, dilemma: dict, rng: random.Random) -> str:
    if persona == "coin-flip":
        return rng.choice(["A", "B"])
    impact_a = dilemma["option_a"]["impact"]
    impact_b = dilemma["option_b"]["impact"]
    if persona == "innovator":
        return "A" if impact_a.get("innovation", 0) >= impact_b.get("innovation", 0) else "B"
    score_a = impact_a.get("eco", 0) - impact_a.get("pollution", 0) + impact_a.get("inclusivity", 0)
    score_b = impact_b.get("eco", 0) - impact_b.get("pollution", 0) + impact_b.get("inclusivity", 0)
    return "A" if score_a >= score_b else "B"


def _wait_for_round(client: TestClient, after_sequence: int, timeout_s: float) -> dict | None:
    deadline = time.time() + timeout_s
    while time.time() < deadline:
        current = client.get("/api/v1/rounds/current").json()["round"]
        if current and current["active"] and current["sequence"] > after_sequence:
            return current
        time.sleep(0.03)
    return None


def main() -> None:
    # Override from shell: PLAY_ROUNDS=8 PLAY_PLAYERS=6 python scripts/play_rounds.py
    rounds = int(os.getenv("PLAY_ROUNDS", "4"))
    players = int(os.getenv("PLAY_PLAYERS", "4"))
    os.environ.setdefault("ROUND_DURATION_MS", "400")
    os.environ.setdefault("TICK_INTERVAL_MS", "50")
    os.environ.setdefault("DATABASE_URL", "sqlite:///./data/play_rounds.db")
    from ecogame.main import app  # noqa: WPS433

    rng = random.Random(int(os.getenv("PLAY_SEED", "7")))
    plans = [PlayerPlan(f"bot_{idx}", PERSONAS[idx % len(PERSONAS)]) for idx in range(players)]

    with TestClient(app) as client:
        for plan in plans:
            client.post("/api/v1/players", json={"participant_id": plan.participant_id}).raise_for_status()
        print(f"[play] {players} players, {rounds} rounds")

        sequence = 0
        for idx in range(1, rounds + 1):
            current = _wait_for_round(client, sequence, timeout_s=5.0)
            if current is None:
                print("[play] no round opened; check MIN_PARTICIPANTS")
                break
            sequence = current["sequence"]
            for plan in plans:
                option = _pick_option(plan.persona, current["dilemma"], rng)
                client.post(
                    "/api/v1/rounds/current/choices",
                    json={"participant_id": plan.participant_id, "option": option},
                )
                client.post(f"/api/v1/players/{plan.participant_id}/heartbeat")
            print(f"[{idx:02d}/{rounds}] round {sequence}: {current['dilemma']['text'][:70]}")

        time.sleep(int(os.environ["ROUND_DURATION_MS"]) / 1000 + 0.3)
        history = client.get(f"/api/v1/history?limit={rounds + 2}").json()
        state = client.get("/api/v1/state").json()

    print("\n=== HISTORY ===")
    for item in history:
        print(
            f"round {item['sequence']:>3} votes A={item['votes']['A']} B={item['votes']['B']} "
            f"delta={item['delta']} health={item['health']:.1f} ({item['status']})"
        )
    eco = state.get("ecosystem") or {}
    print(f"\nFinal health: {eco.get('health_percent')}% {eco.get('status')} {eco.get('metrics')}")


if __name__ == "__main__":
    main()
