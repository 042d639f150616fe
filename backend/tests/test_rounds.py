"""Round controller lifecycle, voting rules, and multi-writer behaviour."""

import asyncio

import pytest

from ecogame.aggregation import GLOBAL_PATH, ensure_ecosystem
from ecogame.dilemmas import DILEMMA_LIBRARY, SequentialSelector
from ecogame.ecosystem import EcosystemState
from ecogame.errors import AlreadySubmitted, RoundClosed, UnknownParticipant
from ecogame.presence import PresenceTracker
from ecogame.records import ChoiceRecord, Round
from ecogame.rounds import ROUND_PATH, RoundConfig, RoundController, RoundPhase

T0 = 1_000_000
DURATION = 1000


def _controller(hub, *, min_participants=2, duration=DURATION, on_tally=None) -> RoundController:
    presence = PresenceTracker(hub, max_participants=10, timeout_ms=10**9)
    config = RoundConfig(
        round_duration_ms=duration,
        min_participants=min_participants,
        metric_max=20,
        tick_interval_ms=20,
    )
    return RoundController(hub, presence, config=config, selector=SequentialSelector(), on_tally=on_tally)


async def _join(controller: RoundController, *ids: str, now: int = T0) -> None:
    for participant_id in ids:
        await controller.presence.join(participant_id=participant_id, now=now)


def test_round_needs_minimum_participants(hub):
    controller = _controller(hub)

    async def run():
        await _join(controller, "p1")
        alone = await controller.ensure_round(now=T0)
        await _join(controller, "p2")
        opened = await controller.ensure_round(now=T0 + 10)
        return alone, opened

    alone, opened = asyncio.run(run())
    assert alone is None
    assert opened is not None
    assert opened.sequence == 1
    assert opened.dilemma_index == 0
    assert opened.started_at == T0 + 10
    assert opened.ends_at == T0 + 10 + DURATION
    assert controller.phase is RoundPhase.open


def test_single_player_mode(hub):
    controller = _controller(hub, min_participants=1)

    async def run():
        await _join(controller, "solo")
        return await controller.ensure_round(now=T0)

    assert asyncio.run(run()) is not None


def test_open_round_is_returned_unchanged(hub):
    controller = _controller(hub)

    async def run():
        await _join(controller, "p1", "p2")
        first = await controller.ensure_round(now=T0)
        second = await controller.ensure_round(now=T0 + DURATION)
        return first, second

    first, second = asyncio.run(run())
    assert first.round_id == second.round_id


def test_one_choice_per_participant(hub):
    controller = _controller(hub)

    async def run():
        await _join(controller, "p1", "p2")
        await controller.ensure_round(now=T0)
        record = await controller.submit_choice("p1", "B", now=T0 + 5)
        with pytest.raises(AlreadySubmitted):
            await controller.submit_choice("p1", "A", now=T0 + 6)
        return record, await controller.current_round(), await controller.presence.get("p1")

    record, current, participant = asyncio.run(run())
    assert record.choice == "B"
    assert record.dilemma_id == 1
    assert record.impact["transparency"] == 3
    assert list(current.choices) == ["p1"]
    assert current.choices["p1"].choice == "B"
    assert participant.stats.choices_made == 1


def test_choice_outside_round_window_is_rejected(hub):
    controller = _controller(hub)

    async def run():
        await _join(controller, "p1", "p2")
        with pytest.raises(RoundClosed):
            await controller.submit_choice("p1", "A", now=T0)
        await controller.ensure_round(now=T0)
        with pytest.raises(RoundClosed):
            await controller.submit_choice("p1", "A", now=T0 + DURATION + 1)
        with pytest.raises(UnknownParticipant):
            await controller.submit_choice("ghost", "A", now=T0 + 1)
        return await controller.current_round()

    assert asyncio.run(run()).choices == {}


def test_expired_round_is_tallied_and_next_round_opens(hub):
    outcomes = []

    async def on_tally(outcome):
        outcomes.append(outcome)

    controller = _controller(hub, on_tally=on_tally)

    async def run():
        await ensure_ecosystem(hub)
        await _join(controller, "p1", "p2")
        first = await controller.ensure_round(now=T0)
        await controller.submit_choice("p1", "A", now=T0 + 1)
        await controller.submit_choice("p2", "B", now=T0 + 2)
        following = await controller.ensure_round(now=T0 + DURATION + 1)
        state = EcosystemState.from_payload(await hub.get(GLOBAL_PATH))
        return first, following, state

    first, following, state = asyncio.run(run())
    assert state.metrics() == {"eco": 10, "pollution": 4, "inclusivity": 10, "transparency": 8, "innovation": 9}
    assert state.last_round_id == first.round_id
    assert following.sequence == 2
    assert following.dilemma_index == 1
    assert following.choices == {}
    assert len(outcomes) == 1
    assert outcomes[0].votes == {"A": 1, "B": 1}
    assert outcomes[0].dilemma_id == 1


def test_empty_round_still_advances(hub):
    controller = _controller(hub)

    async def run():
        before = await ensure_ecosystem(hub)
        await _join(controller, "p1", "p2")
        first = await controller.ensure_round(now=T0)
        following = await controller.ensure_round(now=T0 + DURATION + 1)
        after = EcosystemState.from_payload(await hub.get(GLOBAL_PATH))
        return before, first, following, after

    before, first, following, after = asyncio.run(run())
    assert after.metrics() == before.metrics()
    assert after.last_round_id == first.round_id
    assert following.sequence == 2


def test_round_closes_when_participants_drop_below_minimum(hub):
    controller = _controller(hub)

    async def run():
        await ensure_ecosystem(hub)
        await _join(controller, "p1", "p2")
        first = await controller.ensure_round(now=T0)
        await controller.submit_choice("p1", "A", now=T0 + 1)
        await controller.presence.leave("p2")
        result = await controller.ensure_round(now=T0 + DURATION + 1)
        return first, result, await controller.current_round(), EcosystemState.from_payload(await hub.get(GLOBAL_PATH))

    first, result, stored, state = asyncio.run(run())
    assert result is None
    assert stored.round_id == first.round_id
    assert stored.active is False
    assert stored.choices == {}
    assert state.last_round_id == first.round_id
    assert state.innovation == 10
    assert controller.phase is RoundPhase.idle


def test_concurrent_checks_open_a_single_round(hub):
    first_writer = _controller(hub)
    second_writer = _controller(hub)

    async def run():
        await _join(first_writer, "p1", "p2")
        return await asyncio.gather(first_writer.ensure_round(now=T0), second_writer.ensure_round(now=T0))

    a, b = asyncio.run(run())
    assert a.round_id == b.round_id
    assert a.sequence == 1


def test_losing_writer_adopts_the_winning_round(hub, store, monkeypatch):
    controller = _controller(hub)
    winner = Round(round_id="winner", sequence=1, dilemma_index=0, started_at=T0, ends_at=T0 + DURATION)
    original = store.transact
    raced = []

    def racing_transact(path, fn, **kwargs):
        if path == ROUND_PATH and not raced:
            raced.append(path)
            store.put(ROUND_PATH, winner.to_payload())
        return original(path, fn, **kwargs)

    async def run():
        await _join(controller, "p1", "p2")
        monkeypatch.setattr(store, "transact", racing_transact)
        return await controller.ensure_round(now=T0 + 1)

    adopted = asyncio.run(run())
    assert adopted.round_id == "winner"
    assert raced == [ROUND_PATH]


def test_next_round_guard():
    controller = _controller(hub=None)
    expired = Round(round_id="other", sequence=4, dilemma_index=0, started_at=0, ends_at=10)
    closed = expired.model_copy(update={"active": False}).to_payload()
    open_round = Round(round_id="live", sequence=4, dilemma_index=0, started_at=0, ends_at=10_000).to_payload()

    assert controller._next_round(open_round, 50, None) is None
    assert controller._next_round(expired.to_payload(), 50, "other") is None
    assert controller._next_round(closed, 50, "mine") is None
    advanced = controller._next_round(closed, 50, "other")
    assert advanced["sequence"] == 5
    assert advanced["dilemma_index"] == 4 % len(controller.catalog)
    fresh = controller._next_round(None, 50, None)
    assert fresh["sequence"] == 1
    assert fresh["ends_at"] == 50 + DURATION


def test_background_timer_tallies_expired_round(hub):
    controller = _controller(hub, duration=150)

    async def run():
        await ensure_ecosystem(hub)
        await controller.presence.join(participant_id="p1")
        await controller.presence.join(participant_id="p2")
        await controller.start()
        try:
            opened = None
            for _ in range(50):
                opened = await controller.current_round()
                if opened is not None:
                    break
                await asyncio.sleep(0.02)
            await controller.submit_choice("p1", "A")
            await asyncio.sleep(0.5)
            return opened, EcosystemState.from_payload(await hub.get(GLOBAL_PATH)), await controller.current_round()
        finally:
            await controller.stop()

    opened, state, latest = asyncio.run(run())
    assert opened is not None
    assert state.last_round_id is not None
    assert latest.sequence > opened.sequence


def test_vote_arriving_while_round_is_tallied_is_refused(hub):
    refused = []
    outcomes = []
    other_writer = _controller(hub)

    async def on_tally(outcome):
        outcomes.append(outcome)
        try:
            await other_writer.submit_choice("p2", "A", now=T0 + DURATION)
        except RoundClosed as exc:
            refused.append(exc)

    controller = _controller(hub, on_tally=on_tally)

    async def run():
        await ensure_ecosystem(hub)
        await _join(controller, "p1", "p2")
        await controller.ensure_round(now=T0)
        await controller.submit_choice("p1", "B", now=T0 + 1)
        following = await controller.ensure_round(now=T0 + DURATION + 1)
        return following, EcosystemState.from_payload(await hub.get(GLOBAL_PATH))

    following, state = asyncio.run(run())
    assert len(refused) == 1
    assert outcomes[0].votes == {"A": 0, "B": 1}
    assert state.innovation == 6 + 1
    assert following.sequence == 2
    assert following.choices == {}


def test_vote_landing_just_before_close_is_counted(hub, store, monkeypatch):
    controller = _controller(hub)
    late_vote = ChoiceRecord(
        choice="A",
        impact=dict(DILEMMA_LIBRARY[0].option_a.impact),
        player_id="p2",
        submitted_at=T0 + DURATION,
    )
    original = store.transact
    injected = []

    def add_late_vote(raw):
        raw["choices"]["p2"] = late_vote.model_dump()
        return raw

    def racing_transact(path, fn, **kwargs):
        if path == ROUND_PATH and not injected:
            injected.append(path)
            original(ROUND_PATH, add_late_vote)
        return original(path, fn, **kwargs)

    async def run():
        await ensure_ecosystem(hub)
        await _join(controller, "p1", "p2")
        first = await controller.ensure_round(now=T0)
        await controller.submit_choice("p1", "B", now=T0 + 1)
        monkeypatch.setattr(store, "transact", racing_transact)
        await controller.ensure_round(now=T0 + DURATION + 1)
        return first, EcosystemState.from_payload(await hub.get(GLOBAL_PATH))

    first, state = asyncio.run(run())
    assert injected == [ROUND_PATH]
    assert state.last_round_id == first.round_id
    assert state.metrics() == {"eco": 10, "pollution": 4, "inclusivity": 10, "transparency": 8, "innovation": 9}
