"""Game session: the explicit owner of presence, rounds, and live relays.

One session is created when the application starts and torn down when it
stops. It wires the round controller to history persistence and relays
every store change to connected WebSocket clients as a snapshot.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from .aggregation import GLOBAL_PATH, TallyOutcome, ensure_ecosystem
from .dilemmas import DilemmaSelector
from .ecosystem import EcosystemState
from .errors import ConnectionUnavailable, InvalidDilemmaIndex, UnknownParticipant
from .history import record_round_result
from .presence import PLAYERS_PATH, PresenceTracker
from .records import ChoiceRecord, Participant, Round
from .rounds import ROUND_PATH, RoundConfig, RoundController
from .sync import SyncHub
from .utils import now_ms

logger = logging.getLogger(__name__)


class GameSession:
    def __init__(
        self,
        hub: SyncHub,
        ws_manager,
        *,
        config: RoundConfig | None = None,
        selector: DilemmaSelector | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self.hub = hub
        self.ws_manager = ws_manager
        self.session_factory = session_factory
        self.presence = PresenceTracker(hub)
        self.rounds = RoundController(
            hub,
            self.presence,
            config=config,
            selector=selector,
            on_tally=self._on_tally,
        )
        self._connections: dict[str, str] = {}
        self._tasks: list[asyncio.Task] = []

    @property
    def config(self) -> RoundConfig:
        return self.rounds.config

    async def start(self) -> None:
        try:
            await ensure_ecosystem(self.hub)
        except ConnectionUnavailable as exc:
            logger.error("store unavailable at startup, continuing disconnected: %s", exc)
        await self.rounds.start()
        self._tasks = [asyncio.create_task(self._relay(path)) for path in (GLOBAL_PATH, PLAYERS_PATH, ROUND_PATH)]
        self._tasks.append(asyncio.create_task(self._keepalive()))

    async def close(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.rounds.stop()
        await self.hub.disconnect_all()
        self._connections.clear()

    async def join(
        self,
        *,
        participant_id: str | None = None,
        name: str | None = None,
        color: str | None = None,
        connection_id: str | None = None,
    ) -> Participant:
        participant = await self.presence.join(
            participant_id=participant_id,
            name=name,
            color=color,
            connection_id=connection_id,
        )
        if connection_id:
            self._connections[connection_id] = participant.id
        await self.rounds.check()
        return participant

    async def choose(self, participant_id: str, option: str) -> ChoiceRecord:
        return await self.rounds.submit_choice(participant_id, option)

    async def leave(self, participant_id: str) -> None:
        if await self.presence.get(participant_id) is None:
            raise UnknownParticipant(f"participant {participant_id} is not in the game")
        await self.presence.leave(participant_id)

    async def disconnect(self, connection_id: str) -> None:
        participant_id = self._connections.pop(connection_id, None)
        removed = await self.hub.disconnect(connection_id)
        if participant_id:
            logger.info("participant disconnected id=%s removed=%s", participant_id, removed)

    def participant_for(self, connection_id: str) -> str | None:
        return self._connections.get(connection_id)

    async def round_view(self, now: int | None = None) -> dict[str, Any] | None:
        return self._round_view(await self.rounds.current_round(), now if now is not None else now_ms())

    def _round_view(self, current: Round | None, now: int) -> dict[str, Any] | None:
        if current is None:
            return None
        view: dict[str, Any] = {
            "round_id": current.round_id,
            "sequence": current.sequence,
            "dilemma_index": current.dilemma_index,
            "started_at": current.started_at,
            "ends_at": current.ends_at,
            "active": current.active,
            "time_left_ms": current.time_left_ms(now),
            "seconds_left": -(-current.time_left_ms(now) // 1000),
            "duration_ms": self.config.round_duration_ms,
            "choices": {pid: record.model_dump() for pid, record in current.choices.items()},
            "dilemma": None,
        }
        try:
            view["dilemma"] = self.rounds.dilemma_for(current).to_payload()
        except InvalidDilemmaIndex as exc:
            logger.error("cannot load dilemma for round=%s: %s", current.round_id, exc)
        return view

    async def snapshot(self) -> dict[str, Any]:
        """Everything the presentation layer renders, in one payload."""

        now = now_ms()
        try:
            state = EcosystemState.from_payload(await self.hub.get(GLOBAL_PATH))
            participants = await self.presence.participants()
            current = await self.rounds.current_round()
        except ConnectionUnavailable:
            return {"type": "snapshot", "connected": False}
        total = len(participants)
        if current is not None and current.active:
            progress = current.progress(total)
        else:
            progress = {"submitted": 0, "total": total, "ratio": 0.0}
        return {
            "type": "snapshot",
            "connected": True,
            "phase": self.rounds.phase.value,
            "ecosystem": state.to_view(metric_max=self.config.metric_max),
            "round": self._round_view(current, now),
            "participants": [p.to_payload() for p in participants],
            "progress": progress,
            "min_participants": self.config.min_participants,
        }

    async def _broadcast_snapshot(self) -> None:
        if self.ws_manager.count == 0:
            return
        await self.ws_manager.broadcast(await self.snapshot())

    async def _relay(self, path: str) -> None:
        while True:
            try:
                async with await self.hub.subscribe(path) as changes:
                    async for _value in changes:
                        await self._broadcast_snapshot()
            except ConnectionUnavailable:
                await self.ws_manager.broadcast({"type": "status", "connected": False})
                await asyncio.sleep(self.config.tick_interval_ms / 1000)

    async def _keepalive(self) -> None:
        """Heartbeat participants whose WebSocket is still open."""

        interval_ms = max(self.config.tick_interval_ms, self.presence.timeout_ms // 3)
        while True:
            await asyncio.sleep(interval_ms / 1000)
            for connection_id, participant_id in list(self._connections.items()):
                try:
                    await self.presence.touch(participant_id)
                except UnknownParticipant:
                    self._connections.pop(connection_id, None)
                except ConnectionUnavailable as exc:
                    logger.warning("heartbeat skipped: %s", exc)
                    break

    async def _on_tally(self, outcome: TallyOutcome) -> None:
        if self.session_factory is not None:
            try:
                with self.session_factory() as session:
                    record_round_result(session, outcome)
            except ConnectionUnavailable as exc:
                logger.error("round history not recorded round=%s: %s", outcome.round_id, exc)
        await self.ws_manager.broadcast(
            {
                "type": "round_result",
                "round_id": outcome.round_id,
                "sequence": outcome.sequence,
                "votes": outcome.votes,
                "delta": outcome.delta,
                "ecosystem": outcome.state.to_view(metric_max=self.config.metric_max),
            }
        )
