"""Participant presence: join, heartbeat, rename, and connection-bound removal."""

import logging
import random
import uuid
from typing import Any

from .config import settings
from .ecosystem import ALIGNMENT_AXES, METRICS, alignment_shift
from .errors import GameFull, UnknownParticipant
from .records import ChoiceRecord, Participant
from .sync import SyncHub
from .utils import now_ms

logger = logging.getLogger(__name__)

PLAYERS_PATH = "players"

COLOR_PALETTE = (
    "#FF6B6B",
    "#4ECDC4",
    "#FFD166",
    "#06D6A0",
    "#118AB2",
    "#EF476F",
    "#7B2CBF",
    "#3A86FF",
    "#FB5607",
    "#8338EC",
)
NAME_PREFIXES = ("Guardian", "Visionary", "Steward", "Pioneer", "Harmonist", "Catalyst")


def player_path(participant_id: str) -> str:
    return f"{PLAYERS_PATH}/{participant_id}"


def new_participant_id(now: int) -> str:
    return f"player_{now}_{uuid.uuid4().hex[:9]}"


def random_name(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    return f"{rng.choice(NAME_PREFIXES)}_{rng.randrange(100)}"


class PresenceTracker:
    """Tracks connected participants independently of round logic."""

    def __init__(
        self,
        hub: SyncHub,
        *,
        max_participants: int | None = None,
        timeout_ms: int | None = None,
    ) -> None:
        self.hub = hub
        self.max_participants = max_participants if max_participants is not None else settings.max_participants
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.presence_timeout_ms

    async def participants(self) -> list[Participant]:
        raw = await self.hub.get(PLAYERS_PATH)
        if not isinstance(raw, dict):
            return []
        parsed = [Participant.from_payload(value) for value in raw.values()]
        return sorted((p for p in parsed if p is not None), key=lambda p: (p.joined_at, p.id))

    async def count(self) -> int:
        return len(await self.participants())

    async def get(self, participant_id: str) -> Participant | None:
        return Participant.from_payload(await self.hub.get(player_path(participant_id)))

    async def join(
        self,
        *,
        participant_id: str | None = None,
        name: str | None = None,
        color: str | None = None,
        connection_id: str | None = None,
        now: int | None = None,
    ) -> Participant:
        """Upsert a participant; re-joining keeps ``joined_at`` and stats."""

        now = now if now is not None else now_ms()
        participant_id = participant_id or new_participant_id(now)
        existing = await self.get(participant_id)
        if existing is None and await self.count() >= self.max_participants:
            raise GameFull(f"game already has {self.max_participants} participants")

        created: list[bool] = []

        def upsert(current: Any) -> dict[str, Any]:
            previous = Participant.from_payload(current)
            created[:] = [previous is None]
            if previous is None:
                return Participant(
                    id=participant_id,
                    name=name or random_name(),
                    color=color or random.choice(COLOR_PALETTE),
                    joined_at=now,
                    last_active=now,
                ).to_payload()
            update: dict[str, Any] = {"last_active": now}
            if name:
                update["name"] = name
            if color:
                update["color"] = color
            return previous.model_copy(update=update).to_payload()

        result = await self.hub.transaction(player_path(participant_id), upsert)
        if created[0]:
            await self._release_overflow_seat(participant_id)
        if connection_id:
            self.hub.on_disconnect_remove(connection_id, player_path(participant_id))
        participant = Participant.model_validate(result.value)
        logger.info("participant joined id=%s name=%s", participant.id, participant.name)
        return participant

    async def _release_overflow_seat(self, participant_id: str) -> None:
        """Undo a join that raced past the participant limit.

        Seats go to the earliest joiners, so concurrent joiners agree on
        which of them has to leave.
        """

        seated = [p.id for p in await self.participants()][: self.max_participants]
        if participant_id in seated:
            return
        await self.hub.remove(player_path(participant_id))
        raise GameFull(f"game already has {self.max_participants} participants")

    async def _modify(self, participant_id: str, update: dict[str, Any]) -> Participant:
        def apply(current: Any) -> dict[str, Any]:
            previous = Participant.from_payload(current)
            if previous is None:
                raise UnknownParticipant(f"participant {participant_id} is not in the game")
            return previous.model_copy(update=update).to_payload()

        result = await self.hub.transaction(player_path(participant_id), apply)
        return Participant.model_validate(result.value)

    async def touch(self, participant_id: str, now: int | None = None) -> Participant:
        return await self._modify(participant_id, {"last_active": now if now is not None else now_ms()})

    async def rename(self, participant_id: str, name: str) -> Participant:
        return await self._modify(participant_id, {"name": name, "last_active": now_ms()})

    async def leave(self, participant_id: str) -> None:
        await self.hub.remove(player_path(participant_id))
        logger.info("participant left id=%s", participant_id)

    async def record_choice(self, participant_id: str, record: ChoiceRecord) -> Participant:
        def apply(current: Any) -> dict[str, Any]:
            previous = Participant.from_payload(current)
            if previous is None:
                raise UnknownParticipant(f"participant {participant_id} is not in the game")
            stats = previous.stats
            total = {metric: stats.total_impact.get(metric, 0) + record.impact.get(metric, 0) for metric in METRICS}
            shift = alignment_shift(record.impact)
            alignment = {axis: stats.alignment.get(axis, 0) + shift[axis] for axis in ALIGNMENT_AXES}
            updated_stats = stats.model_copy(
                update={
                    "choices_made": stats.choices_made + 1,
                    "total_impact": total,
                    "alignment": alignment,
                    "last_choice": {
                        "choice": record.choice,
                        "impact": dict(record.impact),
                        "time": record.submitted_at,
                    },
                }
            )
            return previous.model_copy(update={"stats": updated_stats, "last_active": record.submitted_at}).to_payload()

        result = await self.hub.transaction(player_path(participant_id), apply)
        return Participant.model_validate(result.value)

    async def prune_stale(self, now: int | None = None) -> list[str]:
        """Remove participants whose heartbeat is older than the presence timeout."""

        now = now if now is not None else now_ms()
        cutoff = now - self.timeout_ms
        removed: list[str] = []
        for participant in await self.participants():
            if participant.last_active >= cutoff:
                continue
            # Best effort: a heartbeat landing right now may lose to the removal.
            await self.hub.remove(player_path(participant.id))
            removed.append(participant.id)
        if removed:
            logger.info("pruned stale participants ids=%s", removed)
        return removed
