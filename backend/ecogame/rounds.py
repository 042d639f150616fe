"""Round lifecycle state machine.

Every server process runs its own controller against the shared store, so
round transitions are multi-writer. Opening a round, closing one, recording
a choice, and tallying all go through ``SyncHub.transaction``. An expired
round is closed before it is tallied, so the tally sees every accepted
choice. A writer that loses the race sees the winner's record and adopts it
instead of writing a second round.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .aggregation import TallyOutcome, tally_round
from .config import settings
from .dilemmas import DILEMMA_LIBRARY, Dilemma, DilemmaSelector, build_selector, get_dilemma
from .errors import AlreadySubmitted, ConnectionUnavailable, GameError, InvalidDilemmaIndex, RoundClosed, UnknownParticipant
from .presence import PresenceTracker
from .records import ChoiceRecord, Round
from .sync import SyncHub
from .utils import now_ms

logger = logging.getLogger(__name__)

ROUND_PATH = "game/currentRound"


class RoundPhase(str, Enum):
    idle = "idle"
    open = "open"
    tallying = "tallying"


@dataclass
class RoundConfig:
    round_duration_ms: int = 30000
    min_participants: int = 2
    metric_max: int | None = 20
    tick_interval_ms: int = 1000

    @classmethod
    def from_settings(cls) -> "RoundConfig":
        return cls(
            round_duration_ms=settings.round_duration_ms,
            min_participants=settings.min_participants,
            metric_max=settings.metric_max,
            tick_interval_ms=settings.tick_interval_ms,
        )


class RoundController:
    """Drives Idle -> Open -> Tallying -> Idle(next) for one process."""

    def __init__(
        self,
        hub: SyncHub,
        presence: PresenceTracker,
        *,
        config: RoundConfig | None = None,
        selector: DilemmaSelector | None = None,
        catalog: tuple[Dilemma, ...] = DILEMMA_LIBRARY,
        on_tally: Callable[[TallyOutcome], Awaitable[None]] | None = None,
    ) -> None:
        self.hub = hub
        self.presence = presence
        self.config = config or RoundConfig.from_settings()
        self.selector = selector or build_selector(settings.dilemma_selection, seed=settings.dilemma_seed)
        self.catalog = catalog
        self.on_tally = on_tally
        self.phase = RoundPhase.idle
        self._tasks: list[asyncio.Task] = []
        self._expiry_task: asyncio.Task | None = None
        self._expiry_round_id: str | None = None
        self._finishing: set[asyncio.Task] = set()
        self._check_lock = asyncio.Lock()

    async def current_round(self) -> Round | None:
        return Round.from_payload(await self.hub.get(ROUND_PATH))

    def dilemma_for(self, round_: Round) -> Dilemma:
        return get_dilemma(round_.dilemma_index, self.catalog)

    async def ensure_round(self, now: int | None = None) -> Round | None:
        """Make sure a round is open when enough participants are present.

        An expired round is first closed through a transaction, so no choice
        can land after it, and then tallied from the closed record. Below the
        participant minimum the closed round stays closed with its choices
        cleared; otherwise the next round opens.
        """

        async with self._check_lock:
            now = now if now is not None else now_ms()
            current = await self.current_round()
            if current is not None and current.active and current.is_expired(now):
                current = await self._close(current.round_id)
            if current is not None and current.is_open(now):
                self.phase = RoundPhase.open
                return current

            tallied_id: str | None = None
            if current is not None and not current.active:
                await self.tally(current, now=now)
                tallied_id = current.round_id

            if await self.presence.count() < self.config.min_participants:
                if tallied_id is not None:
                    await self._clear_choices(tallied_id)
                self.phase = RoundPhase.idle
                return None

            result = await self.hub.transaction(ROUND_PATH, lambda raw: self._next_round(raw, now, tallied_id))
            opened = Round.from_payload(result.value)
            if result.committed and opened is not None:
                logger.info(
                    "round opened round=%s sequence=%s dilemma_index=%s ends_at=%s",
                    opened.round_id,
                    opened.sequence,
                    opened.dilemma_index,
                    opened.ends_at,
                )
            self.phase = RoundPhase.open if opened is not None and opened.is_open(now) else RoundPhase.idle
            return opened

    def _next_round(self, raw: Any, now: int, tallied_id: str | None) -> dict[str, Any] | None:
        current = Round.from_payload(raw)
        if current is not None and current.active:
            # Open, or expired but not yet closed: either way not ours to replace.
            return None
        if current is not None and current.round_id != tallied_id:
            return None
        sequence = current.sequence + 1 if current is not None else 1
        return Round(
            round_id=uuid.uuid4().hex,
            sequence=sequence,
            dilemma_index=self.selector.next_index(sequence, len(self.catalog)),
            started_at=now,
            ends_at=now + self.config.round_duration_ms,
            active=True,
            choices={},
        ).to_payload()

    async def _close(self, round_id: str) -> Round | None:
        """Stop accepting choices for ``round_id`` and return the stored round afterwards."""

        def close(raw: Any) -> dict[str, Any] | None:
            current = Round.from_payload(raw)
            if current is None or current.round_id != round_id or not current.active:
                return None
            return current.model_copy(update={"active": False}).to_payload()

        result = await self.hub.transaction(ROUND_PATH, close)
        if result.committed:
            self.phase = RoundPhase.tallying
            logger.info("round closed round=%s", round_id)
        return Round.from_payload(result.value)

    async def _clear_choices(self, round_id: str) -> None:
        def clear(raw: Any) -> dict[str, Any] | None:
            current = Round.from_payload(raw)
            if current is None or current.round_id != round_id or current.active or not current.choices:
                return None
            return current.model_copy(update={"choices": {}}).to_payload()

        result = await self.hub.transaction(ROUND_PATH, clear)
        if result.committed:
            logger.info("round closed without successor round=%s", round_id)

    async def tally(self, round_: Round, now: int | None = None) -> TallyOutcome | None:
        self.phase = RoundPhase.tallying
        try:
            dilemma_id = self.dilemma_for(round_).id
        except InvalidDilemmaIndex:
            logger.error("tallying round with invalid dilemma index round=%s index=%s", round_.round_id, round_.dilemma_index)
            dilemma_id = None
        outcome = await tally_round(
            self.hub,
            round_,
            metric_max=self.config.metric_max,
            dilemma_id=dilemma_id,
            now=now,
        )
        if outcome is not None and self.on_tally is not None:
            await self.on_tally(outcome)
        return outcome

    async def submit_choice(self, participant_id: str, option: str, now: int | None = None) -> ChoiceRecord:
        """Record one participant's choice for the open round.

        Raises RoundClosed outside the round window and AlreadySubmitted on a
        repeat; neither leaves any change behind.
        """

        now = now if now is not None else now_ms()
        participant = await self.presence.get(participant_id)
        if participant is None:
            raise UnknownParticipant(f"participant {participant_id} is not in the game")

        recorded: dict[str, ChoiceRecord] = {}

        def add_choice(raw: Any) -> dict[str, Any]:
            current = Round.from_payload(raw)
            if current is None or not current.is_open(now):
                raise RoundClosed("no round is accepting choices")
            if participant_id in current.choices:
                raise AlreadySubmitted("a choice was already submitted for this round")
            dilemma = self.dilemma_for(current)
            record = ChoiceRecord(
                choice=option,
                impact=dict(dilemma.option(option).impact),
                player_id=participant_id,
                player_name=participant.name,
                dilemma_id=dilemma.id,
                submitted_at=now,
            )
            recorded["record"] = record
            choices = {**current.choices, participant_id: record}
            return current.model_copy(update={"choices": choices}).to_payload()

        await self.hub.transaction(ROUND_PATH, add_choice)
        record = recorded["record"]
        logger.info("choice submitted participant=%s choice=%s", participant_id, option)
        try:
            await self.presence.record_choice(participant_id, record)
        except UnknownParticipant:
            logger.warning("participant left before stats update participant=%s", participant_id)
        return record

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._run()),
            asyncio.create_task(self._watch_rounds()),
        ]

    async def stop(self) -> None:
        tasks = self._tasks + list(self._finishing) + ([self._expiry_task] if self._expiry_task else [])
        self._tasks = []
        self._expiry_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def check(self) -> Round | None:
        """Run ``ensure_round`` and absorb recoverable failures."""

        try:
            return await self.ensure_round()
        except ConnectionUnavailable as exc:
            logger.warning("round check skipped, store unavailable: %s", exc)
        except GameError as exc:
            logger.warning("round check failed %s: %s", type(exc).__name__, exc)
        return None

    async def _run(self) -> None:
        while True:
            await self.check()
            try:
                await self.presence.prune_stale()
            except ConnectionUnavailable as exc:
                logger.warning("presence prune skipped: %s", exc)
            await asyncio.sleep(self.config.tick_interval_ms / 1000)

    async def _watch_rounds(self) -> None:
        while True:
            try:
                async with await self.hub.subscribe(ROUND_PATH) as rounds:
                    async for raw in rounds:
                        self._observe(Round.from_payload(raw))
            except ConnectionUnavailable as exc:
                logger.warning("round subscription lost, retrying: %s", exc)
                await asyncio.sleep(self.config.tick_interval_ms / 1000)

    def _observe(self, round_: Round | None) -> None:
        """Replace the local countdown whenever a different round is seen."""

        if round_ is None or not round_.active:
            self._cancel_expiry()
            return
        if round_.round_id == self._expiry_round_id:
            return
        self._cancel_expiry()
        self._expiry_round_id = round_.round_id
        delay = max(0, round_.ends_at - now_ms() + 1) / 1000
        self._expiry_task = asyncio.create_task(self._expire_after(delay))

    def _cancel_expiry(self) -> None:
        if self._expiry_task is not None and not self._expiry_task.done():
            self._expiry_task.cancel()
        self._expiry_task = None
        self._expiry_round_id = None

    async def _expire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Past the countdown: a newly observed round must not cancel the check it triggers.
        task, self._expiry_task = self._expiry_task, None
        if task is not None:
            self._finishing.add(task)
            task.add_done_callback(self._finishing.discard)
        await self.check()
