"""Reduce a round's choices into one ecosystem delta and apply it atomically.

The averaged delta is rounded half away from zero on exact fractions, so
``-2.5`` becomes ``-3`` and ``2.5`` becomes ``3`` regardless of float error.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from fractions import Fraction
from typing import Any

from .ecosystem import METRICS, EcosystemState, normalize_delta
from .records import ChoiceRecord, Round
from .sync import SyncHub
from .utils import now_ms

logger = logging.getLogger(__name__)

GLOBAL_PATH = "global"


@dataclass
class TallyOutcome:
    round_id: str
    sequence: int
    dilemma_index: int
    dilemma_id: int | None
    votes: dict[str, int]
    participants: int
    delta: dict[str, int]
    state: EcosystemState


def round_half_away_from_zero(value: Fraction) -> int:
    magnitude = int(abs(value) + Fraction(1, 2))
    return magnitude if value >= 0 else -magnitude


def aggregate(choices: Mapping[str, ChoiceRecord]) -> dict[str, int]:
    """Average every metric over the submitted choices.

    Participants who never chose contribute nothing; with no choices the
    divisor is 1 and every metric delta is 0.
    """

    totals = {metric: 0 for metric in METRICS}
    for record in choices.values():
        for metric, value in normalize_delta(record.impact).items():
            totals[metric] += value
    count = max(1, len(choices))
    return {metric: round_half_away_from_zero(Fraction(totals[metric], count)) for metric in METRICS}


def apply_delta(state: EcosystemState, delta: Mapping[str, int], *, upper: int | None) -> EcosystemState:
    return state.apply_delta(delta, upper=upper)


async def ensure_ecosystem(hub: SyncHub) -> EcosystemState:
    """Create the shared ecosystem document with defaults if it does not exist yet."""

    def create_if_missing(current: Any) -> dict[str, Any] | None:
        if current is not None:
            return None
        return EcosystemState(last_updated=now_ms()).to_payload()

    result = await hub.transaction(GLOBAL_PATH, create_if_missing)
    return EcosystemState.from_payload(result.value)


async def tally_round(
    hub: SyncHub,
    round_: Round,
    *,
    metric_max: int | None,
    dilemma_id: int | None = None,
    now: int | None = None,
) -> TallyOutcome | None:
    """Apply the round's averaged delta to the remote ecosystem state.

    Returns None when this round was already applied by another writer.
    """

    delta = aggregate(round_.choices)
    stamp = now if now is not None else now_ms()

    def apply(current: Any) -> dict[str, Any] | None:
        state = EcosystemState.from_payload(current)
        if state.last_round_id == round_.round_id:
            return None
        updated = apply_delta(state, delta, upper=metric_max)
        return updated.model_copy(update={"last_round_id": round_.round_id, "last_updated": stamp}).to_payload()

    result = await hub.transaction(GLOBAL_PATH, apply)
    if not result.committed:
        logger.debug("round already tallied round=%s", round_.round_id)
        return None

    outcome = TallyOutcome(
        round_id=round_.round_id,
        sequence=round_.sequence,
        dilemma_index=round_.dilemma_index,
        dilemma_id=dilemma_id,
        votes=round_.votes(),
        participants=len(round_.choices),
        delta=delta,
        state=EcosystemState.from_payload(result.value),
    )
    logger.info(
        "round tallied round=%s sequence=%s votes=%s delta=%s attempts=%s",
        outcome.round_id,
        outcome.sequence,
        outcome.votes,
        delta,
        result.attempts,
    )
    return outcome
