"""Round result history persisted after each committed tally."""

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select

from .aggregation import TallyOutcome
from .errors import ConnectionUnavailable
from .models import RoundResult
from .utils import utc_iso_now

logger = logging.getLogger(__name__)


def record_round_result(session: Session, outcome: TallyOutcome) -> RoundResult | None:
    """Store one tally outcome; a duplicate round id is ignored."""

    state = outcome.state
    result = RoundResult(
        round_id=outcome.round_id,
        sequence=outcome.sequence,
        dilemma_id=outcome.dilemma_id if outcome.dilemma_id is not None else -1,
        dilemma_index=outcome.dilemma_index,
        votes_a=outcome.votes.get("A", 0),
        votes_b=outcome.votes.get("B", 0),
        participants=outcome.participants,
        delta=dict(outcome.delta),
        metrics=state.metrics(),
        health=round(state.calculate_health(), 2),
        status=state.get_status().status,
        created_at=utc_iso_now(),
    )
    session.add(result)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning("round result already recorded round=%s", outcome.round_id)
        return None
    except OperationalError as exc:
        session.rollback()
        raise ConnectionUnavailable(f"history unavailable: {str(exc.orig)[:160]}") from exc
    session.refresh(result)
    return result


def list_round_results(session: Session, limit: int = 50) -> list[RoundResult]:
    """Return the newest results in chronological order."""

    stmt = select(RoundResult).order_by(RoundResult.id.desc()).limit(limit)
    rows = list(session.exec(stmt).all())
    rows.reverse()
    return rows


def serialize_round_result(result: RoundResult) -> dict[str, Any]:
    return {
        "id": result.id,
        "round_id": result.round_id,
        "sequence": result.sequence,
        "dilemma_id": result.dilemma_id,
        "dilemma_index": result.dilemma_index,
        "votes": {"A": result.votes_a, "B": result.votes_b},
        "participants": result.participants,
        "delta": result.delta,
        "metrics": result.metrics,
        "health": result.health,
        "status": result.status,
        "created_at": result.created_at,
    }
