"""Shared ecosystem state: five bounded metrics plus derived health.

Health and status are always computed from the metrics and never stored.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

METRICS = ("eco", "pollution", "inclusivity", "transparency", "innovation")

IMPACT_WEIGHTS = {
    "eco": 0.3,
    "pollution": -0.25,
    "inclusivity": 0.2,
    "transparency": 0.15,
    "innovation": 0.2,
}

DEFAULT_METRICS = {
    "eco": 10,
    "pollution": 5,
    "inclusivity": 10,
    "transparency": 8,
    "innovation": 6,
}

HEALTH_OFFSET = 50.0


@dataclass(frozen=True)
class EcosystemStatus:
    status: str
    color: str
    icon: str


# Lower bounds are exclusive: health must be strictly greater to qualify.
STATUS_LEVELS: tuple[tuple[float, EcosystemStatus], ...] = (
    (75.0, EcosystemStatus("Thriving", "#4CAF50", "🌿")),
    (50.0, EcosystemStatus("Stable", "#FF9800", "⚖️")),
    (25.0, EcosystemStatus("Stressed", "#FF5722", "⚠️")),
)
CRITICAL = EcosystemStatus("Critical", "#F44336", "🚨")


def status_for_health(health: float) -> EcosystemStatus:
    for threshold, status in STATUS_LEVELS:
        if health > threshold:
            return status
    return CRITICAL


def normalize_delta(raw: Any) -> dict[str, int]:
    """Keep known metrics with integer values; drop everything else."""

    if not isinstance(raw, Mapping):
        return {}
    delta: dict[str, int] = {}
    for metric in METRICS:
        value = raw.get(metric)
        if isinstance(value, bool) or value is None:
            continue
        try:
            delta[metric] = int(value)
        except (TypeError, ValueError):
            continue
    return delta


def clamp_metric(value: int, upper: int | None) -> int:
    value = max(0, value)
    if upper is not None:
        value = min(upper, value)
    return value


class EcosystemState(BaseModel):
    eco: int = DEFAULT_METRICS["eco"]
    pollution: int = DEFAULT_METRICS["pollution"]
    inclusivity: int = DEFAULT_METRICS["inclusivity"]
    transparency: int = DEFAULT_METRICS["transparency"]
    innovation: int = DEFAULT_METRICS["innovation"]
    last_round_id: str | None = None
    last_updated: int = 0

    @classmethod
    def from_payload(cls, raw: Any) -> "EcosystemState":
        """Build a state from a raw store value, defaulting anything invalid."""

        if not isinstance(raw, Mapping):
            return cls()
        fields: dict[str, Any] = dict(normalize_delta(raw))
        for metric, value in fields.items():
            fields[metric] = max(0, value)
        if isinstance(raw.get("last_round_id"), str):
            fields["last_round_id"] = raw["last_round_id"]
        try:
            fields["last_updated"] = int(raw.get("last_updated") or 0)
        except (TypeError, ValueError):
            pass
        try:
            return cls.model_validate(fields)
        except ValidationError as exc:
            logger.warning("invalid ecosystem payload, using defaults: %s", exc.errors()[:3])
            return cls()

    def metrics(self) -> dict[str, int]:
        return {metric: getattr(self, metric) for metric in METRICS}

    def calculate_health(self) -> float:
        health = sum(getattr(self, metric) * weight for metric, weight in IMPACT_WEIGHTS.items())
        return max(0.0, min(100.0, health + HEALTH_OFFSET))

    def get_status(self) -> EcosystemStatus:
        return status_for_health(self.calculate_health())

    def apply_delta(self, delta: Mapping[str, int], *, upper: int | None) -> "EcosystemState":
        """Return a new state with ``delta`` added and every metric clamped."""

        updated = {
            metric: clamp_metric(getattr(self, metric) + int(delta.get(metric, 0)), upper)
            for metric in METRICS
        }
        return self.model_copy(update=updated)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()

    def to_view(self, *, metric_max: int | None) -> dict[str, Any]:
        health = self.calculate_health()
        status = status_for_health(health)
        return {
            "metrics": self.metrics(),
            "metric_max": metric_max,
            "health": round(health, 2),
            "health_percent": round(health),
            "status": status.status,
            "color": status.color,
            "icon": status.icon,
            "last_updated": self.last_updated,
        }


# Per-player leaning: each axis sums the signed metric impacts feeding it.
ALIGNMENT_AXES: dict[str, dict[str, int]] = {
    "environmental": {"eco": 1, "pollution": -1},
    "social": {"inclusivity": 1, "transparency": 1},
    "economic": {"innovation": 1},
}


def alignment_shift(impact: Mapping[str, int]) -> dict[str, int]:
    return {
        axis: sum(sign * int(impact.get(metric, 0)) for metric, sign in metrics.items())
        for axis, metrics in ALIGNMENT_AXES.items()
    }
