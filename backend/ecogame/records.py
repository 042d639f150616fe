"""Tagged records for round and participant documents.

Raw store values are validated here before game logic touches them; a
malformed document is treated as absent rather than trusted.
"""

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .ecosystem import ALIGNMENT_AXES, METRICS, normalize_delta

logger = logging.getLogger(__name__)

OptionLabel = Literal["A", "B"]


class ChoiceRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    choice: OptionLabel
    impact: dict[str, int] = Field(default_factory=dict)
    player_id: str
    player_name: str = ""
    dilemma_id: int | None = None
    submitted_at: int = 0

    @field_validator("impact", mode="before")
    @classmethod
    def _known_metrics(cls, value: Any) -> dict[str, int]:
        return normalize_delta(value)


class Round(BaseModel):
    model_config = ConfigDict(extra="ignore")

    round_id: str
    sequence: int = 1
    dilemma_index: int
    started_at: int
    ends_at: int
    active: bool = True
    choices: dict[str, ChoiceRecord] = Field(default_factory=dict)

    @field_validator("choices", mode="before")
    @classmethod
    def _choices_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @classmethod
    def from_payload(cls, raw: Any) -> "Round | None":
        if raw is None:
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            logger.warning("ignoring malformed round record: %s", exc.errors()[:3])
            return None

    def is_open(self, now: int) -> bool:
        return self.active and self.started_at <= now <= self.ends_at

    def is_expired(self, now: int) -> bool:
        return now > self.ends_at

    def time_left_ms(self, now: int) -> int:
        if not self.active:
            return 0
        return max(0, self.ends_at - now)

    def votes(self) -> dict[str, int]:
        counts = {"A": 0, "B": 0}
        for record in self.choices.values():
            counts[record.choice] += 1
        return counts

    def progress(self, total: int) -> dict[str, Any]:
        submitted = len(self.choices)
        return {
            "submitted": submitted,
            "total": total,
            "ratio": round(submitted / total, 3) if total > 0 else 0.0,
        }

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()


class ParticipantStats(BaseModel):
    choices_made: int = 0
    total_impact: dict[str, int] = Field(default_factory=lambda: {metric: 0 for metric in METRICS})
    alignment: dict[str, int] = Field(default_factory=lambda: {axis: 0 for axis in ALIGNMENT_AXES})
    last_choice: dict[str, Any] | None = None


class Participant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    color: str
    joined_at: int = 0
    last_active: int = 0
    stats: ParticipantStats = Field(default_factory=ParticipantStats)

    @classmethod
    def from_payload(cls, raw: Any) -> "Participant | None":
        if raw is None:
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            logger.warning("ignoring malformed participant record: %s", exc.errors()[:3])
            return None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()
