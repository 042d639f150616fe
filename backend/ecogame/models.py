from typing import Any, Optional

from sqlmodel import Field, JSON, SQLModel


class Document(SQLModel, table=True):
    """One document of the shared store, addressed by a slash-separated path."""

    path: str = Field(primary_key=True)
    value: Any = Field(default=None, sa_type=JSON)
    version: int = Field(default=1)


class RoundResult(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    round_id: str = Field(index=True, unique=True)
    sequence: int = Field(default=0)
    dilemma_id: int
    dilemma_index: int
    votes_a: int = Field(default=0)
    votes_b: int = Field(default=0)
    participants: int = Field(default=0)
    delta: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    metrics: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    health: float = Field(default=0.0)
    status: str = ""
    created_at: str = ""
