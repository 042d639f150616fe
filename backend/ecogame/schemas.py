"""Pydantic request schemas for frontend-exposed API endpoints."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class PlayerJoin(BaseModel):
    model_config = ConfigDict(extra="forbid")

    participant_id: str | None = Field(default=None, pattern=r"^[A-Za-z0-9_-]{1,80}$")
    name: str | None = Field(default=None, min_length=1, max_length=40)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class PlayerRename(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=40)


class ChoiceCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    participant_id: str = Field(min_length=1)
    option: Literal["A", "B"]
