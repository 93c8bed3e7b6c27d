from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

PointId = int | str
VoiceRole = Literal["bass", "harmony", "melody"]
SessionState = Literal["idle", "priming", "playing", "stopped"]


class Point(BaseModel):
    """An entity with a title and the names it links to.

    ``links`` keeps first-seen order; that order decides how shared links are
    listed in a :class:`Gap`. ``position`` is reassigned by the force layout.
    """

    id: PointId
    title: str
    links: tuple[str, ...] = ()
    position: tuple[float, float] = (0.0, 0.0)

    model_config = ConfigDict(extra="forbid")

    @field_validator("links", mode="before")
    @classmethod
    def _dedupe_links(cls, value: object) -> object:
        match value:
            case str():
                raise ValueError("links must be a collection of names, not a string")
            case set() | frozenset():
                return tuple(dict.fromkeys(sorted(value)))
            case Sequence():
                return tuple(dict.fromkeys(value))
            case _:
                return value

    @property
    def link_set(self) -> frozenset[str]:
        return frozenset(self.links)


class Gap(BaseModel):
    id: str
    origin: Point
    target: Point
    center: tuple[float, float]
    distance: float
    semantic_similarity: float
    shared_links: tuple[str, ...]

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def is_finite(self) -> bool:
        return all(
            math.isfinite(value)
            for value in (self.distance, self.semantic_similarity, *self.center)
        )


class VoiceDescriptor(BaseModel):
    role: VoiceRole
    label: str
    timbre: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class PositionedPoint(BaseModel):
    id: PointId
    title: str
    x: float = Field(allow_inf_nan=True)
    y: float = Field(allow_inf_nan=True)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_point(cls, point: Point) -> "PositionedPoint":
        x, y = point.position
        return cls(id=point.id, title=point.title, x=x, y=y)


POINT_LIST = TypeAdapter(list[Point])
