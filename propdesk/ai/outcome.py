"""Result of an AI-backed step: the model's answer or the deterministic fallback."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from propdesk.airtable_schema import ResultSource

T = TypeVar("T")


@dataclass(frozen=True)
class AiSucceeded(Generic[T]):
    value: T

    @property
    def degraded(self) -> bool:
        return False

    @property
    def source(self) -> ResultSource:
        return ResultSource.AI


@dataclass(frozen=True)
class FallbackUsed(Generic[T]):
    value: T
    reason: str

    @property
    def degraded(self) -> bool:
        return True

    @property
    def source(self) -> ResultSource:
        return ResultSource.FALLBACK


Outcome = Union[AiSucceeded[T], FallbackUsed[T]]
