from enum import StrEnum
from typing import List, Optional

from pydantic import BaseModel, Field


class ResolutionState(StrEnum):
    ready = "ready"
    not_ready = "not_ready"
    error = "error"


class ProbeObservation(BaseModel):
    """Outcome of one HEAD probe against a candidate result URL."""

    url: str
    status: Optional[int] = None  # None when the request itself failed
    error: Optional[str] = None


class Resolution(BaseModel):
    state: ResolutionState
    url: Optional[str] = None
    detail: Optional[str] = None
    probes: List[ProbeObservation] = Field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return self.state == ResolutionState.ready

    @classmethod
    def ready(cls, url: str, probes: List[ProbeObservation]) -> "Resolution":
        return cls(state=ResolutionState.ready, url=url, probes=probes)

    @classmethod
    def not_ready(cls, probes: List[ProbeObservation], detail: Optional[str] = None) -> "Resolution":
        return cls(state=ResolutionState.not_ready, probes=probes, detail=detail)

    @classmethod
    def error(cls, detail: str) -> "Resolution":
        return cls(state=ResolutionState.error, detail=detail)


class PersistOutcome(BaseModel):
    durable_url: str
    used_fallback: bool = False
    reason: Optional[str] = None
