from pydantic import BaseModel, Field


class QuotaReservation(BaseModel):
    scope: str
    remaining: int
    ok: bool


class QuotaAllowance(BaseModel):
    scope: str
    remainingTrials: int = Field(ge=0)
