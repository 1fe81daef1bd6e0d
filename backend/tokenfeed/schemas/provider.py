from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from tokenfeed.schemas.token import Asset


class RecordFailure(BaseModel):
    provider: str
    index: int
    reason: str


class SourceResult(BaseModel):
    """What one provider contributed to a merge pass."""

    provider: str
    tokens: list[Asset] = Field(default_factory=list)
    rejected: list[RecordFailure] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class EnrichmentOutcome(BaseModel):
    provider: str
    requested: int = 0
    filled: int = 0
    error: Optional[str] = None


class MergeReport(BaseModel):
    tokens: dict[str, Asset] = Field(default_factory=dict)
    sources: list[SourceResult] = Field(default_factory=list)
    enrichment: Optional[EnrichmentOutcome] = None

    def ordered(self) -> list[Asset]:
        return list(self.tokens.values())
