"""Comparison and report data structures."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from visdiff.models.capture import Dimensions


class ComparisonPair(BaseModel):
    baseline: bytes
    current: bytes
    identifier: str


class ComparisonResult(BaseModel):
    identifier: str = ""
    passed: bool = False
    difference: float = Field(default=0.0, ge=0, le=1)
    diff_image: Optional[bytes] = None
    dimensions: Dimensions = Field(default_factory=Dimensions)
    pixels_different: int = Field(default=0, ge=0)
    error: Optional[str] = None  # set for missing baselines and undecodable images


class ReportSummary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    new: int = 0

    @classmethod
    def from_results(cls, results: list[ComparisonResult]) -> "ReportSummary":
        return cls(
            total=len(results),
            passed=sum(1 for r in results if r.passed),
            failed=sum(1 for r in results if not r.passed and not r.error),
            new=sum(1 for r in results if r.error),
        )


class Report(BaseModel):
    timestamp: datetime
    results: list[ComparisonResult] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)
