"""Capture result data structures produced by the capture engine."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from visdiff.models.config import Viewport


class Dimensions(BaseModel):
    width: int = 0
    height: int = 0


class CaptureMetadata(BaseModel):
    dimensions: Dimensions = Field(default_factory=Dimensions)
    image_size_bytes: int = 0
    load_time_ms: int = 0


class CaptureResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    viewport: Viewport
    image: bytes = b""
    timestamp: datetime = Field(default_factory=datetime.now)
    metadata: CaptureMetadata = Field(default_factory=CaptureMetadata)
    success: bool
    error: Optional[str] = None


class CaptureSummary(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    results: list[CaptureResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[CaptureResult]) -> "CaptureSummary":
        successful = sum(1 for r in results if r.success)
        return cls(
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )
