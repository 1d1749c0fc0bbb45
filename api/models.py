"""Pydantic schemas for the SlideSync viewer API."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class PdfVideoMatchingModel(BaseModel):
    """One interval of a video during which a page of the document is shown."""

    video_offset_ms: int = Field(..., ge=0, description="Start of the interval within the video.")
    pdf_hash: str = Field(..., description="SHA-256 of the document the page belongs to.")
    video_hash: str = Field(..., description="SHA-256 of the video.")
    page_idx: int = Field(..., ge=0, description="0-based page index within the document.")
    duration_ms: Optional[int] = Field(
        None,
        ge=0,
        description="Length of the interval; null when the stored timeline has no following entry.",
    )


class HealthResponse(BaseModel):
    ok: bool = Field(True, description="Indicates the API server is reachable.")
    version: str = Field(..., description="Application version string.")
