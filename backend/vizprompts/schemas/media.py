"""Pydantic models for media entering the pipeline.

MediaAsset is the validated upload; Frame is one sampled still image.
Both are frozen: frames are immutable once produced and the asset is
consumed once by the sampler.
"""

import base64
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

MediaCategory = Literal["video", "image"]


def category_for_mime(mime_type: str) -> MediaCategory | None:
    """Return the media category for a declared content type, or None."""
    major = mime_type.split("/", 1)[0].strip().lower()
    if major == "video":
        return "video"
    if major == "image":
        return "image"
    return None


class MediaAsset(BaseModel):
    """An uploaded video or image, held in memory until sampled."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    mime_type: str
    category: MediaCategory
    filename: str = "upload"

    @computed_field
    @property
    def size(self) -> int:
        return len(self.data)


class Frame(BaseModel):
    """A single still image sampled from a MediaAsset."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    mime_type: str = "image/png"
    index: int = Field(ge=0, description="Ordinal position within the source asset")
    timestamp: float = Field(default=0.0, ge=0.0, description="Capture time in seconds")

    def to_data_uri(self) -> str:
        """Encode the frame as a data URI (used for history thumbnails)."""
        b64 = base64.b64encode(self.data).decode()
        return f"data:{self.mime_type};base64,{b64}"


class MediaInfo(BaseModel):
    """Preview metadata for a selected asset (resolution and duration)."""

    model_config = ConfigDict(frozen=True)

    category: MediaCategory
    width: int
    height: int
    frame_count: int = 1
    fps: float = 0.0
    duration: float = Field(default=0.0, description="Seconds; 0 for stills")
