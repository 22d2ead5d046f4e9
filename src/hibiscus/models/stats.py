"""UsageStats entity - generation counters mirrored to the gallery server."""

from pydantic import BaseModel, Field


class UsageStats(BaseModel):
    """Counters for delivered assets."""

    images: int = Field(default=0, ge=0)
    videos: int = Field(default=0, ge=0)
    downloads: int = Field(default=0, ge=0)
