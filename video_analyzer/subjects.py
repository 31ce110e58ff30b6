"""Subject model: the video being analyzed.

A subject mirrors one row of the dashboard's video table. Its format
(short-form vs long-form) is derived from the ISO 8601 duration the
platform reports, e.g. "PT45S" or "PT15M42S".
"""

import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

# Videos at or under this length are treated as short-form.
SHORTS_MAX_SECONDS = 60

_ISO_DURATION_RE = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$")


class FormatType(str, Enum):
    """Classification of a subject by length."""
    SHORT = "short"
    LONG = "long"


def parse_iso_duration(duration: Optional[str]) -> Optional[int]:
    """Parse an ISO 8601 duration ("PT1H2M3S") into seconds.

    Returns None for empty or unrecognized values.
    """
    if not duration:
        return None
    match = _ISO_DURATION_RE.match(duration.strip())
    if not match or not any(match.groups()):
        return None
    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = int(match.group(3) or 0)
    return hours * 3600 + minutes * 60 + seconds


def classify_format(duration_seconds: Optional[int]) -> FormatType:
    """Unknown durations are classified as long-form."""
    if duration_seconds is not None and duration_seconds <= SHORTS_MAX_SECONDS:
        return FormatType.SHORT
    return FormatType.LONG


class Subject(BaseModel):
    """A content item (video) as seen by the analysis layer."""

    id: str = Field(..., description="Dashboard row id of the video")
    youtube_video_id: str = ""
    title: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    view_count: Optional[int] = None
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    duration: Optional[str] = Field(
        default=None,
        description="ISO 8601 duration as reported by the platform",
    )
    published_at: Optional[str] = None
    thumbnail_url: Optional[str] = None
    category_id: Optional[str] = None

    @property
    def duration_seconds(self) -> Optional[int]:
        return parse_iso_duration(self.duration)

    @property
    def format_type(self) -> FormatType:
        return classify_format(self.duration_seconds)

    def analyzable_fields(self) -> dict[str, Any]:
        """Fields an analysis run or scoring engine is allowed to see."""
        return {
            "youtubeVideoId": self.youtube_video_id,
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "viewCount": self.view_count,
            "likeCount": self.like_count,
            "commentCount": self.comment_count,
            "duration": self.duration,
            "durationSeconds": self.duration_seconds,
            "videoType": self.format_type.value,
            "publishedAt": self.published_at,
            "thumbnailUrl": self.thumbnail_url,
        }
