# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Data model shared by the capture pipeline and the job scheduler.

RecordingRequest is validated with pydantic and frozen once accepted, so the
scheduler can hand the same instance to a pipeline without copying it.
CaptureFrame and RecordingResult are plain dataclasses: frames are transient
and never leave the relay, results are produced once per finished pipeline.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from sitecast.exceptions import InvalidRequestError

DEFAULT_DURATION_MS = 30000
DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080

_ZERO_MEANS_DEFAULT = frozenset({
    "duration",
    "width",
    "height",
    "viewportWidth",
    "viewport_width",
    "viewportHeight",
    "viewport_height",
})


def make_even(value: int) -> int:
    """Round a pixel dimension down to the nearest even number.

    yuv420p and the other chroma-subsampled formats reject odd sizes.
    """
    return value if value % 2 == 0 else value - 1


class RecordingRequest(BaseModel):
    """
    A request to record a page for a fixed duration.

    Field names are snake_case; the camelCase names used on the wire
    (``cropX``, ``viewportWidth``...) are accepted as aliases.

    Example:
        >>> request = RecordingRequest(url="https://example.com", duration=5000)
        >>> request.viewport_width
        1920
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    url: str = Field(..., description="Absolute http(s) URL to record")
    duration: int = Field(DEFAULT_DURATION_MS, gt=0, description="Recording length in milliseconds")
    width: int = Field(DEFAULT_WIDTH, ge=2, description="Output width in pixels")
    height: int = Field(DEFAULT_HEIGHT, ge=2, description="Output height in pixels")
    crop_x: int = Field(0, ge=0, alias="cropX", description="Crop offset from the left edge")
    crop_y: int = Field(0, ge=0, alias="cropY", description="Crop offset from the top edge")
    viewport_width: int = Field(DEFAULT_WIDTH, ge=2, alias="viewportWidth", description="Browser viewport width")
    viewport_height: int = Field(DEFAULT_HEIGHT, ge=2, alias="viewportHeight", description="Browser viewport height")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("URL is required")
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError("Invalid URL format")
        return value

    @model_validator(mode="after")
    def _check_crop(self) -> "RecordingRequest":
        if self.needs_crop:
            if self.crop_x + self.output_width > self.even_viewport_width:
                raise ValueError("Crop rectangle exceeds viewport width")
            if self.crop_y + self.output_height > self.even_viewport_height:
                raise ValueError("Crop rectangle exceeds viewport height")
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RecordingRequest":
        """
        Build a request from loosely-typed input such as a JSON body.

        Keys whose value is None fall back to their defaults, and so does
        a zero duration or size.

        Raises:
            InvalidRequestError: If the data does not describe a valid request
        """
        cleaned = {
            key: value
            for key, value in data.items()
            if value is not None and not (key in _ZERO_MEANS_DEFAULT and value == 0)
        }
        if not cleaned.get("url"):
            raise InvalidRequestError("URL is required")
        try:
            return cls.model_validate(cleaned)
        except ValidationError as e:
            messages = "; ".join(
                str(error["msg"]).removeprefix("Value error, ") for error in e.errors()
            )
            raise InvalidRequestError(messages) from e

    @property
    def output_width(self) -> int:
        return make_even(self.width)

    @property
    def output_height(self) -> int:
        return make_even(self.height)

    @property
    def even_viewport_width(self) -> int:
        return make_even(self.viewport_width)

    @property
    def even_viewport_height(self) -> int:
        return make_even(self.viewport_height)

    @property
    def needs_crop(self) -> bool:
        """Whether the encoder has to cut a region out of the viewport."""
        return (
            self.crop_x > 0
            or self.crop_y > 0
            or self.output_width != self.even_viewport_width
            or self.output_height != self.even_viewport_height
        )

    @property
    def duration_seconds(self) -> float:
        return self.duration / 1000.0

    @property
    def hostname(self) -> str:
        return urlparse(self.url).hostname or ""


@dataclass
class CaptureFrame:
    """A single compressed frame pushed by the rendering engine.

    Attributes:
        data: JPEG (or PNG) bytes as produced by the screencast
        timestamp: Monotonic arrival time in seconds
        sequence: Arrival order within one session, starting at 1
        ack_token: Engine-side id that must be acknowledged
    """

    data: bytes
    sequence: int
    timestamp: float = field(default_factory=time.monotonic)
    ack_token: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class RecordingResult:
    """Outcome of a successful pipeline run."""

    output_path: Path
    size_bytes: int
    frames_received: int = 0
    frames_forwarded: int = 0
    frames_dropped: int = 0
    duration_seconds: float = 0.0
    navigation_ok: bool = True

    @property
    def file_name(self) -> str:
        return self.output_path.name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "output_path": str(self.output_path),
            "file_name": self.file_name,
            "size_bytes": self.size_bytes,
            "frames_received": self.frames_received,
            "frames_forwarded": self.frames_forwarded,
            "frames_dropped": self.frames_dropped,
            "duration_seconds": self.duration_seconds,
            "navigation_ok": self.navigation_ok,
        }
