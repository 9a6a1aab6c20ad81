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
Pydantic models for the SiteCast REST API.

Request bodies use the camelCase names clients already send
(``cropX``, ``viewportWidth``...). Every field of the recording body is
optional at this layer so that a missing URL is reported as a plain 400
by the scheduler's own validation rather than a schema error.

Example:
    >>> body = RecordBody(url="https://example.com", cropX=10)
    >>> body.model_dump(by_alias=True, exclude_none=True)
    {'url': 'https://example.com', 'cropX': 10}
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RecordBody(BaseModel):
    """Body of POST /api/record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: Optional[str] = Field(None, description="Page to record")
    duration: Optional[int] = Field(None, description="Recording length in milliseconds")
    width: Optional[int] = Field(None, description="Output width in pixels")
    height: Optional[int] = Field(None, description="Output height in pixels")
    crop_x: Optional[int] = Field(None, alias="cropX", description="Crop offset from the left")
    crop_y: Optional[int] = Field(None, alias="cropY", description="Crop offset from the top")
    viewport_width: Optional[int] = Field(None, alias="viewportWidth", description="Browser viewport width")
    viewport_height: Optional[int] = Field(None, alias="viewportHeight", description="Browser viewport height")


class RecordResponse(BaseModel):
    """Response of POST /api/record."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(True, description="Whether the job was accepted")
    job_id: int = Field(..., alias="jobId", description="Id of the new job")
    status: str = Field("queued", description="Initial job status")


class QueueResponse(BaseModel):
    """Response of GET /api/queue."""

    jobs: List[Dict[str, Any]] = Field(default_factory=list, description="All jobs, most recent first")
    status: Dict[str, Any] = Field(default_factory=dict, description="Job counts per state")


class RecordingFile(BaseModel):
    """One finished video in the output directory."""

    name: str = Field(..., description="File name")
    path: str = Field(..., description="Path on the server")
    size: int = Field(..., description="Size in bytes")
    created: str = Field(..., description="Last modification time, ISO 8601 UTC")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    scheduler: Dict[str, Any] = Field(default_factory=dict, description="Scheduler statistics")


class ErrorResponse(BaseModel):
    """Error response."""

    success: bool = Field(False, description="Always false")
    error: str = Field(..., description="Error message")
