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
SiteCast - record live web pages to video files.

This package drives a headless Chromium screencast into ffmpeg and
schedules recordings with a bounded number of concurrent captures.
"""

__version__ = "0.4.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"

from sitecast.core.browser import BrowserSession
from sitecast.core.encoder import Encoder, EncoderConfig, VideoFormat
from sitecast.core.models import CaptureFrame, RecordingRequest, RecordingResult
from sitecast.core.pipeline import Pipeline, PipelineConfig, record
from sitecast.core.relay import FrameRelay, PacingStrategy
from sitecast.core.scheduler import Job, JobScheduler, JobStatus, SchedulerConfig

__all__ = [
    # Core
    "BrowserSession",
    "Encoder",
    "EncoderConfig",
    "FrameRelay",
    "PacingStrategy",
    "Pipeline",
    "PipelineConfig",
    "VideoFormat",
    "record",
    # Models
    "CaptureFrame",
    "RecordingRequest",
    "RecordingResult",
    # Scheduling
    "Job",
    "JobScheduler",
    "JobStatus",
    "SchedulerConfig",
]
