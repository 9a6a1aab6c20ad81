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

"""Custom exceptions for SiteCast.

This module defines the exception hierarchy used throughout SiteCast.
All exceptions inherit from SiteCastError for easy catching and handling.

Exception Hierarchy:
    SiteCastError (base)
    ├── InvalidRequestError - Malformed recording requests
    ├── BrowserError - Rendering engine errors
    │   ├── BrowserLaunchError - Engine failed to start
    │   └── BrowserDisconnectedError - Engine or transport died mid-capture
    ├── NavigationError - Page load failures (logged, never fatal)
    ├── EncoderError - ffmpeg exited abnormally
    │   └── EncoderTimeoutError - ffmpeg did not finish in time
    ├── OutputError - Missing or empty output file
    ├── DiskSpaceError - Not enough room for the output
    └── JobStateError - Illegal job transition or submission after shutdown

Example:
    try:
        result = await pipeline.run(request)
    except EncoderError as e:
        logger.error(f"Encoder failed with exit code {e.exit_code}")
    except SiteCastError:
        # Catch all SiteCast errors
        pass
"""

from typing import Optional


class SiteCastError(Exception):
    """Base exception for all SiteCast errors.

    The scheduler catches this (and any other exception) at the pipeline
    boundary and records ``str(error)`` as the job's failure message.
    """
    pass


class InvalidRequestError(SiteCastError):
    """Exception raised when a recording request has an invalid shape.

    This is the only error surfaced synchronously by ``JobScheduler.submit``.

    Examples:
        - URL missing or not absolute
        - Non-positive duration
        - Crop rectangle outside the viewport
    """
    pass


class BrowserError(SiteCastError):
    """Exception raised for rendering-engine errors."""
    pass


class BrowserLaunchError(BrowserError):
    """Exception raised when the browser cannot be started.

    Fatal to the job; no pipeline is created and no retry is attempted.
    """
    pass


class BrowserDisconnectedError(BrowserError):
    """Exception raised when the browser or its transport dies mid-capture."""
    pass


class NavigationError(SiteCastError):
    """Exception describing a failed or timed-out navigation.

    Navigation failures are tolerated: the session logs them and capture
    continues with whatever has rendered.
    """
    pass


class EncoderError(SiteCastError):
    """Exception raised when the ffmpeg process exits abnormally.

    Attributes:
        exit_code: Process exit code (negative when killed by a signal)
        stderr_tail: Last lines ffmpeg wrote to stderr
    """

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stderr_tail: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail


class EncoderTimeoutError(EncoderError):
    """Exception raised when ffmpeg does not exit within its drain timeout.

    The process is force-killed before this is raised.
    """
    pass


class OutputError(SiteCastError):
    """Exception raised when the output file is missing or empty."""
    pass


class DiskSpaceError(SiteCastError):
    """Exception raised when the output directory lacks free space."""
    pass


class JobStateError(SiteCastError):
    """Exception raised on an illegal job status transition.

    Also raised by ``JobScheduler.submit`` once shutdown has begun.
    """
    pass
