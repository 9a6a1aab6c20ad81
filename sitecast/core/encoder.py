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

"""FFmpeg encoder for SiteCast.

This module turns a stream of independently-compressed stills into one
finished video file:
- Argument composition for ffmpeg (input framing, filter chain, codec flags)
- Crop -> frame-rate normalization -> lanczos scale filter ordering
- H.264/MP4 and VP9/WebM output
- Async process lifecycle with bounded exit waits and forced kills
- Output verification independent of the exit code
"""

from __future__ import annotations

import asyncio
import errno
import os
import re
import shutil
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Deque, List, Optional, Union

from sitecast.core.models import make_even
from sitecast.exceptions import DiskSpaceError, EncoderError, EncoderTimeoutError, OutputError
from sitecast.utils.logger import logger

_LINE_BREAK = re.compile(r"[\r\n]")


class VideoFormat(str, Enum):
    """Supported output containers."""

    MP4 = "mp4"             # H.264 in MP4, widely compatible
    WEBM = "webm"           # VP9 in WebM, open alternative

    @property
    def extension(self) -> str:
        return self.value

    def get_encoder(self) -> str:
        """Get ffmpeg encoder name."""
        encoders = {
            VideoFormat.MP4: "libx264",
            VideoFormat.WEBM: "libvpx-vp9",
        }
        return encoders[self]

    @property
    def default_crf(self) -> int:
        return 23 if self is VideoFormat.MP4 else 32


class InputTiming(str, Enum):
    """How ffmpeg assigns timestamps to piped frames."""

    WALLCLOCK = "wallclock"  # Arrival time, rate-normalized by the fps filter
    NOMINAL = "nominal"      # Every frame is exactly 1/frame_rate long


@dataclass(frozen=True)
class CropRect:
    """Region of the viewport kept before scaling."""

    x: int
    y: int
    width: int
    height: int

    def to_filter(self) -> str:
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"


@dataclass
class EncoderConfig:
    """Configuration for one ffmpeg encode.

    Attributes:
        output_path: Destination file
        width: Output width in pixels (forced even)
        height: Output height in pixels (forced even)
        frame_rate: Target output frames per second
        video_format: Container/codec pair
        crf: Constant Rate Factor (format default when None)
        preset: x264 preset, ignored for VP9
        pixel_format: Pixel format for encoding
        crop: Optional crop rectangle applied before scaling
        input_codec: Codec of the piped stills
        input_timing: Wall-clock or nominal input timestamps
        max_duration: Optional cap on the output duration in seconds
        ffmpeg_path: Path to ffmpeg binary (auto-detected if None)
        verbose: Let ffmpeg log at info level instead of error
    """

    output_path: Union[str, Path]
    width: int = 1920
    height: int = 1080
    frame_rate: int = 25
    video_format: VideoFormat = VideoFormat.MP4
    crf: Optional[int] = None
    preset: str = "veryfast"
    pixel_format: str = "yuv420p"
    crop: Optional[CropRect] = None
    input_codec: str = "mjpeg"
    input_timing: InputTiming = InputTiming.WALLCLOCK
    max_duration: Optional[float] = None
    ffmpeg_path: Optional[str] = None
    verbose: bool = False

    def __post_init__(self) -> None:
        self.width = make_even(self.width)
        self.height = make_even(self.height)
        if self.crf is None:
            self.crf = self.video_format.default_crf
        if not self.ffmpeg_path:
            self.ffmpeg_path = self._find_ffmpeg()

    @staticmethod
    def _find_ffmpeg() -> str:
        """Find ffmpeg binary in system PATH."""
        ffmpeg_path = shutil.which("ffmpeg")
        if not ffmpeg_path:
            raise EncoderError(
                "ffmpeg not found in PATH. Please install ffmpeg or provide ffmpeg_path."
            )
        return ffmpeg_path


def build_filter_chain(config: EncoderConfig) -> str:
    """Compose the -vf string: crop, then fps, then scale.

    Cropping first keeps discarded pixels out of the resampler, and
    normalizing the rate before scaling means duplicated frames are
    scaled only once.
    """
    filters = []
    if config.crop is not None:
        filters.append(config.crop.to_filter())
    filters.append(f"fps={config.frame_rate}")
    filters.append(f"scale={config.width}:{config.height}:flags=lanczos")
    return ",".join(filters)


def build_quality_args(config: EncoderConfig) -> List[str]:
    """Codec-specific encoder and quality flags."""
    encoder = config.video_format.get_encoder()
    if config.video_format is VideoFormat.WEBM:
        return [
            "-c:v", encoder,
            "-deadline", "realtime",
            "-cpu-used", "8",
            "-crf", str(config.crf),
            "-b:v", "0",
        ]
    return [
        "-c:v", encoder,
        "-preset", config.preset,
        "-crf", str(config.crf),
        "-movflags", "+faststart",
    ]


def build_ffmpeg_command(config: EncoderConfig) -> List[str]:
    """Build the full ffmpeg argument list.

    Order: log level, input timing, input framing, input codec, stdin
    source, optional duration cap, filter chain, output rate, codec flags,
    pixel format, destination.
    """
    cmd = [config.ffmpeg_path, "-loglevel", "info" if config.verbose else "error"]

    if config.input_timing is InputTiming.WALLCLOCK:
        cmd.extend(["-use_wallclock_as_timestamps", "1", "-fflags", "+genpts"])
    else:
        cmd.extend(["-framerate", str(config.frame_rate)])

    cmd.extend([
        "-f", "image2pipe",
        "-c:v", config.input_codec,
        "-i", "-",
    ])

    if config.max_duration:
        cmd.extend(["-t", f"{config.max_duration:.3f}"])

    cmd.extend([
        "-vf", build_filter_chain(config),
        "-r", str(config.frame_rate),
    ])
    cmd.extend(build_quality_args(config))
    cmd.extend(["-pix_fmt", config.pixel_format, "-y", str(config.output_path)])
    return cmd


def verify_output(path: Union[str, Path]) -> int:
    """Check that an encode produced a usable file.

    Returns:
        File size in bytes

    Raises:
        OutputError: If the file is missing or empty
    """
    path = Path(path)
    if not path.exists():
        raise OutputError(f"Output file was not created: {path}")
    size = path.stat().st_size
    if size == 0:
        raise OutputError(f"Output file is empty: {path}")
    return size


class Encoder:
    """One ffmpeg process reading stills from stdin.

    The process is owned by a single pipeline. Use it as an async context
    manager so the process is killed on every exit path:

        >>> async with Encoder(config) as encoder:
        ...     encoder.stdin.write(jpeg_bytes)
        ...     exit_code = await encoder.wait(timeout=30)
    """

    STDERR_TAIL_LINES = 20
    STDERR_CHUNK_SIZE = 4096

    def __init__(self, config: EncoderConfig) -> None:
        self.config = config
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_lines: Deque[str] = deque(maxlen=self.STDERR_TAIL_LINES)
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def stdin(self) -> Optional[asyncio.StreamWriter]:
        return self._process.stdin if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_lines)

    async def start(self) -> None:
        """Spawn ffmpeg.

        Raises:
            EncoderError: If the binary cannot be executed
            DiskSpaceError: If the OS reports no space left
        """
        if self._process is not None:
            raise EncoderError("Encoder already started")

        cmd = build_ffmpeg_command(self.config)
        logger.info(f"[ENCODER] FFmpeg command: {' '.join(cmd)}")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise EncoderError(f"FFmpeg not found at {self.config.ffmpeg_path}") from e
        except PermissionError as e:
            raise EncoderError(f"Permission denied starting FFmpeg: {e}") from e
        except OSError as e:
            if e.errno == errno.ENOSPC:
                raise DiskSpaceError("No space left on device") from e
            raise EncoderError(f"Failed to start FFmpeg: {e}") from e

        self._stderr_task = asyncio.create_task(self._read_stderr())
        logger.debug(f"[ENCODER] FFmpeg started (pid {self._process.pid})")

    async def _read_stderr(self) -> None:
        """Keep the stderr pipe empty and remember its last lines."""
        stream = self._process.stderr if self._process else None
        if stream is None:
            return
        # Progress stats are separated by \r only, so read chunks, not lines
        partial = ""
        try:
            while True:
                chunk = await stream.read(self.STDERR_CHUNK_SIZE)
                if not chunk:
                    break
                parts = _LINE_BREAK.split(partial + chunk.decode("utf-8", errors="ignore"))
                partial = parts.pop()[-self.STDERR_CHUNK_SIZE:]
                for part in parts:
                    self._remember_stderr(part)
        except OSError as e:
            logger.debug(f"[ENCODER] stderr reader stopped: {e}")
        self._remember_stderr(partial)

    def _remember_stderr(self, text: str) -> None:
        line = text.strip()
        if not line:
            return
        self._stderr_lines.append(line)
        if self.config.verbose:
            logger.debug(f"[ENCODER] {line}")

    async def exited(self) -> int:
        """Wait, without a bound, for the process to exit."""
        if self._process is None:
            raise EncoderError("Encoder not started")
        return await self._process.wait()

    async def wait(self, timeout: float) -> int:
        """Wait for ffmpeg to finish writing the file.

        Args:
            timeout: Seconds to wait before killing the process

        Returns:
            Process exit code

        Raises:
            EncoderTimeoutError: If the process had to be killed
        """
        if self._process is None:
            raise EncoderError("Encoder not started")

        try:
            exit_code = await asyncio.wait_for(self._process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[ENCODER] FFmpeg did not exit within {timeout:.1f}s, killing...")
            await self.kill()
            raise EncoderTimeoutError(
                f"Encoder did not finish within {timeout:.1f}s",
                exit_code=self.returncode,
                stderr_tail=self.stderr_tail,
            )

        await self._finish_stderr()
        logger.debug(f"[ENCODER] FFmpeg exited with code {exit_code}")
        return exit_code

    def check_exit_code(self, exit_code: int) -> None:
        """Raise EncoderError for any non-zero exit code."""
        if exit_code != 0:
            message = f"Encoder exited with code {exit_code}"
            tail = self.stderr_tail
            if tail:
                message += f": {tail.splitlines()[-1]}"
            raise EncoderError(message, exit_code=exit_code, stderr_tail=tail)

    async def kill(self) -> None:
        """Force-terminate ffmpeg. Safe to call repeatedly."""
        if self._process and self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.error(f"[ENCODER] FFmpeg (pid {self._process.pid}) ignored SIGKILL")
        await self._finish_stderr()

    async def _finish_stderr(self) -> None:
        if self._stderr_task and not self._stderr_task.done():
            try:
                await asyncio.wait_for(self._stderr_task, timeout=1.0)
            except asyncio.TimeoutError:
                self._stderr_task.cancel()

    async def __aenter__(self) -> "Encoder":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.is_running:
            logger.warning("[ENCODER] Releasing FFmpeg that is still running")
        await self.kill()


def check_disk_space(path: Union[str, Path], min_bytes: int = 100 * 1024 * 1024) -> bool:
    """Check if there's sufficient disk space.

    Args:
        path: Path to check
        min_bytes: Minimum required bytes (default 100MB)

    Returns:
        True if sufficient space available
    """
    try:
        stat = os.statvfs(str(path))
        available = stat.f_bavail * stat.f_frsize
        return available >= min_bytes
    except (OSError, AttributeError):
        # On Windows or if statvfs fails, assume OK
        return True
