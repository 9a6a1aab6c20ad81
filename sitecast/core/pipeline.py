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
Capture-to-encode pipeline for SiteCast.

One Pipeline run records one RecordingRequest:

1. Reserve a unique output file under the output directory
2. Launch a BrowserSession with the requested viewport
3. Start an Encoder and a FrameRelay feeding its stdin
4. Navigate (non-fatal), let the page settle, start the screencast
5. Record for the requested duration, ending early if the encoder exits
   or the browser goes away
6. Stop the screencast, flush the relay, wait for the encoder
7. Verify the output file

Browser and encoder are registered on an AsyncExitStack as soon as they
exist, so they are released on every exit path.
"""

from __future__ import annotations

import asyncio
import os
import re
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from sitecast.core.browser import BrowserSession
from sitecast.core.encoder import (
    CropRect,
    Encoder,
    EncoderConfig,
    InputTiming,
    VideoFormat,
    check_disk_space,
    verify_output,
)
from sitecast.core.models import RecordingRequest, RecordingResult
from sitecast.core.relay import FrameRelay, PacingStrategy
from sitecast.exceptions import BrowserDisconnectedError, DiskSpaceError, OutputError
from sitecast.utils.logger import logger


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PipelineConfig:
    """Settings shared by every recording.

    Attributes:
        output_dir: Directory receiving finished videos
        frame_rate: Output frames per second
        jpeg_quality: Screencast JPEG quality (0-100)
        crf: Encoder quality, format default when None
        video_format: Output container/codec
        pacing: Frame pacing strategy
        input_timing: Encoder input timestamping
        settle_delay: Seconds to wait after navigation before capturing
        navigation_timeout_ms: Navigation timeout
        wait_until: Playwright load state that ends navigation
        flush_timeout: Seconds allowed to flush queued frames
        encoder_timeout: Seconds allowed for the encoder to finish the file
        max_pending_frames: Relay channel bound
        cap_duration: Pass the request duration to the encoder as -t
        suppress_motion: Shorten page animations and transitions
        chrome_path: Browser executable (auto-detected when None)
        ffmpeg_path: ffmpeg executable (auto-detected when None)
        min_free_bytes: Disk space required before starting
        verbose: Let ffmpeg log at info level
    """

    output_dir: Path = Path("./recordings")
    frame_rate: int = 25
    jpeg_quality: int = 60
    crf: Optional[int] = None
    video_format: VideoFormat = VideoFormat.MP4
    pacing: PacingStrategy = PacingStrategy.PASSTHROUGH
    input_timing: InputTiming = InputTiming.WALLCLOCK
    settle_delay: float = 3.0
    navigation_timeout_ms: int = 30000
    wait_until: str = "load"
    flush_timeout: float = 10.0
    encoder_timeout: float = 30.0
    max_pending_frames: int = 8
    cap_duration: bool = True
    suppress_motion: bool = True
    chrome_path: Optional[str] = None
    ffmpeg_path: Optional[str] = None
    min_free_bytes: int = 100 * 1024 * 1024
    verbose: bool = False

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        self.video_format = VideoFormat(self.video_format)
        self.pacing = PacingStrategy(self.pacing)
        self.input_timing = InputTiming(self.input_timing)

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create PipelineConfig from environment variables.

        Environment variables:
            SITECAST_OUTPUT_DIR: Output directory
            SITECAST_FRAME_RATE: Output frames per second
            SITECAST_JPEG_QUALITY: Screencast JPEG quality
            SITECAST_CRF: Encoder quality
            SITECAST_FORMAT: mp4 or webm
            SITECAST_PACING: passthrough or throttle
            SITECAST_INPUT_TIMING: wallclock or nominal
            SITECAST_SETTLE_DELAY: Seconds to wait after navigation
            SITECAST_NAVIGATION_TIMEOUT_MS: Navigation timeout
            SITECAST_FLUSH_TIMEOUT: Relay flush timeout (s)
            SITECAST_ENCODER_TIMEOUT: Encoder finish timeout (s)
            SITECAST_MAX_PENDING_FRAMES: Relay channel bound
            SITECAST_CAP_DURATION: Cap the encoder at the request duration
            SITECAST_SUPPRESS_MOTION: Shorten page animations
            SITECAST_FFMPEG_PATH: ffmpeg executable
            SITECAST_VERBOSE: Verbose encoder logging
            CHROME_PATH: Browser executable

        Returns:
            PipelineConfig with values from environment
        """
        crf = os.environ.get("SITECAST_CRF")
        return cls(
            output_dir=Path(os.environ.get("SITECAST_OUTPUT_DIR", "./recordings")),
            frame_rate=int(os.environ.get("SITECAST_FRAME_RATE", "25")),
            jpeg_quality=int(os.environ.get("SITECAST_JPEG_QUALITY", "60")),
            crf=int(crf) if crf else None,
            video_format=VideoFormat(os.environ.get("SITECAST_FORMAT", "mp4").lower()),
            pacing=PacingStrategy(os.environ.get("SITECAST_PACING", "passthrough").lower()),
            input_timing=InputTiming(os.environ.get("SITECAST_INPUT_TIMING", "wallclock").lower()),
            settle_delay=float(os.environ.get("SITECAST_SETTLE_DELAY", "3.0")),
            navigation_timeout_ms=int(os.environ.get("SITECAST_NAVIGATION_TIMEOUT_MS", "30000")),
            flush_timeout=float(os.environ.get("SITECAST_FLUSH_TIMEOUT", "10.0")),
            encoder_timeout=float(os.environ.get("SITECAST_ENCODER_TIMEOUT", "30.0")),
            max_pending_frames=int(os.environ.get("SITECAST_MAX_PENDING_FRAMES", "8")),
            cap_duration=_env_bool("SITECAST_CAP_DURATION", True),
            suppress_motion=_env_bool("SITECAST_SUPPRESS_MOTION", True),
            chrome_path=os.environ.get("CHROME_PATH") or None,
            ffmpeg_path=os.environ.get("SITECAST_FFMPEG_PATH") or None,
            verbose=_env_bool("SITECAST_VERBOSE", False),
        )


def output_filename(hostname: str, video_format: VideoFormat, now: Optional[datetime] = None) -> str:
    """
    Name a recording after its host and the current UTC time.

    Example:
        >>> output_filename("www.example.com", VideoFormat.MP4, datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc))
        'www_example_com_2024-05-01T12-30-00-000Z.mp4'
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    stamp = f"{stamp}.{now.microsecond // 1000:03d}Z"
    host = re.sub(r"[^\w]", "_", hostname, flags=re.ASCII)
    return f"{host}_{re.sub(r'[:.]', '-', stamp)}.{video_format.extension}"


def reserve_output_path(output_dir: Union[str, Path], filename: str) -> Path:
    """
    Create an empty file for a recording and return its path.

    The exclusive create means two jobs started in the same millisecond
    never share a file; the later one gets a numeric suffix.
    """
    output_dir = Path(output_dir)
    base = Path(filename)
    attempt = 0
    while True:
        name = filename if attempt == 0 else f"{base.stem}_{attempt}{base.suffix}"
        candidate = output_dir / name
        try:
            with open(candidate, "x"):
                pass
            return candidate
        except FileExistsError:
            attempt += 1


def list_recordings(output_dir: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Describe the finished video files in ``output_dir``, newest first.

    Empty files are skipped; they are reservations for recordings that
    have not written any output yet.
    """
    output_dir = Path(output_dir)
    if not output_dir.is_dir():
        return []

    extensions = {f".{fmt.extension}" for fmt in VideoFormat}
    recordings = []
    for path in output_dir.iterdir():
        if path.suffix not in extensions or not path.is_file():
            continue
        stat = path.stat()
        if stat.st_size == 0:
            continue
        recordings.append({
            "name": path.name,
            "path": str(path),
            "size": stat.st_size,
            "created": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
        })
    recordings.sort(key=lambda entry: entry["created"], reverse=True)
    return recordings


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"[PIPELINE] Could not remove {path}: {e}")


SessionFactory = Callable[[PipelineConfig], BrowserSession]
EncoderFactory = Callable[[EncoderConfig], Encoder]


def default_session_factory(config: PipelineConfig) -> BrowserSession:
    return BrowserSession(
        executable_path=config.chrome_path,
        suppress_motion=config.suppress_motion,
    )


class Pipeline:
    """
    Records one request into one video file.

    A Pipeline holds no per-job state between runs; every run builds and
    releases its own browser, relay and encoder.

    Example:
        >>> pipeline = Pipeline(PipelineConfig(output_dir=Path("/tmp/videos")))
        >>> result = await pipeline.run(RecordingRequest(url="https://example.com", duration=5000))
        >>> result.output_path
        PosixPath('/tmp/videos/example_com_...mp4')
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        session_factory: Optional[SessionFactory] = None,
        encoder_factory: Optional[EncoderFactory] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self._session_factory = session_factory or default_session_factory
        self._encoder_factory = encoder_factory or Encoder

    def encoder_config(self, request: RecordingRequest, output_path: Path) -> EncoderConfig:
        """Derive the encoder settings for one request."""
        crop = None
        if request.needs_crop:
            crop = CropRect(
                x=request.crop_x,
                y=request.crop_y,
                width=request.output_width,
                height=request.output_height,
            )
        return EncoderConfig(
            output_path=output_path,
            width=request.output_width,
            height=request.output_height,
            frame_rate=self.config.frame_rate,
            video_format=self.config.video_format,
            crf=self.config.crf,
            crop=crop,
            input_timing=self.config.input_timing,
            max_duration=request.duration_seconds if self.config.cap_duration else None,
            ffmpeg_path=self.config.ffmpeg_path,
            verbose=self.config.verbose,
        )

    async def run(self, request: RecordingRequest) -> RecordingResult:
        """
        Record a page.

        Returns:
            RecordingResult describing the finished file

        Raises:
            DiskSpaceError: If the output directory is short on space
            BrowserLaunchError: If the browser cannot be started
            BrowserDisconnectedError: If the browser died and no usable video exists
            EncoderError: If ffmpeg fails or has to be killed
            OutputError: If no usable file was produced
        """
        config = self.config
        config.output_dir.mkdir(parents=True, exist_ok=True)
        if not check_disk_space(config.output_dir, config.min_free_bytes):
            raise DiskSpaceError(f"Insufficient disk space in {config.output_dir}")

        output_path = reserve_output_path(
            config.output_dir, output_filename(request.hostname, config.video_format)
        )
        logger.info(
            f"[PIPELINE] Recording {request.url} for {request.duration_seconds:.1f}s\n"
            f"  Viewport: {request.even_viewport_width}x{request.even_viewport_height}\n"
            f"  Output: {request.output_width}x{request.output_height} -> {output_path.name}\n"
            f"  Crop: {f'{request.crop_x},{request.crop_y}' if request.needs_crop else 'none'}"
        )

        started = time.monotonic()
        succeeded = False
        try:
            result = await self._record(request, output_path)
            result.duration_seconds = time.monotonic() - started
            succeeded = True
        finally:
            if not succeeded:
                _discard(output_path)

        logger.info(
            f"[PIPELINE] Recording completed: {output_path} "
            f"({result.size_bytes} bytes, {result.frames_forwarded} frames)"
        )
        return result

    async def _record(self, request: RecordingRequest, output_path: Path) -> RecordingResult:
        config = self.config
        async with AsyncExitStack() as stack:
            session = self._session_factory(config)
            stack.push_async_callback(session.close)
            await session.launch(request.even_viewport_width, request.even_viewport_height)

            encoder = self._encoder_factory(self.encoder_config(request, output_path))
            await stack.enter_async_context(encoder)

            relay = FrameRelay(
                encoder.stdin,
                ack=session.ack,
                frame_rate=config.frame_rate,
                pacing=config.pacing,
                max_pending=config.max_pending_frames,
            )
            relay.start()
            stack.push_async_callback(relay.finish, 1.0)

            navigation_ok = await session.navigate(
                request.url, timeout_ms=config.navigation_timeout_ms, wait_until=config.wait_until
            )
            if config.settle_delay > 0:
                await asyncio.sleep(config.settle_delay)
            if session.disconnected.is_set():
                raise BrowserDisconnectedError("Browser disconnected before capture started")

            await session.start_screencast(relay.offer, quality=config.jpeg_quality)
            await self._wait_for_duration(request.duration_seconds, encoder, session)

            await session.stop_screencast()
            stats = await relay.finish(config.flush_timeout)
            exit_code = await encoder.wait(config.encoder_timeout)
            encoder.check_exit_code(exit_code)

            try:
                size = verify_output(output_path)
            except OutputError:
                if session.disconnected.is_set():
                    raise BrowserDisconnectedError("Browser disconnected during recording")
                raise OutputError(
                    f"Empty output. Captured {stats.forwarded} frames but no video generated"
                )

            return RecordingResult(
                output_path=output_path,
                size_bytes=size,
                frames_received=stats.received,
                frames_forwarded=stats.forwarded,
                frames_dropped=stats.dropped,
                navigation_ok=navigation_ok,
            )

    async def _wait_for_duration(
        self, duration: float, encoder: Encoder, session: BrowserSession
    ) -> None:
        """Sleep for the recording duration unless a collaborator dies first."""
        timer = asyncio.create_task(asyncio.sleep(duration))
        encoder_exit = asyncio.create_task(encoder.exited())
        browser_gone = asyncio.create_task(session.disconnected.wait())
        waiters = {timer, encoder_exit, browser_gone}
        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in waiters:
                task.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        if encoder_exit in done and timer not in done:
            logger.warning(f"[PIPELINE] Encoder exited early (code {encoder.returncode})")
        elif browser_gone in done and timer not in done:
            logger.warning("[PIPELINE] Browser went away during recording")


async def record(request: RecordingRequest, config: Optional[PipelineConfig] = None) -> RecordingResult:
    """Record one request with a fresh Pipeline."""
    return await Pipeline(config).run(request)
