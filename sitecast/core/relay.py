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
Frame relay between the screencast and the encoder.

Frames arrive as push events from the rendering engine, which stops sending
new ones until earlier ones are acknowledged. The relay therefore never
blocks the event callback: each frame is acknowledged at once and either
placed on a small bounded queue or dropped. A single writer task drains the
queue into the encoder's stdin in arrival order.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sitecast.core.models import CaptureFrame
from sitecast.utils.logger import logger


class PacingStrategy(str, Enum):
    """How arriving frames are thinned before reaching the encoder."""

    PASSTHROUGH = "passthrough"  # Forward everything, encoder fixes the rate
    THROTTLE = "throttle"        # Forward at most one frame per target interval


@dataclass
class RelayStats:
    """Frame counters for one relay."""

    received: int = 0
    forwarded: int = 0
    dropped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "received": self.received,
            "forwarded": self.forwarded,
            "dropped": self.dropped,
        }


class FrameRelay:
    """
    Bounded, drop-but-acknowledge bridge from frame events to a byte sink.

    The sink is an ``asyncio.StreamWriter`` (the encoder's stdin). A broken
    pipe closes the sink for good; every later frame is acknowledged and
    dropped.

    Example:
        >>> relay = FrameRelay(encoder.stdin, ack=session.ack, frame_rate=25)
        >>> relay.start()
        >>> await session.start_screencast(relay.offer)
        >>> ...
        >>> stats = await relay.finish(timeout=10)
    """

    def __init__(
        self,
        sink: asyncio.StreamWriter,
        ack: Callable[[CaptureFrame], None],
        frame_rate: int = 25,
        pacing: PacingStrategy = PacingStrategy.PASSTHROUGH,
        max_pending: int = 8,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            sink: Stream receiving the raw frame bytes
            ack: Called once per received frame, synchronously
            frame_rate: Target output rate, used by THROTTLE pacing
            pacing: Pacing strategy
            max_pending: Channel bound; frames beyond it are dropped
            clock: Monotonic time source
        """
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self._sink = sink
        self._ack = ack
        self.frame_rate = frame_rate
        self.pacing = pacing
        self._clock = clock
        self._interval = 1.0 / frame_rate if frame_rate > 0 else 0.0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._writer_task: Optional[asyncio.Task] = None
        self._live = False
        self._sink_closed = False
        self._last_forward: Optional[float] = None
        self._finished = False
        self.stats = RelayStats()

    @property
    def live(self) -> bool:
        return self._live

    @property
    def sink_open(self) -> bool:
        return not self._sink_closed and not self._sink.is_closing()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the writer task and begin accepting frames."""
        if self._writer_task is not None:
            return
        self._live = True
        self._writer_task = asyncio.create_task(self._write_loop())
        logger.debug(f"[RELAY] Started ({self.pacing.value}, {self.frame_rate} fps)")

    def offer(self, frame: CaptureFrame) -> bool:
        """
        Hand one frame to the relay. Never blocks.

        Returns:
            True if the frame was queued for the encoder
        """
        self.stats.received += 1
        self._acknowledge(frame)

        if not self._live or not self.sink_open:
            self.stats.dropped += 1
            return False

        now = self._clock()
        if (
            self.pacing is PacingStrategy.THROTTLE
            and self._last_forward is not None
            and now - self._last_forward < self._interval
        ):
            self.stats.dropped += 1
            return False

        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            if self.stats.dropped == 1 or self.stats.dropped % 100 == 0:
                logger.debug(f"[RELAY] Channel full, {self.stats.dropped} frames dropped so far")
            return False

        self._last_forward = now
        if self.stats.received == 1:
            logger.info("[RELAY] First frame received")
        return True

    def _acknowledge(self, frame: CaptureFrame) -> None:
        try:
            self._ack(frame)
        except Exception as e:
            logger.debug(f"[RELAY] Ack failed for frame {frame.sequence}: {e}")

    async def _write_loop(self) -> None:
        while True:
            frame = await self._queue.get()
            if frame is None:
                break
            if not self.sink_open:
                self.stats.dropped += 1
                continue
            try:
                self._sink.write(frame.data)
                await self._sink.drain()
                self.stats.forwarded += 1
            except asyncio.CancelledError:
                self.stats.dropped += 1
                raise
            except OSError as e:
                self._sink_closed = True
                self.stats.dropped += 1
                logger.warning(f"[RELAY] Encoder input closed: {e}")

    async def finish(self, timeout: float = 10.0) -> RelayStats:
        """
        Stop intake, flush queued frames, then half-close the sink.

        Frames still queued when the timeout expires are counted as dropped.
        """
        self._live = False
        if self._finished:
            return self.stats
        self._finished = True
        try:
            await asyncio.wait_for(self._flush_and_close(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[RELAY] Flush did not complete within {timeout:.1f}s")
            await self._abort()

        logger.info(
            f"[RELAY] Finished: {self.stats.received} received, "
            f"{self.stats.forwarded} forwarded, {self.stats.dropped} dropped"
        )
        return self.stats

    async def _flush_and_close(self) -> None:
        if self._writer_task is not None:
            await self._queue.put(None)
            await self._writer_task
        self._close_sink()
        try:
            await self._sink.wait_closed()
        except OSError as e:
            logger.debug(f"[RELAY] Error while closing encoder input: {e}")

    async def _abort(self) -> None:
        if self._writer_task is not None and not self._writer_task.done():
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            if self._queue.get_nowait() is not None:
                self.stats.dropped += 1
        self._close_sink()

    def _close_sink(self) -> None:
        self._sink_closed = True
        if not self._sink.is_closing():
            self._sink.close()
