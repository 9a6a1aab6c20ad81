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
Browser session for SiteCast.

This module provides the BrowserSession class which drives one headless
Chromium instance for the duration of a single recording. It handles:
- Locating a system Chrome or falling back to Playwright's bundled Chromium
- Launching with a hardened argument list and a fixed viewport
- Navigation that degrades instead of failing
- CDP screencast frames turned into CaptureFrame objects
- Frame acknowledgement, crash detection and bounded cleanup
"""

from __future__ import annotations

import asyncio
import base64
import os
from typing import Any, Callable, Dict, List, Optional, Set

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from sitecast.core.models import CaptureFrame
from sitecast.exceptions import BrowserLaunchError, NavigationError
from sitecast.utils.logger import logger

CHROME_ENV_VARS = ("CHROME_PATH", "PUPPETEER_EXECUTABLE_PATH")

KNOWN_CHROME_PATHS = (
    "/usr/bin/chromium-browser",
    "/usr/bin/chromium",
    "/usr/bin/google-chrome-stable",
    "/usr/bin/google-chrome",
    "/opt/google/chrome/chrome",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
)

# Headless server setting: no sandbox, no GPU, and no throttling of
# timers or rendering for a page nobody is looking at.
CHROME_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-features=TranslateUI",
    "--disable-ipc-flooding-protection",
    "--disable-default-apps",
    "--disable-popup-blocking",
    "--autoplay-policy=no-user-gesture-required",
    "--ignore-certificate-errors",
    "--ignore-ssl-errors",
]

MOTION_SUPPRESSION_CSS = (
    "*, *::before, *::after {"
    " animation-duration: 0.01ms !important;"
    " animation-iteration-count: 1 !important;"
    " transition-duration: 0.01ms !important;"
    " scroll-behavior: auto !important;"
    " }"
)

MOTION_SUPPRESSION_SCRIPT = """
(() => {
  const install = () => {
    const style = document.createElement('style');
    style.setAttribute('data-sitecast', 'motion');
    style.textContent = %r;
    (document.head || document.documentElement).appendChild(style);
  };
  if (document.readyState === 'loading') {
    document.addEventListener('DOMContentLoaded', install, { once: true });
  } else {
    install();
  }
})();
""" % MOTION_SUPPRESSION_CSS


def find_chrome_executable() -> Optional[str]:
    """
    Find a system Chrome/Chromium binary.

    Environment variables win over the well-known install locations.

    Returns:
        Path to the executable, or None to use Playwright's bundled Chromium
    """
    for var in CHROME_ENV_VARS:
        path = os.environ.get(var)
        if path and os.path.exists(path):
            return path
    for path in KNOWN_CHROME_PATHS:
        if os.path.exists(path):
            return path
    return None


class BrowserSession:
    """
    One browser, one context, one page and one CDP session.

    The ``disconnected`` event is set when the browser goes away or the
    page crashes while the session is not being closed on purpose.

    Example:
        >>> session = BrowserSession()
        >>> await session.launch(1920, 1080)
        >>> await session.navigate("https://example.com")
        >>> await session.start_screencast(on_frame)
        >>> ...
        >>> await session.close()
    """

    def __init__(
        self,
        executable_path: Optional[str] = None,
        headless: bool = True,
        suppress_motion: bool = True,
        close_timeout: float = 10.0,
        extra_args: Optional[List[str]] = None,
    ) -> None:
        self.executable_path = executable_path
        self.headless = headless
        self.suppress_motion = suppress_motion
        self.close_timeout = close_timeout
        self.extra_args = list(extra_args or [])
        self.disconnected = asyncio.Event()

        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._cdp_session = None
        self._on_frame: Optional[Callable[[CaptureFrame], Any]] = None
        self._sequence = 0
        self._screencasting = False
        self._closing = False
        self._closed = False
        self._pending_acks: Set[asyncio.Task] = set()

    @property
    def is_launched(self) -> bool:
        return self._cdp_session is not None and not self._closed

    async def launch(self, viewport_width: int, viewport_height: int) -> None:
        """
        Start the browser and attach to a fresh page.

        Raises:
            BrowserLaunchError: If any step fails; partial resources are released
        """
        if self._playwright is not None:
            raise BrowserLaunchError("Session already launched")

        executable = self.executable_path or find_chrome_executable()
        args = CHROME_ARGS + [f"--window-size={viewport_width},{viewport_height}"] + self.extra_args
        launch_options: Dict[str, Any] = {"headless": self.headless, "args": args}
        if executable:
            launch_options["executable_path"] = executable

        try:
            logger.info(
                f"[BROWSER] Launching Chromium ({executable or 'bundled'}), "
                f"viewport {viewport_width}x{viewport_height}"
            )
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(**launch_options)
            self._browser.on("disconnected", self._on_disconnected)

            self._context = await self._browser.new_context(
                viewport={"width": viewport_width, "height": viewport_height},
                ignore_https_errors=True,
            )
            if self.suppress_motion:
                await self._context.add_init_script(MOTION_SUPPRESSION_SCRIPT)

            self._page = await self._context.new_page()
            self._page.on("crash", self._on_crash)

            self._cdp_session = await self._context.new_cdp_session(self._page)
            await self._cdp_session.send("Page.enable")
            logger.debug("[BROWSER] CDP session attached")
        except Exception as e:
            logger.error(f"[BROWSER] Failed to launch browser: {e}")
            await self.close()
            raise BrowserLaunchError(f"Failed to launch browser: {e}") from e

    async def navigate(self, url: str, timeout_ms: int = 30000, wait_until: str = "load") -> bool:
        """
        Navigate to a URL.

        Navigation problems are not fatal: whatever the page shows is still
        worth recording.

        Returns:
            True if navigation finished cleanly
        """
        if self._page is None:
            raise BrowserLaunchError("Session not launched. Call launch() first.")

        logger.info(f"[BROWSER] Navigating to {url}")
        try:
            await self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError as e:
            error = NavigationError(f"Navigation timeout after {timeout_ms}ms: {url}")
            logger.warning(f"[BROWSER] {error}, continuing anyway ({e.message})")
        except PlaywrightError as e:
            error = NavigationError(f"Navigation failed: {url}")
            logger.warning(f"[BROWSER] {error}, continuing anyway ({e.message})")
        return False

    async def start_screencast(
        self,
        on_frame: Callable[[CaptureFrame], Any],
        format: str = "jpeg",
        quality: int = 60,
        every_nth_frame: int = 1,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
    ) -> None:
        """Subscribe to screencast frames and start the stream."""
        if self._cdp_session is None:
            raise BrowserLaunchError("Session not launched. Call launch() first.")

        self._on_frame = on_frame
        self._cdp_session.on("Page.screencastFrame", self._handle_frame)

        params: Dict[str, Any] = {
            "format": format,
            "quality": quality,
            "everyNthFrame": every_nth_frame,
        }
        if max_width:
            params["maxWidth"] = max_width
        if max_height:
            params["maxHeight"] = max_height

        await self._cdp_session.send("Page.startScreencast", params)
        self._screencasting = True
        logger.info(f"[BROWSER] Screencast started ({format}, quality {quality})")

    def _handle_frame(self, params: Dict[str, Any]) -> None:
        self._sequence += 1
        frame = CaptureFrame(
            data=base64.b64decode(params.get("data", "")),
            sequence=self._sequence,
            ack_token=params.get("sessionId"),
        )
        if self._on_frame is None:
            self.ack(frame)
            return
        try:
            self._on_frame(frame)
        except Exception as e:
            logger.warning(f"[BROWSER] Frame handler error: {e}")
            self.ack(frame)

    def ack(self, frame: CaptureFrame) -> None:
        """Acknowledge a frame so the engine keeps sending new ones."""
        if self._cdp_session is None or self._closing or frame.ack_token is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._send_ack(frame.ack_token))
        except RuntimeError as e:
            logger.debug(f"[BROWSER] Failed to schedule frame ack: {e}")
            return
        self._pending_acks.add(task)
        task.add_done_callback(self._ack_done)

    async def _send_ack(self, session_id: int) -> None:
        cdp = self._cdp_session
        if cdp is None or self._closing:
            return
        try:
            await cdp.send("Page.screencastFrameAck", {"sessionId": session_id})
        except Exception as e:
            logger.debug(f"[BROWSER] Frame ack failed for session {session_id}: {e}")

    def _ack_done(self, task: asyncio.Task) -> None:
        self._pending_acks.discard(task)
        if not task.cancelled() and task.exception():
            logger.debug(f"[BROWSER] Ack task error: {task.exception()}")

    async def stop_screencast(self) -> None:
        """Stop the screencast. Errors are logged, never raised."""
        if self._cdp_session is None or not self._screencasting:
            return
        self._screencasting = False
        try:
            await asyncio.wait_for(
                self._cdp_session.send("Page.stopScreencast"), timeout=self.close_timeout
            )
            logger.debug("[BROWSER] Screencast stopped")
        except Exception as e:
            logger.warning(f"[BROWSER] stopScreencast warning: {e}")

    def _on_disconnected(self, *args: Any) -> None:
        if not self._closing:
            logger.warning("[BROWSER] Browser disconnected unexpectedly")
            self.disconnected.set()

    def _on_crash(self, *args: Any) -> None:
        if not self._closing:
            logger.warning("[BROWSER] Page crashed")
            self.disconnected.set()

    async def close(self) -> None:
        """Release CDP session, context, browser and Playwright. Idempotent."""
        if self._closed:
            return
        self._closing = True

        for task in list(self._pending_acks):
            task.cancel()

        if self._cdp_session is not None:
            await self._release("CDP session", self._cdp_session.detach())
            self._cdp_session = None
        if self._context is not None:
            await self._release("context", self._context.close())
            self._context = None
        if self._browser is not None:
            await self._release("browser", self._browser.close())
            self._browser = None
        if self._playwright is not None:
            await self._release("playwright", self._playwright.stop())
            self._playwright = None

        self._page = None
        self._closed = True
        logger.debug("[BROWSER] Session closed")

    async def _release(self, name: str, closing: Any) -> None:
        try:
            await asyncio.wait_for(closing, timeout=self.close_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[BROWSER] Closing {name} timed out after {self.close_timeout:.1f}s")
        except Exception as e:
            logger.debug(f"[BROWSER] Error closing {name}: {e}")

    async def __aenter__(self) -> "BrowserSession":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
