# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for BrowserSession."""

import asyncio
import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sitecast.core.browser import (
    CHROME_ARGS,
    MOTION_SUPPRESSION_SCRIPT,
    BrowserSession,
    find_chrome_executable,
)
from sitecast.core.models import CaptureFrame
from sitecast.exceptions import BrowserLaunchError


@pytest.fixture
def patched_playwright(mock_playwright):
    """Patch async_playwright() to hand out the mock instance."""
    with patch("sitecast.core.browser.async_playwright") as mock_pw:
        mock_pw_instance = MagicMock()
        mock_pw_instance.start = AsyncMock(return_value=mock_playwright)
        mock_pw.return_value = mock_pw_instance
        yield mock_playwright


async def launched_session(**kwargs):
    kwargs.setdefault("executable_path", "/usr/bin/chromium")
    session = BrowserSession(**kwargs)
    await session.launch(1280, 720)
    return session


class TestFindChromeExecutable:
    """Tests for find_chrome_executable()."""

    def test_env_var_wins(self, temp_dir, monkeypatch):
        chrome = temp_dir / "chrome"
        chrome.touch()
        monkeypatch.setenv("CHROME_PATH", str(chrome))

        assert find_chrome_executable() == str(chrome)

    def test_puppeteer_env_var(self, temp_dir, monkeypatch):
        chrome = temp_dir / "chrome"
        chrome.touch()
        monkeypatch.delenv("CHROME_PATH", raising=False)
        monkeypatch.setenv("PUPPETEER_EXECUTABLE_PATH", str(chrome))

        assert find_chrome_executable() == str(chrome)

    def test_nothing_found(self, monkeypatch):
        monkeypatch.delenv("CHROME_PATH", raising=False)
        monkeypatch.delenv("PUPPETEER_EXECUTABLE_PATH", raising=False)
        with patch("sitecast.core.browser.os.path.exists", return_value=False):
            assert find_chrome_executable() is None


class TestBrowserSessionLaunch:
    """Tests for BrowserSession.launch()."""

    @pytest.mark.asyncio
    async def test_launch(self, patched_playwright, mock_browser, mock_context, mock_cdp_session):
        session = await launched_session()

        launch_kwargs = patched_playwright.chromium.launch.await_args.kwargs
        assert launch_kwargs["headless"] is True
        assert launch_kwargs["executable_path"] == "/usr/bin/chromium"
        assert "--no-sandbox" in launch_kwargs["args"]
        assert "--window-size=1280,720" in launch_kwargs["args"]

        context_kwargs = mock_browser.new_context.await_args.kwargs
        assert context_kwargs["viewport"] == {"width": 1280, "height": 720}
        mock_context.add_init_script.assert_awaited_once_with(MOTION_SUPPRESSION_SCRIPT)
        mock_cdp_session.send.assert_awaited_with("Page.enable")
        assert session.is_launched is True

    @pytest.mark.asyncio
    async def test_launch_without_motion_suppression(self, patched_playwright, mock_context):
        await launched_session(suppress_motion=False)
        mock_context.add_init_script.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bundled_chromium_when_no_executable(self, patched_playwright):
        session = BrowserSession()
        with patch("sitecast.core.browser.find_chrome_executable", return_value=None):
            await session.launch(800, 600)

        assert "executable_path" not in patched_playwright.chromium.launch.await_args.kwargs

    @pytest.mark.asyncio
    async def test_launch_failure_releases_playwright(self, patched_playwright):
        patched_playwright.chromium.launch.side_effect = Exception("no chrome")
        session = BrowserSession(executable_path="/usr/bin/chromium")

        with pytest.raises(BrowserLaunchError, match="no chrome"):
            await session.launch(1280, 720)

        patched_playwright.stop.assert_awaited_once()
        assert session.is_launched is False

    def test_hardened_args(self):
        for flag in ("--disable-dev-shm-usage", "--disable-gpu", "--disable-background-timer-throttling"):
            assert flag in CHROME_ARGS


class TestBrowserSessionNavigate:
    """Tests for BrowserSession.navigate()."""

    @pytest.mark.asyncio
    async def test_navigate_success(self, patched_playwright, mock_page):
        session = await launched_session()

        assert await session.navigate("https://example.com", timeout_ms=5000) is True
        mock_page.goto.assert_awaited_once_with("https://example.com", wait_until="load", timeout=5000)

    @pytest.mark.asyncio
    async def test_navigate_timeout_is_not_fatal(self, patched_playwright, mock_page):
        mock_page.goto.side_effect = PlaywrightTimeoutError("Timeout 5000ms exceeded")
        session = await launched_session()

        assert await session.navigate("https://slow.example.com", timeout_ms=5000) is False

    @pytest.mark.asyncio
    async def test_navigate_error_is_not_fatal(self, patched_playwright, mock_page):
        mock_page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        session = await launched_session()

        assert await session.navigate("https://missing.invalid") is False

    @pytest.mark.asyncio
    async def test_navigate_before_launch(self):
        with pytest.raises(BrowserLaunchError):
            await BrowserSession().navigate("https://example.com")


class TestBrowserSessionScreencast:
    """Tests for screencast frames and acknowledgements."""

    @pytest.mark.asyncio
    async def test_start_screencast(self, patched_playwright, mock_cdp_session):
        session = await launched_session()
        await session.start_screencast(MagicMock(), quality=60)

        mock_cdp_session.on.assert_any_call("Page.screencastFrame", session._handle_frame)
        mock_cdp_session.send.assert_awaited_with(
            "Page.startScreencast", {"format": "jpeg", "quality": 60, "everyNthFrame": 1}
        )

    @pytest.mark.asyncio
    async def test_frames_decoded(self, patched_playwright):
        on_frame = MagicMock()
        session = await launched_session()
        await session.start_screencast(on_frame)

        session._handle_frame({"data": base64.b64encode(b"jpeg-bytes").decode(), "sessionId": 7})
        session._handle_frame({"data": base64.b64encode(b"more").decode(), "sessionId": 8})

        frames = [call.args[0] for call in on_frame.call_args_list]
        assert isinstance(frames[0], CaptureFrame)
        assert frames[0].data == b"jpeg-bytes"
        assert [f.sequence for f in frames] == [1, 2]
        assert [f.ack_token for f in frames] == [7, 8]

    @pytest.mark.asyncio
    async def test_ack_sends_screencast_frame_ack(self, patched_playwright, mock_cdp_session):
        session = await launched_session()

        session.ack(CaptureFrame(data=b"x", sequence=1, ack_token=42))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        mock_cdp_session.send.assert_any_await("Page.screencastFrameAck", {"sessionId": 42})

    @pytest.mark.asyncio
    async def test_ack_failure_is_swallowed(self, patched_playwright, mock_cdp_session):
        session = await launched_session()
        mock_cdp_session.send.side_effect = Exception("target closed")

        session.ack(CaptureFrame(data=b"x", sequence=1, ack_token=1))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    @pytest.mark.asyncio
    async def test_handler_error_still_acks(self, patched_playwright, mock_cdp_session):
        session = await launched_session()
        await session.start_screencast(MagicMock(side_effect=RuntimeError("boom")))

        session._handle_frame({"data": "", "sessionId": 3})
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        mock_cdp_session.send.assert_any_await("Page.screencastFrameAck", {"sessionId": 3})

    @pytest.mark.asyncio
    async def test_stop_screencast_tolerates_errors(self, patched_playwright, mock_cdp_session):
        session = await launched_session()
        await session.start_screencast(MagicMock())
        mock_cdp_session.send.side_effect = Exception("session closed")

        await session.stop_screencast()


class TestBrowserSessionLifecycle:
    """Tests for disconnect detection and cleanup."""

    @pytest.mark.asyncio
    async def test_disconnect_sets_event(self, patched_playwright):
        session = await launched_session()
        session._on_disconnected()
        assert session.disconnected.is_set()

    @pytest.mark.asyncio
    async def test_crash_sets_event(self, patched_playwright):
        session = await launched_session()
        session._on_crash(MagicMock())
        assert session.disconnected.is_set()

    @pytest.mark.asyncio
    async def test_disconnect_during_close_ignored(self, patched_playwright, mock_browser):
        session = await launched_session()
        mock_browser.close.side_effect = lambda: session._on_disconnected()

        await session.close()

        assert not session.disconnected.is_set()

    @pytest.mark.asyncio
    async def test_close_releases_everything_once(
        self, patched_playwright, mock_browser, mock_context, mock_cdp_session
    ):
        session = await launched_session()

        await session.close()
        await session.close()

        mock_cdp_session.detach.assert_awaited_once()
        mock_context.close.assert_awaited_once()
        mock_browser.close.assert_awaited_once()
        patched_playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_continues_after_errors(self, patched_playwright, mock_context, mock_browser):
        mock_context.close.side_effect = Exception("already closed")
        session = await launched_session()

        await session.close()

        mock_browser.close.assert_awaited_once()
        patched_playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_without_launch(self):
        await BrowserSession().close()
