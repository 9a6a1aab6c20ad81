# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures for SiteCast tests."""

import shutil
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def temp_dir():
    """Create a temporary directory removed after the test."""
    path = Path(tempfile.mkdtemp(prefix="sitecast-test-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def mock_cdp_session():
    """Create a mock CDP session."""
    cdp = MagicMock()
    cdp.send = AsyncMock(return_value={})
    cdp.detach = AsyncMock()
    return cdp


@pytest.fixture
def mock_page():
    """Create a mock Playwright page."""
    page = MagicMock()
    page.goto = AsyncMock()
    return page


@pytest.fixture
def mock_context(mock_page, mock_cdp_session):
    """Create a mock Playwright browser context."""
    context = MagicMock()
    context.new_page = AsyncMock(return_value=mock_page)
    context.new_cdp_session = AsyncMock(return_value=mock_cdp_session)
    context.add_init_script = AsyncMock()
    context.close = AsyncMock()
    return context


@pytest.fixture
def mock_browser(mock_context):
    """Create a mock Playwright browser."""
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=mock_context)
    browser.close = AsyncMock()
    return browser


@pytest.fixture
def mock_playwright(mock_browser):
    """Create a mock started Playwright instance."""
    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=mock_browser)
    playwright.stop = AsyncMock()
    return playwright
