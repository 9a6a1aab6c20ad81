# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the recording data model."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from sitecast.core.models import CaptureFrame, RecordingRequest, RecordingResult, make_even
from sitecast.exceptions import InvalidRequestError


class TestMakeEven:
    """Tests for make_even()."""

    def test_even_unchanged(self):
        assert make_even(1280) == 1280

    def test_odd_rounds_down(self):
        assert make_even(1281) == 1280
        assert make_even(3) == 2


class TestRecordingRequest:
    """Tests for RecordingRequest."""

    def test_default_values(self):
        """Test default request values."""
        request = RecordingRequest(url="https://example.com")

        assert request.duration == 30000
        assert request.width == 1920
        assert request.height == 1080
        assert request.crop_x == 0
        assert request.crop_y == 0
        assert request.viewport_width == 1920
        assert request.viewport_height == 1080
        assert request.needs_crop is False

    def test_camel_case_aliases(self):
        """Test wire names are accepted."""
        request = RecordingRequest.model_validate({
            "url": "https://example.com",
            "width": 800,
            "height": 600,
            "cropX": 100,
            "cropY": 50,
            "viewportWidth": 1280,
            "viewportHeight": 720,
        })

        assert request.crop_x == 100
        assert request.crop_y == 50
        assert request.viewport_width == 1280
        assert request.viewport_height == 720

    def test_snake_case_names(self):
        request = RecordingRequest(url="https://example.com", crop_x=10, viewport_width=1280, width=1000)
        assert request.crop_x == 10
        assert request.viewport_width == 1280

    def test_is_frozen(self):
        """Test an accepted request cannot be modified."""
        request = RecordingRequest(url="https://example.com")
        with pytest.raises(ValidationError):
            request.duration = 1000

    @pytest.mark.parametrize("url", ["example.com", "ftp://example.com/file", "https://", "not a url"])
    def test_rejects_invalid_url(self, url):
        with pytest.raises(ValidationError):
            RecordingRequest(url=url)

    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValidationError):
            RecordingRequest(url="https://example.com", duration=0)

    def test_needs_crop_with_offset(self):
        request = RecordingRequest(url="https://example.com", cropX=10, width=1800)
        assert request.needs_crop is True

    def test_needs_crop_with_smaller_output(self):
        request = RecordingRequest(url="https://example.com", width=1280, height=720)
        assert request.needs_crop is True

    def test_odd_sizes_compare_after_rounding(self):
        """Test an odd output matching an odd viewport is not a crop."""
        request = RecordingRequest(
            url="https://example.com",
            width=1281,
            height=721,
            viewportWidth=1281,
            viewportHeight=721,
        )
        assert request.output_width == 1280
        assert request.output_height == 720
        assert request.needs_crop is False

    def test_crop_outside_viewport_rejected(self):
        with pytest.raises(ValidationError, match="exceeds viewport width"):
            RecordingRequest(url="https://example.com", width=1000, cropX=1000)

    def test_crop_at_edge_accepted(self):
        request = RecordingRequest(url="https://example.com", width=960, height=540, cropX=960, cropY=540)
        assert request.crop_x + request.output_width == request.even_viewport_width

    def test_derived_properties(self):
        request = RecordingRequest(url="https://www.example.com/path?q=1", duration=2500)
        assert request.duration_seconds == 2.5
        assert request.hostname == "www.example.com"


class TestFromMapping:
    """Tests for RecordingRequest.from_mapping()."""

    def test_missing_url(self):
        with pytest.raises(InvalidRequestError, match="URL is required"):
            RecordingRequest.from_mapping({"duration": 5000})

    def test_empty_url(self):
        with pytest.raises(InvalidRequestError, match="URL is required"):
            RecordingRequest.from_mapping({"url": ""})

    def test_invalid_url_message(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            RecordingRequest.from_mapping({"url": "example.com"})
        assert str(exc_info.value) == "Invalid URL format"

    def test_none_values_use_defaults(self):
        request = RecordingRequest.from_mapping({"url": "https://example.com", "duration": None, "cropX": None})
        assert request.duration == 30000
        assert request.crop_x == 0

    def test_zero_duration_and_sizes_use_defaults(self):
        request = RecordingRequest.from_mapping({
            "url": "https://example.com",
            "duration": 0,
            "width": 0,
            "height": 0,
            "viewportWidth": 0,
            "viewportHeight": 0,
        })
        assert request.duration == 30000
        assert request.width == 1920
        assert request.height == 1080
        assert request.viewport_width == 1920
        assert request.viewport_height == 1080

    def test_zero_crop_offset_kept(self):
        request = RecordingRequest.from_mapping({"url": "https://example.com", "cropX": 0, "width": 0})
        assert request.crop_x == 0
        assert request.needs_crop is False

    def test_negative_duration_rejected(self):
        with pytest.raises(InvalidRequestError):
            RecordingRequest.from_mapping({"url": "https://example.com", "duration": -5})

    def test_unknown_keys_ignored(self):
        request = RecordingRequest.from_mapping({"url": "https://example.com", "verbose": True})
        assert request.url == "https://example.com"


class TestCaptureFrame:
    """Tests for CaptureFrame."""

    def test_size(self):
        frame = CaptureFrame(data=b"\xff\xd8\xff", sequence=1, ack_token=5)
        assert frame.size == 3
        assert frame.ack_token == 5
        assert frame.timestamp > 0


class TestRecordingResult:
    """Tests for RecordingResult."""

    def test_to_dict(self):
        result = RecordingResult(
            output_path=Path("/tmp/videos/example_com.mp4"),
            size_bytes=2048,
            frames_received=10,
            frames_forwarded=9,
            frames_dropped=1,
        )
        data = result.to_dict()

        assert data["file_name"] == "example_com.mp4"
        assert data["size_bytes"] == 2048
        assert data["frames_dropped"] == 1
        assert data["navigation_ok"] is True
