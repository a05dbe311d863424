"""
Tests for screenshot storage and retrieval.
"""

import base64
import io
import threading

import pytest
from PIL import Image

from fakes import FakePage
from stepwise.artifacts.screenshots import (
    ScreenshotStore,
    image_mime_type,
    thumbnail_path_for,
)
from stepwise.core.types import Step
from stepwise.error_handling.exceptions import ScreenshotAccessError


@pytest.fixture
def screenshots(tmp_path):
    return ScreenshotStore(tmp_path / "artifacts", thumbnail_max_size=32)


@pytest.fixture
def step():
    return Step(
        id="step-1",
        test_case_id="tc-1",
        step_order=3,
        raw_text='Click "Save"',
        action_json='{"type":"click","target":"Save"}',
    )


def decode(data_url):
    header, payload = data_url.split(",", 1)
    return header, base64.b64decode(payload)


class TestCapture:
    """Tests for ScreenshotStore.capture()."""

    @pytest.mark.asyncio
    async def test_capture_writes_screenshot_and_thumbnail(self, screenshots, step):
        path = await screenshots.capture(FakePage(), "run-1", step)

        assert path.endswith("run-1/003-step-1.png")
        thumbnail = thumbnail_path_for(path)
        assert thumbnail.name == "003-step-1.thumb.jpg"
        with Image.open(thumbnail) as image:
            assert max(image.size) <= 32
            assert image.format == "JPEG"

    @pytest.mark.asyncio
    async def test_thumbnail_written_off_the_event_loop(self, screenshots, step, monkeypatch):
        threads = []
        write = screenshots.write_thumbnail

        def recording_write(path):
            threads.append(threading.get_ident())
            return write(path)

        monkeypatch.setattr(screenshots, "write_thumbnail", recording_write)

        await screenshots.capture(FakePage(), "run-1", step)

        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    def test_unreadable_image_has_no_thumbnail(self, screenshots, tmp_path):
        broken = tmp_path / "artifacts" / "run-1" / "001-x.png"
        broken.parent.mkdir(parents=True)
        broken.write_bytes(b"not an image")

        assert screenshots.write_thumbnail(broken) is None
        assert not thumbnail_path_for(broken).exists()


class TestRetrieval:
    """Tests for data URL retrieval."""

    @pytest.mark.asyncio
    async def test_data_urls(self, screenshots, step):
        path = await screenshots.capture(FakePage(), "run-1", step)

        header, payload = decode(screenshots.data_url(path))
        assert header == "data:image/png;base64"
        assert Image.open(io.BytesIO(payload)).size == (64, 48)

        header, _ = decode(screenshots.thumbnail_data_url(path))
        assert header == "data:image/jpeg;base64"

    def test_thumbnail_falls_back_to_full_image(self, screenshots):
        path = screenshots.root / "run-1" / "001-x.png"
        path.parent.mkdir(parents=True)
        Image.new("RGB", (10, 10)).save(path, "PNG")

        header, _ = decode(screenshots.thumbnail_data_url(str(path)))

        assert header == "data:image/png;base64"

    @pytest.mark.parametrize("bad_path", ["", "   "])
    def test_empty_path(self, screenshots, bad_path):
        with pytest.raises(ScreenshotAccessError, match="Screenshot path is required."):
            screenshots.data_url(bad_path)

    def test_paths_outside_root_are_rejected(self, screenshots, tmp_path):
        """Test the root itself, siblings and traversal are all refused."""
        outside = tmp_path / "secret.png"
        outside.write_bytes(b"x")
        candidates = [
            str(outside),
            str(screenshots.root),
            str(screenshots.root / "run-1" / ".." / ".." / "secret.png"),
            str(tmp_path / "artifacts-other" / "a.png"),
        ]

        for candidate in candidates:
            with pytest.raises(ScreenshotAccessError) as exc_info:
                screenshots.data_url(candidate)
            assert exc_info.value.path == candidate


def test_mime_types():
    assert image_mime_type("a.PNG") == "image/png"
    assert image_mime_type("a.jpeg") == "image/jpeg"
    assert image_mime_type("a.webp") == "image/webp"
    assert image_mime_type("a.bin") == "image/png"
