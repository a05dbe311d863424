"""
Screenshot artifacts: capture, thumbnails and safe retrieval.
"""

import asyncio
import base64
from pathlib import Path
from typing import Any, Optional, Union

from PIL import Image, UnidentifiedImageError

from stepwise.core.types import Step
from stepwise.error_handling.exceptions import ScreenshotAccessError
from stepwise.monitoring.logger import get_logger

THUMBNAIL_SUFFIX = ".thumb.jpg"
THUMBNAIL_QUALITY = 80

_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


def image_mime_type(path: Union[str, Path]) -> str:
    return _MIME_TYPES.get(Path(path).suffix.lower(), "image/png")


def thumbnail_path_for(screenshot_path: Union[str, Path]) -> Path:
    """``<dir>/001-<step>.png`` -> ``<dir>/001-<step>.thumb.jpg``"""
    path = Path(screenshot_path)
    return path.with_name(path.stem + THUMBNAIL_SUFFIX)


class ScreenshotStore:
    """Stores step screenshots under ``<root>/<run_id>/``."""

    def __init__(self, root: Union[str, Path], thumbnail_max_size: int = 320) -> None:
        self.root = Path(root)
        self.thumbnail_max_size = thumbnail_max_size
        self.logger = get_logger("artifacts.screenshots")

    def path_for(self, run_id: str, step: Step) -> Path:
        return self.root / run_id / f"{step.step_order:03d}-{step.id}.png"

    async def capture(self, page: Any, run_id: str, step: Step) -> str:
        """
        Capture a full-page screenshot and its thumbnail.

        Returns:
            Path of the full screenshot
        """
        path = self.path_for(run_id, step)
        path.parent.mkdir(parents=True, exist_ok=True)

        await page.screenshot(path=str(path), full_page=True)
        await asyncio.to_thread(self.write_thumbnail, path)
        return str(path)

    def write_thumbnail(self, screenshot_path: Path) -> Optional[Path]:
        """
        Write a JPEG thumbnail next to a screenshot.

        Thumbnails are best-effort: an unreadable image is logged and the
        full screenshot serves in its place.
        """
        target = thumbnail_path_for(screenshot_path)
        try:
            with Image.open(screenshot_path) as image:
                image.thumbnail((self.thumbnail_max_size, self.thumbnail_max_size))
                image.convert("RGB").save(target, "JPEG", quality=THUMBNAIL_QUALITY)
        except (OSError, UnidentifiedImageError) as e:
            self.logger.warning(
                "Thumbnail generation failed",
                extra={"path": str(screenshot_path), "error": str(e)},
            )
            return None
        return target

    def resolve(self, screenshot_path: str) -> Path:
        """
        Canonicalize a caller-supplied path and confine it to the root.

        Raises:
            ScreenshotAccessError: If the path is empty or not strictly
                inside the artifacts root
        """
        if not screenshot_path or not screenshot_path.strip():
            raise ScreenshotAccessError("Screenshot path is required.", path="")

        root = self.root.resolve()
        resolved = Path(screenshot_path).resolve()
        if resolved == root or root not in resolved.parents:
            raise ScreenshotAccessError(
                "Screenshot path is outside artifacts directory.", path=screenshot_path
            )
        return resolved

    def data_url(self, screenshot_path: str) -> str:
        """Screenshot contents as a base64 data URL."""
        resolved = self.resolve(screenshot_path)
        return self._encode(resolved)

    def thumbnail_data_url(self, screenshot_path: str) -> str:
        """Thumbnail as a data URL, falling back to the full screenshot."""
        resolved = self.resolve(screenshot_path)
        thumbnail = thumbnail_path_for(resolved)
        if thumbnail.is_file():
            return self._encode(thumbnail)
        return self._encode(resolved)

    def _encode(self, path: Path) -> str:
        payload = base64.b64encode(path.read_bytes()).decode("ascii")
        return f"data:{image_mime_type(path)};base64,{payload}"
