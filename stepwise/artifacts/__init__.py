"""
Run artifacts.
"""

from stepwise.artifacts.screenshots import (
    ScreenshotStore,
    image_mime_type,
    thumbnail_path_for,
)

__all__ = [
    "ScreenshotStore",
    "image_mime_type",
    "thumbnail_path_for",
]
