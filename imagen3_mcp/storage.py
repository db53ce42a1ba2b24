"""Optional on-disk copies of generated images."""
from __future__ import annotations

import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from .core import DEFAULT_MIME_TYPE, GeneratedImage

# Length of the random part of saved file names
_ID_LENGTH = 10


def infer_extension(mime_type: str = DEFAULT_MIME_TYPE) -> str:
    """Get file extension from MIME type."""
    mapping = {
        "image/png": ".png",
        "image/jpeg": ".jpg",
        "image/webp": ".webp",
        "image/gif": ".gif",
    }
    return mapping.get(mime_type.lower(), ".png")


def write_image_to_file(buffer: bytes, target_path: "Path | str") -> Path:
    """Write image bytes to a file, creating directories as needed."""
    path = Path(target_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(buffer)
    return path


class ImageStore:
    """Saves images under one directory as ``<id>_<YYYYmmddHHMMSS><ext>``."""

    def __init__(self, directory: "Path | str") -> None:
        self.directory = Path(directory)

    def filename_for(self, mime_type: str, now: Optional[datetime] = None) -> str:
        stamp = (now or datetime.now()).strftime("%Y%m%d%H%M%S")
        return f"{uuid.uuid4().hex[:_ID_LENGTH]}_{stamp}{infer_extension(mime_type)}"

    def save(self, image: GeneratedImage) -> Path:
        """Write one image and return its absolute path."""
        path = write_image_to_file(image.data, self.directory / self.filename_for(image.mime_type))
        return path.absolute()
