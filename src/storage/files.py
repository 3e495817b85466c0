"""Local file store for uploaded ticket photographs."""

from __future__ import annotations

import io
import logging
import secrets
from datetime import datetime
from pathlib import Path
from typing import Optional

from PIL import Image

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}

# Pillow format names matching ALLOWED_EXTENSIONS
ALLOWED_FORMATS = {"JPEG", "PNG", "GIF", "WEBP"}

MAX_UPLOAD_BYTES = 15 * 1024 * 1024


class FileNotFoundInStore(FileNotFoundError):
    """No readable file exists at the given relative path."""

    pass


class InvalidUpload(ValueError):
    """An uploaded file was rejected."""

    pass


def looks_like_image(data: bytes) -> bool:
    """True if Pillow recognizes the data as an intact image of an accepted format."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except Exception as exc:
        logger.debug("Upload is not a readable image: %s", exc)
        return False
    return image_format in ALLOWED_FORMATS


class LocalFileStore:
    """
    Files under a root directory, addressed by relative paths like
    "jobs/20240301T101500-3f9a1c2b.jpg".
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _resolve(self, relative_path: str) -> Optional[Path]:
        """Absolute path inside the root, or None if the path escapes it."""
        if not relative_path:
            return None
        candidate = (self.root / relative_path.lstrip("/\\")).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError:
            return None
        return candidate

    def save(self, data: bytes, original_name: str, folder: str = "jobs") -> str:
        """
        Store an uploaded image under a generated name.

        Args:
            data: File contents
            original_name: Client file name, used only for its extension
            folder: Subdirectory under the root

        Returns:
            Path relative to the store root

        Raises:
            InvalidUpload: Empty, too large, wrong extension or not an image
        """
        extension = Path(original_name or "").suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise InvalidUpload(
                f"Unsupported file type {extension or '(none)'}; "
                f"allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )
        if not data:
            raise InvalidUpload("Uploaded file is empty")
        if len(data) > MAX_UPLOAD_BYTES:
            raise InvalidUpload("Uploaded file is too large")
        if not looks_like_image(data):
            raise InvalidUpload("Uploaded file is not a valid image")

        target_dir = self._resolve(folder)
        if target_dir is None:
            raise InvalidUpload(f"Invalid folder: {folder}")
        target_dir.mkdir(parents=True, exist_ok=True)

        stamp = datetime.now().strftime("%Y%m%dT%H%M%S")
        name = f"{stamp}-{secrets.token_hex(4)}{extension}"
        (target_dir / name).write_bytes(data)

        relative = (target_dir / name).relative_to(self.root).as_posix()
        logger.info("Stored upload %s (%d bytes)", relative, len(data))
        return relative

    def read(self, relative_path: str) -> bytes:
        """
        Raises:
            FileNotFoundInStore: If the file is missing or outside the root
        """
        path = self._resolve(relative_path)
        if path is None or not path.is_file():
            raise FileNotFoundInStore(f"File not found: {relative_path}")
        return path.read_bytes()

    def exists(self, relative_path: str) -> bool:
        path = self._resolve(relative_path)
        return path is not None and path.is_file()

    def delete(self, relative_path: str) -> bool:
        """Remove a file. Returns False if there was nothing to remove."""
        path = self._resolve(relative_path)
        if path is None or not path.is_file():
            return False
        path.unlink()
        return True
