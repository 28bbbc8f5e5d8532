"""Image uploads for avatars and trip covers.

Files land in ``UPLOAD_DIR/<purpose>/<opaque name>`` and are served by the
static mount at ``/uploads``. The value persisted on the owning row is the
URL path ``/uploads/<purpose>/<name>``.
"""

import logging
import os
import secrets
from pathlib import Path
from typing import Optional

from config import Config
from utils.errors import InternalError, PayloadTooLargeError, ValidationError

URL_PREFIX = "/uploads"
PURPOSES = ("avatars", "trip-covers")

ALLOWED_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

CHUNK_SIZE = 64 * 1024


class MediaStore:
    def __init__(self, upload_dir: Optional[str] = None, max_bytes: Optional[int] = None):
        self.upload_dir = Path(upload_dir or Config.UPLOAD_DIR)
        self.max_bytes = max_bytes if max_bytes is not None else Config.MAX_UPLOAD_BYTES

    def _read_limited(self, fileobj) -> bytes:
        # read at most max_bytes + 1 so an oversize upload is detected without buffering all of it
        chunks = []
        remaining = self.max_bytes + 1
        while remaining > 0:
            chunk = fileobj.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def save(self, upload, purpose: str) -> str:
        """Validate and store an upload; return its URL path.

        `upload` is anything with ``content_type`` and a binary ``file``
        (FastAPI's UploadFile).
        """
        if purpose not in PURPOSES:
            raise ValueError(f"unknown media purpose: {purpose}")

        content_type = (getattr(upload, "content_type", None) or "").lower()
        extension = ALLOWED_TYPES.get(content_type)
        if extension is None:
            logging.info("media.save rejected type=%s purpose=%s", content_type, purpose)
            raise ValidationError("Only image files (jpeg, jpg, png, gif, webp) are allowed")

        data = self._read_limited(upload.file)
        if len(data) > self.max_bytes:
            logging.info("media.save rejected size>%s purpose=%s", self.max_bytes, purpose)
            raise PayloadTooLargeError(f"File too large. Maximum size is {self.max_bytes} bytes")
        if not data:
            raise ValidationError("Uploaded file is empty")

        name = secrets.token_hex(16) + extension
        target_dir = self.upload_dir / purpose
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            with open(target_dir / name, "xb") as fh:
                fh.write(data)
        except OSError:
            logging.exception("media.save disk error purpose=%s", purpose)
            raise InternalError("Failed to store upload")

        logging.info("media.save stored purpose=%s name=%s bytes=%s", purpose, name, len(data))
        return f"{URL_PREFIX}/{purpose}/{name}"

    def path_for(self, url_path: str) -> Optional[Path]:
        """Map a stored URL path back to the file on disk, or None if it is not ours."""
        if not url_path or not url_path.startswith(URL_PREFIX + "/"):
            return None
        relative = url_path[len(URL_PREFIX) + 1:]
        purpose, _, name = relative.partition("/")
        if purpose not in PURPOSES or not name or "/" in name or name in (".", ".."):
            return None
        return self.upload_dir / purpose / name

    def delete(self, url_path: Optional[str]) -> bool:
        """Remove a stored file. Missing files are not an error."""
        path = self.path_for(url_path) if url_path else None
        if path is None:
            return False
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError:
            # the row is already gone; an orphaned file is only logged
            logging.exception("media.delete failed path=%s", url_path)
            return False
        logging.info("media.delete removed path=%s", url_path)
        return True