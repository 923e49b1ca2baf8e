import logging
import os
import shutil
import time
import uuid
from typing import Iterable, Optional

from fastapi import UploadFile

from errors import ValidationFailed

log = logging.getLogger(__name__)


class LocalImageStore:
    """Stores uploaded images under ``root`` and hands back the URL they are served from."""

    def __init__(self, root: str, url_prefix: str = "/uploads", allowed_extensions: Iterable[str] = ("png", "jpg", "jpeg", "gif")):
        self.root = root
        self.url_prefix = url_prefix.rstrip("/")
        self.allowed_extensions = {ext.lower().lstrip(".") for ext in allowed_extensions}
        os.makedirs(self.root, exist_ok=True)

    def _extension(self, filename: str) -> str:
        _, ext = os.path.splitext(filename or "")
        ext = ext.lower().lstrip(".")
        if ext not in self.allowed_extensions:
            raise ValidationFailed(f"Unsupported image type '{ext or filename}'.")
        return ext

    def save(self, upload: Optional[UploadFile], field: str = "image") -> Optional[str]:
        """Persist ``upload`` and return its URL; ``None`` when no file was sent."""
        if upload is None or not upload.filename:
            return None
        ext = self._extension(upload.filename)
        name = f"{field}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{ext}"
        with open(os.path.join(self.root, name), "wb") as out:
            shutil.copyfileobj(upload.file, out)
        log.info("stored upload %s as %s", upload.filename, name)
        return f"{self.url_prefix}/{name}"

    def discard(self, url: Optional[str]) -> None:
        """Remove a file stored by ``save`` whose owning document was never written."""
        if not url or not url.startswith(self.url_prefix + "/"):
            return
        path = os.path.join(self.root, os.path.basename(url))
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        log.info("discarded upload %s", os.path.basename(url))
