from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from starlette.concurrency import run_in_threadpool

from campus_eats.core.config import settings

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


class ImageStoreError(Exception):
    pass


class LocalImageStore:
    """Writes uploads under UPLOAD_DIR; they are served from STATIC_URL_PREFIX."""

    def __init__(self, root: str | None = None, url_prefix: str | None = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.url_prefix = (url_prefix or settings.STATIC_URL_PREFIX).rstrip("/")

    def _write(self, relative: Path, data: bytes) -> None:
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def save(self, *, folder: str, content_type: str | None, data: bytes) -> str:
        ext = ALLOWED_CONTENT_TYPES.get((content_type or "").lower())
        if ext is None:
            raise ImageStoreError(f"Unsupported image type: {content_type}")
        if not data:
            raise ImageStoreError("Empty upload")

        relative = Path(folder) / f"{uuid4().hex}{ext}"
        await run_in_threadpool(self._write, relative, data)
        return f"{self.url_prefix}/{relative.as_posix()}"


def get_image_store() -> LocalImageStore:
    return LocalImageStore()
