import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional

from . import config
from .errors import ValidationError

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads"
SUBDIRS = ("materials", "certificates", "courses", "avatars")


class LocalFileStorage:
    """Disk storage for lesson material, images and rendered certificates.

    References handed out look like ``/uploads/<subdir>/<name>`` and are
    stored verbatim on documents.
    """

    def __init__(self, root: Path = config.UPLOAD_DIR, max_size_mb: int = config.MAX_UPLOAD_SIZE_MB):
        self.root = Path(root)
        self.max_bytes = max_size_mb * 1024 * 1024

    def init(self):
        for sub in SUBDIRS:
            (self.root / sub).mkdir(parents=True, exist_ok=True)

    def path_for(self, subdir: str, filename: str) -> Path:
        return self.root / subdir / filename

    def url_for(self, subdir: str, filename: str) -> str:
        return f"{URL_PREFIX}/{subdir}/{filename}"

    def save(self, data: bytes, filename: str, subdir: str = "materials") -> str:
        if len(data) > self.max_bytes:
            raise ValidationError(f"File exceeds the {self.max_bytes // (1024 * 1024)}MB upload limit")
        ext = os.path.splitext(filename or "")[1].lower()
        name = f"{uuid.uuid4().hex}{ext}"
        target = self.path_for(subdir, name)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return self.url_for(subdir, name)

    def save_image(self, data: bytes, filename: str, mime_type: Optional[str], subdir: str) -> str:
        if not (mime_type or "").startswith("image/"):
            raise ValidationError("Please upload an image file")
        return self.save(data, filename, subdir)

    def resolve(self, ref: str) -> Optional[Path]:
        if not ref or not ref.startswith(URL_PREFIX + "/"):
            return None
        return self.root / ref[len(URL_PREFIX) + 1:]

    def delete(self, ref: Optional[str]):
        """Remove a stored file; failures are logged, never raised."""
        path = self.resolve(ref)
        if path is None:
            return
        try:
            path.unlink()
        except OSError as e:
            logger.warning("Could not delete stored file %s: %s", ref, e)


def stored_refs(document: Optional[dict], *fields: str) -> List[str]:
    """Upload references held by ``document`` under ``fields``.

    A field holds either the reference itself or a sub-document with a ``url``.
    """
    refs = []
    for field in fields:
        value = (document or {}).get(field)
        if isinstance(value, dict):
            value = value.get("url")
        if isinstance(value, str) and value.startswith(URL_PREFIX + "/"):
            refs.append(value)
    return refs


storage = LocalFileStorage()


def init_storage(root: Optional[Path] = None) -> LocalFileStorage:
    """Create the upload directory tree; called once from app startup."""
    if root is not None:
        storage.root = Path(root)
    storage.init()
    return storage


def get_storage() -> LocalFileStorage:
    return storage
