"""Local filesystem storage for uploaded documents and extracted covers."""
import mimetypes
import os
import re
import time
from pathlib import Path

from booklens.exceptions import DocumentNotFoundError
from booklens.utils.logger import logger

COVERS_DIR = "covers"
DOCUMENTS_DIR = "documents"
_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_name(filename: str) -> str:
    name = _UNSAFE_NAME_RE.sub("_", Path(filename).name).strip("._")
    return name or "document"


class LocalFileStorage:
    """Keeps document bytes and cover images under an upload directory."""

    def __init__(self, upload_dir: str = "./uploads", public_base_url: str = "http://localhost:8000"):
        """
        Initialize file storage.

        Args:
            upload_dir: Root directory for stored files
            public_base_url: Base URL the covers directory is served under
        """
        self.upload_dir = Path(upload_dir)
        self.public_base_url = public_base_url.rstrip("/")
        os.makedirs(self.upload_dir / DOCUMENTS_DIR, exist_ok=True)
        os.makedirs(self.covers_dir, exist_ok=True)
        logger.info(f"File storage initialized at {self.upload_dir}")

    @property
    def covers_dir(self) -> Path:
        return self.upload_dir / COVERS_DIR

    def _resolve(self, path: str) -> Path:
        resolved = (self.upload_dir / path).resolve()
        if self.upload_dir.resolve() not in resolved.parents:
            raise DocumentNotFoundError(f"Invalid storage path: {path}")
        return resolved

    def save_document(self, owner_id: str, filename: str, data: bytes) -> str:
        """
        Store uploaded document bytes.

        Args:
            owner_id: Uploading user
            filename: Original file name
            data: File content

        Returns:
            Storage path relative to the upload directory
        """
        relative = Path(DOCUMENTS_DIR) / _safe_name(owner_id) / f"{int(time.time() * 1000)}_{_safe_name(filename)}"
        target = self.upload_dir / relative
        os.makedirs(target.parent, exist_ok=True)
        target.write_bytes(data)
        logger.info(f"Stored document {relative} ({len(data):,} bytes)")
        return relative.as_posix()

    def read_document(self, path: str) -> bytes:
        """Read stored document bytes."""
        target = self._resolve(path)
        if not target.is_file():
            raise DocumentNotFoundError(f"Stored file not found: {path}")
        return target.read_bytes()

    def delete_document(self, path: str) -> bool:
        """Delete a stored document; returns False when it was already gone."""
        target = self._resolve(path)
        if not target.exists():
            return False
        target.unlink()
        return True

    def save_cover(self, document_id: str, data: bytes, media_type: str = "image/jpeg") -> str:
        """
        Store a cover image.

        Args:
            document_id: Document the cover belongs to
            data: Image bytes
            media_type: Image MIME type, used for the file extension

        Returns:
            Public URL of the stored cover
        """
        extension = mimetypes.guess_extension(media_type or "") or ".jpg"
        if extension == ".jpe":
            extension = ".jpg"
        name = f"{_safe_name(document_id)}_{int(time.time() * 1000)}{extension}"
        (self.covers_dir / name).write_bytes(data)
        return f"{self.public_base_url}/files/{COVERS_DIR}/{name}"
