# Overview: Image storage on the local filesystem under UPLOAD_FOLDER.

"""
Object storage for product and stand images.

Files are written as "<epoch ms>-<secure filename>" so repeated uploads of
the same name never collide, and served back under UPLOAD_URL_PREFIX.
The returned path is the storage key; keep it to delete the file later.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass

from flask import current_app
from werkzeug.utils import secure_filename

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


class StorageError(Exception):
    """Raised for upload / delete failures."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class UploadResult:
    url: str
    path: str

    def to_dict(self) -> dict:
        return {"url": self.url, "path": self.path}


def _upload_folder() -> str:
    return current_app.config["UPLOAD_FOLDER"]


def _extension(filename: str) -> str:
    return filename.rsplit(".", 1)[1].lower() if "." in filename else ""


def public_url(path: str) -> str:
    prefix = current_app.config.get("UPLOAD_URL_PREFIX", "/uploads").rstrip("/")
    return f"{prefix}/{path}"


def resolve_path(path: str) -> str:
    """Absolute location of a storage key; rejects anything escaping UPLOAD_FOLDER."""
    safe = secure_filename(path or "")
    if not safe or safe != path:
        raise StorageError("Invalid storage path", details={"path": path})
    return os.path.join(_upload_folder(), safe)


def upload(data: bytes, filename: str) -> UploadResult:
    if not data:
        raise StorageError("Empty file")

    safe_name = secure_filename(filename or "")
    if not safe_name or _extension(safe_name) not in ALLOWED_EXTENSIONS:
        raise StorageError(
            "Only image files can be uploaded",
            details={"allowed": sorted(ALLOWED_EXTENSIONS)},
        )

    path = f"{int(time.time() * 1000)}-{safe_name}"
    folder = _upload_folder()
    os.makedirs(folder, exist_ok=True)
    with open(os.path.join(folder, path), "wb") as fh:
        fh.write(data)

    current_app.logger.info("Stored upload %s (%d bytes)", path, len(data))
    return UploadResult(url=public_url(path), path=path)


def delete(path: str) -> bool:
    """Remove a stored file. False when it does not exist."""
    full_path = resolve_path(path)
    if not os.path.exists(full_path):
        return False
    os.remove(full_path)
    return True


def path_from_url(url: str) -> str | None:
    """Storage key for a URL produced by upload(), None for foreign URLs."""
    prefix = current_app.config.get("UPLOAD_URL_PREFIX", "/uploads").rstrip("/") + "/"
    if not url or not url.startswith(prefix):
        return None
    return url[len(prefix):] or None
