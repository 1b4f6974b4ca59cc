"""
Local file storage for donation photos and prescription images.

Uploads land in UPLOAD_DIR/<subdir>/ and are referenced everywhere by the
public URL returned from save_upload; main.py serves UPLOAD_DIR at /uploads.
"""
import logging
import os
import shutil
import time
import uuid
from pathlib import Path

from fastapi import UploadFile

from errors import ServerError

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000").rstrip("/")
UPLOAD_URL_PREFIX = f"{BACKEND_URL}/uploads/"


def save_upload(upload: UploadFile, subdir: str = "") -> str:
    """Store an uploaded file and return its public URL."""
    target_dir = Path(UPLOAD_DIR) / subdir
    suffix = Path(upload.filename or "").suffix
    filename = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{suffix}"
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        with open(target_dir / filename, "wb") as out:
            shutil.copyfileobj(upload.file, out)
    except OSError:
        logger.exception("Could not store upload %s", upload.filename)
        raise ServerError()

    relative = f"{subdir}/{filename}" if subdir else filename
    logger.info("Stored upload %s", relative)
    return UPLOAD_URL_PREFIX + relative


def delete_upload(url: str) -> None:
    """Remove a stored file. Missing files and OS errors are only logged."""
    if not url.startswith(UPLOAD_URL_PREFIX):
        return
    path = Path(UPLOAD_DIR) / url[len(UPLOAD_URL_PREFIX):]
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove upload %s: %s", path, exc)
