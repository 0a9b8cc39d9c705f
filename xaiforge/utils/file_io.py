# Upload file handling
import logging
import os
import re
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException, UploadFile

from xaiforge.config.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB


UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")
MAX_FILENAME_LENGTH = 200


def secure_filename(filename: Optional[str]) -> str:
    """Base name of an upload reduced to letters, digits, ``_``, ``.`` and ``-``."""
    base = re.split(r"[\\/]", filename or "")[-1]
    cleaned = UNSAFE_FILENAME_CHARS.sub("_", base).strip("._")
    if not cleaned:
        return "upload.csv"

    stem, ext = os.path.splitext(cleaned)
    # uuid prefix is added by the caller
    return stem[:MAX_FILENAME_LENGTH - len(ext)] + ext


def cleanup_file(path: Optional[Path]) -> None:
    """Remove a stored upload; a file that is already gone is not an error."""
    if not path:
        return
    try:
        Path(path).unlink()
        logger.info(f"Cleaned up file: {path}")
    except FileNotFoundError:
        logger.debug(f"File {path} already cleaned up")
    except OSError as e:
        logger.warning(f"OS error cleaning up {path}: {e}")


async def save_upload(file: UploadFile, settings: Optional[Settings] = None) -> Path:
    """
    Stream an uploaded file into the upload directory under a collision-free name.

    Raises:
        HTTPException(413): File size exceeds limit
        HTTPException(415): Missing filename or unsupported extension
        HTTPException(507): Insufficient disk space
    """
    settings = settings or default_settings
    if not file.filename:
        raise HTTPException(status_code=415, detail="No filename provided")

    file_extension = Path(file.filename).suffix.lower()
    if file_extension not in settings.supported_file_extensions:
        raise HTTPException(
            status_code=415,
            detail=f"Unsupported file format: {file_extension}. "
                   f"Supported formats: {list(settings.supported_file_extensions)}"
        )

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    target = upload_dir / f"{uuid4().hex}_{secure_filename(file.filename)}"

    total_size = 0
    max_size_bytes = settings.max_upload_size_mb * 1024 * 1024

    try:
        with open(target, "wb") as buffer:
            target.chmod(0o600)
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > max_size_bytes:
                    break
                buffer.write(chunk)
    except OSError as e:
        logger.error(f"OS error writing file {target}: {e}")
        cleanup_file(target)
        if e.errno == 28:  # ENOSPC
            raise HTTPException(status_code=507, detail="Insufficient disk space to save file")
        raise HTTPException(status_code=500, detail="Failed to save file")

    if total_size > max_size_bytes:
        cleanup_file(target)
        raise HTTPException(
            status_code=413,
            detail=f"File size exceeds limit ({settings.max_upload_size_mb}MB)"
        )

    logger.info(f"Saved upload {file.filename} ({total_size} bytes) to {target}")
    return target
