"""Filesystem blob storage for message attachments."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Iterable
from uuid import uuid4

from fastapi import UploadFile

from app.config import get_settings
from app.core.errors import NotFound, ValidationFailed

settings = get_settings()
logger = logging.getLogger(__name__)

_CHUNK_SIZE: Final[int] = 1024 * 1024  # 1 MiB


@dataclass(slots=True)
class StoredFile:
    """Represents a file persisted by the storage backend."""

    file_name: str
    content_type: str | None
    file_size: int
    absolute_path: Path
    relative_path: str


def _media_root() -> Path:
    root = settings.media_root
    root.mkdir(parents=True, exist_ok=True)
    return root


async def store_upload(channel_id: int, upload: UploadFile) -> StoredFile:
    """Persist an uploaded file under ``attachments/<channel_id>``."""

    target_dir = _media_root() / "attachments" / str(channel_id)
    target_dir.mkdir(parents=True, exist_ok=True)

    original_name = upload.filename or "upload.bin"
    absolute_path = target_dir / f"{uuid4().hex}{Path(original_name).suffix}"

    total_size = 0
    try:
        with absolute_path.open("wb") as buffer:
            while True:
                chunk = await upload.read(_CHUNK_SIZE)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > settings.max_upload_size:
                    raise ValidationFailed(f"Attachment '{original_name}' exceeds allowed size")
                buffer.write(chunk)
    except (ValidationFailed, OSError):
        absolute_path.unlink(missing_ok=True)
        raise
    finally:
        await upload.close()

    return StoredFile(
        file_name=original_name,
        content_type=upload.content_type,
        file_size=total_size,
        absolute_path=absolute_path,
        relative_path=os.path.relpath(absolute_path, _media_root()),
    )


def delete_stored(relative_paths: Iterable[str]) -> int:
    """Remove stored blobs; returns how many files were deleted."""

    root = _media_root().resolve()
    removed = 0
    for relative_path in relative_paths:
        candidate = (root / relative_path).resolve()
        if not candidate.is_relative_to(root):
            logger.warning("Refusing to delete blob outside media root: %s", relative_path)
            continue
        try:
            candidate.unlink()
        except FileNotFoundError:
            continue
        except OSError:
            logger.warning("Failed to delete attachment blob %s", relative_path, exc_info=True)
            continue
        removed += 1
    return removed


def resolve_path(relative_path: str) -> Path:
    """Return an absolute path for a stored file relative path."""

    root = _media_root().resolve()
    candidate = (root / relative_path).resolve()
    if not candidate.is_relative_to(root) or not candidate.is_file():
        raise NotFound("File not found")
    return candidate


def build_download_url(channel_id: int, attachment_id: int) -> str:
    """Construct a relative download URL for an attachment."""

    base = settings.media_base_url.rstrip("/")
    return f"{base}/{channel_id}/attachments/{attachment_id}/download"
