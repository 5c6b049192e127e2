"""
Photo upload handling for task completion.

All supplied slots are read and validated first; nothing is written to storage
until every slot has passed, so a rejected upload never leaves a half-completed task.
"""
import os
import random
import re
import time
from typing import Dict, Optional

from fastapi import UploadFile

from ..config import settings
from ..storage.provider import StorageProvider
from .errors import ValidationFailed


PHOTO_SLOTS = ("photo_before", "photo_after", "photo_damage")

_EXT_RE = re.compile(r"^\.[a-z0-9]{1,10}$")


class PendingPhoto:
    def __init__(self, slot: str, original_name: str, content_type: str, data: bytes):
        self.slot = slot
        self.original_name = original_name
        self.content_type = content_type
        self.data = data


def generate_photo_filename(original_name: Optional[str]) -> str:
    """
    Unique flat filename for a cleaning photo.

    Args:
        original_name: Client-supplied filename, used only for its extension

    Returns:
        Name like "cleaning-1712345678901-123456789.jpg"
    """
    ext = os.path.splitext(original_name or "")[1].lower()
    if not _EXT_RE.match(ext):
        ext = ""
    suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return f"cleaning-{suffix}{ext}"


def read_photo_uploads(uploads: Dict[str, Optional[UploadFile]]) -> Dict[str, PendingPhoto]:
    """
    Read and validate the supplied photo slots.

    Args:
        uploads: Slot name -> UploadFile (or None when the slot was omitted)

    Returns:
        Slot name -> validated photo for every supplied slot

    Raises:
        ValidationFailed: a file is not an image or exceeds the size limit
    """
    limit = settings.max_upload_bytes
    pending: Dict[str, PendingPhoto] = {}
    for slot in PHOTO_SLOTS:
        upload = uploads.get(slot)
        if upload is None or not upload.filename:
            continue
        content_type = (upload.content_type or "").lower()
        if not content_type.startswith("image/"):
            raise ValidationFailed("Only image files are allowed")
        data = upload.file.read(limit + 1)
        if len(data) > limit:
            raise ValidationFailed("File too large")
        pending[slot] = PendingPhoto(slot, upload.filename, content_type, data)
    return pending


def save_photos(storage: StorageProvider, pending: Dict[str, PendingPhoto]) -> Dict[str, str]:
    """Write validated photos; returns slot name -> public /uploads path."""
    return {
        slot: storage.save(photo.data, generate_photo_filename(photo.original_name))
        for slot, photo in pending.items()
    }


def discard_photos(storage: StorageProvider, saved: Dict[str, str]) -> None:
    for key in saved.values():
        storage.delete(key)
