from __future__ import annotations

import logging
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from src.errors import ValidationError
from src.schemas.job import StoredFile

logger = logging.getLogger(__name__)


CHUNK_SIZE = 1024 * 1024


class LocalUploadStorage:
    """Temporary on-disk home for multipart uploads until the worker ships them."""

    def __init__(self, directory: str) -> None:
        self.directory = Path(directory)

    async def save(self, upload: UploadFile) -> StoredFile:
        content_type = upload.content_type or ""
        if not content_type.startswith("image/"):
            raise ValidationError("The file must be an image.", field="file")

        suffix = Path(upload.filename or "").suffix.lower()
        filename = f"{uuid.uuid4().hex}{suffix}"

        await aiofiles.os.makedirs(self.directory, exist_ok=True)
        target = self.directory / filename
        async with aiofiles.open(target, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                await out.write(chunk)

        logger.info("upload stored filename=%s original=%s", filename, upload.filename)
        return StoredFile(path=str(target), filename=filename, content_type=content_type)


async def read_stored_file(stored: StoredFile) -> bytes:
    async with aiofiles.open(stored.path, "rb") as f:
        return await f.read()


async def remove_stored_file(stored: StoredFile) -> None:
    try:
        await aiofiles.os.remove(stored.path)
    except FileNotFoundError:
        logger.debug("stored upload already removed path=%s", stored.path)
