from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.crud.brand import brands
from src.schemas.job import DeleteFilePayload, UploadFilePayload
from src.services.image_store import ImageStore
from src.services.uploads import read_stored_file, remove_stored_file

logger = logging.getLogger(__name__)


class BrandJobHandler:
    """Executes brand icon jobs pulled off the queue."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        image_store: ImageStore,
        *,
        folder: str = "brands",
    ) -> None:
        self._session_factory = session_factory
        self._image_store = image_store
        self._folder = folder

    async def __call__(self, payload: UploadFilePayload | DeleteFilePayload) -> None:
        match payload:
            case UploadFilePayload():
                await self.upload_file(payload)
            case DeleteFilePayload():
                await self.delete_file(payload)
            case _:
                raise TypeError(f"Unsupported job payload: {type(payload).__name__}")

    async def upload_file(self, payload: UploadFilePayload) -> None:
        data = await read_stored_file(payload.file)
        image = await self._image_store.upload_image(data, self._folder)

        async with self._session_factory() as session:
            brand = await brands.update_by_id(session, id=payload.brand.id, obj_in={"icon": image.url})
            await session.commit()

        if brand is None:
            logger.warning(
                "brand vanished before icon applied brand_id=%s url=%s",
                payload.brand.id,
                image.url,
            )

        # Removed last so a retried attempt can still read the file.
        await remove_stored_file(payload.file)

    async def delete_file(self, payload: DeleteFilePayload) -> None:
        await self._image_store.delete_image(payload.url)
