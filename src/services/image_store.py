"""
Cloudinary image store client.

Implements the two primitives the job worker needs:
1. upload_image(data, folder) -> UploadedImage
2. delete_image(url) -> None

Endpoints per the Cloudinary Upload API:
- POST /v1_1/{cloud_name}/image/upload - signed upload
- POST /v1_1/{cloud_name}/image/destroy - delete by public_id

Requests are signed with SHA-1 over the alphabetically sorted parameters
followed by the API secret.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import unquote, urlparse

import httpx

from src.config import Settings
from src.errors import ImageStoreError

logger = logging.getLogger(__name__)


_VERSION_SEGMENT = re.compile(r"^v\d+$")


@dataclass(frozen=True)
class UploadedImage:
    url: str
    public_id: str


class ImageStore(Protocol):
    async def upload_image(self, data: bytes, folder: str) -> UploadedImage: ...

    async def delete_image(self, url: str) -> None: ...


def public_id_from_url(url: str) -> str:
    """Extract the Cloudinary public_id from a delivery URL.

    https://res.cloudinary.com/demo/image/upload/v1712/brands/abc.png -> brands/abc
    Transformation segments between /upload/ and the version are skipped.
    """

    path = unquote(urlparse(url).path)
    marker = "/upload/"
    idx = path.find(marker)
    if idx < 0:
        raise ValueError(f"Not a Cloudinary delivery URL: {url}")

    segments = [s for s in path[idx + len(marker):].split("/") if s]
    for i, segment in enumerate(segments):
        if _VERSION_SEGMENT.match(segment):
            segments = segments[i + 1:]
            break

    if not segments:
        raise ValueError(f"Cloudinary URL has no public_id: {url}")

    last = segments[-1]
    if "." in last:
        segments[-1] = last.rsplit(".", 1)[0]
    return "/".join(segments)


def sign_params(params: dict[str, Any], api_secret: str) -> str:
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryImageStore:
    """HTTP client for the Cloudinary Upload API."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        *,
        base_url: str = "https://api.cloudinary.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock=time.time,
    ) -> None:
        if not cloud_name or not api_key or not api_secret:
            raise ValueError("Cloudinary cloud_name, api_key and api_secret are required")
        self.cloud_name = cloud_name
        self.api_key = api_key
        self._api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "CloudinaryImageStore":
        return cls(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
            base_url=settings.cloudinary_base_url,
            timeout=settings.cloudinary_timeout_seconds,
        )

    def _endpoint(self, action: str) -> str:
        return f"{self.base_url}/v1_1/{self.cloud_name}/image/{action}"

    def _signed(self, params: dict[str, Any]) -> dict[str, Any]:
        params = {**params, "timestamp": int(self._clock())}
        return {**params, "api_key": self.api_key, "signature": sign_params(params, self._api_secret)}

    async def _post(self, action: str, *, data: dict[str, Any], files: dict | None = None) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(self._endpoint(action), data=data, files=files)
            except httpx.HTTPError as e:
                raise ImageStoreError(f"Cloudinary {action} request failed: {e}") from e

        if response.status_code >= 400:
            raise ImageStoreError(
                f"Cloudinary {action} returned {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ImageStoreError(
                f"Cloudinary {action} returned a non-JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from e

    async def upload_image(self, data: bytes, folder: str) -> UploadedImage:
        body = await self._post(
            "upload",
            data=self._signed({"folder": folder}),
            files={"file": ("upload", data, "application/octet-stream")},
        )

        url = body.get("secure_url") or body.get("url")
        if not url:
            raise ImageStoreError("Cloudinary upload response has no URL", body=str(body))

        logger.info("image uploaded public_id=%s folder=%s", body.get("public_id"), folder)
        return UploadedImage(url=url, public_id=body.get("public_id") or public_id_from_url(url))

    async def delete_image(self, url: str) -> None:
        public_id = public_id_from_url(url)
        body = await self._post("destroy", data=self._signed({"public_id": public_id}))

        result = body.get("result")
        if result == "not found":
            # Already gone; deleting is idempotent from our side.
            logger.warning("image already absent public_id=%s", public_id)
            return
        if result != "ok":
            raise ImageStoreError(f"Cloudinary destroy returned result={result!r}", body=str(body))

        logger.info("image deleted public_id=%s", public_id)
