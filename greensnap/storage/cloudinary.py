"""Cloudinary image storage over the signed REST upload API."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import time

import httpx

from greensnap.config import settings
from greensnap.errors import UploadFailed, UploadTimeout
from greensnap.models.report import StoredImage
from greensnap.storage.base import Transform

logger = logging.getLogger(__name__)

CLOUDINARY_API_URL = "https://api.cloudinary.com/v1_1"


def sign(params: dict[str, str], api_secret: str) -> str:
    """Cloudinary request signature: SHA-1 of sorted ``k=v`` pairs plus the secret."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] != "")
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def transformation_string(transform: Transform) -> str:
    parts = []
    if transform.max_width:
        parts.append(f"c_limit,w_{transform.max_width}")
    if transform.quality:
        parts.append(f"q_{transform.quality}")
    return "/".join(parts)


class TransientUploadError(Exception):
    """Storage failure worth retrying (connection refused, 5xx)."""


class CloudinaryStorage:
    """Stores report images in Cloudinary.

    Connection errors and 5xx responses are retried with exponential backoff
    up to ``max_attempts`` calls in total; timeouts and 4xx are not.
    """

    def __init__(
        self,
        cloud_name: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
    ) -> None:
        self.cloud_name = cloud_name or settings.cloudinary_cloud_name
        self.api_key = api_key or settings.cloudinary_api_key
        self.api_secret = api_secret or settings.cloudinary_api_secret
        self.timeout = timeout or settings.upload_timeout
        self.max_attempts = max(1, max_attempts or settings.upload_max_attempts)
        self.backoff_base = backoff_base if backoff_base is not None else settings.upload_backoff_base

    @property
    def _base_url(self) -> str:
        return f"{CLOUDINARY_API_URL}/{self.cloud_name}/image"

    def _signed(self, params: dict[str, str]) -> dict[str, str]:
        params = {**params, "timestamp": str(int(time.time()))}
        params["signature"] = sign(params, self.api_secret)
        params["api_key"] = self.api_key
        return params

    async def upload(self, image: bytes, folder: str, transform: Transform) -> StoredImage:
        params = {"folder": folder, **transform.extra}
        transformation = transformation_string(transform)
        if transformation:
            params["transformation"] = transformation
        if transform.format:
            params["format"] = transform.format

        data = self._signed(params)
        data["file"] = "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")

        response = await self._send("upload", data)
        try:
            body = response.json()
            stored = StoredImage(url=body["secure_url"], public_id=body["public_id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise UploadFailed("Image upload returned an unexpected response") from exc
        logger.info("Uploaded image %s to %s", stored.public_id, folder)
        return stored

    async def delete(self, public_id: str) -> None:
        await self._send("destroy", self._signed({"public_id": public_id}))
        logger.info("Deleted image %s", public_id)

    async def _send(self, endpoint: str, data: dict[str, str]) -> httpx.Response:
        """POST to ``endpoint``, retrying transient failures."""
        delay = self.backoff_base
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._post(endpoint, data)
            except TransientUploadError as exc:
                last_error = exc
                logger.warning(
                    "Cloudinary %s attempt %d/%d failed: %s",
                    endpoint, attempt, self.max_attempts, exc,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(delay)
                    delay *= 2
        logger.error("Cloudinary %s failed after %d attempts", endpoint, self.max_attempts)
        raise UploadFailed() from last_error

    async def _post(self, endpoint: str, data: dict[str, str]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self._base_url}/{endpoint}", data=data)
        except httpx.TimeoutException as exc:
            logger.error("Cloudinary %s timed out", endpoint)
            raise UploadTimeout() from exc
        except httpx.TransportError as exc:
            raise TransientUploadError(f"Connection failed: {exc}") from exc

        if response.status_code >= 500:
            raise TransientUploadError(f"Cloudinary returned {response.status_code}")
        if response.status_code >= 400:
            logger.error("Cloudinary %s rejected: %d %s", endpoint, response.status_code, response.text)
            raise UploadFailed(f"Image upload rejected ({response.status_code})")
        return response
