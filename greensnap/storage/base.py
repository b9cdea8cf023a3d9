"""Base protocol for image storage backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from greensnap.models.report import StoredImage


@dataclass
class Transform:
    """Delivery options applied at upload time."""

    max_width: int | None = None
    quality: str = "auto:good"
    format: str | None = None
    extra: dict[str, str] = field(default_factory=dict)


REPORT_UPLOAD = Transform(max_width=800, quality="auto:good", format="jpg")
RESOLUTION_UPLOAD = Transform(quality="auto:good")


@runtime_checkable
class Storage(Protocol):
    """Interface the report lifecycle needs from image storage."""

    async def upload(self, image: bytes, folder: str, transform: Transform) -> StoredImage:
        """Store an image; raises UploadTimeout or UploadFailed."""
        ...

    async def delete(self, public_id: str) -> None:
        """Remove a stored image."""
        ...
