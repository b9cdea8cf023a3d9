"""Base protocol for waste classifiers, plus shared image decoding."""

from __future__ import annotations

import base64
import binascii
import re
from typing import Protocol, runtime_checkable

from greensnap.errors import InvalidImageEncoding
from greensnap.models.classification import ClassificationResult

_DATA_URI_PREFIX = re.compile(r"^data:[\w.+-]+/[\w.+-]+;base64,", re.IGNORECASE)


def strip_data_uri(image: str) -> str:
    """Drop a ``data:image/...;base64,`` prefix and surrounding whitespace."""
    return _DATA_URI_PREFIX.sub("", image.strip(), count=1)


def decode_image(image: str | bytes) -> tuple[str, bytes]:
    """Normalize an image payload to ``(base64_text, raw_bytes)``.

    Raw bytes are passed through and re-encoded. Strings must be well-formed
    base64 once any data-URI prefix is removed.
    """
    if isinstance(image, (bytes, bytearray)):
        raw = bytes(image)
        return base64.b64encode(raw).decode("ascii"), raw

    encoded = strip_data_uri(image)
    if not encoded:
        raise InvalidImageEncoding("Image payload is empty")
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageEncoding() from exc
    return encoded, raw


@runtime_checkable
class Classifier(Protocol):
    """Interface the report lifecycle needs from an image classifier."""

    name: str

    async def classify(self, image: str | bytes) -> ClassificationResult:
        """Classify an image (raw bytes or base64, data-URI allowed)."""
        ...
