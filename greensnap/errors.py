"""Domain error taxonomy.

Every error raised by the core carries a machine-readable ``code``, a
human-readable ``message`` and a ``context`` dict with the evidence behind
the failure (missing fields, computed distance, classification result...).
``main.py`` renders these as JSON using ``status_code``.
"""

from __future__ import annotations

import re
from typing import Any


class GreenSnapError(Exception):
    """Base class for all GreenSnap domain errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self._default_code()
        self.context = context or {}

    def _default_code(self) -> str:
        # ReportNotFound -> REPORT_NOT_FOUND
        return re.sub(r"(?<!^)(?=[A-Z])", "_", type(self).__name__).upper()

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, **self.context}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# --- Input ---


class ValidationError(GreenSnapError):
    """Malformed or missing input. Lists every offending field."""

    status_code = 400

    def __init__(
        self,
        message: str,
        missing_fields: list[str] | None = None,
        invalid_fields: dict[str, str] | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if missing_fields:
            context["missingFields"] = list(missing_fields)
        if invalid_fields:
            context["invalidFields"] = dict(invalid_fields)
        super().__init__(message, context=context)
        self.missing_fields = list(missing_fields or [])
        self.invalid_fields = dict(invalid_fields or {})


class PayloadTooLarge(GreenSnapError):
    status_code = 413

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Image too large ({size} bytes, max {limit} bytes)",
            code="IMAGE_TOO_LARGE",
            context={"size": size, "limit": limit},
        )


class InvalidImageEncoding(GreenSnapError):
    status_code = 400

    def __init__(self, message: str = "Invalid base64 image format") -> None:
        super().__init__(message, code="INVALID_IMAGE_FORMAT")


# --- Lookup & authorization ---


class NotFound(GreenSnapError):
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity} not found",
            code="NOT_FOUND",
            context={"entity": entity.lower(), "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class Forbidden(GreenSnapError):
    status_code = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message, code="FORBIDDEN")


# --- Lifecycle ---


class InvalidTransition(GreenSnapError):
    """The report's current status does not permit the requested transition."""

    status_code = 400

    def __init__(
        self,
        current_status: str,
        requested_status: str,
        message: str | None = None,
        code: str = "INVALID_TRANSITION",
        allowed: list[str] | None = None,
    ) -> None:
        context: dict[str, Any] = {"currentStatus": current_status, "requestedStatus": requested_status}
        if allowed is not None:
            context["allowedStatuses"] = list(allowed)
        super().__init__(
            message or f"Cannot move report from '{current_status}' to '{requested_status}'",
            code=code,
            context=context,
        )
        self.current_status = current_status
        self.requested_status = requested_status


class PreconditionFailed(InvalidTransition):
    def __init__(self, current_status: str, requested_status: str, message: str) -> None:
        super().__init__(
            current_status, requested_status, message=message, code="PRECONDITION_FAILED"
        )


class MissingData(GreenSnapError):
    status_code = 400

    def __init__(self, message: str = "Location data missing") -> None:
        super().__init__(message, code="MISSING_DATA")


class TooFarApart(GreenSnapError):
    status_code = 400

    def __init__(self, distance: float, radius: float) -> None:
        rounded = round(distance, 2)
        super().__init__(
            f"Resolved location is {rounded:.2f} meters away - must be within {radius:g} meters",
            code="TOO_FAR_APART",
            context={"distance": rounded, "radius": radius},
        )
        self.distance = distance
        self.radius = radius


# --- Classification gate ---


class ClassificationRejected(GreenSnapError):
    """Base for gate rejections; always carries the full classification."""

    status_code = 400

    def __init__(self, message: str, code: str, classification: Any) -> None:
        super().__init__(
            message, code=code, context={"classification": classification.to_dict()}
        )
        self.classification = classification


class NotWaste(ClassificationRejected):
    def __init__(self, classification: Any) -> None:
        super().__init__("Image is not of waste", "NOT_WASTE", classification)


class LowConfidence(ClassificationRejected):
    def __init__(self, classification: Any) -> None:
        super().__init__(
            "Low confidence in waste detection", "LOW_CONFIDENCE", classification
        )


# --- Upstream ---


class UpstreamError(GreenSnapError):
    status_code = 502


class ServiceUnavailable(UpstreamError):
    status_code = 503

    def __init__(self, message: str = "Waste verification service unavailable") -> None:
        super().__init__(message, code="SERVICE_UNAVAILABLE")


class ClassifierTimeout(UpstreamError):
    status_code = 504

    def __init__(self, message: str = "Image verification timed out") -> None:
        super().__init__(message, code="TIMEOUT")


class InvalidUpstreamResponse(UpstreamError):
    def __init__(self, message: str = "Invalid classification response") -> None:
        super().__init__(message, code="INVALID_RESPONSE")


class UpstreamUnauthorized(UpstreamError):
    def __init__(self, message: str = "Authentication failed with AI service") -> None:
        super().__init__(message, code="CLASSIFIER_UNAUTHORIZED")


class UploadTimeout(UpstreamError):
    status_code = 504

    def __init__(self, message: str = "Image upload timed out") -> None:
        super().__init__(message, code="UPLOAD_TIMEOUT")


class UploadFailed(UpstreamError):
    def __init__(self, message: str = "Image upload failed") -> None:
        super().__init__(message, code="UPLOAD_FAILED")


class PersistenceError(GreenSnapError):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message, code="PERSISTENCE_ERROR")
