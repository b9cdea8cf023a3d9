"""Report data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4


class ReportStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    PERMANENT_RESOLVED = "permanent-resolved"
    REJECTED = "rejected"
    OUT_OF_SCOPE = "out-of-scope"


class ReportType(Enum):
    STANDARD = "standard"
    HAZARDOUS = "hazardous"
    LARGE = "large"


REPORT_POINTS = {
    ReportType.STANDARD: 10,
    ReportType.HAZARDOUS: 20,
    ReportType.LARGE: 15,
}


def points_for(report_type: ReportType | str | None) -> int:
    """Tally points for a report type; unknown types score as standard."""
    if isinstance(report_type, str):
        try:
            report_type = ReportType(report_type)
        except ValueError:
            report_type = None
    return REPORT_POINTS.get(report_type, REPORT_POINTS[ReportType.STANDARD])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    @property
    def coordinates(self) -> list[float]:
        """GeoJSON order: [longitude, latitude]."""
        return [self.longitude, self.latitude]

    def to_dict(self) -> dict[str, Any]:
        return {"type": "Point", "coordinates": self.coordinates}


@dataclass
class StoredImage:
    """A reference to an image held by external storage."""

    url: str
    public_id: str


@dataclass
class Report:
    """A citizen-submitted waste report and its lifecycle fields."""

    user_id: str
    title: str
    details: str
    address: str
    location: GeoPoint
    image: StoredImage
    report_type: ReportType = ReportType.STANDARD
    status: ReportStatus = ReportStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    photo_timestamp: datetime = field(default_factory=utcnow)
    classification_bypassed: bool = False
    classification_label: str | None = None
    classification_confidence: float | None = None

    assigned_to: str | None = None
    assigned_at: datetime | None = None
    assigned_msg: str | None = None

    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolved_image: StoredImage | None = None
    resolved_location: GeoPoint | None = None
    resolved_address: str | None = None

    permanently_resolved_by: str | None = None
    permanently_resolved_at: datetime | None = None
    distance_to_reported: float | None = None

    rejected_by: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None

    out_of_scope_by: str | None = None
    out_of_scope_at: datetime | None = None
    out_of_scope_reason: str | None = None

    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def points(self) -> int:
        return points_for(self.report_type)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "id": self.id,
            "user": self.user_id,
            "title": self.title,
            "details": self.details,
            "address": self.address,
            "location": self.location.to_dict(),
            "image": self.image.url,
            "publicId": self.image.public_id,
            "reportType": self.report_type.value,
            "status": self.status.value,
            "createdTime": _iso(self.created_at),
            "photoTimestamp": _iso(self.photo_timestamp),
            "classificationBypassed": self.classification_bypassed,
            "classificationLabel": self.classification_label,
            "classificationConfidence": self.classification_confidence,
            "assignedTo": self.assigned_to,
            "assignedAt": _iso(self.assigned_at),
            "assignedMsg": self.assigned_msg,
            "resolvedBy": self.resolved_by,
            "resolvedAt": _iso(self.resolved_at),
            "resolvedImage": self.resolved_image.url if self.resolved_image else None,
            "resolvedPublicId": self.resolved_image.public_id if self.resolved_image else None,
            "resolvedLocation": self.resolved_location.to_dict() if self.resolved_location else None,
            "resolvedAddress": self.resolved_address,
            "permanentlyResolvedBy": self.permanently_resolved_by,
            "permanentlyResolvedAt": _iso(self.permanently_resolved_at),
            "distanceToReported": self.distance_to_reported,
            "rejectedBy": self.rejected_by,
            "rejectedAt": _iso(self.rejected_at),
            "rejectionReason": self.rejection_reason,
            "outOfScopeBy": self.out_of_scope_by,
            "outOfScopeAt": _iso(self.out_of_scope_at),
            "outOfScopeReason": self.out_of_scope_reason,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
