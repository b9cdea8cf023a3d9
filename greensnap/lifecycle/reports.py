"""Report lifecycle: the submission gate and every status transition."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from greensnap.classifier.base import Classifier, decode_image
from greensnap.config import settings
from greensnap.db.base import Persistence
from greensnap.errors import (
    Forbidden,
    GreenSnapError,
    InvalidTransition,
    MissingData,
    NotFound,
    PayloadTooLarge,
    TooFarApart,
    UploadFailed,
    UploadTimeout,
    ValidationError,
)
from greensnap.lifecycle.geo import distance_meters
from greensnap.lifecycle.state_machine import Action, authorize, check_transition
from greensnap.models.classification import ClassificationPolicy, ClassificationResult
from greensnap.models.report import (
    GeoPoint,
    Report,
    ReportStatus,
    ReportType,
    StoredImage,
    points_for,
    utcnow,
)
from greensnap.models.user import Role, User
from greensnap.storage.base import REPORT_UPLOAD, RESOLUTION_UPLOAD, Storage, Transform

logger = logging.getLogger(__name__)

REPORTS_FOLDER = "reports"
RESOLVED_FOLDER = "resolved-reports"


@dataclass
class ReportSubmission:
    """Raw submission input; validated by ``ReportLifecycle.submit``."""

    title: str | None = None
    image: str | bytes | None = None
    details: str | None = None
    address: str | None = None
    latitude: Any = None
    longitude: Any = None
    photo_timestamp: datetime | None = None
    report_type: str | None = None
    force_submit: bool = False


@dataclass
class SubmissionOutcome:
    report: Report
    points_earned: int
    classification: ClassificationResult | None = None


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, bytearray)):
        return not value.strip()
    return False


def _coordinate(
    name: str, value: Any, bound: float, missing: list[str], invalid: dict[str, str]
) -> float | None:
    if _blank(value):
        missing.append(name)
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        invalid[name] = "must be a number"
        return None
    if not -bound <= number <= bound:
        invalid[name] = f"must be between {-bound:g} and {bound:g}"
        return None
    return number


def _raise_if_invalid(missing: list[str], invalid: dict[str, str]) -> None:
    if not missing and not invalid:
        return
    parts = []
    if missing:
        parts.append(f"Missing required fields: {', '.join(missing)}")
    if invalid:
        parts.append(f"Invalid fields: {', '.join(invalid)}")
    raise ValidationError("; ".join(parts), missing_fields=missing, invalid_fields=invalid)


def validate_location(
    latitude: Any, longitude: Any, missing: list[str], invalid: dict[str, str]
) -> GeoPoint | None:
    lat = _coordinate("latitude", latitude, 90.0, missing, invalid)
    lon = _coordinate("longitude", longitude, 180.0, missing, invalid)
    if lat is None or lon is None:
        return None
    return GeoPoint(latitude=lat, longitude=lon)


class ReportLifecycle:
    """Owns report status and every transition between statuses.

    Transitions are written with a compare-and-swap on the previous status,
    so of two racing writers only the first wins; the other gets
    ``InvalidTransition`` with the status it lost to.
    """

    def __init__(
        self,
        store: Persistence,
        classifier: Classifier,
        storage: Storage,
        policy: ClassificationPolicy | None = None,
        max_image_bytes: int | None = None,
        upload_timeout: float | None = None,
        geofence_radius_m: float | None = None,
        allow_force_submit: bool | None = None,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.storage = storage
        self.policy = policy or ClassificationPolicy(
            waste_accept=settings.waste_accept_threshold,
            non_waste_reject=settings.non_waste_reject_threshold,
            high_confidence=settings.high_confidence_threshold,
        )
        self.max_image_bytes = max_image_bytes or settings.max_image_bytes
        self.upload_timeout = upload_timeout or settings.upload_timeout
        self.geofence_radius_m = (
            geofence_radius_m if geofence_radius_m is not None else settings.geofence_radius_m
        )
        self.allow_force_submit = (
            allow_force_submit if allow_force_submit is not None else settings.allow_force_submit
        )

    # -- Queries --

    async def get(self, report_id: str) -> Report:
        report = await self.store.find_report_by_id(report_id)
        if report is None:
            raise NotFound("Report", report_id)
        return report

    # -- Submission --

    async def submit(self, actor: User, submission: ReportSubmission) -> SubmissionOutcome:
        """Validate, classify, upload and persist a new ``pending`` report."""
        missing: list[str] = []
        invalid: dict[str, str] = {}
        for name in ("title", "image", "details", "address"):
            if _blank(getattr(submission, name)):
                missing.append(name)
        location = validate_location(submission.latitude, submission.longitude, missing, invalid)

        report_type = ReportType.STANDARD
        if submission.report_type:
            try:
                report_type = ReportType(submission.report_type)
            except ValueError:
                invalid["reportType"] = "must be one of standard, hazardous, large"
        _raise_if_invalid(missing, invalid)

        encoded, raw = self._decode(submission.image)

        classification = None
        if submission.force_submit:
            if not self.allow_force_submit:
                raise Forbidden("Forced submission is disabled")
            logger.warning("User %s forced a report past the classification gate", actor.id)
        else:
            classification = await self.classifier.classify(encoded)
            self.policy.enforce(classification)

        image = await self._upload(raw, REPORTS_FOLDER, REPORT_UPLOAD)

        now = utcnow()
        report = Report(
            user_id=actor.id,
            title=submission.title.strip(),
            details=submission.details.strip(),
            address=submission.address.strip(),
            location=location,
            image=image,
            report_type=report_type,
            created_at=now,
            photo_timestamp=submission.photo_timestamp or now,
            classification_bypassed=submission.force_submit,
            classification_label=classification.label if classification else None,
            classification_confidence=classification.confidence if classification else None,
        )
        try:
            await self.store.create_report(report)
        except GreenSnapError:
            await self._discard_image(image.public_id)
            raise

        points = points_for(report_type)
        await self._apply_tally(actor.id, 1, points)
        logger.info("Report %s created by %s (+%d points)", report.id, actor.id, points)
        return SubmissionOutcome(report=report, points_earned=points, classification=classification)

    # -- Transitions --

    async def assign(
        self, report_id: str, actor: User, assignee: User, message: str | None = None
    ) -> Report:
        """pending -> in-progress. Supervisors assign themselves; admins assign a supervisor."""
        authorize(Action.ASSIGN, actor)
        if assignee.role is not Role.SUPERVISOR:
            raise ValidationError("User is not a supervisor", invalid_fields={"supervisorId": "not a supervisor"})
        if actor.role is Role.SUPERVISOR and assignee.id != actor.id:
            raise Forbidden("Supervisors can only assign reports to themselves")

        report = await self.get(report_id)
        transition = check_transition(Action.ASSIGN, report.status)

        report.status = transition.target
        report.assigned_to = assignee.id
        report.assigned_at = utcnow()
        report.assigned_msg = message
        return await self._commit(report, transition.source)

    async def resolve(
        self,
        report_id: str,
        actor: User,
        image: str | bytes | None,
        latitude: Any,
        longitude: Any,
        address: str | None,
    ) -> Report:
        """in-progress -> resolved, by the assigned supervisor, with photo evidence."""
        authorize(Action.RESOLVE, actor)
        missing: list[str] = []
        invalid: dict[str, str] = {}
        if _blank(image):
            missing.append("image")
        location = validate_location(latitude, longitude, missing, invalid)
        if _blank(address):
            missing.append("address")
        _raise_if_invalid(missing, invalid)
        _, raw = self._decode(image)

        report = await self.get(report_id)
        transition = check_transition(Action.RESOLVE, report.status)
        if report.assigned_to != actor.id:
            raise Forbidden("Only the assigned supervisor can resolve this report")

        stored = await self._upload(raw, RESOLVED_FOLDER, RESOLUTION_UPLOAD)
        report.status = transition.target
        report.resolved_by = actor.id
        report.resolved_at = utcnow()
        report.resolved_image = stored
        report.resolved_location = location
        report.resolved_address = address.strip()
        try:
            return await self._commit(report, transition.source)
        except GreenSnapError:
            await self._discard_image(stored.public_id)
            raise

    async def mark_out_of_scope(self, report_id: str, actor: User, reason: str | None) -> Report:
        """pending -> out-of-scope."""
        authorize(Action.MARK_OUT_OF_SCOPE, actor)
        if _blank(reason):
            raise ValidationError("Reason is required", missing_fields=["reason"])

        report = await self.get(report_id)
        transition = check_transition(Action.MARK_OUT_OF_SCOPE, report.status)

        report.status = transition.target
        report.out_of_scope_by = actor.id
        report.out_of_scope_at = utcnow()
        report.out_of_scope_reason = reason.strip()
        return await self._commit(report, transition.source)

    async def mark_permanent_resolved(self, report_id: str, actor: User) -> Report:
        """resolved -> permanent-resolved, only within the geofence radius.

        The stored distance is exact; the rejection carries it rounded to 2 dp.
        """
        authorize(Action.MARK_PERMANENT_RESOLVED, actor)
        report = await self.get(report_id)
        transition = check_transition(Action.MARK_PERMANENT_RESOLVED, report.status)

        if report.location is None or report.resolved_location is None:
            raise MissingData("Location data missing")

        distance = distance_meters(
            report.location.latitude,
            report.location.longitude,
            report.resolved_location.latitude,
            report.resolved_location.longitude,
        )
        if distance > self.geofence_radius_m:
            logger.info(
                "Report %s resolved %.2f m from the reported location", report.id, distance
            )
            raise TooFarApart(distance, self.geofence_radius_m)

        report.status = transition.target
        report.permanently_resolved_by = actor.id
        report.permanently_resolved_at = utcnow()
        report.distance_to_reported = distance
        return await self._commit(report, transition.source)

    async def reject(self, report_id: str, actor: User, reason: str | None) -> Report:
        """resolved -> rejected."""
        authorize(Action.REJECT, actor)
        report = await self.get(report_id)
        transition = check_transition(Action.REJECT, report.status)

        report.status = transition.target
        report.rejected_by = actor.id
        report.rejected_at = utcnow()
        report.rejection_reason = reason.strip() if reason else None
        return await self._commit(report, transition.source)

    # -- Deletion --

    async def delete(self, report_id: str, actor: User) -> None:
        """Owner deletes a report; the tally is reversed exactly once."""
        report = await self.get(report_id)
        if report.user_id != actor.id:
            raise Forbidden("Only the owner can delete this report")

        if not await self.store.delete_report(report.id):
            # Deleted concurrently; that call reversed the tally
            raise NotFound("Report", report_id)

        await self._apply_tally(report.user_id, -1, -report.points)
        await self._discard_image(report.image.public_id)
        if report.resolved_image:
            await self._discard_image(report.resolved_image.public_id)
        logger.info("Report %s deleted by %s", report.id, actor.id)

    # -- Internals --

    def _decode(self, image: str | bytes) -> tuple[str, bytes]:
        encoded, raw = decode_image(image)
        if len(raw) > self.max_image_bytes:
            raise PayloadTooLarge(len(raw), self.max_image_bytes)
        return encoded, raw

    async def _upload(self, raw: bytes, folder: str, transform: Transform) -> StoredImage:
        try:
            return await asyncio.wait_for(
                self.storage.upload(raw, folder, transform), timeout=self.upload_timeout
            )
        except asyncio.TimeoutError as exc:
            logger.error("Upload to %s exceeded %.0fs", folder, self.upload_timeout)
            raise UploadTimeout() from exc
        except GreenSnapError:
            raise
        except Exception as exc:
            logger.exception("Upload to %s failed", folder)
            raise UploadFailed() from exc

    async def _discard_image(self, public_id: str | None) -> None:
        if not public_id:
            return
        try:
            await self.storage.delete(public_id)
        except Exception:
            logger.exception("Failed to delete stored image %s", public_id)

    async def _apply_tally(self, user_id: str, report_delta: int, points_delta: int) -> None:
        # Best effort; a failed tally never undoes the report change
        try:
            if not await self.store.increment_user_tally(user_id, report_delta, points_delta):
                logger.error("Tally update skipped: user %s not found", user_id)
        except Exception:
            logger.exception(
                "Tally update failed for user %s (%+d reports, %+d points)",
                user_id, report_delta, points_delta,
            )

    async def _commit(self, report: Report, expected: ReportStatus) -> Report:
        if await self.store.save_report(report, expected):
            logger.info("Report %s: %s -> %s", report.id, expected.value, report.status.value)
            return report

        current = await self.store.find_report_by_id(report.id)
        if current is None:
            raise NotFound("Report", report.id)
        logger.warning(
            "Report %s changed to %s before %s could be applied",
            report.id, current.status.value, report.status.value,
        )
        raise InvalidTransition(current.status.value, report.status.value)
