import asyncio
import base64
from contextlib import asynccontextmanager
from dataclasses import dataclass

import pytest

from greensnap.db.database import Database
from greensnap.lifecycle.reports import ReportLifecycle, ReportSubmission
from greensnap.models.classification import ClassificationResult
from greensnap.models.report import GeoPoint, Report, ReportStatus, StoredImage
from greensnap.models.user import Role, User

IMAGE_BYTES = b"\xff\xd8\xff\xe0" + b"fake-jpeg-payload" * 8
IMAGE_B64 = base64.b64encode(IMAGE_BYTES).decode("ascii")

REPORTED = GeoPoint(latitude=31.5, longitude=74.3)


class FakeClassifier:
    name = "fake"

    def __init__(self, label="Waste", confidence=0.9, error=None):
        self.label = label
        self.confidence = confidence
        self.error = error
        self.calls = []

    async def classify(self, image):
        self.calls.append(image)
        if self.error:
            raise self.error
        return ClassificationResult.from_prediction(self.label, self.confidence, "test-model")


class FakeStorage:
    def __init__(self):
        self.uploads = []
        self.deleted = []
        self.upload_error = None
        self.delete_error = None
        self.delay = 0.0

    async def upload(self, image, folder, transform):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.upload_error:
            raise self.upload_error
        public_id = f"{folder}/img-{len(self.uploads) + 1}"
        self.uploads.append((folder, image, transform))
        return StoredImage(url=f"https://cdn.test/{public_id}.jpg", public_id=public_id)

    async def delete(self, public_id):
        if self.delete_error:
            raise self.delete_error
        self.deleted.append(public_id)


@dataclass
class Env:
    db: Database
    lifecycle: ReportLifecycle
    classifier: FakeClassifier
    storage: FakeStorage
    citizen: User
    supervisor: User
    other_supervisor: User
    admin: User

    async def submit(self, report_type="standard", **overrides):
        fields = dict(
            title="Overflowing bin",
            image=IMAGE_B64,
            details="Garbage piling up near the market",
            address="Mall Road, Lahore",
            latitude=REPORTED.latitude,
            longitude=REPORTED.longitude,
            report_type=report_type,
        )
        fields.update(overrides)
        outcome = await self.lifecycle.submit(self.citizen, ReportSubmission(**fields))
        return outcome.report

    async def seed_report(self, status=ReportStatus.PENDING, resolved_at=REPORTED):
        """Insert a report directly in ``status`` with consistent side fields."""
        report = Report(
            user_id=self.citizen.id,
            title="Seeded",
            details="Seeded report",
            address="Somewhere",
            location=REPORTED,
            image=StoredImage("https://cdn.test/seed.jpg", "reports/seed"),
            status=status,
        )
        if status is not ReportStatus.PENDING and status is not ReportStatus.OUT_OF_SCOPE:
            report.assigned_to = self.supervisor.id
        if status in (
            ReportStatus.RESOLVED,
            ReportStatus.PERMANENT_RESOLVED,
            ReportStatus.REJECTED,
        ):
            report.resolved_by = self.supervisor.id
            report.resolved_location = resolved_at
            report.resolved_image = StoredImage("https://cdn.test/fixed.jpg", "resolved-reports/seed")
        await self.db.create_report(report)
        return report

    async def refresh(self, user):
        return await self.db.find_user_by_id(user.id)


@asynccontextmanager
async def open_env(path, classifier=None, storage=None, **lifecycle_kwargs):
    db = Database(path)
    await db.connect()
    classifier = classifier or FakeClassifier()
    storage = storage or FakeStorage()
    users = {
        "citizen": User(username="citizen", email="citizen@example.com"),
        "supervisor": User(username="sup", email="sup@example.com", role=Role.SUPERVISOR),
        "other_supervisor": User(username="sup2", email="sup2@example.com", role=Role.SUPERVISOR),
        "admin": User(username="admin", email="admin@example.com", role=Role.ADMIN),
    }
    for user in users.values():
        await db.create_user(user)
    try:
        yield Env(
            db=db,
            lifecycle=ReportLifecycle(db, classifier, storage, **lifecycle_kwargs),
            classifier=classifier,
            storage=storage,
            **users,
        )
    finally:
        await db.close()


@pytest.fixture
def make_env(tmp_path):
    def factory(**kwargs):
        return open_env(str(tmp_path / "greensnap.db"), **kwargs)

    return factory
