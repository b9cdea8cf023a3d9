"""FastAPI application entry point for GreenSnap."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from greensnap.classifier.base import Classifier
from greensnap.classifier.gradio import GradioClassifier
from greensnap.config import settings
from greensnap.db.base import Persistence
from greensnap.db.database import Database
from greensnap.errors import GreenSnapError, InvalidTransition, ValidationError
from greensnap.lifecycle import analytics
from greensnap.lifecycle.assignment import SupervisorAssignment
from greensnap.lifecycle.reports import ReportLifecycle, ReportSubmission
from greensnap.lifecycle.state_machine import next_statuses
from greensnap.logging_config import setup_logging
from greensnap.models.report import ReportStatus, ReportType
from greensnap.models.user import Role, User
from greensnap.storage.base import Storage
from greensnap.storage.cloudinary import CloudinaryStorage

setup_logging(getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

db = Database(settings.database_path)
classifier = GradioClassifier()
storage = CloudinaryStorage()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await db.connect()
    yield
    await db.close()


app = FastAPI(
    title="GreenSnap",
    description="Citizen waste reporting backend",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %d (%.1fms)",
        request.method, request.url.path, response.status_code,
        (time.perf_counter() - start) * 1000,
    )
    return response


# --- Error mapping ---


@app.exception_handler(GreenSnapError)
async def domain_error_handler(request: Request, exc: GreenSnapError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    invalid = {
        ".".join(str(p) for p in err["loc"] if p != "body"): err["msg"] for err in exc.errors()
    }
    error = ValidationError(f"Invalid fields: {', '.join(invalid)}", invalid_fields=invalid)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# --- Dependencies ---


def get_store() -> Persistence:
    return db


def get_classifier() -> Classifier:
    return classifier


def get_storage() -> Storage:
    return storage


def get_lifecycle(
    store: Persistence = Depends(get_store),
    classifier: Classifier = Depends(get_classifier),
    storage: Storage = Depends(get_storage),
) -> ReportLifecycle:
    return ReportLifecycle(store, classifier, storage)


async def current_user(
    x_user_id: str | None = Header(None),
    store: Persistence = Depends(get_store),
) -> User:
    """Resolve the caller from the id the auth gateway forwards."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = await store.find_user_by_id(x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


def require_role(*roles: Role):
    async def dependency(user: User = Depends(current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Access denied")
        return user

    return dependency


# --- Request models ---


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ReportCreateRequest(_CamelModel):
    title: str | None = None
    image: str | None = None
    details: str | None = None
    address: str | None = None
    latitude: Any = None
    longitude: Any = None
    photo_timestamp: datetime | None = Field(None, alias="photoTimestamp")
    report_type: str | None = Field(None, alias="reportType")
    force_submit: bool = Field(False, alias="forceSubmit")


class StatusUpdateRequest(_CamelModel):
    status: str
    assigned_msg: str | None = Field(None, alias="assignedMsg")
    reason: str | None = None


class ReasonRequest(BaseModel):
    reason: str | None = None


class ResolveRequest(BaseModel):
    image: str | None = None
    latitude: Any = None
    longitude: Any = None
    address: str | None = None


class AssignRequest(_CamelModel):
    supervisor_id: str = Field(alias="supervisorId")
    report_ids: list[str] = Field(alias="reportIds")
    assignment_message: str | None = Field(None, alias="assignmentMessage")


class ClassifyRequest(BaseModel):
    image: str | None = None


def _parse_status(value: str | None) -> ReportStatus | None:
    if value is None:
        return None
    try:
        return ReportStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown status '{value}'", invalid_fields={"status": "unknown status"}
        ) from None


def _parse_type(value: str | None) -> ReportType | None:
    if value is None:
        return None
    try:
        return ReportType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown report type '{value}'", invalid_fields={"reportType": "unknown type"}
        ) from None


# --- Routes ---


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/reports", status_code=201)
async def create_report(
    req: ReportCreateRequest,
    user: User = Depends(current_user),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    """Submit a geotagged waste photo. The classifier must agree it shows waste."""
    outcome = await lifecycle.submit(
        user,
        ReportSubmission(
            title=req.title,
            image=req.image,
            details=req.details,
            address=req.address,
            latitude=req.latitude,
            longitude=req.longitude,
            photo_timestamp=req.photo_timestamp,
            report_type=req.report_type,
            force_submit=req.force_submit,
        ),
    )
    body = {
        "message": "Report created successfully",
        "report": outcome.report.to_dict(),
        "pointsEarned": outcome.points_earned,
    }
    if outcome.classification:
        body["classification"] = outcome.classification.to_dict()
    return body


@app.get("/api/reports/mine")
async def my_reports(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(current_user),
    store: Persistence = Depends(get_store),
):
    reports = await store.list_reports(limit=limit, offset=offset, user_id=user.id)
    return {"reports": [r.to_dict() for r in reports]}


@app.delete("/api/reports/{report_id}")
async def delete_report(
    report_id: str,
    user: User = Depends(current_user),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    await lifecycle.delete(report_id, user)
    return {"message": "Report deleted successfully"}


# Supervisor


@app.get("/api/supervisor/reports")
async def supervisor_reports(
    status: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_role(Role.SUPERVISOR)),
    store: Persistence = Depends(get_store),
):
    status_filter = _parse_status(status)
    reports = await store.list_reports(limit=limit, offset=offset, status=status_filter)
    total = await store.count_reports(status=status_filter)
    return {"reports": [r.to_dict() for r in reports], "total": total}


@app.put("/api/supervisor/reports/{report_id}/status")
async def update_report_status(
    report_id: str,
    req: StatusUpdateRequest,
    user: User = Depends(require_role(Role.SUPERVISOR)),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    target = _parse_status(req.status)
    if target is ReportStatus.IN_PROGRESS:
        report = await lifecycle.assign(report_id, user, user, req.assigned_msg)
    elif target is ReportStatus.OUT_OF_SCOPE:
        report = await lifecycle.mark_out_of_scope(report_id, user, req.reason)
    elif target is ReportStatus.PERMANENT_RESOLVED:
        report = await lifecycle.mark_permanent_resolved(report_id, user)
    elif target is ReportStatus.REJECTED:
        report = await lifecycle.reject(report_id, user, req.reason)
    elif target is ReportStatus.RESOLVED:
        raise ValidationError(
            "Resolving requires a photo and location; use the resolve endpoint",
            missing_fields=["image", "latitude", "longitude", "address"],
        )
    else:
        current = await lifecycle.get(report_id)
        raise InvalidTransition(
            current.status.value,
            target.value,
            allowed=[s.value for s in next_statuses(current.status)],
        )
    return {"message": f"Report marked {report.status.value}", "report": report.to_dict()}


@app.put("/api/supervisor/reports/{report_id}/out-of-scope")
async def mark_out_of_scope(
    report_id: str,
    req: ReasonRequest,
    user: User = Depends(require_role(Role.SUPERVISOR)),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    report = await lifecycle.mark_out_of_scope(report_id, user, req.reason)
    return {"message": "Report marked as out of scope", "report": report.to_dict()}


@app.put("/api/supervisor/reports/{report_id}/resolve")
async def resolve_report(
    report_id: str,
    req: ResolveRequest,
    user: User = Depends(require_role(Role.SUPERVISOR)),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    report = await lifecycle.resolve(
        report_id, user, req.image, req.latitude, req.longitude, req.address
    )
    return {"message": "Report resolved successfully", "report": report.to_dict()}


# Admin


@app.get("/api/admin/reports")
async def admin_reports(
    status: str | None = None,
    report_type: str | None = Query(None, alias="reportType"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_role(Role.ADMIN)),
    store: Persistence = Depends(get_store),
):
    filters = {"status": _parse_status(status), "report_type": _parse_type(report_type)}
    reports = await store.list_reports(limit=limit, offset=offset, **filters)
    total = await store.count_reports(**filters)
    return {"reports": [r.to_dict() for r in reports], "total": total}


@app.get("/api/admin/reports/status-counts")
async def admin_status_counts(
    user: User = Depends(require_role(Role.ADMIN)),
    store: Persistence = Depends(get_store),
):
    return {"counts": await analytics.status_counts(store)}


@app.get("/api/admin/stats")
async def admin_stats(
    user: User = Depends(require_role(Role.ADMIN)),
    store: Persistence = Depends(get_store),
):
    return {"stats": await analytics.dashboard_stats(store)}


@app.get("/api/admin/reports/{report_id}")
async def admin_report_details(
    report_id: str,
    user: User = Depends(require_role(Role.ADMIN)),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    report = await lifecycle.get(report_id)
    return {"report": report.to_dict()}


@app.patch("/api/admin/reports/{report_id}/permanent-resolved")
async def mark_permanent_resolved(
    report_id: str,
    user: User = Depends(require_role(Role.ADMIN)),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    report = await lifecycle.mark_permanent_resolved(report_id, user)
    return {
        "message": "Report permanently resolved",
        "distance": report.distance_to_reported,
        "report": report.to_dict(),
    }


@app.post("/api/admin/reports/{report_id}/reject")
async def reject_report(
    report_id: str,
    req: ReasonRequest,
    user: User = Depends(require_role(Role.ADMIN)),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    report = await lifecycle.reject(report_id, user, req.reason)
    return {"message": "Report rejected", "report": report.to_dict()}


@app.post("/api/admin/reports/assign-to-supervisor")
async def assign_to_supervisor(
    req: AssignRequest,
    user: User = Depends(require_role(Role.ADMIN)),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    outcomes = await SupervisorAssignment(lifecycle).assign(
        user, req.supervisor_id, req.report_ids, req.assignment_message
    )
    return {
        "assigned": sum(1 for o in outcomes if o.success),
        "results": [o.to_dict() for o in outcomes],
    }


# Classifier


@app.post("/api/classify")
async def classify_image(
    req: ClassifyRequest,
    user: User = Depends(current_user),
    classifier: Classifier = Depends(get_classifier),
):
    if not req.image:
        raise ValidationError("No image provided", missing_fields=["image"])
    result = await classifier.classify(req.image)
    return result.to_dict()


@app.get("/api/classify/health")
async def classifier_health(classifier: Classifier = Depends(get_classifier)):
    start = time.perf_counter()
    probe = getattr(classifier, "health", None)
    if probe is None:
        return {"status": "unknown"}
    result = await probe()
    result["responseTime"] = f"{(time.perf_counter() - start) * 1000:.0f}ms"
    return JSONResponse(status_code=200 if result["status"] == "operational" else 503, content=result)


if __name__ == "__main__":
    uvicorn.run("greensnap.main:app", host=settings.host, port=settings.port)
