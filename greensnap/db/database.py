"""SQLite persistence layer via aiosqlite."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import aiosqlite

from greensnap.errors import PersistenceError
from greensnap.models.report import GeoPoint, Report, ReportStatus, ReportType, StoredImage
from greensnap.models.user import Role, User

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    role TEXT NOT NULL DEFAULT 'user',
    report_count INTEGER NOT NULL DEFAULT 0,
    points INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reports (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    title TEXT NOT NULL,
    details TEXT NOT NULL,
    address TEXT NOT NULL,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    image_url TEXT NOT NULL,
    image_public_id TEXT NOT NULL,
    report_type TEXT NOT NULL DEFAULT 'standard',
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL,
    photo_timestamp TEXT NOT NULL,
    classification_bypassed INTEGER NOT NULL DEFAULT 0,
    classification_label TEXT,
    classification_confidence REAL,
    assigned_to TEXT REFERENCES users(id),
    assigned_at TEXT,
    assigned_msg TEXT,
    resolved_by TEXT REFERENCES users(id),
    resolved_at TEXT,
    resolved_image_url TEXT,
    resolved_image_public_id TEXT,
    resolved_latitude REAL,
    resolved_longitude REAL,
    resolved_address TEXT,
    permanently_resolved_by TEXT REFERENCES users(id),
    permanently_resolved_at TEXT,
    distance_to_reported REAL,
    rejected_by TEXT REFERENCES users(id),
    rejected_at TEXT,
    rejection_reason TEXT,
    out_of_scope_by TEXT REFERENCES users(id),
    out_of_scope_at TEXT,
    out_of_scope_reason TEXT
);

CREATE INDEX IF NOT EXISTS idx_reports_status ON reports(status);
CREATE INDEX IF NOT EXISTS idx_reports_user ON reports(user_id);
"""

# Columns a lifecycle transition may change. Identity, owner, creation time
# and the reported location are immutable after insert.
MUTABLE_REPORT_COLUMNS = (
    "status",
    "assigned_to",
    "assigned_at",
    "assigned_msg",
    "resolved_by",
    "resolved_at",
    "resolved_image_url",
    "resolved_image_public_id",
    "resolved_latitude",
    "resolved_longitude",
    "resolved_address",
    "permanently_resolved_by",
    "permanently_resolved_at",
    "distance_to_reported",
    "rejected_by",
    "rejected_at",
    "rejection_reason",
    "out_of_scope_by",
    "out_of_scope_at",
    "out_of_scope_reason",
)

REPORT_FILTER_COLUMNS = frozenset(
    {"status", "report_type", "user_id", "assigned_to", "resolved_by", "out_of_scope_by"}
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def report_to_row(report: Report) -> dict[str, Any]:
    resolved_image = report.resolved_image
    resolved_location = report.resolved_location
    return {
        "id": report.id,
        "user_id": report.user_id,
        "title": report.title,
        "details": report.details,
        "address": report.address,
        "latitude": report.location.latitude,
        "longitude": report.location.longitude,
        "image_url": report.image.url,
        "image_public_id": report.image.public_id,
        "report_type": report.report_type.value,
        "status": report.status.value,
        "created_at": _ts(report.created_at),
        "photo_timestamp": _ts(report.photo_timestamp),
        "classification_bypassed": int(report.classification_bypassed),
        "classification_label": report.classification_label,
        "classification_confidence": report.classification_confidence,
        "assigned_to": report.assigned_to,
        "assigned_at": _ts(report.assigned_at),
        "assigned_msg": report.assigned_msg,
        "resolved_by": report.resolved_by,
        "resolved_at": _ts(report.resolved_at),
        "resolved_image_url": resolved_image.url if resolved_image else None,
        "resolved_image_public_id": resolved_image.public_id if resolved_image else None,
        "resolved_latitude": resolved_location.latitude if resolved_location else None,
        "resolved_longitude": resolved_location.longitude if resolved_location else None,
        "resolved_address": report.resolved_address,
        "permanently_resolved_by": report.permanently_resolved_by,
        "permanently_resolved_at": _ts(report.permanently_resolved_at),
        "distance_to_reported": report.distance_to_reported,
        "rejected_by": report.rejected_by,
        "rejected_at": _ts(report.rejected_at),
        "rejection_reason": report.rejection_reason,
        "out_of_scope_by": report.out_of_scope_by,
        "out_of_scope_at": _ts(report.out_of_scope_at),
        "out_of_scope_reason": report.out_of_scope_reason,
    }


def row_to_report(row: aiosqlite.Row | dict) -> Report:
    r = dict(row)
    resolved_location = None
    if r["resolved_latitude"] is not None and r["resolved_longitude"] is not None:
        resolved_location = GeoPoint(r["resolved_latitude"], r["resolved_longitude"])
    resolved_image = None
    if r["resolved_image_url"]:
        resolved_image = StoredImage(r["resolved_image_url"], r["resolved_image_public_id"] or "")
    return Report(
        id=r["id"],
        user_id=r["user_id"],
        title=r["title"],
        details=r["details"],
        address=r["address"],
        location=GeoPoint(r["latitude"], r["longitude"]),
        image=StoredImage(r["image_url"], r["image_public_id"]),
        report_type=ReportType(r["report_type"]),
        status=ReportStatus(r["status"]),
        created_at=_parse_ts(r["created_at"]),
        photo_timestamp=_parse_ts(r["photo_timestamp"]),
        classification_bypassed=bool(r["classification_bypassed"]),
        classification_label=r["classification_label"],
        classification_confidence=r["classification_confidence"],
        assigned_to=r["assigned_to"],
        assigned_at=_parse_ts(r["assigned_at"]),
        assigned_msg=r["assigned_msg"],
        resolved_by=r["resolved_by"],
        resolved_at=_parse_ts(r["resolved_at"]),
        resolved_image=resolved_image,
        resolved_location=resolved_location,
        resolved_address=r["resolved_address"],
        permanently_resolved_by=r["permanently_resolved_by"],
        permanently_resolved_at=_parse_ts(r["permanently_resolved_at"]),
        distance_to_reported=r["distance_to_reported"],
        rejected_by=r["rejected_by"],
        rejected_at=_parse_ts(r["rejected_at"]),
        rejection_reason=r["rejection_reason"],
        out_of_scope_by=r["out_of_scope_by"],
        out_of_scope_at=_parse_ts(r["out_of_scope_at"]),
        out_of_scope_reason=r["out_of_scope_reason"],
    )


def row_to_user(row: aiosqlite.Row | dict) -> User:
    r = dict(row)
    return User(
        id=r["id"],
        username=r["username"],
        email=r["email"],
        role=Role(r["role"]),
        report_count=r["report_count"],
        points=r["points"],
        created_at=_parse_ts(r["created_at"]),
    )


def _where(filters: dict[str, Any]) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    for column, value in filters.items():
        if column not in REPORT_FILTER_COLUMNS:
            raise ValueError(f"Cannot filter reports by '{column}'")
        if value is None:
            continue
        clauses.append(f"{column} = ?")
        params.append(getattr(value, "value", value))
    return (" WHERE " + " AND ".join(clauses)) if clauses else "", params


class Database:
    """Async SQLite database for reports and user tallies."""

    def __init__(self, path: str = "greensnap.db") -> None:
        self.path = path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected; call connect() first")
        return self._db

    async def _write(self, sql: str, params: dict | tuple | list = ()) -> int:
        """Execute one statement, commit, and return the affected row count."""
        try:
            cursor = await self.db.execute(sql, params)
            await self.db.commit()
        except aiosqlite.Error as exc:
            logger.error("Write failed: %s", exc)
            raise PersistenceError(str(exc)) from exc
        return cursor.rowcount

    async def _fetchone(self, sql: str, params: tuple | list = ()) -> aiosqlite.Row | None:
        try:
            cursor = await self.db.execute(sql, params)
            return await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError(str(exc)) from exc

    async def _fetchall(self, sql: str, params: tuple | list = ()) -> list[aiosqlite.Row]:
        try:
            cursor = await self.db.execute(sql, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise PersistenceError(str(exc)) from exc

    # -- Users --

    async def create_user(self, user: User) -> str:
        await self._write(
            "INSERT INTO users (id, username, email, role, report_count, points, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                user.id,
                user.username,
                user.email,
                user.role.value,
                user.report_count,
                user.points,
                _ts(user.created_at),
            ),
        )
        return user.id

    async def find_user_by_id(self, user_id: str) -> User | None:
        row = await self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return row_to_user(row) if row else None

    async def count_users(self, role: Role | None = None) -> int:
        if role is None:
            row = await self._fetchone("SELECT COUNT(*) FROM users")
        else:
            row = await self._fetchone("SELECT COUNT(*) FROM users WHERE role = ?", (role.value,))
        return row[0]

    async def increment_user_tally(
        self, user_id: str, report_count_delta: int, points_delta: int
    ) -> bool:
        """Atomically add deltas to a user's tally. Returns False if no such user."""
        updated = await self._write(
            "UPDATE users SET report_count = report_count + ?, points = points + ? WHERE id = ?",
            (report_count_delta, points_delta, user_id),
        )
        return updated > 0

    # -- Reports --

    async def create_report(self, report: Report) -> str:
        row = report_to_row(report)
        columns = ", ".join(row)
        placeholders = ", ".join(f":{c}" for c in row)
        await self._write(f"INSERT INTO reports ({columns}) VALUES ({placeholders})", row)
        return report.id

    async def find_report_by_id(self, report_id: str) -> Report | None:
        row = await self._fetchone("SELECT * FROM reports WHERE id = ?", (report_id,))
        return row_to_report(row) if row else None

    async def save_report(self, report: Report, expected_status: ReportStatus) -> bool:
        """Write lifecycle fields only if the stored status is still ``expected_status``.

        Returns False when another writer changed the status first.
        """
        row = report_to_row(report)
        params = {c: row[c] for c in MUTABLE_REPORT_COLUMNS}
        params["id"] = report.id
        params["expected_status"] = expected_status.value
        assignments = ", ".join(f"{c} = :{c}" for c in MUTABLE_REPORT_COLUMNS)
        updated = await self._write(
            f"UPDATE reports SET {assignments} WHERE id = :id AND status = :expected_status",
            params,
        )
        return updated > 0

    async def delete_report(self, report_id: str) -> bool:
        deleted = await self._write("DELETE FROM reports WHERE id = ?", (report_id,))
        return deleted > 0

    async def count_reports(self, **filters: Any) -> int:
        where, params = _where(filters)
        row = await self._fetchone(f"SELECT COUNT(*) FROM reports{where}", params)
        return row[0]

    async def count_reports_by_status(self) -> dict[ReportStatus, int]:
        rows = await self._fetchall("SELECT status, COUNT(*) FROM reports GROUP BY status")
        counts = {status: 0 for status in ReportStatus}
        for status, count in rows:
            counts[ReportStatus(status)] = count
        return counts

    async def list_reports(
        self, limit: int = 50, offset: int = 0, **filters: Any
    ) -> list[Report]:
        where, params = _where(filters)
        rows = await self._fetchall(
            f"SELECT * FROM reports{where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        return [row_to_report(r) for r in rows]
