"""Persistence protocol consumed by the report lifecycle."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from greensnap.models.report import Report, ReportStatus
from greensnap.models.user import Role, User


@runtime_checkable
class Persistence(Protocol):
    """Report and user records. ``Database`` is the SQLite implementation."""

    async def find_report_by_id(self, report_id: str) -> Report | None: ...

    async def create_report(self, report: Report) -> str: ...

    async def save_report(self, report: Report, expected_status: ReportStatus) -> bool: ...

    async def delete_report(self, report_id: str) -> bool: ...

    async def count_reports(self, **filters: Any) -> int: ...

    async def count_reports_by_status(self) -> dict[ReportStatus, int]: ...

    async def list_reports(self, limit: int = 50, offset: int = 0, **filters: Any) -> list[Report]: ...

    async def find_user_by_id(self, user_id: str) -> User | None: ...

    async def count_users(self, role: Role | None = None) -> int: ...

    async def increment_user_tally(
        self, user_id: str, report_count_delta: int, points_delta: int
    ) -> bool: ...
