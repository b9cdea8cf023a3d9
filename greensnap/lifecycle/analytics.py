"""Admin dashboard counts."""

from __future__ import annotations

from greensnap.db.base import Persistence
from greensnap.models.report import ReportStatus
from greensnap.models.user import Role


async def status_counts(store: Persistence) -> dict[str, int]:
    counts = await store.count_reports_by_status()
    return {
        "pending": counts[ReportStatus.PENDING],
        "inProgress": counts[ReportStatus.IN_PROGRESS],
        "resolved": counts[ReportStatus.RESOLVED],
        "permanentResolved": counts[ReportStatus.PERMANENT_RESOLVED],
        "rejected": counts[ReportStatus.REJECTED],
        "outOfScope": counts[ReportStatus.OUT_OF_SCOPE],
        "total": sum(counts.values()),
    }


async def dashboard_stats(store: Persistence) -> dict:
    counts = await store.count_reports_by_status()
    total = sum(counts.values())
    resolved = counts[ReportStatus.RESOLVED]
    permanent = counts[ReportStatus.PERMANENT_RESOLVED]
    return {
        "totalReports": total,
        "resolvedReports": resolved,
        "rejectedReports": counts[ReportStatus.REJECTED],
        "pendingReports": counts[ReportStatus.PENDING],
        "permanentResolvedReports": permanent,
        "outOfScopeReports": counts[ReportStatus.OUT_OF_SCOPE],
        "resolutionRate": round((resolved + permanent) / total * 100, 1) if total else 0,
        "totalUsers": await store.count_users(Role.USER),
        "totalSupervisors": await store.count_users(Role.SUPERVISOR),
    }
