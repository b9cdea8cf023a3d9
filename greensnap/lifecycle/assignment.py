"""Admin bulk assignment of pending reports to a supervisor."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from greensnap.errors import (
    Forbidden,
    GreenSnapError,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from greensnap.lifecycle.reports import ReportLifecycle
from greensnap.models.user import Role, User

logger = logging.getLogger(__name__)

DEFAULT_ASSIGNMENT_MESSAGE = "Assigned by admin"


@dataclass
class AssignmentOutcome:
    report_id: str
    success: bool
    reason: str | None = None

    def to_dict(self) -> dict:
        if self.success:
            return {"reportId": self.report_id, "success": True}
        return {"reportId": self.report_id, "success": False, "reason": self.reason}


class SupervisorAssignment:
    """Runs ``pending -> in-progress`` for each report id independently.

    Not a transaction: every id gets its own outcome and nothing is rolled
    back. The supervisor itself is validated once, before any report is touched.
    """

    def __init__(self, lifecycle: ReportLifecycle) -> None:
        self.lifecycle = lifecycle

    async def assign(
        self,
        admin: User,
        supervisor_id: str,
        report_ids: list[str],
        message: str | None = None,
    ) -> list[AssignmentOutcome]:
        if admin.role is not Role.ADMIN:
            raise Forbidden("Only admins can assign reports to supervisors")
        if not report_ids:
            raise ValidationError("No reports to assign", missing_fields=["reportIds"])

        supervisor = await self.lifecycle.store.find_user_by_id(supervisor_id)
        if supervisor is None:
            raise NotFound("Supervisor", supervisor_id)
        if supervisor.role is not Role.SUPERVISOR:
            raise ValidationError(
                "User is not a supervisor", invalid_fields={"supervisorId": "not a supervisor"}
            )

        message = message.strip() if message and message.strip() else DEFAULT_ASSIGNMENT_MESSAGE
        outcomes: list[AssignmentOutcome] = []
        for report_id in report_ids:
            try:
                await self.lifecycle.assign(report_id, admin, supervisor, message)
            except NotFound:
                outcomes.append(AssignmentOutcome(report_id, False, "NotFound"))
            except InvalidTransition as exc:
                logger.info("Report %s not assigned: status is %s", report_id, exc.current_status)
                outcomes.append(AssignmentOutcome(report_id, False, "NotPending"))
            except GreenSnapError as exc:
                logger.exception("Assigning report %s failed", report_id)
                outcomes.append(AssignmentOutcome(report_id, False, exc.code))
            else:
                outcomes.append(AssignmentOutcome(report_id, True))

        succeeded = sum(1 for o in outcomes if o.success)
        logger.info(
            "Assigned %d/%d reports to supervisor %s", succeeded, len(outcomes), supervisor.id
        )
        return outcomes
