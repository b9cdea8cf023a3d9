"""User data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4


class Role(Enum):
    USER = "user"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"


@dataclass
class User:
    """A reporting user, supervisor or admin. Carries the gamification tally."""

    username: str
    email: str
    role: Role = Role.USER
    report_count: int = 0
    points: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
            "reportCount": self.report_count,
            "points": self.points,
        }
