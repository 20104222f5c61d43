from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass(slots=True)
class SystemAdmin:
    id: str
    email: str
    name: str
    created_at: datetime


class RemovalOutcome(str, Enum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"
    LAST_ADMIN = "last_admin"
