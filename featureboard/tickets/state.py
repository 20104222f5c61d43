from __future__ import annotations

from enum import Enum

from featureboard.errors import ValidationError


class TicketStatus(str, Enum):
    """Supported states for a suggestion's lifecycle."""

    QUEUED = "Queued"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"

    @classmethod
    def initial_state(cls) -> "TicketStatus":
        return cls.QUEUED

    @classmethod
    def parse(cls, value: object) -> "TicketStatus":
        """Return the status named by ``value`` or raise ``ValidationError``."""

        if isinstance(value, TicketStatus):
            return value
        try:
            return cls(str(value))
        except ValueError as exc:
            allowed = ", ".join(status.value for status in cls)
            raise ValidationError(f"Valid status is required ({allowed})") from exc
