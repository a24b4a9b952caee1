"""Achievement subsystem errors."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from guildmark.achievements.quota import QuotaViolation


class AchievementError(Exception):
    """Base class for achievement subsystem errors."""


class StoreUnavailable(AchievementError):
    """The external record store could not be read or written."""


class SyncWriteFailure(AchievementError):
    """A reconciliation write failed; it is retried on the next pass."""


class InvalidGrant(AchievementError):
    """A manual grant or revoke was requested where it is not allowed."""


class NotFound(AchievementError):
    """A referenced template or activity entry does not exist."""


class QuotaExceeded(AchievementError):
    """A proposed hour entry breaks a day/week/month/year cap."""

    def __init__(self, violation: QuotaViolation) -> None:
        self.violation = violation
        super().__init__(
            f"{violation.period.value.capitalize()} limit of {violation.limit:g}h "
            f"for {violation.category.value} exceeded"
        )
