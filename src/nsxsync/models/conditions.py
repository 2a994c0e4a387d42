"""Status conditions reported back to custom resources.

Reasons come from a fixed catalog so operators can alert on the reason
instead of the free-text message.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from ..utils.exceptions import (
    AllocationExhaustedError,
    IPBlockExhaustedError,
    ValidationError,
)


class ConditionReason(str, Enum):
    """Fixed catalog of not-ready reasons."""

    DEPENDENCY_NOT_READY = "DependencyNotReady"
    CONFIGURE_FAILED = "ConfigureFailed"
    IPBLOCK_EXHAUSTED = "IPBlockExhausted"
    ALLOCATION_EXHAUSTED = "AllocationExhausted"
    REALIZATION_PENDING = "RealizationPending"


@dataclass
class Condition:
    """A Ready condition as written to a CR status."""

    type: str = "Ready"
    status: bool = True
    reason: ConditionReason | None = None
    message: str = ""
    last_transition_time: datetime | None = None

    def to_dict(self) -> dict[str, str]:
        data = {"type": self.type, "status": "True" if self.status else "False"}
        if self.reason is not None:
            data["reason"] = self.reason.value
        if self.message:
            data["message"] = self.message
        if self.last_transition_time is not None:
            data["lastTransitionTime"] = self.last_transition_time.isoformat()
        return data

    def same_as(self, other: "Condition") -> bool:
        """True if type, status, reason and message match (time ignored)."""
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
        )


def ready_condition() -> Condition:
    return Condition(status=True, last_transition_time=datetime.now(timezone.utc))


def condition_for_error(error: Exception) -> Condition:
    """Map an error onto a not-ready condition with a catalog reason."""
    if isinstance(error, IPBlockExhaustedError):
        reason = ConditionReason.IPBLOCK_EXHAUSTED
    elif isinstance(error, AllocationExhaustedError):
        reason = ConditionReason.ALLOCATION_EXHAUSTED
    elif isinstance(error, ValidationError):
        reason = ConditionReason.DEPENDENCY_NOT_READY
    else:
        reason = ConditionReason.CONFIGURE_FAILED
    return Condition(
        status=False,
        reason=reason,
        message=str(error),
        last_transition_time=datetime.now(timezone.utc),
    )


def merge_condition(conditions: list[Condition], condition: Condition) -> tuple[list[Condition], bool]:
    """
    Replace the condition of the same type.

    Returns:
        (new conditions, changed). ``changed`` is False when an identical
        condition is already present, so callers can skip the status write.
    """
    merged = [condition]
    for existing in conditions:
        if existing.type == condition.type:
            if existing.same_as(condition):
                return conditions, False
            continue
        merged.append(existing)
    return merged, True
