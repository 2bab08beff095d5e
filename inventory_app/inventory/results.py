from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ReconciliationStage(str, Enum):
    VALIDATING = "validating"
    RESOLVING_PRECONDITIONS = "resolving_preconditions"
    SETTING_QUANTITY = "setting_quantity"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureReason(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    REMOTE_REJECTED = "remote_rejected"
    THROTTLED = "throttled"


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: Outcome
    reason: FailureReason | None = None
    code: str | None = None
    message: str | None = None
    final_quantity: int | None = None
    updated_at: datetime | None = None
    verification_mismatch: bool = False
    applied_steps: tuple[str, ...] = ()
    stages: tuple[ReconciliationStage, ...] = ()
    details: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason.value if self.reason else None,
            "code": self.code,
            "message": self.message,
            "finalQuantity": self.final_quantity,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "verificationMismatch": self.verification_mismatch,
            "appliedSteps": list(self.applied_steps),
            "stages": [stage.value for stage in self.stages],
            "details": list(self.details),
        }
