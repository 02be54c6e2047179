from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from chatrecon.exceptions import ChatReconError


class PhaseStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class PhaseOutcome:
    status: PhaseStatus
    error: ChatReconError | None = None

    @classmethod
    def ok(cls) -> "PhaseOutcome":
        return cls(PhaseStatus.OK)

    @classmethod
    def skipped(cls) -> "PhaseOutcome":
        return cls(PhaseStatus.SKIPPED)

    @classmethod
    def failed(cls, error: ChatReconError) -> "PhaseOutcome":
        return cls(PhaseStatus.FAILED, error)

    @property
    def is_failed(self) -> bool:
        return self.status is PhaseStatus.FAILED


@dataclass(slots=True, frozen=True)
class ReconciliationResult:
    """
    Outcome of an edit or reload, phase by phase.

    The local edit is applied first and never rolled back, so a failed remote
    phase leaves `local_applied` true alongside the recorded error.
    """

    operation: Literal["edit", "reload"]
    target_id: str
    local_applied: bool
    truncation: PhaseOutcome = field(default_factory=PhaseOutcome.skipped)
    transport: PhaseOutcome = field(default_factory=PhaseOutcome.skipped)
    new_message_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.local_applied and not (self.truncation.is_failed or self.transport.is_failed)

    @property
    def diverged(self) -> bool:
        """The local log was edited but the store was not truncated to match."""
        return self.local_applied and self.truncation.is_failed
