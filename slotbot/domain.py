from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping

Token = str


@dataclass(frozen=True, order=True)
class Slot:
    """A single open appointment date reported by the site."""

    date_iso: str  # YYYY-MM-DD


@dataclass(frozen=True)
class TokenPair:
    challenge_a: Token
    challenge_b: Token


@dataclass(frozen=True)
class BookingRequest:
    slot_date: str
    candidate_times: tuple[str, ...]
    applicant_data: Mapping[str, str] = field(default_factory=dict)


class OutcomeKind(enum.Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"
    SLOT_FULL = "slot_full"


@dataclass(frozen=True)
class AttemptOutcome:
    """Classified result of one submission attempt."""

    kind: OutcomeKind
    reason: str = ""
    payload: Any = None

    @classmethod
    def success(cls, payload: Any = None) -> AttemptOutcome:
        return cls(OutcomeKind.SUCCESS, payload=payload)

    @classmethod
    def retryable(cls, reason: str) -> AttemptOutcome:
        return cls(OutcomeKind.RETRYABLE, reason=reason)

    @classmethod
    def non_retryable(cls, reason: str) -> AttemptOutcome:
        return cls(OutcomeKind.NON_RETRYABLE, reason=reason)

    @classmethod
    def slot_full(cls, reason: str) -> AttemptOutcome:
        return cls(OutcomeKind.SLOT_FULL, reason=reason)


class TimeState(enum.Enum):
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    SLOT_FULL = "slot_full"
    ABORTED = "aborted"


@dataclass(frozen=True)
class TimeAttempts:
    time: str
    state: TimeState
    attempts: int
    last_reason: str = ""


class BookingStatus(enum.Enum):
    BOOKED = "booked"
    ABORTED = "aborted"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class BookingResult:
    status: BookingStatus
    request: BookingRequest
    time: str | None = None
    payload: Any = None
    reason: str = ""
    times: tuple[TimeAttempts, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is BookingStatus.BOOKED

    @property
    def total_attempts(self) -> int:
        return sum(t.attempts for t in self.times)


@dataclass(frozen=True)
class SubmissionResponse:
    status_code: int
    body: str


class SlotBotError(RuntimeError):
    pass


class SolverError(SlotBotError):
    """Challenge provider timed out or rejected the task.

    Suppliers retry these forever; they never reach the booking code.
    """


class TransportError(SlotBotError):
    """Submission produced no HTTP response at all."""


class ConfigError(SlotBotError):
    pass
