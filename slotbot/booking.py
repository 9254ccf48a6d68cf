from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from slotbot.classify import OutcomeClassifier
from slotbot.domain import (
    AttemptOutcome,
    BookingRequest,
    BookingResult,
    BookingStatus,
    OutcomeKind,
    TimeAttempts,
    TimeState,
    TokenPair,
    TransportError,
)
from slotbot.submitter import BookingForm, FormSubmitter

logger = logging.getLogger(__name__)


class PairSource(Protocol):
    async def acquire_pair(self) -> TokenPair: ...


class BookingOrchestrator:
    """Walks the candidate times of a request until one is booked.

    Per time: retryable failures are retried after ``retry_delay`` up to
    ``max_attempts_per_time``; slot-full moves on to the next time at once;
    a non-retryable failure or a success ends the whole request. Attempt
    failures are reported through ``BookingResult``, never raised.
    """

    def __init__(
        self,
        tokens: PairSource,
        submitter: FormSubmitter,
        form: BookingForm,
        *,
        classifier: OutcomeClassifier | None = None,
        max_attempts_per_time: int = 10,
        retry_delay: float = 2.0,
    ) -> None:
        if max_attempts_per_time < 1:
            raise ValueError("max_attempts_per_time must be >= 1")
        self.tokens = tokens
        self.submitter = submitter
        self.form = form
        self.classifier = classifier or OutcomeClassifier()
        self.max_attempts_per_time = max_attempts_per_time
        self.retry_delay = retry_delay

    async def book(self, request: BookingRequest) -> BookingResult:
        logger.info("Booking %s, candidate times: %s", request.slot_date, ", ".join(request.candidate_times) or "-")
        history: list[TimeAttempts] = []

        for appointment_time in request.candidate_times:
            record, outcome = await self._attempt_time(request, appointment_time)
            history.append(record)

            if record.state is TimeState.SUCCEEDED:
                logger.info("✓ Booked %s %s after %d attempt(s)", request.slot_date, appointment_time, record.attempts)
                return BookingResult(
                    status=BookingStatus.BOOKED,
                    request=request,
                    time=appointment_time,
                    payload=outcome.payload,
                    times=tuple(history),
                )

            if record.state is TimeState.ABORTED:
                logger.error("✗ Non-retryable failure on %s %s: %s", request.slot_date, appointment_time, outcome.reason)
                return BookingResult(
                    status=BookingStatus.ABORTED,
                    request=request,
                    time=appointment_time,
                    reason=outcome.reason,
                    times=tuple(history),
                )

            logger.warning(
                "Time %s %s is %s after %d attempt(s), moving on",
                request.slot_date,
                appointment_time,
                record.state.value,
                record.attempts,
            )

        summary = ", ".join(f"{t.time}={t.state.value}" for t in history) or "no candidate times"
        logger.warning("All candidate times for %s exhausted (%s)", request.slot_date, summary)
        return BookingResult(
            status=BookingStatus.EXHAUSTED,
            request=request,
            reason=f"exhausted: {summary}",
            times=tuple(history),
        )

    async def _attempt_time(self, request: BookingRequest, appointment_time: str) -> tuple[TimeAttempts, AttemptOutcome]:
        outcome = AttemptOutcome.retryable("not attempted")

        for attempt in range(1, self.max_attempts_per_time + 1):
            logger.info("[%s %s] Attempt %d/%d", request.slot_date, appointment_time, attempt, self.max_attempts_per_time)
            outcome = await self.attempt_once(request, appointment_time)

            if outcome.kind is OutcomeKind.SUCCESS:
                return TimeAttempts(appointment_time, TimeState.SUCCEEDED, attempt), outcome
            if outcome.kind is OutcomeKind.NON_RETRYABLE:
                return TimeAttempts(appointment_time, TimeState.ABORTED, attempt, outcome.reason), outcome
            if outcome.kind is OutcomeKind.SLOT_FULL:
                return TimeAttempts(appointment_time, TimeState.SLOT_FULL, attempt, outcome.reason), outcome

            logger.warning("[%s %s] Attempt %d failed: %s", request.slot_date, appointment_time, attempt, outcome.reason)
            if attempt < self.max_attempts_per_time:
                await asyncio.sleep(self.retry_delay)

        return TimeAttempts(appointment_time, TimeState.EXHAUSTED, self.max_attempts_per_time, outcome.reason), outcome

    async def attempt_once(self, request: BookingRequest, appointment_time: str) -> AttemptOutcome:
        tokens = await self.tokens.acquire_pair()
        fields = self.form.build_fields(request, appointment_time, tokens)
        try:
            response = await self.submitter.submit(fields, self.form.headers)
        except TransportError as e:
            return self.classifier.classify_transport_error(e)
        except Exception as e:
            # Anything the submitter did not anticipate is retried, never raised to the caller.
            logger.warning("Unexpected submission error (%s: %s)", type(e).__name__, e)
            return self.classifier.classify_transport_error(e)
        return self.classifier.classify(response)
