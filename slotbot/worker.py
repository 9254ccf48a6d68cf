from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Iterable, Mapping

from slotbot.availability import AvailabilitySource, filter_slots
from slotbot.booking import BookingOrchestrator
from slotbot.challenges import ChallengeTarget, bind_type_a, bind_type_b, load_solver_factory
from slotbot.config import Settings
from slotbot.domain import BookingRequest, BookingResult, BookingStatus, Slot
from slotbot.state_file import SeenStore
from slotbot.submitter import BookingForm, HttpFormSubmitter, load_booking_profile
from slotbot.supply import SupplyController, TokenSupplier
from slotbot.telegram_notifier import TelegramNotifier
from slotbot.token_pool import TokenPool

logger = logging.getLogger(__name__)


def _format_slots(slots: Iterable[Slot]) -> str:
    return "\n".join(f"• {s.date_iso}" for s in sorted(slots))


def _format_result(result: BookingResult) -> str:
    date = result.request.slot_date
    if result.status is BookingStatus.BOOKED:
        return f"Randevu alındı! {date} {result.time} ({result.total_attempts} attempt(s))"
    if result.status is BookingStatus.ABORTED:
        return f"Booking for {date} {result.time} stopped (non-retryable): {result.reason}"
    tried = ", ".join(f"{t.time} {t.state.value}/{t.attempts}" for t in result.times) or "-"
    return f"Booking for {date} failed, all times exhausted: {tried}"


class SlotWatcher:
    """One availability check per interval; books new matching dates."""

    def __init__(
        self,
        settings: Settings,
        *,
        source: AvailabilitySource,
        seen: SeenStore,
        notifier: TelegramNotifier,
        orchestrator: BookingOrchestrator | None = None,
        applicant_data: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self.source = source
        self.seen = seen
        self.notifier = notifier
        self.orchestrator = orchestrator
        self.applicant_data = dict(applicant_data or {})
        self.booked: BookingResult | None = None

    async def check_once(self) -> list[BookingResult]:
        current = await self.source.fetch_open_slots()
        matching = filter_slots(current, earliest=self.settings.earliest_date, latest=self.settings.latest_date)
        new_slots = self.seen.new_slots(matching)

        logger.info("Slots: open=%d matching=%d new=%d", len(current), len(matching), len(new_slots))
        if not new_slots:
            return []

        # Each date triggers one attempt only, even if booking fails below.
        self.seen.mark(new_slots)
        await self.notifier.notify(
            "Yeni randevu tarihi açıldı / new appointment date(s):\n\n"
            f"{_format_slots(new_slots)}\n\n"
            f"Link: {self.settings.target_url}"
        )

        if self.orchestrator is None or self.booked is not None:
            return []

        results: list[BookingResult] = []
        for slot in sorted(new_slots):
            request = BookingRequest(
                slot_date=slot.date_iso,
                candidate_times=self.settings.appointment_times,
                applicant_data=self.applicant_data,
            )
            result = await self.orchestrator.book(request)
            results.append(result)
            await self.notifier.notify(_format_result(result))
            if result.ok:
                self.booked = result
                break
        return results

    async def run_forever(self, stop: asyncio.Event) -> None:
        logger.info("Watcher started. Interval=%ss", self.settings.check_interval_seconds)
        while not stop.is_set():
            if not await self._check_until_stopped(stop):
                logger.info("Stop requested, current check cancelled")
                break

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=self.settings.check_interval_seconds)
        logger.info("Watcher stopped")

    async def _check_until_stopped(self, stop: asyncio.Event) -> bool:
        """Run one check; return False if ``stop`` fired first and the check was cancelled.

        A booking can block on an empty pool for as long as the solver keeps
        failing, so the stop signal has to interrupt it mid-flight.
        """
        check = asyncio.create_task(self.check_once(), name="check")
        stopped = asyncio.create_task(stop.wait(), name="stop-wait")
        try:
            await asyncio.wait({check, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (check, stopped):
                if not task.done():
                    task.cancel()
            await asyncio.gather(check, stopped, return_exceptions=True)

        if check.cancelled():
            return False

        exc = check.exception()
        if exc is not None:
            logger.error("Check failed (%s: %s)", type(exc).__name__, exc)
        return True

    async def aclose(self) -> None:
        await self.source.aclose()
        if self.orchestrator is not None and isinstance(self.orchestrator.submitter, HttpFormSubmitter):
            await self.orchestrator.submitter.aclose()


def build_supply(settings: Settings) -> SupplyController:
    factory = load_solver_factory(settings.solver_factory or "")
    solver = factory(settings)
    target = ChallengeTarget(
        target_url=settings.target_url,
        site_key_a=settings.challenge_a_site_key,
        site_key_b=settings.challenge_b_site_key,
        min_score_b=settings.challenge_b_min_score,
        action_b=settings.challenge_b_action,
    )
    return SupplyController(
        TokenSupplier(
            TokenPool("ChallengeA", settings.token_pool_capacity),
            bind_type_a(solver, target),
            warmup_size=settings.warmup_size,
        ),
        TokenSupplier(
            TokenPool("ChallengeB", settings.token_pool_capacity),
            bind_type_b(solver, target),
            warmup_size=settings.warmup_size,
        ),
    )


def build_watcher(
    settings: Settings,
    *,
    notifier: TelegramNotifier,
    supply: SupplyController | None,
) -> SlotWatcher:
    source = AvailabilitySource(
        settings.availability_url,
        settings.availability_payload,
        retry_attempts=settings.check_retry_attempts,
        timeout_seconds=settings.http_timeout_seconds,
    )
    seen = SeenStore(settings.state_file, settings.seen_ttl_seconds)

    if supply is None or not settings.booking_profile_file:
        return SlotWatcher(settings, source=source, seen=seen, notifier=notifier)

    fields, headers = load_booking_profile(settings.booking_profile_file)
    orchestrator = BookingOrchestrator(
        supply,
        HttpFormSubmitter(settings.target_url, timeout_seconds=settings.http_timeout_seconds),
        BookingForm(headers=headers),
        max_attempts_per_time=settings.max_attempts_per_time,
        retry_delay=settings.retry_delay_seconds,
    )
    return SlotWatcher(
        settings,
        source=source,
        seen=seen,
        notifier=notifier,
        orchestrator=orchestrator,
        applicant_data=fields,
    )
