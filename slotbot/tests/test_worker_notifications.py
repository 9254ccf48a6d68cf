from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from slotbot.booking import BookingOrchestrator
from slotbot.config import Settings
from slotbot.domain import BookingRequest, BookingResult, BookingStatus, Slot, SolverError, TimeAttempts, TimeState
from slotbot.state_file import SeenStore
from slotbot.submitter import BookingForm
from slotbot.supply import SupplyController, SupplyState, TokenSupplier
from slotbot.token_pool import TokenPool
from slotbot.worker import SlotWatcher


def _settings(**overrides) -> Settings:
    # Тесты не должны содержать реальные данные/токены/id и не должны ходить в сеть.
    values = dict(
        target_url="https://example.test/book",
        availability_url="https://example.test/dates",
        availability_payload="",
        telegram_bot_token="TEST_TOKEN",
        telegram_chat_ids=("1", "2"),
        check_interval_seconds=1,
        state_file=":memory:",
        appointment_times=("09:00", "09:30"),
    )
    values.update(overrides)
    return Settings(**values)


def _result(status: BookingStatus, date: str) -> BookingResult:
    request = BookingRequest(date, ("09:00", "09:30"))
    if status is BookingStatus.BOOKED:
        return BookingResult(status, request, time="09:00", times=(TimeAttempts("09:00", TimeState.SUCCEEDED, 2),))
    return BookingResult(
        status,
        request,
        reason="exhausted",
        times=(TimeAttempts("09:00", TimeState.EXHAUSTED, 10), TimeAttempts("09:30", TimeState.SLOT_FULL, 1)),
    )


def _watcher(slots: set[Slot], *, settings: Settings | None = None, orchestrator=None) -> SlotWatcher:
    source = MagicMock()
    source.fetch_open_slots = AsyncMock(return_value=slots)
    notifier = MagicMock()
    notifier.notify = AsyncMock(return_value=1)
    return SlotWatcher(
        settings or _settings(),
        source=source,
        seen=SeenStore(":memory:", ttl_seconds=3600),
        notifier=notifier,
        orchestrator=orchestrator,
        applicant_data={"Name": "Ada"},
    )


def test_new_slots_notify_once() -> None:
    watcher = _watcher({Slot("2026-03-09")})

    asyncio.run(watcher.check_once())
    asyncio.run(watcher.check_once())

    assert watcher.notifier.notify.await_count == 1
    assert "2026-03-09" in watcher.notifier.notify.await_args.args[0]


def test_no_new_slots_sends_nothing() -> None:
    watcher = _watcher(set())

    assert asyncio.run(watcher.check_once()) == []
    watcher.notifier.notify.assert_not_awaited()


def test_slots_outside_window_are_ignored() -> None:
    settings = _settings(earliest_date="2026-03-05", latest_date="2026-03-31")
    watcher = _watcher({Slot("2026-03-01"), Slot("2026-04-02")}, settings=settings)

    asyncio.run(watcher.check_once())
    watcher.notifier.notify.assert_not_awaited()


def test_new_slot_is_booked_with_configured_times_and_result_notified() -> None:
    orchestrator = MagicMock()
    orchestrator.book = AsyncMock(return_value=_result(BookingStatus.BOOKED, "2026-03-09"))
    watcher = _watcher({Slot("2026-03-09")}, orchestrator=orchestrator)

    results = asyncio.run(watcher.check_once())

    assert [r.status for r in results] == [BookingStatus.BOOKED]
    request = orchestrator.book.await_args.args[0]
    assert request == BookingRequest("2026-03-09", ("09:00", "09:30"), {"Name": "Ada"})
    assert watcher.booked is results[0]
    # new date + booking result
    assert watcher.notifier.notify.await_count == 2
    assert "Randevu alındı" in watcher.notifier.notify.await_args_list[1].args[0]


def test_booking_stops_after_first_success_and_later_dates_only_notify() -> None:
    orchestrator = MagicMock()
    orchestrator.book = AsyncMock(
        side_effect=[
            _result(BookingStatus.EXHAUSTED, "2026-03-09"),
            _result(BookingStatus.BOOKED, "2026-03-10"),
        ]
    )
    watcher = _watcher({Slot("2026-03-09"), Slot("2026-03-10"), Slot("2026-03-11")}, orchestrator=orchestrator)

    results = asyncio.run(watcher.check_once())

    assert [r.request.slot_date for r in results] == ["2026-03-09", "2026-03-10"]
    assert "all times exhausted" in watcher.notifier.notify.await_args_list[1].args[0]

    watcher.source.fetch_open_slots = AsyncMock(return_value={Slot("2026-03-20")})
    assert asyncio.run(watcher.check_once()) == []
    assert orchestrator.book.await_count == 2


def test_failed_booking_does_not_retrigger_same_date() -> None:
    orchestrator = MagicMock()
    orchestrator.book = AsyncMock(return_value=_result(BookingStatus.EXHAUSTED, "2026-03-09"))
    watcher = _watcher({Slot("2026-03-09")}, orchestrator=orchestrator)

    asyncio.run(watcher.check_once())
    asyncio.run(watcher.check_once())

    assert orchestrator.book.await_count == 1


def test_availability_error_propagates_from_check_once() -> None:
    watcher = _watcher(set())
    watcher.source.fetch_open_slots = AsyncMock(side_effect=RuntimeError("boom"))

    with pytest.raises(RuntimeError):
        asyncio.run(watcher.check_once())


def test_run_forever_survives_failed_check_and_honours_stop() -> None:
    watcher = _watcher(set())

    async def scenario() -> None:
        stop = asyncio.Event()
        calls = {"n": 0}

        async def flaky() -> set[Slot]:
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("site down")
            stop.set()
            return set()

        watcher.source.fetch_open_slots = flaky
        watcher.settings = _settings(check_interval_seconds=0)
        await asyncio.wait_for(watcher.run_forever(stop), timeout=5)
        assert calls["n"] == 2

    asyncio.run(scenario())


def test_stop_interrupts_booking_blocked_on_empty_pools() -> None:
    async def failing_solver() -> str:
        await asyncio.sleep(0)
        raise SolverError("provider rejected task")

    async def scenario() -> None:
        supply = SupplyController(
            TokenSupplier(TokenPool("A", 3), failing_solver, warmup_size=0, failure_interval=0.01),
            TokenSupplier(TokenPool("B", 3), failing_solver, warmup_size=0, failure_interval=0.01),
        )
        submitter = MagicMock()
        submitter.submit = AsyncMock()
        orchestrator = BookingOrchestrator(supply, submitter, BookingForm(form_start_field=None), retry_delay=0)
        watcher = _watcher({Slot("2026-03-09")}, orchestrator=orchestrator)

        stop = asyncio.Event()
        async with supply:
            runner = asyncio.create_task(watcher.run_forever(stop))
            await asyncio.sleep(0.1)
            assert not runner.done()

            stop.set()
            await asyncio.wait_for(runner, timeout=2)

        assert supply.state is SupplyState.STOPPED
        submitter.submit.assert_not_awaited()

    asyncio.run(scenario())
