from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable

import httpx
from tenacity import RetryCallState, retry, stop_after_attempt, wait_exponential

from slotbot.domain import Slot

logger = logging.getLogger(__name__)

# The site returns dates either as ISO or as dd/mm/yyyy / dd.mm.yyyy.
_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y")


def parse_date(raw: str) -> str:
    value = raw.strip()
    # "2026-03-09T00:00:00" -> "2026-03-09"
    if "T" in value:
        value = value.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return dt.datetime.strptime(value, fmt).date().isoformat()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date: {raw!r}")


def parse_slots(data: object) -> set[Slot]:
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON list of dates, got {type(data).__name__}")

    slots: set[Slot] = set()
    for item in data:
        try:
            slots.add(Slot(date_iso=parse_date(str(item))))
        except ValueError:
            logger.warning("Skipping unparseable date from availability response: %r", item)
    return slots


def filter_slots(slots: Iterable[Slot], *, earliest: str | None = None, latest: str | None = None) -> set[Slot]:
    # ISO dates compare correctly as strings.
    return {
        s
        for s in slots
        if (earliest is None or s.date_iso >= earliest) and (latest is None or s.date_iso <= latest)
    }


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    # Без стектрейса: только тип и сообщение, чтобы не спамить между попытками.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        reason = _short_exc(retry_state)
        logger.warning("Availability attempt %s failed (%s)", retry_state.attempt_number, reason or "unknown")


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Waiting before availability attempt %s...", retry_state.attempt_number + 1)
        return
    logger.info("Availability attempt %s in %.0f sec.", retry_state.attempt_number + 1, sleep_seconds)


class AvailabilitySource:
    """Polls the site's open-dates endpoint."""

    def __init__(
        self,
        url: str,
        payload: str,
        *,
        retry_attempts: int = 2,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.url = url
        self.payload = payload
        self.retry_attempts = retry_attempts
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    async def _fetch_once(self) -> set[Slot]:
        r = await self._client.post(
            self.url,
            content=self.payload.encode("utf-8"),
            headers={"Content-Type": "application/x-www-form-urlencoded; charset=UTF-8"},
        )
        r.raise_for_status()
        return parse_slots(r.json())

    async def fetch_open_slots(self) -> set[Slot]:
        decorated = retry(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=2, min=2, max=4),
            after=_log_after_attempt,
            before_sleep=_log_before_sleep,
            reraise=True,
        )(self._fetch_once)

        return await decorated()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
