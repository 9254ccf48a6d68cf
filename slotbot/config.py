from __future__ import annotations

import datetime as dt
import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _parse_chat_id(name: str, raw: str) -> str:
    # Telegram allows numeric IDs; groups/supergroups can be negative.
    try:
        int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected integer chat id.") from e

    if raw == "0":
        raise RuntimeError(f"Invalid {name} value: '0' is not a valid chat id")
    return raw


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    # TELEGRAM_CHAT_ID supports a single value or a comma-separated list.
    # Examples:
    #   TELEGRAM_CHAT_ID=123456789
    #   TELEGRAM_CHAT_ID=123456789,-1001234567890
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        _parse_chat_id("TELEGRAM_CHAT_ID", p)
        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    if not result:
        raise RuntimeError("TELEGRAM_CHAT_ID is empty. Provide at least one chat id.")

    return tuple(result)


def _parse_times(raw: str) -> tuple[str, ...]:
    # Order is preference order: APPOINTMENT_TIMES=09:00,09:30,10:00
    result: list[str] = []
    for p in (p.strip() for p in raw.split(",")):
        if p and p not in result:
            result.append(p)
    return tuple(result)


def _parse_date(name: str, raw: str | None) -> str | None:
    if not raw or not raw.strip():
        return None
    try:
        return dt.date.fromisoformat(raw.strip()).isoformat()
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected YYYY-MM-DD.") from e


def _int_at_least(name: str, default: str, minimum: int) -> int:
    value = int(os.getenv(name, default))
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return value


def _float_at_least(name: str, default: str, minimum: float) -> float:
    value = float(os.getenv(name, default))
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return value


@dataclass(frozen=True)
class Settings:
    target_url: str
    availability_url: str
    availability_payload: str

    telegram_bot_token: str
    telegram_chat_ids: tuple[str, ...]
    telegram_admin_chat_id: str | None = None

    check_interval_seconds: int = 15

    # How many times one availability fetch is retried on failure.
    check_retry_attempts: int = 2

    # Dates already notified are remembered this long.
    seen_ttl_seconds: int = 24 * 60 * 60
    state_file: str = "state.json"

    # Challenge supply
    challenge_a_site_key: str = ""
    challenge_b_site_key: str = ""
    challenge_b_min_score: float = 0.9
    challenge_b_action: str = "appointment_submit"
    token_pool_capacity: int = 3
    warmup_size: int = 3
    solver_factory: str | None = None

    # Booking
    appointment_times: tuple[str, ...] = ()
    earliest_date: str | None = None
    latest_date: str | None = None
    max_attempts_per_time: int = 10
    retry_delay_seconds: float = 2.0
    booking_profile_file: str | None = None

    http_timeout_seconds: float = 30.0

    @property
    def booking_enabled(self) -> bool:
        return bool(self.solver_factory and self.appointment_times and self.booking_profile_file)


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    admin_raw = (os.getenv("TELEGRAM_ADMIN_CHAT_ID") or "").strip()
    admin_chat_id = _parse_chat_id("TELEGRAM_ADMIN_CHAT_ID", admin_raw) if admin_raw else None

    earliest_date = _parse_date("EARLIEST_DATE", os.getenv("EARLIEST_DATE"))
    latest_date = _parse_date("LATEST_DATE", os.getenv("LATEST_DATE"))
    if earliest_date and latest_date and earliest_date > latest_date:
        raise RuntimeError("EARLIEST_DATE must not be after LATEST_DATE")

    solver_factory = os.getenv("SOLVER_FACTORY", "").strip() or None
    booking_profile_file = os.getenv("BOOKING_PROFILE_FILE", "").strip() or None
    appointment_times = _parse_times(os.getenv("APPOINTMENT_TIMES", ""))

    # Для бронирования нужны ключи обеих капч.
    challenge_a_site_key = os.getenv("CHALLENGE_A_SITE_KEY", "")
    challenge_b_site_key = os.getenv("CHALLENGE_B_SITE_KEY", "")
    if solver_factory and not (challenge_a_site_key and challenge_b_site_key):
        raise RuntimeError("SOLVER_FACTORY requires CHALLENGE_A_SITE_KEY and CHALLENGE_B_SITE_KEY")

    return Settings(
        target_url=_require("TARGET_URL"),
        availability_url=_require("AVAILABILITY_URL"),
        availability_payload=os.getenv("AVAILABILITY_PAYLOAD", ""),
        telegram_bot_token=_require("TELEGRAM_BOT_TOKEN"),
        telegram_chat_ids=_parse_telegram_chat_ids(_require("TELEGRAM_CHAT_ID")),
        telegram_admin_chat_id=admin_chat_id,
        check_interval_seconds=_int_at_least("CHECK_INTERVAL_SECONDS", "15", 1),
        check_retry_attempts=_int_at_least("CHECK_RETRY_ATTEMPTS", "2", 1),
        seen_ttl_seconds=_int_at_least("SEEN_TTL_SECONDS", str(24 * 60 * 60), 1),
        state_file=os.getenv("STATE_FILE", "state.json"),
        challenge_a_site_key=challenge_a_site_key,
        challenge_b_site_key=challenge_b_site_key,
        challenge_b_min_score=_float_at_least("CHALLENGE_B_MIN_SCORE", "0.9", 0.0),
        challenge_b_action=os.getenv("CHALLENGE_B_ACTION", "appointment_submit"),
        token_pool_capacity=_int_at_least("TOKEN_POOL_CAPACITY", "3", 1),
        warmup_size=_int_at_least("WARMUP_SIZE", "3", 0),
        solver_factory=solver_factory,
        appointment_times=appointment_times,
        earliest_date=earliest_date,
        latest_date=latest_date,
        max_attempts_per_time=_int_at_least("MAX_ATTEMPTS_PER_TIME", "10", 1),
        retry_delay_seconds=_float_at_least("RETRY_DELAY_SECONDS", "2", 0.0),
        booking_profile_file=booking_profile_file,
        http_timeout_seconds=_float_at_least("HTTP_TIMEOUT_SECONDS", "30", 1.0),
    )
