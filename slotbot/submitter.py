from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Mapping, Protocol

import httpx

from slotbot.domain import BookingRequest, ConfigError, SubmissionResponse, TokenPair, TransportError

logger = logging.getLogger(__name__)


class FormSubmitter(Protocol):
    async def submit(self, fields: Mapping[str, str], headers: Mapping[str, str]) -> SubmissionResponse: ...


@dataclass(frozen=True)
class BookingForm:
    """How a booking attempt is laid out as form fields.

    ``static_fields`` and ``headers`` come from the operator's profile file
    (applicant data, fixed selectors, session cookie if the site needs one).
    """

    static_fields: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    date_field: str = "AppointmentDate"
    time_field: str = "AppointmentTime"
    token_a_field: str = "cfToken"
    token_b_field: str = "recaptchaToken"
    form_start_field: str | None = "formStartTime"
    # Сайт проверяет, что форму "заполняли" не мгновенно.
    form_start_offset_ms: int = 100_000

    def build_fields(self, request: BookingRequest, appointment_time: str, tokens: TokenPair) -> dict[str, str]:
        fields = dict(self.static_fields)
        fields.update(request.applicant_data)
        fields[self.date_field] = request.slot_date
        fields[self.time_field] = appointment_time
        if self.form_start_field:
            fields[self.form_start_field] = str(int(time.time() * 1000) - self.form_start_offset_ms)
        fields[self.token_a_field] = tokens.challenge_a
        fields[self.token_b_field] = tokens.challenge_b
        return fields


def load_booking_profile(path: str) -> tuple[dict[str, str], dict[str, str]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"BOOKING_PROFILE_FILE not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"BOOKING_PROFILE_FILE is not valid JSON: {path} ({e})") from e

    if not isinstance(raw, dict):
        raise ConfigError("BOOKING_PROFILE_FILE must contain a JSON object")

    fields = raw.get("fields", {})
    headers = raw.get("headers", {})
    if not isinstance(fields, dict) or not isinstance(headers, dict):
        raise ConfigError("BOOKING_PROFILE_FILE: 'fields' and 'headers' must be objects")

    return {str(k): str(v) for k, v in fields.items()}, {str(k): str(v) for k, v in headers.items()}


class HttpFormSubmitter:
    """Posts the booking form as multipart data.

    Any HTTP response (including 4xx/5xx) is returned for classification;
    only a missing response becomes ``TransportError``.
    """

    def __init__(self, url: str, *, client: httpx.AsyncClient | None = None, timeout_seconds: float = 30.0) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    async def submit(self, fields: Mapping[str, str], headers: Mapping[str, str]) -> SubmissionResponse:
        started = time.monotonic()
        # files=... forces multipart/form-data, as the site's own form does.
        multipart = {name: (None, value) for name, value in fields.items()}
        try:
            r = await self._client.post(self.url, files=multipart, headers=dict(headers))
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        logger.info("Submission answered HTTP %s in %.2fs", r.status_code, time.monotonic() - started)
        return SubmissionResponse(status_code=r.status_code, body=r.text)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
