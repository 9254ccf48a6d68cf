from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable

from slotbot.domain import AttemptOutcome, OutcomeKind, SubmissionResponse


@dataclass(frozen=True)
class MarkerRule:
    marker: str
    kind: OutcomeKind


# Order matters: first match wins. Messages come from the target site (Turkish).
DEFAULT_RULES: tuple[MarkerRule, ...] = (
    MarkerRule("kontenjan dolmuştur", OutcomeKind.SLOT_FULL),
    MarkerRule("reCAPTCHA", OutcomeKind.RETRYABLE),
    MarkerRule("Cloudflare", OutcomeKind.RETRYABLE),
    MarkerRule("güvenlik doğrulaması", OutcomeKind.RETRYABLE),
    MarkerRule("doğrulama", OutcomeKind.RETRYABLE),
    MarkerRule("zaten randevu", OutcomeKind.NON_RETRYABLE),
    MarkerRule("kara liste", OutcomeKind.NON_RETRYABLE),
)


def extract_message(body: str) -> str:
    """Pull the human-readable error out of a response body.

    The site answers with JSON ``{"errorMessage": ...}`` or ``{"message": ...}``
    on rejections; anything else is returned as-is.
    """
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return body

    if isinstance(data, dict):
        for key in ("errorMessage", "message"):
            value = data.get(key)
            if value:
                return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    return body


class OutcomeClassifier:
    def __init__(self, rules: Iterable[MarkerRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def with_rules(self, *extra: MarkerRule) -> OutcomeClassifier:
        return OutcomeClassifier(self.rules + extra)

    def match(self, message: str) -> OutcomeKind | None:
        lowered = message.casefold()
        for rule in self.rules:
            if rule.marker.casefold() in lowered:
                return rule.kind
        return None

    def classify(self, response: SubmissionResponse) -> AttemptOutcome:
        # Any 2xx is a booking; markers only describe rejections.
        if 200 <= response.status_code < 300:
            return AttemptOutcome.success(payload=response.body)

        message = extract_message(response.body)
        kind = self.match(message)
        if kind is None:
            return AttemptOutcome.retryable(f"HTTP {response.status_code}: {_shorten(message)}")
        return AttemptOutcome(kind, reason=_shorten(message))

    def classify_transport_error(self, error: BaseException) -> AttemptOutcome:
        msg = str(error).strip()
        return AttemptOutcome.retryable(f"{type(error).__name__}: {msg}" if msg else type(error).__name__)


def _shorten(text: str, limit: int = 300) -> str:
    text = text.strip()
    return text if len(text) <= limit else text[:limit] + "…"
