from __future__ import annotations

import json
import os
import tempfile
import time
from typing import Callable, Iterable

from slotbot.domain import Slot

MEMORY = ":memory:"


class SeenStore:
    """Dates that already triggered a notification/booking, with a TTL.

    Persisted as ``{"seen": {"2026-03-09": 1760000000.0}}``. Use ``":memory:"``
    as the path to keep it in-process only.
    """

    def __init__(self, path: str, ttl_seconds: float, *, clock: Callable[[], float] = time.time) -> None:
        self.path = path
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._seen: dict[str, float] = self._load()

    def _load(self) -> dict[str, float]:
        if self.path == MEMORY or not os.path.exists(self.path):
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError:
            # Corrupted state shouldn't brick the worker; start fresh.
            return {}

        seen: dict[str, float] = {}
        items = raw.get("seen", {}) if isinstance(raw, dict) else {}
        for date_iso, stamp in items.items():
            try:
                seen[str(date_iso)] = float(stamp)
            except (TypeError, ValueError):
                continue
        return seen

    def _expire(self) -> None:
        cutoff = self._clock() - self.ttl_seconds
        self._seen = {d: t for d, t in self._seen.items() if t > cutoff}

    def __contains__(self, slot: Slot) -> bool:
        self._expire()
        return slot.date_iso in self._seen

    def __len__(self) -> int:
        self._expire()
        return len(self._seen)

    def new_slots(self, slots: Iterable[Slot]) -> set[Slot]:
        self._expire()
        return {s for s in slots if s.date_iso not in self._seen}

    def mark(self, slots: Iterable[Slot]) -> None:
        now = self._clock()
        for s in slots:
            self._seen.setdefault(s.date_iso, now)
        self.save()

    def save(self) -> None:
        self._expire()
        if self.path == MEMORY:
            return

        data = {"seen": dict(sorted(self._seen.items()))}

        folder = os.path.dirname(os.path.abspath(self.path))
        if folder and not os.path.exists(folder):
            os.makedirs(folder, exist_ok=True)

        # Atomic write
        with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
            json.dump(data, tf, ensure_ascii=False, indent=2)
            tmp_name = tf.name

        os.replace(tmp_name, self.path)
