from __future__ import annotations

import json

from slotbot.domain import Slot
from slotbot.state_file import SeenStore


class _Clock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_new_slots_and_mark() -> None:
    store = SeenStore(":memory:", ttl_seconds=60)
    slots = {Slot("2026-03-09"), Slot("2026-03-10")}

    assert store.new_slots(slots) == slots
    store.mark({Slot("2026-03-09")})
    assert store.new_slots(slots) == {Slot("2026-03-10")}
    assert Slot("2026-03-09") in store


def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    store = SeenStore(":memory:", ttl_seconds=60, clock=clock)
    store.mark({Slot("2026-03-09")})

    clock.now += 59
    assert Slot("2026-03-09") in store

    clock.now += 2
    assert Slot("2026-03-09") not in store
    assert len(store) == 0


def test_persists_between_instances(tmp_path) -> None:
    path = tmp_path / "nested" / "state.json"
    clock = _Clock()

    SeenStore(str(path), ttl_seconds=60, clock=clock).mark({Slot("2026-03-09")})

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw == {"seen": {"2026-03-09": clock.now}}
    assert Slot("2026-03-09") in SeenStore(str(path), ttl_seconds=60, clock=clock)


def test_corrupted_state_starts_fresh(tmp_path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{broken", encoding="utf-8")

    store = SeenStore(str(path), ttl_seconds=60)
    assert len(store) == 0


def test_memory_store_writes_nothing(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    SeenStore(":memory:", ttl_seconds=60).mark({Slot("2026-03-09")})
    assert list(tmp_path.iterdir()) == []
