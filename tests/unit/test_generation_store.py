from __future__ import annotations

import threading
from collections.abc import Callable

import pytest

from app.generation.store import PREFETCH_KEY, STORAGE_KEY, GenerationStore, generate_id
from app.storage.kv import InMemoryKeyValueStorage, SqlKeyValueStorage


def test_generate_id_ignores_param_order() -> None:
  first = generate_id("meal", {"dailyCalories": 2000, "dietType": "keto", "mealsPerDay": 3})
  second = generate_id("meal", {"mealsPerDay": 3, "dietType": "keto", "dailyCalories": 2000})

  assert first == second
  assert first.startswith("meal_")
  assert generate_id("workout", {"dailyCalories": 2000}) != generate_id("meal", {"dailyCalories": 2000})


def test_start_creates_pending_record(store: GenerationStore) -> None:
  record_id = store.start("workout", {"daysPerWeek": 3})
  record = store.get(record_id)

  assert record is not None
  assert record.status == "pending"
  assert record.progress == 0
  assert record.partial_content == ""
  assert record.params == {"daysPerWeek": 3}


def test_update_progress_on_unknown_id_is_noop(store: GenerationStore, storage: InMemoryKeyValueStorage) -> None:
  assert store.update_progress("workout_missing", 50, "partial") is False
  assert store.get("workout_missing") is None
  assert storage.get(STORAGE_KEY) is None


def test_expired_record_is_purged(store: GenerationStore, storage: InMemoryKeyValueStorage, clock) -> None:
  record_id = store.start("meal", {"dailyCalories": 2000})
  clock.advance(31 * 60)

  assert store.get(record_id) is None
  # Purged from storage, not only hidden from reads.
  assert record_id not in (storage.get(STORAGE_KEY) or "")
  assert store.get(record_id) is None


def test_record_within_ttl_survives(store: GenerationStore, clock) -> None:
  record_id = store.start("meal", {"dailyCalories": 2000})
  clock.advance(29 * 60)

  assert store.get(record_id) is not None


def test_failed_generation_keeps_partial_content(store: GenerationStore) -> None:
  record_id = store.start("meal", {"dailyCalories": 2000})
  store.update_progress(record_id, 40, "partial")
  store.fail(record_id, "LLM timeout")

  record = store.get(record_id)
  assert record.status == "failed"
  assert record.partial_content == "partial"
  assert record.error == "LLM timeout"
  assert record.progress == 40


def test_complete_sets_result_and_full_progress(store: GenerationStore, clock) -> None:
  record_id = store.start("workout", {"daysPerWeek": 3})
  store.update_progress(record_id, 60, '{"workouts"')
  clock.advance(5)
  store.complete(record_id, {"overview": "done"})

  record = store.get(record_id)
  assert record.status == "completed"
  assert record.progress == 100
  assert record.result == {"overview": "done"}
  assert record.updated_at == clock.now


def test_terminal_records_ignore_further_updates(store: GenerationStore) -> None:
  record_id = store.start("workout", {"daysPerWeek": 3})
  store.complete(record_id, {"overview": "done"})

  assert store.update_progress(record_id, 10, "late chunk") is False
  assert store.fail(record_id, "too late") is False
  assert store.get(record_id).status == "completed"


def test_out_of_order_progress_is_applied_in_call_order(store: GenerationStore) -> None:
  record_id = store.start("workout", {"daysPerWeek": 3})
  store.update_progress(record_id, 70, "abc")
  store.update_progress(record_id, 30, "ab")

  assert store.get(record_id).progress == 30


def test_restart_overwrites_previous_record(store: GenerationStore) -> None:
  params = {"daysPerWeek": 3}
  record_id = store.start("workout", params)
  store.fail(record_id, "boom")

  assert store.start("workout", params) == record_id
  assert store.get_by_params("workout", params).status == "pending"


def test_get_incomplete_returns_live_streaming_record(store: GenerationStore, clock) -> None:
  pending_id = store.start("meal", {"dailyCalories": 1800})
  streaming_id = store.start("meal", {"dailyCalories": 2000})
  store.update_progress(streaming_id, 20, "{")
  store.start("workout", {"daysPerWeek": 3})

  assert store.get_incomplete("meal").id == streaming_id
  assert store.get_incomplete("workout") is None
  assert pending_id != streaming_id

  clock.advance(31 * 60)
  assert store.get_incomplete("meal") is None


def test_clear_by_type_keeps_other_types(store: GenerationStore) -> None:
  meal_id = store.start("meal", {"dailyCalories": 2000})
  workout_id = store.start("workout", {"daysPerWeek": 3})

  store.clear("meal")

  assert store.get(meal_id) is None
  assert store.get(workout_id) is not None

  store.clear()
  assert store.list_records() == []


def test_expiry_purge_does_not_drop_a_concurrent_restart(storage: InMemoryKeyValueStorage, clock, monkeypatch: pytest.MonkeyPatch) -> None:
  store = GenerationStore(storage, clock=clock)
  params = {"dailyCalories": 2000}
  record_id = store.start("meal", params)
  clock.advance(31 * 60)

  restarts: list[threading.Thread] = []
  original_get = storage.get

  def get_and_race(key: str) -> str | None:
    if not restarts:
      # Another worker restarts the same generation while the purge is running.
      restart = threading.Thread(target=store.start, args=("meal", params))
      restarts.append(restart)
      restart.start()
    return original_get(key)

  monkeypatch.setattr(storage, "get", get_and_race)
  assert store.get(record_id) is None
  restarts[0].join(timeout=5)

  record = store.get(record_id)
  assert record is not None
  assert record.status == "pending"


def test_remove_deletes_single_record(store: GenerationStore) -> None:
  record_id = store.start("meal", {"dailyCalories": 2000})
  store.remove(record_id)

  assert store.get(record_id) is None


def test_subscribers_are_notified_and_can_unsubscribe(store: GenerationStore) -> None:
  calls: list[str] = []
  unsubscribe = store.subscribe(lambda: calls.append("changed"))

  record_id = store.start("meal", {"dailyCalories": 2000})
  store.update_progress(record_id, 10, "x")
  assert calls == ["changed", "changed"]

  unsubscribe()
  unsubscribe()
  store.remove(record_id)
  assert calls == ["changed", "changed"]


def test_listeners_may_unsubscribe_during_notification(store: GenerationStore) -> None:
  calls: list[str] = []
  unsubscribers: dict[str, Callable[[], None]] = {}

  def first() -> None:
    calls.append("first")
    unsubscribers["first"]()
    unsubscribers["third"]()

  unsubscribers["first"] = store.subscribe(first)
  unsubscribers["second"] = store.subscribe(lambda: calls.append("second"))
  unsubscribers["third"] = store.subscribe(lambda: calls.append("third"))

  record_id = store.start("meal", {"dailyCalories": 2000})
  # The snapshot taken before notifying still reaches every listener once.
  assert calls == ["first", "second", "third"]

  store.update_progress(record_id, 10, "x")
  assert calls == ["first", "second", "third", "second"]


def test_failing_listener_does_not_block_others(store: GenerationStore) -> None:
  seen: list[int] = []

  def broken() -> None:
    raise RuntimeError("listener bug")

  store.subscribe(broken)
  store.subscribe(lambda: seen.append(1))
  store.start("meal", {"dailyCalories": 2000})

  assert seen == [1]


def test_corrupted_document_reads_as_empty(storage: InMemoryKeyValueStorage, clock) -> None:
  storage.set(STORAGE_KEY, "{not json")
  storage.set(PREFETCH_KEY, "[oops")
  store = GenerationStore(storage, clock=clock)

  assert store.list_records() == []
  assert store.get_prefetch_queue() == []
  assert store.start("meal", {"dailyCalories": 2000})


def test_prefetch_queue_dedupes_and_orders_by_priority(storage: InMemoryKeyValueStorage, clock) -> None:
  store = GenerationStore(storage, clock=clock, prefetch_limit=3)

  assert store.add_to_prefetch("meal", {"dailyCalories": 1800}, priority=1)
  assert store.add_to_prefetch("meal", {"dailyCalories": 2000}, priority=3)
  assert not store.add_to_prefetch("meal", {"dailyCalories": 1800}, priority=5)
  assert store.add_to_prefetch("workout", {"daysPerWeek": 3}, priority=1)
  assert store.add_to_prefetch("meal", {"dailyCalories": 2200}, priority=2)

  queue = store.get_prefetch_queue()
  assert [entry.params for entry in queue] == [
    {"dailyCalories": 2000, "_type": "meal"},
    {"dailyCalories": 2200, "_type": "meal"},
    {"dailyCalories": 1800, "_type": "meal"},
  ]
  assert queue[0].type == "meal"

  store.clear_prefetch()
  assert store.get_prefetch_queue() == []


def test_prefetch_entry_ranked_past_the_limit_is_rejected(storage: InMemoryKeyValueStorage, clock) -> None:
  store = GenerationStore(storage, clock=clock, prefetch_limit=2)
  notifications: list[int] = []
  store.add_to_prefetch("meal", {"dailyCalories": 2000}, priority=5)
  store.add_to_prefetch("meal", {"dailyCalories": 2200}, priority=4)
  store.subscribe(lambda: notifications.append(1))

  assert store.add_to_prefetch("meal", {"dailyCalories": 1800}, priority=1) is False
  assert notifications == []
  assert [entry.params["dailyCalories"] for entry in store.get_prefetch_queue()] == [2000, 2200]

  assert store.add_to_prefetch("meal", {"dailyCalories": 2500}, priority=9) is True
  assert notifications == [1]
  assert [entry.params["dailyCalories"] for entry in store.get_prefetch_queue()] == [2500, 2000]


def test_records_survive_a_new_store_on_sql_storage(clock) -> None:
  storage = SqlKeyValueStorage.from_dsn("sqlite://")
  record_id = GenerationStore(storage, clock=clock).start("workout", {"daysPerWeek": 4})

  reloaded = GenerationStore(storage, clock=clock)
  record = reloaded.get(record_id)

  assert record is not None
  assert record.params == {"daysPerWeek": 4}
  storage.dispose()
