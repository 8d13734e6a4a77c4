import json

from app.client.continuity import ACTIVE_ATTEMPT_KEY, AttemptIdentity, ContinuityCache
from app.client.storage import JsonFileStore, MemoryStore


def test_save_writes_pointer_and_per_exam_counter():
    store = MemoryStore()
    cache = ContinuityCache(store)

    cache.save(AttemptIdentity(student_id=24, exam_id=7, duration_minutes=45), 1234)

    assert store.get(ACTIVE_ATTEMPT_KEY) == {"student_id": 24, "exam_id": 7, "duration_minutes": 45}
    assert store.get("exam_remaining:7") == 1234
    assert cache.load().matches(24, 7)
    assert not cache.load().matches(25, 7)


def test_clear_removes_both_records():
    store = MemoryStore()
    cache = ContinuityCache(store)
    cache.save(AttemptIdentity(24, 7, 45), 100)

    cache.clear()

    assert cache.load() is None
    assert cache.load_remaining(7) is None
    assert store.keys() == []


def test_clear_for_other_exam_keeps_active_pointer():
    cache = ContinuityCache(MemoryStore())
    cache.save(AttemptIdentity(24, 7, 45), 100)

    cache.clear(exam_id=8)

    assert cache.load() == AttemptIdentity(24, 7, 45)


def test_malformed_record_is_discarded():
    store = MemoryStore({ACTIVE_ATTEMPT_KEY: {"exam_id": "x"}, "exam_remaining:7": "soon"})
    cache = ContinuityCache(store)

    assert cache.load() is None
    assert store.get(ACTIVE_ATTEMPT_KEY) is None
    assert cache.load_remaining(7) is None


def test_json_file_store_survives_new_process(tmp_path):
    path = tmp_path / "state" / "exam.json"
    ContinuityCache(JsonFileStore(path)).save(AttemptIdentity(24, 7, 45), 321)

    reopened = ContinuityCache(JsonFileStore(path))

    assert reopened.load() == AttemptIdentity(24, 7, 45)
    assert reopened.load_remaining(7) == 321
    assert json.loads(path.read_text())["exam_remaining:7"] == 321


def test_json_file_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "exam.json"
    path.write_text("{not json")
    store = JsonFileStore(path)

    assert store.get(ACTIVE_ATTEMPT_KEY) is None
    store.set("token", "abc")
    assert store.get("token") == "abc"
