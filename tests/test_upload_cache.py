import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.upload_cache import UploadCache


def test_entries_expire_after_ttl(clock):
    cache = UploadCache(ttl_seconds=60, clock=clock)
    entry = cache.put("amazon.csv", b"a,b\n1,2\n")

    clock.advance(59)
    assert cache.get(entry.file_id) is entry

    clock.advance(2)
    assert cache.get(entry.file_id) is None
    assert len(cache) == 0


def test_sweep_evicts_only_expired_entries(clock):
    cache = UploadCache(ttl_seconds=60, clock=clock)
    old = cache.put("old.csv", b"x")
    clock.advance(45)
    fresh = cache.put("fresh.csv", b"y")
    clock.advance(30)

    assert cache.sweep() == 1
    assert cache.get(old.file_id) is None
    assert cache.get(fresh.file_id) is fresh


def test_text_strips_utf8_bom(clock):
    cache = UploadCache(clock=clock)
    entry = cache.put("f.csv", "\ufeffOrder Id\nOD1\n".encode("utf-8"))
    assert entry.text() == "Order Id\nOD1\n"
    assert entry.size == len("\ufeffOrder Id\nOD1\n".encode("utf-8"))


def test_discard(clock):
    cache = UploadCache(clock=clock)
    entry = cache.put("f.csv", b"x")
    cache.discard(entry.file_id)
    assert cache.get(entry.file_id) is None
