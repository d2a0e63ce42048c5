import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.endpoint_set import EndpointSet
from core.key_pool import KeyPool
from core.models import Quota, SwitchStrategy
from storage.pool_store import JsonPoolStore


def test_load_returns_none_when_nothing_saved(tmp_path: Path) -> None:
    store = JsonPoolStore(tmp_path / "pool_state.json")
    assert store.load() is None


def test_save_and_restore_pool(tmp_path: Path) -> None:
    store = JsonPoolStore(tmp_path / "nested" / "pool_state.json")
    pool = KeyPool(strategy=SwitchStrategy.USE_LOWEST)
    first = pool.add("fk-first", "First")
    pool.add("fk-second", "Second")
    pool.record_quota(first.id, Quota(total_allowance=1000, total_used=400, end_date="2026-12-01"))
    pool.mark_invalid(pool.credentials[1].id)
    pool.set_active(1)
    endpoints = EndpointSet()
    endpoints.add("https://api.example")
    endpoints.mark_online("https://api.example", 120.0)
    endpoints.set_selected("https://api.example")

    store.save({"key_pool": pool.to_dict(), "endpoints": endpoints.to_dict()})
    snapshot = store.load()

    restored = KeyPool.from_dict(snapshot["key_pool"])
    assert [c.id for c in restored.credentials] == [c.id for c in pool.credentials]
    assert restored.active_index == 1
    assert restored.strategy is SwitchStrategy.USE_LOWEST
    assert restored.credentials[0].remaining == 600
    assert restored.credentials[0].quota.end_date == "2026-12-01"
    assert restored.credentials[1].invalid is True

    restored_endpoints = EndpointSet.from_dict(snapshot["endpoints"])
    assert restored_endpoints.selected == "https://api.example"
    assert restored_endpoints.get("https://api.example").latency_ms == 120.0
    assert not (tmp_path / "nested" / "pool_state.json.tmp").exists()


def test_load_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "pool_state.json"
    path.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
    with pytest.raises(ValueError):
        JsonPoolStore(path).load()
