import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.errors import (
    CannotRemoveActive,
    CredentialNotFound,
    DuplicateCredential,
    IndexOutOfRange,
    PoolWouldBeEmpty,
)
from core.key_pool import KeyPool
from core.models import Quota, SwitchStrategy


def _pool(*secrets: str) -> KeyPool:
    pool = KeyPool()
    for secret in secrets:
        pool.add(secret)
    return pool


def test_add_assigns_ids_and_default_names() -> None:
    pool = _pool("fk-one", "fk-two")
    first, second = pool.credentials

    assert first.id != second.id
    assert first.display_name == "Key 1"
    assert second.display_name == "Key 2"
    assert first.quota is None
    assert pool.active is first


def test_add_rejects_duplicate_secret_regardless_of_name() -> None:
    pool = KeyPool()
    pool.add("fk-secret", "primary")

    with pytest.raises(DuplicateCredential):
        pool.add("fk-secret", "another name")
    with pytest.raises(DuplicateCredential):
        pool.add("  fk-secret  ")
    assert len(pool) == 1


def test_duplicate_check_is_case_sensitive() -> None:
    pool = _pool("fk-ABC")
    pool.add("fk-abc")
    assert len(pool) == 2


def test_remove_last_credential_fails() -> None:
    pool = _pool("fk-only")
    with pytest.raises(PoolWouldBeEmpty):
        pool.remove(pool.credentials[0].id)
    assert len(pool) == 1


def test_remove_unknown_credential() -> None:
    pool = _pool("fk-a", "fk-b")
    with pytest.raises(CredentialNotFound):
        pool.remove("missing")


def test_remove_active_selects_next_position() -> None:
    pool = _pool("fk-a", "fk-b", "fk-c")
    pool.set_active(1)
    b_id = pool.credentials[1].id

    pool.remove(b_id)

    assert pool.active_index == 1
    assert pool.active.secret == "fk-c"


def test_remove_active_at_end_clamps_index() -> None:
    pool = _pool("fk-a", "fk-b", "fk-c")
    pool.set_active(2)

    pool.remove(pool.credentials[2].id)

    assert pool.active_index == 1
    assert pool.active.secret == "fk-b"


@pytest.mark.parametrize("size", [2, 3, 5])
def test_remove_active_always_leaves_valid_index(size: int) -> None:
    for index in range(size):
        pool = _pool(*(f"fk-{i}" for i in range(size)))
        pool.set_active(index)
        pool.remove(pool.active.id)
        assert 0 <= pool.active_index < len(pool)


def test_remove_active_without_auto_rotate_is_rejected() -> None:
    pool = _pool("fk-a", "fk-b")
    with pytest.raises(CannotRemoveActive):
        pool.remove(pool.active.id, auto_rotate=False)


def test_remove_before_active_keeps_active_credential() -> None:
    pool = _pool("fk-a", "fk-b", "fk-c")
    pool.set_active(2)

    pool.remove(pool.credentials[0].id)

    assert pool.active.secret == "fk-c"
    assert pool.active_index == 1


def test_set_active_out_of_range() -> None:
    pool = _pool("fk-a", "fk-b")
    with pytest.raises(IndexOutOfRange):
        pool.set_active(2)
    with pytest.raises(IndexOutOfRange):
        pool.set_active(-1)


def test_set_active_records_last_used() -> None:
    pool = _pool("fk-a", "fk-b")
    credential = pool.set_active(1)
    assert credential.last_used is not None


@pytest.mark.parametrize("strategy", list(SwitchStrategy))
def test_set_strategy_round_trip(strategy: SwitchStrategy) -> None:
    pool = _pool("fk-a")
    pool.set_strategy(strategy)
    assert pool.strategy is strategy
    pool.set_strategy(strategy.value)
    assert pool.strategy is strategy


def test_set_strategy_rejects_unknown_value() -> None:
    pool = _pool("fk-a")
    with pytest.raises(ValueError):
        pool.set_strategy("use_random")


def test_add_batch_parses_names_and_reports_failures() -> None:
    pool = _pool("fk-existing")
    text = "\n".join(
        [
            "fk-plain",
            "Main key,fk-named",
            "Team B fk-spaced",
            "",
            "sk-wrongprefix",
            "fk-existing",
            "fk-plain",
        ]
    )

    result = pool.add_batch(text, prefix="fk-")

    assert result.success == 3
    assert result.failed == 3
    assert [c.display_name for c in result.added] == ["Key 2", "Main key", "Team B"]
    assert result.errors[0].startswith("line 5")
    assert result.errors[1].startswith("line 6")
    assert result.errors[2].startswith("line 7")


def test_record_quota_clears_invalid_flag() -> None:
    pool = _pool("fk-a")
    credential = pool.active
    pool.mark_invalid(credential.id)
    assert credential.invalid is True

    pool.record_quota(credential.id, Quota(total_allowance=100, total_used=10))

    assert credential.invalid is False
    assert credential.remaining == 90


@pytest.mark.parametrize(
    "allowance, used, remaining, ratio",
    [
        (1000, 250, 750, 0.25),
        (1000, 1500, 0, 1.5),
        (0, 0, 0, 0.0),
        (0, 10, 0, 0.0),
    ],
)
def test_quota_remaining_is_never_negative(allowance, used, remaining, ratio) -> None:
    quota = Quota(total_allowance=allowance, total_used=used)
    assert quota.remaining == remaining
    assert quota.used_ratio == pytest.approx(ratio)


def test_quota_exhaustion_threshold() -> None:
    assert Quota(total_allowance=1000, total_used=995).is_exhausted
    assert Quota(total_allowance=1000, total_used=1000).is_exhausted
    assert not Quota(total_allowance=1000, total_used=990).is_exhausted
