import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import run


def test_parse_args_defaults() -> None:
    args = run.parse_args([])
    assert args.once is False
    assert args.loop is False
    assert args.strategy is None


def test_parse_args_rejects_unknown_strategy() -> None:
    with pytest.raises(SystemExit):
        run.parse_args(["--strategy", "use_random"])


def test_import_keys_and_set_strategy_persist(tmp_path: Path) -> None:
    state_path = tmp_path / "pool_state.json"
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f'storage:\n  path: "{state_path.as_posix()}"\n', encoding="utf-8")
    keys_path = tmp_path / "keys.txt"
    keys_path.write_text("Main,fk-main-key\nfk-backup-key\n", encoding="utf-8")

    run.main(
        [
            "--config",
            str(config_path),
            "--env",
            str(tmp_path / "missing.env"),
            "--add-keys",
            str(keys_path),
            "--strategy",
            "round_robin",
        ]
    )

    saved = json.loads(state_path.read_text(encoding="utf-8"))
    assert saved["key_pool"]["strategy"] == "round_robin"
    assert [c["display_name"] for c in saved["key_pool"]["credentials"]] == ["Main", "Key 2"]


def test_main_requires_an_action(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        run.main(["--config", str(tmp_path / "absent.yaml"), "--env", str(tmp_path / "missing.env")])
