import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config_loader import DEFAULT_REFRESH_INTERVAL_SEC, load_config
from core.models import EndpointStrategy, SwitchStrategy


@pytest.fixture()
def temp_files(tmp_path: Path):
    env_path = tmp_path / ".env"
    env_path.write_text(
        "\n".join(
            [
                "POOL_KEY_PRIMARY=fk-from-env",
                "POOL_WEBHOOK_URL=https://example.com/hook",
            ]
        ),
        encoding="utf-8",
    )

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
pool:
  id: "factory"
  strategy: "round_robin"
  endpoint_strategy: "use_fastest"
  key_prefix: "fk-"
probe:
  usage_url: "https://usage.example/api"
  timeout_sec: 3
  latency_path: "/v1/models"
  refresh_interval_sec: 30
endpoints:
  - "https://api-a.example"
  - "https://api-b.example/"
keys:
  - name: "Primary"
    secret_env: "POOL_KEY_PRIMARY"
  - name: "Backup"
    secret: "fk-inline"
notifiers:
  log:
    enabled: false
  webhook:
    enabled: true
    url_env: "POOL_WEBHOOK_URL"
    timeout_sec: 4
storage:
  path: "state/pool.json"
""",
        encoding="utf-8",
    )

    yield config_path, env_path

    for name in ("POOL_KEY_PRIMARY", "POOL_WEBHOOK_URL"):
        if name in os.environ:
            del os.environ[name]


def test_load_config_with_env(temp_files):
    config_path, env_path = temp_files
    config = load_config(config_path=config_path, env_path=env_path)

    assert config.pool.id == "factory"
    assert config.pool.strategy is SwitchStrategy.ROUND_ROBIN
    assert config.pool.endpoint_strategy is EndpointStrategy.USE_FASTEST
    assert config.pool.key_prefix == "fk-"

    assert config.probe.usage_url == "https://usage.example/api"
    assert config.probe.timeout_sec == 3
    assert config.probe.latency_path == "/v1/models"
    assert config.probe.refresh_interval_sec == 30

    assert config.endpoints == ["https://api-a.example", "https://api-b.example/"]
    assert [key.resolved_secret for key in config.keys] == ["fk-from-env", "fk-inline"]

    assert config.notifiers.log.enabled is False
    webhook = config.notifiers.webhook
    assert webhook.enabled is True
    assert webhook.url == "https://example.com/hook"
    assert webhook.timeout_sec == 4
    assert config.storage.path == "state/pool.json"


def test_defaults_when_sections_missing(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        """
endpoints: ["https://only.example"]
""",
        encoding="utf-8",
    )

    config = load_config(config_path=cfg_path, env_path=tmp_path / "missing.env")

    assert config.pool.id == "default"
    assert config.pool.strategy is SwitchStrategy.MANUAL
    assert config.pool.endpoint_strategy is EndpointStrategy.MANUAL
    assert config.probe.timeout_sec == 5.0
    assert config.probe.refresh_interval_sec == DEFAULT_REFRESH_INTERVAL_SEC
    assert config.keys == []
    assert config.notifiers.log.enabled is True
    assert config.notifiers.webhook.enabled is False
    assert config.storage.path is None


def test_missing_config_file_yields_defaults(tmp_path: Path):
    config = load_config(config_path=tmp_path / "absent.yaml", env_path=tmp_path / "missing.env")
    assert config.endpoints == []
    assert config.pool.strategy is SwitchStrategy.MANUAL


def test_unknown_strategy_is_rejected(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text('pool:\n  strategy: "use_random"\n', encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(config_path=cfg_path, env_path=tmp_path / "missing.env")


def test_non_positive_timeout_is_rejected(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("probe:\n  timeout_sec: 0\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(config_path=cfg_path, env_path=tmp_path / "missing.env")


def test_top_level_must_be_mapping(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(config_path=cfg_path, env_path=tmp_path / "missing.env")
