"""Configuration loader for the key pool service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv

from connectors.latency_probe import DEFAULT_TIMEOUT_MS
from connectors.quota_probe import DEFAULT_USAGE_URL
from core.models import EndpointStrategy, SwitchStrategy

DEFAULT_REFRESH_INTERVAL_SEC = 10.0


@dataclass
class PoolSettings:
    """Pool identity and switching behaviour."""

    id: str = "default"
    strategy: SwitchStrategy = SwitchStrategy.MANUAL
    endpoint_strategy: EndpointStrategy = EndpointStrategy.MANUAL
    key_prefix: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "PoolSettings":
        if not data:
            return cls()
        payload = dict(data)
        payload["strategy"] = SwitchStrategy(payload.get("strategy", SwitchStrategy.MANUAL.value))
        payload["endpoint_strategy"] = EndpointStrategy(
            payload.get("endpoint_strategy", EndpointStrategy.MANUAL.value)
        )
        return cls(**payload)


@dataclass
class ProbeSettings:
    """Quota and latency probe parameters."""

    usage_url: str = DEFAULT_USAGE_URL
    timeout_sec: float = DEFAULT_TIMEOUT_MS / 1000
    latency_path: str = ""
    refresh_interval_sec: float = DEFAULT_REFRESH_INTERVAL_SEC

    def __post_init__(self) -> None:
        if self.timeout_sec <= 0:
            raise ValueError("probe timeout must be positive")
        if self.refresh_interval_sec <= 0:
            raise ValueError("refresh interval must be positive")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "ProbeSettings":
        if not data:
            return cls()
        return cls(**data)


@dataclass
class KeyEntry:
    """A configured credential; the secret may come from the environment."""

    name: Optional[str] = None
    secret: Optional[str] = None
    secret_env: Optional[str] = None

    @property
    def resolved_secret(self) -> Optional[str]:
        if self.secret:
            return self.secret
        return os.getenv(self.secret_env) if self.secret_env else None


@dataclass
class LogNotifierConfig:
    enabled: bool = True


@dataclass
class WebhookNotifierConfig:
    """Webhook notifier configuration with environment indirection."""

    enabled: bool = False
    url_env: Optional[str] = None
    timeout_sec: float = 10.0

    @property
    def url(self) -> Optional[str]:
        return os.getenv(self.url_env) if self.url_env else None


@dataclass
class NotifiersConfig:
    """Notifier collection configuration."""

    log: LogNotifierConfig = field(default_factory=LogNotifierConfig)
    webhook: WebhookNotifierConfig = field(default_factory=WebhookNotifierConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "NotifiersConfig":
        if not data:
            return cls()
        log = LogNotifierConfig(**data.get("log", {}))
        webhook = WebhookNotifierConfig(**data.get("webhook", {}))
        return cls(log=log, webhook=webhook)


@dataclass
class StorageConfig:
    path: Optional[str] = None


@dataclass
class AppConfig:
    """Top level configuration model."""

    pool: PoolSettings = field(default_factory=PoolSettings)
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    endpoints: List[str] = field(default_factory=list)
    keys: List[KeyEntry] = field(default_factory=list)
    notifiers: NotifiersConfig = field(default_factory=NotifiersConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "AppConfig":
        keys = [KeyEntry(**entry) for entry in data.get("keys") or []]
        return cls(
            pool=PoolSettings.from_dict(data.get("pool")),
            probe=ProbeSettings.from_dict(data.get("probe")),
            endpoints=[str(url) for url in data.get("endpoints") or []],
            keys=keys,
            notifiers=NotifiersConfig.from_dict(data.get("notifiers")),
            storage=StorageConfig(**(data.get("storage") or {})),
        )


def load_config(
    config_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> AppConfig:
    """Load application configuration from YAML and environment variables.

    A missing config file yields the defaults so that a fresh checkout can
    start with keys added from the command line.
    """

    base_path = Path(__file__).resolve().parents[1]
    if config_path is None:
        config_path = base_path / "config.yaml"
    if env_path is None:
        default_env = base_path / ".env"
        if default_env.exists():
            env_path = default_env

    if env_path is not None:
        load_dotenv(dotenv_path=env_path, override=False)

    if not Path(config_path).exists():
        return AppConfig()

    with open(config_path, "r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping at the top level")
    return AppConfig.from_dict(data)


__all__ = [
    "AppConfig",
    "KeyEntry",
    "LogNotifierConfig",
    "NotifiersConfig",
    "PoolSettings",
    "ProbeSettings",
    "StorageConfig",
    "WebhookNotifierConfig",
    "load_config",
]
