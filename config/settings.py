"""
Configuration loader for the broadcast dispatch service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class QueueConfig:
    backoff_base_ms: int = 1000         # first retry delay, doubled per attempt
    backoff_cap_ms: int = 30000
    poll_interval_ms: int = 50          # idle re-check interval for the worker
    default_max_attempts: int = 5
    max_depth: int = 0                  # 0 = unbounded ready queue


@dataclass
class BroadcastConfig:
    chunk_size: int = 25
    pause_ms: int = 500                 # producer-side pause between chunk enqueues
    rate_per_second: float = 25.0       # consumer-side send ceiling, <= 0 is unlimited
    send_max_attempts: int = 3
    send_backoff_ms: int = 500


@dataclass
class TelegramConfig:
    bot_token: str = ""
    api_base: str = "https://api.telegram.org"
    timeout_s: float = 30.0
    parse_mode: str = ""


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./broadcasts.db"     # postgresql:// | mysql:// | sqlite://
    job_store_backend: str = "none"            # "none" | "memory" | "file" | "sql"
    store_file_dir: str = "./data"             # directory for file backend
    store_flush_interval_s: float = 0.0        # file backend: >0 batches writes, 0 writes through


@dataclass
class Settings:
    app_name: str = "BroadcastDispatch"
    debug: bool = False
    queue: QueueConfig = field(default_factory=QueueConfig)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    flags: dict[str, bool] = field(default_factory=dict)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "BROADCAST_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "queue" in raw:
            q = raw["queue"] or {}
            defaults = QueueConfig()
            settings.queue = QueueConfig(
                backoff_base_ms=int(q.get("backoff_base_ms", defaults.backoff_base_ms)),
                backoff_cap_ms=int(q.get("backoff_cap_ms", defaults.backoff_cap_ms)),
                poll_interval_ms=int(q.get("poll_interval_ms", defaults.poll_interval_ms)),
                default_max_attempts=int(q.get("default_max_attempts", defaults.default_max_attempts)),
                max_depth=int(q.get("max_depth", defaults.max_depth)),
            )

        if "broadcast" in raw:
            b = raw["broadcast"] or {}
            defaults = BroadcastConfig()
            settings.broadcast = BroadcastConfig(
                chunk_size=int(b.get("chunk_size", defaults.chunk_size)),
                pause_ms=int(b.get("pause_ms", defaults.pause_ms)),
                rate_per_second=float(b.get("rate_per_second", defaults.rate_per_second)),
                send_max_attempts=int(b.get("send_max_attempts", defaults.send_max_attempts)),
                send_backoff_ms=int(b.get("send_backoff_ms", defaults.send_backoff_ms)),
            )

        if "telegram" in raw:
            tg = raw["telegram"] or {}
            settings.telegram = TelegramConfig(
                bot_token=tg.get("bot_token", ""),
                api_base=tg.get("api_base", "https://api.telegram.org"),
                timeout_s=float(tg.get("timeout_s", 30.0)),
                parse_mode=tg.get("parse_mode", "") or "",
            )

        if "database" in raw:
            db = raw["database"] or {}
            settings.database = DatabaseConfig(
                url=db.get("url", settings.database.url),
                job_store_backend=db.get("job_store_backend", settings.database.job_store_backend),
                store_file_dir=db.get("store_file_dir", settings.database.store_file_dir),
                store_flush_interval_s=float(db.get("store_flush_interval_s",
                                                    settings.database.store_flush_interval_s)),
            )

        settings.flags = {k: bool(v) for k, v in (raw.get("flags") or {}).items()}

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
