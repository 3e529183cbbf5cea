"""Configuration helpers for the live bidding server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

_DEFAULT_SERVER_CONFIG = Path(__file__).resolve().parent / "server.yaml"


@dataclass(frozen=True)
class BackendConfig:
    backend: str
    options: Mapping[str, Any]


@dataclass(frozen=True)
class CacheConfig:
    backend: str
    options: Mapping[str, Any]
    leading_bid_ttl_seconds: int
    write_timeout_seconds: float


@dataclass(frozen=True)
class RateLimitConfig:
    max_attempts: int
    window_seconds: float


@dataclass(frozen=True)
class BiddingConfig:
    commit_timeout_seconds: float
    rate_limit: RateLimitConfig


@dataclass(frozen=True)
class LifecycleConfig:
    enabled: bool
    sweep_interval_seconds: float


@dataclass(frozen=True)
class RealtimeConfig:
    send_queue_size: int
    notifications_page_size: int


@dataclass(frozen=True)
class AuthConfig:
    backend: str
    public_key: str
    options: Mapping[str, Any]


@dataclass(frozen=True)
class ServerConfig:
    listen: Mapping[str, Any]
    log_level: str
    storage: BackendConfig
    cache: CacheConfig
    bidding: BiddingConfig
    lifecycle: LifecycleConfig
    realtime: RealtimeConfig
    auth: AuthConfig
    handoff: BackendConfig


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def _backend(section: Mapping[str, Any], default: str) -> BackendConfig:
    return BackendConfig(
        backend=str(section.get("backend", default)),
        options=dict(section.get("options") or {}),
    )


def _public_key(auth: Mapping[str, Any], base_dir: Path) -> str:
    inline = auth.get("public_key")
    if inline:
        return str(inline)
    key_path = auth.get("public_key_path")
    if not key_path:
        return ""
    path = Path(key_path)
    if not path.is_absolute():
        path = base_dir / path
    return path.read_text()


def load_server_config(path: Path) -> ServerConfig:
    data = _load_yaml(path)
    cache = data.get("cache", {})
    bidding = data.get("bidding", {})
    rate_limit = bidding.get("rate_limit", {})
    lifecycle = data.get("lifecycle", {})
    realtime = data.get("realtime", {})
    auth = data.get("auth", {})
    return ServerConfig(
        listen=data.get("listen", {}),
        log_level=str(data.get("log_level", "INFO")).upper(),
        storage=_backend(data.get("storage", {}), "in_memory"),
        cache=CacheConfig(
            backend=str(cache.get("backend", "in_memory")),
            options=dict(cache.get("options") or {}),
            leading_bid_ttl_seconds=int(cache.get("leading_bid_ttl_seconds", 3600)),
            write_timeout_seconds=float(cache.get("write_timeout_seconds", 0.25)),
        ),
        bidding=BiddingConfig(
            commit_timeout_seconds=float(bidding.get("commit_timeout_seconds", 5.0)),
            rate_limit=RateLimitConfig(
                max_attempts=int(rate_limit.get("max_attempts", 10)),
                window_seconds=float(rate_limit.get("window_seconds", 60)),
            ),
        ),
        lifecycle=LifecycleConfig(
            enabled=bool(lifecycle.get("enabled", True)),
            sweep_interval_seconds=float(lifecycle.get("sweep_interval_seconds", 5)),
        ),
        realtime=RealtimeConfig(
            send_queue_size=int(realtime.get("send_queue_size", 100)),
            notifications_page_size=int(realtime.get("notifications_page_size", 10)),
        ),
        auth=AuthConfig(
            backend=str(auth.get("backend", "local")),
            public_key=_public_key(auth, path.parent),
            options=dict(auth.get("options") or {}),
        ),
        handoff=_backend(data.get("handoff", {}), "log"),
    )


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    path = Path(os.getenv("LIVEBID_CONFIG_PATH", _DEFAULT_SERVER_CONFIG))
    return load_server_config(path)
