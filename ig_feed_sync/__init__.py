from __future__ import annotations

from .config import config_sha256, load_config, resolve_runtime_secrets, resolve_tenant
from .config_schema import AppConfig
from .errors import AuthExpired, ConfigError, RemoteAPIError, StorageError, StoreError
from .pipeline import SyncResult, run_sync

__all__ = [
    "AppConfig",
    "AuthExpired",
    "ConfigError",
    "RemoteAPIError",
    "StorageError",
    "StoreError",
    "SyncResult",
    "config_sha256",
    "load_config",
    "resolve_runtime_secrets",
    "resolve_tenant",
    "run_sync",
]
