from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import ValidationError

from .config_schema import AppConfig
from .errors import ConfigError


@dataclass(frozen=True)
class RuntimeSecrets:
    store_access_token: str


def _read_yaml_mapping(p: Path) -> dict:
    if not p.is_file():
        raise ConfigError(f"Config file not found: {p}")

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config file {p}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {p} must contain a mapping at the top level")
    return data


def load_config(path: str | Path) -> AppConfig:
    """
    Read the YAML config at `path` into an AppConfig.

    Any problem (missing file, bad YAML, failed validation) raises ConfigError.
    """
    p = Path(path)
    try:
        return AppConfig.model_validate(_read_yaml_mapping(p))
    except ValidationError as e:
        raise ConfigError(_format_pydantic_errors(e, p)) from e


def resolve_tenant(config: AppConfig) -> str:
    """The tenant key for the linked account: account.tenant, else the shop domain."""
    tenant = (config.account.tenant or "").strip() or config.store.shop_domain
    if not tenant:
        raise ConfigError("Either account.tenant or store.shop_domain must be set")
    return tenant


def resolve_runtime_secrets(
    config: AppConfig, *, environ: Mapping[str, str] | None = None
) -> RuntimeSecrets:
    """
    Validate that the store is configured and its access token is present in the environment.
    """
    env = os.environ if environ is None else environ

    if not config.store.shop_domain:
        raise ConfigError("store.shop_domain must be set to reach the store Admin API")

    token_env = config.store.access_token_env
    token = (env.get(token_env) or "").strip()
    if not token:
        raise ConfigError(f"Missing required environment variables: {token_env}")

    return RuntimeSecrets(store_access_token=token)


def config_sha256(config: AppConfig) -> str:
    """
    Compute a stable SHA-256 hash of the config values, recorded with each sync run.
    """
    payload = json.dumps(
        config.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def _format_pydantic_errors(err: ValidationError, path: Path) -> str:
    problems = [
        f"- {'.'.join(str(part) for part in item.get('loc', ())) or '<root>'}: {item.get('msg', 'invalid value')}"
        for item in err.errors()
    ]
    return "\n".join([f"Invalid configuration in {path}:", *problems])
