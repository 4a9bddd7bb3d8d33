from __future__ import annotations

import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Sequence

from .config import load_config, resolve_runtime_secrets, resolve_tenant
from .config_schema import AppConfig
from .errors import ConfigError, StorageError, StoreError
from .pipeline import run_sync
from .reconcile import purge_account
from .run_log import RunLogger
from .stats import collect_sync_stats
from .storage import SQLiteStateStore
from .store_client import ShopifyStoreClient, Store

_STATE_DB = "state.sqlite"
_RUN_LOG = "run.log"
_OFFLINE_STORE = "offline_store.json"


def _add_common_args(parser: argparse.ArgumentParser, *, offline: bool = True) -> None:
    parser.add_argument(
        "--config",
        required=True,
        help="Path to YAML config file.",
    )
    parser.add_argument(
        "--out",
        required=True,
        help="Output directory for state and logs.",
    )
    if offline:
        parser.add_argument(
            "--offline",
            action="store_true",
            help="Use network-free stand-ins; the store is kept in a JSON file under --out.",
        )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ig_feed_sync")

    subparsers = parser.add_subparsers(dest="command", required=True)

    link = subparsers.add_parser(
        "link",
        help="Record the Instagram access token for this tenant.",
    )
    _add_common_args(link, offline=False)
    link.add_argument("--token", required=True, help="Instagram access token.")
    link.add_argument(
        "--expires-in",
        type=int,
        default=None,
        help="Token lifetime in seconds from now.",
    )
    link.add_argument("--account-id", default=None, help="Remote Instagram account id.")
    link.add_argument("--username", default=None, help="Known Instagram username.")
    link.set_defaults(_handler=_cmd_link)

    sync = subparsers.add_parser(
        "sync",
        help="Mirror the linked Instagram feed into the store.",
    )
    _add_common_args(sync)
    sync.set_defaults(_handler=_cmd_sync)

    stats = subparsers.add_parser(
        "stats",
        help="Show what is currently synced for the linked account.",
    )
    _add_common_args(stats)
    stats.set_defaults(_handler=_cmd_stats)

    purge = subparsers.add_parser(
        "purge",
        help="Delete all synced records and files, keeping the account linked.",
    )
    _add_common_args(purge)
    purge.set_defaults(_handler=_cmd_purge, _forget=False)

    disconnect = subparsers.add_parser(
        "disconnect",
        help="Delete all synced records and files, then forget the linked account.",
    )
    _add_common_args(disconnect)
    disconnect.set_defaults(_handler=_cmd_purge, _forget=True)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _out_dir(args: argparse.Namespace) -> Path:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir


def _is_offline(args: argparse.Namespace) -> bool:
    return bool(getattr(args, "offline", False))


def _open_store(cfg: AppConfig, args: argparse.Namespace, out_dir: Path) -> Store:
    if _is_offline(args):
        from .offline import load_offline_store

        return load_offline_store(out_dir / _OFFLINE_STORE)

    secrets = resolve_runtime_secrets(cfg)
    return ShopifyStoreClient(cfg.store.shop_domain, secrets.store_access_token, store=cfg.store)


def _close_store(store: Store, args: argparse.Namespace, out_dir: Path) -> None:
    if _is_offline(args):
        from .offline import InMemoryStore, save_offline_store

        if isinstance(store, InMemoryStore):
            save_offline_store(store, out_dir / _OFFLINE_STORE)
    elif isinstance(store, ShopifyStoreClient):
        store.close()


def _print_fields(**fields: Any) -> None:
    for key, value in fields.items():
        print(f"{key}={'' if value is None else value}")


def _cmd_link(args: argparse.Namespace) -> int:
    out_dir = _out_dir(args)
    cfg = load_config(args.config)
    tenant = resolve_tenant(cfg)

    expires_at = None
    if args.expires_in is not None:
        expires_at = (datetime.now(timezone.utc) + timedelta(seconds=int(args.expires_in))).isoformat()

    with RunLogger.open(out_dir / _RUN_LOG) as log, SQLiteStateStore.open(out_dir / _STATE_DB) as state:
        account = state.upsert_account(
            tenant=tenant,
            provider=cfg.account.provider,
            access_token=args.token,
            expires_at=expires_at,
            remote_account_id=args.account_id,
            username=args.username,
        )
        log.info(
            "account_linked",
            tenant=tenant,
            provider=account.provider,
            username=account.username,
            expires_at=account.expires_at,
        )

    _print_fields(
        account_id=account.account_id,
        tenant=account.tenant,
        provider=account.provider,
        username=account.username,
        expires_at=account.expires_at,
    )
    return 0


def _cmd_sync(args: argparse.Namespace) -> int:
    out_dir = _out_dir(args)
    log_path = out_dir / _RUN_LOG

    with RunLogger.open(log_path) as log:
        log.info(
            "sync_command_started",
            config_path=str(args.config),
            out_dir=str(out_dir),
            offline=_is_offline(args),
        )

        try:
            cfg = load_config(args.config)

            with SQLiteStateStore.open(out_dir / _STATE_DB) as state:
                if _is_offline(args):
                    from .offline import OfflineGraphClient, OfflineHttpSession

                    store = _open_store(cfg, args, out_dir)
                    try:
                        result = run_sync(
                            cfg,
                            None,
                            state=state,
                            store=store,
                            graph_client=OfflineGraphClient(),
                            http=OfflineHttpSession(),
                            logger=log,
                        )
                    finally:
                        _close_store(store, args, out_dir)
                else:
                    secrets = resolve_runtime_secrets(cfg)
                    log.info(
                        "config_loaded",
                        config_path=str(args.config),
                        shop_domain=cfg.store.shop_domain,
                        access_token_env=cfg.store.access_token_env,
                    )
                    result = run_sync(cfg, secrets, state=state, logger=log)
        except Exception as e:
            log.exception("sync_command_failed", exc=e)
            raise

    _print_fields(
        status=result.status,
        message=result.message,
        run_id=result.run_id,
        username=result.username,
        remote_posts=result.remote_posts,
        synced_posts=result.synced_posts,
        failed_posts=",".join(result.failed_post_ids),
        list_record_id=result.list_record_id,
        run_log=log_path,
    )
    return 0 if result.success else 4


def _cmd_stats(args: argparse.Namespace) -> int:
    out_dir = _out_dir(args)
    cfg = load_config(args.config)
    tenant = resolve_tenant(cfg)

    with SQLiteStateStore.open(out_dir / _STATE_DB) as state:
        account = state.get_account(tenant, cfg.account.provider)
        store = _open_store(cfg, args, out_dir)
        try:
            stats = collect_sync_stats(store, state, account, store_cfg=cfg.store)
        finally:
            _close_store(store, args, out_dir)

    _print_fields(
        linked="yes" if account is not None else "no",
        username=stats.username,
        post_records=stats.post_records,
        media_files=stats.media_files,
        list_posts=stats.list_posts,
        last_synced_at=stats.last_synced_at,
    )
    return 0


def _cmd_purge(args: argparse.Namespace) -> int:
    out_dir = _out_dir(args)
    forget = bool(getattr(args, "_forget", False))

    with RunLogger.open(out_dir / _RUN_LOG) as log:
        try:
            cfg = load_config(args.config)
            tenant = resolve_tenant(cfg)
            log.bind(tenant=tenant)

            with SQLiteStateStore.open(out_dir / _STATE_DB) as state:
                account = state.get_account(tenant, cfg.account.provider)
                if account is None:
                    log.warning("purge_no_account", provider=cfg.account.provider)
                    _print_fields(status="no_account", message="No Instagram account connected")
                    return 4

                store = _open_store(cfg, args, out_dir)
                try:
                    report = purge_account(
                        store,
                        state,
                        account,
                        store_cfg=cfg.store,
                        forget=forget,
                        logger=log,
                    )
                finally:
                    _close_store(store, args, out_dir)
        except Exception as e:
            log.exception("purge_command_failed", exc=e, disconnect=forget)
            raise

    complete = report is None or report.complete
    _print_fields(
        status=("disconnected" if forget else "purged") if complete else "incomplete",
        username=report.username if report is not None else None,
        deleted_post_records=len(report.deleted_post_records) if report is not None else 0,
        deleted_list_record="yes" if report is not None and report.deleted_list_record else "no",
        deleted_files=len(report.deleted_files) if report is not None else 0,
        failures=len(report.failures) if report is not None else 0,
    )
    return 0 if complete else 4


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except (StorageError, StoreError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
