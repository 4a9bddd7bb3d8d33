from __future__ import annotations

import unittest
from typing import Any, Iterator

from ig_feed_sync.config_schema import StoreConfig
from ig_feed_sync.errors import StoreError
from ig_feed_sync.offline import InMemoryStore
from ig_feed_sync.reconcile import (
    IDENTITY_FIRST_LINK,
    IDENTITY_SWITCHED,
    IDENTITY_UNCHANGED,
    AccountReconciler,
    identity_transition,
    purge_account,
    teardown_username,
)
from ig_feed_sync.storage import SQLiteStateStore
from ig_feed_sync.store_client import StoredFile

_CFG = StoreConfig(shop_domain="shop.myshopify.com", page_size=2)


def _seed(store: InMemoryStore, username: str, *, posts: int = 2) -> None:
    for i in range(posts):
        store.upsert_metaobject(_CFG.post_type, f"{username}-post-{i}", {"images": "[]"})
        store.create_file(f"https://cdn/{username}/{i}.jpg", alt=f"{username}-post_{i}", content_type="IMAGE")
    store.upsert_metaobject(_CFG.list_type, f"{username}-feed-list", {"posts": "[]"})


class _BrokenFileSearch(InMemoryStore):
    def iter_files(self, query: str, *, page_size: int) -> Iterator[StoredFile]:
        raise StoreError("files search failed")


class TestIdentityTransition(unittest.TestCase):
    def test_transitions(self) -> None:
        self.assertEqual(identity_transition(None, "a"), IDENTITY_FIRST_LINK)
        self.assertEqual(identity_transition("  ", "a"), IDENTITY_FIRST_LINK)
        self.assertEqual(identity_transition("a", "a"), IDENTITY_UNCHANGED)
        self.assertEqual(identity_transition("a", "b"), IDENTITY_SWITCHED)


class TestTeardown(unittest.TestCase):
    def test_removes_only_matching_username(self) -> None:
        store = InMemoryStore()
        _seed(store, "old", posts=3)
        _seed(store, "other", posts=1)
        # Shares a substring with the old alt prefix but must survive.
        store.create_file("https://cdn/x.jpg", alt="bold-post_9", content_type="IMAGE")

        report = teardown_username(store, "old", store_cfg=_CFG)

        self.assertTrue(report.complete)
        self.assertEqual(len(report.deleted_post_records), 3)
        self.assertIsNotNone(report.deleted_list_record)
        self.assertEqual(len(report.deleted_files), 3)

        remaining_handles = sorted(h for (_, h) in store.records)
        self.assertEqual(remaining_handles, ["other-feed-list", "other-post-0"])
        remaining_alts = sorted(f.alt or "" for f in store.files.values())
        self.assertEqual(remaining_alts, ["bold-post_9", "other-post_0"])

        # Batches honour page_size.
        self.assertEqual([len(b) for b in store.calls_named("delete_files")], [2, 1])

    def test_rerun_is_a_noop(self) -> None:
        store = InMemoryStore()
        _seed(store, "old")
        teardown_username(store, "old", store_cfg=_CFG)

        report = teardown_username(store, "old", store_cfg=_CFG)

        self.assertTrue(report.complete)
        self.assertEqual(report.deleted_post_records, [])
        self.assertIsNone(report.deleted_list_record)
        self.assertEqual(report.deleted_files, [])

    def test_failed_step_does_not_stop_the_rest(self) -> None:
        store = _BrokenFileSearch()
        _seed(store, "old")

        report = teardown_username(store, "old", store_cfg=_CFG)

        self.assertFalse(report.complete)
        self.assertEqual(len(report.deleted_post_records), 2)
        self.assertIsNotNone(report.deleted_list_record)
        self.assertEqual(len(report.failures), 1)


class TestAccountReconciler(unittest.TestCase):
    def _state_with(self, username: str | None) -> tuple[SQLiteStateStore, Any]:
        state = SQLiteStateStore.open(":memory:")
        account = state.upsert_account(
            tenant="t", provider="instagram", access_token="tok", username=username
        )
        return state, account

    def test_switch_tears_down_and_persists_new_username(self) -> None:
        store = InMemoryStore()
        _seed(store, "old")
        state, account = self._state_with("old")

        with state:
            reconciler = AccountReconciler(store, state, store_cfg=_CFG)
            report = reconciler.reconcile(account, "new")

            assert report is not None
            self.assertEqual(report.username, "old")
            self.assertEqual(store.records, {})
            self.assertEqual(store.files, {})

            fetched = state.get_account("t", "instagram")
            assert fetched is not None
            self.assertEqual(fetched.username, "new")

    def test_unchanged_and_first_link(self) -> None:
        store = InMemoryStore()
        _seed(store, "same")
        state, account = self._state_with("same")

        with state:
            reconciler = AccountReconciler(store, state, store_cfg=_CFG)
            self.assertIsNone(reconciler.reconcile(account, "same"))
            self.assertFalse(reconciler.record_first_link(account, "same"))
            self.assertEqual(len(store.records), 3)

        state, account = self._state_with(None)
        with state:
            reconciler = AccountReconciler(store, state, store_cfg=_CFG)
            self.assertIsNone(reconciler.reconcile(account, "fresh"))
            self.assertEqual(store.calls_named("delete_metaobject"), [])
            self.assertTrue(reconciler.record_first_link(account, "fresh"))

            fetched = state.get_account("t", "instagram")
            assert fetched is not None
            self.assertEqual(fetched.username, "fresh")


class TestPurgeAccount(unittest.TestCase):
    def test_purge_keeps_account_and_disconnect_forgets_it(self) -> None:
        store = InMemoryStore()
        _seed(store, "alice")

        with SQLiteStateStore.open(":memory:") as state:
            account = state.upsert_account(
                tenant="t", provider="instagram", access_token="tok", username="alice"
            )

            report = purge_account(store, state, account, store_cfg=_CFG)
            assert report is not None
            self.assertTrue(report.complete)
            self.assertEqual(store.records, {})
            self.assertIsNotNone(state.get_account("t", "instagram"))

            self.assertIsNotNone(purge_account(store, state, account, store_cfg=_CFG, forget=True))
            self.assertIsNone(state.get_account("t", "instagram"))

    def test_disconnect_keeps_account_when_teardown_is_incomplete(self) -> None:
        store = _BrokenFileSearch()
        _seed(store, "alice", posts=1)

        with SQLiteStateStore.open(":memory:") as state:
            account = state.upsert_account(
                tenant="t", provider="instagram", access_token="tok", username="alice"
            )

            report = purge_account(store, state, account, store_cfg=_CFG, forget=True)

            assert report is not None
            self.assertFalse(report.complete)
            self.assertEqual(len(store.files), 1)

            kept = state.get_account("t", "instagram")
            assert kept is not None
            self.assertEqual(kept.username, "alice")

    def test_account_without_username_skips_teardown(self) -> None:
        store = InMemoryStore()
        with SQLiteStateStore.open(":memory:") as state:
            account = state.upsert_account(tenant="t", provider="instagram", access_token="tok")

            self.assertIsNone(purge_account(store, state, account, store_cfg=_CFG, forget=True))
            self.assertEqual(store.calls, [])
            self.assertIsNone(state.get_account("t", "instagram"))


if __name__ == "__main__":
    unittest.main()
