from __future__ import annotations

import unittest

from ig_feed_sync.config_schema import AppConfig, StoreConfig
from ig_feed_sync.offline import InMemoryStore, OfflineGraphClient, OfflineHttpSession
from ig_feed_sync.pipeline import run_sync
from ig_feed_sync.stats import collect_sync_stats
from ig_feed_sync.storage import SQLiteStateStore

_CFG = AppConfig(store=StoreConfig(shop_domain="shop.myshopify.com"))


class TestCollectSyncStats(unittest.TestCase):
    def test_counts_after_offline_sync(self) -> None:
        store = InMemoryStore()
        with SQLiteStateStore.open(":memory:") as state:
            state.upsert_account(tenant="shop.myshopify.com", provider="instagram", access_token="tok")
            result = run_sync(
                _CFG,
                None,
                state=state,
                store=store,
                graph_client=OfflineGraphClient(),
                http=OfflineHttpSession(),
            )
            self.assertTrue(result.success)

            account = state.get_account("shop.myshopify.com", "instagram")
            stats = collect_sync_stats(store, state, account, store_cfg=_CFG.store)

        self.assertEqual(stats.username, "offline_user")
        self.assertEqual(stats.post_records, 3)
        self.assertEqual(stats.media_files, 4)
        self.assertEqual(stats.list_posts, 3)
        self.assertIsNotNone(stats.last_synced_at)

    def test_no_account(self) -> None:
        with SQLiteStateStore.open(":memory:") as state:
            stats = collect_sync_stats(InMemoryStore(), state, None, store_cfg=_CFG.store)

        self.assertIsNone(stats.username)
        self.assertEqual(stats.post_records, 0)
        self.assertIsNone(stats.last_synced_at)


if __name__ == "__main__":
    unittest.main()
