from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from ig_feed_sync.config import config_sha256, load_config, resolve_runtime_secrets, resolve_tenant
from ig_feed_sync.errors import ConfigError


_VALID_YAML = """\
instagram:
  graph_base_url: https://graph.instagram.com/
  page_limit: 10
  max_posts: 50

store:
  shop_domain: https://Example.myshopify.com/
  api_version: "2025-01"
  access_token_env: SHOP_TOKEN
  page_size: 100

media:
  video_extension: .mp4

account:
  provider: instagram
"""


class TestConfig(unittest.TestCase):
    def test_load_config_ok(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(_VALID_YAML, encoding="utf-8")

            cfg = load_config(path)

        self.assertEqual(cfg.instagram.graph_base_url, "https://graph.instagram.com")
        self.assertEqual(cfg.instagram.max_posts, 50)
        self.assertEqual(cfg.store.shop_domain, "example.myshopify.com")
        self.assertEqual(cfg.store.page_size, 100)
        self.assertEqual(cfg.store.post_type, "nn_instagram_post")
        self.assertEqual(cfg.store.list_type, "nn_instagram_list")
        self.assertEqual(cfg.media.video_extension, "mp4")

    def test_empty_file_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text("", encoding="utf-8")

            cfg = load_config(path)

        self.assertEqual(cfg.store.access_token_env, "SHOPIFY_ACCESS_TOKEN")
        self.assertEqual(cfg.account.provider, "instagram")
        self.assertIsNone(cfg.account.tenant)

    def test_missing_file_raises(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ConfigError):
                load_config(Path(td) / "nope.yaml")

    def test_unknown_key_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text("store:\n  shop: x\n", encoding="utf-8")

            with self.assertRaises(ConfigError) as ctx:
                load_config(path)

        self.assertIn("store.shop", str(ctx.exception))

    def test_invalid_values_are_reported(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(
                "store:\n  api_version: latest\n  page_size: 500\n",
                encoding="utf-8",
            )

            with self.assertRaises(ConfigError) as ctx:
                load_config(path)

        msg = str(ctx.exception)
        self.assertIn("store.api_version", msg)
        self.assertIn("store.page_size", msg)

    def test_top_level_must_be_mapping(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text("- a\n- b\n", encoding="utf-8")

            with self.assertRaises(ConfigError):
                load_config(path)

    def test_resolve_runtime_secrets(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(_VALID_YAML, encoding="utf-8")
            cfg = load_config(path)

        secrets = resolve_runtime_secrets(cfg, environ={"SHOP_TOKEN": " shpat_x "})
        self.assertEqual(secrets.store_access_token, "shpat_x")

        with self.assertRaises(ConfigError) as ctx:
            resolve_runtime_secrets(cfg, environ={})
        self.assertIn("SHOP_TOKEN", str(ctx.exception))

    def test_resolve_tenant_prefers_explicit_tenant(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(_VALID_YAML, encoding="utf-8")
            cfg = load_config(path)

            self.assertEqual(resolve_tenant(cfg), "example.myshopify.com")

            path.write_text("account:\n  tenant: shop-42\n", encoding="utf-8")
            explicit = load_config(path)
            self.assertEqual(resolve_tenant(explicit), "shop-42")

            path.write_text("{}", encoding="utf-8")
            with self.assertRaises(ConfigError):
                resolve_tenant(load_config(path))

    def test_config_hash_is_stable(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(_VALID_YAML, encoding="utf-8")

            a = config_sha256(load_config(path))
            b = config_sha256(load_config(path))

            path.write_text(_VALID_YAML.replace("page_limit: 10", "page_limit: 11"), encoding="utf-8")
            c = config_sha256(load_config(path))

        self.assertEqual(a, b)
        self.assertNotEqual(a, c)


if __name__ == "__main__":
    unittest.main()
