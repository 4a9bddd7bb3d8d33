from __future__ import annotations

import unittest
from typing import Any

from ig_feed_sync.config_schema import StoreConfig
from ig_feed_sync.errors import StoreError
from ig_feed_sync.store_client import ShopifyStoreClient


class _FakeResponse:
    def __init__(self, payload: Any, *, status_code: int = 200, text: str = "") -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self) -> Any:
        return self._payload


class _FakeSession:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, *, json: Any = None, headers: Any = None, timeout: Any = None) -> Any:
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return self._responses.pop(0)


class _ClosableSession(_FakeSession):
    def __init__(self, responses: list[Any]) -> None:
        super().__init__(responses)
        self.closed = 0

    def close(self) -> None:
        self.closed += 1


def _client(session: _FakeSession, **cfg: Any) -> ShopifyStoreClient:
    return ShopifyStoreClient(
        "shop.myshopify.com",
        "shpat_x",
        store=StoreConfig(shop_domain="shop.myshopify.com", **cfg),
        session=session,  # type: ignore[arg-type]
    )


class TestShopifyStoreClient(unittest.TestCase):
    def test_create_file_sends_alt_and_source(self) -> None:
        session = _FakeSession(
            [
                _FakeResponse(
                    {
                        "data": {
                            "fileCreate": {
                                "files": [{"id": "gid://shopify/MediaImage/1", "alt": "u-post_1", "fileStatus": "UPLOADED"}],
                                "userErrors": [],
                            }
                        }
                    }
                )
            ]
        )
        client = _client(session)

        result = client.create_file("https://cdn/1.jpg", alt="u-post_1", content_type="IMAGE")

        self.assertEqual([f.id for f in result.files], ["gid://shopify/MediaImage/1"])
        self.assertEqual(result.user_errors, ())

        call = session.calls[0]
        self.assertEqual(call["url"], "https://shop.myshopify.com/admin/api/2025-01/graphql.json")
        self.assertEqual(call["headers"]["X-Shopify-Access-Token"], "shpat_x")
        self.assertEqual(
            call["json"]["variables"]["files"],
            [{"alt": "u-post_1", "contentType": "IMAGE", "originalSource": "https://cdn/1.jpg"}],
        )

    def test_staged_upload_parses_target(self) -> None:
        session = _FakeSession(
            [
                _FakeResponse(
                    {
                        "data": {
                            "stagedUploadsCreate": {
                                "stagedTargets": [
                                    {
                                        "url": "https://upload",
                                        "resourceUrl": "https://resource",
                                        "parameters": [{"name": "key", "value": "k"}, {"name": "policy", "value": "p"}],
                                    }
                                ],
                                "userErrors": [],
                            }
                        }
                    }
                )
            ]
        )
        client = _client(session)

        staged = client.create_staged_upload(filename="u-post_1.mp4", mime_type="video/mp4", file_size=42)

        assert staged.target is not None
        self.assertEqual(staged.target.resource_url, "https://resource")
        self.assertEqual(staged.target.parameters, (("key", "k"), ("policy", "p")))
        self.assertEqual(
            session.calls[0]["json"]["variables"]["input"][0],
            {
                "resource": "VIDEO",
                "filename": "u-post_1.mp4",
                "mimeType": "video/mp4",
                "fileSize": "42",
                "httpMethod": "POST",
            },
        )

    def test_upsert_returns_user_errors_as_data(self) -> None:
        session = _FakeSession(
            [
                _FakeResponse(
                    {
                        "data": {
                            "metaobjectUpsert": {
                                "metaobject": None,
                                "userErrors": [{"field": ["fields", "0"], "message": "Value is invalid"}],
                            }
                        }
                    }
                )
            ]
        )
        client = _client(session)

        result = client.upsert_metaobject("nn_instagram_post", "u-post-1", {"caption": "x"})

        self.assertIsNone(result.record)
        self.assertEqual(str(result.user_errors[0]), "fields.0: Value is invalid")
        self.assertEqual(
            session.calls[0]["json"]["variables"]["handle"],
            {"type": "nn_instagram_post", "handle": "u-post-1"},
        )

    def test_metaobject_by_handle(self) -> None:
        session = _FakeSession(
            [
                _FakeResponse(
                    {
                        "data": {
                            "metaobjectByHandle": {
                                "id": "gid://shopify/Metaobject/9",
                                "handle": "u-post-1",
                                "fields": [{"key": "images", "value": "[\"a\"]"}, {"key": "caption", "value": None}],
                            }
                        }
                    }
                ),
                _FakeResponse({"data": {"metaobjectByHandle": None}}),
            ]
        )
        client = _client(session)

        record = client.metaobject_by_handle("nn_instagram_post", "u-post-1")
        assert record is not None
        self.assertEqual(record.fields["images"], "[\"a\"]")
        self.assertIsNone(record.fields["caption"])

        self.assertIsNone(client.metaobject_by_handle("nn_instagram_post", "u-post-2"))

    def test_iter_metaobjects_paginates(self) -> None:
        session = _FakeSession(
            [
                _FakeResponse(
                    {
                        "data": {
                            "metaobjects": {
                                "edges": [{"node": {"id": "1", "handle": "a"}}],
                                "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
                            }
                        }
                    }
                ),
                _FakeResponse(
                    {
                        "data": {
                            "metaobjects": {
                                "edges": [{"node": {"id": "2", "handle": "b"}}],
                                "pageInfo": {"hasNextPage": False, "endCursor": "c2"},
                            }
                        }
                    }
                ),
            ]
        )
        client = _client(session, page_size=1)

        handles = [r.handle for r in client.iter_metaobjects("nn_instagram_post", page_size=1)]

        self.assertEqual(handles, ["a", "b"])
        self.assertIsNone(session.calls[0]["json"]["variables"]["after"])
        self.assertEqual(session.calls[1]["json"]["variables"]["after"], "c1")

    def test_iter_files_paginates(self) -> None:
        session = _FakeSession(
            [
                _FakeResponse(
                    {
                        "data": {
                            "files": {
                                "edges": [
                                    {"node": {"id": "gid://shopify/MediaImage/1", "alt": "u-post_1"}},
                                    {"node": {"id": "gid://shopify/Video/2", "alt": "u-post_2"}},
                                ],
                                "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
                            }
                        }
                    }
                ),
                _FakeResponse(
                    {
                        "data": {
                            "files": {
                                "edges": [{"node": {"id": "gid://shopify/MediaImage/3", "alt": None}}],
                                "pageInfo": {"hasNextPage": False, "endCursor": "c2"},
                            }
                        }
                    }
                ),
            ]
        )
        client = _client(session)

        files = list(client.iter_files("alt:u-post_*", page_size=2))

        self.assertEqual(
            [f.id for f in files],
            ["gid://shopify/MediaImage/1", "gid://shopify/Video/2", "gid://shopify/MediaImage/3"],
        )
        self.assertIsNone(files[2].alt)
        self.assertEqual(len(session.calls), 2)
        first, second = (c["json"]["variables"] for c in session.calls)
        self.assertEqual(first["query"], "alt:u-post_*")
        self.assertEqual(first["first"], 2)
        self.assertIsNone(first["after"])
        self.assertEqual(second["query"], "alt:u-post_*")
        self.assertEqual(second["after"], "c1")

    def test_close_leaves_injected_session_open(self) -> None:
        session = _ClosableSession([])
        with _client(session):
            pass
        self.assertEqual(session.closed, 0)

        client = ShopifyStoreClient("shop.myshopify.com", "shpat_x")
        owned = _ClosableSession([])
        client._session = owned  # type: ignore[assignment]
        client.close()
        self.assertEqual(owned.closed, 1)

    def test_delete_files_skips_empty_batch(self) -> None:
        session = _FakeSession([])
        client = _client(session)

        result = client.delete_files([])

        self.assertEqual(result.deleted_ids, ())
        self.assertEqual(session.calls, [])

    def test_failures_raise_store_error(self) -> None:
        session = _FakeSession(
            [
                _FakeResponse({}, status_code=401, text="Unauthorized"),
                _FakeResponse({"errors": [{"message": "Throttled"}]}),
            ]
        )
        client = _client(session)

        with self.assertRaises(StoreError) as ctx:
            client.graphql("{ shop { name } }")
        self.assertIn("401", str(ctx.exception))

        with self.assertRaises(StoreError) as ctx:
            client.graphql("{ shop { name } }")
        self.assertIn("Throttled", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
