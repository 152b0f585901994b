"""
Tests for ElasticsearchClient wire format and error mapping.

Requests are captured with httpx.MockTransport; nothing leaves the process.
"""

import json

import httpx
import pytest

from conftest import make_records
from core.engine import ElasticsearchClient, EngineError, index_mapping


def _client(handler) -> ElasticsearchClient:
    return ElasticsearchClient(
        base_url="http://es.test:9200/",
        index="transactions",
        transport=httpx.MockTransport(handler),
    )


def _hit(record) -> dict:
    return {"_index": "transactions", "_id": "x", "_source": record.to_wire()}


class TestConstruction:
    def test_empty_url_rejected(self) -> None:
        with pytest.raises(EngineError, match="ELASTICSEARCH_URL"):
            ElasticsearchClient(base_url="  ", index="transactions")

    def test_empty_index_rejected(self) -> None:
        with pytest.raises(EngineError, match="ELASTICSEARCH_INDEX"):
            ElasticsearchClient(base_url="http://es.test:9200", index="")


class TestBulkWrite:
    @pytest.mark.asyncio
    async def test_ndjson_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"took": 3, "errors": False, "items": [{}, {}]})

        client = _client(handler)
        records = make_records(2)
        response = await client.bulk_write(records)
        await client.aclose()

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/transactions/_bulk"
        assert request.headers["content-type"] == "application/x-ndjson"
        lines = request.content.decode("utf-8").split("\n")
        assert lines[-1] == ""
        assert json.loads(lines[0]) == {"index": {}}
        assert json.loads(lines[1]) == records[0].to_wire()
        assert set(json.loads(lines[1])) == {"date", "trans_id", "amount", "message"}
        assert json.loads(lines[3]) == records[1].to_wire()

        assert response.errors is False
        assert response.diagnostic == ""
        assert response.item_count == 2
        assert response.took_ms == 3

    @pytest.mark.asyncio
    async def test_item_errors_become_diagnostic(self) -> None:
        body = {
            "took": 1,
            "errors": True,
            "items": [
                {"index": {"status": 201}},
                {
                    "index": {
                        "status": 400,
                        "error": {"type": "mapper_parsing_exception", "reason": "failed to parse field [amount]"},
                    }
                },
            ],
        }
        client = _client(lambda request: httpx.Response(200, json=body))

        response = await client.bulk_write(make_records(2))

        assert response.errors is True
        assert response.diagnostic == (
            "1 of 2 items failed: [400] mapper_parsing_exception: failed to parse field [amount]"
        )

    @pytest.mark.asyncio
    async def test_http_error_status_raises(self) -> None:
        client = _client(lambda request: httpx.Response(503, text="cluster unavailable"))

        with pytest.raises(EngineError) as exc_info:
            await client.bulk_write(make_records(1))

        assert exc_info.value.status_code == 503
        assert exc_info.value.operation == "bulk_write"
        assert "cluster unavailable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(EngineError, match="connection refused"):
            await _client(handler).bulk_write(make_records(1))


class TestScroll:
    @pytest.mark.asyncio
    async def test_search_sends_scroll_and_size(self) -> None:
        records = make_records(2)
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"_scroll_id": "abc", "hits": {"hits": [_hit(r) for r in records]}},
            )

        query = {"match_phrase": {"message": {"query": "rent"}}}
        page = await _client(handler).search(query, page_size=1000, scroll="2m")

        request = seen[0]
        assert request.url.path == "/transactions/_search"
        assert request.url.params["scroll"] == "2m"
        assert json.loads(request.content) == {"size": 1000, "query": query}
        assert page.records == records
        assert page.token == "abc"

    @pytest.mark.asyncio
    async def test_fetch_next_page(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"_scroll_id": "def", "hits": {"hits": []}})

        page = await _client(handler).fetch_next_page("abc", scroll="2m")

        assert seen[0].method == "POST"
        assert seen[0].url.path == "/_search/scroll"
        assert json.loads(seen[0].content) == {"scroll": "2m", "scroll_id": "abc"}
        assert page.records == []
        assert page.token == "def"

    @pytest.mark.asyncio
    async def test_release_context(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"succeeded": True, "num_freed": 1})

        assert await _client(handler).release_context("abc") is True
        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/_search/scroll"
        assert json.loads(seen[0].content) == {"scroll_id": ["abc"]}

    @pytest.mark.asyncio
    async def test_release_expired_context_is_not_an_error(self) -> None:
        client = _client(lambda request: httpx.Response(404, json={"succeeded": True, "num_freed": 0}))

        assert await client.release_context("gone") is True

    @pytest.mark.asyncio
    async def test_non_transaction_source_raises(self) -> None:
        body = {"_scroll_id": "abc", "hits": {"hits": [{"_source": {"date": 20240101}}]}}
        client = _client(lambda request: httpx.Response(200, json=body))

        with pytest.raises(EngineError, match="not a transaction"):
            await client.search({"match_all": {}}, page_size=10, scroll="2m")


class TestIndexManagement:
    @pytest.mark.asyncio
    async def test_ensure_index_creates_missing_index(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "HEAD":
                return httpx.Response(404)
            return httpx.Response(200, json={"acknowledged": True})

        assert await _client(handler).ensure_index() is True
        assert [r.method for r in seen] == ["HEAD", "PUT"]
        assert json.loads(seen[1].content) == index_mapping()

    @pytest.mark.asyncio
    async def test_ensure_index_keeps_existing_index(self) -> None:
        client = _client(lambda request: httpx.Response(200))

        assert await client.ensure_index() is False

    def test_mapping_has_keyword_subfields(self) -> None:
        properties = index_mapping()["mappings"]["properties"]
        assert set(properties) == {"date", "trans_id", "amount", "message"}
        for spec in properties.values():
            assert spec["fields"]["keyword"]["type"] == "keyword"

    @pytest.mark.asyncio
    async def test_index_record_returns_id(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"_id": "doc-1", "result": "created"})

        record = make_records(1)[0]
        assert await _client(handler).index_record(record) == "doc-1"
        assert seen[0].url.path == "/transactions/_doc"
        assert json.loads(seen[0].content) == record.to_wire()

    @pytest.mark.asyncio
    async def test_ping(self) -> None:
        assert await _client(lambda request: httpx.Response(200, json={})).ping() is True
        assert await _client(lambda request: httpx.Response(503)).ping() is False
