"""
Elasticsearch HTTP client.

This module owns the process-wide engine client. FastAPI opens it on startup
and closes it on shutdown (see `api/main.py`); feature services receive it
explicitly through `get_client()`.

Used endpoints:
- POST   /{index}/_bulk            (NDJSON: action line + document line)
- POST   /{index}/_search?scroll=  -> first page + _scroll_id
- POST   /_search/scroll           -> next page
- DELETE /_search/scroll           -> release the scroll context
- POST   /{index}/_doc             -> single document
- PUT    /{index}                  -> create index with mapping
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx
from pydantic import ValidationError

from . import settings
from .records import (
    FIELD_AMOUNT,
    FIELD_DATE,
    FIELD_MESSAGE,
    FIELD_TRANSACTION_ID,
    TransactionRecord,
)

ERROR_BODY_CHARS = 500
DIAGNOSTIC_MAX_ITEMS = 5


# Engine failures are explicit and separable from other runtime errors.
class EngineError(RuntimeError):
    def __init__(self, operation: str, message: str, status_code: int | None = None) -> None:
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{operation}: {message}")


@dataclass(frozen=True)
class BulkResponse:
    errors: bool
    diagnostic: str
    item_count: int
    took_ms: int | None = None


@dataclass(frozen=True)
class Page:
    records: list[TransactionRecord] = field(default_factory=list)
    token: str | None = None


def index_mapping() -> dict[str, Any]:
    """
    Every field is analysed text with an exact-match `keyword` sub-field.
    """
    text_with_keyword = {
        "type": "text",
        "fields": {"keyword": {"type": "keyword", "ignore_above": 256}},
    }
    return {
        "mappings": {
            "properties": {
                name: text_with_keyword
                for name in (FIELD_DATE, FIELD_TRANSACTION_ID, FIELD_AMOUNT, FIELD_MESSAGE)
            }
        }
    }


def _bulk_body(records: Iterable[TransactionRecord]) -> str:
    lines: list[str] = []
    for record in records:
        lines.append('{"index":{}}')
        lines.append(json.dumps(record.to_wire(), ensure_ascii=False))
    return "\n".join(lines) + "\n"


def _bulk_diagnostic(data: dict[str, Any]) -> str:
    """
    Summarise failing bulk items: "n of m items failed: [status] type: reason; ...".
    """
    items = data.get("items") or []
    failures: list[str] = []
    failed = 0
    for item in items:
        if not isinstance(item, dict):
            continue
        # Each item is keyed by its action ("index", "create", ...).
        for result in item.values():
            if not isinstance(result, dict) or "error" not in result:
                continue
            failed += 1
            if len(failures) >= DIAGNOSTIC_MAX_ITEMS:
                continue
            error = result.get("error")
            if isinstance(error, dict):
                detail = f"{error.get('type', 'error')}: {error.get('reason', '')}".strip()
            else:
                detail = str(error)
            failures.append(f"[{result.get('status', '?')}] {detail}")

    if not failed:
        return "engine reported errors without item details"
    summary = f"{failed} of {len(items)} items failed: " + "; ".join(failures)
    if failed > len(failures):
        summary += "; ..."
    return summary


class ElasticsearchClient:
    def __init__(
        self,
        *,
        base_url: str,
        index: str,
        timeout_s: float = 30.0,
        auth: tuple[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base_url = (base_url or "").strip().rstrip("/")
        if not base_url:
            raise EngineError("connect", "ELASTICSEARCH_URL is empty.")
        index = (index or "").strip()
        if not index:
            raise EngineError("connect", "ELASTICSEARCH_INDEX is empty.")

        self.index = index
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_s,
            auth=auth,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        ok_statuses: tuple[int, ...] = (200, 201),
        **kwargs: Any,
    ) -> dict[str, Any]:
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise EngineError(operation, f"request failed: {e}") from e

        if resp.status_code not in ok_statuses:
            # Avoid dumping huge bodies; include a small snippet.
            body = resp.text[:ERROR_BODY_CHARS]
            raise EngineError(operation, f"{resp.status_code} {body}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise EngineError(operation, "engine returned a non-JSON body.", resp.status_code) from e
        if not isinstance(data, dict):
            raise EngineError(operation, "engine returned an unexpected body.", resp.status_code)
        return data

    async def ping(self) -> bool:
        try:
            resp = await self._http.get("/")
        except httpx.HTTPError:
            return False
        return resp.status_code == 200

    async def ensure_index(self) -> bool:
        """
        Create the index with the transaction mapping if it does not exist.

        Returns True when the index was created by this call.
        """
        try:
            resp = await self._http.head(f"/{self.index}")
        except httpx.HTTPError as e:
            raise EngineError("ensure_index", f"request failed: {e}") from e
        if resp.status_code == 200:
            return False
        if resp.status_code != 404:
            raise EngineError("ensure_index", f"unexpected status {resp.status_code}", resp.status_code)

        await self._request("ensure_index", "PUT", f"/{self.index}", json=index_mapping())
        return True

    async def bulk_write(self, records: list[TransactionRecord]) -> BulkResponse:
        data = await self._request(
            "bulk_write",
            "POST",
            f"/{self.index}/_bulk",
            content=_bulk_body(records).encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
        )
        errors = bool(data.get("errors"))
        return BulkResponse(
            errors=errors,
            diagnostic=_bulk_diagnostic(data) if errors else "",
            item_count=len(data.get("items") or []),
            took_ms=data.get("took"),
        )

    async def index_record(self, record: TransactionRecord) -> str:
        data = await self._request(
            "index_record",
            "POST",
            f"/{self.index}/_doc",
            json=record.to_wire(),
        )
        doc_id = data.get("_id")
        if not isinstance(doc_id, str) or not doc_id:
            raise EngineError("index_record", "engine returned no document id.")
        return doc_id

    def _page(self, operation: str, data: dict[str, Any]) -> Page:
        hits = (data.get("hits") or {}).get("hits") or []
        try:
            records = [TransactionRecord.model_validate(hit.get("_source") or {}) for hit in hits]
        except (ValidationError, AttributeError) as e:
            raise EngineError(operation, "engine returned a document that is not a transaction.") from e

        token = data.get("_scroll_id")
        return Page(records=records, token=token if isinstance(token, str) and token else None)

    async def search(self, query: dict[str, Any], *, page_size: int, scroll: str) -> Page:
        data = await self._request(
            "search",
            "POST",
            f"/{self.index}/_search",
            params={"scroll": scroll},
            json={"size": page_size, "query": query},
        )
        return self._page("search", data)

    async def fetch_next_page(self, token: str, *, scroll: str) -> Page:
        data = await self._request(
            "fetch_next_page",
            "POST",
            "/_search/scroll",
            json={"scroll": scroll, "scroll_id": token},
        )
        return self._page("fetch_next_page", data)

    async def release_context(self, token: str) -> bool:
        # 404 means the context already expired; nothing is left to free.
        data = await self._request(
            "release_context",
            "DELETE",
            "/_search/scroll",
            ok_statuses=(200, 404),
            json={"scroll_id": [token]},
        )
        return bool(data.get("succeeded", False))


_client: ElasticsearchClient | None = None


def build_client(transport: httpx.AsyncBaseTransport | None = None) -> ElasticsearchClient:
    return ElasticsearchClient(
        base_url=settings.elasticsearch_url(),
        index=settings.elasticsearch_index(),
        timeout_s=settings.elasticsearch_timeout_s(),
        auth=settings.elasticsearch_credentials(),
        transport=transport,
    )


async def init_client() -> ElasticsearchClient:
    global _client
    if _client is None:
        _client = build_client()
    return _client


async def close_client() -> None:
    global _client
    if _client is None:
        return None
    await _client.aclose()
    _client = None


def client() -> ElasticsearchClient:
    if _client is None:
        raise RuntimeError("Engine client is not initialized. Call init_client() on startup.")
    return _client


def get_client() -> ElasticsearchClient:
    """
    FastAPI dependency; override it in tests with a substitute client.
    """
    return client()
