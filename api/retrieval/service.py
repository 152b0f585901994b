"""
Retrieval service (orchestration).

This is where we:
- classify the raw query and build the engine filter (classifier)
- drain every matching record through a scroll (export) context
- release the scroll context when done
"""

from __future__ import annotations

import asyncio
import logging

from core.engine import ElasticsearchClient, EngineError, Page
from core.records import TransactionRecord

from .classifier import build_filter

PAGE_SIZE = 1000
SCROLL_TIMEOUT = "2m"

logger = logging.getLogger(__name__)


class SearchExecutionFailure(RuntimeError):
    def __init__(self, query: str, cause: EngineError) -> None:
        self.query = query
        self.cause = cause
        super().__init__(f"Search failed for query {query!r}: {cause}")


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise asyncio.CancelledError("search cancelled")


class QueryRouter:
    def __init__(
        self,
        engine: ElasticsearchClient,
        *,
        page_size: int = PAGE_SIZE,
        scroll_timeout: str = SCROLL_TIMEOUT,
    ) -> None:
        self._engine = engine
        self._page_size = page_size
        self._scroll_timeout = scroll_timeout

    async def search(self, query: str, cancel: asyncio.Event | None = None) -> list[TransactionRecord]:
        """
        Return every record matching `query`, across all pages.

        A blank query returns [] without touching the engine. Any engine
        error fails the whole call with SearchExecutionFailure; partial
        results are never returned.
        """
        if not query or not query.strip():
            return []

        field, es_query = build_filter(query)
        logger.info("search_started field=%s query=%r", field.value, query)

        try:
            results, pages = await self._drain(es_query, cancel)
        except EngineError as e:
            logger.error("search_failed field=%s query=%r error=%s", field.value, query, e)
            raise SearchExecutionFailure(query, e) from e

        logger.info("search_finished field=%s hits=%s pages=%s", field.value, len(results), pages)
        return results

    async def _drain(
        self,
        es_query: dict,
        cancel: asyncio.Event | None,
    ) -> tuple[list[TransactionRecord], int]:
        _check_cancel(cancel)
        page: Page = await self._engine.search(
            es_query,
            page_size=self._page_size,
            scroll=self._scroll_timeout,
        )
        results = list(page.records)
        pages = 1
        # Released at the end; it belongs to the last page that had hits.
        token = page.token

        try:
            while page.records:
                if page.token is None:
                    raise EngineError("fetch_next_page", "engine returned hits without a scroll id.")
                token = page.token
                _check_cancel(cancel)
                page = await self._engine.fetch_next_page(token, scroll=self._scroll_timeout)
                results.extend(page.records)
                pages += 1
        except EngineError:
            await self._release_quietly(token)
            raise

        # The results are complete at this point; a failed release only leaks
        # the context until the scroll timeout.
        await self._release_quietly(token)
        return results, pages

    async def _release_quietly(self, token: str | None) -> None:
        if token is None:
            return None
        try:
            await self._engine.release_context(token)
        except EngineError as e:
            logger.warning("scroll_release_failed error=%s", e)
