"""
Shared fixtures for the API tests.
"""

from unittest.mock import AsyncMock

import pytest

from core.engine import BulkResponse, ElasticsearchClient, Page
from core.records import TransactionRecord


def make_record(i: int) -> TransactionRecord:
    return TransactionRecord(
        date="01/02/2024",
        trans_id=f"{1000 + i % 9000}.{i:04d}",
        amount=f"{i}.000",
        message=f"transfer number {i}",
    )


def make_records(n: int, start: int = 0) -> list[TransactionRecord]:
    return [make_record(i) for i in range(start, start + n)]


@pytest.fixture
def mock_engine() -> AsyncMock:
    """
    Engine double: every bulk write succeeds, every search is empty.

    Returns:
        AsyncMock: Mock with the ElasticsearchClient interface
    """
    engine = AsyncMock(spec=ElasticsearchClient)
    engine.bulk_write.return_value = BulkResponse(errors=False, diagnostic="", item_count=0)
    engine.search.return_value = Page(records=[], token="scroll-0")
    engine.fetch_next_page.return_value = Page(records=[], token="scroll-0")
    engine.release_context.return_value = True
    return engine
