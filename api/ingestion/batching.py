"""
Batched bulk ingestion.

Records are pulled one at a time from the upstream source, grouped into
batches of `BATCH_SIZE`, and each batch is sent to the engine as a single
bulk request. Batches go out strictly in order and one at a time, so the
source is never pulled faster than the engine accepts writes.

A failed batch is logged and reported but never stops the stream; there is
no retry and no rollback of earlier batches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterable, Iterable

from core.engine import ElasticsearchClient, EngineError
from core.records import TransactionRecord

BATCH_SIZE = 1000

logger = logging.getLogger(__name__)


class IngestionBatchFailure(Exception):
    """
    One bulk request reported errors. Non-fatal: logged and collected.
    """

    def __init__(self, number: int, count: int, diagnostic: str) -> None:
        self.number = number
        self.count = count
        self.diagnostic = diagnostic
        super().__init__(f"batch {number} ({count} records) failed: {diagnostic}")


@dataclass(frozen=True)
class BatchResult:
    number: int
    count: int
    ok: bool
    diagnostic: str = ""


@dataclass
class IngestReport:
    records: int = 0
    batches: list[BatchResult] = field(default_factory=list)

    @property
    def failed_batches(self) -> int:
        return sum(1 for b in self.batches if not b.ok)

    @property
    def failures(self) -> list[IngestionBatchFailure]:
        return [
            IngestionBatchFailure(b.number, b.count, b.diagnostic)
            for b in self.batches
            if not b.ok
        ]


async def _aiter(
    source: AsyncIterable[TransactionRecord | None] | Iterable[TransactionRecord | None],
):
    if hasattr(source, "__aiter__"):
        async for item in source:  # type: ignore[union-attr]
            yield item
    else:
        for item in source:  # type: ignore[union-attr]
            yield item


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise asyncio.CancelledError("ingestion cancelled")


class BatchIngestor:
    def __init__(self, engine: ElasticsearchClient, *, batch_size: int = BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0.")
        self._engine = engine
        self._batch_size = batch_size

    async def ingest(
        self,
        records: AsyncIterable[TransactionRecord | None] | Iterable[TransactionRecord | None],
        cancel: asyncio.Event | None = None,
    ) -> IngestReport:
        """
        Consume `records` and write them in batches.

        `None` elements are skipped and do not count toward the batch size.
        Cancellation (the `cancel` event, or cancelling the task) aborts
        between elements without flushing the partial trailing batch.
        """
        logger.info("bulk_ingest_started batch_size=%s", self._batch_size)
        report = IngestReport()
        batch: list[TransactionRecord] = []

        try:
            async for record in _aiter(records):
                _check_cancel(cancel)
                if record is None:
                    continue

                batch.append(record)
                report.records += 1
                if len(batch) < self._batch_size:
                    continue

                await self._submit(batch, number=len(report.batches) + 1, report=report)
                batch = []

            _check_cancel(cancel)
        except asyncio.CancelledError:
            logger.warning(
                "bulk_ingest_cancelled records=%s batches=%s pending=%s",
                report.records,
                len(report.batches),
                len(batch),
            )
            raise

        if batch:
            await self._submit(batch, number=len(report.batches) + 1, report=report)

        logger.info(
            "bulk_ingest_finished records=%s batches=%s failed_batches=%s",
            report.records,
            len(report.batches),
            report.failed_batches,
        )
        return report

    async def _submit(self, batch: list[TransactionRecord], *, number: int, report: IngestReport) -> None:
        count = len(batch)
        logger.info("bulk_batch_submitted batch=%s count=%s", number, count)

        try:
            response = await self._engine.bulk_write(batch)
        except EngineError as e:
            diagnostic = str(e)
        else:
            if not response.errors:
                report.batches.append(BatchResult(number=number, count=count, ok=True))
                return
            diagnostic = response.diagnostic

        logger.error("bulk_batch_failed batch=%s count=%s diagnostic=%s", number, count, diagnostic)
        report.batches.append(BatchResult(number=number, count=count, ok=False, diagnostic=diagnostic))
