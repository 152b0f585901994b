"""
FastAPI router for ingestion endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from core import engine
from core.records import TransactionRecord

from . import service
from .batching import BatchIngestor

router = APIRouter()


@router.post("/transactions")
async def upload_transactions(
    files: list[UploadFile] = File(default=[]),
    client: engine.ElasticsearchClient = Depends(engine.get_client),
) -> dict:
    """
    Upload one or more JSON / NDJSON files of transactions and index them.

    Files are streamed through the batch ingestor one after another. The call
    succeeds even when individual batches fail; the per-file counts say how
    many did.
    """
    if not files:
        raise HTTPException(status_code=400, detail="No files were uploaded.")

    # Reject the whole request before writing anything.
    for file in files:
        service.validate_upload(file)

    ingestor = BatchIngestor(client)
    summaries: list[service.UploadSummary] = []
    for file in files:
        if file.size == 0:
            continue
        try:
            summaries.append(await service.ingest_upload(file, ingestor))
        except service.MalformedInput as e:
            raise HTTPException(status_code=422, detail=f"{file.filename}: {e}") from e

    return {
        "ok": True,
        "message": "Documents indexed successfully.",
        "files": [
            {
                "filename": s.filename,
                "records": s.records,
                "batches": s.batches,
                "failed_batches": s.failed_batches,
            }
            for s in summaries
        ],
    }


@router.post("/transactions/record")
async def index_transaction(
    record: TransactionRecord,
    client: engine.ElasticsearchClient = Depends(engine.get_client),
) -> dict:
    """
    Index a single transaction record.
    """
    try:
        doc_id = await client.index_record(record)
    except engine.EngineError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return {"ok": True, "id": doc_id}
