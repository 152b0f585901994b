"""
Ingestion "service layer".

This file contains logic that is independent of FastAPI's routing layer:
- Validate uploads
- Decode an upload into transaction records, lazily, chunk by chunk
- Run one upload through the batch ingestor

Two container formats are accepted: a JSON array (`[{...}, null, {...}]`)
and newline-delimited JSON (one object or `null` per line). The format is
picked from the first non-whitespace character of the body.
"""

from __future__ import annotations

import asyncio
import codecs
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import HTTPException, UploadFile
from pydantic import ValidationError

from core.records import TransactionRecord

from .batching import BatchIngestor

ALLOWED_EXTENSIONS = {".json", ".ndjson", ".jsonl"}
ALLOWED_CONTENT_TYPES = {"application/json", "application/x-ndjson", "application/jsonl"}

READ_CHUNK_BYTES = 64 * 1024

_WHITESPACE = " \t\r\n"

# Array parser states.
_VALUE_OR_END = 0
_VALUE = 1
_COMMA_OR_END = 2
_DONE = 3


class MalformedInput(ValueError):
    pass


@dataclass(frozen=True)
class UploadSummary:
    filename: str
    records: int
    batches: int
    failed_batches: int


def _file_ext(filename: str) -> str:
    return Path(filename).suffix.lower()


def _media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def validate_upload(file: UploadFile) -> None:
    """
    Accept the upload if either its extension or its content type says JSON.

    Browsers and CLI tools disagree on content types for .ndjson, so the
    extension alone is enough.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="Missing filename.")

    ext = _file_ext(file.filename)
    if ext in ALLOWED_EXTENSIONS or _media_type(file.content_type) in ALLOWED_CONTENT_TYPES:
        return None

    raise HTTPException(
        status_code=400,
        detail=(
            f"Unsupported file '{file.filename}'. "
            f"Allowed extensions: {sorted(ALLOWED_EXTENSIONS)}"
        ),
    )


async def _iter_text(file: UploadFile, chunk_size: int) -> AsyncIterator[str]:
    # utf-8-sig drops a leading BOM if there is one.
    decoder = codecs.getincrementaldecoder("utf-8-sig")()
    try:
        while True:
            chunk = await file.read(chunk_size)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    yield tail
                return
            text = decoder.decode(chunk)
            if text:
                yield text
    except UnicodeDecodeError as e:
        raise MalformedInput("Upload is not valid UTF-8.") from e


async def _refill(buf: str, pos: int, chunks: AsyncIterator[str]) -> tuple[str, int, bool]:
    """
    Drop the consumed prefix and append the next chunk. Returns (buf, pos, eof).
    """
    try:
        text = await chunks.__anext__()
    except StopAsyncIteration:
        return buf[pos:], 0, True
    return buf[pos:] + text, 0, False


async def _iter_array(buf: str, chunks: AsyncIterator[str]) -> AsyncIterator[Any]:
    decoder = json.JSONDecoder()
    pos = buf.index("[") + 1
    state = _VALUE_OR_END
    eof = False

    while True:
        while pos < len(buf) and buf[pos] in _WHITESPACE:
            pos += 1
        if pos >= len(buf):
            if eof:
                break
            buf, pos, eof = await _refill(buf, pos, chunks)
            continue

        ch = buf[pos]
        if state == _DONE:
            raise MalformedInput("Unexpected data after the end of the JSON array.")
        if ch == "]":
            if state == _VALUE:
                raise MalformedInput("Trailing comma in JSON array.")
            state = _DONE
            pos += 1
            continue
        if state == _COMMA_OR_END:
            if ch != ",":
                raise MalformedInput(f"Expected ',' or ']' in JSON array, got {ch!r}.")
            state = _VALUE
            pos += 1
            continue

        try:
            value, end = decoder.raw_decode(buf, pos)
        except json.JSONDecodeError as e:
            # Most likely the value is cut by the chunk boundary.
            if eof:
                raise MalformedInput(f"Invalid JSON in array: {e.msg}.") from e
            buf, pos, eof = await _refill(buf, pos, chunks)
            continue

        pos = end
        state = _COMMA_OR_END
        yield value

    if state != _DONE:
        raise MalformedInput("Upload ended inside the JSON array.")


async def _iter_lines(buf: str, chunks: AsyncIterator[str]) -> AsyncIterator[Any]:
    line_no = 0
    eof = False

    while not eof:
        while "\n" in buf:
            line, buf = buf.split("\n", 1)
            line_no += 1
            if line.strip():
                yield _decode_line(line, line_no)
        try:
            buf += await chunks.__anext__()
        except StopAsyncIteration:
            eof = True

    if buf.strip():
        yield _decode_line(buf, line_no + 1)


def _decode_line(line: str, line_no: int) -> Any:
    try:
        return json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedInput(f"Invalid JSON on line {line_no}: {e.msg}.") from e


async def iter_json_values(chunks: AsyncIterator[str]) -> AsyncIterator[Any]:
    """
    Yield top-level JSON values from a JSON array or an NDJSON text stream.
    """
    buf = ""
    async for text in chunks:
        buf += text
        if buf.strip():
            break
    else:
        return

    first = buf.lstrip(_WHITESPACE)[:1]
    parse = _iter_array if first == "[" else _iter_lines
    async for value in parse(buf, chunks):
        yield value


def _to_record(value: Any, position: int) -> TransactionRecord | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise MalformedInput(f"Item {position} is not a JSON object.")
    try:
        return TransactionRecord.model_validate(value)
    except ValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(part) for part in first.get("loc", ())) or "record"
        raise MalformedInput(f"Item {position} is not a valid transaction: {loc}: {first.get('msg')}.") from e


async def iter_upload_records(
    file: UploadFile,
    *,
    chunk_size: int = READ_CHUNK_BYTES,
) -> AsyncIterator[TransactionRecord | None]:
    """
    Decode an upload into records without buffering the whole body.

    JSON `null` items come through as None; the ingestor skips them.
    """
    position = 0
    async for value in iter_json_values(_iter_text(file, chunk_size)):
        position += 1
        yield _to_record(value, position)


async def ingest_upload(
    file: UploadFile,
    ingestor: BatchIngestor,
    *,
    cancel: asyncio.Event | None = None,
) -> UploadSummary:
    """
    High-level ingestion step for a single uploaded file.

    This is what the FastAPI router should call. Batches written before a
    MalformedInput is hit stay written; bulk writes are not transactional.
    """
    validate_upload(file)
    report = await ingestor.ingest(iter_upload_records(file), cancel=cancel)
    return UploadSummary(
        filename=file.filename or "",
        records=report.records,
        batches=len(report.batches),
        failed_batches=report.failed_batches,
    )
