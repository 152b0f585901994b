"""
Retrieval API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from core import engine

from . import classifier
from .cache import SearchCache, search_cache
from .service import QueryRouter, SearchExecutionFailure

router = APIRouter()


@router.get("/transactions")
async def search_transactions(
    response: Response,
    query: str = Query(default="", max_length=1000),
    client: engine.ElasticsearchClient = Depends(engine.get_client),
    cache: SearchCache = Depends(search_cache),
) -> dict:
    """
    Return every transaction matching `query`.

    Amount-, date- and transaction-id-shaped queries are exact matches on that
    field; anything else is a phrase search over the message.
    """
    if cache.ttl_s > 0:
        response.headers["Cache-Control"] = f"public, max-age={int(cache.ttl_s)}"

    cached = cache.get(query)
    if cached is not None:
        return cached

    try:
        results = await QueryRouter(client).search(query)
    except SearchExecutionFailure as e:
        # Failures are not cached.
        raise HTTPException(status_code=502, detail=str(e)) from e

    body = {
        "query": query,
        "field": classifier.classify(query).value if query.strip() else None,
        "count": len(results),
        "results": [r.to_wire() for r in results],
    }
    cache.put(query, body)
    return body
