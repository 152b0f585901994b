import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from core import engine, settings
from core.logs import configure_logging
from ingestion import router as ingestion_router
from retrieval import router as retrieval_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    # Open the engine client once per process.
    client = await engine.init_client()
    try:
        if settings.create_index_on_startup():
            created = await client.ensure_index()
            logger.info("index_ready index=%s created=%s", client.index, created)
        yield
    finally:
        await engine.close_client()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request method=%s path=%s status=%s duration_ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response


app.include_router(ingestion_router.router, tags=["ingestion"])
app.include_router(retrieval_router.router, tags=["retrieval"])


@app.get("/health")
async def health(client: engine.ElasticsearchClient = Depends(engine.get_client)) -> dict:
    return {"status": "ok", "engine": await client.ping()}


@app.get("/")
def root() -> dict:
    return {"message": "transaction search api"}
