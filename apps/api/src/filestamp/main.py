import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from filestamp.core.config import settings
from filestamp.core.errors import StampError
from filestamp.core.logging import setup_logging
from filestamp.api.deps import get_side_store

from filestamp.api.routes.root import router as root_router
from filestamp.api.routes.stamp import router as stamp_router
from filestamp.api.routes.verify import router as verify_router
from filestamp.api.routes.stamps import router as stamps_router
from filestamp.api.routes.history import router as history_router
from filestamp.api.routes.chain import router as chain_router

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # create the stamps table up front when a side-store is configured
    if get_side_store() is None:
        logger.warning("Running without metadata side-store")
    yield


app = FastAPI(title="FileStamp API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# mount routers under the configured API prefix
app.include_router(root_router)
app.include_router(stamp_router, prefix=settings.api_prefix)
app.include_router(verify_router, prefix=settings.api_prefix)
app.include_router(stamps_router, prefix=settings.api_prefix)
app.include_router(history_router, prefix=settings.api_prefix)
app.include_router(chain_router, prefix=settings.api_prefix)


@app.exception_handler(StampError)
async def stamp_error_handler(request: Request, exc: StampError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.classification)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# health endpoints
@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "message": "FileStamp API is running"}


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok", "env": settings.environment}
