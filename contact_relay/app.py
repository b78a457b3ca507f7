from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException

from . import __version__
from .endpoints import ROUTERS
from .logger import get_logger
from .redis import redis
from .settings import settings


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    logger.info(f"Accepting contact submissions on POST {settings.contact_path}")
    yield
    await redis.aclose()


app = FastAPI(
    title="Contact Relay",
    version=__version__,
    root_path=settings.root_path,
    debug=settings.debug,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)

for router in ROUTERS:
    app.include_router(router)


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException) -> PlainTextResponse:
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


@app.api_route(
    "/{path:path}",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    include_in_schema=False,
)
async def not_found(path: str) -> PlainTextResponse:
    return PlainTextResponse("Not Found", status_code=status.HTTP_404_NOT_FOUND)
