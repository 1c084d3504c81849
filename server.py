from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import httpx
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel

from ziprelay_backend.config import DEFAULT_PORT, LOG_LEVEL, Settings
from ziprelay_backend.errors import SessionExpired, SessionNotFound
from ziprelay_backend.fetcher import RemoteFetcher
from ziprelay_backend.orchestrator import DownloadOrchestrator
from ziprelay_backend.security import content_disposition
from ziprelay_backend.sessions import SessionStore, run_reaper


logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class CreateRequest(BaseModel):
    files: list[str] = []
    zipName: Optional[str] = None


router = APIRouter()


@router.post("/create")
async def create_download(payload: CreateRequest, request: Request) -> JSONResponse:
    if not payload.files:
        raise HTTPException(status_code=400, detail="No files provided")

    store: SessionStore = request.app.state.store
    settings: Settings = request.app.state.settings
    token = store.create(payload.files, payload.zipName)

    # request.base_url is guaranteed to end with '/'
    download_url = f"{request.base_url}download/{token}"
    expires = datetime.fromtimestamp(store.clock() + settings.session_ttl).strftime("%H:%M:%S")
    logger.info("Created session %s with %d files (expires: %s)", token, len(payload.files), expires)
    return JSONResponse({"download_url": download_url})


# OPTIONS stays with the CORS middleware for preflight.
@router.api_route("/create", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def create_wrong_method(request: Request) -> JSONResponse:
    raise HTTPException(status_code=400, detail=f"Method {request.method} not allowed, use POST")


@router.get("/download/{token}")
async def download_archive(token: str, request: Request) -> Response:
    orchestrator: DownloadOrchestrator = request.app.state.orchestrator
    try:
        session = orchestrator.open(token)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Invalid or expired token")
    except SessionExpired:
        logger.info("Rejected expired session %s", token)
        raise HTTPException(status_code=410, detail="Session expired")

    headers = {
        "Content-Disposition": content_disposition(session.archive_name),
        "Cache-Control": "no-store",
        "X-Content-Type-Options": "nosniff",
    }
    return StreamingResponse(orchestrator.stream(session), media_type="application/zip", headers=headers)


@router.get("/healthz")
async def healthz(request: Request) -> JSONResponse:
    return JSONResponse({"ok": True, "sessions": len(request.app.state.store)})


async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"detail": "Invalid JSON"}, status_code=400)


def create_app(
    settings: Settings | None = None,
    store: SessionStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the application around an explicitly owned session store.

    ``http_client`` is borrowed when given (tests pass one backed by a mock
    transport); otherwise the app creates and closes its own.
    """
    settings = settings or Settings()
    store = store if store is not None else SessionStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout),
            follow_redirects=True,
        )
        fetcher = RemoteFetcher(client, request_timeout=settings.http_timeout)
        app.state.orchestrator = DownloadOrchestrator(store, fetcher, settings)

        reaper = asyncio.create_task(run_reaper(store, settings.session_ttl, settings.cleanup_interval))
        logger.info(
            "ziprelay ready (session TTL: %ss, HTTP timeout: %ss, download timeout: %ss)",
            settings.session_ttl,
            settings.http_timeout,
            settings.download_timeout,
        )
        try:
            yield
        finally:
            reaper.cancel()
            try:
                await reaper
            except asyncio.CancelledError:
                pass
            if http_client is None:
                await client.aclose()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store

    # Download links are usually requested from browser pages on other origins.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _invalid_request)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", str(DEFAULT_PORT)))
    uvicorn.run("server:app", host=os.environ.get("HOST", "0.0.0.0"), port=port, reload=False)
