from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from pdfshare_backend.access import AccessGuard
from pdfshare_backend.artifacts import ArtifactStore
from pdfshare_backend.config import (
    BASE_URL,
    LOG_LEVEL,
    MAX_UPLOAD_BYTES,
    META_FILE,
    PDF_MEDIA_TYPE,
    PORT,
    SWEEP_INTERVAL_SECONDS,
    UPLOAD_DIR,
)
from pdfshare_backend.errors import AccessDenied, GatewayError, StorageFailure, UploadError
from pdfshare_backend.issuer import CapabilityIssuer
from pdfshare_backend.registry import Clock, MetadataRegistry, now_ms
from pdfshare_backend.security import inline_content_disposition
from pdfshare_backend.sweeper import ReclamationSweeper, sweep_forever
from pdfshare_backend.viewer import render_viewer_page


logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store"}


class UploadResponse(BaseModel):
    viewer: str
    expiresAt: int


router = APIRouter()


@router.post("/upload", response_model=UploadResponse)
async def upload(
    request: Request,
    file: Optional[UploadFile] = File(None),
    expiresMinutes: Optional[str] = Form(None),
) -> UploadResponse:
    issuer: CapabilityIssuer = request.app.state.issuer
    data: Optional[bytes] = None
    content_type: Optional[str] = None
    filename: Optional[str] = None
    if file is not None:
        # Limit read so an oversized upload is rejected without buffering all of it.
        data = await file.read(issuer.max_bytes + 1)
        content_type = file.content_type
        filename = file.filename
    issued = await run_in_threadpool(issuer.issue, data, content_type, filename, expiresMinutes)
    return UploadResponse(viewer=issued.viewer_url, expiresAt=issued.expires_at)


@router.get("/view/{artifact_id}")
def view(artifact_id: str, request: Request, t: str = "") -> Response:
    guard: AccessGuard = request.app.state.guard
    record = guard.check(artifact_id, t)
    page = render_viewer_page(record.id, record.token)
    headers = {"Content-Security-Policy": page.content_security_policy, **NO_STORE}
    return HTMLResponse(page.html, headers=headers)


@router.get("/file/{artifact_id}")
def get_file(artifact_id: str, request: Request, t: str = "") -> Response:
    guard: AccessGuard = request.app.state.guard
    grant = guard.open_file(artifact_id, t)
    headers = {
        **NO_STORE,
        "Content-Disposition": inline_content_disposition(grant.download_name),
        "Content-Length": str(grant.size),
        "X-Content-Type-Options": "nosniff",
    }
    return StreamingResponse(grant.iter_chunks(), media_type=PDF_MEDIA_TYPE, headers=headers)


async def _upload_error(request: Request, exc: UploadError) -> Response:
    return JSONResponse({"error": exc.public_message}, status_code=exc.status_code)


async def _storage_failure(request: Request, exc: StorageFailure) -> Response:
    return JSONResponse({"error": exc.public_message}, status_code=exc.status_code)


async def _access_denied(request: Request, exc: AccessDenied) -> Response:
    # NotFound, Expired and FileMissing look identical on the wire.
    return PlainTextResponse(AccessDenied.public_message, status_code=AccessDenied.status_code)


async def _gateway_error(request: Request, exc: GatewayError) -> Response:
    return JSONResponse({"error": exc.public_message}, status_code=exc.status_code)


def create_app(
    upload_dir: Path = UPLOAD_DIR,
    meta_file: Path = META_FILE,
    base_url: str = BASE_URL,
    clock: Clock = now_ms,
    max_upload_bytes: int = MAX_UPLOAD_BYTES,
    sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS,
) -> FastAPI:
    store = ArtifactStore(upload_dir)
    registry = MetadataRegistry(meta_file)
    loaded = registry.load()
    logger.info("Loaded %d metadata records from %s", loaded, registry.path)

    sweeper = ReclamationSweeper(store, registry, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Reconcile and sweep once at startup, then start the periodic sweep.
        try:
            sweeper.reconcile()
            sweeper.sweep()
        except OSError:
            logger.exception("Startup cleanup failed")

        task = asyncio.create_task(sweep_forever(sweeper, sweep_interval_seconds))
        app.state.sweep_task = task
        try:
            yield
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    app = FastAPI(lifespan=lifespan)
    app.state.store = store
    app.state.registry = registry
    app.state.issuer = CapabilityIssuer(store, registry, base_url=base_url, clock=clock, max_bytes=max_upload_bytes)
    app.state.guard = AccessGuard(store, registry, clock=clock)
    app.state.sweeper = sweeper

    # Links are meant to be shared anywhere, so any origin may call us.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.add_exception_handler(UploadError, _upload_error)
    app.add_exception_handler(StorageFailure, _storage_failure)
    app.add_exception_handler(AccessDenied, _access_denied)
    app.add_exception_handler(GatewayError, _gateway_error)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.environ.get("PORT", str(PORT)))
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=False)
