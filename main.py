"""HTTP entry point for the image ingestion service.

Routes:
    POST /api/upload    multipart ``file``; stores a new version of it.
    GET  /api/list      upload records of the calling account.
    GET  /api/download  ``?filename=<versioned name>``; returns the object.
    GET  /health

Every ``/api`` route expects ``Authorization: Bearer <token>``.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from image2cloud.auth import AuthError, bearer_token, decode_token
from image2cloud.errors import (
    DecodeError,
    DegenerateResize,
    IngestError,
    InvalidFilename,
    UnsupportedFormat,
)
from image2cloud.image_ops import content_type_for, sniff_bytes
from image2cloud.logging_setup import configure_logging
from image2cloud.metadata import SqliteMetadataStore
from image2cloud.models import IngestResult, UploadList
from image2cloud.pipeline import IngestPipeline
from image2cloud.settings import Settings, get_settings
from image2cloud.staging import StagingArea, ensure_dir
from image2cloud.storage import build_object_store, object_key

logger = logging.getLogger("image2cloud.api")

_CLIENT_ERRORS = {
    InvalidFilename: "Invalid file name.",
    UnsupportedFormat: "Only PNG and JPEG images are accepted.",
    DecodeError: "The image could not be decoded.",
    DegenerateResize: "The image is too small to resize.",
}


def build_pipeline(settings: Settings) -> IngestPipeline:
    """Wire the pipeline to the backends selected by ``settings``."""
    ensure_dir(settings.staging_dir)
    return IngestPipeline(
        staging=StagingArea(settings.staging_dir),
        metadata=SqliteMetadataStore(settings.metadata_db),
        objects=build_object_store(settings),
    )


def create_app(settings: Optional[Settings] = None, pipeline: Optional[IngestPipeline] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        if app.state.pipeline is None:
            app.state.pipeline = build_pipeline(settings)
        logger.info(
            "[startup] staging=%s backend=%s", settings.staging_dir, settings.storage_backend
        )
        yield

    app = FastAPI(title="image2cloud", lifespan=lifespan)
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # adjust in prod
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_routes(app)
    return app


def get_pipeline(request: Request) -> IngestPipeline:
    pipeline = request.app.state.pipeline
    if pipeline is None:
        raise HTTPException(status_code=500, detail="Pipeline not configured.")
    return pipeline


def current_account(request: Request, authorization: Optional[str] = Header(None)) -> str:
    settings: Settings = request.app.state.settings
    try:
        return decode_token(bearer_token(authorization), settings.jwt_secret)
    except AuthError as exc:
        logger.info("Rejected request: %s", exc)
        raise HTTPException(status_code=403, detail="Invalid Access Token")


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/upload", response_model=IngestResult)
    async def upload_endpoint(
        file: UploadFile = File(...),
        account: str = Depends(current_account),
        pipeline: IngestPipeline = Depends(get_pipeline),
    ):
        raw_data = await file.read()
        if not raw_data:
            raise HTTPException(status_code=400, detail="No image data provided.")
        filename = os.path.basename(file.filename or "")
        try:
            return await run_in_threadpool(pipeline.ingest, account, filename, raw_data)
        except IngestError as exc:
            for error_type, message in _CLIENT_ERRORS.items():
                if isinstance(exc, error_type):
                    raise HTTPException(status_code=400, detail=message)
            # Cause and traceback are logged by the pipeline.
            raise HTTPException(status_code=500, detail="Upload failed.")

    @app.get("/api/list", response_model=UploadList)
    async def list_endpoint(
        account: str = Depends(current_account),
        pipeline: IngestPipeline = Depends(get_pipeline),
    ):
        try:
            uploads = await run_in_threadpool(pipeline.metadata.list_uploads, account)
        except IngestError:
            logger.exception("Listing uploads of %s failed", account)
            raise HTTPException(status_code=500, detail="Internal Server Error")
        return UploadList(uploads=uploads)

    @app.get("/api/download")
    async def download_endpoint(
        filename: str = Query(...),
        account: str = Depends(current_account),
        pipeline: IngestPipeline = Depends(get_pipeline),
    ):
        try:
            known = await run_in_threadpool(pipeline.metadata.has_object, account, filename)
            if not known:
                raise HTTPException(status_code=400, detail="Invalid image name.")
            data = await run_in_threadpool(pipeline.objects.get, object_key(account, filename))
            media_type = content_type_for(sniff_bytes(data))
        except IngestError:
            logger.exception("Download of %s for %s failed", filename, account)
            raise HTTPException(status_code=500, detail="Download failed.")
        return Response(
            content=data,
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )


app = create_app()
