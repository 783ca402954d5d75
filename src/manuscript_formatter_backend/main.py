from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from . import __version__
from .configuration import Settings, get_settings
from .errors import JobValidationError
from .job_manager import JobManager
from .logging_config import configure_logging
from .models import (
    ConvertRequest,
    JobCreated,
    JobDetail,
    JobStatus,
    JobStatusResponse,
    JobSummary,
    UploadResponse,
)
from .storage import LocalArtifactStore, content_type_for
from .utils import ensure_directory, parse_artifact_name, sanitize_filename

UPLOAD_CHUNK_SIZE = 1024 * 1024

settings = get_settings()
job_manager = JobManager.from_settings(settings)
ensure_directory(settings.files_dir)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    job_manager.start()
    yield
    job_manager.shutdown(wait=False)


app = FastAPI(title="Manuscript Formatter API", version=__version__, lifespan=lifespan)

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_job_manager() -> JobManager:
    return job_manager


def get_app_settings() -> Settings:
    return settings


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/jobs", response_model=JobCreated, status_code=201)
async def create_job(request: Request, manager: JobManager = Depends(get_job_manager)) -> JobCreated:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON object expected")

    try:
        body = ConvertRequest.model_validate(payload)
    except ValidationError as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=f"Invalid request: {exc.errors()[0]['msg']}") from exc

    try:
        job_id = manager.submit(body.content_text, mapping=body.mapping, template_url=body.template_url)
    except JobValidationError as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=exc.message) from exc
    return JobCreated(job_id=job_id)


@app.get("/jobs", response_model=list[JobSummary])
def list_jobs(manager: JobManager = Depends(get_job_manager)) -> list[JobSummary]:
    return manager.list_jobs()


@app.get("/jobs/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
async def job_status(
    job_id: str,
    wait: Optional[float] = Query(None, ge=0),
    manager: JobManager = Depends(get_job_manager),
) -> Any:
    if wait:
        # Long-polls block on the manager's waiter pool, not the request threadpool
        response = await asyncio.wrap_future(manager.status_later(job_id, wait))
    else:
        response = await run_in_threadpool(manager.status, job_id)
    if response.is_not_found:
        return JSONResponse(
            status_code=404,
            content=response.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
    return response


@app.get("/jobs/{job_id}/detail", response_model=JobDetail)
def get_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobDetail:
    job = manager.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.post("/uploads", response_model=UploadResponse, status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    app_settings: Settings = Depends(get_app_settings),
) -> UploadResponse:
    if not file.filename:
        raise HTTPException(status_code=400, detail="File must have a filename")

    upload_id = uuid4().hex
    stored_name = f"{upload_id}-{sanitize_filename(file.filename)}"
    upload_dir = ensure_directory(app_settings.files_dir)
    destination = upload_dir / stored_name
    max_bytes = app_settings.max_upload_mb * 1024 * 1024

    size = 0
    try:
        with destination.open("wb") as buffer:
            while chunk := await file.read(UPLOAD_CHUNK_SIZE):
                size += len(chunk)
                if size > max_bytes:
                    raise HTTPException(status_code=413, detail=f"Upload exceeds {app_settings.max_upload_mb} MB")
                buffer.write(chunk)
    except HTTPException:
        destination.unlink(missing_ok=True)
        raise
    finally:
        await file.close()

    return UploadResponse(
        id=stored_name,
        url=f"{app_settings.base_public_url}/files/{stored_name}",
        name=file.filename,
        size=size,
        type=file.content_type,
    )


@app.get("/files/{name}")
def get_file(
    name: str,
    manager: JobManager = Depends(get_job_manager),
    app_settings: Settings = Depends(get_app_settings),
):
    artifact = parse_artifact_name(name)
    if artifact is not None:
        # Artifacts are only reachable once their job has succeeded
        job_id, _ = artifact
        if manager.status(job_id).status != JobStatus.SUCCEEDED:
            raise HTTPException(status_code=404, detail="File not found")
        store = manager.artifacts
        if not isinstance(store, LocalArtifactStore) or not store.exists(name):
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(store.path_for(name), media_type=content_type_for(name), filename=name)

    base_path = app_settings.files_dir.resolve()
    file_path = (base_path / name).resolve()
    if file_path.parent != base_path:
        raise HTTPException(status_code=400, detail="Invalid path request")
    if not file_path.exists() or not file_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(file_path, media_type=content_type_for(name), filename=name)
