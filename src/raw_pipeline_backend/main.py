from __future__ import annotations

from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from .configuration import configure_logging, get_settings
from .database import JobStore, MetadataStore, SettingsStore
from .errors import InvalidJobStateError, JobNotFoundError, PipelineError
from .job_manager import JobManager
from .models import CreateJobRequest, PollSummary, ProcessingJob, ProcessingSettings, SettingsUpdate
from .orchestrator import build_orchestrator
from .poller import build_poller
from .s3_service import MediaStorage

app = FastAPI(title="RAW Processing Pipeline API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_job_manager() -> JobManager:
    settings = get_settings()
    configure_logging(settings.log_level)
    admin_store = MetadataStore(settings.tables.admin)
    return JobManager(
        jobs=JobStore(admin_store, key_prefix=settings.tables.job_key_prefix, max_items=settings.tables.max_items),
        settings_store=SettingsStore(admin_store, settings_key=settings.tables.settings_key),
        orchestrator_factory=lambda stored: build_orchestrator(settings, profile_override=stored.profile_id),
        poller_factory=lambda: build_poller(settings),
        storage=MediaStorage(settings.storage.bucket),
        presign_expiry=settings.storage.presign_expiry_seconds,
        max_workers=settings.job_manager.max_workers,
    )


def _job_payload(job: ProcessingJob) -> Dict[str, Any]:
    return job.model_dump(by_alias=True, mode="json")


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/processing-jobs", status_code=status.HTTP_201_CREATED)
def create_job(request: CreateJobRequest, manager: JobManager = Depends(get_job_manager)) -> Dict[str, Any]:
    job = manager.create_job(request)
    return {"jobId": job.job_id, "status": job.status}


@app.get("/processing-jobs")
def list_jobs(
    gallery_id: Optional[str] = Query(default=None, alias="galleryId"),
    manager: JobManager = Depends(get_job_manager),
) -> Dict[str, List[Dict[str, Any]]]:
    return {"jobs": [_job_payload(job) for job in manager.list_jobs(gallery_id)]}


@app.get("/processing-jobs/{job_id}")
def get_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> Dict[str, Any]:
    try:
        job = manager.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {**_job_payload(job), "resultUrls": manager.result_urls(job)}


def _dispatch_action(action: Callable[..., Any], job_id: str, profile_id: Optional[str]) -> Dict[str, str]:
    try:
        action(job_id, profile_id=profile_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"jobId": job_id, "status": "dispatched"}


@app.post("/processing-jobs/{job_id}/start", status_code=status.HTTP_202_ACCEPTED)
def start_job(
    job_id: str,
    profile_id: Optional[str] = Query(default=None, alias="profileId"),
    manager: JobManager = Depends(get_job_manager),
) -> Dict[str, str]:
    return _dispatch_action(manager.start_job, job_id, profile_id)


@app.post("/processing-jobs/{job_id}/retry", status_code=status.HTTP_202_ACCEPTED)
def retry_job(
    job_id: str,
    profile_id: Optional[str] = Query(default=None, alias="profileId"),
    manager: JobManager = Depends(get_job_manager),
) -> Dict[str, str]:
    return _dispatch_action(manager.retry_job, job_id, profile_id)


@app.post("/poller/run", response_model=PollSummary)
def run_poller(manager: JobManager = Depends(get_job_manager)) -> PollSummary:
    try:
        return manager.run_poller()
    except PipelineError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.get("/settings")
def get_processing_settings(manager: JobManager = Depends(get_job_manager)) -> Dict[str, Any]:
    return manager.get_settings().model_dump(by_alias=True, mode="json")


@app.put("/settings")
def update_processing_settings(update: SettingsUpdate, manager: JobManager = Depends(get_job_manager)) -> Dict[str, Any]:
    if update.processing_mode is None and update.profile_id is None:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    settings: ProcessingSettings = manager.update_settings(update)
    return settings.model_dump(by_alias=True, mode="json")
