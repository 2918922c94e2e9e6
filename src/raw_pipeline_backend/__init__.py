"""
RAW Pipeline Backend - processing pipeline for camera RAW/JPEG batches

This package hands batches of staged photos to the Imagen AI editing service,
follows each batch through the service's edit and export phases, and stores
the finished images back in the media bucket and gallery records. It enables:

- One-shot orchestration of a new job (upload, then start editing)
- Scheduled polling that advances every in-flight job one stage at a time
- Materialization of exported images into the review queue or a gallery
- Job creation, manual start and retry through a small HTTP surface

Key Components:
    - database: DynamoDB accessor plus job, gallery and settings stores
    - s3_service: Media bucket reads, writes and bulk deletes
    - editor_client: Imagen AI HTTP client with response normalization
    - orchestrator: Upload and edit-start for a single job
    - poller: Status advancement and result materialization
    - job_manager: Job registration and background dispatch
    - main: FastAPI application and HTTP endpoint definitions
    - configuration: Layered YAML/environment settings

Usage:
    Serve the trigger API with:
        uvicorn raw_pipeline_backend.main:app --host 0.0.0.0 --port 8000

    Scheduled and event entry points:
        raw_pipeline_backend.poller.handle_poller_event
        raw_pipeline_backend.orchestrator.handle_orchestrator_event

Architecture Principles:
    - All coordination goes through the persisted job record
    - Every failure is recorded on the job it belongs to
    - One bad job never blocks the rest of a poll
"""
