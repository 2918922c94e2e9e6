"""
Job creation and hand-off to the orchestrator.

This module manages the part of a processing job's life that happens before
and around the pipeline proper:
- Registering a ``queued`` job record for a batch of staged files
- Handing the job to the orchestrator in a background worker (auto mode)
- Starting queued jobs by hand (manual mode) and retrying failed ones
- Reading job records and pipeline settings for the admin surface
- Running the poller on demand

The JobManager never advances a job past ``queued`` itself; the orchestrator
and poller own every later transition.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional
from uuid import uuid4

from .database import JobStore, SettingsStore
from .errors import InvalidJobStateError, JobNotFoundError
from .models import (
    CreateJobRequest,
    JobStatus,
    OrchestratorEvent,
    PollSummary,
    ProcessingJob,
    ProcessingMode,
    ProcessingSettings,
    SettingsUpdate,
)
from .orchestrator import Orchestrator
from .poller import Poller
from .s3_service import MediaStorage

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[ProcessingSettings], Orchestrator]
PollerFactory = Callable[[], Poller]


class JobManager:
    """
    Central coordinator for creating and dispatching processing jobs.

    Orchestrator runs are submitted to a thread pool so the caller gets the
    job id back immediately; the outcome is read later from the job record.

    Attributes:
        jobs: Job record store
        settings_store: Pipeline settings record store
    """

    def __init__(
        self,
        jobs: JobStore,
        settings_store: SettingsStore,
        orchestrator_factory: OrchestratorFactory,
        poller_factory: PollerFactory,
        storage: Optional[MediaStorage] = None,
        presign_expiry: int = 3600,
        max_workers: int = 2,
    ) -> None:
        """
        Initialize the job manager.

        Args:
            jobs: Job record store
            settings_store: Store holding the processing mode and profile override
            orchestrator_factory: Builds an orchestrator for the current settings
            poller_factory: Builds a poller for on-demand runs
            storage: Media bucket used to presign result downloads
            presign_expiry: Lifetime of presigned result URLs in seconds
            max_workers: Number of concurrent orchestrator runs (default: 2)
        """
        self.jobs = jobs
        self.settings_store = settings_store
        self._orchestrator_factory = orchestrator_factory
        self._poller_factory = poller_factory
        self.storage = storage
        self.presign_expiry = presign_expiry
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    def list_jobs(self, gallery_id: Optional[str] = None) -> List[ProcessingJob]:
        """
        Get jobs sorted by creation time (newest first).

        Args:
            gallery_id: Only return jobs for this gallery when given
        """
        return self.jobs.list_jobs(gallery_id)

    def get_job(self, job_id: str) -> ProcessingJob:
        """
        Raises:
            JobNotFoundError: If no job has this id
        """
        job = self.jobs.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def create_job(self, request: CreateJobRequest) -> ProcessingJob:
        """
        Register a new job and, in auto mode, dispatch it to the orchestrator.

        Args:
            request: Gallery, staged keys, optional source and profile override

        Returns:
            The job as registered (status ``queued``)
        """
        job = ProcessingJob(
            job_id=uuid4().hex,
            gallery_id=request.gallery_id,
            raw_keys=list(request.raw_keys),
            status=JobStatus.QUEUED,
            source=request.source,
        )
        self.jobs.create_job(job)
        logger.info(f"Processing job {job.job_id} created for gallery {job.gallery_id or '-'} ({len(job.raw_keys)} files)")

        settings = self.settings_store.get_settings()
        if settings.processing_mode == ProcessingMode.AUTO:
            self._dispatch(job, request.profile_id, settings)
        else:
            logger.info(f"Manual processing mode: job {job.job_id} left queued")
        return job

    def start_job(self, job_id: str, profile_id: Optional[str] = None) -> Future:
        """Dispatch a job that is still ``queued`` (manual mode)."""
        job = self.get_job(job_id)
        if job.status != JobStatus.QUEUED:
            raise InvalidJobStateError(f"Job {job_id} is {job.status}; only queued jobs can be started")
        return self._dispatch(job, profile_id, self.settings_store.get_settings())

    def retry_job(self, job_id: str, profile_id: Optional[str] = None) -> Future:
        """
        Re-run the orchestrator for a failed job with its original staged keys.

        The orchestrator creates a fresh remote project; the old one is abandoned.
        """
        job = self.get_job(job_id)
        if job.status != JobStatus.FAILED:
            raise InvalidJobStateError(f"Job {job_id} is {job.status}; only failed jobs can be retried")
        logger.info(f"Retrying job {job_id}")
        return self._dispatch(job, profile_id, self.settings_store.get_settings())

    def _dispatch(self, job: ProcessingJob, profile_id: Optional[str], settings: ProcessingSettings) -> Future:
        event = OrchestratorEvent(
            job_id=job.job_id,
            gallery_id=job.gallery_id or None,
            raw_keys=job.raw_keys,
            source=job.source,
            profile_id=profile_id or None,
        )
        orchestrator = self._orchestrator_factory(settings)
        return self._executor.submit(self._run_orchestrator, orchestrator, event)

    @staticmethod
    def _run_orchestrator(orchestrator: Orchestrator, event: OrchestratorEvent) -> None:
        try:
            orchestrator.run(event)
        except Exception:
            # The orchestrator records job failures itself; this only fires when the store is unreachable.
            logger.exception(f"Orchestrator crashed for job {event.job_id}")
            raise

    def result_urls(self, job: ProcessingJob) -> List[str]:
        """Presigned download URLs for a completed job's output (empty otherwise)."""
        if self.storage is None or job.status != JobStatus.COMPLETE:
            return []
        urls = (self.storage.generate_presigned_url(key, self.presign_expiry) for key in job.result_keys or [])
        return [url for url in urls if url]

    def run_poller(self) -> PollSummary:
        return self._poller_factory().run()

    def get_settings(self) -> ProcessingSettings:
        return self.settings_store.get_settings()

    def update_settings(self, update: SettingsUpdate) -> ProcessingSettings:
        current = self.settings_store.get_settings()
        changes = update.model_dump(exclude_none=True)
        merged = current.model_copy(update=changes)
        logger.info(f"Processing settings updated: {changes}")
        return self.settings_store.save_settings(merged)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
