"""
Scheduled advancement of in-flight processing jobs.

Each run scans for jobs in ``processing`` or ``exporting`` and moves each one
at most one stage forward:

    processing --edit completed--> exporting
    processing --edit failed-----> failed
    exporting  --export completed--> downloading -> complete | failed
    exporting  --export failed-----> failed

Jobs are handled one at a time. An exception while handling a job is written
onto that job and the scan carries on with the next one. Transitions that
start remote work or materialization are conditional on the status we read,
so two overlapping runs cannot both export or both materialize a job.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .configuration import configure_logging, get_settings
from .database import GalleryStore, JobStore, MetadataStore, utc_now_iso
from .editor_client import ImagenClient
from .errors import ConfigurationError, JobClaimConflict
from .models import GalleryImage, JobStatus, POLLED_STATUSES, PollSummary, ProcessingJob
from .s3_service import MediaStorage
from .utils import content_type_for, output_extension

logger = logging.getLogger(__name__)

EDIT_FAILED_MESSAGE = "Remote editing failed during the edit phase"
EXPORT_FAILED_MESSAGE = "Remote editing failed during the export phase"
MISSING_PROJECT_MESSAGE = "Job has no remote project id and cannot be advanced"
EMPTY_EXPORT_MESSAGE = "Export completed but returned no files"

# Outcomes of advancing a single job.
UNCHANGED = "unchanged"
ADVANCED = "advanced"
COMPLETED = "completed"
FAILED = "failed"
SKIPPED = "skipped"


class Poller:
    def __init__(
        self,
        jobs: JobStore,
        galleries: GalleryStore,
        storage: MediaStorage,
        editor: ImagenClient,
        *,
        review_prefix: str = "ready/",
        finished_prefix: str = "finished/",
    ) -> None:
        self.jobs = jobs
        self.galleries = galleries
        self.storage = storage
        self.editor = editor
        self.review_prefix = review_prefix
        self.finished_prefix = finished_prefix

    def run(self) -> PollSummary:
        logger.info("Poller started")
        active = self.jobs.scan_jobs(POLLED_STATUSES)
        logger.info(f"Found {len(active)} active processing jobs")

        summary = PollSummary(seen=len(active))
        for job in active:
            outcome = self._advance_safely(job)
            if outcome == ADVANCED:
                summary.advanced += 1
            elif outcome == COMPLETED:
                summary.completed += 1
            elif outcome == FAILED:
                summary.failed += 1
            elif outcome == SKIPPED:
                summary.skipped += 1

        logger.info(
            f"Poller complete: {summary.seen} seen, {summary.advanced} advanced, "
            f"{summary.completed} completed, {summary.failed} failed, {summary.skipped} skipped"
        )
        return summary

    def _advance_safely(self, job: ProcessingJob) -> str:
        try:
            return self.advance_job(job)
        except JobClaimConflict as exc:
            logger.warning(f"Skipping job {job.job_id}: {exc}")
            return SKIPPED
        except Exception as exc:
            logger.error(f"Error processing job {job.job_id}: {exc}")
            try:
                # job.status tracks the last status this run wrote (see materialize).
                self._fail(job.job_id, str(exc), expected_status=job.status)
            except JobClaimConflict as claim_exc:
                logger.warning(f"Not recording failure on job {job.job_id}: {claim_exc}")
                return SKIPPED
            except Exception as store_exc:
                logger.error(f"Could not record failure on job {job.job_id}: {store_exc}")
            return FAILED

    def advance_job(self, job: ProcessingJob) -> str:
        if not job.remote_project_id:
            self._fail(job.job_id, MISSING_PROJECT_MESSAGE, expected_status=job.status)
            return FAILED

        if job.status == JobStatus.PROCESSING:
            return self._check_edit(job)
        if job.status == JobStatus.EXPORTING:
            return self._check_export(job)
        return UNCHANGED

    def _check_edit(self, job: ProcessingJob) -> str:
        status = self.editor.get_edit_status(job.remote_project_id)
        logger.info(f"Job {job.job_id} edit status: {status.status}")

        if status.is_completed:
            self.editor.start_export(job.remote_project_id, idempotency_key=f"{job.job_id}:export")
            self.jobs.update_job_status(
                job.job_id, {"status": JobStatus.EXPORTING}, expected_status=JobStatus.PROCESSING
            )
            logger.info(f"Job {job.job_id} export started")
            return ADVANCED
        if status.is_failed:
            self._fail(job.job_id, EDIT_FAILED_MESSAGE, expected_status=JobStatus.PROCESSING)
            return FAILED
        return UNCHANGED

    def _check_export(self, job: ProcessingJob) -> str:
        status = self.editor.get_export_status(job.remote_project_id)
        logger.info(f"Job {job.job_id} export status: {status.status}")

        if status.is_completed:
            self.materialize(job)
            return COMPLETED
        if status.is_failed:
            self._fail(job.job_id, EXPORT_FAILED_MESSAGE, expected_status=JobStatus.EXPORTING)
            return FAILED
        return UNCHANGED

    def materialize(self, job: ProcessingJob) -> List[str]:
        """
        Download rendered output and store it in the media bucket.

        Claims the job (``exporting`` -> ``downloading``) first and records the
        new status on ``job``; a lost claim raises ``JobClaimConflict`` before
        anything is downloaded. Staged originals are only deleted after every
        output file is stored.

        Returns:
            The stored output keys
        """
        self.jobs.update_job_status(
            job.job_id, {"status": JobStatus.DOWNLOADING}, expected_status=JobStatus.EXPORTING
        )
        job.status = JobStatus.DOWNLOADING
        logger.info(f"Materializing output for job {job.job_id}")

        links = self.editor.get_export_download_links(job.remote_project_id)
        if not links:
            raise ValueError(EMPTY_EXPORT_MESSAGE)

        result_keys: List[str] = []
        for link in links:
            if not link.url:
                raise ValueError(f"Export returned no download link for {link.file_name or 'a file'}")
            body = self.editor.download(link.url, file_name=link.file_name)
            key = self._output_key(job, link.file_name)
            self.storage.put_object(key, body, content_type=content_type_for(link.file_name))
            result_keys.append(key)

        if not job.is_imagen and job.gallery_id:
            images = [GalleryImage(key=key, alt="") for key in result_keys]
            if not self.galleries.append_images(job.gallery_id, images):
                logger.warning(f"Gallery {job.gallery_id} not found; job {job.job_id} output kept in storage only")

        if job.raw_keys:
            errors = self.storage.delete_objects(job.raw_keys)
            if errors:
                logger.warning(f"Job {job.job_id}: {len(errors)} staged files could not be deleted: {errors}")

        self.jobs.update_job_status(
            job.job_id,
            {"status": JobStatus.COMPLETE, "resultKeys": result_keys, "completedAt": utc_now_iso()},
        )
        logger.info(f"Job {job.job_id} completed with {len(result_keys)} output files")
        return result_keys

    def _output_key(self, job: ProcessingJob, file_name: str) -> str:
        name = f"{uuid4()}{output_extension(file_name)}"
        if job.is_imagen:
            return f"{self.review_prefix}{job.job_id}/{name}"
        return f"{self.finished_prefix}{job.gallery_id or 'unassigned'}/{name}"

    def _fail(self, job_id: str, message: str, expected_status: Optional[JobStatus] = None) -> None:
        self.jobs.update_job_status(
            job_id, {"status": JobStatus.FAILED, "error": message}, expected_status=expected_status
        )


def build_poller(settings: Any) -> Poller:
    if not settings.editor.api_key:
        raise ConfigurationError("IMAGEN_API_KEY is not configured. The poller cannot query job status.")
    return Poller(
        jobs=JobStore(
            MetadataStore(settings.tables.admin),
            key_prefix=settings.tables.job_key_prefix,
            max_items=settings.tables.max_items,
        ),
        galleries=GalleryStore(MetadataStore(settings.tables.galleries)),
        storage=MediaStorage(settings.storage.bucket),
        editor=ImagenClient.from_settings(settings),
        review_prefix=settings.storage.review_prefix,
        finished_prefix=settings.storage.finished_prefix,
    )


def handle_poller_event(event: Optional[Dict[str, Any]] = None, context: Any = None) -> Dict[str, int]:
    """Entry point for the scheduler; the event payload is ignored."""
    settings = get_settings()
    configure_logging(settings.log_level)
    return build_poller(settings).run().model_dump()
