"""
Hands a batch of staged photos to the editing service and starts the edit.

One invocation takes a job from ``queued`` to ``processing`` (or ``failed``)
and returns; it never polls. From ``processing`` onwards the poller owns the
job. Steps run strictly in order and the first failure stops the rest:

1. Resolve the editing profile (JPG profile when every key is a JPEG).
2. Mark the job ``uploading``.
3. Create a remote project.
4. Request one presigned upload link per file, keyed by basename.
5. PUT every staged file to its link, ``upload_batch_size`` at a time.
6. Start the edit with the resolved profile.
7. Mark the job ``processing`` with the remote project id.

Any exception marks the job ``failed`` with the exception text. Nothing is
retried here beyond the HTTP-level retries in ``ImagenClient``; re-running a
failed batch creates a fresh remote project.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .configuration import configure_logging, get_settings
from .database import JobStore, MetadataStore
from .editor_client import ImagenClient
from .errors import ConfigurationError, EditorResponseError
from .models import JobStatus, OrchestratorEvent
from .s3_service import MediaStorage
from .utils import all_match_extensions, chunked, key_basename

logger = logging.getLogger(__name__)

# Left over from an earlier attempt when a failed job is run again.
STALE_ATTEMPT_FIELDS = ("error", "remoteProjectId", "resultKeys", "completedAt")


@dataclass(frozen=True)
class ProfileSelection:
    profile_id: str
    kind: str


def select_profile(
    raw_keys: Sequence[str],
    raw_profile_id: str,
    jpg_profile_id: str,
    profile_id: Optional[str] = None,
    jpeg_extensions: Sequence[str] = (".jpg", ".jpeg"),
) -> ProfileSelection:
    """
    Pick the editing profile for a batch.

    An explicit ``profile_id`` always wins. Otherwise a batch made up only of
    JPEGs uses the JPG profile and anything else uses the RAW profile.

    Raises:
        ConfigurationError: If the chosen profile is not configured
    """
    if profile_id and profile_id.strip():
        return ProfileSelection(profile_id=profile_id.strip(), kind="explicit")

    if all_match_extensions(raw_keys, jpeg_extensions):
        kind, resolved = "jpg", jpg_profile_id
    else:
        kind, resolved = "raw", raw_profile_id

    resolved = (resolved or "").strip()
    if not resolved:
        raise ConfigurationError(
            f"No {kind.upper()} editing profile is configured. "
            f"Set IMAGEN_{kind.upper()}_PROFILE_ID to enable processing."
        )
    return ProfileSelection(profile_id=resolved, kind=kind)


class Orchestrator:
    def __init__(
        self,
        jobs: JobStore,
        storage: MediaStorage,
        editor: Optional[ImagenClient],
        *,
        api_key: str,
        raw_profile_id: str = "",
        jpg_profile_id: str = "",
        upload_batch_size: int = 5,
        jpeg_extensions: Sequence[str] = (".jpg", ".jpeg"),
    ) -> None:
        self.jobs = jobs
        self.storage = storage
        self.editor = editor
        self.api_key = api_key
        self.raw_profile_id = raw_profile_id
        self.jpg_profile_id = jpg_profile_id
        self.upload_batch_size = upload_batch_size
        self.jpeg_extensions = tuple(jpeg_extensions)

    def run_payload(self, payload: Dict[str, Any]) -> None:
        """
        Validate a raw trigger payload and run it.

        An invalid payload that still names a job fails that job; one that
        does not is re-raised, since there is no record to write to.
        """
        try:
            event = OrchestratorEvent.model_validate(payload)
        except ValidationError as exc:
            job_id = payload.get("jobId") if isinstance(payload, dict) else None
            if not isinstance(job_id, str) or not job_id.strip():
                raise
            logger.error(f"Invalid orchestrator payload for job {job_id}: {exc}")
            self._mark_failed(job_id, f"Invalid processing request: {exc}")
            return
        self.run(event)

    def run(self, event: OrchestratorEvent) -> None:
        job_id = event.job_id
        logger.info(f"Orchestrator started for job {job_id} ({len(event.raw_keys)} files, gallery={event.gallery_id or '-'})")

        try:
            if not (self.api_key or "").strip() or self.editor is None:
                raise ConfigurationError("IMAGEN_API_KEY is not configured. Set it to enable RAW processing.")
            profile = select_profile(
                event.raw_keys,
                self.raw_profile_id,
                self.jpg_profile_id,
                profile_id=event.profile_id,
                jpeg_extensions=self.jpeg_extensions,
            )
        except ConfigurationError as exc:
            logger.error(f"Orchestrator configuration error for job {job_id}: {exc}")
            self._mark_failed(job_id, str(exc))
            return

        patch: Dict[str, Any] = {"status": JobStatus.UPLOADING}
        if event.source is not None:
            patch["source"] = event.source.value
        self.jobs.update_job_status(job_id, patch, remove=STALE_ATTEMPT_FIELDS)

        try:
            project_id = self._start_remote_edit(job_id, event.raw_keys, profile)
        except Exception as exc:
            logger.error(f"Orchestrator failed for job {job_id}: {exc}")
            self._mark_failed(job_id, str(exc))
            return

        self.jobs.update_job_status(job_id, {"status": JobStatus.PROCESSING, "remoteProjectId": project_id})
        logger.info(f"Orchestrator complete for job {job_id}: project {project_id} editing with {profile.kind} profile")

    def _start_remote_edit(self, job_id: str, raw_keys: Sequence[str], profile: ProfileSelection) -> str:
        filenames = [key_basename(key) for key in raw_keys]
        duplicates = sorted({name for name in filenames if filenames.count(name) > 1})
        if duplicates:
            raise ValueError(f"Staged files share a filename and cannot be uploaded together: {', '.join(duplicates)}")

        project_id = self.editor.create_project().project_id
        logger.info(f"Created remote project {project_id} for job {job_id}")

        links = self.editor.get_upload_links(project_id, filenames)
        missing = [name for name in filenames if not links.get(name)]
        if missing:
            raise EditorResponseError(f"No upload link returned for: {', '.join(missing)}")

        self._upload_all(job_id, list(zip(raw_keys, filenames)), links)

        self.editor.start_edit(project_id, profile.profile_id)
        return project_id

    def _upload_all(self, job_id: str, files: List[Tuple[str, str]], links: Dict[str, str]) -> None:
        """Upload in sequential batches; files within a batch upload in parallel."""
        batches = list(chunked(files, self.upload_batch_size))
        for index, batch in enumerate(batches, start=1):
            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                # list() re-raises the first upload failure
                list(executor.map(lambda item: self._upload_one(item[0], item[1], links[item[1]]), batch))
            logger.info(f"Job {job_id}: uploaded batch {index}/{len(batches)} ({len(batch)} files)")

    def _upload_one(self, key: str, file_name: str, url: str) -> None:
        body = self.storage.get_object_bytes(key)
        self.editor.upload_file(url, body, file_name=file_name)

    def _mark_failed(self, job_id: str, message: str) -> None:
        self.jobs.update_job_status(job_id, {"status": JobStatus.FAILED, "error": message or "Unknown error"})


def build_orchestrator(settings: Any, profile_override: str = "") -> Orchestrator:
    """Wire an orchestrator from configuration (``profile_override`` replaces the RAW profile)."""
    editor = ImagenClient.from_settings(settings) if settings.editor.api_key else None
    return Orchestrator(
        jobs=JobStore(
            MetadataStore(settings.tables.admin),
            key_prefix=settings.tables.job_key_prefix,
            max_items=settings.tables.max_items,
        ),
        storage=MediaStorage(settings.storage.bucket),
        editor=editor,
        api_key=str(settings.editor.api_key or ""),
        raw_profile_id=str(profile_override or settings.editor.raw_profile_id or ""),
        jpg_profile_id=str(settings.editor.jpg_profile_id or ""),
        upload_batch_size=int(settings.orchestrator.upload_batch_size),
        jpeg_extensions=list(settings.orchestrator.jpeg_extensions),
    )


def handle_orchestrator_event(event: Dict[str, Any], context: Any = None) -> None:
    """Entry point for the trigger that creates a job."""
    settings = get_settings()
    configure_logging(settings.log_level)
    build_orchestrator(settings).run_payload(event)
