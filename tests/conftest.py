"""
Pytest configuration and fixtures for the RAW pipeline tests.

The orchestrator, poller and job manager are exercised against in-memory
stand-ins for the job/gallery/settings stores and the media bucket, and a
``MagicMock`` in place of the editing-service client.
"""

from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import MagicMock

import pytest

from raw_pipeline_backend.database import utc_now_iso
from raw_pipeline_backend.editor_client import ImagenClient
from raw_pipeline_backend.errors import JobClaimConflict
from raw_pipeline_backend.models import (
    FileLink,
    Gallery,
    GalleryImage,
    JobStatus,
    ProcessingJob,
    ProcessingSettings,
    ProjectCreated,
    ProjectStatus,
)


def _status_value(value: Any) -> Any:
    return value.value if isinstance(value, JobStatus) else value


class InMemoryJobStore:
    """Dict-backed JobStore with the same conditional-update semantics."""

    def __init__(self) -> None:
        self.items: Dict[str, Dict[str, Any]] = {}
        self.transitions: List[tuple] = []

    def add(self, **fields: Any) -> ProcessingJob:
        job = ProcessingJob(**fields)
        self.items[job.job_id] = job.to_item()
        return job

    def create_job(self, job: ProcessingJob) -> ProcessingJob:
        job.created_at = job.created_at or utc_now_iso()
        job.updated_at = job.created_at
        self.items[job.job_id] = job.to_item()
        return job

    def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        item = self.items.get(job_id)
        return ProcessingJob.model_validate(item) if item else None

    def update_job_status(
        self, job_id: str, patch: Dict[str, Any], expected_status: Any = None, remove: Sequence[str] = ()
    ) -> None:
        item = self.items.setdefault(job_id, {"jobId": job_id})
        if expected_status is not None and item.get("status") != _status_value(expected_status):
            raise JobClaimConflict(job_id, expected_status)
        values = {key: _status_value(value) for key, value in patch.items()}
        if "status" in values:
            self.transitions.append((job_id, item.get("status"), values["status"]))
        item.update(values)
        for field in remove:
            item.pop(field, None)
        item["updatedAt"] = utc_now_iso()

    def scan_jobs(self, statuses) -> List[ProcessingJob]:
        wanted = {_status_value(status) for status in statuses}
        return [ProcessingJob.model_validate(item) for item in self.items.values() if item.get("status") in wanted]

    def list_jobs(self, gallery_id: Optional[str] = None) -> List[ProcessingJob]:
        jobs = [ProcessingJob.model_validate(item) for item in self.items.values()]
        if gallery_id:
            jobs = [job for job in jobs if job.gallery_id == gallery_id]
        return jobs

    def status_of(self, job_id: str) -> str:
        return self.items[job_id]["status"]


class InMemoryGalleryStore:
    def __init__(self) -> None:
        self.galleries: Dict[str, Gallery] = {}
        self.append_calls = 0

    def add(self, gallery_id: str, images: Optional[List[Dict[str, str]]] = None) -> Gallery:
        gallery = Gallery(id=gallery_id, images=[GalleryImage(**image) for image in images or []])
        self.galleries[gallery_id] = gallery
        return gallery

    def get_gallery(self, gallery_id: str) -> Optional[Gallery]:
        return self.galleries.get(gallery_id)

    def append_images(self, gallery_id: str, images) -> bool:
        self.append_calls += 1
        gallery = self.galleries.get(gallery_id)
        if gallery is None:
            return False
        gallery.images.extend(images)
        return True


class InMemorySettingsStore:
    def __init__(self, settings: Optional[ProcessingSettings] = None) -> None:
        self.settings = settings or ProcessingSettings()

    def get_settings(self) -> ProcessingSettings:
        return self.settings

    def save_settings(self, settings: ProcessingSettings) -> ProcessingSettings:
        self.settings = settings
        return settings


class InMemoryStorage:
    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.put_keys: List[str] = []
        self.deleted: List[str] = []
        self.delete_errors: List[Dict[str, Any]] = []

    def get_object_bytes(self, key: str) -> bytes:
        return self.objects[key]

    def put_object(self, key: str, body: bytes, content_type: str = "application/octet-stream") -> str:
        self.objects[key] = body
        self.put_keys.append(key)
        return key

    def delete_objects(self, keys) -> List[Dict[str, Any]]:
        for key in keys:
            self.deleted.append(key)
            self.objects.pop(key, None)
        return list(self.delete_errors)

    def generate_presigned_url(self, key: str, expiration: int = 3600) -> Optional[str]:
        return f"https://media.example.com/{key}?expires={expiration}"


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def gallery_store():
    return InMemoryGalleryStore()


@pytest.fixture
def settings_store():
    return InMemorySettingsStore()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def editor():
    """An editing-service client whose happy path succeeds."""
    client = MagicMock(spec=ImagenClient)
    client.create_project.return_value = ProjectCreated(project_id="proj-123")
    client.get_upload_links.side_effect = lambda project_id, names: {
        name: f"https://upload.example.com/{name}" for name in names
    }
    client.get_edit_status.return_value = ProjectStatus(status="in_progress")
    client.get_export_status.return_value = ProjectStatus(status="in_progress")
    client.get_export_download_links.return_value = [
        FileLink(file_name="IMG_0001.jpg", url="https://download.example.com/IMG_0001.jpg"),
    ]
    client.download.return_value = b"jpeg-bytes"
    return client
