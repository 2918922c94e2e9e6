from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    QUEUED = "queued"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    EXPORTING = "exporting"
    DOWNLOADING = "downloading"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETE, JobStatus.FAILED})
POLLED_STATUSES = (JobStatus.PROCESSING, JobStatus.EXPORTING)


class JobSource(str, Enum):
    IMAGEN = "imagen"
    LEGACY = "legacy"


class ProcessingMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class ProcessingJob(BaseModel):
    """A job record as stored in the admin table (camelCase attribute names)."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, extra="ignore")

    job_id: str = Field(alias="jobId")
    gallery_id: str = Field(default="", alias="galleryId")
    raw_keys: List[str] = Field(default_factory=list, alias="rawKeys")
    status: JobStatus = JobStatus.QUEUED
    source: Optional[JobSource] = None
    remote_project_id: Optional[str] = Field(default=None, alias="remoteProjectId")
    result_keys: Optional[List[str]] = Field(default=None, alias="resultKeys")
    error: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    completed_at: Optional[str] = Field(default=None, alias="completedAt")

    @property
    def is_imagen(self) -> bool:
        return self.source == JobSource.IMAGEN.value

    def to_item(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class GalleryImage(BaseModel):
    key: str
    alt: str = ""


class Gallery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    images: List[GalleryImage] = Field(default_factory=list)


class OrchestratorEvent(BaseModel):
    """Payload handed to the orchestrator by whatever created the job."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId", min_length=1)
    gallery_id: Optional[str] = Field(default=None, alias="galleryId")
    raw_keys: List[str] = Field(alias="rawKeys", min_length=1)
    source: Optional[JobSource] = None
    profile_id: Optional[str] = Field(default=None, alias="profileId")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class CreateJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gallery_id: str = Field(default="", alias="galleryId")
    raw_keys: List[str] = Field(alias="rawKeys", min_length=1)
    source: Optional[JobSource] = None
    profile_id: Optional[str] = Field(default=None, alias="profileId")

    @field_validator("raw_keys")
    @classmethod
    def _keys_not_blank(cls, value: List[str]) -> List[str]:
        if any(not key.strip() for key in value):
            raise ValueError("rawKeys must not contain blank keys")
        return value


class ProcessingSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    processing_mode: ProcessingMode = Field(default=ProcessingMode.AUTO, alias="processingMode")
    profile_id: str = Field(default="", alias="profileId")


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    processing_mode: Optional[ProcessingMode] = Field(default=None, alias="processingMode")
    profile_id: Optional[str] = Field(default=None, alias="profileId")


class PollSummary(BaseModel):
    seen: int = 0
    advanced: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0


# Normalized shapes of the remote editing service's responses.


class ProjectCreated(BaseModel):
    project_id: str


class FileLink(BaseModel):
    file_name: str
    url: str


class ProjectStatus(BaseModel):
    status: str
    progress: Optional[float] = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_failed(self) -> bool:
        return self.status == "failed"
