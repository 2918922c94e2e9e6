"""
DynamoDB persistence for processing jobs, galleries and pipeline settings.

``MetadataStore`` is a thin wrapper over a boto3 ``Table``: it adds no
business rules and performs no retries, so every ``ClientError`` reaches the
caller. The typed stores on top of it (``JobStore``, ``GalleryStore``,
``SettingsStore``) own the key layout of each record kind.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import boto3
from boto3.dynamodb.conditions import Attr, ConditionBase
from botocore.exceptions import ClientError

from .errors import JobClaimConflict
from .models import Gallery, GalleryImage, JobStatus, ProcessingJob, ProcessingSettings

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 10000


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def build_update_expression(patch: Dict[str, Any], remove: Sequence[str] = ()) -> Dict[str, Any]:
    """
    Turn a flat ``{field: value}`` patch into DynamoDB update parameters.

    Only the fields present in the patch are SET and only the fields named in
    ``remove`` are REMOVEd; other attributes on the item are left untouched.
    Placeholders are positional so reserved words such as ``status`` never
    need special handling.

    Example:
        >>> build_update_expression({"status": "complete"})
        {'UpdateExpression': 'SET #attr0 = :val0',
         'ExpressionAttributeNames': {'#attr0': 'status'},
         'ExpressionAttributeValues': {':val0': 'complete'}}
    """
    if not patch and not remove:
        raise ValueError("Update patch must contain at least one field")

    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    assignments: List[str] = []
    for index, (field, value) in enumerate(patch.items()):
        name_key = f"#attr{index}"
        value_key = f":val{index}"
        names[name_key] = field
        values[value_key] = value
        assignments.append(f"{name_key} = {value_key}")

    removals: List[str] = []
    for index, field in enumerate(remove, start=len(names)):
        name_key = f"#attr{index}"
        names[name_key] = field
        removals.append(name_key)

    clauses = []
    if assignments:
        clauses.append(f"SET {', '.join(assignments)}")
    if removals:
        clauses.append(f"REMOVE {', '.join(removals)}")

    params: Dict[str, Any] = {
        "UpdateExpression": " ".join(clauses),
        "ExpressionAttributeNames": names,
    }
    if values:
        params["ExpressionAttributeValues"] = values
    return params


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class MetadataStore:
    """Typed get/put/update/delete/query/scan access to one DynamoDB table."""

    def __init__(self, table_name: str, resource: Any = None, table: Any = None) -> None:
        if table is None:
            if not table_name:
                raise ValueError("A table name is required")
            table = (resource or boto3.resource("dynamodb")).Table(table_name)
        self.table_name = table_name
        self._table = table

    def get_item(self, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        response = self._table.get_item(Key=key)
        return response.get("Item")

    def put_item(self, item: Dict[str, Any], condition: Optional[ConditionBase] = None) -> None:
        params: Dict[str, Any] = {"Item": item}
        if condition is not None:
            params["ConditionExpression"] = condition
        self._table.put_item(**params)

    def update_item(
        self,
        key: Dict[str, Any],
        patch: Dict[str, Any],
        condition: Optional[ConditionBase] = None,
        remove: Sequence[str] = (),
    ) -> None:
        params: Dict[str, Any] = {"Key": key, **build_update_expression(patch, remove)}
        if condition is not None:
            params["ConditionExpression"] = condition
        self._table.update_item(**params)

    def update_raw(self, **params: Any) -> Dict[str, Any]:
        """Pass-through for update expressions the patch builder cannot express."""
        return self._table.update_item(**params)

    def delete_item(self, key: Dict[str, Any]) -> None:
        self._table.delete_item(Key=key)

    def query(self, **params: Any) -> List[Dict[str, Any]]:
        response = self._table.query(**params)
        return response.get("Items") or []

    def scan(self, **params: Any) -> List[Dict[str, Any]]:
        response = self._table.scan(**params)
        return response.get("Items") or []

    def query_all(self, max_items: int = DEFAULT_MAX_ITEMS, **params: Any) -> List[Dict[str, Any]]:
        return self._paginate(self._table.query, max_items, params)

    def scan_all(self, max_items: int = DEFAULT_MAX_ITEMS, **params: Any) -> List[Dict[str, Any]]:
        return self._paginate(self._table.scan, max_items, params)

    @staticmethod
    def _paginate(operation: Any, max_items: int, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Follow LastEvaluatedKey until exhausted or ``max_items`` is reached."""
        items: List[Dict[str, Any]] = []
        start_key = None
        while True:
            page_params = dict(params)
            if start_key:
                page_params["ExclusiveStartKey"] = start_key
            response = operation(**page_params)
            items.extend(response.get("Items") or [])
            start_key = response.get("LastEvaluatedKey")
            if not start_key or len(items) >= max_items:
                break
        if len(items) > max_items:
            logger.warning(f"Pagination stopped at safety cap of {max_items} items")
            del items[max_items:]
        return items


class JobStore:
    """Processing job records, keyed ``pk = sk = <prefix><jobId>``."""

    def __init__(self, store: MetadataStore, key_prefix: str = "PROCESSING_JOB#", max_items: int = DEFAULT_MAX_ITEMS) -> None:
        self._store = store
        self.key_prefix = key_prefix
        self.max_items = max_items

    def job_key(self, job_id: str) -> Dict[str, str]:
        pk = f"{self.key_prefix}{job_id}"
        return {"pk": pk, "sk": pk}

    def create_job(self, job: ProcessingJob) -> ProcessingJob:
        timestamp = utc_now_iso()
        job.created_at = job.created_at or timestamp
        job.updated_at = timestamp
        item = {**self.job_key(job.job_id), **job.to_item()}
        self._store.put_item(item, condition=Attr("pk").not_exists())
        return job

    def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        item = self._store.get_item(self.job_key(job_id))
        return ProcessingJob.model_validate(item) if item else None

    def update_job_status(
        self,
        job_id: str,
        patch: Dict[str, Any],
        expected_status: Optional[str] = None,
        remove: Sequence[str] = (),
    ) -> None:
        """
        Apply ``patch`` to a job, drop the ``remove`` attributes and stamp ``updatedAt``.

        When ``expected_status`` is given the write only happens if the stored
        status still equals it; otherwise ``JobClaimConflict`` is raised and
        nothing is written.
        """
        values = {key: value.value if isinstance(value, JobStatus) else value for key, value in patch.items()}
        values["updatedAt"] = utc_now_iso()

        condition = None
        if expected_status is not None:
            expected = expected_status.value if isinstance(expected_status, JobStatus) else expected_status
            condition = Attr("pk").exists() & Attr("status").eq(expected)

        try:
            self._store.update_item(self.job_key(job_id), values, condition=condition, remove=remove)
        except ClientError as exc:
            if condition is not None and _is_conditional_failure(exc):
                raise JobClaimConflict(job_id, expected_status) from exc
            raise

    def scan_jobs(self, statuses: Iterable[str]) -> List[ProcessingJob]:
        wanted = [status.value if isinstance(status, JobStatus) else status for status in statuses]
        filter_expression = Attr("pk").begins_with(self.key_prefix) & Attr("status").is_in(wanted)
        items = self._store.scan_all(max_items=self.max_items, FilterExpression=filter_expression)
        return [ProcessingJob.model_validate(item) for item in items]

    def list_jobs(self, gallery_id: Optional[str] = None) -> List[ProcessingJob]:
        filter_expression = Attr("pk").begins_with(self.key_prefix)
        if gallery_id:
            filter_expression = filter_expression & Attr("galleryId").eq(gallery_id)
        items = self._store.scan_all(max_items=self.max_items, FilterExpression=filter_expression)
        jobs = [ProcessingJob.model_validate(item) for item in items]
        return sorted(jobs, key=lambda job: job.created_at or "", reverse=True)


class GalleryStore:
    """Gallery records keyed by ``id``; only the ``images`` list is touched here."""

    def __init__(self, store: MetadataStore) -> None:
        self._store = store

    def get_gallery(self, gallery_id: str) -> Optional[Gallery]:
        item = self._store.get_item({"id": gallery_id})
        return Gallery.model_validate(item) if item else None

    def append_images(self, gallery_id: str, images: Sequence[GalleryImage]) -> bool:
        """
        Atomically append ``images`` to the gallery's image list.

        Uses ``list_append`` so concurrent writers never overwrite each other's
        entries. Returns False when the gallery does not exist.
        """
        if not images:
            return True
        try:
            self._store.update_raw(
                Key={"id": gallery_id},
                UpdateExpression="SET #images = list_append(if_not_exists(#images, :empty), :new), #updatedAt = :now",
                ConditionExpression=Attr("id").exists(),
                ExpressionAttributeNames={"#images": "images", "#updatedAt": "updatedAt"},
                ExpressionAttributeValues={
                    ":empty": [],
                    ":new": [image.model_dump() for image in images],
                    ":now": utc_now_iso(),
                },
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return True


class SettingsStore:
    """The single pipeline settings record in the admin table."""

    def __init__(self, store: MetadataStore, settings_key: str = "SETTINGS") -> None:
        self._store = store
        self._key = {"pk": settings_key, "sk": settings_key}

    def get_settings(self) -> ProcessingSettings:
        item = self._store.get_item(self._key) or {}
        return ProcessingSettings.model_validate(item)

    def save_settings(self, settings: ProcessingSettings) -> ProcessingSettings:
        self._store.put_item({**self._key, **settings.model_dump(by_alias=True, mode="json")})
        return settings
