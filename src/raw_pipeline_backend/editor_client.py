"""
HTTP client for the Imagen AI editing service.

All response bodies are decoded once, here, into the small models in
``models`` (``ProjectCreated``, ``FileLink``, ``ProjectStatus``). The service
is not consistent about wrapping payloads in ``{"data": ...}`` or about field
names, so the ``_extract_*`` helpers probe every shape we have seen and the
rest of the pipeline never sees raw JSON.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import EditorAPIError, EditorResponseError
from .models import FileLink, ProjectCreated, ProjectStatus

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"

PROJECT_ID_FIELDS = ("project_uuid", "projectUuid", "project_id", "projectId", "uuid", "id")
FILE_NAME_FIELDS = ("file_name", "fileName", "filename", "name")
UPLOAD_LINK_FIELDS = ("upload_link", "uploadLink", "upload_url", "uploadUrl", "url")
DOWNLOAD_LINK_FIELDS = ("download_link", "downloadLink", "download_url", "downloadUrl", "url")
FILE_LIST_FIELDS = ("files_list", "filesList", "files", "photos")


def _unwrap(payload: Any) -> List[Dict[str, Any]]:
    """Return the candidate objects to probe: the ``data`` envelope first, then the body itself."""
    candidates: List[Dict[str, Any]] = []
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            candidates.append(data)
            project = data.get("project")
            if isinstance(project, dict):
                candidates.append(project)
        project = payload.get("project")
        if isinstance(project, dict):
            candidates.append(project)
        candidates.append(payload)
    return candidates


def _first(obj: Dict[str, Any], fields: Iterable[str]) -> Optional[Any]:
    for field in fields:
        value = obj.get(field)
        if value not in (None, ""):
            return value
    return None


def _extract_project_id(payload: Any) -> ProjectCreated:
    for candidate in _unwrap(payload):
        project_id = _first(candidate, PROJECT_ID_FIELDS)
        if project_id is not None:
            return ProjectCreated(project_id=str(project_id))
    raise EditorResponseError(f"Project creation response did not include a project id: {payload!r}")


def _extract_file_links(payload: Any, link_fields: Sequence[str]) -> List[FileLink]:
    entries: List[Any] = []
    if isinstance(payload, list):
        entries = payload
    else:
        for candidate in _unwrap(payload):
            found = _first(candidate, FILE_LIST_FIELDS)
            if isinstance(found, list):
                entries = found
                break
            if isinstance(candidate.get("data"), list):
                entries = candidate["data"]
                break

    links: List[FileLink] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        links.append(FileLink(
            file_name=str(_first(entry, FILE_NAME_FIELDS) or ""),
            url=str(_first(entry, link_fields) or ""),
        ))
    return links


def _extract_status(payload: Any) -> ProjectStatus:
    for candidate in _unwrap(payload):
        status = candidate.get("status")
        if isinstance(status, str) and status:
            progress = candidate.get("progress")
            return ProjectStatus(
                status=normalize_status(status),
                progress=progress if isinstance(progress, (int, float)) else None,
            )
    raise EditorResponseError(f"Status response did not include a status: {payload!r}")


def normalize_status(value: str) -> str:
    """``"Completed"`` -> ``"completed"``, ``"In Progress"`` -> ``"in_progress"``."""
    return "_".join(value.strip().lower().replace("-", " ").split())


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, EditorAPIError):
        return exc.is_transient
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


class ImagenClient:
    """
    Wrapper around the editing service's project workflow.

    Every public call goes through ``_request``, which retries connection
    errors, timeouts, 429 and 5xx responses with exponential backoff and
    fails immediately on any other non-2xx status.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        retry_attempts: int = 3,
        retry_wait_min: float = 1,
        retry_wait_max: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._api_headers = {API_KEY_HEADER: str(api_key), "Content-Type": "application/json"}
        self._retrying = retry(
            stop=stop_after_attempt(max(1, int(retry_attempts))),
            wait=wait_exponential(multiplier=1, min=retry_wait_min, max=retry_wait_max),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    @classmethod
    def from_settings(cls, settings: Any, session: Optional[requests.Session] = None) -> "ImagenClient":
        editor = settings.editor
        return cls(
            api_key=editor.api_key,
            base_url=editor.base_url,
            session=session,
            timeout=editor.request_timeout,
            retry_attempts=editor.retry_attempts,
            retry_wait_min=editor.retry_wait_min,
            retry_wait_max=editor.retry_wait_max,
        )

    def _request(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> requests.Response:
        if authenticated:
            headers = {**self._api_headers, **kwargs.pop("headers", {})}
            kwargs["headers"] = headers

        def send() -> requests.Response:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
            if not response.ok:
                raise EditorAPIError(operation, response.status_code, response.text)
            return response

        return self._retrying(send)()

    def _call_json(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(operation, method, f"{self.base_url}{path}", **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise EditorResponseError(f"{operation} returned a non-JSON body: {response.text[:200]}") from exc

    def create_project(self) -> ProjectCreated:
        payload = self._call_json("Project creation", "POST", "/projects/")
        return _extract_project_id(payload)

    def get_upload_links(self, project_id: str, filenames: Sequence[str]) -> Dict[str, str]:
        """Request presigned upload links for every file in one call; returns ``{file_name: url}``."""
        payload = self._call_json(
            "Upload link request",
            "POST",
            f"/projects/{project_id}/get_temporary_upload_links",
            json={"files_list": [{"file_name": name} for name in filenames]},
        )
        return {link.file_name: link.url for link in _extract_file_links(payload, UPLOAD_LINK_FIELDS)}

    def upload_file(self, url: str, body: bytes, file_name: str = "") -> None:
        # Presigned links carry their own auth; sending the API key would break the signature.
        self._request(f"Upload of {file_name or 'file'}", "PUT", url, authenticated=False, data=body)

    def start_edit(self, project_id: str, profile_key: str) -> None:
        self._call_json(
            "Edit start",
            "POST",
            f"/projects/{project_id}/edit",
            json={"profile_key": profile_key},
        )

    def get_edit_status(self, project_id: str) -> ProjectStatus:
        return _extract_status(self._call_json("Edit status check", "GET", f"/projects/{project_id}/edit/status"))

    def start_export(self, project_id: str, idempotency_key: Optional[str] = None) -> None:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        self._call_json("Export start", "POST", f"/projects/{project_id}/export", headers=headers)

    def get_export_status(self, project_id: str) -> ProjectStatus:
        return _extract_status(self._call_json("Export status check", "GET", f"/projects/{project_id}/export/status"))

    def get_export_download_links(self, project_id: str) -> List[FileLink]:
        payload = self._call_json(
            "Export download link request",
            "GET",
            f"/projects/{project_id}/export/get_temporary_download_links",
        )
        return _extract_file_links(payload, DOWNLOAD_LINK_FIELDS)

    def download(self, url: str, file_name: str = "") -> bytes:
        response = self._request(f"Download of {file_name or 'file'}", "GET", url, authenticated=False)
        return response.content
