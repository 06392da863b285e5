
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from fastapi import Depends

from .config import Settings, get_settings
from .errors import CRMError, summarize_upstream_error

logger = logging.getLogger(__name__)

DUPLICATE_MARKERS = ("DuplicateEntryError", "UniqueValidationError", "must be unique", "Duplicate entry")


def _unwrap(payload):
    if isinstance(payload, dict):
        if "data" in payload:
            return payload["data"]
        if "message" in payload:
            return payload["message"]
    return payload


def _classify(status: int, body: str) -> str:
    if status == 409 or any(marker in body for marker in DUPLICATE_MARKERS):
        return CRMError.DUPLICATE
    if status == 404 or "DoesNotExistError" in body:
        return CRMError.NOT_FOUND
    if status in (400, 417) or "ValidationError" in body or "MandatoryError" in body:
        return CRMError.VALIDATION
    if status in (502, 503, 504):
        return CRMError.UNAVAILABLE
    return CRMError.UPSTREAM


class CRMClient:
    """Resource-oriented access to the CRM (``/api/resource/{doctype}``)."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        if not settings.crm_base_url or not settings.crm_api_token:
            raise CRMError("CRM connection is not configured", code=CRMError.UNAVAILABLE)
        self.base_url = settings.crm_base_url.rstrip("/")
        self.timeout = settings.crm_timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"token {settings.crm_api_token}",
            "Accept": "application/json",
        })

    # ---------- transport ----------
    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            logger.error("crm %s %s timed out", method, path)
            raise CRMError("The CRM service did not respond in time.", code=CRMError.UNAVAILABLE) from exc
        except requests.exceptions.RequestException as exc:
            logger.error("crm %s %s failed: %s", method, path, exc)
            raise CRMError("The CRM service is unreachable.", code=CRMError.UNAVAILABLE) from exc
        if not resp.ok:
            body = resp.text or ""
            code = _classify(resp.status_code, body)
            logger.warning("crm %s %s -> %s (%s)", method, path, resp.status_code, code)
            raise CRMError(summarize_upstream_error(body), code=code, http_status=resp.status_code, body=body)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise CRMError("The CRM service returned an unreadable response.") from exc

    @staticmethod
    def _resource_path(doctype: str, name: Optional[str] = None) -> str:
        path = f"/api/resource/{quote(doctype, safe='')}"
        if name is not None:
            path += f"/{quote(str(name), safe='')}"
        return path

    # ---------- resources ----------
    def get(self, doctype: str, name: str) -> dict:
        return _unwrap(self._request("GET", self._resource_path(doctype, name)))

    def find_all(
        self,
        doctype: str,
        filters: Optional[List[list]] = None,
        fields: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[dict]:
        params: Dict[str, Any] = {"fields": json.dumps(fields or ["*"])}
        if filters:
            params["filters"] = json.dumps(filters)
        if limit is not None:
            params["limit_page_length"] = limit
        rows = _unwrap(self._request("GET", self._resource_path(doctype), params=params))
        return rows if isinstance(rows, list) else []

    def find(self, doctype: str, filters: List[list], fields: Optional[List[str]] = None) -> Optional[dict]:
        rows = self.find_all(doctype, filters, fields=fields, limit=1)
        return rows[0] if rows else None

    def create(self, doctype: str, fields: dict) -> dict:
        return _unwrap(self._request("POST", self._resource_path(doctype), json=fields))

    def update(self, doctype: str, name: str, fields: dict) -> dict:
        return _unwrap(self._request("PUT", self._resource_path(doctype, name), json=fields))

    # ---------- files ----------
    def upload_file(
        self,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        doctype: Optional[str] = None,
        docname: Optional[str] = None,
        is_private: bool = True,
    ) -> str:
        data = {"is_private": "1" if is_private else "0", "folder": "Home/Attachments"}
        if doctype and docname:
            data.update({"doctype": doctype, "docname": docname})
        result = _unwrap(self._request(
            "POST",
            "/api/method/upload_file",
            files={"file": (filename, content, content_type)},
            data=data,
        ))
        if isinstance(result, dict):
            if result.get("file_url"):
                return result["file_url"]
            if result.get("file_name"):
                return f"/private/files/{result['file_name']}"
        raise CRMError("File upload returned no file location.")

    def download(self, file_url: str) -> bytes:
        url = file_url if file_url.startswith("http") else f"{self.base_url}/{file_url.lstrip('/')}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise CRMError("The CRM file could not be downloaded.", code=CRMError.UNAVAILABLE) from exc
        if not resp.ok:
            raise CRMError("The CRM file could not be downloaded.", code=_classify(resp.status_code, resp.text or ""),
                           http_status=resp.status_code)
        return resp.content

    def absolute_url(self, file_url: str) -> str:
        if file_url.startswith("http"):
            return file_url
        return f"{self.base_url}/{file_url.lstrip('/')}"

    def close(self):
        self.session.close()


def get_crm(settings: Settings = Depends(get_settings)):
    client = CRMClient(settings)
    try:
        yield client
    finally:
        client.close()
