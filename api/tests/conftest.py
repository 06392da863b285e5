import copy
import json
from collections import defaultdict
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from onboarding.config import Settings, get_settings
from onboarding.crm import get_crm
from onboarding.docai import DocumentAIError, get_document_ai
from onboarding.errors import CRMError
from onboarding.main import app
from onboarding.routers.documents import get_reference_crm

NAME_PREFIX = {"Lead": "CRM-LEAD", "Address": "ADDR", "Contact": "CONT", "File": "FILE"}


def _field_values(record: dict, field: str) -> list:
    if field in record:
        return [record[field]]
    values = []
    for value in record.values():
        if isinstance(value, list):
            values.extend(row[field] for row in value if isinstance(row, dict) and field in row)
    return values


def _matches(record: dict, flt: list) -> bool:
    field, op, expected = flt
    values = _field_values(record, field)
    if op == "=":
        return any(v == expected for v in values)
    if op == "!=":
        return all(v != expected for v in values)
    if op == "in":
        return any(v in expected for v in values)
    raise AssertionError(f"unsupported filter operator {op}")


class FakeCRM:
    """In-memory stand-in for CRMClient with the same call surface."""

    def __init__(self, base_url: str = "https://crm.test"):
        self.base_url = base_url
        self.records: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.files: Dict[str, bytes] = {}
        self.failures: Dict[tuple, list] = {}
        self.calls: List[tuple] = []
        self._seq = 0

    # ---------- test helpers ----------
    def add(self, doctype: str, record: dict) -> dict:
        record = copy.deepcopy(record)
        if "name" not in record:
            record["name"] = self._next_name(doctype)
        self.records[doctype][record["name"]] = record
        return record

    def all(self, doctype: str) -> List[dict]:
        return list(self.records[doctype].values())

    def fail(self, op: str, doctype: str, error: Optional[CRMError] = None, times: Optional[int] = None):
        error = error or CRMError("boom", code=CRMError.UPSTREAM, http_status=500)
        self.failures[(op, doctype)] = [error, times]

    def writes(self, op: str, doctype: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == op and c[1] == doctype]

    def _next_name(self, doctype: str) -> str:
        self._seq += 1
        return f"{NAME_PREFIX.get(doctype, doctype.upper())}-{self._seq:05d}"

    def _check(self, op: str, doctype: str):
        entry = self.failures.get((op, doctype))
        if entry is None:
            return
        error, remaining = entry
        if remaining is not None:
            if remaining <= 1:
                del self.failures[(op, doctype)]
            else:
                entry[1] = remaining - 1
        raise error

    # ---------- client surface ----------
    def get(self, doctype: str, name: str) -> dict:
        self.calls.append(("get", doctype, name))
        self._check("get", doctype)
        record = self.records[doctype].get(name)
        if record is None:
            raise CRMError(f"{doctype} {name} not found", code=CRMError.NOT_FOUND, http_status=404)
        return copy.deepcopy(record)

    def find_all(self, doctype: str, filters=None, fields=None, limit=None) -> List[dict]:
        self.calls.append(("find", doctype, json.dumps(filters)))
        self._check("find", doctype)
        rows = [r for r in self.records[doctype].values() if all(_matches(r, f) for f in filters or [])]
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    def find(self, doctype: str, filters, fields=None) -> Optional[dict]:
        rows = self.find_all(doctype, filters, fields=fields, limit=1)
        return rows[0] if rows else None

    def create(self, doctype: str, fields: dict) -> dict:
        self.calls.append(("create", doctype, copy.deepcopy(fields)))
        self._check("create", doctype)
        if doctype == "Lead" and fields.get("email_id"):
            if any(r.get("email_id") == fields["email_id"] for r in self.records["Lead"].values()):
                raise CRMError("Duplicate entry", code=CRMError.DUPLICATE, http_status=409)
        return copy.deepcopy(self.add(doctype, fields))

    def update(self, doctype: str, name: str, fields: dict) -> dict:
        self.calls.append(("update", doctype, name, copy.deepcopy(fields)))
        self._check("update", doctype)
        record = self.records[doctype].get(name)
        if record is None:
            raise CRMError(f"{doctype} {name} not found", code=CRMError.NOT_FOUND, http_status=404)
        record.update(copy.deepcopy(fields))
        return copy.deepcopy(record)

    def upload_file(self, filename, content, content_type="application/octet-stream",
                    doctype=None, docname=None, is_private=True) -> str:
        self.calls.append(("upload", doctype, docname, filename))
        self._check("upload", doctype)
        url = f"/{'private' if is_private else 'public'}/files/{filename}"
        self.files[url] = content
        return url

    def download(self, file_url: str) -> bytes:
        self._check("download", "File")
        path = file_url.replace(self.base_url, "")
        if path not in self.files:
            raise CRMError("file not found", code=CRMError.NOT_FOUND, http_status=404)
        return self.files[path]

    def absolute_url(self, file_url: str) -> str:
        return file_url if file_url.startswith("http") else f"{self.base_url}/{file_url.lstrip('/')}"

    def close(self):
        pass


class FakeDocumentAI:
    """Scripted document service: queue answers, inspect the prompts it received."""

    def __init__(self):
        self.answers: List[object] = []
        self.ocr_text = ""
        self.prompts: List[tuple] = []
        self.ocr_calls: List[str] = []

    def complete_json(self, system: str, user: str) -> dict:
        self.prompts.append((system, user))
        if not self.answers:
            raise DocumentAIError("no scripted answer")
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def extract_text_from_image(self, content: bytes, mime_type: str) -> str:
        self.ocr_calls.append(mime_type)
        if isinstance(self.ocr_text, Exception):
            raise self.ocr_text
        return self.ocr_text


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        crm_base_url="https://crm.test",
        crm_api_token="key:secret",
        openai_api_key="sk-test",
        app_base_url="https://onboarding.test/",
        reference_documents_dir=str(tmp_path / "reference-documents"),
    )


@pytest.fixture
def crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def docai() -> FakeDocumentAI:
    return FakeDocumentAI()


@pytest.fixture
def registered_user(crm):
    crm.add("User", {"name": "a@x.com", "email": "a@x.com", "first_name": "Ayse", "mobile_no": "+49 1111"})
    crm.add("Custom User Register", {
        "name": "REG-0001",
        "user": "a@x.com",
        "telephone": "+49 30 1234",
        "company_name": "Profile GmbH",
        "reference": "Sales Team A",
    })
    return "a@x.com"


@pytest.fixture
def client(crm, docai, settings):
    app.dependency_overrides[get_crm] = lambda: crm
    app.dependency_overrides[get_reference_crm] = lambda: crm
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_document_ai] = lambda: docai
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
