import logging
from typing import Dict, List, Optional, Tuple

from .crm import CRMClient
from .errors import CRMError, NotFound, OnboardingError
from .schemas import Documents, DocumentSlot
from .utils import canonical_json, parse_json_field

logger = logging.getLogger(__name__)

COMPANY_TYPE_DOCTYPE = "Company Type"
LEAD_DOCTYPE = "Lead"

NOT_STARTED = "Not Started"
IN_PROGRESS = "In Progress"
PENDING_SIGNATURE = "Pending E-Signature"
COMPLETED = "Completed"
STATUS_ORDER = [NOT_STARTED, IN_PROGRESS, PENDING_SIGNATURE, COMPLETED]

UploadedFile = Tuple[str, bytes, str]  # filename, content, content type


def advance_status(current: Optional[str], target: str) -> Optional[str]:
    """Return ``target`` when it moves the status forward, else None."""
    current_rank = STATUS_ORDER.index(current) if current in STATUS_ORDER else 0
    if STATUS_ORDER.index(target) > current_rank or not current:
        return target
    return None


def slot_has_upload(slot: DocumentSlot) -> bool:
    return bool(slot.files) or bool(slot.date)


def progress_summary(slots: Dict[str, DocumentSlot], required: Optional[int] = None) -> str:
    uploaded = sum(1 for slot in slots.values() if slot_has_upload(slot))
    accepted = sum(1 for slot in slots.values() if slot.accepted)
    total = max(required or 0, len(slots))
    return f"{uploaded} of {total} documents uploaded, {accepted} accepted"


def serialize_slots(slots: Dict[str, DocumentSlot]) -> str:
    data = {}
    for slot_id, slot in slots.items():
        if not slot_has_upload(slot) and slot.accepted is None:
            continue
        data[slot_id] = {"files": list(slot.files), "date": slot.date, "accepted": bool(slot.accepted)}
    return canonical_json(data)


def load_slots(lead: dict) -> Dict[str, DocumentSlot]:
    raw = parse_json_field(lead.get("custom_document_data"), {})
    if not isinstance(raw, dict):
        return {}
    return {slot_id: DocumentSlot.model_validate(value or {}) for slot_id, value in raw.items()}


class DocumentCollectionTracker:
    def __init__(self, crm: CRMClient):
        self.crm = crm

    def build_fields(self, documents: Documents, current_status: Optional[str] = None) -> dict:
        fields = {}
        if documents.type_of_company:
            fields["custom_type_of_company"] = documents.type_of_company
        if documents.document_data is not None:
            fields["custom_document_data"] = serialize_slots(documents.document_data)
            fields["custom_document_progress"] = progress_summary(documents.document_data)
        status = advance_status(current_status, IN_PROGRESS)
        if status:
            fields["custom_registration_status"] = status
        return fields

    def attach_uploads(
        self,
        lead: dict,
        documents: Optional[Documents],
        uploads: Dict[str, List[UploadedFile]],
    ) -> Dict[str, dict]:
        """Store uploaded files on the lead and record their URLs in the matching slots.

        Without slot data in this step the slots already stored on ``lead`` are
        the starting point, so earlier uploads are kept.
        """
        if not uploads:
            return {}
        lead_name = lead["name"]
        if documents is not None and documents.document_data is not None:
            slots = dict(documents.document_data)
        else:
            slots = load_slots(lead)
        report: Dict[str, dict] = {}
        for slot_id, files in uploads.items():
            slot = slots.get(slot_id) or DocumentSlot()
            urls = []
            errors = []
            for filename, content, content_type in files:
                try:
                    urls.append(self.crm.upload_file(
                        filename, content, content_type, doctype=LEAD_DOCTYPE, docname=lead_name,
                    ))
                except OnboardingError as exc:
                    logger.warning("upload of %s for lead %s failed: %s", filename, lead_name, exc.message)
                    errors.append(f"{filename}: {exc.message}")
            if urls:
                uploaded_names = {name for name, _, _ in files}
                kept = [f for f in slot.files if f not in uploaded_names]
                slots[slot_id] = slot.model_copy(update={"files": kept + urls})
            report[slot_id] = {"success": not errors, "files": urls}
            if errors:
                report[slot_id]["errors"] = errors
        if any(entry["files"] for entry in report.values()):
            try:
                self.crm.update(LEAD_DOCTYPE, lead_name, {
                    "custom_document_data": serialize_slots(slots),
                    "custom_document_progress": progress_summary(slots),
                })
            except OnboardingError as exc:
                logger.warning("document data for lead %s not saved: %s", lead_name, exc.message)
                for entry in report.values():
                    entry["success"] = False
                    entry.setdefault("errors", []).append(exc.message)
        return report


# ---------- company type catalog ----------

def _company_type_label(row: dict) -> str:
    return row.get("custom_company_type_name") or row.get("company_type_name") or row.get("name") or ""


def list_company_types(crm: CRMClient) -> List[dict]:
    try:
        rows = crm.find_all(COMPANY_TYPE_DOCTYPE, [["custom_is_active", "=", 1]], fields=["*"])
    except CRMError as exc:
        if exc.code != CRMError.VALIDATION:
            raise
        # older installs have no active flag
        rows = crm.find_all(COMPANY_TYPE_DOCTYPE, fields=["*"])
    return [
        {
            "id": row.get("name"),
            "name": _company_type_label(row),
            "description": row.get("custom_description") or row.get("description") or "",
        }
        for row in rows
    ]


def _find_company_type(crm: CRMClient, company_type: str) -> Optional[dict]:
    try:
        return crm.get(COMPANY_TYPE_DOCTYPE, company_type)
    except CRMError as exc:
        if not exc.is_not_found:
            raise
    row = crm.find(COMPANY_TYPE_DOCTYPE, [["custom_company_type_name", "=", company_type]], fields=["name"])
    if not row:
        return None
    return crm.get(COMPANY_TYPE_DOCTYPE, row["name"])


def required_documents(crm: CRMClient, company_type: str) -> dict:
    record = _find_company_type(crm, company_type)
    if not record:
        raise NotFound(f"Company Type '{company_type}' not found")
    rows = record.get("custom_required_document") or record.get("required_documents") or []
    documents = []
    for index, row in enumerate(rows):
        name = row.get("custom_document_name") or row.get("document_name") or ""
        documents.append({
            "id": row.get("name") or name or f"doc_{index}",
            "documentName": name,
            "documentType": row.get("custom_document_type") or row.get("document_type") or "",
            "isRequired": bool(row.get("custom_is_required", row.get("is_required", 1))),
            "maxFiles": row.get("custom_max_files") or row.get("max_files") or 5,
            "allowedFileTypes": row.get("custom_allowed_file_types") or row.get("allowed_file_types") or "PDF, JPG, PNG",
            "isDateField": bool(row.get("custom_is_date_field", row.get("is_date_field", 0))),
        })
    return {
        "companyType": {
            "id": record.get("name"),
            "name": _company_type_label(record),
            "description": record.get("custom_description") or record.get("description") or "",
        },
        "requiredDocuments": documents,
    }
