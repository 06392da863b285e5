from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from ..config import Settings, get_settings
from ..crm import CRMClient
from ..docai import DocumentAI, get_document_ai
from ..errors import OnboardingError, ValidationFailed
from ..validation import DocumentValidator

router = APIRouter()


def get_reference_crm(settings: Settings = Depends(get_settings)):
    # reference documents are optional, so a missing CRM config only disables that lookup
    try:
        client = CRMClient(settings)
    except OnboardingError:
        yield None
        return
    try:
        yield client
    finally:
        client.close()


@router.post("/validate-content")
def validate_content(
    file: Optional[UploadFile] = File(None),
    document_name: Optional[str] = Form(None, alias="documentName"),
    docai: DocumentAI = Depends(get_document_ai),
    crm: Optional[CRMClient] = Depends(get_reference_crm),
    settings: Settings = Depends(get_settings),
):
    if file is None:
        raise ValidationFailed("File is required")
    if not (document_name or "").strip():
        raise ValidationFailed("Document name is required")
    content = file.file.read()
    if not content:
        raise ValidationFailed("File is empty")
    validator = DocumentValidator(docai, settings, crm)
    verdict = validator.validate_upload(content, file.filename or "", file.content_type, document_name.strip())
    return verdict.to_dict()
