from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..crm import CRMClient, get_crm
from ..documents import list_company_types, required_documents
from ..errors import ValidationFailed
from ..service_selection import list_services

router = APIRouter()


@router.get("/get-services")
def get_services(crm: CRMClient = Depends(get_crm)):
    return {"success": True, "services": list_services(crm)}


@router.get("/get-company-types")
def get_company_types(crm: CRMClient = Depends(get_crm)):
    return {"success": True, "companyTypes": list_company_types(crm)}


@router.get("/get-required-documents")
def get_required_documents(
    company_type: Optional[str] = Query(None, alias="companyType"),
    crm: CRMClient = Depends(get_crm),
):
    if not (company_type or "").strip():
        raise ValidationFailed("companyType is required")
    return {"success": True, **required_documents(crm, company_type.strip())}
