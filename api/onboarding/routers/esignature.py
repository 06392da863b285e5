from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ..config import Settings, get_settings
from ..contract import render_contract
from ..crm import CRMClient, get_crm
from ..errors import ValidationFailed
from ..esignature import SignatureTokenManager
from ..schemas import SignatureSave, TokenCreate

router = APIRouter()


def get_token_manager(
    crm: CRMClient = Depends(get_crm),
    settings: Settings = Depends(get_settings),
) -> SignatureTokenManager:
    return SignatureTokenManager(crm, settings)


@router.post("/create-token")
def create_token(body: TokenCreate, manager: SignatureTokenManager = Depends(get_token_manager)):
    issued = manager.issue(body.email)
    return {
        "success": True,
        "signatureToken": issued.token,
        "signatureUrl": issued.url,
        "expiresAt": issued.expires_at.isoformat(),
        "leadName": issued.lead_name,
    }


@router.get("/get-document")
def get_document(
    token: Optional[str] = Query(None),
    manager: SignatureTokenManager = Depends(get_token_manager),
):
    if not token:
        raise ValidationFailed("Token required")
    lead = manager.fetch_for_signing(token)
    return {
        "success": True,
        "document": render_contract(lead),
        "lead": {
            "name": lead.get("name"),
            "companyName": lead.get("company_name") or lead.get("lead_name"),
            "email": lead.get("email_id"),
            "city": lead.get("city"),
            "status": lead.get("custom_registration_status"),
        },
    }


@router.post("/save-signature")
def save_signature(
    body: SignatureSave,
    request: Request,
    manager: SignatureTokenManager = Depends(get_token_manager),
):
    if not body.token:
        raise ValidationFailed("Token required")
    signer_ip = body.signer_ip or (request.client.host if request.client else None)
    receipt = manager.consume(body.token, body.signature_data, body.signer_name, signer_ip)
    return {
        "success": True,
        "message": "Document signed successfully",
        "signedAt": receipt.signed_at,
        "leadName": receipt.lead_name,
        "companyName": receipt.company_name,
    }
