import json
import re
from typing import Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from ..config import Settings, get_settings
from ..crm import CRMClient, get_crm
from ..documents import UploadedFile
from ..errors import ValidationFailed
from ..leads import LeadUpsertEngine, check_lead, lead_snapshot
from ..schemas import EmailLookup, LeadUpdate

router = APIRouter()

SECTIONS = ("companyInfo", "businesses", "paymentInfo", "documents", "services")
FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")
UPLOAD_FIELD = re.compile(r"^document_(.+)_(\d+)$")


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    where = ".".join(str(p) for p in err.get("loc", ()))
    if where == "email":
        return "Email is required to find user"
    return f"{where}: {err.get('msg')}" if where else err.get("msg", "Invalid request")


def parse_update(payload: dict) -> LeadUpdate:
    if not (payload.get("email") or "").strip():
        raise ValidationFailed("Email is required to find user")
    try:
        return LeadUpdate.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailed(_first_error(exc)) from exc


async def read_form(request: Request):
    form = await request.form()
    payload: dict = {"email": form.get("email") or ""}
    for key in SECTIONS:
        raw = form.get(key)
        if raw is None or isinstance(raw, UploadFile):
            continue
        try:
            payload[key] = json.loads(raw)
        except ValueError as exc:
            raise ValidationFailed(f"{key} is not valid JSON") from exc

    uploads: Dict[str, List[UploadedFile]] = {}
    for key, value in form.multi_items():
        match = UPLOAD_FIELD.match(key)
        if not match or not isinstance(value, UploadFile):
            continue
        content = await value.read()
        if not content:
            continue
        uploads.setdefault(match.group(1), []).append(
            (value.filename or key, content, value.content_type or "application/octet-stream")
        )
    return payload, uploads


@router.post("/update-lead")
async def update_lead(
    request: Request,
    crm: CRMClient = Depends(get_crm),
    settings: Settings = Depends(get_settings),
):
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_TYPES):
        payload, uploads = await read_form(request)
    else:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise ValidationFailed("Request body must be JSON") from exc
        if not isinstance(payload, dict):
            raise ValidationFailed("Request body must be a JSON object")
        uploads = {}

    update = parse_update(payload)
    engine = LeadUpsertEngine(crm, settings)
    result = await run_in_threadpool(engine.upsert, update, uploads)
    return {
        "success": True,
        "lead": result.lead,
        "created": result.created,
        "message": result.message,
        "status": result.status,
    }


@router.post("/check-lead")
def check_lead_route(body: EmailLookup, crm: CRMClient = Depends(get_crm)):
    if not body.email.strip():
        raise ValidationFailed("Email is required")
    return check_lead(crm, body.email.strip())


@router.post("/get-lead")
def get_lead_route(body: EmailLookup, crm: CRMClient = Depends(get_crm)):
    if not body.email.strip():
        raise ValidationFailed("Email is required")
    return {"success": True, **lead_snapshot(crm, body.email.strip())}
