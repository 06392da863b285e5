import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import Settings
from .crm import CRMClient
from .documents import COMPLETED, PENDING_SIGNATURE
from .errors import Conflict, Expired, NotFound, OnboardingError, ValidationFailed
from .utils import b64png_to_bytes, format_crm_datetime, parse_crm_datetime, utcnow

logger = logging.getLogger(__name__)

LEAD_DOCTYPE = "Lead"
TOKEN_FIELD = "custom_esignature_token"
EXPIRY_FIELD = "custom_esignature_token_expiry"
SIGNED_AT_FIELD = "custom_esignature_signed_at"
STATUS_FIELD = "custom_registration_status"
TOKEN_BYTES = 32


def token_prefix(token: str) -> str:
    return f"{token[:10]}..." if token else ""


@dataclass
class IssuedToken:
    token: str
    url: str
    expires_at: datetime
    lead_name: str


@dataclass
class SignatureReceipt:
    lead_name: str
    signed_at: str
    company_name: str
    stored_as: str  # "file" or "inline"


class SignatureTokenManager:
    def __init__(self, crm: CRMClient, settings: Settings, clock: Callable[[], datetime] = utcnow):
        self.crm = crm
        self.settings = settings
        self.clock = clock

    def signing_url(self, token: str) -> str:
        return f"{self.settings.signing_base_url}/e-signature-document/{token}"

    def issue(self, email: str) -> IssuedToken:
        email = (email or "").strip()
        if not email:
            raise ValidationFailed("Email required")
        row = self.crm.find(LEAD_DOCTYPE, [["email_id", "=", email]], fields=["name", SIGNED_AT_FIELD])
        if not row:
            raise NotFound("Lead not found")
        if row.get(SIGNED_AT_FIELD):
            raise Conflict("Document already signed")
        token = secrets.token_hex(TOKEN_BYTES)
        expires_at = self.clock() + timedelta(days=self.settings.signature_token_days)
        # overwriting the fields supersedes any earlier unused token
        self.crm.update(LEAD_DOCTYPE, row["name"], {
            TOKEN_FIELD: token,
            EXPIRY_FIELD: format_crm_datetime(expires_at),
            STATUS_FIELD: PENDING_SIGNATURE,
        })
        logger.info("signing token %s issued for lead %s", token_prefix(token), row["name"])
        return IssuedToken(token=token, url=self.signing_url(token), expires_at=expires_at, lead_name=row["name"])

    def fetch_for_signing(self, token: str) -> dict:
        """Return the full lead the token belongs to, or raise NotFound/Conflict/Expired."""
        token = (token or "").strip()
        if not token:
            raise ValidationFailed("Token required")
        row = self.crm.find(LEAD_DOCTYPE, [[TOKEN_FIELD, "=", token]], fields=["name"])
        if not row:
            raise NotFound("Invalid or expired token")
        lead = self.crm.get(LEAD_DOCTYPE, row["name"])
        if not lead:
            raise NotFound("Lead not found")
        if lead.get(SIGNED_AT_FIELD):
            raise Conflict("Document already signed")
        expiry = parse_crm_datetime(lead.get(EXPIRY_FIELD))
        if expiry is not None and expiry < self.clock():
            raise Expired("Token expired")
        return lead

    def _store_artifact(self, lead_name: str, signature_data: str, signed_at: datetime) -> dict:
        content = b64png_to_bytes(signature_data)
        if content:
            filename = f"signature_{lead_name}_{int(signed_at.timestamp())}.png"
            try:
                file_url = self.crm.upload_file(
                    filename, content, "image/png", doctype=LEAD_DOCTYPE, docname=lead_name, is_private=True,
                )
                return {"custom_esignature_file": self.crm.absolute_url(file_url)}
            except OnboardingError as exc:
                logger.warning("signature upload for lead %s failed, storing inline: %s", lead_name, exc.message)
        # best effort: anything past the limit is lost
        return {"custom_esignature_data": signature_data[: self.settings.signature_inline_limit]}

    def consume(
        self,
        token: str,
        signature_data: str,
        signer_name: Optional[str] = None,
        signer_ip: Optional[str] = None,
    ) -> SignatureReceipt:
        if not (signature_data or "").strip():
            raise ValidationFailed("Signature data required")
        # never reuse an earlier validity check
        lead = self.fetch_for_signing(token)
        lead_name = lead["name"]
        signed_at = self.clock()
        artifact = self._store_artifact(lead_name, signature_data, signed_at)
        fields = {
            SIGNED_AT_FIELD: format_crm_datetime(signed_at),
            "custom_esignature_signer_name": signer_name or lead.get("lead_name") or "",
            "custom_esignature_signer_ip": signer_ip or "",
            STATUS_FIELD: COMPLETED,
            TOKEN_FIELD: "",
            EXPIRY_FIELD: None,
            **artifact,
        }
        self.crm.update(LEAD_DOCTYPE, lead_name, fields)
        logger.info("lead %s signed via token %s", lead_name, token_prefix(token))
        return SignatureReceipt(
            lead_name=lead_name,
            signed_at=fields[SIGNED_AT_FIELD],
            company_name=lead.get("company_name") or lead.get("lead_name") or "",
            stored_as="file" if "custom_esignature_file" in artifact else "inline",
        )
