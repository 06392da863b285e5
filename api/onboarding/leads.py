import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .addresses import ADDRESS_DOCTYPE, BILLING, SHOP, AddressReconciler
from .config import Settings
from .crm import CRMClient
from .documents import IN_PROGRESS, DocumentCollectionTracker, UploadedFile, advance_status, load_slots
from .errors import CRMError, NotFound, OnboardingError
from .identity import Identity, IdentityResolver
from .schemas import Business, CompanyInfo, LeadUpdate, PaymentInfo
from .service_selection import ServiceSelectionWriter, selected_service_ids
from .utils import canonical_json, clean, normalize_country, parse_json_field

logger = logging.getLogger(__name__)

LEAD_DOCTYPE = "Lead"
LEAD_LOOKUP_FIELDS = ["name", "email_id", "company_name", "lead_name", "custom_registration_status"]


@dataclass
class UpsertResult:
    lead: dict
    created: bool
    status: Dict[str, object] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return "Lead created successfully" if self.created else "Lead updated successfully"


def fallback_street(info: CompanyInfo) -> Optional[str]:
    parts = [clean(info.city), clean(info.zip_code), normalize_country(clean(info.country))]
    joined = " ".join(p for p in parts if p).strip()
    return joined or None


def company_fields(info: CompanyInfo) -> dict:
    fields = {}
    street = clean(info.street) or fallback_street(info)
    if street:
        fields["address_line1"] = street
    if clean(info.company_name):
        fields["company_name"] = info.company_name.strip()
    if clean(info.city):
        fields["city"] = info.city.strip()
    if clean(info.zip_code):
        fields["pincode"] = info.zip_code.strip()
    if clean(info.federal_state):
        fields["state"] = info.federal_state.strip()
    if clean(info.country):
        fields["country"] = normalize_country(info.country)
    if clean(info.vat_identification_number):
        fields["custom_vat_identification_number"] = info.vat_identification_number.strip()
    if clean(info.tax_id_number):
        fields["custom_custom_tax_id_number"] = info.tax_id_number.strip()
    if info.restaurant_count not in (None, ""):
        try:
            fields["custom_restaurant_count"] = max(int(info.restaurant_count), 1)
        except (TypeError, ValueError):
            fields["custom_restaurant_count"] = 1
    return fields


def payment_fields(info: PaymentInfo) -> dict:
    mapping = {
        "custom_account_holder": info.account_holder,
        "custom_iban": info.iban,
        "custom_bic": info.bic,
    }
    return {key: value.strip() for key, value in mapping.items() if clean(value)}


def businesses_field(businesses: List[Business]) -> str:
    rows = []
    for business in businesses:
        row = business.model_dump(by_alias=True, exclude_none=True)
        if row.get("country"):
            row["country"] = normalize_country(row["country"])
        rows.append(row)
    return canonical_json(rows)


class LeadUpsertEngine:
    def __init__(
        self,
        crm: CRMClient,
        settings: Settings,
        identity: Optional[IdentityResolver] = None,
        addresses: Optional[AddressReconciler] = None,
        services: Optional[ServiceSelectionWriter] = None,
        documents: Optional[DocumentCollectionTracker] = None,
    ):
        self.crm = crm
        self.settings = settings
        self.identity = identity or IdentityResolver(crm)
        self.addresses = addresses or AddressReconciler(crm, settings)
        self.services = services or ServiceSelectionWriter(crm)
        self.documents = documents or DocumentCollectionTracker(crm)

    def find_lead(self, email: str) -> Optional[dict]:
        return self.crm.find(LEAD_DOCTYPE, [["email_id", "=", email]], fields=LEAD_LOOKUP_FIELDS)

    def build_delta(self, update: LeadUpdate, identity: Identity, existing: Optional[dict]) -> dict:
        """Fields to write for this step; sections that were not sent contribute nothing."""
        delta: dict = {"email_id": update.email}
        company = company_fields(update.company_info) if update.provided("company_info") else {}

        if existing is None:
            company_name = company.get("company_name") or clean(identity.company_name)
            delta.update({
                "status": "Open",
                "lead_type": "Client",
                "lead_name": company_name or clean(identity.first_name) or update.email,
                "company_name": company_name or "",
                "custom_registration_status": IN_PROGRESS,
            })
            if identity.phone:
                delta["phone"] = identity.phone
                delta["mobile_no"] = identity.phone
            if identity.sales_person:
                delta["custom_sales_person"] = identity.sales_person

        delta.update(company)
        if update.provided("businesses"):
            delta["custom_businesses"] = businesses_field(update.businesses)
        if update.provided("payment_info"):
            delta.update(payment_fields(update.payment_info))
        if update.provided("documents"):
            current = existing.get("custom_registration_status") if existing else delta.get("custom_registration_status")
            delta.update(self.documents.build_fields(update.documents, current))
        elif existing is not None:
            status = advance_status(existing.get("custom_registration_status"), IN_PROGRESS)
            if status:
                delta["custom_registration_status"] = status
        return delta

    def _save(self, existing: Optional[dict], delta: dict) -> Tuple[dict, bool]:
        if existing:
            return self.crm.update(LEAD_DOCTYPE, existing["name"], delta), False
        return self.crm.create(LEAD_DOCTYPE, delta), True

    def upsert(self, update: LeadUpdate, uploads: Optional[Dict[str, List[UploadedFile]]] = None) -> UpsertResult:
        identity = self.identity.resolve(update.email)
        existing = self.find_lead(update.email)
        delta = self.build_delta(update, identity, existing)
        try:
            lead, created = self._save(existing, delta)
        except CRMError as exc:
            if existing or not exc.is_duplicate:
                raise
            # a concurrent submission created the lead first
            existing = self.find_lead(update.email)
            if not existing:
                raise
            logger.info("lead for %s appeared concurrently, retrying as update of %s", update.email, existing["name"])
            delta = self.build_delta(update, identity, existing)
            lead, created = self._save(existing, delta)

        lead_name = lead["name"]
        result = UpsertResult(lead=lead, created=created)
        if update.provided("company_info"):
            result.status["billing_address"] = self.addresses.reconcile_billing(lead_name, update.company_info)
        if update.provided("businesses") and update.businesses:
            result.status["businesses"] = self.addresses.reconcile_businesses(lead_name, update.businesses)
        if update.provided("services"):
            result.status["services"] = self.services.set_services(lead_name, update.services)
        if uploads:
            documents = update.documents if update.provided("documents") else None
            result.status["documents"] = self.documents.attach_uploads(lead, documents, uploads)

        if update.provided("services") or uploads:
            try:
                result.lead = self.crm.get(LEAD_DOCTYPE, lead_name)
            except OnboardingError as exc:
                logger.warning("could not reload lead %s: %s", lead_name, exc.message)
        return result


# ---------- read side ----------

def check_lead(crm: CRMClient, email: str) -> dict:
    IdentityResolver(crm).resolve_user(email)
    lead = crm.find(LEAD_DOCTYPE, [["email_id", "=", email]], fields=["name", "email_id", "company_name"])
    if not lead:
        return {"hasLead": False}
    return {"hasLead": True, "lead": lead}


BILLING_FIELDS = ("address_line1", "address_line2", "city", "pincode", "state", "country")


def _lead_addresses(crm: CRMClient, lead_name: str, address_type: str) -> List[dict]:
    filters = [
        ["link_doctype", "=", LEAD_DOCTYPE],
        ["link_name", "=", lead_name],
        ["address_type", "=", address_type],
    ]
    try:
        return crm.find_all(ADDRESS_DOCTYPE, filters, fields=["*"])
    except CRMError as exc:
        logger.warning("%s addresses of lead %s unavailable: %s", address_type, lead_name, exc.message)
        return []


def lead_snapshot(crm: CRMClient, email: str) -> dict:
    """Everything the wizard needs to re-populate its forms for a returning user."""
    row = crm.find(LEAD_DOCTYPE, [["email_id", "=", email]], fields=["name"])
    if not row:
        raise NotFound("Lead not found")
    lead = crm.get(LEAD_DOCTYPE, row["name"])

    billing = _lead_addresses(crm, lead["name"], BILLING)
    if billing:
        for key in BILLING_FIELDS:
            if billing[0].get(key):
                lead[key] = billing[0][key]

    businesses = parse_json_field(lead.get("custom_businesses"), [])
    if not isinstance(businesses, list):
        businesses = []
    shops = _lead_addresses(crm, lead["name"], SHOP)
    by_title = {(a.get("b1_business_name") or a.get("address_title")): a for a in shops}
    for index, business in enumerate(businesses):
        title = business.get("businessName") or f"Business {index + 1}"
        address = by_title.get(title)
        if address:
            business["addressName"] = address.get("name")

    return {
        "lead": lead,
        "businesses": businesses,
        "services": selected_service_ids(lead),
        "documents": {
            slot_id: slot.model_dump(by_alias=True) for slot_id, slot in load_slots(lead).items()
        },
        "typeOfCompany": lead.get("custom_type_of_company"),
        "registrationStatus": lead.get("custom_registration_status"),
    }
