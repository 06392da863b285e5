import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .config import Settings
from .crm import CRMClient
from .errors import OnboardingError
from .schemas import Business, CompanyInfo
from .utils import clean, join_phone, normalize_country

logger = logging.getLogger(__name__)

ADDRESS_DOCTYPE = "Address"
CONTACT_DOCTYPE = "Contact"
LEAD_DOCTYPE = "Lead"
BILLING = "Billing"
SHOP = "Shop"
STREET_PLACEHOLDER = "Unknown Street"
CITY_PLACEHOLDER = "Unknown"


def link(doctype: str, name: str) -> dict:
    return {"link_doctype": doctype, "link_name": name}


def merge_links(existing: Iterable[dict], extra: Iterable[dict]) -> List[dict]:
    """Union of two link lists keyed by (link_doctype, link_name), first occurrence wins."""
    merged: List[dict] = []
    seen = set()
    for row in list(existing or []) + list(extra or []):
        key = (row.get("link_doctype"), row.get("link_name"))
        if not all(key) or key in seen:
            continue
        seen.add(key)
        merged.append(link(*key))
    return merged


def split_name(full_name: str) -> Tuple[str, Optional[str]]:
    parts = full_name.split(None, 1)
    return parts[0], (parts[1] if len(parts) > 1 else None)


def contact_identity(business: Business) -> Optional[dict]:
    """Pick the person to file as contact: the differing contact if flagged, else the owner."""
    if business.different_contact and (clean(business.contact_person) or clean(business.contact_email)):
        return {
            "name": clean(business.contact_person),
            "email": clean(business.contact_email),
            "phone": join_phone(business.contact_telephone_code, business.contact_telephone),
        }
    if clean(business.owner_director) or clean(business.owner_email):
        return {
            "name": clean(business.owner_director),
            "email": clean(business.owner_email),
            "phone": join_phone(business.owner_telephone_code, business.owner_telephone),
        }
    return None


class AddressReconciler:
    def __init__(self, crm: CRMClient, settings: Settings):
        self.crm = crm
        self.settings = settings

    # ---------- address payloads ----------
    def _required_fields(self, street, city, country) -> Tuple[dict, List[str]]:
        # the CRM rejects blank mandatory fields, so they get placeholders instead
        placeholders = []
        street = clean(street)
        if not street:
            street = STREET_PLACEHOLDER
            placeholders.append("address_line1")
        city = clean(city)
        if not city:
            city = CITY_PLACEHOLDER
            placeholders.append("city")
        country = normalize_country(clean(country))
        if not country:
            country = self.settings.default_country
            placeholders.append("country")
        return {"address_line1": street, "city": city, "country": country}, placeholders

    def billing_payload(self, info: CompanyInfo) -> Tuple[str, dict, List[str]]:
        title = clean(info.company_name) or BILLING
        fields, placeholders = self._required_fields(info.street, info.city, info.country)
        payload = {"address_title": title, "address_type": BILLING, **fields}
        if clean(info.city):
            payload["county"] = info.city.strip()
        if clean(info.zip_code):
            payload["pincode"] = info.zip_code.strip()
        if clean(info.federal_state):
            payload["state"] = info.federal_state.strip()
        return title, payload, placeholders

    def shop_payload(self, index: int, business: Business) -> Tuple[str, dict, List[str]]:
        title = clean(business.business_name) or f"Business {index + 1}"
        fields, placeholders = self._required_fields(business.street, business.city, business.country)
        payload = {"address_title": title, "address_type": SHOP, **fields}
        if clean(business.postal_code):
            payload["pincode"] = business.postal_code.strip()
        if clean(business.federal_state):
            payload["state"] = business.federal_state.strip()
        custom = {
            "b1_business_name": clean(business.business_name),
            "b1_owner_director": clean(business.owner_director),
            "b1_telephone": join_phone(business.owner_telephone_code, business.owner_telephone),
            "b1_email_address": clean(business.owner_email),
            "b1_street_and_house_number": clean(business.street),
            "b1_city": clean(business.city),
            "b1_postal_code": clean(business.postal_code),
            "b1_federal_state": clean(business.federal_state),
            "b1_country": normalize_country(clean(business.country)),
        }
        if business.different_contact:
            custom.update({
                "b1_contact_person": clean(business.contact_person),
                "b1_contact_person_telephone": join_phone(business.contact_telephone_code, business.contact_telephone),
                "b1_contact_person_email": clean(business.contact_email),
            })
        payload.update({k: v for k, v in custom.items() if v})
        return title, payload, placeholders

    # ---------- find-or-create ----------
    def _find_address(self, lead_name: str, address_type: str, title: Optional[str]) -> Optional[dict]:
        filters = [
            ["address_type", "=", address_type],
            ["link_doctype", "=", LEAD_DOCTYPE],
            ["link_name", "=", lead_name],
        ]
        if title is not None:
            filters.insert(0, ["address_title", "=", title])
        return self.crm.find(ADDRESS_DOCTYPE, filters, fields=["name", "address_title"])

    def upsert_address(self, lead_name: str, payload: dict, existing: Optional[dict]) -> str:
        lead_link = link(LEAD_DOCTYPE, lead_name)
        if existing:
            current = self.crm.get(ADDRESS_DOCTYPE, existing["name"])
            body = dict(payload, links=merge_links(current.get("links"), [lead_link]))
            self.crm.update(ADDRESS_DOCTYPE, existing["name"], body)
            return existing["name"]
        # links go inline with the create call
        created = self.crm.create(ADDRESS_DOCTYPE, dict(payload, links=[lead_link]))
        return created["name"]

    def reconcile_billing(self, lead_name: str, info: CompanyInfo) -> dict:
        if not (clean(info.street) or clean(info.city) or clean(info.country)):
            return {"success": True, "skipped": "no address data"}
        title, payload, placeholders = self.billing_payload(info)
        try:
            existing = self._find_address(lead_name, BILLING, title)
            if not existing:
                # one billing address per lead, even if the company was renamed
                existing = self._find_address(lead_name, BILLING, None)
            name = self.upsert_address(lead_name, payload, existing)
        except OnboardingError as exc:
            logger.warning("billing address for lead %s failed: %s", lead_name, exc.message)
            return {"success": False, "error": exc.message}
        result = {"success": True, "address": name}
        if placeholders:
            result["placeholder_fields"] = placeholders
        return result

    # ---------- contacts ----------
    def upsert_contact(self, person: dict, links: List[dict]) -> str:
        email = person["email"]
        existing = self.crm.find(CONTACT_DOCTYPE, [["email_id", "=", email]], fields=["name"])
        first_name, last_name = split_name(person.get("name") or email.split("@")[0])
        if existing:
            current = self.crm.get(CONTACT_DOCTYPE, existing["name"])
            body = {"links": merge_links(current.get("links"), links)}
            if person.get("name"):
                body["first_name"] = first_name
                body["last_name"] = last_name or ""
            if person.get("phone"):
                phones = list(current.get("phone_nos") or [])
                if all(row.get("phone") != person["phone"] for row in phones):
                    phones = [{"phone": row.get("phone"), "is_primary_phone": row.get("is_primary_phone", 0)}
                              for row in phones]
                    phones.append({"phone": person["phone"], "is_primary_phone": 0 if phones else 1})
                    body["phone_nos"] = phones
            self.crm.update(CONTACT_DOCTYPE, existing["name"], body)
            return existing["name"]
        payload = {
            "first_name": first_name,
            "email_ids": [{"email_id": email, "is_primary": 1}],
            "links": merge_links([], links),
        }
        if last_name:
            payload["last_name"] = last_name
        if person.get("phone"):
            payload["phone_nos"] = [{"phone": person["phone"], "is_primary_phone": 1}]
        return self.crm.create(CONTACT_DOCTYPE, payload)["name"]

    def reconcile_business(self, lead_name: str, index: int, business: Business) -> dict:
        if not clean(business.city) and not clean(business.country):
            return {"success": True, "skipped": "no city or country"}
        title, payload, placeholders = self.shop_payload(index, business)
        result: dict = {"title": title}
        try:
            existing = self._find_address(lead_name, SHOP, title)
            address_name = self.upsert_address(lead_name, payload, existing)
        except OnboardingError as exc:
            logger.warning("shop address %s for lead %s failed: %s", index, lead_name, exc.message)
            result.update(success=False, error=exc.message)
            return result
        result.update(success=True, address=address_name)
        if placeholders:
            result["placeholder_fields"] = placeholders

        person = contact_identity(business)
        if not person:
            return result
        if not person.get("email"):
            result["contact_skipped"] = "no contact email"
            return result
        try:
            result["contact"] = self.upsert_contact(
                person, [link(LEAD_DOCTYPE, lead_name), link(ADDRESS_DOCTYPE, address_name)]
            )
        except OnboardingError as exc:
            logger.warning("contact for business %s of lead %s failed: %s", index, lead_name, exc.message)
            result["contact_error"] = exc.message
        return result

    def reconcile_businesses(self, lead_name: str, businesses: List[Business]) -> Dict[str, dict]:
        return {
            str(index): self.reconcile_business(lead_name, index, business)
            for index, business in enumerate(businesses)
        }
