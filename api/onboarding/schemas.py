
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional, Union


class WizardModel(BaseModel):
    # wire format is camelCase; attributes stay snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CompanyInfo(WizardModel):
    company_name: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    federal_state: Optional[str] = None
    country: Optional[str] = None
    vat_identification_number: Optional[str] = None
    tax_id_number: Optional[str] = None
    restaurant_count: Optional[Union[int, str]] = None


class Business(WizardModel):
    business_name: Optional[str] = None
    owner_director: Optional[str] = None
    owner_telephone_code: Optional[str] = None
    owner_telephone: Optional[str] = None
    owner_email: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    federal_state: Optional[str] = None
    country: Optional[str] = None
    different_contact: bool = False
    contact_person: Optional[str] = None
    contact_telephone_code: Optional[str] = None
    contact_telephone: Optional[str] = None
    contact_email: Optional[str] = None


class PaymentInfo(WizardModel):
    account_holder: Optional[str] = None
    iban: Optional[str] = None
    bic: Optional[str] = None


class DocumentSlot(WizardModel):
    files: List[str] = []
    date: Optional[str] = None
    accepted: Optional[bool] = None

    @field_validator("files", mode="before")
    @classmethod
    def _file_names(cls, value):
        if not value:
            return []
        names = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("url") or item.get("name")
            if item:
                names.append(str(item))
        return names


class Documents(WizardModel):
    type_of_company: Optional[str] = None
    document_data: Optional[Dict[str, DocumentSlot]] = None


class LeadUpdate(WizardModel):
    email: str
    company_info: Optional[CompanyInfo] = None
    businesses: Optional[List[Business]] = None
    payment_info: Optional[PaymentInfo] = None
    documents: Optional[Documents] = None
    services: Optional[List[str]] = None

    @field_validator("email")
    @classmethod
    def _email_required(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("Email is required to find user")
        return value

    def provided(self, section: str) -> bool:
        """True when the section was sent with a value (``[]`` counts, ``null`` does not)."""
        return section in self.model_fields_set and getattr(self, section) is not None


class EmailLookup(BaseModel):
    email: str


class TokenCreate(BaseModel):
    email: str


class SignatureSave(WizardModel):
    token: Optional[str] = None
    signature_data: Optional[str] = None
    signer_name: Optional[str] = None
    signer_ip: Optional[str] = None
