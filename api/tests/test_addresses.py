from onboarding.addresses import AddressReconciler, contact_identity, merge_links
from onboarding.errors import CRMError
from onboarding.schemas import Business, CompanyInfo

LEAD = "CRM-LEAD-00001"


def business(**fields):
    base = {"businessName": "Shop One", "city": "Berlin", "country": "Türkiye", "ownerDirector": "Ali Veli",
            "ownerEmail": "ali@x.com", "ownerTelephoneCode": "+49", "ownerTelephone": "170 123"}
    base.update(fields)
    return Business.model_validate(base)


def pairs(links):
    return sorted((row["link_doctype"], row["link_name"]) for row in links)


def test_contact_links_are_unioned(crm, settings):
    reconciler = AddressReconciler(crm, settings)
    person = {"name": "Ali Veli", "email": "ali@x.com", "phone": None}
    first = reconciler.upsert_contact(person, [{"link_doctype": "Lead", "link_name": LEAD}])
    second = reconciler.upsert_contact(person, [
        {"link_doctype": "Lead", "link_name": LEAD},
        {"link_doctype": "Address", "link_name": "ADDR-1"},
    ])
    assert first == second
    contacts = crm.all("Contact")
    assert len(contacts) == 1
    assert pairs(contacts[0]["links"]) == [("Address", "ADDR-1"), ("Lead", LEAD)]


def test_merge_links_keeps_existing_and_drops_duplicates():
    merged = merge_links(
        [{"link_doctype": "Lead", "link_name": "L1"}, {"link_doctype": "Address", "link_name": "A0"}],
        [{"link_doctype": "Lead", "link_name": "L1"}, {"link_doctype": "Address", "link_name": "A1"}],
    )
    assert pairs(merged) == [("Address", "A0"), ("Address", "A1"), ("Lead", "L1")]


def test_contact_prefers_differing_contact_person():
    person = contact_identity(business(differentContact=True, contactPerson="Eva Kaya", contactEmail="eva@x.com"))
    assert person["email"] == "eva@x.com"
    assert contact_identity(business())["email"] == "ali@x.com"
    # flag set but nothing filled in: owner again
    assert contact_identity(business(differentContact=True))["email"] == "ali@x.com"


def test_shop_address_and_contact_created_with_links(crm, settings):
    report = AddressReconciler(crm, settings).reconcile_businesses(LEAD, [business()])
    entry = report["0"]
    assert entry["success"] is True
    address = crm.records["Address"][entry["address"]]
    assert address["address_type"] == "Shop"
    assert address["country"] == "Turkey"
    assert address["b1_telephone"] == "+49 170 123"
    assert pairs(address["links"]) == [("Lead", LEAD)]
    contact = crm.records["Contact"][entry["contact"]]
    assert pairs(contact["links"]) == [("Address", entry["address"]), ("Lead", LEAD)]
    assert contact["first_name"] == "Ali"
    assert contact["last_name"] == "Veli"


def test_resubmitted_business_updates_same_address(crm, settings):
    reconciler = AddressReconciler(crm, settings)
    reconciler.reconcile_businesses(LEAD, [business()])
    reconciler.reconcile_businesses(LEAD, [business(city="Hamburg")])
    addresses = crm.all("Address")
    assert len(addresses) == 1
    assert addresses[0]["city"] == "Hamburg"
    assert len(crm.all("Contact")) == 1


def test_one_bad_business_does_not_stop_the_next(crm, settings):
    crm.fail("create", "Address", times=1)
    report = AddressReconciler(crm, settings).reconcile_businesses(
        LEAD, [business(), business(businessName="Shop Two", ownerEmail="two@x.com")]
    )
    assert report["0"]["success"] is False
    assert report["0"]["error"] == "boom"
    assert report["1"]["success"] is True
    assert report["1"]["address"]


def test_contact_failure_is_reported_not_raised(crm, settings):
    crm.fail("create", "Contact", CRMError("Contact rejected", code=CRMError.VALIDATION))
    entry = AddressReconciler(crm, settings).reconcile_business(LEAD, 0, business())
    assert entry["success"] is True
    assert entry["contact_error"] == "Contact rejected"


def test_business_without_email_skips_contact(crm, settings):
    entry = AddressReconciler(crm, settings).reconcile_business(LEAD, 0, business(ownerEmail=None))
    assert entry["contact_skipped"] == "no contact email"
    assert crm.all("Contact") == []


def test_billing_placeholders_are_reported(crm, settings):
    result = AddressReconciler(crm, settings).reconcile_billing(LEAD, CompanyInfo(company_name="Acme", city="Köln"))
    assert result["success"] is True
    assert result["placeholder_fields"] == ["address_line1", "country"]
    address = crm.records["Address"][result["address"]]
    assert address["address_line1"] == "Unknown Street"
    assert address["country"] == "Germany"


def test_renamed_company_keeps_one_billing_address(crm, settings):
    reconciler = AddressReconciler(crm, settings)
    reconciler.reconcile_billing(LEAD, CompanyInfo(company_name="Old Name", street="A 1", city="Berlin"))
    reconciler.reconcile_billing(LEAD, CompanyInfo(company_name="New Name", street="A 1", city="Berlin"))
    addresses = crm.all("Address")
    assert len(addresses) == 1
    assert addresses[0]["address_title"] == "New Name"
