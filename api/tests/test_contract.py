import json
from datetime import date

from onboarding.contract import contract_fields, render_contract


def test_contract_is_filled_from_lead():
    lead = {
        "company_name": "Burger Boost",
        "address_line1": "Torstr. 1",
        "pincode": "10115",
        "city": "Berlin",
        "custom_businesses": json.dumps([{"ownerDirector": "Ali Veli", "street": "Hauptstr. 5",
                                          "postalCode": "12345", "city": "Potsdam"}]),
    }
    html = render_contract(lead, today=date(2025, 3, 5))
    assert "MITGLIEDSVERTRAG" in html
    assert "<strong>Burger Boost</strong><br/>Torstr. 1, 10115, Berlin" in html
    assert "Ali Veli" in html
    assert "Hauptstr. 5, 12345 Potsdam" in html
    assert "Berlin, den 05.03.2025" in html


def test_missing_fields_become_placeholders():
    fields = contract_fields({})
    assert fields["owner"] == "[Name]"
    assert fields["city"] == "Ort"
    html = render_contract({}, today=date(2025, 12, 24))
    assert "[Name], Inhaber/Geschäftsführer" in html
    assert "Ort, den 24.12.2025" in html


def test_lead_values_are_escaped():
    html = render_contract({"company_name": "<script>alert(1)</script>"}, today=date(2025, 1, 1))
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_unreadable_business_list_is_ignored():
    assert contract_fields({"lead_name": "Kebab Co", "custom_businesses": "{broken"})["owner"] == "[Name]"
    assert contract_fields({"lead_name": "Kebab Co"})["company"] == "Kebab Co"
