from datetime import datetime, timedelta, timezone

import pytest

from onboarding.errors import Conflict, Expired, NotFound
from onboarding.esignature import SignatureTokenManager

LEAD = "CRM-LEAD-00001"
SIGNATURE = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/Pf8icQAAAABJRU5ErkJggg=="


class Clock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, 9, 30, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def manager(crm, settings, clock):
    crm.add("Lead", {
        "name": LEAD,
        "email_id": "a@x.com",
        "lead_name": "Burger Boost",
        "company_name": "Burger Boost",
        "city": "Berlin",
        "custom_registration_status": "In Progress",
    })
    return SignatureTokenManager(crm, settings, clock=clock)


def test_issue_writes_token_and_pending_status(crm, manager):
    issued = manager.issue("a@x.com")
    assert len(issued.token) == 64
    assert issued.url == f"https://onboarding.test/e-signature-document/{issued.token}"
    assert issued.expires_at == datetime(2025, 1, 8, 9, 30, tzinfo=timezone.utc)
    lead = crm.records["Lead"][LEAD]
    assert lead["custom_esignature_token"] == issued.token
    assert lead["custom_esignature_token_expiry"] == "2025-01-08 09:30:00"
    assert lead["custom_registration_status"] == "Pending E-Signature"


def test_reissue_supersedes_previous_token(manager):
    first = manager.issue("a@x.com").token
    second = manager.issue("a@x.com").token
    assert first != second
    with pytest.raises(NotFound):
        manager.fetch_for_signing(first)
    assert manager.fetch_for_signing(second)["name"] == LEAD


def test_issue_for_unknown_lead_is_404(manager):
    with pytest.raises(NotFound):
        manager.issue("nobody@x.com")


def test_issue_after_signing_is_conflict(crm, manager):
    crm.records["Lead"][LEAD]["custom_esignature_signed_at"] = "2025-01-01 10:00:00"
    with pytest.raises(Conflict):
        manager.issue("a@x.com")


def test_expired_token_is_410(manager, clock):
    token = manager.issue("a@x.com").token
    clock.now += timedelta(days=7, seconds=1)
    with pytest.raises(Expired):
        manager.fetch_for_signing(token)


def test_token_valid_until_expiry(manager, clock):
    token = manager.issue("a@x.com").token
    clock.now += timedelta(days=6, hours=23)
    assert manager.fetch_for_signing(token)["name"] == LEAD


def test_signed_lead_with_stale_token_is_conflict(crm, manager):
    token = manager.issue("a@x.com").token
    crm.records["Lead"][LEAD]["custom_esignature_signed_at"] = "2025-01-02 08:00:00"
    with pytest.raises(Conflict):
        manager.fetch_for_signing(token)


def test_consume_is_single_use(crm, manager, clock):
    token = manager.issue("a@x.com").token
    clock.now += timedelta(hours=1)
    receipt = manager.consume(token, SIGNATURE, "A. Owner", "1.2.3.4")
    assert receipt.stored_as == "file"
    lead = crm.records["Lead"][LEAD]
    assert lead["custom_esignature_signed_at"] == "2025-01-01 10:30:00"
    assert lead["custom_esignature_signer_name"] == "A. Owner"
    assert lead["custom_esignature_signer_ip"] == "1.2.3.4"
    assert lead["custom_registration_status"] == "Completed"
    assert lead["custom_esignature_token"] == ""
    assert lead["custom_esignature_token_expiry"] is None
    assert lead["custom_esignature_file"].startswith("https://crm.test/private/files/signature_")

    clock.now += timedelta(hours=1)
    with pytest.raises(NotFound):
        manager.consume(token, SIGNATURE, "Someone Else", "5.6.7.8")
    assert crm.records["Lead"][LEAD]["custom_esignature_signed_at"] == "2025-01-01 10:30:00"
    assert crm.records["Lead"][LEAD]["custom_esignature_signer_name"] == "A. Owner"


def test_consume_clears_token_in_the_same_write(crm, manager):
    token = manager.issue("a@x.com").token
    manager.consume(token, SIGNATURE)
    last = crm.writes("update", "Lead")[-1][3]
    assert last["custom_esignature_token"] == ""
    assert last["custom_registration_status"] == "Completed"
    assert "custom_esignature_signed_at" in last
    # signer defaults to the lead name
    assert last["custom_esignature_signer_name"] == "Burger Boost"


def test_upload_failure_falls_back_to_capped_inline_data(crm, settings, manager):
    settings.signature_inline_limit = 40
    token = manager.issue("a@x.com").token
    crm.fail("upload", "Lead")
    receipt = manager.consume(token, SIGNATURE, "A. Owner")
    assert receipt.stored_as == "inline"
    lead = crm.records["Lead"][LEAD]
    assert lead["custom_esignature_data"] == SIGNATURE[:40]
    assert "custom_esignature_file" not in lead
    assert lead["custom_registration_status"] == "Completed"


def test_consume_expired_token_changes_nothing(crm, manager, clock):
    token = manager.issue("a@x.com").token
    clock.now += timedelta(days=8)
    with pytest.raises(Expired):
        manager.consume(token, SIGNATURE)
    assert "custom_esignature_signed_at" not in crm.records["Lead"][LEAD]


def test_signature_flow_over_http(client, crm, manager):
    created = client.post("/api/e-signature/create-token", json={"email": "a@x.com"})
    assert created.status_code == 200
    token = created.json()["signatureToken"]
    assert created.json()["signatureUrl"].endswith(f"/e-signature-document/{token}")

    document = client.get("/api/e-signature/get-document", params={"token": token})
    assert document.status_code == 200
    body = document.json()
    assert "MITGLIEDSVERTRAG" in body["document"]
    assert "Burger Boost" in body["document"]
    assert body["lead"]["status"] == "Pending E-Signature"

    saved = client.post("/api/e-signature/save-signature", json={
        "token": token, "signatureData": SIGNATURE, "signerName": "A. Owner", "signerIp": "1.2.3.4",
    })
    assert saved.status_code == 200
    assert saved.json()["message"] == "Document signed successfully"
    assert saved.json()["companyName"] == "Burger Boost"

    again = client.get("/api/e-signature/get-document", params={"token": token})
    assert again.status_code == 404
    assert again.json() == {"error": "Invalid or expired token"}


def test_http_input_errors(client, manager):
    assert client.get("/api/e-signature/get-document").status_code == 400
    assert client.post("/api/e-signature/create-token", json={"email": ""}).status_code == 400
    missing_sig = client.post("/api/e-signature/save-signature", json={"token": "abc"})
    assert missing_sig.status_code == 400
    assert missing_sig.json() == {"error": "Signature data required"}
    assert client.post("/api/e-signature/create-token", json={"email": "ghost@x.com"}).status_code == 404
