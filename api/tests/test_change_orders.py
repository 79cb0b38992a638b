from datetime import timedelta
from urllib.parse import parse_qs, urlparse

from sqlalchemy import update
from sqlmodel import Session, select
from urllib3.exceptions import MaxRetryError

from clearview.main import app
from clearview.enums import ChangeOrderStatus, LinkStatus, MemberRole, MemberStatus
from clearview.models import (
    ChangeOrder,
    ChangeOrderLink,
    ChangeOrderRecipient,
    ClientProfile,
    Project,
    ProjectMember,
)
from clearview.services.change_orders import ChangeOrderService
from clearview.storage import ObjectStore, get_object_store
from clearview.utils import as_utc, utcnow

SIMPLE_SIGNATURE_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/Pf8icQAAAABJRU5ErkJggg=="


def setup_project(test_engine, owner_id, contact_email=None):
    with Session(test_engine) as session:
        project = Project(user_id=owner_id, name="Maple Street Addition")
        session.add(project)
        session.flush()
        if contact_email:
            session.add(ClientProfile(
                project_id=project.id,
                company_name="Acme Homes",
                contact_name="Casey Client",
                contact_email=contact_email,
            ))
        session.commit()
        return project.id


def add_accepted_member(test_engine, project_id, user, role):
    with Session(test_engine) as session:
        session.add(ProjectMember(
            project_id=project_id,
            user_id=user["id"],
            email=user["email"],
            role=role,
            status=MemberStatus.accepted,
        ))
        session.commit()


def create_change_order(client, headers, project_id, **overrides):
    body = {
        "projectId": project_id,
        "subject": "Upgrade kitchen lighting",
        "description": "Swap fixtures for recessed LEDs.",
        "lineItems": [
            {"title": "Fixtures", "impactDays": 1, "cost": 100},
            {"title": "Labor", "impactDays": 2, "cost": 250},
        ],
    }
    body.update(overrides)
    response = client.post("/api/change-orders", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def send_change_order(client, headers, change_order_id, **extra):
    return client.post(
        "/api/change-orders/send",
        json={"changeOrderId": change_order_id, **extra},
        headers=headers,
    )


def token_from(url):
    return parse_qs(urlparse(url).query)["token"][0]


def respond(client, token, decision="approved", **extra):
    body = {
        "token": token,
        "decision": decision,
        "signedName": "Casey Client",
        "signedEmail": "Casey@Acme.com",
    }
    body.update(extra)
    return client.post("/api/change-orders/respond", json=body)


def load_change_order(test_engine, change_order_id):
    with Session(test_engine) as session:
        return session.get(ChangeOrder, change_order_id)


def load_link(test_engine, token):
    with Session(test_engine) as session:
        return session.exec(select(ChangeOrderLink).where(ChangeOrderLink.token == token)).one()


def sent_link(client, login, test_engine):
    """Owner, project and change order with a freshly sent client link."""
    owner, headers = login("owner@example.com", "Olive Owner")
    project_id = setup_project(test_engine, owner["id"], contact_email="casey@acme.com")
    change_order = create_change_order(client, headers, project_id)["changeOrder"]
    response = send_change_order(client, headers, change_order["id"])
    assert response.status_code == 200, response.text
    return headers, project_id, change_order["id"], token_from(response.json()["respondUrl"])


def test_create_totals_line_items_and_emails_recipients(client, login, mailer, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"], contact_email="casey@acme.com")

    body = create_change_order(client, headers, project_id, amount=999)
    change_order = body["changeOrder"]
    assert change_order["amount"] == 350
    assert change_order["status"] == "pending"
    assert change_order["requestedBy"] == owner["id"]
    assert [item["cost"] for item in change_order["lineItems"]] == [100, 250]
    assert [r["email"] for r in body["recipients"]] == ["casey@acme.com"]
    assert "emailWarnings" not in body

    assert len(mailer.messages) == 1
    text = mailer.messages[0]["text"]
    with Session(test_engine) as session:
        recipient = session.exec(select(ChangeOrderRecipient)).one()
    assert recipient.response_token
    for action in ("approve", "approve_conditions", "deny", "needs_info"):
        assert f"action={action}" in text
    assert f"token={recipient.response_token}" in text


def test_create_without_line_items_keeps_explicit_amount(client, login, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"])
    body = create_change_order(client, headers, project_id, lineItems=[], amount=1250)
    assert body["changeOrder"]["amount"] == 1250
    assert body["recipients"] == []


def test_create_deduplicates_recipients(client, login, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"], contact_email="casey@acme.com")
    body = create_change_order(
        client,
        headers,
        project_id,
        recipientEmail="Pat@Acme.com",
        recipients=[{"email": "pat@acme.com"}, {"email": "lee@acme.com", "name": "Lee"}],
    )
    assert [r["email"] for r in body["recipients"]] == ["pat@acme.com", "lee@acme.com"]
    with Session(test_engine) as session:
        tokens = session.exec(select(ChangeOrderRecipient.response_token)).all()
    assert len(set(tokens)) == 2


def test_create_reports_email_warnings(client, login, mailer, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"], contact_email="casey@acme.com")
    mailer.fail = True
    body = create_change_order(client, headers, project_id)
    assert body["emailWarnings"][0].startswith("casey@acme.com")


def test_create_requires_editor_and_subject(client, login, test_engine):
    owner, headers = login("owner@example.com")
    viewer, viewer_headers = login("viewer@example.com")
    project_id = setup_project(test_engine, owner["id"])
    add_accepted_member(test_engine, project_id, viewer, MemberRole.viewer)

    denied = client.post(
        "/api/change-orders",
        json={"projectId": project_id, "subject": "Extra"},
        headers=viewer_headers,
    )
    assert denied.status_code == 403

    blank = client.post(
        "/api/change-orders",
        json={"projectId": project_id, "subject": "  "},
        headers=headers,
    )
    assert blank.status_code == 400
    assert blank.json()["details"][0]["path"] == "subject"


def test_send_requires_a_client_email(client, login, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"])
    change_order = create_change_order(client, headers, project_id)["changeOrder"]

    response = send_change_order(client, headers, change_order["id"])
    assert response.status_code == 400
    assert "client email required" in response.json()["error"].lower()
    with Session(test_engine) as session:
        assert session.exec(select(ChangeOrderLink)).all() == []


def test_send_creates_link_and_records_timestamps(client, login, mailer, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"], contact_email="casey@acme.com")
    change_order = create_change_order(client, headers, project_id)["changeOrder"]
    mailer.messages.clear()

    response = send_change_order(client, headers, change_order["id"])
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["clientEmail"] == "casey@acme.com"
    assert body["respondUrl"].startswith("http://testserver/change-order-response.html?token=")

    link = load_link(test_engine, token_from(body["respondUrl"]))
    assert link.status == LinkStatus.pending
    assert timedelta(days=6, hours=23) < as_utc(link.expires_at) - utcnow() <= timedelta(days=7)
    assert body["changeOrder"]["clientLastSentAt"]
    assert body["changeOrder"]["clientViewTokenExpiresAt"] == as_utc(link.expires_at).isoformat()

    assert mailer.messages[0]["to"] == ["casey@acme.com"]
    assert body["respondUrl"] in mailer.messages[0]["text"]

    explicit = send_change_order(client, headers, change_order["id"], email="other@acme.com")
    assert explicit.json()["clientEmail"] == "other@acme.com"


def test_send_reuses_live_link(client, login, test_engine):
    headers, _, change_order_id, token = sent_link(client, login, test_engine)
    again = send_change_order(client, headers, change_order_id)
    assert token_from(again.json()["respondUrl"]) == token


def test_send_delivery_failure_keeps_link_valid(client, login, mailer, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"], contact_email="casey@acme.com")
    change_order = create_change_order(client, headers, project_id)["changeOrder"]
    mailer.fail = True

    response = send_change_order(client, headers, change_order["id"])
    assert response.status_code == 502
    assert "error" in response.json()

    with Session(test_engine) as session:
        link = session.exec(select(ChangeOrderLink)).one()
    verified = client.get("/api/change-orders/verify", params={"token": link.token})
    assert verified.status_code == 200


def test_send_requires_editor(client, login, test_engine):
    headers, project_id, change_order_id, _ = sent_link(client, login, test_engine)
    viewer, viewer_headers = login("viewer@example.com")
    add_accepted_member(test_engine, project_id, viewer, MemberRole.viewer)
    assert send_change_order(client, viewer_headers, change_order_id).status_code == 403
    assert send_change_order(client, headers, "missing-id").status_code == 404


def test_verify_returns_sanitized_view_and_stamps_view(client, login, test_engine):
    _, _, change_order_id, token = sent_link(client, login, test_engine)
    response = client.get("/api/change-orders/verify", params={"token": token})
    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"link", "changeOrder", "project", "clientProfile"}
    assert body["changeOrder"]["id"] == change_order_id
    assert body["changeOrder"]["amount"] == 350
    assert "decisionNotes" not in body["changeOrder"]
    assert "requestedBy" not in body["changeOrder"]
    assert body["project"]["name"] == "Maple Street Addition"
    assert body["clientProfile"]["companyName"] == "Acme Homes"
    assert load_link(test_engine, token).last_viewed_at is not None


def test_verify_rejects_bad_links(client, login, test_engine):
    _, _, _, token = sent_link(client, login, test_engine)
    assert client.get("/api/change-orders/verify").status_code == 400
    assert client.get("/api/change-orders/verify", params={"token": "nope"}).status_code == 404

    with Session(test_engine) as session:
        session.exec(
            update(ChangeOrderLink)
            .where(ChangeOrderLink.token == token)
            .values(expires_at=utcnow() - timedelta(minutes=1))
        )
        session.commit()
    expired = client.get("/api/change-orders/verify", params={"token": token})
    assert expired.status_code == 410


def test_respond_records_decision_and_consumes_link(client, login, mailer, test_engine):
    _, _, change_order_id, token = sent_link(client, login, test_engine)
    mailer.messages.clear()

    response = respond(client, token, notes="Looks good", signatureImage=f"data:image/png;base64,{SIMPLE_SIGNATURE_B64}")
    assert response.status_code == 200, response.text
    assert response.json() == {"success": True}

    change_order = load_change_order(test_engine, change_order_id)
    assert change_order.status == ChangeOrderStatus.approved
    assert change_order.decision_notes == "Looks good"
    assert change_order.decision_at is not None
    assert change_order.client_signed_name == "Casey Client"
    assert change_order.client_signed_email == "casey@acme.com"
    assert change_order.client_signed_ip
    assert change_order.client_decision_source == "magic_link"
    assert change_order.client_signature_url.startswith("https://files.test/signatures/")

    link = load_link(test_engine, token)
    assert link.status == LinkStatus.completed
    assert link.decision == "approved"

    assert mailer.messages[0]["to"] == ["owner@example.com"]
    assert "approved" in mailer.messages[0]["subject"]


def test_respond_is_single_use(client, login, test_engine):
    _, _, change_order_id, token = sent_link(client, login, test_engine)
    assert respond(client, token, decision="denied", notes="Too costly").status_code == 200

    second = respond(client, token, decision="approved")
    assert second.status_code == 410
    change_order = load_change_order(test_engine, change_order_id)
    assert change_order.status == ChangeOrderStatus.denied
    assert change_order.client_decision_notes == "Too costly"


def test_needs_info_requires_notes(client, login, test_engine):
    _, _, change_order_id, token = sent_link(client, login, test_engine)
    response = respond(client, token, decision="needs_info", notes="   ")
    assert response.status_code == 400
    assert load_change_order(test_engine, change_order_id).status == ChangeOrderStatus.pending
    assert load_link(test_engine, token).status == LinkStatus.pending


def test_needs_info_keeps_decision_fields_and_is_re_reviewable(client, login, test_engine):
    headers, _, change_order_id, token = sent_link(client, login, test_engine)
    response = respond(client, token, decision="needs_info", notes="Which fixtures?")
    assert response.status_code == 200

    change_order = load_change_order(test_engine, change_order_id)
    assert change_order.status == ChangeOrderStatus.needs_info
    assert change_order.decision_notes is None
    assert change_order.decision_at is None
    assert change_order.client_decision_notes == "Which fixtures?"

    resend = send_change_order(client, headers, change_order_id)
    new_token = token_from(resend.json()["respondUrl"])
    assert new_token != token
    assert respond(client, new_token, decision="approved").status_code == 200
    assert load_change_order(test_engine, change_order_id).status == ChangeOrderStatus.approved


def test_expired_link_is_gone_regardless_of_payload(client, login, test_engine):
    _, _, _, token = sent_link(client, login, test_engine)
    with Session(test_engine) as session:
        session.exec(
            update(ChangeOrderLink)
            .where(ChangeOrderLink.token == token)
            .values(expires_at=utcnow() - timedelta(days=1))
        )
        session.commit()
    response = client.post("/api/change-orders/respond", json={"token": token, "decision": "maybe"})
    assert response.status_code == 410


def test_respond_validates_payload(client, login, test_engine):
    _, _, _, token = sent_link(client, login, test_engine)
    assert client.post("/api/change-orders/respond", json={}).status_code == 400
    assert client.post("/api/change-orders/respond", json={"token": "unknown", "decision": "approved"}).status_code == 404
    missing_name = client.post("/api/change-orders/respond", json={"token": token, "decision": "approved"})
    assert missing_name.status_code == 400
    paths = {d["path"] for d in missing_name.json()["details"]}
    assert {"signedName", "signedEmail"} <= paths


def test_respond_rejects_illegal_transition(client, login, test_engine):
    headers, _, change_order_id, token = sent_link(client, login, test_engine)
    internal = client.post(
        f"/api/change-orders/{change_order_id}/status",
        json={"status": "denied", "notes": "Over budget"},
        headers=headers,
    )
    assert internal.status_code == 200

    response = respond(client, token, decision="approved")
    assert response.status_code == 409
    assert load_link(test_engine, token).status == LinkStatus.pending


def test_respond_notification_failure_is_a_warning(client, login, mailer, test_engine):
    _, _, change_order_id, token = sent_link(client, login, test_engine)
    mailer.fail = True
    response = respond(client, token)
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert "emailWarning" in response.json()
    assert load_change_order(test_engine, change_order_id).status == ChangeOrderStatus.approved


def test_update_status_applies_transition_table(client, login, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"])
    change_order_id = create_change_order(client, headers, project_id)["changeOrder"]["id"]
    url = f"/api/change-orders/{change_order_id}/status"

    approved = client.post(url, json={"status": "approved", "notes": "ok"}, headers=headers)
    assert approved.status_code == 200
    assert approved.json()["changeOrder"]["decisionBy"] == owner["id"]

    assert client.post(url, json={"status": "denied"}, headers=headers).status_code == 409
    assert client.post(url, json={"status": "pending"}, headers=headers).status_code == 409

    reverted = client.post(url, json={"status": "pending", "override": True}, headers=headers)
    assert reverted.status_code == 200
    body = reverted.json()["changeOrder"]
    assert body["status"] == "pending"
    assert body["decisionNotes"] is None
    assert body["decisionAt"] is None
    assert body["decisionBy"] is None

    assert client.post(url, json={"status": "archived"}, headers=headers).status_code == 400


def test_delete_removes_links_then_change_order(client, login, test_engine):
    headers, project_id, change_order_id, _ = sent_link(client, login, test_engine)
    viewer, viewer_headers = login("viewer@example.com")
    add_accepted_member(test_engine, project_id, viewer, MemberRole.viewer)

    denied = client.post("/api/change-orders/delete", json={"changeOrderId": change_order_id}, headers=viewer_headers)
    assert denied.status_code == 403

    response = client.post("/api/change-orders/delete", json={"changeOrderId": change_order_id}, headers=headers)
    assert response.status_code == 200
    assert response.json() == {"success": True}
    with Session(test_engine) as session:
        assert session.get(ChangeOrder, change_order_id) is None
        assert session.exec(select(ChangeOrderLink)).all() == []
        assert session.exec(select(ChangeOrderRecipient)).all() == []

    again = client.post("/api/change-orders/delete", json={"changeOrderId": change_order_id}, headers=headers)
    assert again.status_code == 404
    assert client.post("/api/change-orders/delete", json={}, headers=headers).status_code == 400


def test_list_change_orders_for_members(client, login, test_engine):
    owner, headers = login("owner@example.com")
    stranger, stranger_headers = login("stranger@example.com")
    project_id = setup_project(test_engine, owner["id"])
    create_change_order(client, headers, project_id, subject="First")
    create_change_order(client, headers, project_id, subject="Second")

    listed = client.get(f"/api/projects/{project_id}/change-orders", headers=headers)
    assert listed.status_code == 200
    assert {co["title"] for co in listed.json()["changeOrders"]} == {"First", "Second"}
    assert client.get(f"/api/projects/{project_id}/change-orders", headers=stranger_headers).status_code == 403


def test_recipient_responses_roll_up_to_change_order(client, login, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"])
    change_order_id = create_change_order(
        client,
        headers,
        project_id,
        recipients=[{"email": "pat@acme.com"}, {"email": "lee@acme.com"}],
    )["changeOrder"]["id"]
    with Session(test_engine) as session:
        tokens = {
            r.email: r.response_token
            for r in session.exec(select(ChangeOrderRecipient)).all()
        }
    url = "/api/change-orders/recipients/respond"

    first = client.post(url, json={"token": tokens["pat@acme.com"], "action": "approve"})
    assert first.status_code == 200
    assert first.json()["recipient"]["status"] == "approved"
    assert load_change_order(test_engine, change_order_id).status == ChangeOrderStatus.pending

    second = client.post(
        url,
        json={"token": tokens["lee@acme.com"], "action": "approve_conditions", "note": "Weekend work only"},
    )
    assert second.status_code == 200
    change_order = load_change_order(test_engine, change_order_id)
    assert change_order.status == ChangeOrderStatus.approved_with_conditions
    assert change_order.decision_notes == "Weekend work only"

    assert client.post(url, json={"token": tokens["pat@acme.com"], "action": "deny"}).status_code == 410
    assert client.post(url, json={"token": "unknown", "action": "deny"}).status_code == 404
    assert client.post(url, json={"action": "deny"}).status_code == 400


def test_recipient_action_is_validated(client, login, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"], contact_email="casey@acme.com")
    create_change_order(client, headers, project_id)
    with Session(test_engine) as session:
        token = session.exec(select(ChangeOrderRecipient.response_token)).one()
    response = client.post("/api/change-orders/recipients/respond", json={"token": token, "action": "maybe"})
    assert response.status_code == 400


class UnreachableMinio:
    def bucket_exists(self, bucket):
        raise MaxRetryError(None, f"/{bucket}", reason=ConnectionRefusedError("connection refused"))


def test_respond_records_decision_when_storage_is_unreachable(client, login, test_engine):
    _, _, change_order_id, token = sent_link(client, login, test_engine)
    app.dependency_overrides[get_object_store] = lambda: ObjectStore(UnreachableMinio(), bucket="signatures")

    response = respond(client, token, signatureImage=f"data:image/png;base64,{SIMPLE_SIGNATURE_B64}")
    assert response.status_code == 200, response.text

    change_order = load_change_order(test_engine, change_order_id)
    assert change_order.status == ChangeOrderStatus.approved
    assert change_order.client_signature_url is None
    assert load_link(test_engine, token).status == LinkStatus.completed


def test_respond_loses_race_for_link(client, login, object_store, test_engine, monkeypatch):
    _, _, change_order_id, token = sent_link(client, login, test_engine)
    load_bundle = ChangeOrderService._bundle

    def completed_by_another_request(self, link):
        with Session(test_engine) as other:
            other.exec(
                update(ChangeOrderLink)
                .where(ChangeOrderLink.id == link.id)
                .values(status=LinkStatus.completed, decision="denied")
            )
            other.commit()
        return load_bundle(self, link)

    monkeypatch.setattr(ChangeOrderService, "_bundle", completed_by_another_request)
    response = respond(client, token, signatureImage=f"data:image/png;base64,{SIMPLE_SIGNATURE_B64}")
    assert response.status_code == 410

    change_order = load_change_order(test_engine, change_order_id)
    assert change_order.status == ChangeOrderStatus.pending
    assert change_order.client_signed_name is None
    assert load_link(test_engine, token).decision == "denied"
    assert object_store.objects == {}


def test_recipient_loses_race_for_response(client, login, object_store, test_engine, monkeypatch):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"], contact_email="casey@acme.com")
    change_order_id = create_change_order(client, headers, project_id)["changeOrder"]["id"]
    with Session(test_engine) as session:
        token = session.exec(select(ChangeOrderRecipient.response_token)).one()
    get_change_order = ChangeOrderService._get_change_order

    def answered_by_another_request(self, change_order_id):
        with Session(test_engine) as other:
            other.exec(
                update(ChangeOrderRecipient)
                .where(ChangeOrderRecipient.response_token == token)
                .values(status=ChangeOrderStatus.denied)
            )
            other.commit()
        return get_change_order(self, change_order_id)

    monkeypatch.setattr(ChangeOrderService, "_get_change_order", answered_by_another_request)
    response = client.post(
        "/api/change-orders/recipients/respond",
        json={"token": token, "action": "approve", "signature": f"data:image/png;base64,{SIMPLE_SIGNATURE_B64}"},
    )
    assert response.status_code == 410
    assert load_change_order(test_engine, change_order_id).status == ChangeOrderStatus.pending
    assert object_store.objects == {}


def test_needs_info_never_stamps_decision_fields(client, login, test_engine):
    owner, headers = login("owner@example.com")
    project_id = setup_project(test_engine, owner["id"], contact_email="casey@acme.com")
    reviewed = create_change_order(client, headers, project_id)["changeOrder"]["id"]

    response = client.post(
        f"/api/change-orders/{reviewed}/status",
        json={"status": "needs_info", "notes": "Need fixture specs"},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()["changeOrder"]
    assert body["status"] == "needs_info"
    assert body["decisionAt"] is None
    assert body["decisionNotes"] is None
    assert body["decisionBy"] is None

    answered = create_change_order(client, headers, project_id, subject="Second")["changeOrder"]["id"]
    with Session(test_engine) as session:
        token = session.exec(
            select(ChangeOrderRecipient.response_token).where(ChangeOrderRecipient.change_order_id == answered)
        ).one()
    response = client.post(
        "/api/change-orders/recipients/respond",
        json={"token": token, "action": "needs_info", "note": "Which fixtures?"},
    )
    assert response.status_code == 200
    change_order = load_change_order(test_engine, answered)
    assert change_order.status == ChangeOrderStatus.needs_info
    assert change_order.decision_at is None
    assert change_order.decision_notes is None


def test_send_matches_client_email_case_insensitively(client, login, test_engine):
    headers, _, change_order_id, token = sent_link(client, login, test_engine)
    again = send_change_order(client, headers, change_order_id, email="Casey@ACME.com")
    assert again.status_code == 200
    assert again.json()["clientEmail"] == "casey@acme.com"
    assert token_from(again.json()["respondUrl"]) == token
    with Session(test_engine) as session:
        assert len(session.exec(select(ChangeOrderLink)).all()) == 1
