import base64

from fastapi import status
from fastapi.testclient import TestClient
from sqlmodel import Session

from insign.core.config import settings
from tests.conftest import RecordingDispatcher, auth_headers, token_for

API = f"{settings.api_v1_str}/signature-requests"
SIGNATURE_IMAGE = "data:image/png;base64," + base64.b64encode(b"\x89PNG\r\n\x1a\napi").decode("ascii")


def _create_payload(tenant: dict, workflow_type: str = "sequential") -> dict:
    return {
        "document_id": str(tenant["document"].id),
        "title": "Employment contract",
        "workflow_type": workflow_type,
        "participants": [
            {"email": "alice@example.com", "full_name": "Alice", "order_index": 0},
            {"email": "bob@example.com", "full_name": "Bob", "order_index": 1},
        ],
        "fields": [
            {"participant_index": 0, "x": 10, "y": 70, "width": 30, "height": 8},
            {"participant_index": 1, "x": 55, "y": 70, "width": 30, "height": 8},
        ],
    }


def test_requires_authentication(client: TestClient) -> None:
    response = client.get(API)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = client.get(API, headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_full_signing_flow_over_http(
    client: TestClient, db_session: Session, tenant: dict, dispatcher: RecordingDispatcher
) -> None:
    headers = auth_headers(tenant["user"])

    created = client.post(API, json=_create_payload(tenant), headers=headers)
    assert created.status_code == status.HTTP_201_CREATED, created.json()
    body = created.json()
    request_id = body["id"]
    assert body["status"] == "draft"
    assert len(body["participants"]) == 2
    assert all("access_token" not in participant for participant in body["participants"])

    sent = client.post(f"{API}/{request_id}/send", headers=headers)
    assert sent.status_code == status.HTTP_200_OK, sent.json()
    assert sent.json()["status"] == "sent"
    assert dispatcher.emails_for("signature_requested") == ["alice@example.com"]

    detail = client.get(f"{API}/{request_id}", headers=headers).json()
    assert all("access_token" not in participant for participant in detail["participants"])

    alice_token = token_for(db_session, detail["participants"][0]["request_id"], "alice@example.com")
    bob_token = token_for(db_session, detail["participants"][0]["request_id"], "bob@example.com")

    session_view = client.get(f"/public/sign/{alice_token}")
    assert session_view.status_code == status.HTTP_200_OK
    view = session_view.json()
    assert view["can_sign"] is True
    assert view["request"]["document_name"] == "Contract.pdf"
    field_id = view["fields"][0]["id"]

    early = client.get(f"/public/sign/{bob_token}").json()
    early_field = early["fields"][0]["id"]
    out_of_turn = client.post(
        f"/public/sign/{bob_token}/signatures",
        json={"field_id": early_field, "signature_data": SIGNATURE_IMAGE, "signature_type": "drawn"},
    )
    assert out_of_turn.status_code == status.HTTP_409_CONFLICT
    assert out_of_turn.json()["detail"]["message"] == "It is not your turn to sign yet"

    signed = client.post(
        f"/public/sign/{alice_token}/signatures",
        json={"field_id": field_id, "signature_data": SIGNATURE_IMAGE, "signature_type": "drawn"},
        headers={"User-Agent": "pytest-browser"},
    )
    assert signed.status_code == status.HTTP_201_CREATED, signed.json()
    assert "signature_data" not in signed.json()

    bob_signed = client.post(
        f"/public/sign/{bob_token}/signatures",
        json={"field_id": early_field, "signature_data": "Bob", "signature_type": "typed"},
    )
    assert bob_signed.status_code == status.HTTP_201_CREATED, bob_signed.json()

    final = client.get(f"{API}/{request_id}", headers=headers).json()
    assert final["status"] == "completed"

    trail = client.get(f"{API}/{request_id}/audit", headers=headers)
    assert trail.status_code == status.HTTP_200_OK
    actions = [item["action"] for item in trail.json()["items"]]
    assert actions[0] == "request_created"
    assert actions[-1] == "request_completed"
    assert trail.json()["total"] == len(actions)
    signed_entry = next(item for item in trail.json()["items"] if item["action"] == "field_signed")
    assert signed_entry["user_agent"] == "pytest-browser"

    after = client.get(f"/public/sign/{alice_token}")
    assert after.status_code == status.HTTP_401_UNAUTHORIZED


def test_field_routes_and_draft_lock(client: TestClient, tenant: dict) -> None:
    headers = auth_headers(tenant["user"])
    created = client.post(API, json=_create_payload(tenant), headers=headers).json()
    request_id = created["id"]
    participant_id = created["participants"][0]["id"]

    added = client.post(
        f"{API}/{request_id}/fields",
        json={"participant_id": participant_id, "field_type": "date", "x": 10, "y": 10, "width": 15, "height": 4},
        headers=headers,
    )
    assert added.status_code == status.HTTP_201_CREATED, added.json()
    field_id = added.json()["id"]

    updated = client.patch(f"{API}/fields/{field_id}", json={"label": "Date"}, headers=headers)
    assert updated.status_code == status.HTTP_200_OK
    assert updated.json()["label"] == "Date"

    overflow = client.patch(f"{API}/fields/{field_id}", json={"x": 95}, headers=headers)
    assert overflow.status_code == 422

    out_of_range = client.post(
        f"{API}/{request_id}/fields",
        json={"participant_id": participant_id, "x": 10, "y": 10, "width": 80, "height": 4},
        headers=headers,
    )
    assert out_of_range.status_code == 422

    fields = client.get(f"{API}/{request_id}/fields", headers=headers).json()
    assert len(fields) == 3

    assert client.delete(f"{API}/fields/{field_id}", headers=headers).status_code == status.HTTP_204_NO_CONTENT

    client.post(f"{API}/{request_id}/send", headers=headers)
    locked = client.post(
        f"{API}/{request_id}/fields",
        json={"participant_id": participant_id, "x": 10, "y": 10, "width": 15, "height": 4},
        headers=headers,
    )
    assert locked.status_code == status.HTTP_409_CONFLICT
    assert locked.json()["detail"]["message"] == "Cannot modify fields after request is sent"


def test_cross_tenant_request_is_not_found(client: TestClient, tenant: dict, other_tenant: dict) -> None:
    created = client.post(API, json=_create_payload(tenant), headers=auth_headers(tenant["user"])).json()

    response = client.get(f"{API}/{created['id']}", headers=auth_headers(other_tenant["user"]))
    assert response.status_code == status.HTTP_404_NOT_FOUND

    listing = client.get(API, headers=auth_headers(other_tenant["user"]))
    assert listing.json() == []


def test_decline_cancel_and_delete_routes(client: TestClient, db_session: Session, tenant: dict) -> None:
    headers = auth_headers(tenant["user"])
    first = client.post(API, json=_create_payload(tenant, "parallel"), headers=headers).json()
    client.post(f"{API}/{first['id']}/send", headers=headers)
    alice_token = token_for(db_session, first["id"], "alice@example.com")

    declined = client.post(f"/public/sign/{alice_token}/decline", json={"reason": "Not me"})
    assert declined.status_code == status.HTTP_200_OK
    assert declined.json()["status"] == "declined"
    assert client.get(f"{API}/{first['id']}", headers=headers).json()["status"] == "declined"

    cancel_again = client.post(f"{API}/{first['id']}/cancel", headers=headers)
    assert cancel_again.status_code == status.HTTP_409_CONFLICT

    second = client.post(API, json=_create_payload(tenant), headers=headers).json()
    renamed = client.patch(f"{API}/{second['id']}", json={"title": "Renamed"}, headers=headers)
    assert renamed.json()["title"] == "Renamed"
    assert client.delete(f"{API}/{second['id']}", headers=headers).status_code == status.HTTP_204_NO_CONTENT
    assert client.get(f"{API}/{second['id']}", headers=headers).status_code == status.HTTP_404_NOT_FOUND

    third = client.post(API, json=_create_payload(tenant), headers=headers).json()
    client.post(f"{API}/{third['id']}/send", headers=headers)
    resent = client.post(f"{API}/{third['id']}/resend", headers=headers)
    assert resent.json() == {"notified": 1}
    cancelled = client.post(f"{API}/{third['id']}/cancel", headers=headers)
    assert cancelled.json()["status"] == "cancelled"


def test_create_with_unknown_document_is_rejected(client: TestClient, tenant: dict, other_tenant: dict) -> None:
    payload = _create_payload(tenant)
    payload["document_id"] = str(other_tenant["document"].id)
    response = client.post(API, json=payload, headers=auth_headers(tenant["user"]))
    assert response.status_code == 422
    assert response.json()["detail"]["message"] == "Document not found"


def test_health_endpoints(client: TestClient) -> None:
    assert client.get("/health/live").json() == {"status": "ok"}
