"""HTTP-level tests: routing, auth dependencies and error rendering."""

import pytest

from conftest import auth_headers, future_day

API = "/api/v1"


def booking_json(day, time_slot="10:00", **overrides):
    data = {
        "first_name": "Amina",
        "last_name": "Benali",
        "email": "amina.benali@example.com",
        "phone": "+33612345678",
        "destination": "France",
        "education_level": "Licence",
        "field_of_study": "Informatique",
        "date": day.isoformat(),
        "time_slot": time_slot,
    }
    data.update(overrides)
    return data


async def test_health(api):
    response = await api.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_booking_flow_to_procedure(api, client_user, admin_user):
    day = future_day()
    client = auth_headers(client_user)
    admin = auth_headers(admin_user)

    response = await api.post(f"{API}/rendezvous", json=booking_json(day), headers=client)
    assert response.status_code == 201, response.text
    rendezvous = response.json()
    assert rendezvous["status"] == "pending"
    assert rendezvous["user_id"] == str(client_user.id)

    response = await api.get(f"{API}/rendezvous/occupied-slots", params={"date": day.isoformat()})
    assert response.json()["slots"] == ["10:00"]

    response = await api.post(f"{API}/rendezvous/{rendezvous['id']}/confirm", headers=client)
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"

    response = await api.post(
        f"{API}/rendezvous/{rendezvous['id']}/complete",
        json={"admin_verdict": "favorable"},
        headers=admin,
    )
    assert response.status_code == 200
    assert response.json()["procedure_eligible"] is True

    response = await api.post(
        f"{API}/procedures", json={"rendezvous_id": rendezvous["id"]}, headers=admin
    )
    assert response.status_code == 201, response.text
    procedure = response.json()
    assert [s["status"] for s in procedure["steps"]] == ["pending"] * 3

    response = await api.put(
        f"{API}/procedures/{procedure['id']}/steps/visa_request",
        json={"status": "in_progress"},
        headers=admin,
    )
    assert response.status_code == 400
    assert "Demande d'admission" in response.json()["detail"]

    response = await api.get(f"{API}/procedures/mine", headers=client)
    assert response.json()["total"] == 1


async def test_slot_conflict_is_409(api, client_user, other_client_user):
    day = future_day()
    first = await api.post(
        f"{API}/rendezvous", json=booking_json(day), headers=auth_headers(client_user)
    )
    assert first.status_code == 201
    second = await api.post(
        f"{API}/rendezvous",
        json=booking_json(day, email=other_client_user.email),
        headers=auth_headers(other_client_user),
    )
    assert second.status_code == 409


async def test_anonymous_booking_allowed(api):
    response = await api.post(f"{API}/rendezvous", json=booking_json(future_day(12)))
    assert response.status_code == 201
    assert response.json()["user_id"] is None


async def test_invalid_payload_is_422(api):
    response = await api.post(
        f"{API}/rendezvous", json=booking_json(future_day(), destination="Mars")
    )
    assert response.status_code == 422


async def test_missing_verdict_is_422(api, admin_user):
    admin = auth_headers(admin_user)
    created = await api.post(f"{API}/rendezvous", json=booking_json(future_day()))
    response = await api.post(
        f"{API}/rendezvous/{created.json()['id']}/complete", json={}, headers=admin
    )
    assert response.status_code == 422


async def test_procedure_from_pending_appointment_is_400(api, admin_user):
    created = await api.post(f"{API}/rendezvous", json=booking_json(future_day()))
    response = await api.post(
        f"{API}/procedures",
        json={"rendezvous_id": created.json()["id"]},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 400


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/rendezvous"),
        ("get", "/procedures"),
        ("get", "/procedures/overview"),
    ],
)
async def test_admin_routes_forbidden_for_clients(api, client_user, method, path):
    response = await api.request(method.upper(), f"{API}{path}", headers=auth_headers(client_user))
    assert response.status_code == 403


async def test_missing_token_is_401(api):
    response = await api.get(f"{API}/rendezvous/mine")
    assert response.status_code == 401


async def test_bad_token_is_401(api):
    response = await api.get(
        f"{API}/rendezvous/mine", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401


async def test_unknown_rendezvous_is_404(api, admin_user):
    response = await api.get(
        f"{API}/rendezvous/00000000-0000-0000-0000-000000000000",
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 404


async def test_client_cancel_then_cancel_again_is_409(api, client_user):
    headers = auth_headers(client_user)
    created = await api.post(f"{API}/rendezvous", json=booking_json(future_day()), headers=headers)
    rendezvous_id = created.json()["id"]

    response = await api.post(f"{API}/rendezvous/{rendezvous_id}/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["cancelled_by"] == "client"

    response = await api.post(f"{API}/rendezvous/{rendezvous_id}/cancel", headers=headers)
    assert response.status_code == 409


async def test_soft_deleted_procedure_is_404(api, admin_user):
    admin = auth_headers(admin_user)
    created = await api.post(f"{API}/rendezvous", json=booking_json(future_day()))
    rendezvous_id = created.json()["id"]
    await api.post(f"{API}/rendezvous/{rendezvous_id}/confirm", headers=admin)
    await api.post(
        f"{API}/rendezvous/{rendezvous_id}/complete", json={"admin_verdict": "favorable"}, headers=admin
    )
    procedure = (
        await api.post(f"{API}/procedures", json={"rendezvous_id": rendezvous_id}, headers=admin)
    ).json()

    response = await api.request(
        "DELETE", f"{API}/procedures/{procedure['id']}", json={"reason": "Doublon"}, headers=admin
    )
    assert response.status_code == 204

    response = await api.get(f"{API}/procedures/{procedure['id']}", headers=admin)
    assert response.status_code == 404
