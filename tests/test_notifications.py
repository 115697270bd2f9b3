import uuid

import httpx
import pytest

from app.config import settings
from app.database import after_commit, commit, rollback
from app.services.notification_service import NotificationService, notification_service
from app.services.rendezvous_service import rendezvous_service
from conftest import NOW, booking_payload, future_day


def service_with(handler) -> NotificationService:
    service = NotificationService()
    service._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return service


@pytest.fixture
def sendgrid_key(monkeypatch):
    monkeypatch.setattr(settings, "sendgrid_api_key", "SG.test")


async def test_skipped_without_api_key():
    def handler(request):
        raise AssertionError("no request expected")

    service = service_with(handler)
    assert await service.send_email("a@example.com", "Sujet", "<p>x</p>") is False
    await service.close()


async def test_sends_through_sendgrid(sendgrid_key):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = request.read().decode()
        return httpx.Response(202)

    service = service_with(handler)
    assert await service.send_email("a@example.com", "Sujet", "<p>x</p>", text_content="x") is True
    assert seen["auth"] == "Bearer SG.test"
    assert "a@example.com" in seen["body"]
    await service.close()


async def test_provider_error_is_reported_not_raised(sendgrid_key):
    service = service_with(lambda request: httpx.Response(500, text="boom"))
    assert await service.send_email("a@example.com", "Sujet", "<p>x</p>") is False
    await service.close()


async def test_network_error_is_reported_not_raised(sendgrid_key):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    service = service_with(handler)
    assert await service.send_email("a@example.com", "Sujet", "<p>x</p>") is False
    await service.close()


async def test_status_mail_mentions_slot(db, monkeypatch):
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.read().decode())
        return httpx.Response(202)

    rendezvous = await rendezvous_service.book(db, booking_payload(time_slot="14:30"), now=NOW)
    monkeypatch.setattr(settings, "sendgrid_api_key", "SG.test")
    service = service_with(handler)
    assert await service.send_rendezvous_status_update(rendezvous) is True
    assert "14:30" in bodies[0]
    assert "01/06/2025" in bodies[0]
    await service.close()


class TestAfterCommit:
    @pytest.fixture
    def sent(self, monkeypatch):
        sent = []

        async def record(rendezvous):
            sent.append(rendezvous.id)
            return True

        monkeypatch.setattr(notification_service, "send_rendezvous_status_update", record)
        return sent

    async def test_booking_mail_waits_for_commit(self, db, sent):
        rendezvous = await rendezvous_service.book(db, booking_payload(), now=NOW)
        assert sent == []

        await commit(db)
        assert sent == [rendezvous.id]

    async def test_rollback_drops_queued_mail(self, db, sent):
        await rendezvous_service.book(db, booking_payload(), now=NOW)
        await rollback(db)
        await commit(db)
        assert sent == []

    async def test_failed_mail_does_not_fail_commit(self, db, sent):
        async def broken(rendezvous):
            raise RuntimeError("template error")

        after_commit(db, broken, None)
        rendezvous = await rendezvous_service.book(db, booking_payload(), now=NOW)

        await commit(db)
        assert sent == [rendezvous.id]

    async def test_api_booking_sends_after_request(self, api, sent):
        response = await api.post(
            "/api/v1/rendezvous",
            json=booking_payload(date=future_day()).model_dump(mode="json"),
        )
        assert response.status_code == 201
        assert sent == [uuid.UUID(response.json()["id"])]
