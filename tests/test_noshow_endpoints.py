import pytest
from httpx import ASGITransport, AsyncClient

from rcn_api.core.settings import settings

CUSTOMER = "0x00000000000000000000000000000000000000b7"
REASON = "My car broke down on the way to the appointment"


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_mark_status_and_history(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        for order_id in ("order-1", "order-2"):
            marked = await client.post(
                f"/api/v1/noshow/{CUSTOMER}/mark",
                json={"orderId": order_id, "shopId": "shop-1", "notes": "Customer did not arrive"},
            )
            assert marked.status_code == 201

        duplicate = await client.post(f"/api/v1/noshow/{CUSTOMER}/mark", json={"orderId": "order-1"})
        assert duplicate.status_code == 409

        status_response = await client.get(f"/api/v1/noshow/{CUSTOMER}/status")
        history = await client.get(f"/api/v1/noshow/{CUSTOMER}/history")

    assert status_response.status_code == 200
    payload = status_response.json()
    assert payload["tier"] == "caution"
    assert payload["noShowCount"] == 2
    assert payload["canBook"] is True
    assert payload["minimumAdvanceHours"] == 24
    assert payload["redemptionMultiplier"] == 0.8
    assert payload["depositAmount"] is None
    assert "Must book at least 24 hours in advance" in payload["restrictions"]

    assert history.status_code == 200
    assert sorted(event["orderId"] for event in history.json()) == ["order-1", "order-2"]
    assert all(event["disputeStatus"] is None for event in history.json())


@pytest.mark.asyncio
async def test_unknown_customer_reports_normal_tier(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.get("/api/v1/noshow/0x00000000000000000000000000000000000000ff/status")

    assert response.status_code == 200
    assert response.json()["tier"] == "normal"
    assert response.json()["restrictions"] == []


@pytest.mark.asyncio
async def test_dispute_flow_over_http(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        for order_id in ("order-a", "order-b", "order-c"):
            await client.post(f"/api/v1/noshow/{CUSTOMER}/mark", json={"orderId": order_id, "shopId": "shop-9"})

        first = await client.post(
            "/api/v1/noshow/disputes",
            json={"orderId": "order-a", "reason": REASON, "customerAddress": CUSTOMER},
        )
        assert first.status_code == 201
        assert first.json()["autoApproved"] is True
        assert first.json()["status"] == "auto_approved"
        assert first.json()["customerStatus"]["noShowCount"] == 2

        second = await client.post(
            "/api/v1/noshow/disputes",
            json={"orderId": "order-b", "reason": REASON, "customerAddress": CUSTOMER},
        )
        assert second.status_code == 201
        assert second.json()["autoApproved"] is False
        assert second.json()["status"] == "pending"

        short = await client.post(
            "/api/v1/noshow/disputes",
            json={"orderId": "order-c", "reason": "late", "customerAddress": CUSTOMER},
        )
        assert short.status_code == 422

        anonymous = await client.post("/api/v1/noshow/disputes", json={"orderId": "order-c", "reason": REASON})
        assert anonymous.status_code == 422

        stranger = await client.post(
            "/api/v1/noshow/disputes",
            json={
                "orderId": "order-c",
                "reason": REASON,
                "customerAddress": "0x00000000000000000000000000000000000000ee",
            },
        )
        assert stranger.status_code == 403

        missing = await client.post(
            "/api/v1/noshow/disputes",
            json={"orderId": "order-z", "reason": REASON, "customerAddress": CUSTOMER},
        )
        assert missing.status_code == 404

        pending = await client.get("/api/v1/noshow/disputes", params={"status": "pending", "shopId": "shop-9"})
        assert [row["orderId"] for row in pending.json()] == ["order-b"]
        assert pending.json()[0]["shopId"] == "shop-9"

        unexplained = await client.post(
            "/api/v1/noshow/disputes/order-b/resolve",
            json={"approve": True, "notes": "ok", "resolvedBy": "shop-9"},
        )
        assert unexplained.status_code == 422
        assert "at least 10 characters" in unexplained.json()["detail"]

        resolved = await client.post(
            "/api/v1/noshow/disputes/order-b/resolve",
            json={"approve": True, "notes": "Verified tow receipt", "resolvedBy": "shop-9"},
        )
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "approved"

        again = await client.post("/api/v1/noshow/disputes/order-b/resolve", json={"approve": False})
        assert again.status_code == 409
        assert again.json()["detail"]["currentStatus"] == "approved"

        final_status = await client.get(f"/api/v1/noshow/{CUSTOMER}/status")

    assert final_status.json()["noShowCount"] == 1
    assert final_status.json()["tier"] == "warning"


@pytest.mark.asyncio
async def test_completed_appointments_relieve_deposit_tier(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        for index in range(3):
            await client.post(f"/api/v1/noshow/{CUSTOMER}/mark", json={"orderId": f"order-{index}"})

        deposit = await client.get(f"/api/v1/noshow/{CUSTOMER}/status")
        assert deposit.json()["tier"] == "deposit_required"
        assert deposit.json()["depositAmount"] == 25.0

        for _ in range(3):
            response = await client.post(f"/api/v1/noshow/{CUSTOMER}/appointments/completed")
            assert response.status_code == 200

    assert response.json()["tier"] == "caution"
    assert response.json()["successfulAppointmentsSinceTier3"] == 0


@pytest.mark.asyncio
async def test_internal_routes_require_api_key(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "internal_api_key", "booking-key")

    async with _client(app) as client:
        denied = await client.post(f"/api/v1/noshow/{CUSTOMER}/mark", json={"orderId": "order-1"})
        allowed = await client.post(
            f"/api/v1/noshow/{CUSTOMER}/mark",
            json={"orderId": "order-1"},
            headers={"X-API-Key": "booking-key"},
        )
        resolve_denied = await client.post("/api/v1/noshow/disputes/order-1/resolve", json={"approve": True})

    assert denied.status_code == 401
    assert allowed.status_code == 201
    assert resolve_denied.status_code == 401
