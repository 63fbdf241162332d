"""
Pricing admin, part approval and authorized network endpoints.
"""
import pytest

from booking_engine.db.models.part_approval import PartApprovalStatus

from tests.support import ADMIN_HEADERS, shipment_request


@pytest.mark.integration
class TestPricingEndpoints:

    async def test_requires_admin_key(self, test_client):
        response = await test_client.put("/api/pricing/1", json={"rate_per_box": "75"})

        assert response.status_code == 401

    async def test_upsert_then_get(self, test_client):
        created = await test_client.put("/api/pricing/1", json={"rate_per_box": "75"}, headers=ADMIN_HEADERS)
        updated = await test_client.put("/api/pricing/1", json={"rate_per_box": "80"}, headers=ADMIN_HEADERS)
        fetched = await test_client.get("/api/pricing/1", headers=ADMIN_HEADERS)

        assert created.status_code == updated.status_code == fetched.status_code == 200
        assert float(fetched.json()["rate_per_box"]) == 80
        assert fetched.json()["is_active"] is True

    async def test_rate_must_be_positive(self, test_client):
        response = await test_client.put("/api/pricing/1", json={"rate_per_box": "0"}, headers=ADMIN_HEADERS)

        assert response.status_code == 400

    async def test_missing_pricing_404(self, test_client):
        response = await test_client.get("/api/pricing/55", headers=ADMIN_HEADERS)

        assert response.status_code == 404

    async def test_deactivate_falls_back_to_default_rate(self, test_client, bookable_brand):
        response = await test_client.delete("/api/pricing/1", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["is_active"] is False

        quote = await test_client.post("/api/shipments/quote", json=shipment_request())
        assert quote.json()["rate_source"] == "default"


@pytest.mark.integration
class TestPartApprovalEndpoints:

    async def _submit(self, test_client, part_id: str = "FLT-300"):
        response = await test_client.post("/api/parts/approvals", json={
            "brand_id": 1, "part_id": part_id, "part_name": "Oil filter", "category": "MECHANICAL",
        })
        assert response.status_code == 201
        return response.json()

    async def test_submit_is_pending(self, test_client):
        approval = await self._submit(test_client)

        assert approval["status"] == "pending"
        assert approval["times_shipped"] == 0

    async def test_duplicate_open_submission_400(self, test_client):
        await self._submit(test_client)

        response = await test_client.post("/api/parts/approvals", json={
            "brand_id": 1, "part_id": "FLT-300", "part_name": "Oil filter",
        })

        assert response.status_code == 400
        assert response.json()["error"]["details"]["status"] == "pending"

    async def test_review_then_approve(self, test_client):
        approval = await self._submit(test_client)

        review = await test_client.post(f"/api/parts/approvals/{approval['id']}/review", headers=ADMIN_HEADERS)
        approve = await test_client.post(f"/api/parts/approvals/{approval['id']}/approve", headers=ADMIN_HEADERS)

        assert review.json()["status"] == "under_review"
        assert approve.json()["status"] == "approved"
        assert approve.json()["reviewed_at"] is not None

        approved = await test_client.get("/api/parts/approved", params={"brand_id": 1})
        assert [p["part_id"] for p in approved.json()] == ["FLT-300"]

    async def test_review_requires_admin_key(self, test_client):
        approval = await self._submit(test_client)

        response = await test_client.post(f"/api/parts/approvals/{approval['id']}/approve")

        assert response.status_code == 401

    async def test_reject_requires_reason(self, test_client):
        approval = await self._submit(test_client)

        response = await test_client.post(
            f"/api/parts/approvals/{approval['id']}/reject", json={"reason": ""}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 400

    async def test_rejected_part_can_be_resubmitted(self, test_client):
        approval = await self._submit(test_client)
        rejected = await test_client.post(
            f"/api/parts/approvals/{approval['id']}/reject",
            json={"reason": "missing safety certificate"},
            headers=ADMIN_HEADERS,
        )
        assert rejected.json()["rejection_reason"] == "missing safety certificate"

        again = await self._submit(test_client)

        assert again["id"] != approval["id"]
        listed = await test_client.get(
            "/api/parts/approvals", params={"brand_id": 1, "status": PartApprovalStatus.REJECTED.value}
        )
        assert [a["id"] for a in listed.json()] == [approval["id"]]

    async def test_approved_is_final(self, test_client):
        approval = await self._submit(test_client)
        await test_client.post(f"/api/parts/approvals/{approval['id']}/approve", headers=ADMIN_HEADERS)

        response = await test_client.post(
            f"/api/parts/approvals/{approval['id']}/reject", json={"reason": "changed mind"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 409

    async def test_unknown_approval_404(self, test_client):
        response = await test_client.post("/api/parts/approvals/999/approve", headers=ADMIN_HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_6003"


@pytest.mark.integration
class TestNetworkEndpoints:

    async def test_lists_active_recipients_only(self, test_client, recipient_factory):
        await recipient_factory(recipient_id=501, recipient_name="Sharma Auto Spares")
        await recipient_factory(recipient_id=502, recipient_name="Anand Motors")
        await recipient_factory(recipient_id=503, recipient_name="Closed Depot", is_active=False)

        response = await test_client.get("/api/network/1/recipients")

        assert response.status_code == 200
        assert [r["recipient_id"] for r in response.json()] == [502, 501]
