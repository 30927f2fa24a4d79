"""HTTP tests for the contract routes."""

from __future__ import annotations

import uuid

import pytest

CONTRACT_BODY = {
    "client_id": "client-1",
    "freelancer_id": "freelancer-1",
    "job_id": "job-1",
    "proposal_id": "proposal-1",
    "title": "Landing page redesign",
    "total_amount": 1000,
    "split_policy": {"upfront": 30, "milestone": 30, "completion": 40},
    "duration_days": 10,
}


async def _create(client) -> dict:
    response = await client.post("/api/v1/contracts", json=CONTRACT_BODY)
    assert response.status_code == 201
    return response.json()


async def _sign(client, contract_id: str, party: str, blob: str | None = None):
    return await client.post(
        f"/api/v1/contracts/{contract_id}/sign",
        json={"party": party, "signature_blob": blob or f"{party}-signature"},
    )


class TestCreate:
    async def test_create_returns_phase_amounts(self, client) -> None:
        body = await _create(client)
        assert body["status"] == "pending_signatures"
        assert body["phase_amounts"] == {"upfront": 300, "milestone": 300, "completion": 400}
        assert "client_signature" not in body

    @pytest.mark.parametrize(
        "policy",
        [
            {"upfront": 50, "completion": 40},
            {"milestone": 100},
            {"upfront": 50, "bonus": 50},
            {"upfront": 0, "completion": 100},
        ],
    )
    async def test_invalid_split_policy(self, client, policy: dict) -> None:
        response = await client.post(
            "/api/v1/contracts", json={**CONTRACT_BODY, "split_policy": policy}
        )
        assert response.status_code == 422

    async def test_non_positive_total(self, client) -> None:
        response = await client.post(
            "/api/v1/contracts", json={**CONTRACT_BODY, "total_amount": 0}
        )
        assert response.status_code == 422

    async def test_total_too_small_for_every_phase(self, client) -> None:
        response = await client.post(
            "/api/v1/contracts", json={**CONTRACT_BODY, "total_amount": 2}
        )
        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_SPLIT_POLICY"

    async def test_list_by_party(self, client) -> None:
        await _create(client)
        response = await client.get("/api/v1/contracts", params={"party_id": "freelancer-1"})
        assert response.status_code == 200
        assert len(response.json()) == 1


class TestSign:
    async def test_second_signature_issues_upfront_link(self, client, gateway, notifier) -> None:
        contract = await _create(client)

        first = await _sign(client, contract["id"], "client")
        assert first.status_code == 200
        assert first.json()["became_signed"] is False
        assert first.json()["payment_url"] is None

        second = await _sign(client, contract["id"], "freelancer")
        body = second.json()
        assert second.status_code == 200
        assert body["became_signed"] is True
        assert body["contract"]["status"] == "signed"
        assert body["payment_url"].startswith("https://pay.test/")
        assert gateway.requests[0].amount == 300
        assert {r for r, kind, _ in notifier.sent if kind == "contract_signed"} == {
            "client-1",
            "freelancer-1",
        }

    async def test_gateway_outage_keeps_signature(self, client, gateway) -> None:
        from escrow_settlement.domain.exceptions import GatewayUnavailableError

        gateway.fail_with = GatewayUnavailableError("down")
        contract = await _create(client)
        await _sign(client, contract["id"], "client")

        response = await _sign(client, contract["id"], "freelancer")

        assert response.status_code == 200
        assert response.json()["became_signed"] is True
        assert response.json()["payment_url"] is None

        retry = await client.post(
            f"/api/v1/contracts/{contract['id']}/payments", json={"phase": "upfront"}
        )
        assert retry.status_code == 503
        assert retry.json()["retryable"] is True

    async def test_replayed_signature_is_ok(self, client) -> None:
        contract = await _create(client)
        await _sign(client, contract["id"], "client", "blob")
        replay = await _sign(client, contract["id"], "client", "blob")
        assert replay.status_code == 200
        assert replay.json()["recorded"] is False

    async def test_changed_signature_conflicts(self, client) -> None:
        contract = await _create(client)
        await _sign(client, contract["id"], "client", "blob")
        response = await _sign(client, contract["id"], "client", "other")
        assert response.status_code == 409
        assert response.json()["error"] == "DUPLICATE_SIGNATURE"

    async def test_unknown_contract(self, client) -> None:
        response = await _sign(client, str(uuid.uuid4()), "client")
        assert response.status_code == 404
        assert response.json()["error"] == "CONTRACT_NOT_FOUND"

    async def test_unknown_party(self, client) -> None:
        contract = await _create(client)
        response = await _sign(client, contract["id"], "witness")
        assert response.status_code == 422


class TestPaymentsAndStatus:
    async def test_payment_already_in_flight(self, client) -> None:
        contract = await _create(client)
        await _sign(client, contract["id"], "client")
        await _sign(client, contract["id"], "freelancer")

        response = await client.post(
            f"/api/v1/contracts/{contract['id']}/payments", json={"phase": "upfront"}
        )
        assert response.status_code == 409
        assert response.json()["error"] == "PAYMENT_IN_FLIGHT"

        payments = await client.get(f"/api/v1/contracts/{contract['id']}/payments")
        assert [p["status"] for p in payments.json()] == ["pending"]

    async def test_status_shows_pending_payment(self, client) -> None:
        contract = await _create(client)
        await _sign(client, contract["id"], "client")
        await _sign(client, contract["id"], "freelancer")

        status = (await client.get(f"/api/v1/contracts/{contract['id']}/status")).json()
        assert status["status"] == "signed"
        assert status["display_label"] == "payment pending"
        assert sorted(status["signed_by"]) == ["client", "freelancer"]

    async def test_events_expose_metadata(self, client) -> None:
        contract = await _create(client)
        events = (await client.get(f"/api/v1/contracts/{contract['id']}/events")).json()
        assert events[0]["event_type"] == "CONTRACT_CREATED"
        assert events[0]["metadata"]["job_id"] == "job-1"

    async def test_dispute(self, client) -> None:
        contract = await _create(client)
        early = await client.post(
            f"/api/v1/contracts/{contract['id']}/dispute",
            json={"reason": "not started", "raised_by": "client-1"},
        )
        assert early.status_code == 409

        await _sign(client, contract["id"], "client")
        await _sign(client, contract["id"], "freelancer")
        response = await client.post(
            f"/api/v1/contracts/{contract['id']}/dispute",
            json={"reason": "scope changed", "raised_by": "client-1"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "disputed"
