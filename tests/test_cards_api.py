"""
Tests for the HTTP surface (cards, customers, consumed events, health).

These tests verify:
  - POST /cards/issue returns 201 with tokens only, 200 on replay
  - The Idempotency-Key header overrides the body key
  - Domain errors map to 400 / 404 / 409 with {"detail", "error_type"}
  - Activation through the API, including a repeated activation (409)
  - Card lookups are masked and never expose the PAN, CVV or tokens' values
  - The consumed-event intake answers 202 with the outcome
"""

import uuid

from card_issuer.services.pan_generator import is_luhn_valid


class TestIssueEndpoint:
    """Tests for POST /cards/issue."""

    async def test_issue_two_cards(self, client, issuance_payload, vault):
        response = await client.post(
            "/cards/issue",
            json=issuance_payload(),
            headers={"Idempotency-Key": "api-1"},
        )
        assert response.status_code == 201, response.text
        data = response.json()

        assert data["replayed"] is False
        assert [card["card_class"] for card in data["cards"]] == ["VIRTUAL", "PHYSICAL"]
        for card in data["cards"]:
            assert card["status"] == "ISSUED"
            assert card["pan_token"].startswith("tok_pan_")
            assert is_luhn_valid(vault.retrieve(card["pan_token"]))
            assert "pan" not in card
            assert "cvv" not in card
            assert "cvv_token" not in card

    async def test_replay_returns_200_and_same_cards(self, client, issuance_payload):
        payload = issuance_payload()
        headers = {"Idempotency-Key": "api-replay"}

        first = await client.post("/cards/issue", json=payload, headers=headers)
        second = await client.post("/cards/issue", json=payload, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["replayed"] is True
        assert [c["card_id"] for c in second.json()["cards"]] == [
            c["card_id"] for c in first.json()["cards"]
        ]

    async def test_body_key_used_without_header(self, client, issuance_payload):
        payload = issuance_payload(idempotency_key="body-key")

        await client.post("/cards/issue", json=payload)
        second = await client.post("/cards/issue", json=payload)

        assert second.status_code == 200

    async def test_header_overrides_body_key(self, client, issuance_payload):
        payload = issuance_payload(idempotency_key="body-key")

        await client.post("/cards/issue", json=payload, headers={"Idempotency-Key": "h-1"})
        second = await client.post("/cards/issue", json=payload, headers={"Idempotency-Key": "h-2"})

        assert second.status_code == 201

    async def test_invalid_card_count_is_400(self, client, issuance_payload):
        response = await client.post("/cards/issue", json=issuance_payload(card_count=3))

        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_argument"

    async def test_no_delivery_channel_is_400(self, client, issuance_payload):
        response = await client.post(
            "/cards/issue",
            json=issuance_payload(delivery={"physical": False, "virtual": False}),
        )
        assert response.status_code == 400

    async def test_malformed_body_is_422(self, client, issuance_payload):
        response = await client.post("/cards/issue", json=issuance_payload(customer_id="nope"))
        assert response.status_code == 422


class TestActivateEndpoint:
    """Tests for POST /cards/{card_id}/activate."""

    async def test_activate_then_repeat(self, client, issuance_payload):
        issued = await client.post("/cards/issue", json=issuance_payload(card_count=1))
        card_id = issued.json()["cards"][0]["card_id"]
        body = {"credential": "123456", "channel": "APP", "correlation_id": "corr-a"}

        first = await client.post(f"/cards/{card_id}/activate", json=body)
        assert first.status_code == 200, first.text
        data = first.json()
        assert data["card_id"] == card_id
        assert data["status"] == "ACTIVE"
        assert data["channel"] == "APP"
        assert data["correlation_id"] == "corr-a"

        second = await client.post(f"/cards/{card_id}/activate", json=body)
        assert second.status_code == 409
        assert second.json()["error_type"] == "invalid_state"

    async def test_unknown_card_is_404(self, client):
        response = await client.post(
            f"/cards/{uuid.uuid4()}/activate",
            json={"credential": "123", "channel": "OTP", "correlation_id": "corr"},
        )
        assert response.status_code == 404
        assert response.json()["error_type"] == "not_found"

    async def test_bad_credential_is_400(self, client, issuance_payload):
        issued = await client.post("/cards/issue", json=issuance_payload(card_count=1))
        card_id = issued.json()["cards"][0]["card_id"]

        response = await client.post(
            f"/cards/{card_id}/activate",
            json={"credential": "12", "channel": "APP", "correlation_id": "corr"},
        )
        assert response.status_code == 400


class TestReadEndpoints:
    """Tests for GET /cards/{card_id} and GET /customers/{customer_id}/cards."""

    async def test_get_card_is_masked(self, client, issuance_payload, vault):
        issued = await client.post("/cards/issue", json=issuance_payload(card_count=1))
        issued_card = issued.json()["cards"][0]
        pan = vault.retrieve(issued_card["pan_token"])

        response = await client.get(f"/cards/{issued_card['card_id']}")
        assert response.status_code == 200
        data = response.json()

        assert data["masked_number"] == f"{pan[:4]} **** **** {pan[-4:]}"
        assert pan not in response.text
        assert "pan_token" not in data
        assert "cvv_token" not in data
        assert data["status"] == "ISSUED"
        assert data["is_expired"] is False

    async def test_get_unknown_card_is_404(self, client):
        response = await client.get(f"/cards/{uuid.uuid4()}")
        assert response.status_code == 404

    async def test_list_customer_cards(self, client, issuance_payload):
        payload = issuance_payload()
        await client.post("/cards/issue", json=payload)

        response = await client.get(f"/customers/{payload['customer_id']}/cards")
        assert response.status_code == 200
        assert len(response.json()) == 2

        empty = await client.get(f"/customers/{uuid.uuid4()}/cards")
        assert empty.json() == []


class TestEventsEndpoint:
    """Tests for POST /events/card-issuance-requested."""

    def event_body(self, payload: dict, credit_score: int) -> dict:
        return {
            "customerId": payload["customer_id"],
            "proposalId": payload["proposal_id"],
            "accountId": payload["account_id"],
            "productCode": payload["product_code"],
            "cardCount": payload["card_count"],
            "creditLimitCents": payload["credit_limit_cents"],
            "delivery": payload["delivery"],
            "correlationId": payload["correlation_id"],
            "idempotencyKey": "evt-api",
            "creditScore": credit_score,
        }

    async def test_accepted_event_issues_cards(self, client, issuance_payload):
        response = await client.post(
            "/events/card-issuance-requested",
            json=self.event_body(issuance_payload(), 780),
        )
        assert response.status_code == 202, response.text
        data = response.json()
        assert data["outcome"] == "created"
        assert len(data["cardIds"]) == 2

    async def test_low_score_reports_rejection(self, client, issuance_payload):
        response = await client.post(
            "/events/card-issuance-requested",
            json=self.event_body(issuance_payload(), 300),
        )
        assert response.status_code == 202
        data = response.json()
        assert data["outcome"] == "rejected"
        assert data["failureKind"] == "insufficient_credit_score"
        assert data["cardIds"] == []


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
