"""
Tests for the HTTP surface and its error mapping
"""

import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from routes.transfer_routes import status_for
from services.ledger_client import LedgerReceipt
from utils.exception_handler import (
    InputInvalid, NotRegistered, SettlementReverted, SettlementTimeout, StoreUnavailable,
)
from webhook_server import create_app

from conftest import PHONE_A, PHONE_B, WALLET_A, WALLET_B


@pytest.fixture
def client(registered_context):
    return TestClient(create_app(registered_context))


class TestTransferRoute:

    def test_successful_transfer(self, client):
        response = client.post("/api/transfer", json={"to_phone": PHONE_A, "amount": "1.5", "token": "SOMI"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["amount"] == "1.5"
        assert body["to_address"].lower() == WALLET_A
        assert body["recorded"] and body["notified"]

    def test_unregistered_recipient_is_404(self, client):
        response = client.post("/api/transfer", json={"to_phone": PHONE_B, "amount": "1"})

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NotRegistered"

    def test_unsupported_token_is_400(self, client):
        response = client.post("/api/transfer", json={"to_phone": PHONE_A, "amount": "1", "token": "USDC"})

        assert response.status_code == 400
        assert "Unsupported token" in response.json()["detail"]["message"]

    def test_reverted_settlement_is_409_with_transaction_id(self, client, registered_context):
        reverted = AsyncMock(side_effect=lambda tx_id, timeout: LedgerReceipt(tx_id, status=0))
        with patch.object(registered_context.ledger, "wait_for_confirmation", reverted):
            response = client.post("/api/transfer", json={"to_phone": PHONE_A, "amount": "1"})

        assert response.status_code == 409
        assert response.json()["detail"]["transaction_id"].startswith("0x")


class TestHistoryRoute:

    def test_history_by_identity(self, client, registered_context):
        client.post("/api/transfer", json={"to_phone": PHONE_A, "amount": "2"})
        identity = registered_context.hasher.identity_for(PHONE_A)

        response = client.get("/api/transaction-history", params={"identity": identity})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["transactions"][0]["direction"] == "received"
        assert body["transactions"][0]["amount"] == "2"

    def test_history_by_wallet(self, client):
        client.post("/api/transfer", json={"to_phone": PHONE_A, "amount": "2"})

        response = client.get("/api/transaction-history", params={"wallet": WALLET_A, "limit": 5})

        assert response.status_code == 200
        assert response.json()["transactions"][0]["direction"] == "received"

    def test_wallet_history_resolves_the_wallet_once(self, client):
        client.post("/api/transfer", json={"to_phone": PHONE_A, "amount": "2"})
        service = client.app.state.transfer_service
        original = service.resolver.find_identity_for_wallet

        with patch.object(service.resolver, "find_identity_for_wallet", new=AsyncMock(side_effect=original)) as spy:
            response = client.get("/api/transaction-history", params={"wallet": f" {WALLET_A} "})

        assert response.status_code == 200
        assert response.json()["transactions"][0]["direction"] == "received"
        spy.assert_awaited_once_with(WALLET_A)

    def test_store_failure_during_wallet_resolution_is_502(self, client):
        service = client.app.state.transfer_service
        failing = AsyncMock(side_effect=StoreUnavailable("registry down"))

        with patch.object(service.resolver, "find_identity_for_wallet", new=failing):
            response = client.get("/api/transaction-history", params={"wallet": WALLET_A})

        assert response.status_code == 502

    def test_unknown_wallet_has_no_transactions(self, client):
        response = client.get("/api/transaction-history", params={"wallet": WALLET_B})
        assert response.status_code == 200
        assert response.json()["count"] == 0

    def test_missing_target_is_400(self, client):
        assert client.get("/api/transaction-history").status_code == 400

    def test_malformed_target_is_400(self, client):
        response = client.get("/api/transaction-history", params={"identity": "0x1234"})
        assert response.status_code == 400


class TestHealth:

    def test_ready_with_engine(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["ready"] is True

    def test_starting_without_engine(self):
        response = TestClient(create_app()).get("/health")
        assert response.status_code == 503


def test_status_mapping():
    assert status_for(InputInvalid("bad")) == 400
    assert status_for(NotRegistered("+60123456789")) == 404
    assert status_for(SettlementReverted("0xabc")) == 409
    assert status_for(SettlementTimeout("0xabc")) == 504
    assert status_for(StoreUnavailable("down")) == 502
