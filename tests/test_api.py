"""
test_api.py — HTTP-level tests for the webhook, directory API and health checks.

Each test builds a fresh app around an in-memory store and a simulated
gateway, so no database or SMS provider is needed.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from backend.app.alerts.channels.sms_gateway import SimulatedSmsGateway
from backend.app.alerts.relay_service import RelayService
import backend.app.core.database as database
import backend.app.main as main_module
from backend.app.core.config import Settings
from backend.app.core.errors import StoreUnavailableError
from backend.app.core.logging_config import RequestContextFilter
from backend.app.directory.store import InMemoryContactStore
from backend.app.main import create_app


class UnreachableStore(InMemoryContactStore):
    async def query(self, *, phone=None, role=None):
        raise StoreUnavailableError("query", "connection refused")

    async def ping(self):
        raise StoreUnavailableError("ping", "connection refused")


class VanishingStore(InMemoryContactStore):
    """Loses the targeted records between the read and the batch commit."""

    async def commit(self, ops):
        for op in ops:
            self._drop(op.record_id)
        await super().commit(ops)


class _CollectingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []
        self.addFilter(RequestContextFilter())

    def emit(self, record):
        self.records.append(record)


def _make_client(store=None, gateway=None):
    relay = RelayService(
        store if store is not None else InMemoryContactStore(),
        gateway if gateway is not None else SimulatedSmsGateway(),
    )
    return TestClient(create_app(relay)), relay


def _seed(client):
    for name, phone, roles in [
        ("Alice", "+1A", ["ADMIN"]),
        ("Bob", "+1B", ["SUBSCRIBER"]),
        ("Carol", "+1C", ["STAFF"]),
    ]:
        resp = client.post(
            "/api/v1/contacts",
            json={"name": name, "phone_number": phone, "roles": roles},
        )
        assert resp.status_code == 201


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Contact management
# ═══════════════════════════════════════════════════════════════════════════

class TestContactsApi:

    def test_create_and_get(self):
        client, _ = _make_client()
        resp = client.post(
            "/api/v1/contacts",
            json={"name": "Bob", "phone_number": "+1B", "roles": ["SUBSCRIBER"]},
        )
        assert resp.status_code == 201
        assert resp.json() == {
            "message": "Contact added successfully",
            "contact": {"name": "Bob", "phone_number": "+1B", "roles": ["SUBSCRIBER"]},
        }

        resp = client.get("/api/v1/contacts/+1B")
        assert resp.status_code == 200
        assert resp.json()["contact"]["name"] == "Bob"

    def test_camel_case_phone_field_accepted(self):
        client, _ = _make_client()
        resp = client.post(
            "/api/v1/contacts",
            json={"name": "Bob", "phoneNumber": "+1B", "roles": ["SUBSCRIBER"]},
        )
        assert resp.status_code == 201

    def test_supervisor_stored_as_admin(self):
        client, _ = _make_client()
        resp = client.post(
            "/api/v1/contacts",
            json={"name": "Sam", "phone_number": "+1S", "roles": ["SUPERVISOR"]},
        )
        assert resp.json()["contact"]["roles"] == ["ADMIN"]

    def test_duplicate_phone_conflicts(self):
        client, relay = _make_client()
        _seed(client)
        resp = client.post(
            "/api/v1/contacts",
            json={"name": "Robert", "phone_number": "+1B", "roles": ["STAFF"]},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "CONFLICT"
        assert len(relay.store) == 3

    def test_invalid_role_rejected(self):
        client, relay = _make_client()
        resp = client.post(
            "/api/v1/contacts",
            json={"name": "Bob", "phone_number": "+1B", "roles": ["WIZARD"]},
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "INVALID_ROLE"
        assert error["details"]["role"] == "WIZARD"
        assert error["path"] == "/api/v1/contacts"
        assert len(relay.store) == 0

    @pytest.mark.parametrize("payload", [
        {"phone_number": "+1B", "roles": []},
        {"name": "Bob", "roles": []},
        {"name": "Bob", "phone_number": "+1B"},
        {"name": "", "phone_number": "+1B", "roles": []},
    ])
    def test_malformed_body_rejected(self, payload):
        client, _ = _make_client()
        resp = client.post("/api/v1/contacts", json=payload)
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["errors"]

    def test_list(self):
        client, _ = _make_client()
        _seed(client)
        resp = client.get("/api/v1/contacts")
        assert resp.status_code == 200
        assert [c["name"] for c in resp.json()["contacts"]] == ["Alice", "Bob", "Carol"]

    def test_get_missing_is_404(self):
        client, _ = _make_client()
        resp = client.get("/api/v1/contacts/+1X")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_update_roles(self):
        client, _ = _make_client()
        _seed(client)
        resp = client.put("/api/v1/contacts/+1B", json={"roles": ["STAFF", "SUBSCRIBER"]})
        assert resp.status_code == 200
        assert resp.json() == {"message": "Contact updated successfully", "affected": 1}
        roles = client.get("/api/v1/contacts/+1B").json()["contact"]["roles"]
        assert roles == ["STAFF", "SUBSCRIBER"]

    def test_update_missing_is_404(self):
        client, _ = _make_client()
        resp = client.put("/api/v1/contacts/+1X", json={"roles": ["STAFF"]})
        assert resp.status_code == 404

    def test_update_losing_race_with_delete_is_404(self):
        client, _ = _make_client(store=VanishingStore())
        _seed(client)
        resp = client.put("/api/v1/contacts/+1B", json={"roles": ["STAFF"]})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_update_invalid_role(self):
        client, _ = _make_client()
        _seed(client)
        resp = client.put("/api/v1/contacts/+1B", json={"roles": ["ROOT"]})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_ROLE"

    def test_delete_is_idempotent(self):
        client, _ = _make_client()
        _seed(client)
        first = client.delete("/api/v1/contacts/+1B")
        assert first.status_code == 200
        assert first.json()["affected"] == 1
        second = client.delete("/api/v1/contacts/+1B")
        assert second.status_code == 200
        assert second.json()["affected"] == 0
        assert client.get("/api/v1/contacts/+1B").status_code == 404

    def test_store_outage_is_503(self):
        client, _ = _make_client(store=UnreachableStore())
        resp = client.get("/api/v1/contacts")
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "STORE_UNAVAILABLE"

    def test_request_id_header(self):
        client, _ = _make_client()
        resp = client.get("/api/v1/contacts", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
        assert "X-Process-Time" in resp.headers


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Inbound webhook
# ═══════════════════════════════════════════════════════════════════════════

class TestInboundWebhook:

    def test_broadcast_returns_empty_twiml(self):
        gw = SimulatedSmsGateway()
        client, _ = _make_client(gateway=gw)
        _seed(client)

        resp = client.post("/sms/inbound", data={"From": "+1C", "Body": "fire drill"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/xml")
        assert resp.text == "<Response></Response>"
        assert gw.sent_to("+1B") == ["Broadcast from Carol:\nfire drill"]

    def test_unknown_sender_escalates(self):
        gw = SimulatedSmsGateway()
        client, _ = _make_client(gateway=gw)
        _seed(client)

        resp = client.post("/sms/inbound", data={"From": "+1X", "Body": "spam"})
        assert resp.status_code == 200
        assert gw.outbox == [("+1A", "Message from +1X:\nspam")]

    @pytest.mark.parametrize("form, missing", [
        ({"Body": "hello"}, ["From"]),
        ({"From": "+1B"}, ["Body"]),
        ({"From": "", "Body": "hello"}, ["From"]),
        ({}, ["From", "Body"]),
    ])
    def test_missing_parameters_is_400(self, form, missing):
        gw = SimulatedSmsGateway()
        client, _ = _make_client(gateway=gw)
        resp = client.post("/sms/inbound", data=form)
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "MISSING_PARAMETERS"
        assert error["message"] == "Missing required parameters"
        assert error["details"]["missing"] == missing
        assert gw.attempts == []

    def test_fan_out_failure_is_502(self):
        gw = SimulatedSmsGateway(fail_numbers=["+1B"])
        client, _ = _make_client(gateway=gw)
        _seed(client)

        resp = client.post("/sms/inbound", data={"From": "+1C", "Body": "drill"})
        assert resp.status_code == 502
        error = resp.json()["error"]
        assert error["code"] == "GATEWAY_SEND_FAILURE"
        assert error["details"]["failed"] == [
            {"to": "+1B", "error": "Simulated gateway rejection"},
        ]
        assert gw.sent_to("+1C") == []

    def test_store_outage_is_503(self):
        client, _ = _make_client(store=UnreachableStore())
        resp = client.post("/sms/inbound", data={"From": "+1B", "Body": "help"})
        assert resp.status_code == 503


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_root(self):
        client, _ = _make_client()
        assert client.get("/").json()["service"] == "SMS Alert Relay"

    def test_liveness(self):
        client, _ = _make_client()
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_health_reports_components(self):
        client, _ = _make_client()
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        names = {c["name"] for c in body["components"]}
        assert names == {"contact_store", "sms_gateway"}

    def test_readiness_fails_when_store_down(self):
        client, _ = _make_client(store=UnreachableStore())
        resp = client.get("/health/ready")
        assert resp.status_code == 503
        assert resp.json()["status"] == "unhealthy"


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Log context and lifespan
# ═══════════════════════════════════════════════════════════════════════════

class TestLogContext:

    def test_routing_logs_carry_request_id_and_masked_sender(self):
        handler = _CollectingHandler()
        routing_logger = logging.getLogger("backend.app.alerts.routing")
        previous_level = routing_logger.level
        routing_logger.addHandler(handler)
        routing_logger.setLevel(logging.INFO)
        try:
            client, _ = _make_client()
            _seed(client)
            resp = client.post(
                "/sms/inbound",
                data={"From": "+15550100", "Body": "help"},
                headers={"X-Request-ID": "req-42"},
            )
        finally:
            routing_logger.removeHandler(handler)
            routing_logger.setLevel(previous_level)

        assert resp.status_code == 200
        routed = [r for r in handler.records if r.getMessage().startswith("Routed")]
        assert len(routed) == 1
        assert routed[0].request_id == "req-42"
        assert routed[0].sender == "*****0100"
        assert routed[0].endpoint == "/sms/inbound"
        assert "+15550100" not in routed[0].getMessage()


class TestLifespan:

    def test_store_backend_name_is_case_insensitive(self, monkeypatch):
        calls = []

        async def fake_init_db():
            calls.append("init")

        async def fake_close_db():
            calls.append("close")

        monkeypatch.setattr(
            main_module, "settings",
            Settings(STORE_BACKEND="Postgres", ENVIRONMENT="development"),
        )
        monkeypatch.setattr(database, "init_db", fake_init_db)
        monkeypatch.setattr(database, "close_db", fake_close_db)
        monkeypatch.setattr(
            main_module, "build_relay_service",
            lambda config: RelayService(InMemoryContactStore(), SimulatedSmsGateway()),
        )

        with TestClient(main_module.create_app()) as client:
            assert client.get("/health/live").status_code == 200

        assert calls == ["init", "close"]
