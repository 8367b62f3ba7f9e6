"""
test_fanout.py — Tests for SMS gateways and the concurrent fan-out dispatcher.

Covers:
    • SimulatedSmsGateway outbox and scripted rejections
    • TwilioSmsGateway request shape and error mapping (httpx.MockTransport)
    • build_gateway provider selection
    • FanOutDispatcher: every recipient attempted, concurrency, no rollback

Run with:
    pytest tests/test_fanout.py -v
"""

from __future__ import annotations

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from backend.app.alerts.channels.sms_gateway import (
    SimulatedSmsGateway,
    TwilioSmsGateway,
    build_gateway,
)
from backend.app.alerts.dispatcher import FanOutDispatcher
from backend.app.alerts.models import DeliveryStatus, DispatchResult, SendResult
from backend.app.core.config import Settings
from backend.app.core.errors import GatewaySendFailure


def _run(coro):
    return asyncio.run(coro)


def _make_twilio(handler) -> TwilioSmsGateway:
    return TwilioSmsGateway(
        "AC123",
        "secret",
        "+15550000",
        base_url="https://twilio.test/2010-04-01",
        transport=httpx.MockTransport(handler),
    )


class SlowGateway(SimulatedSmsGateway):
    """Simulated gateway that yields mid-send and tracks peak concurrency."""

    def __init__(self, fail_numbers=()):
        super().__init__(fail_numbers)
        self.in_flight = 0
        self.peak = 0

    async def send(self, to, body):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        return await super().send(to, body)


class ExplodingGateway(SimulatedSmsGateway):
    """Raises instead of returning a result for one number."""

    def __init__(self, bad_number):
        super().__init__()
        self.bad_number = bad_number

    async def send(self, to, body):
        if to == self.bad_number:
            raise RuntimeError("socket closed")
        return await super().send(to, body)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Simulated gateway
# ═══════════════════════════════════════════════════════════════════════════

class TestSimulatedGateway:

    def test_records_delivery(self):
        gw = SimulatedSmsGateway()
        result = _run(gw.send("+1B", "hello"))
        assert result.ok
        assert result.status == DeliveryStatus.DELIVERED
        assert result.completed_at is not None
        assert gw.outbox == [("+1B", "hello")]
        assert gw.sent_to("+1B") == ["hello"]

    def test_segments_reported(self):
        gw = SimulatedSmsGateway()
        result = _run(gw.send("+1B", "x" * 161))
        assert result.provider_response["segments"] == 2

    def test_scripted_rejection(self):
        gw = SimulatedSmsGateway(fail_numbers=["+1B"])
        result = _run(gw.send("+1B", "hello"))
        assert not result.ok
        assert result.error_message == "Simulated gateway rejection"
        assert gw.outbox == []
        assert gw.attempts == ["+1B"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Twilio gateway
# ═══════════════════════════════════════════════════════════════════════════

class TestTwilioGateway:

    def test_posts_form_to_messages_endpoint(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(201, json={"sid": "SM1", "status": "queued"})

        gw = _make_twilio(handler)
        result = _run(gw.send("+1B", "storm warning"))

        assert result.ok
        assert result.provider_response["sid"] == "SM1"
        assert seen["url"] == "https://twilio.test/2010-04-01/Accounts/AC123/Messages.json"
        assert seen["auth"].startswith("Basic ")
        assert seen["form"] == {
            "From": ["+15550000"],
            "To": ["+1B"],
            "Body": ["storm warning"],
        }

    def test_http_error_becomes_failed_result(self):
        def handler(request):
            return httpx.Response(
                400, json={"code": 21211, "message": "Invalid 'To' Phone Number"},
            )

        result = _run(_make_twilio(handler).send("+1B", "hi"))
        assert result.status == DeliveryStatus.FAILED
        assert result.error_message == "HTTP 400 (code 21211): Invalid 'To' Phone Number"

    def test_non_json_error_body(self):
        def handler(request):
            return httpx.Response(503, text="upstream down")

        result = _run(_make_twilio(handler).send("+1B", "hi"))
        assert result.error_message == "HTTP 503"

    def test_transport_error_becomes_failed_result(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = _run(_make_twilio(handler).send("+1B", "hi"))
        assert not result.ok
        assert result.error_message.startswith("ConnectError")

    def test_close_is_safe_without_client(self):
        gw = _make_twilio(lambda request: httpx.Response(201, json={}))
        _run(gw.close())


class TestBuildGateway:

    def test_simulation(self):
        gw = build_gateway(Settings(SMS_PROVIDER="simulation"))
        assert isinstance(gw, SimulatedSmsGateway)

    def test_twilio(self):
        gw = build_gateway(Settings(
            SMS_PROVIDER="twilio",
            TWILIO_ACCOUNT_SID="AC1",
            TWILIO_AUTH_TOKEN="tok",
            TWILIO_PHONE_NUMBER="+15550000",
        ))
        assert isinstance(gw, TwilioSmsGateway)
        assert gw.from_number == "+15550000"

    def test_twilio_missing_credentials(self):
        with pytest.raises(ValueError, match="TWILIO_AUTH_TOKEN"):
            build_gateway(Settings(
                SMS_PROVIDER="twilio",
                TWILIO_ACCOUNT_SID="AC1",
                TWILIO_AUTH_TOKEN="",
                TWILIO_PHONE_NUMBER="+15550000",
            ))

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown SMS provider"):
            build_gateway(Settings(SMS_PROVIDER="pigeon"))


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class TestDispatch:

    def test_delivers_to_all_in_order(self):
        gw = SimulatedSmsGateway()
        dispatch = _run(FanOutDispatcher(gw).dispatch(["+1", "+2", "+3"], "alert"))
        assert dispatch.ok
        assert dispatch.recipients == ["+1", "+2", "+3"]
        assert sorted(to for to, _ in gw.outbox) == ["+1", "+2", "+3"]
        assert dispatch.started_at <= dispatch.completed_at

    def test_sends_run_concurrently(self):
        gw = SlowGateway()
        _run(FanOutDispatcher(gw).dispatch(["+1", "+2", "+3", "+4"], "alert"))
        assert gw.peak == 4

    def test_one_failure_does_not_stop_siblings(self):
        gw = SimulatedSmsGateway(fail_numbers=["+2"])
        dispatch = _run(FanOutDispatcher(gw).dispatch(["+1", "+2", "+3"], "alert"))
        assert not dispatch.ok
        assert sorted(gw.attempts) == ["+1", "+2", "+3"]
        assert [r.to for r in dispatch.failed] == ["+2"]
        # Delivered messages are not recalled
        assert sorted(to for to, _ in gw.outbox) == ["+1", "+3"]

    def test_gateway_exception_becomes_failed_result(self):
        gw = ExplodingGateway("+2")
        dispatch = _run(FanOutDispatcher(gw).dispatch(["+1", "+2", "+3"], "alert"))
        failed = dispatch.failed
        assert len(failed) == 1
        assert failed[0].to == "+2"
        assert failed[0].error_message == "RuntimeError: socket closed"
        assert len(dispatch.delivered) == 2

    def test_empty_recipient_list(self):
        gw = SimulatedSmsGateway()
        dispatch = _run(FanOutDispatcher(gw).dispatch([], "alert"))
        assert dispatch.ok
        assert dispatch.results == []
        assert gw.attempts == []

    def test_each_recipient_attempted_once(self):
        gw = SimulatedSmsGateway()
        _run(FanOutDispatcher(gw).dispatch(["+1", "+2"], "alert"))
        assert sorted(gw.attempts) == ["+1", "+2"]


class TestDispatchResult:

    def test_raise_for_failures_carries_every_result(self):
        results = [
            SendResult(to="+1"),
            SendResult(to="+2", status=DeliveryStatus.FAILED, error_message="boom"),
        ]
        with pytest.raises(GatewaySendFailure) as exc_info:
            DispatchResult(results=results).raise_for_failures()
        err = exc_info.value
        assert err.status_code == 502
        assert err.results == results
        assert err.details == {"attempted": 2, "failed": [{"to": "+2", "error": "boom"}]}
        assert "1 of 2" in err.message

    def test_raise_for_failures_noop_when_ok(self):
        DispatchResult(results=[SendResult(to="+1")]).raise_for_failures()

    def test_to_dict_counts(self):
        results = [
            SendResult(to="+1"),
            SendResult(to="+2", status=DeliveryStatus.FAILED, error_message="boom"),
        ]
        d = DispatchResult(results=results).to_dict()
        assert d["ok"] is False
        assert d["attempted"] == 2
        assert d["delivered"] == 1
        assert d["failed"] == 1
        assert d["results"][1]["error_message"] == "boom"
