"""Tests for the daemon HTTP server."""

import pytest
from twilio.request_validator import RequestValidator

from promptrelay.config import TwilioConfig
from promptrelay.dispatcher import NotificationDispatcher
from promptrelay.registry import SessionRegistry
from promptrelay.router import ARMED_MESSAGE, ReplyRouter
from promptrelay.server import EMPTY_TWIML, RateLimiter, RelayServer

TOKEN = "s3cret"
WEBHOOK_URL = "https://relay.example.com/sms/inbound"
OPERATOR = "+15550001111"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


def sign(url, params, auth_token="tw-token"):
    return RequestValidator(auth_token).compute_signature(url, params)


@pytest.fixture
def registry(clock):
    return SessionRegistry(clock=clock)


@pytest.fixture
def twilio_config():
    return TwilioConfig(
        account_sid="AC123",
        auth_token="tw-token",
        from_number="+15550002222",
        operator_number=OPERATOR,
        webhook_url=WEBHOOK_URL,
    )


def make_server(registry, relay, channel, auth_token=TOKEN, twilio=None, clock=None):
    limiter = RateLimiter(max_requests=1, window_seconds=5, clock=clock) if clock else None
    return RelayServer(
        registry,
        NotificationDispatcher(registry, relay, channel),
        ReplyRouter(registry, relay, channel),
        auth_token=auth_token,
        twilio=twilio,
        rate_limiter=limiter,
    )


@pytest.fixture
def server(registry, relay, channel, clock):
    return make_server(registry, relay, channel, clock=clock)


# =============================================================================
# Rate limiter
# =============================================================================

class TestRateLimiter:

    def test_sliding_window(self, clock):
        limiter = RateLimiter(max_requests=1, window_seconds=5, clock=clock)

        assert limiter.is_allowed("s1") is True
        assert limiter.is_allowed("s1") is False
        assert limiter.is_allowed("s2") is True

        clock.advance(5.1)
        assert limiter.is_allowed("s1") is True


# =============================================================================
# /health
# =============================================================================

class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, aiohttp_client, server, registry):
        registry.register("s1", "alpha", "Alpha")
        client = await aiohttp_client(server.app)

        resp = await client.get("/health")

        assert resp.status == 200
        assert await resp.json() == {"status": "ok", "armed": False, "sessions": 1}


# =============================================================================
# /api/notify
# =============================================================================

class TestNotify:

    @pytest.mark.asyncio
    async def test_accepts_event_and_dispatches(
        self, aiohttp_client, server, registry, relay, channel
    ):
        registry.set_armed(True)
        relay.panes["alpha"] = "Proceed?"
        client = await aiohttp_client(server.app)

        resp = await client.post(
            "/api/notify",
            json={"session_id": "s1", "relay_target": "alpha", "display_name": "Alpha"},
            headers=AUTH,
        )
        await server.drain()

        assert resp.status == 200
        assert await resp.json() == {"status": "accepted"}
        assert "s1" in registry
        assert channel.sent[-1].startswith("Alpha needs input:")

    @pytest.mark.asyncio
    async def test_legacy_field_names(self, aiohttp_client, server, registry):
        client = await aiohttp_client(server.app)

        resp = await client.post(
            "/api/notify",
            json={"session_id": "s1", "tmux_session": "claude", "project_name": "web"},
            headers=AUTH,
        )
        await server.drain()

        assert resp.status == 200
        session = registry.get("s1")
        assert session.relay_target == "claude"
        assert session.display_name == "web"

    @pytest.mark.asyncio
    async def test_defaults_from_session_id(self, aiohttp_client, server, registry):
        client = await aiohttp_client(server.app)

        await client.post("/api/notify", json={"session_id": "proj-1"}, headers=AUTH)
        await server.drain()

        session = registry.get("proj-1")
        assert session.relay_target == "proj-1"
        assert session.display_name == "proj-1"

    @pytest.mark.asyncio
    async def test_missing_token(self, aiohttp_client, server, registry):
        client = await aiohttp_client(server.app)

        resp = await client.post("/api/notify", json={"session_id": "s1"})

        assert resp.status == 401
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_wrong_token(self, aiohttp_client, server):
        client = await aiohttp_client(server.app)

        resp = await client.post(
            "/api/notify",
            json={"session_id": "s1"},
            headers={"Authorization": "Bearer wrong"},
        )

        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_unconfigured_token(self, aiohttp_client, registry, relay, channel):
        server = make_server(registry, relay, channel, auth_token=None)
        client = await aiohttp_client(server.app)

        resp = await client.post("/api/notify", json={"session_id": "s1"}, headers=AUTH)

        assert resp.status == 500

    @pytest.mark.asyncio
    async def test_invalid_json(self, aiohttp_client, server):
        client = await aiohttp_client(server.app)

        resp = await client.post(
            "/api/notify",
            data="{not json",
            headers={**AUTH, "Content-Type": "application/json"},
        )

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_missing_session_id(self, aiohttp_client, server):
        client = await aiohttp_client(server.app)

        resp = await client.post("/api/notify", json={"relay_target": "alpha"}, headers=AUTH)

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_rate_limited_per_session(self, aiohttp_client, server, clock):
        client = await aiohttp_client(server.app)

        first = await client.post("/api/notify", json={"session_id": "s1"}, headers=AUTH)
        second = await client.post("/api/notify", json={"session_id": "s1"}, headers=AUTH)
        other = await client.post("/api/notify", json={"session_id": "s2"}, headers=AUTH)
        clock.advance(6)
        later = await client.post("/api/notify", json={"session_id": "s1"}, headers=AUTH)
        await server.drain()

        assert first.status == 200
        assert second.status == 429
        assert other.status == 200
        assert later.status == 200

    @pytest.mark.asyncio
    async def test_invalid_target_accepted_but_not_stored(
        self, aiohttp_client, server, registry
    ):
        client = await aiohttp_client(server.app)

        resp = await client.post(
            "/api/notify",
            json={"session_id": "s1", "relay_target": "a;b"},
            headers=AUTH,
        )
        await server.drain()

        assert resp.status == 200
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_sms_route_absent_for_telegram(self, aiohttp_client, server):
        client = await aiohttp_client(server.app)

        resp = await client.post("/sms/inbound", data={"Body": "ON"})

        assert resp.status in (404, 405)


# =============================================================================
# /sms/inbound
# =============================================================================

class TestSmsInbound:

    @pytest.fixture
    def sms_server(self, registry, relay, sms_channel, twilio_config):
        return make_server(registry, relay, sms_channel, twilio=twilio_config)

    def signed(self, params):
        return {"X-Twilio-Signature": sign(WEBHOOK_URL, params)}

    @pytest.mark.asyncio
    async def test_operator_reply_routed(
        self, aiohttp_client, sms_server, registry, relay
    ):
        registry.register("s1", "alpha", "Alpha")
        relay.panes["alpha"] = "?"
        params = {"From": OPERATOR, "Body": "Y"}
        client = await aiohttp_client(sms_server.app)

        resp = await client.post("/sms/inbound", data=params, headers=self.signed(params))

        assert resp.status == 200
        assert resp.content_type == "text/xml"
        assert await resp.text() == EMPTY_TWIML
        assert relay.delivered == [("alpha", "Y")]

    @pytest.mark.asyncio
    async def test_on_arms(self, aiohttp_client, sms_server, registry, sms_channel):
        params = {"From": OPERATOR, "Body": "on"}
        client = await aiohttp_client(sms_server.app)

        await client.post("/sms/inbound", data=params, headers=self.signed(params))

        assert registry.is_armed() is True
        assert sms_channel.sent == [ARMED_MESSAGE]

    @pytest.mark.asyncio
    async def test_bad_signature_forbidden(self, aiohttp_client, sms_server, registry):
        params = {"From": OPERATOR, "Body": "ON"}
        client = await aiohttp_client(sms_server.app)

        resp = await client.post(
            "/sms/inbound", data=params, headers={"X-Twilio-Signature": "bogus"}
        )

        assert resp.status == 403
        assert registry.is_armed() is False

    @pytest.mark.asyncio
    async def test_missing_signature_forbidden(self, aiohttp_client, sms_server):
        client = await aiohttp_client(sms_server.app)

        resp = await client.post("/sms/inbound", data={"From": OPERATOR, "Body": "ON"})

        assert resp.status == 403

    @pytest.mark.asyncio
    async def test_signature_over_default_port_accepted(
        self, aiohttp_client, sms_server, registry
    ):
        """Proxies may sign the URL with an explicit :443."""
        params = {"From": OPERATOR, "Body": "ON"}
        signature = sign("https://relay.example.com:443/sms/inbound", params)
        client = await aiohttp_client(sms_server.app)

        resp = await client.post(
            "/sms/inbound", data=params, headers={"X-Twilio-Signature": signature}
        )

        assert resp.status == 200
        assert registry.is_armed() is True

    @pytest.mark.asyncio
    async def test_tampered_body_forbidden(self, aiohttp_client, sms_server, registry):
        headers = self.signed({"From": OPERATOR, "Body": "OFF"})
        client = await aiohttp_client(sms_server.app)

        resp = await client.post(
            "/sms/inbound", data={"From": OPERATOR, "Body": "ON"}, headers=headers
        )

        assert resp.status == 403
        assert registry.is_armed() is False

    @pytest.mark.asyncio
    async def test_wrong_auth_token_forbidden(self, aiohttp_client, sms_server, registry):
        params = {"From": OPERATOR, "Body": "ON"}
        client = await aiohttp_client(sms_server.app)

        resp = await client.post(
            "/sms/inbound",
            data=params,
            headers={"X-Twilio-Signature": sign(WEBHOOK_URL, params, "other-token")},
        )

        assert resp.status == 403

    @pytest.mark.asyncio
    async def test_other_sender_ignored(self, aiohttp_client, sms_server, registry):
        params = {"From": "+15559999999", "Body": "ON"}
        client = await aiohttp_client(sms_server.app)

        resp = await client.post("/sms/inbound", data=params, headers=self.signed(params))

        assert resp.status == 200
        assert await resp.text() == EMPTY_TWIML
        assert registry.is_armed() is False
