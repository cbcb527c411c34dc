"""HTTP server for the daemon.

Single aiohttp server handling all routes:
- /health - Health check
- /api/notify - Agent hook events (bearer token)
- /sms/inbound - Twilio inbound SMS webhook (sms channel only)
"""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Callable, Dict, Optional, Set

from aiohttp import web
from twilio.request_validator import RequestValidator

from promptrelay.auth import check_bearer
from promptrelay.config import TwilioConfig
from promptrelay.dispatcher import NotificationDispatcher
from promptrelay.models import AgentEvent
from promptrelay.registry import SessionRegistry
from promptrelay.router import ReplyRouter

logger = logging.getLogger(__name__)

EMPTY_TWIML = "<Response></Response>"


# =============================================================================
# Rate Limiter
# =============================================================================

class RateLimiter:
    """Simple sliding window rate limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, list] = defaultdict(list)
        self._clock = clock

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        self.requests[key] = [t for t in self.requests[key] if t > cutoff]
        if len(self.requests[key]) >= self.max_requests:
            return False
        self.requests[key].append(now)
        return True


# =============================================================================
# Relay Server
# =============================================================================

class RelayServer:
    """HTTP server for hook events and inbound SMS.

    Hook events are acknowledged immediately; dispatch runs in a background
    task so the agent's hook never waits on tmux or the channel.
    """

    NOTIFY_MAX_REQUESTS = 1
    NOTIFY_WINDOW_SECONDS = 5.0

    def __init__(
        self,
        registry: SessionRegistry,
        dispatcher: NotificationDispatcher,
        router: ReplyRouter,
        auth_token: Optional[str],
        twilio: Optional[TwilioConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """Initialize relay server.

        Args:
            registry: Session registry (read for /health).
            dispatcher: Handles accepted hook events.
            router: Handles inbound SMS replies.
            auth_token: Bearer token required on /api/notify.
            twilio: Twilio config; enables /sms/inbound when given.
            rate_limiter: Per-session_id limiter for /api/notify.
        """
        self._registry = registry
        self._dispatcher = dispatcher
        self._router = router
        self._auth_token = auth_token
        self._twilio = twilio
        self._validator: Optional[RequestValidator] = None
        if twilio is not None and twilio.auth_token:
            self._validator = RequestValidator(twilio.auth_token)
        self._notify_limiter = rate_limiter or RateLimiter(
            max_requests=self.NOTIFY_MAX_REQUESTS,
            window_seconds=self.NOTIFY_WINDOW_SECONDS,
        )
        self._tasks: Set[asyncio.Task] = set()

        # Server state
        self.app = web.Application()
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        """Set up all HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_post("/api/notify", self._handle_notify)

        if self._twilio is not None:
            self.app.router.add_post("/sms/inbound", self._handle_sms_inbound)

    # =========================================================================
    # Health
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "ok",
            "armed": self._registry.is_armed(),
            "sessions": len(self._registry),
        })

    # =========================================================================
    # Hook events
    # =========================================================================

    async def _handle_notify(self, request: web.Request) -> web.Response:
        """Accept an agent hook event."""
        if not self._auth_token:
            logger.error("Rejecting /api/notify: auth_token not configured")
            return web.json_response(
                {"error": "Server auth token not configured"}, status=500
            )

        if not check_bearer(request.headers.get("Authorization"), self._auth_token):
            logger.warning("Unauthorized /api/notify from %s", request.remote)
            return web.json_response({"error": "Unauthorized"}, status=401)

        try:
            payload = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid JSON"}, status=400)

        if not isinstance(payload, dict):
            return web.json_response({"error": "Invalid JSON"}, status=400)

        try:
            event = AgentEvent.from_payload(payload)
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)

        if not self._notify_limiter.is_allowed(event.session_id):
            logger.debug("Rate limited /api/notify for %s", event.session_id)
            return web.json_response({"error": "Too many requests"}, status=429)

        task = asyncio.create_task(self._dispatch(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        return web.json_response({"status": "accepted"})

    async def _dispatch(self, event: AgentEvent) -> None:
        try:
            outcome = await self._dispatcher.handle_event(event)
            logger.debug("Event for %s: %s", event.session_id, outcome.value)
        except Exception:
            logger.exception("Unhandled error dispatching event for %s", event.session_id)

    # =========================================================================
    # Inbound SMS
    # =========================================================================

    async def _handle_sms_inbound(self, request: web.Request) -> web.Response:
        """Twilio webhook for operator replies."""
        form = await request.post()
        params = {key: str(value) for key, value in form.items()}

        url = self._twilio.webhook_url or str(request.url)
        signature = request.headers.get("X-Twilio-Signature", "")
        if (
            self._validator is None
            or not signature
            or not self._validator.validate(url, params, signature)
        ):
            logger.warning("Invalid Twilio signature from %s", request.remote)
            return web.Response(status=403, text="Forbidden")

        sender = params.get("From", "")
        if sender != self._twilio.operator_number:
            logger.warning("Ignoring SMS from unauthorized number %s", sender)
            return self._twiml()

        try:
            await self._router.handle_reply(params.get("Body", ""))
        except Exception:
            logger.exception("Error handling SMS reply")

        return self._twiml()

    @staticmethod
    def _twiml() -> web.Response:
        return web.Response(text=EMPTY_TWIML, content_type="text/xml")

    # =========================================================================
    # Server lifecycle
    # =========================================================================

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        # Get actual port
        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info("Relay server started on %s:%d", host, self._port)
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def drain(self) -> None:
        """Wait for in-flight dispatch tasks."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Finish in-flight dispatches and stop server."""
        await self.drain()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        logger.info("Relay server closed")
