"""
Inbound HTTP Server - receives chat channel events and publishes them on the EventBus.

The server's only job is: receive HTTP -> publish FlowEvent. The FlowRuntime
subscribed to the bus decides what to start or resume.

Routes:
    POST /events/message          {"contact_id", "text"}
    POST /events/button           {"contact_id", "button_id", "button_text", "execution_id"?}
    POST /events/contact          {"contact_id"}
    POST /webhooks/{source_id}    any JSON body; "contact_id" optional
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

from aiohttp import web

from chatflow.config import RuntimeConfig
from chatflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature-256"


@dataclass
class InboundServerConfig:
    """Configuration for the inbound HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8080
    secret: str | None = None  # For HMAC-SHA256 signature verification

    @classmethod
    def from_runtime_config(cls, config: RuntimeConfig) -> "InboundServerConfig":
        return cls(host=config.inbound_host, port=config.inbound_port, secret=config.inbound_secret)


class InboundServer:
    """
    Embedded aiohttp server running inside the existing asyncio loop.

    Lifecycle:
        server = InboundServer(event_bus, InboundServerConfig(port=0))
        await server.start()
        # ... server running ...
        await server.stop()
    """

    def __init__(
        self,
        event_bus: EventBus,
        config: InboundServerConfig | None = None,
    ):
        self._event_bus = event_bus
        self._config = config or InboundServerConfig()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/events/message", self._handle_message)
        app.router.add_post("/events/button", self._handle_button)
        app.router.add_post("/events/contact", self._handle_contact)
        app.router.add_post("/webhooks/{source_id}", self._handle_webhook)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(
            self._runner,
            self._config.host,
            self._config.port,
        )
        await self._site.start()
        logger.info(f"Inbound server started on {self._config.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            self._site = None
            logger.info("Inbound server stopped")

    # === HANDLERS ===

    async def _handle_message(self, request: web.Request) -> web.Response:
        payload, error = await self._read_payload(request)
        if error:
            return error
        contact_id = payload.get("contact_id")
        if not contact_id:
            return web.json_response({"error": "contact_id is required"}, status=400)

        await self._event_bus.emit_message_received(
            contact_id=str(contact_id),
            text=str(payload.get("text") or ""),
            data=_extra(payload, "contact_id", "text"),
        )
        return _accepted()

    async def _handle_button(self, request: web.Request) -> web.Response:
        payload, error = await self._read_payload(request)
        if error:
            return error
        contact_id = payload.get("contact_id")
        if not contact_id:
            return web.json_response({"error": "contact_id is required"}, status=400)

        await self._event_bus.emit_button_clicked(
            contact_id=str(contact_id),
            button_id=payload.get("button_id"),
            button_text=str(payload.get("button_text") or ""),
            execution_id=payload.get("execution_id"),
            data=_extra(payload, "contact_id", "button_id", "button_text", "execution_id"),
        )
        return _accepted()

    async def _handle_contact(self, request: web.Request) -> web.Response:
        payload, error = await self._read_payload(request)
        if error:
            return error
        contact_id = payload.get("contact_id")
        if not contact_id:
            return web.json_response({"error": "contact_id is required"}, status=400)

        await self._event_bus.emit_contact_created(
            contact_id=str(contact_id),
            data=_extra(payload, "contact_id"),
        )
        return _accepted()

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        payload, error = await self._read_payload(request, allow_raw=True)
        if error:
            return error

        contact_id = payload.get("contact_id")
        await self._event_bus.emit_webhook_received(
            source_id=request.match_info["source_id"],
            contact_id=str(contact_id) if contact_id else None,
            payload=payload,
            path=request.path,
            method=request.method,
        )
        return _accepted()

    async def _read_payload(
        self,
        request: web.Request,
        allow_raw: bool = False,
    ) -> tuple[dict[str, Any], web.Response | None]:
        """Read, authenticate and parse a request body."""
        try:
            body = await request.read()
        except Exception:
            return {}, web.json_response({"error": "Failed to read request body"}, status=400)

        if self._config.secret and not self._verify_signature(request, body, self._config.secret):
            return {}, web.json_response({"error": "Invalid signature"}, status=401)

        try:
            payload = json.loads(body) if body else {}
        except (json.JSONDecodeError, ValueError):
            if not allow_raw:
                return {}, web.json_response({"error": "Body must be JSON"}, status=400)
            payload = {"raw_body": body.decode("utf-8", errors="replace")}

        if not isinstance(payload, dict):
            payload = {"body": payload}
        return payload, None

    def _verify_signature(
        self,
        request: web.Request,
        body: bytes,
        secret: str,
    ) -> bool:
        """Verify HMAC-SHA256 signature from the X-Signature-256 header."""
        signature_header = request.headers.get(SIGNATURE_HEADER, "")
        if not signature_header.startswith("sha256="):
            return False

        expected_sig = signature_header[7:]  # strip "sha256="
        computed_sig = sign_body(body, secret)
        return hmac.compare_digest(expected_sig, computed_sig)

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._site is not None

    @property
    def port(self) -> int | None:
        """Return the actual listening port (useful when configured with port=0)."""
        if self._site and self._site._server and self._site._server.sockets:
            return self._site._server.sockets[0].getsockname()[1]
        return None


def sign_body(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a request body, as expected in X-Signature-256."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _accepted() -> web.Response:
    return web.json_response({"status": "accepted"}, status=202)


def _extra(payload: dict[str, Any], *consumed: str) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in consumed}
