"""HTTP webhook invoker for action_webhook nodes."""

import logging
from typing import Any

import httpx

from chatflow.config import DEFAULT_WEBHOOK_TIMEOUT, RuntimeConfig
from chatflow.runtime.interfaces import WebhookResult

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
_BODYLESS_METHODS = {"GET", "DELETE", "HEAD"}


class HttpWebhookInvoker:
    """
    Calls webhook URLs with httpx.

    A 2xx answer is success. Non-2xx answers, timeouts and transport errors
    are reported as failures; nothing is retried here.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_WEBHOOK_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> "HttpWebhookInvoker":
        """Build an invoker using ``config.webhook_timeout``."""
        return cls(timeout=config.webhook_timeout)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def invoke(
        self,
        url: str,
        *,
        method: str = "POST",
        headers: dict[str, str] | None = None,
        payload: Any = None,
        idempotency_key: str = "",
    ) -> WebhookResult:
        method = method.upper()
        request_headers = dict(headers or {})
        if idempotency_key:
            request_headers.setdefault(IDEMPOTENCY_HEADER, idempotency_key)

        kwargs: dict[str, Any] = {"headers": request_headers}
        if method not in _BODYLESS_METHODS and payload is not None:
            kwargs["json"] = payload

        try:
            response = await self._get_client().request(method, url, **kwargs)
        except httpx.TimeoutException:
            logger.warning(f"Webhook {method} {url} timed out")
            return WebhookResult(success=False, error="Webhook request timed out")
        except httpx.RequestError as e:
            logger.warning(f"Webhook {method} {url} failed: {e}")
            return WebhookResult(success=False, error=f"Network error: {e}")

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> WebhookResult:
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if response.is_success:
            return WebhookResult(success=True, status_code=response.status_code, body=body)

        logger.warning(f"Webhook {response.request.url} answered HTTP {response.status_code}")
        return WebhookResult(
            success=False,
            status_code=response.status_code,
            error=f"Webhook returned HTTP {response.status_code}",
            body=body,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
