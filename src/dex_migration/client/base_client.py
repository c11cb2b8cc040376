"""HTTP plumbing for the DEX gateway.

Every DEX operation is a JSON POST to ``{base_url}/{Operation}``. This module
owns the pooled ``httpx.AsyncClient``, request throttling, payload logging and
the translation of error responses into the package's exception hierarchy.
"""

import asyncio
import time
from typing import Any

import httpx

from dex_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from dex_migration.utils.logging import (
    get_logger,
    log_api_request,
    sanitize_payload,
    should_log_payloads,
    truncate_payload,
)

logger = get_logger(__name__)

# DEX puts its error text under different keys depending on the gateway layer
_ERROR_MESSAGE_KEYS = ("Message", "ErrorMessage", "message", "detail", "error")

_STATUS_ERRORS: dict[int, tuple[type[APIError], str]] = {
    401: (AuthenticationError, "Authentication failed"),
    403: (AuthorizationError, "Authorization failed"),
    404: (NotFoundError, "Record not found"),
}


class RequestThrottle:
    """Spaces requests at least ``1 / per_second`` seconds apart."""

    def __init__(self, per_second: int):
        self.interval = 1.0 / per_second if per_second > 0 else 0.0
        self._lock = asyncio.Lock()
        self._last = 0.0

    async def wait(self) -> None:
        if not self.interval:
            return
        async with self._lock:
            delay = self._last + self.interval - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)
            self._last = time.monotonic()


def describe_error(response: httpx.Response) -> tuple[str, dict[str, Any]]:
    """Pull a readable message and a dict body out of an error response."""
    try:
        body = response.json()
    except ValueError:
        return (response.text or "Unknown error"), {"detail": response.text}

    if isinstance(body, dict):
        message = next(
            (str(body[key]) for key in _ERROR_MESSAGE_KEYS if body.get(key)), "Unknown error"
        )
        return message, body
    if isinstance(body, list):
        message = ", ".join(str(item) for item in body) or "Unknown error"
        return message, {"detail": message, "_raw_list": body}
    return str(body), {"detail": str(body)}


def raise_for_status(response: httpx.Response) -> None:
    """Raise the exception matching an error response; no-op below 400."""
    status = response.status_code
    if status < 400:
        return

    message, body = describe_error(response)
    if status in _STATUS_ERRORS:
        error_class, title = _STATUS_ERRORS[status]
        raise error_class(message=title, status_code=status, response=body)
    if status == 429:
        retry_after = response.headers.get("Retry-After", "")
        raise RateLimitError(
            message="Rate limit exceeded",
            status_code=status,
            response=body,
            retry_after=int(retry_after) if retry_after.isdigit() else None,
        )
    if status >= 500:
        raise ServerError(message=f"Server error: {message}", status_code=status, response=body)
    raise APIError(message=f"API error: {message}", status_code=status, response=body)


class BaseAPIClient:
    """Pooled, throttled JSON client for one DEX gateway."""

    def __init__(
        self,
        base_url: str,
        token: str,
        verify_ssl: bool = True,
        timeout: int = 60,
        rate_limit: int = 10,
        max_connections: int = 20,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Create the underlying ``httpx.AsyncClient``.

        Args:
            base_url: Gateway URL; operations are appended to it
            token: Bearer token sent with every call
            verify_ssl: Verify the gateway certificate
            timeout: Read timeout in seconds (connect is capped at 10s)
            rate_limit: Requests per second across all callers of this client
            max_connections: Size of the connection pool
            log_payloads: Log bodies at DEBUG with sensitive keys redacted
            max_payload_size: Characters of a logged body kept before truncation
            transport: Replacement transport, e.g. ``httpx.MockTransport``
        """
        self.base_url = base_url.rstrip("/")
        self.log_payloads = log_payloads
        self.max_payload_size = max_payload_size
        self.throttle = RequestThrottle(rate_limit)

        self.client = httpx.AsyncClient(
            base_url=f"{self.base_url}/",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout, connect=10.0),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=min(10, max_connections),
            ),
            verify=verify_ssl,
            transport=transport,
        )
        logger.debug("client_initialized", base_url=self.base_url, rate_limit=rate_limit)

    def _log_body(self, event: str, operation: str, body: Any, **context: Any) -> None:
        if not should_log_payloads(logger, self.log_payloads):
            return
        if isinstance(body, str):
            payload = body[: self.max_payload_size]
        else:
            payload = truncate_payload(sanitize_payload(body), self.max_payload_size)
        logger.debug(event, operation=operation, payload=payload, **context)

    async def post(self, operation: str, json_data: dict[str, Any] | None = None) -> Any:
        """Call one DEX operation.

        Returns:
            The decoded JSON body, or an empty dict when the body is empty

        Raises:
            NetworkError: On transport failures and timeouts
            APIError: Or a subclass, for error responses
        """
        await self.throttle.wait()
        if json_data is not None:
            self._log_body("api_request_payload", operation, json_data)

        started = time.monotonic()
        try:
            response = await self.client.post(operation.lstrip("/"), json=json_data)
        except httpx.TimeoutException as e:
            logger.error("timeout_error", operation=operation, error=str(e))
            raise NetworkError(f"Request timeout calling {operation}: {e}") from e
        except httpx.TransportError as e:
            logger.error("network_error", operation=operation, error=str(e))
            raise NetworkError(f"Network error calling {operation}: {e}") from e

        log_api_request(
            logger,
            method="POST",
            url=str(response.request.url),
            status_code=response.status_code,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        if response.text:
            self._log_body(
                "api_response_payload", operation, response.text, status_code=response.status_code
            )

        raise_for_status(response)
        if not response.text:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise APIError(
                message=f"{operation} returned invalid JSON: {e}",
                status_code=response.status_code,
            ) from e

    async def close(self) -> None:
        await self.client.aclose()
        logger.debug("client_closed", base_url=self.base_url)

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
