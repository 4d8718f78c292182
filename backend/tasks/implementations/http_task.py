"""HTTP request and webhook task implementations.

Both call external services with httpx. Placeholders in the URL and the
payload are resolved against previous step outputs before the call; any
response outside the 2xx/3xx range fails the step.
"""

from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import httpx
import structlog

from app.config import get_settings
from core.exceptions import ConfigurationError, UpstreamError
from tasks.base_task import BaseTask, TaskResult
from workflow.placeholders import resolve_placeholders, resolve_value
from workflow.step_configs import HttpRequestConfig, WebhookConfig

logger = structlog.get_logger(__name__)

DEFAULT_HEADERS = {"Content-Type": "application/json"}
BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def _validate_url(url: str) -> None:
    """Only absolute http(s) URLs can be called."""
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ConfigurationError(
            f"Unsupported URL scheme in '{url}'. Only HTTP and HTTPS are allowed."
        )
    if not parsed.hostname:
        raise ConfigurationError(f"URL '{url}' has no hostname")


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class _HttpTask(BaseTask):
    """Shared request plumbing for the HTTP-backed step kinds."""

    # Overridable transport; tests plug in httpx.MockTransport here
    transport: Optional[httpx.AsyncBaseTransport] = None
    failure_prefix = "HTTP request failed"

    async def _send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        payload: Any = None,
    ) -> httpx.Response:
        _validate_url(url)
        timeout = get_settings().HTTP_TIMEOUT
        kwargs: Dict[str, Any] = {
            "method": method,
            "url": url,
            "headers": {**DEFAULT_HEADERS, **headers},
        }
        if payload is not None and method in BODY_METHODS:
            if isinstance(payload, str):
                kwargs["content"] = payload
            else:
                kwargs["json"] = payload

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=timeout) as client:
                response = await client.request(**kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"{self.failure_prefix}: request timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"{self.failure_prefix}: {e}") from e

        logger.debug(
            "HTTP call finished",
            task_type=self.task_type,
            method=method,
            url=url,
            status_code=response.status_code,
        )

        if not 200 <= response.status_code < 400:
            raise UpstreamError(
                f"{self.failure_prefix}: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                reason=response.reason_phrase,
            )
        return response


class HttpRequestTask(_HttpTask):
    """Execute an HTTP request and return the parsed response body.

    Config:
        url: Target URL (required, placeholders allowed)
        method: HTTP method (default: GET)
        headers: Extra headers; override the default JSON content type
        body: Request body (placeholders resolved recursively)
    """

    task_type = "http_request"
    display_name = "HTTP Request"
    description = "Make HTTP requests to APIs and web services"

    async def execute(self, config: HttpRequestConfig, outputs: Mapping[str, Any]) -> TaskResult:
        url = resolve_placeholders(config.url, outputs)
        body = resolve_value(config.body, outputs) if config.body is not None else None

        response = await self._send(config.method, url, config.headers, body)
        return TaskResult(
            success=True,
            output=_parse_body(response),
            metadata={"status_code": response.status_code, "url": str(response.url)},
        )


class WebhookTask(_HttpTask):
    """Send data to a webhook endpoint.

    Config:
        url: Endpoint URL (required, placeholders allowed)
        method: HTTP method (default: POST)
        headers: Extra headers
        data: Payload (placeholders resolved recursively)
    """

    task_type = "webhook"
    display_name = "Webhook"
    description = "Send data to an external webhook"
    failure_prefix = "Webhook failed"

    async def execute(self, config: WebhookConfig, outputs: Mapping[str, Any]) -> TaskResult:
        url = resolve_placeholders(config.url, outputs)
        data = resolve_value(config.data, outputs) if config.data is not None else None

        response = await self._send(config.method, url, config.headers, data)
        return TaskResult(
            success=True,
            output={
                "status_code": response.status_code,
                "response": _parse_body(response),
                "message": "Webhook sent successfully",
            },
        )


# Export for task registry
HTTP_TASK_TYPES = {
    "http_request": HttpRequestTask,
    "webhook": WebhookTask,
}
