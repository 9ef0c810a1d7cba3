from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import httpx

from tenant_broker.auth.types import TokenProvider
from tenant_broker.config.settings import (
    DEFAULT_MANAGEMENT_SCOPES,
    MANAGEMENT_ENDPOINT,
    SUBSCRIPTIONS_API_VERSION,
    TENANTS_API_VERSION,
    Settings,
)
from tenant_broker.management.errors import EnumerationError, ErrorCategory
from tenant_broker.management.models import Subscription, Tenant
from tenant_broker.management.paging import ArmPager, collect
from tenant_broker.utils import CancellationToken, await_cancellable, get_logger


logger = get_logger(__name__)

_STATUS_CATEGORIES: dict[int, ErrorCategory] = {
    400: ErrorCategory.VALIDATION,
    401: ErrorCategory.AUTHENTICATION,
    403: ErrorCategory.PERMISSION,
    404: ErrorCategory.VALIDATION,
    429: ErrorCategory.RATE_LIMIT,
}


@dataclass(slots=True)
class RequestTelemetryEvent:
    method: str
    url: str
    status_code: int | None
    duration_ms: float
    category: ErrorCategory | None
    success: bool
    request_id: str | None = None


TelemetryCallback = Callable[[RequestTelemetryEvent], None]


class ManagementAsyncClient(httpx.AsyncClient):
    """httpx client raising :class:`EnumerationError` for transport failures and
    non-success responses. Nothing is retried.
    """

    def __init__(
        self,
        *args: Any,
        telemetry_callback: TelemetryCallback | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._telemetry_callback = telemetry_callback

    async def send(self, request: httpx.Request, **kwargs: Any) -> httpx.Response:
        start = time.perf_counter()
        try:
            response = await super().send(request, **kwargs)
        except httpx.RequestError as exc:
            failure = _transport_error(exc)
            self._record(request, None, failure, time.perf_counter() - start)
            raise failure from exc

        failure: EnumerationError | None = None
        if response.is_error:
            await response.aread()
            failure = error_from_response(response)
        self._record(request, response, failure, time.perf_counter() - start)
        if failure is not None:
            raise failure
        return response

    def _record(
        self,
        request: httpx.Request,
        response: httpx.Response | None,
        failure: EnumerationError | None,
        elapsed: float,
    ) -> None:
        if self._telemetry_callback is None:
            return
        event = RequestTelemetryEvent(
            method=request.method,
            url=str(request.url),
            status_code=response.status_code if response is not None else None,
            duration_ms=elapsed * 1000,
            category=failure.category if failure is not None else None,
            success=failure is None,
            request_id=response.headers.get("x-ms-request-id") if response is not None else None,
        )
        try:
            self._telemetry_callback(event)
        except Exception:  # pragma: no cover - telemetry never fails a page
            logger.warning("Telemetry callback raised an exception", exc_info=True)


def _transport_error(exc: httpx.RequestError) -> EnumerationError:
    if isinstance(exc, httpx.TimeoutException):
        message = "Timed out waiting for Azure Resource Manager"
    else:
        message = f"Could not reach Azure Resource Manager: {exc}"
    return EnumerationError(
        message=message,
        category=ErrorCategory.NETWORK,
        inner_error=exc,
    )


def error_from_response(response: httpx.Response) -> EnumerationError:
    """Translate an ARM error envelope (``{"error": {"code", "message"}}``)."""

    status = response.status_code
    code: str | None = None
    message: str | None = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        raw_code = body["error"].get("code")
        code = raw_code if isinstance(raw_code, str) else None
        message = body["error"].get("message")

    return EnumerationError(
        message=message or response.text or f"Request failed with status {status}",
        category=_STATUS_CATEGORIES.get(status, ErrorCategory.UNKNOWN),
        status_code=status,
        code=code,
    )


@dataclass(slots=True)
class ManagementClientConfig:
    scopes: Sequence[str] = field(default_factory=lambda: list(DEFAULT_MANAGEMENT_SCOPES))
    endpoint: str = MANAGEMENT_ENDPOINT
    user_agent: str = "TenantBroker-Python"
    tenants_api_version: str = TENANTS_API_VERSION
    subscriptions_api_version: str = SUBSCRIPTIONS_API_VERSION
    telemetry_callback: TelemetryCallback | None = None
    timeout: httpx.Timeout = field(
        default_factory=lambda: httpx.Timeout(60.0, connect=10.0, pool=5.0)
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ManagementClientConfig":
        return cls(
            scopes=list(settings.management_scopes),
            endpoint=settings.management_endpoint,
            tenants_api_version=settings.tenants_api_version,
            subscriptions_api_version=settings.subscriptions_api_version,
        )


class ManagementClient:
    """Azure Resource Manager listing client authorised by one token provider.

    The provider is asked for a token on every request, so a credential failure
    surfaces from whichever page needed it.
    """

    def __init__(self, token_provider: TokenProvider, config: ManagementClientConfig) -> None:
        self._token_provider = token_provider
        self._config = config
        self._http: ManagementAsyncClient | None = None

    @property
    def config(self) -> ManagementClientConfig:
        return self._config

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        http = self._client()
        response = await await_cancellable(
            http.request(method, self._url(path), params=params),
            cancellation_token,
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise EnumerationError(
                message=f"Response from {response.request.url} is not JSON",
                category=ErrorCategory.VALIDATION,
                status_code=response.status_code,
                inner_error=exc,
            ) from exc
        if not isinstance(payload, dict):
            raise EnumerationError(
                message=f"Response from {response.request.url} is not a JSON object",
                category=ErrorCategory.VALIDATION,
                status_code=response.status_code,
            )
        return payload

    def tenants_pager(self) -> ArmPager[Tenant]:
        return ArmPager(
            self,
            "/tenants",
            Tenant,
            params={"api-version": self._config.tenants_api_version},
        )

    def subscriptions_pager(self) -> ArmPager[Subscription]:
        return ArmPager(
            self,
            "/subscriptions",
            Subscription,
            params={"api-version": self._config.subscriptions_api_version},
        )

    async def list_tenants(
        self, cancellation_token: CancellationToken | None = None
    ) -> list[Tenant]:
        return await collect(self.tenants_pager(), cancellation_token)

    async def list_subscriptions(
        self, cancellation_token: CancellationToken | None = None
    ) -> list[Subscription]:
        return await collect(self.subscriptions_pager(), cancellation_token)

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "ManagementClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _client(self) -> ManagementAsyncClient:
        if self._http is None:
            self._http = ManagementAsyncClient(
                headers={"User-Agent": self._config.user_agent},
                auth=self._authorise,
                telemetry_callback=self._config.telemetry_callback or _log_request,
                timeout=self._config.timeout,
            )
        return self._http

    def _authorise(self, request: httpx.Request) -> httpx.Request:
        token = self._token_provider(self._config.scopes)
        request.headers["Authorization"] = f"Bearer {token.token}"
        return request

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._config.endpoint.rstrip('/')}/{path.lstrip('/')}"


def _log_request(event: RequestTelemetryEvent) -> None:
    logger.debug(
        "Management request",
        method=event.method,
        url=event.url,
        status_code=event.status_code,
        duration_ms=round(event.duration_ms, 2),
        success=event.success,
        category=event.category.value if event.category else None,
        request_id=event.request_id,
    )


__all__ = [
    "ManagementAsyncClient",
    "ManagementClient",
    "ManagementClientConfig",
    "RequestTelemetryEvent",
    "TelemetryCallback",
    "error_from_response",
]
