"""
HubSpot CRM API client.
Record fetch/search/update, association lookup and OAuth token refresh over httpx.
Low-level client: one instance per tenant, holding that tenant's active access token.
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.records import PLURAL_KINDS, CrmRecord, parse_record

TOKEN_PATH = "/oauth/v1/token"
DEFAULT_TOKEN_TTL_SECONDS = 1800

# Request timeouts and retry configuration. 429 is not retried here: pacing is
# done by the callers' fixed sleeps.
REQUEST_TIMEOUT = 30
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {502, 503, 504}


class HubSpotApiError(Exception):
    """Custom exception for HubSpot API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        category: str | None = None,
        response_data: dict | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.category = category
        self.response_data = response_data or {}
        self.recoverable = recoverable


class HubSpotAuthExpiredError(HubSpotApiError):
    """The access token was rejected; a refresh may fix it."""


class HubSpotRateLimitError(HubSpotApiError):
    """HubSpot answered 429."""


class HubSpotNotFoundError(HubSpotApiError):
    """The requested object does not exist (or is archived)."""


@dataclass(slots=True)
class HubSpotTokenResponse:
    access_token: str
    refresh_token: str
    expires_in: int

    @property
    def expires_at(self) -> datetime:
        return datetime.now(UTC) + timedelta(seconds=self.expires_in)


class HubSpotClient:
    """
    Client for the HubSpot CRM v3/v4 APIs.

    The access token is mutable: ``set_access_token`` is called after a
    credential refresh and every later request uses the new token.
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._access_token = access_token
        self._base_url = (base_url or settings.HUBSPOT_API_BASE_URL).rstrip("/")
        self._client = http_client or self._create_client()
        self._log = component_logger(__name__, logger, component="hubspot_client")

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=5, max_connections=10)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def set_access_token(self, access_token: str) -> None:
        self._access_token = access_token

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request, retrying gateway errors and network failures."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                    self._log.debug(
                        "HubSpot API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise HubSpotApiError(f"HubSpot request failed: {e}") from e
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                self._log.debug(
                    "HubSpot API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("HubSpot API retry loop exhausted")

    def _get_auth_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate a HubSpot API response.

        Raises:
            HubSpotAuthExpiredError: On 401
            HubSpotRateLimitError: On 429
            HubSpotNotFoundError: On 404
            HubSpotApiError: On any other non-2xx status or an unparseable body
        """
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                self._log.error("Failed to parse HubSpot response", operation=operation)
                raise HubSpotApiError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            error_data = {"message": response.text[:200] if response.text else ""}

        message = error_data.get("message") or f"HubSpot API error (HTTP {response.status_code})"
        category = error_data.get("category")

        self._log.warning(
            "HubSpot API call failed",
            operation=operation,
            status_code=response.status_code,
            category=category,
            error_message=message,
        )

        error_cls = {
            401: HubSpotAuthExpiredError,
            404: HubSpotNotFoundError,
            429: HubSpotRateLimitError,
        }.get(response.status_code, HubSpotApiError)
        raise error_cls(
            message,
            status_code=response.status_code,
            category=category,
            response_data=error_data,
            recoverable=response.status_code >= 500 or response.status_code in (401, 429),
        )

    def _object_url(self, kind: str, *parts: str) -> str:
        path = "/".join([PLURAL_KINDS[kind], *parts])
        return f"{self._base_url}/crm/v3/objects/{path}"

    async def get_record(
        self,
        kind: str,
        record_id: str,
        properties: list[str],
        associations: list[str] | None = None,
    ) -> CrmRecord:
        """Fetch one record with the given properties (and optional association kinds)."""
        params: dict[str, Any] = {"properties": ",".join(properties)}
        if associations:
            params["associations"] = ",".join(PLURAL_KINDS[a] for a in associations)

        response = await self._request_with_retry(
            "GET",
            self._object_url(kind, record_id),
            params=params,
            headers=self._get_auth_headers(),
        )
        data = self._handle_api_response(response, f"get_{kind}")
        return parse_record(kind, data)

    async def search_records(self, kind: str, search_request: dict) -> dict:
        """
        Run a CRM search and return the raw response body.

        The body is returned unparsed so callers can read whichever paging
        shape the API produced.
        """
        response = await self._request_with_retry(
            "POST",
            self._object_url(kind, "search"),
            json=search_request,
            headers=self._get_auth_headers(),
        )
        return self._handle_api_response(response, f"search_{kind}")

    async def get_associations(
        self, record_id: str, kind: str, to_kinds: list[str] | None = None
    ) -> dict[str, list[str]]:
        """Return associated record ids keyed by kind (v4 associations API)."""
        targets = to_kinds or [k for k in PLURAL_KINDS if k != kind]
        associations: dict[str, list[str]] = {}
        for to_kind in targets:
            url = (
                f"{self._base_url}/crm/v4/objects/{PLURAL_KINDS[kind]}/{record_id}"
                f"/associations/{PLURAL_KINDS[to_kind]}"
            )
            response = await self._request_with_retry(
                "GET", url, headers=self._get_auth_headers()
            )
            data = self._handle_api_response(response, f"associations_{kind}_{to_kind}")
            ids: list[str] = []
            for item in data.get("results", []):
                item_id = str(item.get("toObjectId") or item.get("id"))
                if item_id not in ids:
                    ids.append(item_id)
            associations[to_kind] = ids
        return associations

    async def update_record(self, kind: str, record_id: str, properties: dict[str, str]) -> dict:
        response = await self._request_with_retry(
            "PATCH",
            self._object_url(kind, record_id),
            json={"properties": properties},
            headers=self._get_auth_headers(),
        )
        return self._handle_api_response(response, f"update_{kind}")

    async def refresh_token(
        self, refresh_token: str, client_id: str, client_secret: str
    ) -> HubSpotTokenResponse:
        """
        Exchange a refresh token for a new credential pair.

        HubSpot may omit ``refresh_token`` in the answer, in which case the
        existing one stays valid.
        """
        response = await self._request_with_retry(
            "POST",
            f"{self._base_url}{TOKEN_PATH}",
            data={
                "grant_type": "refresh_token",
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        if not response.is_success:
            # A rejected refresh token is not an expired access token
            try:
                error_data = response.json() if response.text else {}
            except ValueError:
                error_data = {}
            raise HubSpotApiError(
                error_data.get("message", f"Token refresh failed (HTTP {response.status_code})"),
                status_code=response.status_code,
                category=error_data.get("status"),
                response_data=error_data,
                recoverable=False,
            )

        data = self._handle_api_response(response, "token_refresh")
        if not data.get("access_token"):
            raise HubSpotApiError("Token refresh response had no access_token", recoverable=False)

        return HubSpotTokenResponse(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_in=int(data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS),
        )
