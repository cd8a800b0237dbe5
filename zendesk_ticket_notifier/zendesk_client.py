from __future__ import annotations

import asyncio
import base64
import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .models import CustomStatus, Group, TicketSearchResult
from .utils import mask_secret

logger = logging.getLogger(__name__)

CUSTOM_STATUSES_ENDPOINT = "/api/v2/custom_statuses.json"
GROUPS_ENDPOINT = "/api/v2/groups.json"
SEARCH_ENDPOINT = "/api/v2/search.json"

RATE_LIMIT_STATUS_CODES = frozenset({429, 503})


class ZendeskApiError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        endpoint: str = "",
        status: int | None = None,
        retry_after: str | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status = status
        self.retry_after = retry_after
        self.body = body


class ZendeskTimeoutError(ZendeskApiError):
    pass


class ZendeskNetworkError(ZendeskApiError):
    pass


class ZendeskHttpError(ZendeskApiError):
    pass


class ZendeskRateLimitError(ZendeskHttpError):
    pass


class ZendeskMalformedResponseError(ZendeskApiError):
    pass


@dataclass(frozen=True)
class HttpRequest:
    url: str
    headers: Dict[str, str]
    timeout_sec: float


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


def _lower_headers(items: Any) -> Dict[str, str]:
    if items is None:
        return {}
    return {str(key).lower(): str(value) for key, value in items.items()}


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return True
    if isinstance(exc, urllib.error.URLError):
        return isinstance(exc.reason, (socket.timeout, TimeoutError))
    return False


class ZendeskApiClient:
    def __init__(
        self,
        *,
        base_url: str,
        email: str = "",
        api_token: str = "",
        request_timeout_sec: float = 15.0,
        sender: Optional[Callable[[HttpRequest], HttpResponse]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._email = email.strip()
        self._api_token = api_token.strip()
        self._request_timeout_sec = max(0.5, float(request_timeout_sec))
        self._sender = sender or self._send_via_http
        self._masked_token = mask_secret(self._api_token)

    @property
    def masked_token(self) -> str:
        return self._masked_token

    async def fetch_custom_statuses(self) -> List[CustomStatus]:
        payload = await self._get_json(CUSTOM_STATUSES_ENDPOINT)
        return self._parse_items(payload, "custom_statuses", CustomStatus.from_payload, CUSTOM_STATUSES_ENDPOINT)

    async def fetch_groups(self) -> List[Group]:
        payload = await self._get_json(GROUPS_ENDPOINT)
        return self._parse_items(payload, "groups", Group.from_payload, GROUPS_ENDPOINT)

    async def search_tickets(self, query: str) -> List[TicketSearchResult]:
        endpoint = f"{SEARCH_ENDPOINT}?query={urllib.parse.quote(query, safe='')}"
        payload = await self._get_json(endpoint)
        if payload.get("results") is None:
            return []
        return self._parse_items(payload, "results", TicketSearchResult.from_payload, SEARCH_ENDPOINT)

    async def _get_json(self, endpoint: str) -> Mapping[str, Any]:
        request = HttpRequest(
            url=f"{self._base_url}{endpoint}",
            headers=self._headers(),
            timeout_sec=self._request_timeout_sec,
        )
        try:
            response = await asyncio.to_thread(self._sender, request)
        except ZendeskApiError:
            raise
        except Exception as exc:
            if _is_timeout(exc):
                raise ZendeskTimeoutError(
                    f"Request to {endpoint} timed out.", endpoint=endpoint
                ) from exc
            raise ZendeskNetworkError(
                f"Request to {endpoint} failed: {type(exc).__name__}: {self._sanitize_text(str(exc))}",
                endpoint=endpoint,
            ) from exc
        return self._parse_response(endpoint, response)

    def _parse_response(self, endpoint: str, response: HttpResponse) -> Mapping[str, Any]:
        status = int(response.status_code)
        if not 200 <= status < 300:
            retry_after = response.header("Retry-After")
            error_cls = ZendeskRateLimitError if status in RATE_LIMIT_STATUS_CODES else ZendeskHttpError
            raise error_cls(
                f"API request to {endpoint} failed with status {status}.",
                endpoint=endpoint,
                status=status,
                retry_after=retry_after,
                body=self._sanitize_text(response.body[:500]),
            )

        if status == 204:
            return {}

        content_type = response.header("Content-Type") or ""
        if "application/json" not in content_type:
            raise ZendeskMalformedResponseError(
                f"Expected JSON response but got {content_type or 'none'} from {endpoint}.",
                endpoint=endpoint,
                status=status,
                body=response.body[:500],
            )
        try:
            payload = json.loads(response.body) if response.body else {}
        except json.JSONDecodeError as exc:
            raise ZendeskMalformedResponseError(
                f"Invalid JSON from {endpoint}.", endpoint=endpoint, status=status
            ) from exc
        if not isinstance(payload, dict):
            raise ZendeskMalformedResponseError(
                f"Expected JSON object from {endpoint}.", endpoint=endpoint, status=status
            )
        return payload

    @staticmethod
    def _parse_items(
        payload: Mapping[str, Any],
        key: str,
        factory: Callable[[Mapping[str, Any]], Any],
        endpoint: str,
    ) -> List[Any]:
        raw = payload.get(key)
        if not isinstance(raw, list):
            raise ZendeskMalformedResponseError(
                f"Response from {endpoint} is missing '{key}'.", endpoint=endpoint
            )
        try:
            return [factory(item) for item in raw]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ZendeskMalformedResponseError(
                f"Response from {endpoint} has an invalid '{key}' entry.", endpoint=endpoint
            ) from exc

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Cache-Control": "no-cache",
        }
        if self._email and self._api_token:
            raw = f"{self._email}/token:{self._api_token}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")
        return headers

    def _send_via_http(self, request: HttpRequest) -> HttpResponse:
        http_request = urllib.request.Request(request.url, method="GET")
        for name, value in request.headers.items():
            http_request.add_header(name, value)

        try:
            with urllib.request.urlopen(http_request, timeout=request.timeout_sec) as response:
                body = response.read().decode("utf-8", errors="replace")
                status = int(getattr(response, "status", response.getcode()))
                return HttpResponse(
                    status_code=status,
                    body=body,
                    headers=_lower_headers(response.headers),
                )
        except urllib.error.HTTPError as exc:
            body = ""
            try:
                body = exc.read().decode("utf-8", errors="replace")
            except Exception:
                body = ""
            return HttpResponse(
                status_code=int(exc.code),
                body=body,
                headers=_lower_headers(exc.headers),
            )

    def _sanitize_text(self, text: str | None) -> str:
        if not text:
            return ""
        if not self._api_token:
            return text
        return text.replace(self._api_token, self._masked_token)
