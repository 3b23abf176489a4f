"""
API Client - the single entry point for every remote call

Responsibilities:
1. Inject the bearer token
2. Convert payload keys (camelCase out -> snake_case on the wire -> camelCase back)
3. Turn error responses into typed exceptions
4. Renew an expired access token transparently and retry the call once
5. Report every call to the debug event log

Usage:
    async with ApiClient(config, token_store) as client:
        page = await client.request("/tasks/?page=1&ordering=due_date")
        await client.request("/tasks/", method="POST", json={"title": "Call sponsor"})
"""

import time
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from eepdesk.case_converter import convert_keys_to_camel, convert_keys_to_snake
from eepdesk.config import DeskConfig
from eepdesk.debug_events import DebugEventLog, DebugEventType
from eepdesk.exceptions import ApiError, NetworkError, SessionExpiredError, extract_error_message
from eepdesk.logging_config import get_logger
from eepdesk.refresh import RefreshCoordinator
from eepdesk.token_store import TokenStore

logger = get_logger(__name__)

LOGIN_ROUTE = "/login"
HOME_ROUTE = "/"

TOKEN_ENDPOINT = "/token/"
TOKEN_REFRESH_ENDPOINT = "/token/refresh/"

# Wire fields that may carry a server-relative media path
MEDIA_FIELDS = ("profile_photo", "attached_file")

REFRESH_SERVER_ERROR_MESSAGE = "A server error occurred while refreshing your session. Please log in again."


class ApiClient:
    """
    Async HTTP client for the sponsorship program API.

    `navigate` receives a route when the session is torn down ("/login").
    `transport` lets the same client run against the mock backend or a
    test double.
    """

    def __init__(
        self,
        config: DeskConfig,
        token_store: TokenStore,
        events: Optional[DebugEventLog] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        navigate: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self.base_url = config.api_base_url.rstrip("/")
        self.token_store = token_store
        self.events = events or DebugEventLog()
        self.navigate = navigate
        self._session_expired_listeners: list = []
        self._http = httpx.AsyncClient(transport=transport, timeout=config.timeout)
        self.refresh = RefreshCoordinator(
            self._exchange_refresh_token,
            token_store,
            on_session_expired=self._logout_user,
            timeout=config.refresh_timeout,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def on_session_expired(self, listener: Callable[[], None]) -> None:
        """Register a callback for forced logout (e.g. to drop the cached user)"""
        self._session_expired_listeners.append(listener)

    # ==================== URLs ====================

    def url_for(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.base_url}{endpoint}"

    @staticmethod
    def _is_token_endpoint(url: str) -> bool:
        return "/token/" in url

    # ==================== Requests ====================

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        json: Any = None,
        data: Optional[Mapping[str, Any]] = None,
        files: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """
        Issue a request and return the decoded, camelCased payload.

        `json` is sent as a JSON body; `data`/`files` as multipart form data.
        Both have their keys converted to snake_case. Returns None for 204.
        """
        # Requests started during a refresh wait for its outcome first
        if self.refresh.is_refreshing:
            await self.refresh.wait_for_refresh()

        return await self._send(endpoint, method.upper(), json, data, files, params, headers, retried=False)

    async def _send(self, endpoint, method, json, data, files, params, headers, retried: bool) -> Any:
        url = self.url_for(endpoint)
        token = self.token_store.access_token
        start = time.monotonic()

        request_headers: Dict[str, str] = {"Accept": "application/json"}
        if json is not None:
            request_headers["Content-Type"] = "application/json"
        if token:
            request_headers["Authorization"] = f"Bearer {token}"
        if headers:
            request_headers.update(headers)

        try:
            response = await self._http.request(
                method,
                url,
                json=convert_keys_to_snake(json) if json is not None else None,
                data=convert_keys_to_snake(dict(data)) if data is not None else None,
                files=files,
                params=params,
                headers=request_headers,
            )
        except httpx.HTTPError as e:
            duration_ms = (time.monotonic() - start) * 1000
            self._report(f"Network Error: {e} for [{method}] {endpoint}", DebugEventType.API_ERROR,
                         method, endpoint, None, duration_ms)
            raise NetworkError(f"Could not reach the server: {e}", endpoint=endpoint) from e

        duration_ms = (time.monotonic() - start) * 1000

        if response.status_code == 401 and not retried and not self._is_token_endpoint(url):
            self._report(f"[{method}] {endpoint} unauthorized (401) - refreshing session",
                         DebugEventType.INFO, method, endpoint, 401, duration_ms)
            await self.refresh.acquire_token(stale_token=token)
            return await self._send(endpoint, method, json, data, files, params, headers, retried=True)

        if not response.is_success:
            error_data = self._decode_error_body(response)
            message = extract_error_message(response.status_code, error_data)
            self._report(f"[{method}] {endpoint} failed ({response.status_code}) - {message}",
                         DebugEventType.API_ERROR, method, endpoint, response.status_code, duration_ms)
            raise ApiError(message, response.status_code, error_data)

        self._report(f"[{method}] {endpoint} succeeded ({response.status_code})",
                     DebugEventType.API_SUCCESS, method, endpoint, response.status_code, duration_ms)

        if response.status_code == 204 or not response.content:
            return None

        try:
            payload = response.json()
        except ValueError as e:
            self._report(f"Unreadable response for [{method}] {endpoint}", DebugEventType.ERROR,
                         method, endpoint, response.status_code, duration_ms)
            raise NetworkError(f"Server returned an unreadable response: {e}", endpoint=endpoint) from e

        return self._normalize(payload)

    @staticmethod
    def _decode_error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    # ==================== Response normalization ====================

    def _absolutize_media(self, obj: Any) -> Any:
        if isinstance(obj, list):
            return [self._absolutize_media(item) for item in obj]
        if isinstance(obj, dict):
            if isinstance(obj.get("results"), list):
                return {**obj, "results": [self._absolutize_media(item) for item in obj["results"]]}
            fixed = dict(obj)
            for field in MEDIA_FIELDS:
                value = fixed.get(field)
                if isinstance(value, str) and value and not value.startswith("http"):
                    fixed[field] = f"{self.config.api_origin}{value}"
            return fixed
        return obj

    def _normalize(self, payload: Any) -> Any:
        payload = self._absolutize_media(payload)
        if isinstance(payload, dict) and isinstance(payload.get("results"), list):
            # Only the rows change casing; the envelope keeps count/next/previous
            return {**payload, "results": convert_keys_to_camel(payload["results"])}
        return convert_keys_to_camel(payload)

    # ==================== Session ====================

    async def _exchange_refresh_token(self, refresh_token: str) -> str:
        """POST the refresh token, return the new access token"""
        url = self.url_for(TOKEN_REFRESH_ENDPOINT)
        start = time.monotonic()
        try:
            response = await self._http.post(
                url,
                json={"refresh": refresh_token},
                headers={"Accept": "application/json", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            self._report(f"Network Error: {e} for [POST] {TOKEN_REFRESH_ENDPOINT}", DebugEventType.API_ERROR,
                         "POST", TOKEN_REFRESH_ENDPOINT, None, (time.monotonic() - start) * 1000)
            raise NetworkError(f"Could not reach the server: {e}", endpoint=TOKEN_REFRESH_ENDPOINT) from e

        duration_ms = (time.monotonic() - start) * 1000

        if not response.is_success:
            message = REFRESH_SERVER_ERROR_MESSAGE if response.status_code >= 500 else SessionExpiredError().message
            self._report(f"[POST] {TOKEN_REFRESH_ENDPOINT} failed ({response.status_code}) - {message}",
                         DebugEventType.API_ERROR, "POST", TOKEN_REFRESH_ENDPOINT, response.status_code, duration_ms)
            raise SessionExpiredError(message, data=self._decode_error_body(response))

        self._report(f"[POST] {TOKEN_REFRESH_ENDPOINT} succeeded ({response.status_code})",
                     DebugEventType.API_SUCCESS, "POST", TOKEN_REFRESH_ENDPOINT, response.status_code, duration_ms)

        try:
            access_token = response.json().get("access")
        except (ValueError, AttributeError) as e:
            raise NetworkError("Token refresh returned an unreadable response", endpoint=TOKEN_REFRESH_ENDPOINT) from e
        if not access_token:
            raise SessionExpiredError(data=None)
        return access_token

    def _logout_user(self) -> None:
        """Session could not be renewed: tokens are gone, go to the login route"""
        self.token_store.clear()
        for listener in list(self._session_expired_listeners):
            listener()
        if self.navigate is not None:
            self.navigate(LOGIN_ROUTE)

    # ==================== Telemetry ====================

    def _report(self, message: str, event_type: DebugEventType, method: str, endpoint: str,
                status: Optional[int], duration_ms: float) -> None:
        try:
            self.events.log_event(message, event_type, duration_ms=duration_ms,
                                  method=method, endpoint=endpoint, status=status)
            logger.log_request(method, endpoint, status, duration_ms)
        except Exception as e:
            # Reporting must never change the outcome of the call
            logger.debug(f"Could not record debug event: {e}")
