"""
Twitch Helix API Client Module

This module wraps the parts of the Twitch Helix API the application needs:
user lookups, stream information and EventSub subscription management.

Every request goes through HelixClient.make_api_call which:
- attaches the app access token and client id
- retries exactly once with a validated/refreshed token after a 401
- maps the outcome to an ApiResult instead of raising, so callers choose
  between retrying and aborting by looking at ApiResult.kind

Usage:
    client = HelixClient(token_manager, client_id)

    result = await client.get_user("somestreamer")
    if result.ok and result.data:
        broadcaster_id = result.data[0]["id"]
"""

import ssl
import enum
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

import aiohttp
import certifi

from streamalert.config.constants import (
    EVENT_VERSIONS,
    HTTP_TIMEOUT,
    TWITCH_HELIX_URL,
)
from streamalert.services.errors import UpstreamUnavailable
from streamalert.services.token_manager import TokenManager

logger = logging.getLogger("twitch_api")


class ResultKind(enum.Enum):
    OK = "ok"
    CONFLICT = "conflict"  # 409, an equivalent subscription already exists
    NOT_FOUND = "not_found"  # 404, the resource is already gone
    UNAVAILABLE = "unavailable"  # Any other failure, already logged


@dataclass
class ApiResult:
    """
    Outcome of a Helix call.

    Attributes:
        kind: How the call ended
        status: HTTP status code, 0 if no response was received
        payload: Parsed JSON body, empty if none
    """
    kind: ResultKind
    status: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.kind is ResultKind.OK

    @property
    def data(self) -> List[Dict[str, Any]]:
        return self.payload.get("data") or []

    @property
    def cursor(self) -> Optional[str]:
        # Twitch sends an empty object or an empty string on the last page
        cursor = (self.payload.get("pagination") or {}).get("cursor")
        return cursor or None


class HelixClient:
    """
    Client for the Twitch Helix REST API.

    Attributes:
        token_manager (TokenManager): Source of the app access token
        client_id (str): Twitch application client id
        helix_url (str): Base URL of the Helix API
        _rate_limit_semaphore (asyncio.Semaphore): Caps concurrent requests
    """

    def __init__(self, token_manager: TokenManager, client_id: str,
                 helix_url: str = TWITCH_HELIX_URL):
        self.token_manager = token_manager
        self.client_id = client_id
        self.helix_url = helix_url.rstrip("/")
        self._rate_limit_semaphore = asyncio.Semaphore(10)
        self._request_timeout = aiohttp.ClientTimeout(total=HTTP_TIMEOUT)
        # Create a secure SSL context using certifi's CA bundle
        self._ssl_context = ssl.create_default_context(cafile=certifi.where())

    async def _headers(self, force_validate: bool = False) -> Dict[str, str]:
        token = await self.token_manager.get_access_token(force_validate=force_validate)
        return {
            "Client-Id": self.client_id,
            "Authorization": f"Bearer {token}",
        }

    async def make_api_call(self, method: str, path: str, params: Optional[Dict[str, str]] = None,
                            json_body: Optional[Dict[str, Any]] = None) -> ApiResult:
        """
        Make a call to a Helix endpoint and classify the outcome.

        Args:
            method: HTTP method
            path: Path relative to the Helix base URL, e.g. "/users"
            params: Query string parameters
            json_body: JSON payload for POST requests

        Returns:
            ApiResult describing the outcome. Failures other than 401/404/409
            are logged here and reported as UNAVAILABLE.
        """
        url = f"{self.helix_url}{path}"
        force_validate = False

        for attempt in range(2):
            try:
                headers = await self._headers(force_validate=force_validate)
            except UpstreamUnavailable as e:
                logger.error(f"[TwitchAPI] No app token available for {method} {path}: {e}")
                return ApiResult(ResultKind.UNAVAILABLE)

            try:
                async with self._rate_limit_semaphore:
                    async with aiohttp.ClientSession(
                        timeout=self._request_timeout,
                        connector=aiohttp.TCPConnector(ssl=self._ssl_context)
                    ) as session:
                        async with session.request(method, url, headers=headers, params=params,
                                                   json=json_body) as response:
                            status = response.status
                            try:
                                payload = await response.json(content_type=None)
                            except ValueError:
                                payload = None
                            if not isinstance(payload, dict):
                                payload = {}
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"[TwitchAPI] Request {method} {path} failed: {e!r}")
                return ApiResult(ResultKind.UNAVAILABLE)

            if 200 <= status < 300:
                logger.debug(f"[TwitchAPI] {method} {path} -> {status}")
                return ApiResult(ResultKind.OK, status, payload)
            if status == 401 and attempt == 0:
                logger.info("[TwitchAPI] Twitch app token was rejected, validating it before retrying")
                force_validate = True
                continue
            if status == 409:
                return ApiResult(ResultKind.CONFLICT, status, payload)
            if status == 404:
                return ApiResult(ResultKind.NOT_FOUND, status, payload)

            logger.error(f"[TwitchAPI] Request {method} {path} failed with code {status}: {payload}")
            return ApiResult(ResultKind.UNAVAILABLE, status, payload)

        return ApiResult(ResultKind.UNAVAILABLE, 401)

    async def get_user(self, login: Optional[str] = None, user_id: Optional[str] = None) -> ApiResult:
        """Look up a user by login or by id."""
        params = {"login": login} if login is not None else {"id": user_id}
        return await self.make_api_call("GET", "/users", params=params)

    async def get_stream(self, broadcaster_id: str) -> ApiResult:
        """Get the live stream of a broadcaster. data is empty when offline."""
        return await self.make_api_call("GET", "/streams", params={"user_id": broadcaster_id})

    async def get_subscriptions_page(self, event_type: Optional[str] = None,
                                     after: Optional[str] = None) -> ApiResult:
        """Fetch one page of EventSub subscriptions, optionally filtered by type."""
        params = {}
        if event_type:
            params["type"] = event_type
        if after:
            params["after"] = after
        return await self.make_api_call("GET", "/eventsub/subscriptions", params=params or None)

    async def create_subscription(self, event_type: str, broadcaster_id: str,
                                  callback: str, secret: str) -> ApiResult:
        """Create a webhook EventSub subscription."""
        payload = {
            "type": event_type,
            "version": EVENT_VERSIONS.get(event_type, "1"),
            "condition": {"broadcaster_user_id": broadcaster_id},
            "transport": {
                "method": "webhook",
                "callback": callback,
                "secret": secret,
            },
        }
        return await self.make_api_call("POST", "/eventsub/subscriptions", json_body=payload)

    async def delete_subscription(self, subscription_id: str) -> ApiResult:
        """Delete an EventSub subscription by id."""
        return await self.make_api_call("DELETE", "/eventsub/subscriptions", params={"id": subscription_id})
