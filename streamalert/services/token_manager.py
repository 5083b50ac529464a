"""
Twitch App Token Management Module

This module keeps the application access token used for every Helix call.
Tokens are obtained with the OAuth client credentials grant and cached in the
persistent store so a restart does not need a new one.

No expiry timer is kept. A token is only validated when a Helix call answers
401, at which point the cached token is checked against the validation endpoint
and replaced if Twitch no longer accepts it.

Usage:
    token_manager = TokenManager(store.namespace("twitch_api"), client_id, client_secret)

    # Cached token, or a fresh one if nothing is cached yet
    token = await token_manager.get_access_token()

    # After a 401: validate the cached token and replace it if needed
    token = await token_manager.get_access_token(force_validate=True)
"""

import ssl
import asyncio
import logging
from typing import Optional

import aiohttp
import certifi

from streamalert.config.constants import APP_TOKEN_KEY, HTTP_TIMEOUT, TWITCH_OAUTH2_URL
from streamalert.services.errors import UpstreamUnavailable
from streamalert.services.store import Namespace

logger = logging.getLogger("token_manager")


class TokenManager:
    """
    Cache for the Twitch application access token.

    Attributes:
        cache (Namespace): Store namespace holding the token under APP_TOKEN_KEY
        client_id (str): Twitch application client id
        client_secret (str): Twitch application client secret
        oauth2_url (str): Base URL of the Twitch OAuth2 service
        refresh_lock (asyncio.Lock): Lock ensuring only one token exchange at a time
        max_attempts (int): Token exchange attempts before giving up
        retry_delay (float): Base delay between exchange attempts, doubled each time
    """

    def __init__(self, cache: Namespace, client_id: str, client_secret: str,
                 oauth2_url: str = TWITCH_OAUTH2_URL, max_attempts: int = 2,
                 retry_delay: float = 1.0):
        self.cache = cache
        self.client_id = client_id
        self.client_secret = client_secret
        self.oauth2_url = oauth2_url.rstrip("/")
        self.refresh_lock = asyncio.Lock()
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        # Secure SSL context using certifi's CA bundle
        self._ssl_context = ssl.create_default_context(cafile=certifi.where())

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(ssl=self._ssl_context),
            timeout=aiohttp.ClientTimeout(total=HTTP_TIMEOUT),
        )

    async def get_access_token(self, force_validate: bool = False) -> str:
        """
        Get the app access token, requesting a new one if needed.

        Args:
            force_validate: If True the cached token is checked against Twitch
                            and only returned when it is still valid

        Returns:
            str: A token usable in the Authorization header

        Raises:
            UpstreamUnavailable: If a new token was needed and could not be obtained
        """
        cached = await self.cache.get(APP_TOKEN_KEY)
        if cached and not force_validate:
            return cached

        async with self.refresh_lock:
            # Another caller may have replaced the token while we waited
            current = await self.cache.get(APP_TOKEN_KEY)
            if current and current != cached:
                return current
            if current and await self.validate_token(current):
                return current

            token = await self.request_token()
            await self.cache.set(APP_TOKEN_KEY, token)
            logger.info("[TokenManager] Obtained a new app access token")
            return token

    async def validate_token(self, token: str) -> bool:
        """
        Validate a token with the Twitch OAuth2 validation endpoint.

        Returns:
            bool: True if the token is valid, False otherwise
        """
        try:
            async with self._session() as session:
                headers = {"Authorization": f"OAuth {token}"}
                async with session.get(f"{self.oauth2_url}/validate", headers=headers) as response:
                    is_valid = response.status == 200
                    if not is_valid:
                        logger.info(f"[TokenManager] Token validation failed with status: {response.status}")
                    return is_valid
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"[TokenManager] Token validation error: {e}")
            return False

    async def request_token(self) -> str:
        """
        Exchange the client credentials for a new app access token.

        Returns:
            str: The new access token

        Raises:
            UpstreamUnavailable: If every attempt failed
        """
        params = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }

        for attempt in range(self.max_attempts):
            try:
                async with self._session() as session:
                    async with session.post(f"{self.oauth2_url}/token", params=params) as response:
                        if response.status == 200:
                            payload = await response.json()
                            token = payload.get("access_token")
                            if token:
                                return token
                            logger.error("[TokenManager] Invalid token response, missing access_token")
                        else:
                            error_text = await response.text()
                            logger.error(f"[TokenManager] Token request failed: {response.status} - {error_text}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"[TokenManager] Error requesting token: {e}")

            if attempt + 1 < self.max_attempts:
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

        raise UpstreamUnavailable(f"Could not obtain an app access token after {self.max_attempts} attempts")
