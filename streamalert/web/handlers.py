"""
Webhook Route Handlers Module

This module implements the HTTP handlers Twitch EventSub delivers webhooks to.
Every request is authenticated with the shared secret before anything else:

    HMAC-SHA256(secret, message id + timestamp + raw body) == signature header

The raw request bytes are used as HMAC input, the body is only parsed after the
signature matched. Verified requests are then handled by message type:

- notification: answered with 200 right away, then decoded and dispatched to
  the StreamManager in a background task. Twitch retries anything that isn't a
  quick 2xx, so processing errors never reach the HTTP layer.
- webhook_callback_verification: answered with the challenge string.
- revocation: answered with 204 and logged. The cached subscription becomes
  stale and is replaced on the next reconciliation.

Usage:
    handlers = WebhookHandlers(secret, stream_manager)
    app.router.add_post("/online", handlers.handle_online)
"""

import hmac
import asyncio
import hashlib
import logging
from typing import Awaitable, Callable, Optional, Set

from aiohttp import web

from streamalert.config.constants import (
    HMAC_PREFIX,
    MESSAGE_TYPE_NOTIFICATION,
    MESSAGE_TYPE_REVOCATION,
    MESSAGE_TYPE_VERIFICATION,
    TWITCH_MESSAGE_ID,
    TWITCH_MESSAGE_SIGNATURE,
    TWITCH_MESSAGE_TIMESTAMP,
    TWITCH_MESSAGE_TYPE,
)
from streamalert.services.stream_manager import StreamManager
from streamalert.web.envelope import (
    EnvelopeError,
    decode_challenge,
    decode_offline,
    decode_online,
    decode_revocation,
    decode_update,
)

logger = logging.getLogger("webhooks")


def compute_signature(secret: str, message_id: str, timestamp: str, body: bytes) -> str:
    """Return the signature Twitch sends for a message, in 'sha256=<hex>' form."""
    message = message_id.encode() + timestamp.encode() + body
    digest = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
    return HMAC_PREFIX + digest


def verify_signature(secret: str, message_id: str, timestamp: str, body: bytes,
                     signature: Optional[str]) -> bool:
    """Check a claimed signature against the raw message in constant time."""
    if not signature:
        return False
    expected = compute_signature(secret, message_id, timestamp, body)
    return hmac.compare_digest(expected.encode(), signature.encode())


class WebhookHandlers:
    """
    Implements the EventSub webhook endpoints.

    Attributes:
        secret (str): Shared secret used when the subscriptions were created
        stream_manager (StreamManager): Receives the decoded notifications
        _tasks (Set[asyncio.Task]): Notification dispatches still running
    """

    def __init__(self, secret: str, stream_manager: StreamManager):
        self.secret = secret
        self.stream_manager = stream_manager
        self._tasks: Set[asyncio.Task] = set()

    async def handle_online(self, request: web.Request) -> web.Response:
        return await self._handle(request, self._dispatch_online)

    async def handle_offline(self, request: web.Request) -> web.Response:
        return await self._handle(request, self._dispatch_offline)

    async def handle_update(self, request: web.Request) -> web.Response:
        return await self._handle(request, self._dispatch_update)

    async def _handle(self, request: web.Request,
                      dispatch: Callable[[bytes], Awaitable[None]]) -> web.Response:
        body = await request.read()
        headers = request.headers

        if not verify_signature(self.secret,
                                headers.get(TWITCH_MESSAGE_ID, ""),
                                headers.get(TWITCH_MESSAGE_TIMESTAMP, ""),
                                body,
                                headers.get(TWITCH_MESSAGE_SIGNATURE)):
            logger.warning(f"[Webhooks] 403: Forbidden request on {request.path}, signature does not match")
            return web.Response(status=403)

        message_type = headers.get(TWITCH_MESSAGE_TYPE, "").lower()

        if message_type == MESSAGE_TYPE_NOTIFICATION:
            task = asyncio.create_task(self._run_dispatch(request.path, dispatch, body))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return web.Response(status=200)

        if message_type == MESSAGE_TYPE_VERIFICATION:
            try:
                challenge = decode_challenge(body)
            except EnvelopeError as e:
                logger.error(f"[Webhooks] Invalid verification request on {request.path}: {e}")
                return web.Response(status=400)
            logger.info(f"[Webhooks] Answered verification challenge on {request.path}")
            return web.Response(status=200, text=challenge.challenge, content_type="text/plain")

        if message_type == MESSAGE_TYPE_REVOCATION:
            try:
                revocation = decode_revocation(body)
                logger.warning(f"[Webhooks] Revoked {revocation.type} notifications for condition "
                               f"{revocation.condition} because {revocation.status}")
            except EnvelopeError as e:
                logger.warning(f"[Webhooks] Received unreadable revocation on {request.path}: {e}")
            return web.Response(status=204)

        logger.warning(f"[Webhooks] Unknown message type '{message_type}' on {request.path}")
        return web.Response(status=200)

    async def _run_dispatch(self, path: str, dispatch: Callable[[bytes], Awaitable[None]],
                            body: bytes) -> None:
        try:
            await dispatch(body)
        except EnvelopeError as e:
            logger.error(f"[Webhooks] Invalid notification on {path}: {e}")
        except Exception as e:
            logger.exception(f"[Webhooks] Error handling notification on {path}: {e}")

    async def _dispatch_online(self, body: bytes) -> None:
        notification = decode_online(body)
        await self.stream_manager.on_online(notification.entity_id, notification.entity_login,
                                            notification.entity_display_name)

    async def _dispatch_offline(self, body: bytes) -> None:
        notification = decode_offline(body)
        await self.stream_manager.on_offline(notification.entity_id, notification.entity_login)

    async def _dispatch_update(self, body: bytes) -> None:
        notification = decode_update(body)
        await self.stream_manager.on_update(notification.entity_id, notification.entity_login,
                                            notification.category)

    async def drain(self) -> None:
        """Wait until every accepted notification has been processed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
