"""EventSub subscription registry keeping Twitch webhook subscriptions aligned with the tracked streamers."""

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from streamalert.config.constants import (
    APP_TOKEN_KEY,
    EVENT_CALLBACKS,
    STATUS_ENABLED,
    STATUS_NOT_EXISTS,
    STATUS_PENDING,
)
from streamalert.services.errors import SubscriptionConflict
from streamalert.services.locks import KeyedLock
from streamalert.services.store import Namespace
from streamalert.services.twitch_api import HelixClient, ResultKind

# Set up a dedicated logger for EventSub
logger = logging.getLogger("eventsub")


@dataclass
class SubscriptionRecord:
    """Cached identity and last known status of one remote subscription."""
    id: str
    status: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "status": self.status}

    @classmethod
    def from_dict(cls, raw: Dict[str, str]) -> "SubscriptionRecord":
        return cls(id=raw["id"], status=raw.get("status", ""))


@dataclass
class EntitySubscriptions:
    """Subscriptions of one broadcaster, keyed by event type."""
    login: Optional[str] = None
    records: Dict[str, SubscriptionRecord] = field(default_factory=dict)


class ReconcileAction(enum.Enum):
    CREATE = "create"  # Nothing cached, subscribe
    KEEP = "keep"  # Cached subscription is healthy
    REPLACE = "replace"  # Cached subscription is stale, delete it and subscribe again
    SKIP = "skip"  # Remote status unknown, leave everything as is


class RegistryOutcome(enum.Enum):
    DONE = "done"
    UNKNOWN_ENTITY = "unknown_entity"
    UNAVAILABLE = "unavailable"


def reconcile_action(cached: Optional[SubscriptionRecord], remote_status: Optional[str]) -> ReconcileAction:
    """
    Decide what to do with one (broadcaster, event type) pair.

    Args:
        cached: The cached record, None if nothing is cached
        remote_status: Status Twitch reports for the cached id, STATUS_NOT_EXISTS
                       if the id is not listed, None if the lookup failed

    Returns:
        ReconcileAction: The action bringing Twitch in line with the cache
    """
    if cached is None:
        return ReconcileAction.CREATE
    if remote_status is None:
        return ReconcileAction.SKIP
    if remote_status in (STATUS_ENABLED, STATUS_PENDING):
        return ReconcileAction.KEEP
    return ReconcileAction.REPLACE


class EventSubService:
    """
    Owns the lifecycle of the EventSub webhook subscriptions of every tracked
    broadcaster.

    The cache in the store is only an optimization: it remembers which
    subscription id was created for each (broadcaster, event type) so that a
    restart can check that exact id instead of recreating everything. Twitch is
    always asked before a cached entry is trusted.

    Attributes:
        api (HelixClient): Twitch API client
        cache (Namespace): Store namespace with {broadcaster id: {event type: record}}
        callback_base_url (str): Public URL of the webhook server
        secret (str): Shared secret Twitch signs notifications with
        event_callbacks (Dict[str, str]): Event type -> relative callback route
    """

    def __init__(self, api: HelixClient, cache: Namespace, callback_base_url: str, secret: str,
                 event_callbacks: Optional[Dict[str, str]] = None):
        self.api = api
        self.cache = cache
        self.callback_base_url = callback_base_url.rstrip("/")
        self.secret = secret
        self.event_callbacks = dict(event_callbacks or EVENT_CALLBACKS)
        self._locks = KeyedLock()

    async def _get_cached(self, broadcaster_id: str) -> Dict[str, SubscriptionRecord]:
        raw = await self.cache.get(broadcaster_id) or {}
        return {event_type: SubscriptionRecord.from_dict(entry) for event_type, entry in raw.items()}

    async def _set_cached(self, broadcaster_id: str, records: Dict[str, SubscriptionRecord]) -> None:
        if not records:
            await self.cache.delete(broadcaster_id)
            return
        await self.cache.set(broadcaster_id, {t: r.to_dict() for t, r in records.items()})

    async def resolve_broadcaster_id(self, login: str) -> Tuple[RegistryOutcome, Optional[str]]:
        """Look up the Twitch user id for a login."""
        result = await self.api.get_user(login=login)
        if not result.ok:
            return RegistryOutcome.UNAVAILABLE, None
        if not result.data:
            logger.warning(f"[EventSub] No user with login {login}")
            return RegistryOutcome.UNKNOWN_ENTITY, None
        return RegistryOutcome.DONE, result.data[0]["id"]

    async def get_subscription_status(self, event_type: str, subscription_id: str) -> Optional[str]:
        """
        Find the remote status of a subscription by walking every page of the
        subscriptions of that type.

        Returns:
            The status, STATUS_NOT_EXISTS if the id isn't listed, or None if
            Twitch could not be queried
        """
        cursor = None
        while True:
            page = await self.api.get_subscriptions_page(event_type=event_type, after=cursor)
            if not page.ok:
                return None
            for sub in page.data:
                if sub.get("id") == subscription_id:
                    return sub.get("status")
            cursor = page.cursor
            if cursor is None:
                return STATUS_NOT_EXISTS

    async def _delete_remote(self, subscription_id: str) -> bool:
        result = await self.api.delete_subscription(subscription_id)
        if result.kind is ResultKind.NOT_FOUND:
            logger.debug(f"[EventSub] Subscription {subscription_id} was already gone")
            return True
        return result.ok

    async def _create(self, broadcaster_id: str, event_type: str,
                      records: Dict[str, SubscriptionRecord]) -> ResultKind:
        callback = self.callback_base_url + self.event_callbacks[event_type]
        result = await self.api.create_subscription(event_type, broadcaster_id, callback, self.secret)
        if result.kind is ResultKind.CONFLICT:
            return ResultKind.CONFLICT
        if not result.ok or not result.data:
            return ResultKind.UNAVAILABLE

        sub = result.data[0]
        records[event_type] = SubscriptionRecord(id=sub["id"], status=sub.get("status", ""))
        await self._set_cached(broadcaster_id, records)
        logger.debug(f"[EventSub] Subscribed to '{event_type}' for '{broadcaster_id}'")
        return ResultKind.OK

    async def _ensure_event(self, broadcaster_id: str, event_type: str) -> ResultKind:
        records = await self._get_cached(broadcaster_id)
        cached = records.get(event_type)
        remote_status = None
        if cached is not None:
            remote_status = await self.get_subscription_status(event_type, cached.id)

        action = reconcile_action(cached, remote_status)
        if action is ReconcileAction.KEEP:
            if remote_status == STATUS_PENDING:
                logger.warning(f"[EventSub] Cached '{event_type}' sub is pending verification for '{broadcaster_id}'")
            else:
                logger.debug(f"[EventSub] Cached '{event_type}' sub is valid for '{broadcaster_id}'")
            return ResultKind.OK
        if action is ReconcileAction.SKIP:
            logger.error(f"[EventSub] Could not check '{event_type}' sub for '{broadcaster_id}', leaving it as is")
            return ResultKind.UNAVAILABLE
        if action is ReconcileAction.REPLACE:
            logger.warning(f"[EventSub] Cached '{event_type}' sub is invalid ({remote_status}) "
                           f"for '{broadcaster_id}', replacing it")
            await self._delete_remote(cached.id)
            del records[event_type]
            await self._set_cached(broadcaster_id, records)

        return await self._create(broadcaster_id, event_type, records)

    async def _ensure_all_events(self, broadcaster_id: str) -> Tuple[RegistryOutcome, Optional[str]]:
        outcome = RegistryOutcome.DONE
        for event_type in self.event_callbacks:
            kind = await self._ensure_event(broadcaster_id, event_type)
            if kind is ResultKind.CONFLICT:
                return outcome, event_type
            if kind is not ResultKind.OK:
                outcome = RegistryOutcome.UNAVAILABLE
        return outcome, None

    async def ensure_subscribed(self, login: str) -> RegistryOutcome:
        """
        Make sure every event type is subscribed for a broadcaster.

        A conflict while creating a subscription means Twitch holds one the
        cache doesn't know about: the whole cache is refreshed from Twitch and
        the broadcaster is processed again, once.

        Args:
            login: Twitch login of the broadcaster

        Returns:
            RegistryOutcome.DONE when every event type is subscribed or pending

        Raises:
            SubscriptionConflict: If the retry conflicts again
        """
        outcome, broadcaster_id = await self.resolve_broadcaster_id(login)
        if broadcaster_id is None:
            return outcome

        async with self._locks.hold(broadcaster_id):
            conflicted = None
            for attempt in range(2):
                outcome, conflicted = await self._ensure_all_events(broadcaster_id)
                if conflicted is None:
                    if outcome is RegistryOutcome.DONE:
                        logger.info(f"[EventSub] Subscriptions for {login} are up to date")
                    return outcome
                if attempt == 0:
                    logger.warning(f"[EventSub] Already registered to {conflicted} for {login}, refreshing cache")
                    await self.list_all_subscriptions(refresh_cache=True)

            raise SubscriptionConflict(login, conflicted)

    async def unsubscribe_all(self, login: str) -> RegistryOutcome:
        """
        Delete every cached subscription of a broadcaster on Twitch and forget them.

        Deletions are best effort: the cache entry is evicted even if Twitch
        could not be reached, a later reconciliation repairs any leftover.
        """
        outcome, broadcaster_id = await self.resolve_broadcaster_id(login)
        if broadcaster_id is None:
            return outcome

        async with self._locks.hold(broadcaster_id):
            records = await self._get_cached(broadcaster_id)
            for event_type, record in records.items():
                if not await self._delete_remote(record.id):
                    logger.warning(f"[EventSub] Could not delete '{event_type}' sub {record.id} for {login}")
            await self.cache.delete(broadcaster_id)

        logger.info(f"[EventSub] Removed {len(records)} subscriptions for {login}")
        return RegistryOutcome.DONE

    async def _resolve_login(self, broadcaster_id: str) -> Optional[str]:
        result = await self.api.get_user(user_id=broadcaster_id)
        if not result.ok or not result.data:
            logger.warning(f"[EventSub] No user with id {broadcaster_id}")
            return None
        return result.data[0].get("login")

    async def list_all_subscriptions(self, refresh_cache: bool = False,
                                     resolve_names: bool = False) -> Optional[Dict[str, EntitySubscriptions]]:
        """
        Get every subscription registered by this application.

        Args:
            refresh_cache: Overwrite the cached records of each listed
                           broadcaster with what Twitch reports
            resolve_names: Look up the login of each broadcaster, once per call

        Returns:
            Dict mapping broadcaster ids to their subscriptions, or None if
            Twitch could not be queried
        """
        subscriptions: Dict[str, EntitySubscriptions] = {}
        cursor = None
        while True:
            page = await self.api.get_subscriptions_page(after=cursor)
            if not page.ok:
                return None

            for sub in page.data:
                broadcaster_id = (sub.get("condition") or {}).get("broadcaster_user_id")
                if not broadcaster_id:
                    continue
                entry = subscriptions.setdefault(broadcaster_id, EntitySubscriptions())
                if resolve_names and entry.login is None:
                    entry.login = await self._resolve_login(broadcaster_id)
                entry.records[sub["type"]] = SubscriptionRecord(id=sub["id"], status=sub.get("status", ""))

            cursor = page.cursor
            if cursor is None:
                break

        logger.debug(f"[EventSub] Found subscriptions for {len(subscriptions)} broadcasters")

        if refresh_cache:
            for broadcaster_id, entry in subscriptions.items():
                await self._set_cached(broadcaster_id, entry.records)
        return subscriptions

    async def delete_all_subscriptions(self) -> int:
        """
        Delete every subscription registered by this application and clear the cache.

        Returns:
            int: Number of subscriptions deleted
        """
        subscriptions = await self.list_all_subscriptions()
        if subscriptions is None:
            return 0

        deleted = 0
        for entry in subscriptions.values():
            for record in entry.records.values():
                if await self._delete_remote(record.id):
                    deleted += 1

        for key in await self.cache.items():
            if key != APP_TOKEN_KEY:
                await self.cache.delete(key)

        logger.info(f"[EventSub] Deleted {deleted} subscriptions")
        return deleted

    async def subscription_health(self, logins: Iterable[str] = ()) -> Optional[Dict[str, bool]]:
        """
        Report, per broadcaster login, whether every event type is enabled on Twitch.

        Args:
            logins: Logins that should be reported even when nothing is subscribed

        Returns:
            Dict mapping logins to True when all subscriptions are enabled, or
            None if Twitch could not be queried
        """
        subscriptions = await self.list_all_subscriptions(resolve_names=True)
        if subscriptions is None:
            return None

        health = {login.lower(): False for login in logins}
        for entry in subscriptions.values():
            if not entry.login:
                continue
            statuses: List[Optional[str]] = [
                entry.records[t].status if t in entry.records else None for t in self.event_callbacks
            ]
            health[entry.login.lower()] = all(status == STATUS_ENABLED for status in statuses)
        return health
