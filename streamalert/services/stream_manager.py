"""
Live stream state tracking.

StreamManager turns online/offline/update notifications into Discord side
effects: an alert message in the notification channel and the live role on the
streamer's Discord member, both only while the stream is in the target category.

Posted alert ids are persisted so that alerts left behind by a crash or restart
are removed on the next start, the in-memory table is the source of truth while
the process runs.
"""

import re
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

import discord

from streamalert.config.settings import Settings
from streamalert.services.discord_client import DiscordGateway
from streamalert.services.locks import KeyedLock
from streamalert.services.store import Namespace
from streamalert.services.twitch_api import HelixClient

logger = logging.getLogger("stream_manager")

TEMPLATE_PATTERN = re.compile(r"\$\{([^}]*)\}")


@dataclass
class StreamEvent:
    """
    A stream believed to be live.

    Attributes:
        login: Broadcaster login
        display_name: Broadcaster display name
        category: Last known category of the stream
        alert_message_id: Id of the posted alert, None while not in the target category
    """
    login: str
    display_name: str
    category: str
    alert_message_id: Optional[str] = None


def format_template(template: str, params: Dict[str, str]) -> str:
    """Replace every ${name} in template with params[name], leaving unknown names untouched."""
    return TEMPLATE_PATTERN.sub(lambda m: str(params.get(m.group(1), m.group(0))), template)


def thumbnail_url(url: str, width: int, height: int) -> str:
    return url.replace("{width}", str(width)).replace("{height}", str(height))


class StreamManager:
    """
    Per-broadcaster live state machine.

    Notifications for the same broadcaster are handled one at a time, different
    broadcasters are handled concurrently.

    Attributes:
        settings (Settings): Configuration snapshot
        api (HelixClient): Twitch API client used to fetch stream info
        discord (DiscordGateway): Discord side effects
        alerts (Namespace): Persisted {message id: broadcaster login}
        streams (Dict[str, StreamEvent]): Live streams by broadcaster id
    """

    def __init__(self, settings: Settings, api: HelixClient, discord_gateway: DiscordGateway,
                 alerts: Namespace):
        self.settings = settings
        self.api = api
        self.discord = discord_gateway
        self.alerts = alerts
        self.streams: Dict[str, StreamEvent] = {}
        self._locks = KeyedLock()
        self._role_locks = KeyedLock()
        self._role_tasks: Set[asyncio.Task] = set()

    def is_live(self, broadcaster_id: str) -> bool:
        return broadcaster_id in self.streams

    def get_stream(self, broadcaster_id: str) -> Optional[StreamEvent]:
        return self.streams.get(broadcaster_id)

    def category_matches(self, category: Optional[str]) -> bool:
        return (category or "").lower() == self.settings.stream_category.lower()

    async def on_online(self, broadcaster_id: str, login: str, display_name: str) -> None:
        """Handle a stream.online notification."""
        async with self._locks.hold(broadcaster_id):
            logger.debug(f"[StreamManager] Stream online for {login} ({broadcaster_id})")

            previous = self.streams.pop(broadcaster_id, None)
            if previous is not None:
                logger.warning(f"[StreamManager] Received online notification for {login} "
                               f"stream that was already cached as online")
                await self._teardown(previous)

            info = await self._fetch_stream_info(broadcaster_id)
            if info is None:
                logger.warning(f"[StreamManager] No stream info for {login}, ignoring online notification")
                return

            stream = StreamEvent(
                login=login,
                display_name=display_name or info.get("user_name", login),
                category=info.get("game_name", ""),
            )
            if self.category_matches(stream.category):
                stream.alert_message_id = await self._post_alert(info, login)
                if stream.alert_message_id is not None:
                    self._schedule_role(login, grant=True)

            self.streams[broadcaster_id] = stream

    async def on_offline(self, broadcaster_id: str, login: str) -> None:
        """Handle a stream.offline notification."""
        async with self._locks.hold(broadcaster_id):
            logger.debug(f"[StreamManager] Stream offline for {login} ({broadcaster_id})")
            stream = self.streams.pop(broadcaster_id, None)
            if stream is not None:
                await self._teardown(stream)

    async def on_update(self, broadcaster_id: str, login: str, category: str) -> None:
        """Handle a channel.update notification."""
        async with self._locks.hold(broadcaster_id):
            logger.debug(f"[StreamManager] Channel update for {login} ({broadcaster_id}): {category}")
            stream = self.streams.get(broadcaster_id)
            if stream is None:
                return

            matches = self.category_matches(category)
            if stream.alert_message_id is not None and not matches:
                await self._teardown(stream)
                stream.alert_message_id = None
            elif stream.alert_message_id is None and matches:
                info = await self._fetch_stream_info(broadcaster_id)
                if info is None:
                    return
                message_id = await self._post_alert(info, login)
                if message_id is None:
                    return
                stream.alert_message_id = message_id
                self._schedule_role(login, grant=True)
            stream.category = category

    async def end_streams_of(self, login: str) -> None:
        """Tear down any live state of a streamer that is no longer tracked."""
        for broadcaster_id, stream in list(self.streams.items()):
            if stream.login.lower() == login.lower():
                await self.on_offline(broadcaster_id, stream.login)

    async def reconcile_on_startup(self) -> None:
        """
        Remove every alert and live role left over from a previous run.

        Nothing from before the restart is resumed, streams still live will be
        announced again on their next notification.
        """
        leftovers = await self.alerts.items()
        if leftovers:
            logger.info(f"[StreamManager] Cleaning up {len(leftovers)} alerts from a previous run")
        for message_id, login in leftovers.items():
            await self.discord.delete_message(self.settings.notification_channel, message_id)
            await self._change_role(login, grant=False)
        await self.alerts.clear()

    async def drain(self) -> None:
        """Wait for pending role changes to finish."""
        while self._role_tasks:
            await asyncio.gather(*list(self._role_tasks), return_exceptions=True)

    async def _teardown(self, stream: StreamEvent) -> None:
        if stream.alert_message_id is None:
            return
        await self._delete_alert(stream.alert_message_id)
        self._schedule_role(stream.login, grant=False)

    async def _fetch_stream_info(self, broadcaster_id: str) -> Optional[Dict[str, Any]]:
        result = await self.api.get_stream(broadcaster_id)
        if not result.ok:
            return None
        if not result.data:
            logger.warning(f"[StreamManager] Broadcaster '{broadcaster_id}' has no live stream")
            return None
        return result.data[0]

    def build_embed(self, info: Dict[str, Any]) -> discord.Embed:
        login = info.get("user_login", "")
        params = {
            "name": info.get("user_name", login),
            "login": login,
            "title": info.get("title", ""),
            "category": info.get("game_name", ""),
        }
        embed = discord.Embed(
            colour=discord.Colour(self.settings.embed.color),
            title=format_template(self.settings.embed.title, params),
            description=format_template(self.settings.embed.description, params),
            url=f"https://www.twitch.tv/{login}",
            timestamp=discord.utils.utcnow(),
        )
        if info.get("thumbnail_url"):
            embed.set_image(url=thumbnail_url(info["thumbnail_url"],
                                              self.settings.thumbnail_width,
                                              self.settings.thumbnail_height))
        return embed

    async def _post_alert(self, info: Dict[str, Any], login: str) -> Optional[str]:
        message_id = await self.discord.send_embed(self.settings.notification_channel, self.build_embed(info))
        if message_id is None:
            logger.error(f"[StreamManager] Could not post alert for {login}")
            return None
        try:
            await self.alerts.set(message_id, login)
        except OSError as e:
            # The alert is up and tracked in memory, only crash cleanup loses it
            logger.error(f"[StreamManager] Could not persist alert {message_id} for {login}: {e}")
        return message_id

    async def _delete_alert(self, message_id: str) -> None:
        # Keep the persisted id if Discord failed, the next start retries it
        if await self.discord.delete_message(self.settings.notification_channel, message_id):
            await self.alerts.delete(message_id)

    def _schedule_role(self, login: str, grant: bool) -> None:
        # Resolve the member now, the streamer may be untracked before the task runs
        user_id = self.settings.discord_user_for(login)
        task = asyncio.create_task(self._change_role(login, grant, user_id))
        self._role_tasks.add(task)
        task.add_done_callback(self._role_tasks.discard)

    async def _change_role(self, login: str, grant: bool, user_id: Optional[str] = None) -> bool:
        if not self.settings.live_role:
            return False
        user_id = user_id or self.settings.discord_user_for(login)
        if not user_id:
            logger.warning(f"[StreamManager] No discord_user_id configured for {login}")
            return False
        # Role changes for one login are applied in the order they were scheduled
        async with self._role_locks.hold(login.lower()):
            try:
                if grant:
                    return await self.discord.add_role(self.settings.guild_id, user_id, self.settings.live_role)
                return await self.discord.remove_role(self.settings.guild_id, user_id, self.settings.live_role)
            except Exception as e:
                logger.error(f"[StreamManager] Error changing live role for {login}: {e}")
                return False
