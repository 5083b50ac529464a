"""Background service wiring the Twitch registry, the webhook server and the Discord side effects."""

import asyncio
import logging
from typing import Optional

import discord

from streamalert.config.constants import ALERTS_NAMESPACE, TWITCH_NAMESPACE, WEB_HOST
from streamalert.config.settings import (
    CONFIG_FILE,
    Settings,
    add_tracked_streamer,
    remove_tracked_streamer,
)
from streamalert.services.discord_client import DiscordGateway
from streamalert.services.errors import StreamAlertError
from streamalert.services.eventsub_service import EventSubService, RegistryOutcome
from streamalert.services.store import KeyValueStore
from streamalert.services.stream_manager import StreamManager
from streamalert.services.token_manager import TokenManager
from streamalert.services.twitch_api import HelixClient
from streamalert.web.app import WebApp
from streamalert.web.handlers import WebhookHandlers

logger = logging.getLogger("monitor")


class StreamAlertService:
    """
    Owns every component and runs the startup sequence:

    1. remove alerts and roles left over from a previous run
    2. start the webhook server so Twitch can verify new subscriptions
    3. reconcile the subscriptions of every configured streamer
    """

    def __init__(self, settings: Settings, discord_client: discord.Client,
                 config_file: str = CONFIG_FILE, web_host: str = WEB_HOST):
        self.settings = settings
        self.config_file = config_file
        self.web_host = web_host

        self.store = KeyValueStore(settings.database_file)
        twitch_cache = self.store.namespace(TWITCH_NAMESPACE)

        # Twitch side: token cache, API client and subscription registry
        self.token_manager = TokenManager(twitch_cache, settings.twitch_client_id, settings.twitch_secret)
        self.twitch_api = HelixClient(self.token_manager, settings.twitch_client_id)
        self.eventsub_service = EventSubService(self.twitch_api, twitch_cache,
                                                settings.webhooks_host, settings.webhooks_secret)

        # Discord side: live state tracking and the webhook gateway feeding it
        self.discord = DiscordGateway(discord_client)
        self.stream_manager = StreamManager(settings, self.twitch_api, self.discord,
                                            self.store.namespace(ALERTS_NAMESPACE))
        self.handlers = WebhookHandlers(settings.webhooks_secret, self.stream_manager)
        self.web_app = WebApp()
        self.web_app.setup_routes(self.handlers)

        self.running = False

    async def start(self):
        if self.running:
            return
        self.running = True

        await self.stream_manager.reconcile_on_startup()
        await self.web_app.start(self.web_host, self.settings.webhooks_port)

        logins = list(self.settings.streams)
        await asyncio.gather(*(self._subscribe(login) for login in logins))
        logger.info(f"[Monitor] Finished subscribing process for {len(logins)} streamers")

    async def stop(self):
        self.running = False
        await self.handlers.drain()
        await self.stream_manager.drain()
        await self.web_app.stop()

    async def _subscribe(self, login: str) -> RegistryOutcome:
        try:
            outcome = await self.eventsub_service.ensure_subscribed(login)
        except StreamAlertError as e:
            logger.error(f"[Monitor] Could not subscribe to {login}: {e}")
            return RegistryOutcome.UNAVAILABLE
        if outcome is not RegistryOutcome.DONE:
            logger.error(f"[Monitor] Subscribing to {login} ended with {outcome.value}")
        return outcome

    def _use_settings(self, settings: Settings):
        self.settings = settings
        self.stream_manager.settings = settings

    async def _change_streamer_role(self, login: str, discord_user_id: Optional[str], grant: bool):
        if not self.settings.streamer_role or not discord_user_id:
            return
        change = self.discord.add_role if grant else self.discord.remove_role
        if not await change(self.settings.guild_id, discord_user_id, self.settings.streamer_role):
            logger.warning(f"[Monitor] Could not {'grant' if grant else 'remove'} streamer role for {login}")

    async def add_streamer(self, login: str, discord_user_id: str) -> RegistryOutcome:
        """
        Subscribe to a new streamer and, if that worked, start tracking it.

        The streamer is saved to the config file, picked up by the running
        stream manager and given the streamer role.
        """
        outcome = await self._subscribe(login)
        if outcome is RegistryOutcome.DONE:
            add_tracked_streamer(login, discord_user_id, self.config_file)
            self._use_settings(self.settings.with_stream(login, discord_user_id))
            await self._change_streamer_role(login, str(discord_user_id), grant=True)
            logger.info(f"[Monitor] Now tracking {login}")
        return outcome

    async def remove_streamer(self, login: str) -> Optional[RegistryOutcome]:
        """
        Stop tracking a streamer: delete its subscriptions, remove a running
        alert and both roles, and drop it from the config file.
        """
        discord_user_id = self.settings.discord_user_for(login)
        outcome = await self.eventsub_service.unsubscribe_all(login)
        # No offline notification will arrive once unsubscribed
        await self.stream_manager.end_streams_of(login)
        await self._change_streamer_role(login, discord_user_id, grant=False)

        self._use_settings(self.settings.with_stream(login, None))
        if remove_tracked_streamer(login, self.config_file):
            logger.info(f"[Monitor] Stopped tracking {login}")
        return outcome
