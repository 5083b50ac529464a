# main.py: entry point of the stream alert bot
import os
import sys
import asyncio
import logging

import discord

from streamalert.config.settings import CONFIG_FILE, load_settings
from streamalert.services.background_service import StreamAlertService
from streamalert.services.errors import ConfigError

logger = logging.getLogger("main")


def setup_logging():
    """Console logging, DEBUG when the DEBUG environment variable is set."""
    logging.basicConfig(
        level=logging.DEBUG if os.environ.get("DEBUG") else logging.INFO,
        format="[%(name)s] %(levelname)s: %(message)s",
    )
    # discord.py is very chatty at debug level
    logging.getLogger("discord.gateway").setLevel(logging.INFO)


async def main():
    """Application entry point that initializes and starts all required services."""
    setup_logging()

    try:
        settings = load_settings(CONFIG_FILE)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    client = discord.Client(intents=discord.Intents.default())
    service = StreamAlertService(settings, client, config_file=CONFIG_FILE)

    @client.event
    async def on_ready():
        logger.info(f"StreamAlert loaded in {len(client.guilds)} guilds")
        # on_ready fires again after reconnects, start() only runs once
        await service.start()

    try:
        async with client:
            await client.start(settings.discord_token)
    finally:
        await service.stop()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)
