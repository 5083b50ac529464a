"""
Webhook Server Module

This module runs the aiohttp server Twitch EventSub delivers webhooks to.
Each subscribed event type has its own route, all handled by WebhookHandlers.

Usage:
    web_app = WebApp()
    web_app.setup_routes(handlers)
    await web_app.start("0.0.0.0", 8420)
    ...
    await web_app.stop()
"""

import logging
from typing import Optional

from aiohttp import web

from streamalert.web.handlers import WebhookHandlers
from streamalert.web.middleware import error_middleware

logger = logging.getLogger("web")


class WebApp:
    """
    Webhook web server.

    Attributes:
        app (web.Application): The aiohttp web application instance
        runner (web.AppRunner): Runner of the started server, None until start()
    """

    def __init__(self):
        self.app = web.Application(middlewares=[error_middleware])
        self.runner: Optional[web.AppRunner] = None

    def setup_routes(self, handlers: WebhookHandlers):
        """
        Register the EventSub callback routes.

        Args:
            handlers: Object containing the webhook handler methods
        """
        self.app.router.add_post("/online", handlers.handle_online)
        self.app.router.add_post("/offline", handlers.handle_offline)
        self.app.router.add_post("/update", handlers.handle_update)

    async def start(self, host: str, port: int):
        """
        Start serving on host:port.

        Args:
            host: The hostname or IP address to bind the server to (e.g., "0.0.0.0")
            port: The port number to listen on
        """
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, host, port)
        await site.start()

        logger.info(f"[WebApp] Webhook server started on http://{host}:{port}")

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            logger.info("[WebApp] Webhook server stopped")
