"""
Web Application Middleware Module

Middleware for the webhook server. Any exception escaping a handler is logged
and turned into a plain 500 response instead of aiohttp's default error page.

Usage:
    app = web.Application(middlewares=[error_middleware])
"""

import logging
from typing import Callable, Awaitable

from aiohttp import web

logger = logging.getLogger("web")


@web.middleware
async def error_middleware(request: web.Request,
                           handler: Callable[[web.Request], Awaitable[web.StreamResponse]]) -> web.StreamResponse:
    """
    Log unhandled handler errors and answer 500.

    HTTP exceptions raised on purpose (404 for unknown routes, 405 for wrong
    methods) pass through untouched.
    """
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"[Web] Error handling request {request.method} {request.path}: {e}")
        return web.Response(status=500, text="Internal Server Error")
