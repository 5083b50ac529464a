"""
Application constants module.

This module contains constant values used throughout the application including
Twitch API endpoints, EventSub subscription types and the webhook headers sent
by Twitch with every push notification.
"""

# Webhook server configuration
WEB_HOST = "0.0.0.0"  # Listen on all available network interfaces
WEB_PORT = 8420  # Default webhook server port

# Twitch API endpoints
TWITCH_OAUTH2_URL = "https://id.twitch.tv/oauth2"
TWITCH_HELIX_URL = "https://api.twitch.tv/helix"

# EventSub subscription types and the relative callback route handling each one
EVENT_CALLBACKS = {
    "stream.online": "/online",
    "stream.offline": "/offline",
    "channel.update": "/update",
}
EVENT_VERSIONS = {
    "stream.online": "1",
    "stream.offline": "1",
    "channel.update": "2",
}

# Subscription statuses reported by Twitch
STATUS_ENABLED = "enabled"
STATUS_PENDING = "webhook_callback_verification_pending"
STATUS_NOT_EXISTS = "not_exists"  # Synthetic, the id was not in the remote list

# EventSub webhook headers
TWITCH_MESSAGE_ID = "Twitch-Eventsub-Message-Id"
TWITCH_MESSAGE_TIMESTAMP = "Twitch-Eventsub-Message-Timestamp"
TWITCH_MESSAGE_SIGNATURE = "Twitch-Eventsub-Message-Signature"
TWITCH_MESSAGE_TYPE = "Twitch-Eventsub-Message-Type"
HMAC_PREFIX = "sha256="

# EventSub message types
MESSAGE_TYPE_NOTIFICATION = "notification"
MESSAGE_TYPE_VERIFICATION = "webhook_callback_verification"
MESSAGE_TYPE_REVOCATION = "revocation"

# Persistent store namespaces
TWITCH_NAMESPACE = "twitch_api"
ALERTS_NAMESPACE = "alerts"
APP_TOKEN_KEY = "app_token"

# Upstream request timeout in seconds
HTTP_TIMEOUT = 30
