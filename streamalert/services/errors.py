"""Exceptions raised for conditions a caller cannot recover from locally."""


class StreamAlertError(Exception):
    """Base class for application errors."""


class ConfigError(StreamAlertError):
    """The configuration file is missing or holds an invalid value."""


class UpstreamUnavailable(StreamAlertError):
    """The Twitch API could not be reached or refused to issue a token."""


class SubscriptionConflict(StreamAlertError):
    """
    Twitch kept reporting an equivalent subscription after the cache was refreshed.

    Attributes:
        login: Login of the broadcaster being subscribed
        event_type: The EventSub type that conflicted
    """

    def __init__(self, login: str, event_type: str):
        super().__init__(f"Subscription to {event_type} for {login} still conflicts after cache refresh")
        self.login = login
        self.event_type = event_type
