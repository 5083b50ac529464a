"""
Application settings management module.
Handles the configuration file location, loading it into an immutable snapshot,
and editing the list of tracked streamers.
"""

import os
import json
import platform
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Any, Optional

from streamalert.config.constants import WEB_PORT
from streamalert.services.errors import ConfigError

logger = logging.getLogger("settings")

# Define config directory based on platform
if platform.system() == "Windows":
    # Windows: Use AppData\Roaming
    CONFIG_DIR = os.path.join(os.environ.get('APPDATA', os.path.expanduser('~')), "StreamAlert")
else:
    # Linux: Use ~/.config/StreamAlert/
    CONFIG_DIR = os.path.join(os.path.expanduser('~'), '.config', "StreamAlert")

CONFIG_FILE = os.environ.get("STREAMALERT_CONFIG", os.path.join(CONFIG_DIR, "config.json"))

DEFAULT_CONFIG: Dict[str, Any] = {
    "discord_token": "",
    "guild_id": "",
    "notification_channel": "",
    "live_role": "",
    "streamer_role": "",
    "stream_category": "Just Chatting",
    "twitch_client_id": "",
    "twitch_secret": "",
    "webhooks_host": "https://example.com",
    "webhooks_port": WEB_PORT,
    "webhooks_secret": "",
    "database_file": "data.json",
    "embed": {
        "color": 0x9146FF,
        "title": "${name} is live!",
        "description": "${title}",
    },
    "thumbnail": {
        "width": 1280,
        "height": 720,
    },
    "streams": {},
}

# Secrets that may be supplied through the environment instead of the file
ENV_OVERRIDES = {
    "DISCORD_TOKEN": "discord_token",
    "TWITCH_CLIENT_ID": "twitch_client_id",
    "TWITCH_SECRET": "twitch_secret",
    "WEBHOOKS_SECRET": "webhooks_secret",
}


@dataclass(frozen=True)
class EmbedSettings:
    color: int
    title: str
    description: str


@dataclass(frozen=True)
class Settings:
    """
    Immutable configuration snapshot handed to every component at construction.

    Attributes:
        live_role: Role held by a streamer only while their alert is up
        streamer_role: Role held by a streamer for as long as they are tracked
        streams: Maps a tracked Twitch login to the Discord user id linked to it
    """
    discord_token: str
    guild_id: str
    notification_channel: str
    live_role: str
    stream_category: str
    twitch_client_id: str
    twitch_secret: str
    webhooks_host: str
    webhooks_port: int
    webhooks_secret: str
    database_file: str
    embed: EmbedSettings
    streamer_role: str = ""
    thumbnail_width: int = 1280
    thumbnail_height: int = 720
    streams: Dict[str, str] = field(default_factory=dict)

    def discord_user_for(self, login: str) -> Optional[str]:
        """Return the Discord user id configured for a Twitch login, if any."""
        return self.streams.get(login.lower())

    def with_stream(self, login: str, discord_user_id: Optional[str]) -> "Settings":
        """Copy of this snapshot with a streamer added, or removed when discord_user_id is None."""
        streams = dict(self.streams)
        if discord_user_id is None:
            streams.pop(login.lower(), None)
        else:
            streams[login.lower()] = str(discord_user_id)
        return replace(self, streams=streams)


def settings_from_dict(raw: Dict[str, Any], base_dir: str = CONFIG_DIR) -> Settings:
    """
    Build a Settings snapshot from a parsed configuration dictionary.

    Missing keys fall back to DEFAULT_CONFIG. The database file is resolved
    relative to base_dir unless it is already absolute.

    Raises:
        ConfigError: If a value has the wrong type
    """
    merged = dict(DEFAULT_CONFIG)
    merged.update(raw)
    for env_name, key in ENV_OVERRIDES.items():
        if os.environ.get(env_name):
            merged[key] = os.environ[env_name]

    embed = dict(DEFAULT_CONFIG["embed"])
    embed.update(merged.get("embed") or {})
    thumbnail = dict(DEFAULT_CONFIG["thumbnail"])
    thumbnail.update(merged.get("thumbnail") or {})

    streams = {}
    for login, entry in (merged.get("streams") or {}).items():
        if not isinstance(entry, dict):
            raise ConfigError(f"Config entry for stream '{login}' must be an object")
        streams[login.lower()] = str(entry.get("discord_user_id", ""))

    database_file = merged["database_file"]
    if not os.path.isabs(database_file):
        database_file = os.path.join(base_dir, database_file)

    try:
        return Settings(
            discord_token=str(merged["discord_token"]),
            guild_id=str(merged["guild_id"]),
            notification_channel=str(merged["notification_channel"]),
            live_role=str(merged["live_role"]),
            streamer_role=str(merged["streamer_role"]),
            stream_category=str(merged["stream_category"]),
            twitch_client_id=str(merged["twitch_client_id"]),
            twitch_secret=str(merged["twitch_secret"]),
            webhooks_host=str(merged["webhooks_host"]).rstrip("/"),
            webhooks_port=int(merged["webhooks_port"]),
            webhooks_secret=str(merged["webhooks_secret"]),
            database_file=database_file,
            embed=EmbedSettings(
                color=int(embed["color"]),
                title=str(embed["title"]),
                description=str(embed["description"]),
            ),
            thumbnail_width=int(thumbnail["width"]),
            thumbnail_height=int(thumbnail["height"]),
            streams=streams,
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e


def load_settings(config_file: str = CONFIG_FILE) -> Settings:
    """
    Load the configuration file into a Settings snapshot.

    If the file doesn't exist a default one is written and ConfigError is raised
    so the user can fill it in before restarting.

    Args:
        config_file (str): Path to the JSON configuration file

    Returns:
        Settings: The parsed configuration

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    if not os.path.exists(config_file):
        os.makedirs(os.path.dirname(config_file) or ".", exist_ok=True)
        with open(config_file, "w") as f:
            json.dump(DEFAULT_CONFIG, f, indent=2)
        raise ConfigError(f"Created {config_file}, edit it and restart")

    try:
        with open(config_file, "r") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Error reading config file {config_file}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_file} must contain a JSON object")

    settings = settings_from_dict(raw, base_dir=os.path.dirname(os.path.abspath(config_file)))
    logger.debug(f"[Settings] Loaded configuration with {len(settings.streams)} tracked streams")
    return settings


def _write_config(raw: Dict[str, Any], config_file: str) -> None:
    # Write to a temporary file first, then rename to avoid corruption
    temp_file = f"{config_file}.tmp"
    with open(temp_file, "w") as f:
        json.dump(raw, f, indent=2)
    os.replace(temp_file, config_file)


def _read_config(config_file: str) -> Dict[str, Any]:
    try:
        with open(config_file, "r") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Error reading config file {config_file}: {e}") from e


def add_tracked_streamer(login: str, discord_user_id: str, config_file: str = CONFIG_FILE) -> None:
    """
    Add (or update) a tracked streamer in the configuration file.

    Args:
        login (str): Twitch login of the streamer, stored lowercased
        discord_user_id (str): Discord user that gets the live role
    """
    raw = _read_config(config_file)
    streams = raw.setdefault("streams", {})
    streams[login.lower()] = {"discord_user_id": str(discord_user_id)}
    _write_config(raw, config_file)


def remove_tracked_streamer(login: str, config_file: str = CONFIG_FILE) -> bool:
    """
    Remove a tracked streamer from the configuration file.

    Returns:
        bool: True if the streamer was present and got removed
    """
    raw = _read_config(config_file)
    streams = raw.get("streams") or {}
    if login.lower() not in streams:
        return False
    del streams[login.lower()]
    raw["streams"] = streams
    _write_config(raw, config_file)
    return True
