"""
Tests for configuration loading and tracked streamer editing
"""
import json
import os

import pytest

from streamalert.config.settings import (
    add_tracked_streamer,
    load_settings,
    remove_tracked_streamer,
    settings_from_dict,
)
from streamalert.services.errors import ConfigError


@pytest.fixture(autouse=True)
def no_env_overrides(monkeypatch):
    for name in ("DISCORD_TOKEN", "TWITCH_CLIENT_ID", "TWITCH_SECRET", "WEBHOOKS_SECRET"):
        monkeypatch.delenv(name, raising=False)


def test_missing_file_writes_defaults(tmp_path):
    config_file = tmp_path / "config.json"

    with pytest.raises(ConfigError):
        load_settings(str(config_file))

    raw = json.loads(config_file.read_text())
    assert raw["stream_category"] == "Just Chatting"
    assert raw["streams"] == {}


def test_load_settings(tmp_path):
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({
        "webhooks_host": "https://hooks.example.com/",
        "webhooks_port": "9000",
        "embed": {"title": "${name} live"},
        "streams": {"Foo": {"discord_user_id": 111}},
    }))

    settings = load_settings(str(config_file))

    assert settings.webhooks_host == "https://hooks.example.com"
    assert settings.webhooks_port == 9000
    assert settings.embed.title == "${name} live"
    assert settings.embed.description == "${title}"
    assert settings.discord_user_for("FOO") == "111"
    assert settings.database_file == os.path.join(str(tmp_path), "data.json")


def test_invalid_json(tmp_path):
    config_file = tmp_path / "config.json"
    config_file.write_text("{")

    with pytest.raises(ConfigError):
        load_settings(str(config_file))


def test_invalid_value():
    with pytest.raises(ConfigError):
        settings_from_dict({"webhooks_port": "not a port"})


def test_environment_overrides_secrets(monkeypatch):
    monkeypatch.setenv("WEBHOOKS_SECRET", "from-env")

    settings = settings_from_dict({"webhooks_secret": "from-file"})

    assert settings.webhooks_secret == "from-env"


def test_add_and_remove_tracked_streamer(tmp_path):
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"streams": {}}))

    add_tracked_streamer("NewStreamer", "333", str(config_file))
    assert load_settings(str(config_file)).discord_user_for("newstreamer") == "333"

    assert remove_tracked_streamer("newstreamer", str(config_file)) is True
    assert remove_tracked_streamer("newstreamer", str(config_file)) is False
    assert load_settings(str(config_file)).streams == {}
