"""
Tests for live state tracking and the Discord side effects it drives
"""
import asyncio

import pytest

from streamalert.config.constants import ALERTS_NAMESPACE
from streamalert.services.stream_manager import StreamManager, format_template, thumbnail_url


def stream_info(login, category, title="Hello chat"):
    return {
        "user_login": login,
        "user_name": login.capitalize(),
        "game_name": category,
        "title": title,
        "thumbnail_url": f"https://static-cdn.jtvnw.net/previews-ttv/live_user_{login}-{{width}}x{{height}}.jpg",
    }


@pytest.fixture
def alerts(store):
    return store.namespace(ALERTS_NAMESPACE)


@pytest.fixture
def manager(settings, helix, fake_discord, alerts):
    return StreamManager(settings, helix, fake_discord, alerts)


class TestTemplates:
    def test_format_template(self):
        assert format_template("${name} is live: ${title}", {"name": "Foo", "title": "hi"}) == "Foo is live: hi"

    def test_unknown_placeholder_is_left_as_is(self):
        assert format_template("${nope}!", {}) == "${nope}!"

    def test_thumbnail_size(self):
        assert thumbnail_url("x-{width}x{height}.jpg", 1280, 720) == "x-1280x720.jpg"


@pytest.mark.asyncio
async def test_online_update_offline_scenario(manager, helix, fake_discord, alerts):
    helix.streams["1001"] = stream_info("foo", "Just Chatting")

    await manager.on_online("1001", "foo", "Foo")
    await manager.drain()

    assert len(fake_discord.sent) == 1
    message_id = fake_discord.sent[0][1]
    assert fake_discord.roles_added == [("10", "111", "30")]
    stream = manager.get_stream("1001")
    assert stream.category == "Just Chatting"
    assert stream.alert_message_id == message_id
    assert await alerts.items() == {message_id: "foo"}

    await manager.on_update("1001", "foo", "Art")
    await manager.drain()

    assert fake_discord.deleted == [("20", message_id)]
    assert fake_discord.roles_removed == [("10", "111", "30")]
    stream = manager.get_stream("1001")
    assert stream.category == "Art"
    assert stream.alert_message_id is None
    assert await alerts.items() == {}

    await manager.on_offline("1001", "foo")
    await manager.drain()

    assert len(fake_discord.deleted) == 1
    assert not manager.is_live("1001")


@pytest.mark.asyncio
async def test_embed_content(manager, helix, fake_discord):
    helix.streams["1001"] = stream_info("foo", "just chatting", title="Cozy stream")

    await manager.on_online("1001", "foo", "Foo")

    embed = fake_discord.sent[0][2]
    assert embed.title == "Foo is live!"
    assert embed.description == "Cozy stream"
    assert embed.url == "https://www.twitch.tv/foo"
    assert embed.image.url.endswith("live_user_foo-1280x720.jpg")


@pytest.mark.asyncio
async def test_duplicate_online_keeps_a_single_alert(manager, helix, fake_discord, caplog):
    helix.streams["1001"] = stream_info("foo", "Just Chatting")

    await manager.on_online("1001", "foo", "Foo")
    first_id = manager.get_stream("1001").alert_message_id
    with caplog.at_level("WARNING", logger="stream_manager"):
        await manager.on_online("1001", "foo", "Foo")
    await manager.drain()

    warnings = [r for r in caplog.records if "already cached as online" in r.getMessage()]
    assert len(warnings) == 1
    # The first alert was removed before the second one was posted
    assert fake_discord.deleted == [("20", first_id)]
    live = {m for _, m, _ in fake_discord.sent} - {m for _, m in fake_discord.deleted}
    assert live == {manager.get_stream("1001").alert_message_id}


@pytest.mark.asyncio
async def test_online_outside_target_category(manager, helix, fake_discord):
    helix.streams["1001"] = stream_info("foo", "Art")

    await manager.on_online("1001", "foo", "Foo")
    await manager.drain()

    assert fake_discord.sent == []
    assert fake_discord.roles_added == []
    assert manager.get_stream("1001").alert_message_id is None


@pytest.mark.asyncio
async def test_update_into_target_category_posts_alert(manager, helix, fake_discord):
    helix.streams["1001"] = stream_info("foo", "Art")
    await manager.on_online("1001", "foo", "Foo")

    helix.streams["1001"] = stream_info("foo", "Just Chatting")
    await manager.on_update("1001", "foo", "JUST CHATTING")
    await manager.drain()

    assert len(fake_discord.sent) == 1
    assert fake_discord.roles_added == [("10", "111", "30")]
    assert manager.get_stream("1001").alert_message_id == fake_discord.sent[0][1]

    # Same state again: nothing new happens
    await manager.on_update("1001", "foo", "Just Chatting")
    assert len(fake_discord.sent) == 1


@pytest.mark.asyncio
async def test_update_without_stream_is_ignored(manager, helix, fake_discord):
    await manager.on_update("1001", "foo", "Just Chatting")

    assert not manager.is_live("1001")
    assert helix.calls_to("get_stream") == []


@pytest.mark.asyncio
async def test_failed_stream_info_leaves_stream_absent(manager, helix, fake_discord):
    helix.fail_stream = True

    await manager.on_online("1001", "foo", "Foo")
    await manager.on_offline("1001", "foo")

    assert not manager.is_live("1001")
    assert fake_discord.sent == []
    assert fake_discord.deleted == []


@pytest.mark.asyncio
async def test_failed_alert_keeps_previous_category(manager, helix, fake_discord):
    helix.streams["1001"] = stream_info("foo", "Art")
    await manager.on_online("1001", "foo", "Foo")
    fake_discord.fail_send = True

    await manager.on_update("1001", "foo", "Just Chatting")

    stream = manager.get_stream("1001")
    assert stream.alert_message_id is None
    assert stream.category == "Art"


@pytest.mark.asyncio
async def test_streamer_without_discord_user_gets_no_role(manager, helix, fake_discord):
    helix.streams["1003"] = stream_info("baz", "Just Chatting")

    await manager.on_online("1003", "baz", "Baz")
    await manager.drain()

    assert len(fake_discord.sent) == 1
    assert fake_discord.roles_added == []


@pytest.mark.asyncio
async def test_notifications_for_one_stream_are_serialized(manager, helix, fake_discord):
    helix.streams["1001"] = stream_info("foo", "Just Chatting")
    original_get_stream = helix.get_stream

    async def slow_get_stream(broadcaster_id):
        await asyncio.sleep(0.05)
        return await original_get_stream(broadcaster_id)

    helix.get_stream = slow_get_stream

    await asyncio.gather(manager.on_online("1001", "foo", "Foo"), manager.on_offline("1001", "foo"))
    await manager.drain()

    # The offline ran after the online finished, so the alert it posted got removed
    assert not manager.is_live("1001")
    assert [m for _, m in fake_discord.deleted] == [fake_discord.sent[0][1]]


@pytest.mark.asyncio
async def test_reconcile_on_startup_tears_down_leftovers(manager, fake_discord, alerts):
    await alerts.set("9001", "foo")
    await alerts.set("9002", "bar")

    await manager.reconcile_on_startup()

    assert sorted(m for _, m in fake_discord.deleted) == ["9001", "9002"]
    assert sorted(u for _, u, _ in fake_discord.roles_removed) == ["111", "222"]
    assert await alerts.items() == {}


@pytest.mark.asyncio
async def test_role_changes_apply_in_order_when_discord_is_slow(manager, helix, fake_discord):
    helix.streams["1001"] = stream_info("foo", "Just Chatting")
    applied = []
    add_role = fake_discord.add_role
    remove_role = fake_discord.remove_role

    async def slow_add_role(*args):
        await asyncio.sleep(0.05)
        applied.append("add")
        return await add_role(*args)

    async def fast_remove_role(*args):
        applied.append("remove")
        return await remove_role(*args)

    fake_discord.add_role = slow_add_role
    fake_discord.remove_role = fast_remove_role

    await manager.on_online("1001", "foo", "Foo")
    await manager.on_offline("1001", "foo")
    await manager.drain()

    assert applied == ["add", "remove"]
    assert not manager.is_live("1001")


@pytest.mark.asyncio
async def test_alert_is_tracked_when_persisting_fails(manager, helix, fake_discord, alerts, monkeypatch):
    helix.streams["1001"] = stream_info("foo", "Just Chatting")

    async def broken_set(key, value):
        raise OSError("disk full")

    monkeypatch.setattr(alerts, "set", broken_set)

    await manager.on_online("1001", "foo", "Foo")
    await manager.drain()

    message_id = fake_discord.sent[0][1]
    assert manager.get_stream("1001").alert_message_id == message_id
    assert fake_discord.roles_added == [("10", "111", "30")]

    await manager.on_offline("1001", "foo")

    assert fake_discord.deleted == [("20", message_id)]


@pytest.mark.asyncio
async def test_end_streams_of_untracked_streamer(manager, helix, fake_discord):
    helix.streams["1001"] = stream_info("foo", "Just Chatting")
    await manager.on_online("1001", "foo", "Foo")
    await manager.drain()
    manager.settings = manager.settings.with_stream("foo", None)

    await manager.end_streams_of("FOO")
    await manager.drain()

    assert not manager.is_live("1001")
    assert fake_discord.deleted == [("20", fake_discord.sent[0][1])]
    assert fake_discord.roles_removed == [("10", "111", "30")]
