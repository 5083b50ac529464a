"""
Pytest configuration
Provides fakes for the Twitch API and Discord, plus a settings fixture
"""
import itertools
from typing import Any, Dict, List, Optional

import pytest

from streamalert.config.settings import settings_from_dict
from streamalert.services.store import KeyValueStore
from streamalert.services.twitch_api import ApiResult, ResultKind


def ok(data: Optional[List[Dict[str, Any]]] = None, cursor: Optional[str] = None, status: int = 200) -> ApiResult:
    payload: Dict[str, Any] = {"data": data or []}
    if cursor is not None:
        payload["pagination"] = {"cursor": cursor}
    return ApiResult(ResultKind.OK, status, payload)


def unavailable(status: int = 500) -> ApiResult:
    return ApiResult(ResultKind.UNAVAILABLE, status)


class FakeHelix:
    """
    In-memory stand in for HelixClient.

    remote holds the subscriptions Twitch knows about; page_size controls how
    they are split into pages.
    """

    def __init__(self):
        self.users = {"foo": "1001", "bar": "1002"}
        self.streams: Dict[str, Dict[str, Any]] = {}
        self.remote: List[Dict[str, Any]] = []
        self.page_size = 100
        self.conflicts_left = 0
        self.fail_stream = False
        self.fail_list = False
        self._ids = itertools.count(1)
        self.calls: List[tuple] = []

    def calls_to(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def add_remote(self, event_type: str, broadcaster_id: str, status: str = "enabled",
                   sub_id: Optional[str] = None) -> Dict[str, Any]:
        sub = {
            "id": sub_id or f"sub-{next(self._ids)}",
            "type": event_type,
            "status": status,
            "condition": {"broadcaster_user_id": broadcaster_id},
        }
        self.remote.append(sub)
        return sub

    async def get_user(self, login=None, user_id=None) -> ApiResult:
        self.calls.append(("get_user", login, user_id))
        if login is not None:
            uid = self.users.get(login)
            return ok([{"id": uid, "login": login}] if uid else [])
        for name, uid in self.users.items():
            if uid == user_id:
                return ok([{"id": uid, "login": name}])
        return ok([])

    async def get_stream(self, broadcaster_id) -> ApiResult:
        self.calls.append(("get_stream", broadcaster_id))
        if self.fail_stream:
            return unavailable()
        info = self.streams.get(broadcaster_id)
        return ok([info] if info else [])

    async def get_subscriptions_page(self, event_type=None, after=None) -> ApiResult:
        self.calls.append(("get_subscriptions_page", event_type, after))
        if self.fail_list:
            return unavailable()
        subs = [s for s in self.remote if event_type is None or s["type"] == event_type]
        start = int(after) if after else 0
        end = start + self.page_size
        cursor = str(end) if end < len(subs) else None
        return ok(subs[start:end], cursor=cursor)

    async def create_subscription(self, event_type, broadcaster_id, callback, secret) -> ApiResult:
        self.calls.append(("create_subscription", event_type, broadcaster_id, callback))
        if self.conflicts_left:
            self.conflicts_left -= 1
            return ApiResult(ResultKind.CONFLICT, 409)
        sub = self.add_remote(event_type, broadcaster_id, status="webhook_callback_verification_pending")
        return ok([sub], status=202)

    async def delete_subscription(self, subscription_id) -> ApiResult:
        self.calls.append(("delete_subscription", subscription_id))
        before = len(self.remote)
        self.remote = [s for s in self.remote if s["id"] != subscription_id]
        if len(self.remote) == before:
            return ApiResult(ResultKind.NOT_FOUND, 404)
        return ApiResult(ResultKind.OK, 204)


class FakeDiscord:
    """Records Discord side effects instead of performing them."""

    def __init__(self):
        self._ids = itertools.count(5000)
        self.sent: List[tuple] = []
        self.deleted: List[tuple] = []
        self.roles_added: List[tuple] = []
        self.roles_removed: List[tuple] = []
        self.fail_send = False

    async def send_embed(self, channel_id, embed):
        if self.fail_send:
            return None
        message_id = str(next(self._ids))
        self.sent.append((channel_id, message_id, embed))
        return message_id

    async def delete_message(self, channel_id, message_id):
        self.deleted.append((channel_id, message_id))
        return True

    async def add_role(self, guild_id, user_id, role_id):
        self.roles_added.append((guild_id, user_id, role_id))
        return True

    async def remove_role(self, guild_id, user_id, role_id):
        self.roles_removed.append((guild_id, user_id, role_id))
        return True


@pytest.fixture
def settings(tmp_path):
    """Settings snapshot with two tracked streamers and the store in tmp_path"""
    return settings_from_dict({
        "guild_id": "10",
        "notification_channel": "20",
        "live_role": "30",
        "stream_category": "Just Chatting",
        "webhooks_host": "https://hooks.example.com/",
        "webhooks_secret": "s3cr3t",
        "database_file": "data.json",
        "streams": {
            "foo": {"discord_user_id": "111"},
            "Bar": {"discord_user_id": "222"},
        },
    }, base_dir=str(tmp_path))


@pytest.fixture
def store(tmp_path):
    return KeyValueStore(str(tmp_path / "data.json"))


@pytest.fixture
def helix():
    return FakeHelix()


@pytest.fixture
def fake_discord():
    return FakeDiscord()
