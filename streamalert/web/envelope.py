"""
EventSub webhook message decoding.

Request bodies are decoded once, here, into small typed objects. Nothing past
the webhook handlers ever looks at the raw JSON.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Union


class EnvelopeError(ValueError):
    """The body is not valid JSON or lacks a required field."""


@dataclass(frozen=True)
class OnlineNotification:
    entity_id: str
    entity_login: str
    entity_display_name: str


@dataclass(frozen=True)
class OfflineNotification:
    entity_id: str
    entity_login: str
    entity_display_name: str


@dataclass(frozen=True)
class UpdateNotification:
    entity_id: str
    entity_login: str
    entity_display_name: str
    category: str
    title: str = ""


@dataclass(frozen=True)
class VerificationChallenge:
    challenge: str


@dataclass(frozen=True)
class Revocation:
    type: str
    status: str
    condition: Dict[str, Any] = field(default_factory=dict)


Notification = Union[OnlineNotification, OfflineNotification, UpdateNotification]


def _load(body: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise EnvelopeError(f"Invalid JSON body: {e}") from e
    if not isinstance(data, dict):
        raise EnvelopeError("Body is not a JSON object")
    return data


def _event(body: bytes) -> Dict[str, Any]:
    event = _load(body).get("event")
    if not isinstance(event, dict):
        raise EnvelopeError("Notification has no event")
    for key in ("broadcaster_user_id", "broadcaster_user_login"):
        if not event.get(key):
            raise EnvelopeError(f"Notification event lacks {key}")
    return event


def decode_online(body: bytes) -> OnlineNotification:
    event = _event(body)
    return OnlineNotification(
        entity_id=str(event["broadcaster_user_id"]),
        entity_login=event["broadcaster_user_login"],
        entity_display_name=event.get("broadcaster_user_name") or event["broadcaster_user_login"],
    )


def decode_offline(body: bytes) -> OfflineNotification:
    event = _event(body)
    return OfflineNotification(
        entity_id=str(event["broadcaster_user_id"]),
        entity_login=event["broadcaster_user_login"],
        entity_display_name=event.get("broadcaster_user_name") or event["broadcaster_user_login"],
    )


def decode_update(body: bytes) -> UpdateNotification:
    event = _event(body)
    # channel.update v2 sends category_name, older payloads game_name
    category = event.get("category_name")
    if category is None:
        category = event.get("game_name", "")
    return UpdateNotification(
        entity_id=str(event["broadcaster_user_id"]),
        entity_login=event["broadcaster_user_login"],
        entity_display_name=event.get("broadcaster_user_name") or event["broadcaster_user_login"],
        category=category or "",
        title=event.get("title") or "",
    )


def decode_challenge(body: bytes) -> VerificationChallenge:
    challenge = _load(body).get("challenge")
    if not isinstance(challenge, str):
        raise EnvelopeError("Verification body has no challenge")
    return VerificationChallenge(challenge=challenge)


def decode_revocation(body: bytes) -> Revocation:
    subscription = _load(body).get("subscription") or {}
    return Revocation(
        type=subscription.get("type", "unknown"),
        status=subscription.get("status", "unknown"),
        condition=subscription.get("condition") or {},
    )
