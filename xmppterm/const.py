# Copyright (C) 2018 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from enum import Enum
from functools import total_ordering


class IqType(Enum):
    GET = "get"
    SET = "set"
    RESULT = "result"
    ERROR = "error"

    @property
    def is_get(self) -> bool:
        return self == IqType.GET

    @property
    def is_set(self) -> bool:
        return self == IqType.SET

    @property
    def is_result(self) -> bool:
        return self == IqType.RESULT

    @property
    def is_error(self) -> bool:
        return self == IqType.ERROR

    @property
    def is_response(self) -> bool:
        return self in (IqType.RESULT, IqType.ERROR)


class MessageType(Enum):
    NORMAL = "normal"
    CHAT = "chat"
    GROUPCHAT = "groupchat"
    HEADLINE = "headline"
    ERROR = "error"

    @property
    def is_normal(self) -> bool:
        return self == MessageType.NORMAL

    @property
    def is_chat(self) -> bool:
        return self == MessageType.CHAT

    @property
    def is_groupchat(self) -> bool:
        return self == MessageType.GROUPCHAT

    @property
    def is_headline(self) -> bool:
        return self == MessageType.HEADLINE

    @property
    def is_error(self) -> bool:
        return self == MessageType.ERROR


class PresenceType(Enum):
    PROBE = "probe"
    SUBSCRIBE = "subscribe"
    SUBSCRIBED = "subscribed"
    AVAILABLE = None
    UNAVAILABLE = "unavailable"
    UNSUBSCRIBE = "unsubscribe"
    UNSUBSCRIBED = "unsubscribed"
    ERROR = "error"

    @property
    def is_available(self) -> bool:
        return self == PresenceType.AVAILABLE

    @property
    def is_unavailable(self) -> bool:
        return self == PresenceType.UNAVAILABLE

    @property
    def is_error(self) -> bool:
        return self == PresenceType.ERROR

    @property
    def is_subscribe(self) -> bool:
        return self == PresenceType.SUBSCRIBE

    @property
    def is_subscription(self) -> bool:
        return self in (
            PresenceType.SUBSCRIBE,
            PresenceType.SUBSCRIBED,
            PresenceType.UNSUBSCRIBE,
            PresenceType.UNSUBSCRIBED,
        )


class PresenceShow(Enum):
    ONLINE = "online"
    CHAT = "chat"
    AWAY = "away"
    XA = "xa"
    DND = "dnd"


class Availability(Enum):
    AVAILABLE = "available"
    CHAT = "chat"
    AWAY = "away"
    XA = "xa"
    DND = "dnd"
    UNAVAILABLE = "unavailable"

    @property
    def is_unavailable(self) -> bool:
        return self == Availability.UNAVAILABLE

    @classmethod
    def from_show(cls, show: PresenceShow) -> Availability:
        if show == PresenceShow.ONLINE:
            return cls.AVAILABLE
        return cls(show.value)

    def to_show(self) -> str | None:
        if self in (Availability.AVAILABLE, Availability.UNAVAILABLE):
            return None
        return self.value


class Subscription(Enum):
    NONE = "none"
    TO = "to"
    FROM = "from"
    BOTH = "both"
    PENDING = "pending"

    @classmethod
    def from_item(cls, subscription: str | None, ask: str | None) -> Subscription:
        value = cls(subscription or "none")
        if value == cls.NONE and ask == "subscribe":
            return cls.PENDING
        return value


class StatusCode(Enum):
    NON_ANONYMOUS = "100"
    AFFILIATION_CHANGE = "101"
    SELF = "110"
    CONFIG_ROOM_LOGGING = "170"
    CREATED = "201"
    NICKNAME_MODIFIED = "210"
    REMOVED_BANNED = "301"
    NICKNAME_CHANGE = "303"
    REMOVED_KICKED = "307"
    REMOVED_AFFILIATION_CHANGE = "321"
    REMOVED_NONMEMBER_IN_MEMBERS_ONLY = "322"
    REMOVED_SERVICE_SHUTDOWN = "332"
    REMOVED_ERROR = "333"


REMOVAL_REASONS = {
    StatusCode.REMOVED_BANNED: "banned",
    StatusCode.REMOVED_KICKED: "kicked",
    StatusCode.REMOVED_AFFILIATION_CHANGE: "affiliation-change",
    StatusCode.REMOVED_NONMEMBER_IN_MEMBERS_ONLY: "members-only",
    StatusCode.REMOVED_SERVICE_SHUTDOWN: "service-shutdown",
    StatusCode.REMOVED_ERROR: "error",
}


@total_ordering
class Affiliation(Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    OUTCAST = "outcast"
    NONE = "none"

    def __lt__(self, other: Affiliation) -> bool:
        try:
            return _AFFILIATION_WEIGHTS[self] < _AFFILIATION_WEIGHTS[other]
        except KeyError:
            return NotImplemented


_AFFILIATION_WEIGHTS = {
    Affiliation.OWNER: 4,
    Affiliation.ADMIN: 3,
    Affiliation.MEMBER: 2,
    Affiliation.NONE: 1,
    Affiliation.OUTCAST: 0,
}


@total_ordering
class Role(Enum):
    MODERATOR = "moderator"
    PARTICIPANT = "participant"
    VISITOR = "visitor"
    NONE = "none"

    @property
    def is_none(self) -> bool:
        return self == Role.NONE

    def __lt__(self, other: Role) -> bool:
        try:
            return _ROLE_WEIGHTS[self] < _ROLE_WEIGHTS[other]
        except KeyError:
            return NotImplemented


_ROLE_WEIGHTS = {
    Role.MODERATOR: 3,
    Role.PARTICIPANT: 2,
    Role.VISITOR: 1,
    Role.NONE: 0,
}


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    STREAM_NEGOTIATING = "stream negotiating"
    TLS_UPGRADING = "tls upgrading"
    AUTHENTICATING = "authenticating"
    BINDING_RESOURCE = "binding resource"
    ESTABLISHING_SESSION = "establishing session"
    READY = "ready"
    RECONNECTING = "reconnecting"

    @property
    def is_ready(self) -> bool:
        return self == ConnectionState.READY

    @property
    def is_disconnected(self) -> bool:
        return self == ConnectionState.DISCONNECTED

    @property
    def is_connecting(self) -> bool:
        return self not in (
            ConnectionState.DISCONNECTED,
            ConnectionState.READY,
            ConnectionState.RECONNECTING,
        )


class StreamState(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    DISCONNECTING = "disconnecting"
    WAIT_FOR_STREAM_START = "wait for stream start"
    WAIT_FOR_FEATURES = "wait for features"
    WAIT_FOR_TLS_PROCEED = "wait for tls proceed"
    PROCEED_WITH_AUTH = "proceed with auth"
    AUTH_SUCCESSFUL = "auth successful"
    AUTH_FAILED = "auth failed"
    WAIT_FOR_BIND = "wait for bind"
    WAIT_FOR_SESSION = "wait for session"
    BIND_SUCCESSFUL = "bind successful"
    ACTIVE = "active"


class TCPState(Enum):
    DISCONNECTED = "disconnected"
    DISCONNECTING = "disconnecting"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TlsPolicy(Enum):
    STARTTLS = "starttls"
    DIRECT_TLS = "direct"
    PLAIN = "plain"

    @property
    def is_plain(self) -> bool:
        return self == TlsPolicy.PLAIN

    @property
    def is_direct_tls(self) -> bool:
        return self == TlsPolicy.DIRECT_TLS


class RoomState(Enum):
    ABSENT = "absent"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"

    @property
    def is_absent(self) -> bool:
        return self == RoomState.ABSENT

    @property
    def is_joining(self) -> bool:
        return self == RoomState.JOINING

    @property
    def is_joined(self) -> bool:
        return self == RoomState.JOINED

    @property
    def is_leaving(self) -> bool:
        return self == RoomState.LEAVING

    @property
    def tracks_occupants(self) -> bool:
        return self in (RoomState.JOINING, RoomState.JOINED)


# Preferred order, strongest first
SASL_AUTH_MECHS = [
    "SCRAM-SHA-512",
    "SCRAM-SHA-256",
    "SCRAM-SHA-1",
    "PLAIN",
]

SASL_ERROR_CONDITIONS = [
    "aborted",
    "account-disabled",
    "credentials-expired",
    "encryption-required",
    "incorrect-encoding",
    "invalid-authzid",
    "invalid-mechanism",
    "malformed-request",
    "mechanism-too-weak",
    "not-authorized",
    "temporary-auth-failure",
]

DEFAULT_REQUEST_TIMEOUT = 30
KEEPALIVE_INTERVAL = 180
PING_TIMEOUT = 10
MAM_PAGE_SIZE = 100
