# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Events handed to the user interface, every event names the account it
belongs to
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field

from xmppterm.const import ConnectionState
from xmppterm.errors import BaseError
from xmppterm.history import MessageRecord
from xmppterm.jid import JID
from xmppterm.structs import BookmarkData


@dataclass
class Event:
    account: str


@dataclass
class ConnectionStateChanged(Event):
    state: ConnectionState
    error: BaseError | None = None


@dataclass
class MessageReceived(Event):
    record: MessageRecord


@dataclass
class PresenceChanged(Event):
    jid: JID
    availability: str
    status: str = ""


@dataclass
class RosterUpdated(Event):
    contacts: list[JID] = field(default_factory=list)


@dataclass
class SubscriptionRequest(Event):
    jid: JID
    status: str = ""


@dataclass
class SubscriptionChanged(Event):
    jid: JID
    type: str


@dataclass
class RoomJoined(Event):
    room: JID
    nick: str
    occupants: list[str] = field(default_factory=list)


@dataclass
class RoomLeft(Event):
    room: JID
    reason: str | None = None


@dataclass
class OccupantJoined(Event):
    room: JID
    nick: str


@dataclass
class OccupantLeft(Event):
    room: JID
    nick: str
    reason: str | None = None


@dataclass
class OccupantRenamed(Event):
    room: JID
    old_nick: str
    new_nick: str


@dataclass
class RoomSubjectChanged(Event):
    room: JID
    subject: str


@dataclass
class BookmarksUpdated(Event):
    bookmarks: list[BookmarkData] = field(default_factory=list)


@dataclass
class HistoryLoaded(Event):
    archive: JID
    records: list[MessageRecord] = field(default_factory=list)
    complete: bool = False


@dataclass
class RequestFailed(Event):
    error: BaseError | Exception

    @property
    def reason(self) -> str:
        return str(self.error)


@dataclass
class Info(Event):
    text: str
