# Copyright (C) 2018-2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import NamedTuple

import time
from dataclasses import dataclass
from dataclasses import field

from xmppterm.const import Affiliation
from xmppterm.const import IqType
from xmppterm.const import MessageType
from xmppterm.const import PresenceShow
from xmppterm.const import PresenceType
from xmppterm.const import REMOVAL_REASONS
from xmppterm.const import Role
from xmppterm.const import StatusCode
from xmppterm.const import Subscription
from xmppterm.elements import Base
from xmppterm.exceptions import StanzaMalformed
from xmppterm.jid import JID
from xmppterm.namespaces import Namespace


class StanzaHandler(NamedTuple):
    name: str
    callback: Any
    typ: str = ""
    ns: str = ""
    xmlns: str | None = None
    priority: int = 50


class CommonResult(NamedTuple):
    jid: JID | None = None


class StanzaIDData(NamedTuple):
    id: str
    by: JID


class MucUserData(NamedTuple):
    jid: JID | None
    affiliation: Affiliation | None
    nick: str | None
    role: Role | None
    actor: str | None
    reason: str | None


class MucDestroyed(NamedTuple):
    alternate: JID | None
    reason: str | None


class BookmarkData(NamedTuple):
    jid: JID
    name: str | None = None
    nick: str | None = None
    autojoin: bool = False
    password: str | None = None

    def asdict(self) -> dict[str, Any]:
        return {
            "jid": str(self.jid),
            "name": self.name,
            "nick": self.nick,
            "autojoin": self.autojoin,
            "password": self.password,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BookmarkData:
        return cls(
            jid=JID.from_string(data["jid"]),
            name=data.get("name"),
            nick=data.get("nick"),
            autojoin=bool(data.get("autojoin", False)),
            password=data.get("password"),
        )


class RSMData(NamedTuple):
    after: str | None
    before: str | None
    last: str | None
    first: str | None
    first_index: int | None
    count: int | None
    max: int | None
    index: int | None


class MAMQueryData(NamedTuple):
    jid: JID
    rsm: RSMData
    complete: bool


class MAMData(NamedTuple):
    id: str
    query_id: str
    archive: JID
    namespace: str
    timestamp: float


class RosterData(NamedTuple):
    items: list[RosterItem] | None
    version: str | None


class RosterPush(NamedTuple):
    item: RosterItem
    version: str | None


@dataclass
class RosterItem:
    jid: JID
    name: str | None = None
    ask: str | None = None
    subscription: str | None = None
    groups: set[str] = field(default_factory=set)

    @classmethod
    def from_node(cls, node: Base) -> RosterItem:
        jid = node.get("jid")
        if jid is None:
            raise StanzaMalformed("jid attribute missing")

        jid = JID.from_string(jid)
        if jid.is_full:
            raise StanzaMalformed("full jid in roster not allowed")

        groups = {group.text for group in node.iter_tags("group") if group.text}

        return cls(
            jid=jid,
            name=node.get("name"),
            ask=node.get("ask"),
            subscription=node.get("subscription") or "none",
            groups=groups,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RosterItem:
        return cls(
            jid=JID.from_string(data["jid"]),
            name=data.get("name"),
            ask=data.get("ask"),
            subscription=data.get("subscription") or "none",
            groups=set(data.get("groups") or []),
        )

    @property
    def is_removal(self) -> bool:
        return self.subscription == "remove"

    def get_subscription(self) -> Subscription:
        return Subscription.from_item(self.subscription, self.ask)

    def asdict(self) -> dict[str, Any]:
        return {
            "jid": str(self.jid),
            "name": self.name,
            "ask": self.ask,
            "subscription": self.subscription,
            "groups": sorted(self.groups),
        }


class DiscoIdentity(NamedTuple):

    category: str
    type: str
    name: str | None = None
    lang: str | None = None

    def __str__(self) -> str:
        return "%s/%s/%s/%s" % (
            self.category,
            self.type,
            self.lang or "",
            self.name or "",
        )


class DiscoInfo(NamedTuple):
    jid: JID | None
    identities: list[DiscoIdentity]
    features: list[str]
    timestamp: float | None = None

    def supports(self, feature: str) -> bool:
        return feature in self.features

    @property
    def supports_mam(self) -> bool:
        return self.supports(Namespace.MAM_2)

    @property
    def is_muc(self) -> bool:
        for identity in self.identities:
            if identity.category == "conference" and identity.type == "text":
                return True
        return False


@dataclass
class IqProperties:
    own_jid: JID | None
    type: IqType | None = None
    jid: JID | None = None
    id: str | None = None
    query: Base | None = None
    payload: Base | None = None
    error: Any = None
    roster: RosterPush | None = None

    @property
    def is_roster(self) -> bool:
        return self.roster is not None


@dataclass
class MessageProperties:
    own_jid: JID | None
    type: MessageType = MessageType.NORMAL
    id: str | None = None
    stanza_ids: list[StanzaIDData] = field(default_factory=list)
    origin_id: str | None = None
    from_: JID | None = None
    to: JID | None = None
    jid: JID | None = None
    remote_jid: JID | None = None
    subject: str | None = None
    body: str | None = None
    thread: str | None = None
    user_timestamp: float | None = None
    timestamp: float = field(default_factory=time.time)
    has_server_delay: bool = False
    error: Any = None
    from_muc: bool = False
    muc_jid: JID | None = None
    muc_nickname: str | None = None
    muc_status_codes: set[StatusCode] | None = None
    muc_private_message: bool = False
    self_message: bool = False
    mam: MAMData | None = None

    @property
    def is_groupchat(self) -> bool:
        return self.type == MessageType.GROUPCHAT

    @property
    def is_error(self) -> bool:
        return self.type == MessageType.ERROR

    @property
    def is_mam_message(self) -> bool:
        return self.mam is not None

    @property
    def is_muc_subject(self) -> bool:
        return self.is_groupchat and self.subject is not None and self.body is None

    def get_stanza_id(self, by: JID) -> str | None:
        for stanza_id in self.stanza_ids:
            if stanza_id.by == by:
                return stanza_id.id
        return None


@dataclass
class PresenceProperties:
    own_jid: JID | None
    type: PresenceType | None = None
    priority: int = 0
    show: PresenceShow | None = None
    jid: JID | None = None
    resource: str | None = None
    id: str | None = None
    nickname: str | None = None
    self_presence: bool = False
    self_bare: bool = False
    from_muc: bool = False
    status: str = ""
    timestamp: float = field(default_factory=time.time)
    user_timestamp: float | None = None
    error: Any = None
    muc_jid: JID | None = None
    muc_status_codes: set[StatusCode] | None = None
    muc_user: MucUserData | None = None
    muc_nickname: str | None = None
    muc_destroyed: MucDestroyed | None = None

    @property
    def is_muc_destroyed(self) -> bool:
        return self.muc_destroyed is not None

    @property
    def is_muc_self_presence(self) -> bool:
        return (
            self.from_muc
            and self.muc_status_codes is not None
            and StatusCode.SELF in self.muc_status_codes
        )

    @property
    def is_nickname_changed(self) -> bool:
        return (
            self.from_muc
            and self.type is not None
            and self.type.is_unavailable
            and self.muc_status_codes is not None
            and StatusCode.NICKNAME_CHANGE in self.muc_status_codes
            and self.muc_user is not None
            and self.muc_user.nick is not None
        )

    @property
    def removal_reason(self) -> str | None:
        if not self.from_muc or self.muc_status_codes is None:
            return None

        for code, reason in REMOVAL_REASONS.items():
            if code in self.muc_status_codes:
                return reason
        return None
