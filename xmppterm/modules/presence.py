# Copyright (C) 2018 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import TYPE_CHECKING

from xmppterm import builder
from xmppterm.const import PresenceShow
from xmppterm.const import PresenceType
from xmppterm.elements import Presence
from xmppterm.errors import StanzaError
from xmppterm.exceptions import NodeProcessed
from xmppterm.jid import JID
from xmppterm.modules.base import BaseModule
from xmppterm.modules.util import log_calls
from xmppterm.structs import PresenceProperties
from xmppterm.structs import StanzaHandler

if TYPE_CHECKING:
    from xmppterm.client import Client


class BasePresence(BaseModule):
    def __init__(self, client: Client) -> None:
        BaseModule.__init__(self, client)

        self.handlers = [
            StanzaHandler(
                name="presence", callback=self._process_presence_base, priority=10
            ),
        ]

    def _process_presence_base(
        self, _client: Client, stanza: Presence, properties: PresenceProperties
    ) -> None:
        properties.type = self._parse_type(stanza)
        properties.priority = self._parse_priority(stanza)
        properties.show = self._parse_show(stanza)
        properties.jid = stanza.get_from()
        properties.id = stanza.get_id()
        properties.status = stanza.find_tag_text("status") or ""

        if properties.jid is not None:
            properties.resource = properties.jid.resource

        if properties.type.is_error:
            properties.error = StanzaError(stanza)

        own_jid = self._client.get_bound_jid()
        properties.self_presence = own_jid == properties.jid
        if properties.jid is not None and own_jid is not None:
            properties.self_bare = properties.jid.bare_match(own_jid)

    def _parse_priority(self, stanza: Presence) -> int:
        priority = stanza.find_tag_text("priority")
        if priority is None:
            return 0

        try:
            priority = int(priority)
        except ValueError:
            self._log.warning("Invalid priority value: %s", priority)
            self._log.warning(stanza)
            return 0

        if priority not in range(-128, 128):
            self._log.warning("Invalid priority value: %s", priority)
            self._log.warning(stanza)
            return 0

        return priority

    def _parse_type(self, stanza: Presence) -> PresenceType:
        try:
            return stanza.type
        except ValueError:
            self._log.warning("Presence with invalid type received")
            self._log.warning(stanza)
            self._client.send_stanza(stanza.make_error("modify", "bad-request"))
            raise NodeProcessed

    def _parse_show(self, stanza: Presence) -> PresenceShow:
        show = stanza.find_tag_text("show")
        if show is None:
            return PresenceShow.ONLINE
        try:
            return PresenceShow(show)
        except ValueError:
            self._log.warning("Presence with invalid show")
            self._log.warning(stanza)
            return PresenceShow.ONLINE

    @log_calls
    def unsubscribe(self, jid: JID) -> None:
        self.send(jid=jid, typ="unsubscribe")

    @log_calls
    def unsubscribed(self, jid: JID) -> None:
        self.send(jid=jid, typ="unsubscribed")

    @log_calls
    def subscribed(self, jid: JID) -> None:
        self.send(jid=jid, typ="subscribed")

    @log_calls
    def subscribe(
        self, jid: JID, status: str | None = None, nick: str | None = None
    ) -> None:
        self.send(jid=jid, typ="subscribe", status=status, nick=nick)

    def send(
        self,
        jid: JID | None = None,
        typ: str | None = None,
        priority: int | None = None,
        show: str | None = None,
        status: str | None = None,
        nick: str | None = None,
        muc: bool = False,
        muc_history: int | None = None,
        muc_password: str | None = None,
    ) -> None:

        presence = builder.Presence(
            to=jid,
            type=typ,
            priority=priority,
            show=show,
            status=status,
            nickname=nick,
            muc_join=muc,
            muc_history=muc_history,
            muc_password=muc_password,
        )

        self._client.send_stanza(presence)
