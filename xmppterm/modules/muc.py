# Copyright (C) 2018 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Generator
from typing import TYPE_CHECKING

from xmppterm import builder
from xmppterm.const import Affiliation
from xmppterm.const import Role
from xmppterm.const import StatusCode
from xmppterm.elements import Base
from xmppterm.elements import Iq
from xmppterm.elements import Message
from xmppterm.elements import Presence
from xmppterm.errors import StanzaError
from xmppterm.exceptions import InvalidJid
from xmppterm.exceptions import NodeProcessed
from xmppterm.exceptions import StanzaMalformed
from xmppterm.jid import JID
from xmppterm.modules.base import BaseModule
from xmppterm.modules.util import log_calls
from xmppterm.namespaces import Namespace
from xmppterm.structs import MessageProperties
from xmppterm.structs import MucDestroyed
from xmppterm.structs import MucUserData
from xmppterm.structs import PresenceProperties
from xmppterm.structs import StanzaHandler
from xmppterm.task import iq_request_task

if TYPE_CHECKING:
    from xmppterm.client import Client


# https://xmpp.org/extensions/xep-0045.html#registrar-statuscodes
PRESENCE_STATUS_CODES = [
    StatusCode.NON_ANONYMOUS,
    StatusCode.SELF,
    StatusCode.CONFIG_ROOM_LOGGING,
    StatusCode.CREATED,
    StatusCode.NICKNAME_MODIFIED,
    StatusCode.REMOVED_BANNED,
    StatusCode.NICKNAME_CHANGE,
    StatusCode.REMOVED_KICKED,
    StatusCode.REMOVED_AFFILIATION_CHANGE,
    StatusCode.REMOVED_NONMEMBER_IN_MEMBERS_ONLY,
    StatusCode.REMOVED_SERVICE_SHUTDOWN,
    StatusCode.REMOVED_ERROR,
]


class MUC(BaseModule):
    def __init__(self, client: Client) -> None:
        BaseModule.__init__(self, client)

        self.handlers = [
            StanzaHandler(
                name="presence",
                callback=self._process_muc_presence,
                ns=Namespace.MUC,
                priority=11,
            ),
            StanzaHandler(
                name="presence",
                callback=self._process_muc_user_presence,
                ns=Namespace.MUC_USER,
                priority=11,
            ),
            StanzaHandler(
                name="message",
                callback=self._process_groupchat_message,
                typ="groupchat",
                priority=6,
            ),
        ]

    @staticmethod
    def _process_muc_presence(
        _client: Client, stanza: Presence, properties: PresenceProperties
    ) -> None:
        # Only error presences reflect the <x/> of the join request
        muc = stanza.find_tag("x", namespace=Namespace.MUC)
        if muc is None or properties.jid is None:
            return
        properties.from_muc = True
        properties.muc_jid = properties.jid.new_as_bare()
        properties.muc_nickname = properties.jid.resource

    def _process_muc_user_presence(
        self, _client: Client, stanza: Presence, properties: PresenceProperties
    ) -> None:
        muc_user = stanza.find_tag("x", namespace=Namespace.MUC_USER)
        if muc_user is None or properties.jid is None:
            return
        properties.from_muc = True
        properties.muc_jid = properties.jid.new_as_bare()

        destroy = muc_user.find_tag("destroy")
        if destroy is not None:
            alternate = destroy.get("jid")
            alternate_jid = None
            if alternate is not None:
                try:
                    alternate_jid = JID.from_string(alternate)
                except InvalidJid as error:
                    self._log.warning("Invalid alternate JID provided: %s", error)
                    self._log.warning(stanza)
            properties.muc_destroyed = MucDestroyed(
                alternate=alternate_jid,
                reason=destroy.find_tag_text("reason"),
            )
            return

        properties.muc_nickname = properties.jid.resource

        codes: set[StatusCode] = set()
        for status in muc_user.iter_tags("status"):
            try:
                code = StatusCode(status.get("code"))
            except ValueError:
                self._log.warning("Received invalid status code: %s", status.get("code"))
                self._log.warning(stanza)
                continue
            if code in PRESENCE_STATUS_CODES:
                codes.add(code)

        if codes:
            properties.muc_status_codes = codes

        try:
            properties.muc_user = parse_muc_user(muc_user)
        except StanzaMalformed as error:
            self._log.warning(error)
            self._log.warning(stanza)
            raise NodeProcessed

        if (
            properties.muc_user is not None
            and properties.muc_user.role is not None
            and properties.muc_user.role.is_none
            and properties.type is not None
            and not properties.type.is_unavailable
        ):
            self._log.warning("Malformed Stanza")
            self._log.warning(stanza)
            raise NodeProcessed

    def _process_groupchat_message(
        self, _client: Client, stanza: Message, properties: MessageProperties
    ) -> None:
        jid = stanza.get_from()
        if jid is None:
            return

        properties.from_muc = True
        properties.muc_jid = jid.new_as_bare()
        properties.muc_nickname = jid.resource

    @log_calls
    def join(
        self,
        room_jid: JID,
        nick: str,
        password: str | None = None,
        history: int | None = None,
    ) -> None:
        presence = builder.Presence(
            to=room_jid.new_with(resource=nick),
            muc_join=True,
            muc_history=history,
            muc_password=password,
        )
        self._client.send_stanza(presence)

    @log_calls
    def leave(self, room_jid: JID, nick: str, status: str | None = None) -> None:
        presence = builder.Presence(
            to=room_jid.new_with(resource=nick),
            type="unavailable",
            status=status,
        )
        self._client.send_stanza(presence)

    @log_calls
    def change_nick(self, room_jid: JID, nick: str) -> None:
        self._client.send_stanza(builder.Presence(to=room_jid.new_with(resource=nick)))

    @log_calls
    def set_subject(self, room_jid: JID, subject: str) -> None:
        message = builder.Message(room_jid, type="groupchat")
        message.add_tag_text("subject", subject)
        self._client.send_stanza(message)

    @iq_request_task
    def request_config(self, room_jid: JID) -> Generator[Any, Any, Any]:
        _task = yield

        response = yield make_config_request(room_jid)
        if response.is_error():
            raise StanzaError(response)

        query = response.find_tag("query", namespace=Namespace.MUC_OWNER)
        form = None
        if query is not None:
            form = query.find_tag("x", namespace=Namespace.DATA)
        yield form


def make_config_request(room_jid: JID) -> Iq:
    return builder.Iq(to=room_jid, type="get", queryns=Namespace.MUC_OWNER)


def parse_muc_user(muc_user: Base, is_presence: bool = True) -> MucUserData | None:
    item = muc_user.find_tag("item")
    if item is None:
        return None

    role = item.get("role")
    role_value = None
    if role is not None:
        try:
            role_value = Role(role)
        except ValueError:
            raise StanzaMalformed("invalid role %s" % role)

    elif is_presence:
        # role attr MUST be included in all presence broadcasts
        raise StanzaMalformed("role attr missing")

    affiliation = item.get("affiliation")
    affiliation_value = None
    if affiliation is not None:
        try:
            affiliation_value = Affiliation(affiliation)
        except ValueError:
            raise StanzaMalformed("invalid affiliation %s" % affiliation)

    elif is_presence:
        # affiliation attr MUST be included in all presence broadcasts
        raise StanzaMalformed("affiliation attr missing")

    jid = item.get("jid")
    real_jid = None
    if jid is not None:
        try:
            real_jid = JID.from_string(jid)
        except InvalidJid as error:
            raise StanzaMalformed("invalid jid %s, %s" % (jid, error))

    return MucUserData(
        affiliation=affiliation_value,
        jid=real_jid,
        nick=item.get("nick"),
        role=role_value,
        actor=item.find_tag_attr("actor", "nick"),
        reason=item.find_tag_text("reason"),
    )
