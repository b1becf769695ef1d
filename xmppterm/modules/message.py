# Copyright (C) 2018 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import TYPE_CHECKING

from xmppterm import builder
from xmppterm.const import MessageType
from xmppterm.elements import Message
from xmppterm.errors import StanzaError
from xmppterm.exceptions import InvalidJid
from xmppterm.exceptions import NodeProcessed
from xmppterm.jid import JID
from xmppterm.modules.base import BaseModule
from xmppterm.namespaces import Namespace
from xmppterm.structs import MessageProperties
from xmppterm.structs import StanzaHandler
from xmppterm.structs import StanzaIDData
from xmppterm.util import generate_id

if TYPE_CHECKING:
    from xmppterm.client import Client


class BaseMessage(BaseModule):
    def __init__(self, client: Client) -> None:
        BaseModule.__init__(self, client)

        self.handlers = [
            StanzaHandler(
                name="message", callback=self._process_message_base, priority=5
            ),
            StanzaHandler(
                name="message", callback=self._process_message_after_base, priority=10
            ),
        ]

    def _process_message_base(
        self, _client: Client, stanza: Message, properties: MessageProperties
    ) -> None:
        properties.type = self._parse_type(stanza)

        if properties.is_mam_message and not properties.type.is_groupchat:
            own_jid = self._client.get_bound_jid()
            if own_jid.bare_match(stanza.get_from()):
                properties.jid = stanza.get_to()
            else:
                properties.jid = stanza.get_from()

        else:
            properties.jid = stanza.get_from()

        self._parse_if_private_message(stanza, properties)

        properties.remote_jid = self._determine_remote_jid(properties)
        properties.from_ = stanza.get_from()
        properties.to = stanza.get_to()
        properties.id = stanza.get_id()
        properties.self_message = self._parse_self_message(stanza, properties)

        properties.origin_id = stanza.find_tag_attr("origin-id", "id", namespace=Namespace.SID)
        properties.stanza_ids = self._parse_stanza_ids(stanza)

        if properties.type.is_error:
            properties.error = StanzaError(stanza)

    @staticmethod
    def _determine_remote_jid(properties: MessageProperties) -> JID | None:
        if properties.jid is None:
            return None
        if properties.muc_private_message:
            return properties.jid
        return properties.jid.new_as_bare()

    @staticmethod
    def _parse_if_private_message(stanza: Message, properties: MessageProperties) -> None:
        muc_user = stanza.find_tag("x", namespace=Namespace.MUC_USER)
        if muc_user is None:
            return

        if properties.jid is None or not properties.jid.is_full:
            return

        if properties.type.is_chat or (
            properties.type.is_error and not muc_user.get_children()
        ):
            properties.muc_private_message = True

    @staticmethod
    def _process_message_after_base(
        _client: Client, stanza: Message, properties: MessageProperties
    ) -> None:
        properties.body = stanza.get_body()
        properties.thread = stanza.get_thread()
        properties.subject = stanza.get_subject()

    def _parse_type(self, stanza: Message) -> MessageType:
        try:
            return stanza.type
        except ValueError:
            self._log.warning("Message with invalid type: %s", stanza.get("type"))
            self._log.warning(stanza)
            raise NodeProcessed

    @staticmethod
    def _parse_self_message(stanza: Message, properties: MessageProperties) -> bool:
        if properties.type.is_groupchat:
            return False
        from_ = stanza.get_from()
        to = stanza.get_to()
        if from_ is None or to is None:
            return False
        return from_.bare_match(to)

    def _parse_stanza_ids(self, stanza: Message) -> list[StanzaIDData]:
        stanza_ids: list[StanzaIDData] = []
        for stanza_id in stanza.iter_tags("stanza-id", namespace=Namespace.SID):
            id_ = stanza_id.get("id")
            by = stanza_id.get("by")
            if not id_ or not by:
                self._log.warning("Missing attributes on stanza-id")
                self._log.warning(stanza)
                continue

            try:
                by_jid = JID.from_string(by)
            except InvalidJid:
                self._log.warning("Invalid by attribute on stanza-id: %s", by)
                continue

            stanza_ids.append(StanzaIDData(id=id_, by=by_jid))

        return stanza_ids

    def send_text(self, jid: JID, body: str, typ: MessageType = MessageType.CHAT) -> Message:
        """
        Sends a text message with a fresh id and origin-id, returns the
        sent stanza so the caller can record it
        """
        message_id = generate_id()
        message = builder.Message(jid, type=typ.value, id=message_id, body=body)
        message.add_tag("origin-id", namespace=Namespace.SID, id=message_id)
        self._client.send_stanza(message)
        return message
