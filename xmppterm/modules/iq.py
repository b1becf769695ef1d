# Copyright (C) 2018 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import TYPE_CHECKING

from xmppterm.const import IqType
from xmppterm.elements import Iq
from xmppterm.errors import StanzaError
from xmppterm.exceptions import NodeProcessed
from xmppterm.modules.base import BaseModule
from xmppterm.structs import IqProperties
from xmppterm.structs import StanzaHandler

if TYPE_CHECKING:
    from xmppterm.client import Client


class BaseIq(BaseModule):
    def __init__(self, client: Client) -> None:
        BaseModule.__init__(self, client)

        self.handlers = [
            StanzaHandler(name="iq", callback=self._process_iq_base, priority=10),
        ]

    def _process_iq_base(
        self, _client: Client, stanza: Iq, properties: IqProperties
    ) -> None:
        try:
            properties.type = IqType(stanza.get("type"))
        except ValueError:
            self._log.warning("Iq with invalid type: %s", stanza.get("type"))
            self._log.warning(stanza)
            self._client.send_stanza(stanza.make_error("modify", "bad-request"))
            raise NodeProcessed

        properties.jid = stanza.get_from()
        properties.id = stanza.get_id()

        for child in stanza:
            if child.localname != "error":
                properties.payload = child
                break

        properties.query = stanza.get_query()

        if properties.type.is_error:
            properties.error = StanzaError(stanza)
