# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Generator
from typing import TYPE_CHECKING

from xmppterm import builder
from xmppterm.elements import Iq
from xmppterm.exceptions import NodeProcessed
from xmppterm.jid import JID
from xmppterm.modules.base import BaseModule
from xmppterm.modules.util import process_response
from xmppterm.namespaces import Namespace
from xmppterm.structs import IqProperties
from xmppterm.structs import StanzaHandler
from xmppterm.task import iq_request_task

if TYPE_CHECKING:
    from xmppterm.client import Client


class Ping(BaseModule):
    def __init__(self, client: Client) -> None:
        BaseModule.__init__(self, client)

        self.handlers = [
            StanzaHandler(
                name="iq",
                callback=self._process_ping,
                typ="get",
                ns=Namespace.PING,
                priority=15,
            ),
        ]

    def _process_ping(self, _client: Client, stanza: Iq, _properties: IqProperties) -> None:
        self._log.info("Send pong to %s", stanza.get_from())
        self._client.send_stanza(stanza.make_result())
        raise NodeProcessed

    @iq_request_task
    def ping(self, jid: JID) -> Generator[Any, Any, Any]:
        _task = yield

        response = yield _make_ping_request(jid)
        yield process_response(response)


def _make_ping_request(jid: JID) -> Iq:
    iq = builder.Iq(to=jid, type="get")
    iq.add_tag("ping", namespace=Namespace.PING)
    return iq
