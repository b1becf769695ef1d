# Copyright (C) 2019 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Generator
from typing import TYPE_CHECKING

import time

from xmppterm import builder
from xmppterm.elements import Iq
from xmppterm.errors import MalformedStanzaError
from xmppterm.errors import StanzaError
from xmppterm.exceptions import NodeProcessed
from xmppterm.jid import JID
from xmppterm.modules.base import BaseModule
from xmppterm.namespaces import Namespace
from xmppterm.structs import DiscoIdentity
from xmppterm.structs import DiscoInfo
from xmppterm.structs import IqProperties
from xmppterm.structs import StanzaHandler
from xmppterm.task import iq_request_task

if TYPE_CHECKING:
    from xmppterm.client import Client


CLIENT_FEATURES = [
    Namespace.DISCO_INFO,
    Namespace.MUC,
    Namespace.PING,
]


class Discovery(BaseModule):
    def __init__(self, client: Client) -> None:
        BaseModule.__init__(self, client)

        self.handlers = [
            StanzaHandler(
                name="iq",
                callback=self._process_disco_info,
                typ="get",
                ns=Namespace.DISCO_INFO,
                priority=90,
            ),
        ]

        self._cache: dict[JID, DiscoInfo] = {}

    def _process_disco_info(
        self, client: Client, stanza: Iq, _properties: IqProperties
    ) -> None:
        query = stanza.get_query()
        assert query is not None
        if query.get("node") is not None:
            client.send_stanza(stanza.make_error("cancel", "item-not-found"))
            raise NodeProcessed

        iq = stanza.make_result()
        result = iq.add_tag("query", namespace=Namespace.DISCO_INFO)
        result.add_tag("identity", category="client", type="console", name="xmppterm")
        for feature in CLIENT_FEATURES:
            result.add_tag("feature", var=feature)
        client.send_stanza(iq)
        raise NodeProcessed

    def get_cached_info(self, jid: JID) -> DiscoInfo | None:
        return self._cache.get(jid)

    def clear_cache(self) -> None:
        self._cache.clear()

    @iq_request_task
    def disco_info(self, jid: JID, node: str | None = None) -> Generator[Any, Any, Any]:
        _task = yield

        response = yield get_disco_request(Namespace.DISCO_INFO, jid, node)
        if response.is_error():
            raise StanzaError(response)

        info = parse_disco_info(response)
        if node is None:
            self._cache[jid] = info
        yield info


def parse_disco_info(stanza: Iq, timestamp: float | None = None) -> DiscoInfo:
    identities: list[DiscoIdentity] = []
    features: list[str] = []

    if timestamp is None:
        timestamp = time.time()

    query = stanza.find_tag("query", namespace=Namespace.DISCO_INFO)
    if query is None:
        raise MalformedStanzaError("query node missing", stanza)

    for node in query.iter_tags("identity"):
        category = node.get("category")
        type_ = node.get("type")
        if category is None or type_ is None:
            raise MalformedStanzaError("invalid attributes", stanza)

        identities.append(
            DiscoIdentity(
                category=category,
                type=type_,
                name=node.get("name"),
                lang=node.lang,
            )
        )

    for node in query.iter_tags("feature"):
        var = node.get("var")
        if var is None:
            raise MalformedStanzaError("invalid attributes", stanza)
        features.append(var)

    return DiscoInfo(
        jid=stanza.get_from(),
        identities=identities,
        features=features,
        timestamp=timestamp,
    )


def get_disco_request(namespace: str, jid: JID, node: str | None = None) -> Iq:
    iq = builder.Iq(to=jid, type="get", queryns=namespace)
    if node:
        query = iq.get_query()
        assert query is not None
        query.set("node", node)
    return iq
