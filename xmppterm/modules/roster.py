# Copyright (C) 2021 Philipp Hörist <philipp AT hoerist.com>
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
from xmppterm.errors import MalformedStanzaError
from xmppterm.errors import StanzaError
from xmppterm.exceptions import NodeProcessed
from xmppterm.jid import JID
from xmppterm.modules.base import BaseModule
from xmppterm.modules.util import process_response
from xmppterm.namespaces import Namespace
from xmppterm.structs import IqProperties
from xmppterm.structs import RosterData
from xmppterm.structs import RosterItem
from xmppterm.structs import RosterPush
from xmppterm.structs import StanzaHandler
from xmppterm.task import iq_request_task

if TYPE_CHECKING:
    from xmppterm.client import Client


class Roster(BaseModule):
    def __init__(self, client: Client) -> None:
        BaseModule.__init__(self, client)

        self.handlers = [
            StanzaHandler(
                name="iq",
                callback=self._process_roster_push,
                typ="set",
                priority=15,
                ns=Namespace.ROSTER,
            ),
        ]

    @iq_request_task
    def request_roster(self, version: str | None = None) -> Generator[Any, Any, Any]:
        _task = yield

        ver_support = self._client.features.has_roster_version()
        if not ver_support:
            version = None

        if ver_support and version is None:
            version = ""

        self._log.info("Roster versioning supported: %s", ver_support)

        response = yield _make_request(version, ver_support)
        if response.is_error():
            raise StanzaError(response)

        query = response.find_tag("query", namespace=Namespace.ROSTER)
        if query is None:
            if not ver_support:
                raise MalformedStanzaError("query node missing", response)
            # The cached roster is still current
            yield RosterData(None, version)

        pushed_items, version = self._parse_push(response, ver_support)
        yield RosterData(pushed_items, version)

    def _process_roster_push(
        self, _client: Client, stanza: Iq, properties: IqProperties
    ) -> None:
        from_ = stanza.get_from()
        own_jid = self._client.get_bound_jid()
        if from_ is not None and from_ != own_jid.new_as_bare():
            self._log.warning("Malicious Roster Push from %s", from_)
            self._log.warning(stanza)
            raise NodeProcessed

        ver_support = self._client.features.has_roster_version()
        pushed_items, version = self._parse_push(stanza, ver_support)
        if len(pushed_items) != 1:
            self._log.warning("Roster push contains not exactly one item")
            self._log.warning(stanza)
            raise NodeProcessed

        item = pushed_items[0]
        properties.roster = RosterPush(item, version)

        self._log.info("Roster Push, version: %s", properties.roster.version)
        self._log.info(item)

        self._client.send_stanza(stanza.make_result())

    @iq_request_task
    def delete_item(self, jid: JID) -> Generator[Any, Any, Any]:
        _task = yield

        response = yield _make_delete(jid)
        yield process_response(response)

    @iq_request_task
    def set_item(
        self, jid: JID, name: str | None, groups: set[str] | None = None
    ) -> Generator[Any, Any, Any]:
        _task = yield

        response = yield _make_set(jid, name, groups)
        yield process_response(response)

    def _parse_push(
        self, stanza: Iq, ver_support: bool
    ) -> tuple[list[RosterItem], str | None]:
        query = stanza.find_tag("query", namespace=Namespace.ROSTER)
        if query is None:
            return [], None

        version = None
        if ver_support:
            version = query.get("ver")
            if version is None:
                # Some servers omit it on pushes
                self._log.warning("no version attribute found")

        pushed_items: list[RosterItem] = []
        for item in query.iter_tags("item"):
            try:
                roster_item = RosterItem.from_node(item)
            except Exception:
                self._log.warning("Invalid roster item")
                self._log.warning(stanza)
                continue

            pushed_items.append(roster_item)

        return pushed_items, version


def _make_delete(jid: JID) -> Iq:
    iq = builder.Iq(type="set", queryns=Namespace.ROSTER)
    query = iq.get_query()
    assert query is not None
    query.add_tag("item", jid=str(jid), subscription="remove")
    return iq


def _make_set(jid: JID, name: str | None, groups: set[str] | None = None) -> Iq:
    if groups is None:
        groups = set()

    infos = {"jid": str(jid)}
    if name:
        infos["name"] = name
    iq = builder.Iq(type="set", queryns=Namespace.ROSTER)
    query = iq.get_query()
    assert query is not None
    item = query.add_tag("item", **infos)
    for group in sorted(groups):
        item.add_tag("group").text = group
    return iq


def _make_request(version: str | None, roster_ver_support: bool) -> Iq:
    iq = builder.Iq(type="get", queryns=Namespace.ROSTER)
    if version is None:
        version = ""

    if roster_ver_support:
        query = iq.get_query()
        assert query is not None
        query.set("ver", version)
    return iq
