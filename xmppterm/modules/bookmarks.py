# Copyright (C) 2018 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Generator
from typing import TYPE_CHECKING

import logging

from xmppterm import builder
from xmppterm.elements import Base
from xmppterm.elements import Iq
from xmppterm.errors import MalformedStanzaError
from xmppterm.errors import StanzaError
from xmppterm.jid import JID
from xmppterm.jid import validate_resourcepart
from xmppterm.modules.base import BaseModule
from xmppterm.modules.util import process_response
from xmppterm.namespaces import Namespace
from xmppterm.structs import BookmarkData
from xmppterm.task import iq_request_task
from xmppterm.util import from_xs_boolean
from xmppterm.util import LogAdapter
from xmppterm.util import to_xs_boolean

if TYPE_CHECKING:
    from xmppterm.client import Client


class PrivateBookmarks(BaseModule):
    """
    Bookmarks kept in private XML storage (XEP-0048 on top of XEP-0049)
    """

    def __init__(self, client: Client) -> None:
        BaseModule.__init__(self, client)

    @iq_request_task
    def request_bookmarks(self) -> Generator[Any, Any, Any]:
        _task = yield

        response = yield get_private_request()
        if response.is_error():
            raise StanzaError(response)

        bookmarks = parse_private_bookmarks(response, self._log)
        for bookmark in bookmarks:
            self._log.info(bookmark)

        yield bookmarks

    @iq_request_task
    def store_bookmarks(self, bookmarks: list[BookmarkData]) -> Generator[Any, Any, Any]:
        _task = yield

        self._log.info("Store Bookmarks")

        iq = builder.Iq(type="set", queryns=Namespace.PRIVATE)
        query = iq.get_query()
        assert query is not None
        query.append(build_storage_node(bookmarks))
        response = yield iq
        yield process_response(response)


def parse_nickname(nick: str | None) -> str | None:
    if nick is None:
        return None

    try:
        return validate_resourcepart(nick)
    except Exception:
        return None


def parse_autojoin(autojoin: str | None) -> bool:
    if autojoin is None:
        return False

    try:
        return from_xs_boolean(autojoin)
    except ValueError:
        return False


def parse_private_bookmarks(
    response: Iq, log: logging.Logger | LogAdapter
) -> list[BookmarkData]:
    query = response.find_tag("query", namespace=Namespace.PRIVATE)
    if query is None:
        raise MalformedStanzaError("query node missing", response)

    storage_node = query.find_tag("storage", namespace=Namespace.BOOKMARKS)
    if storage_node is None:
        raise MalformedStanzaError("storage node missing", response)

    return parse_storage_node(storage_node, log)


def parse_storage_node(
    storage: Base, log: logging.Logger | LogAdapter
) -> list[BookmarkData]:
    bookmarks: list[BookmarkData] = []
    for conf in storage.iter_tags("conference"):
        try:
            jid = JID.from_string(conf.get("jid") or "")
        except Exception:
            log.warning("invalid jid: %s", conf)
            continue

        if jid.localpart is None or jid.resource is not None:
            log.warning("invalid jid: %s", conf)
            continue

        autojoin = parse_autojoin(conf.get("autojoin"))
        nick = parse_nickname(conf.find_tag_text("nick"))
        name = conf.get("name") or None
        password = conf.find_tag_text("password") or None

        bookmark = BookmarkData(
            jid=jid, name=name, autojoin=autojoin, password=password, nick=nick
        )
        bookmarks.append(bookmark)

    return bookmarks


def build_storage_node(bookmarks: list[BookmarkData]) -> Base:
    storage_node = builder.E("storage", namespace=Namespace.BOOKMARKS)
    for bookmark in bookmarks:
        conf_node = storage_node.add_tag("conference")
        conf_node.set("jid", str(bookmark.jid))
        conf_node.set("autojoin", to_xs_boolean(bookmark.autojoin))
        if bookmark.name:
            conf_node.set("name", bookmark.name)
        if bookmark.nick:
            conf_node.add_tag_text("nick", bookmark.nick)
        if bookmark.password:
            conf_node.add_tag_text("password", bookmark.password)
    return storage_node


def get_private_request() -> Iq:
    iq = builder.Iq(type="get", queryns=Namespace.PRIVATE)
    query = iq.get_query()
    assert query is not None
    query.add_tag("storage", namespace=Namespace.BOOKMARKS)
    return iq
