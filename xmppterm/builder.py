# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import cast

from lxml import etree

from xmppterm.const import IqType
from xmppterm.const import MessageType
from xmppterm.const import PresenceType
from xmppterm.elements import Base
from xmppterm.elements import create_nsmap_and_tag
from xmppterm.elements import Iq as _Iq
from xmppterm.elements import Message as _Message
from xmppterm.elements import Presence as _Presence
from xmppterm.elements import StreamEnd as StreamEnd
from xmppterm.elements import StreamStart as _StreamStart
from xmppterm.jid import JID
from xmppterm.lookups import ElementLookup
from xmppterm.namespaces import Namespace


_element_parser = etree.XMLParser(resolve_entities=False, no_network=True)
_element_parser.set_element_class_lookup(ElementLookup)


def E(tag: str, text: str | None = None, namespace: str | None = None, **attrib: str) -> Base:

    tag, nsmap = create_nsmap_and_tag(tag, namespace)

    element = cast(Base, _element_parser.makeelement(tag, nsmap=nsmap, attrib=attrib))
    if text is not None:
        element.text = text
    return element


def Message(
    to: str | JID, type: str | None = None, id: str | None = None, body: str | None = None
) -> _Message:

    message = cast(_Message, E("message", namespace=Namespace.CLIENT))

    if isinstance(to, str):
        to = JID.from_string(to)
    message.set_to(to)

    if type is not None:
        MessageType(type)
        message.set("type", type)

    if id is not None:
        message.set("id", id)

    if body is not None:
        message.add_tag_text("body", body)

    return message


def Iq(
    to: str | JID | None = None,
    type: str = "get",
    id: str | None = None,
    queryns: str | None = None,
) -> _Iq:

    iq = cast(_Iq, E("iq", namespace=Namespace.CLIENT))

    IqType(type)
    iq.set("type", type)

    if to is not None:
        if isinstance(to, str):
            to = JID.from_string(to)
        iq.set_to(to)

    if id is not None:
        iq.set("id", id)

    if queryns is not None:
        iq.add_tag("query", namespace=queryns)

    return iq


def Presence(
    to: str | JID | None = None,
    type: str | None = None,
    id: str | None = None,
    priority: int | None = None,
    show: str | None = None,
    status: str | None = None,
    nickname: str | None = None,
    muc_join: bool = False,
    muc_history: int | None = None,
    muc_password: str | None = None,
) -> _Presence:

    presence = cast(_Presence, E("presence", namespace=Namespace.CLIENT))

    if type is not None:
        PresenceType(type)
        presence.set("type", type)

    if to is not None:
        if isinstance(to, str):
            to = JID.from_string(to)
        presence.set_to(to)

    if id is not None:
        presence.set("id", id)

    if priority is not None:
        if priority not in range(-128, 128):
            raise ValueError("invalid priority: %s" % priority)
        presence.add_tag_text("priority", str(priority))

    if show is not None:
        if show not in ("chat", "away", "xa", "dnd"):
            raise ValueError("invalid show value: %s" % show)
        presence.add_tag_text("show", show)

    if status is not None:
        presence.add_tag_text("status", status)

    if nickname is not None:
        presence.add_tag_text("nick", nickname, namespace=Namespace.NICK)

    if muc_join or muc_history is not None or muc_password is not None:
        muc_x = presence.add_tag("x", namespace=Namespace.MUC)
        if muc_history is not None:
            muc_x.add_tag("history", maxstanzas=str(muc_history))

        if muc_password is not None:
            muc_x.add_tag_text("password", muc_password)

    return presence


def DataForm(type: str = "submit") -> Base:
    return E("x", namespace=Namespace.DATA, type=type)


def StreamStart(domain: str, lang: str = "en") -> Base:
    return _StreamStart(
        attrib={"version": "1.0", "to": domain, f"{{{Namespace.XML}}}lang": lang},
        nsmap={"stream": Namespace.STREAMS, None: Namespace.CLIENT},
    )


def parse(data: str) -> Base:
    return cast(Base, etree.fromstring(data, _element_parser))
