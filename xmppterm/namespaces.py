# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class _Namespaces:
    BIND: str = "urn:ietf:params:xml:ns:xmpp-bind"
    BOOKMARKS: str = "storage:bookmarks"
    CLIENT: str = "jabber:client"
    DATA: str = "jabber:x:data"
    DELAY2: str = "urn:xmpp:delay"
    DISCO_INFO: str = "http://jabber.org/protocol/disco#info"
    DISCO_ITEMS: str = "http://jabber.org/protocol/disco#items"
    FORWARD: str = "urn:xmpp:forward:0"
    MAM_2: str = "urn:xmpp:mam:2"
    MUC: str = "http://jabber.org/protocol/muc"
    MUC_OWNER: str = "http://jabber.org/protocol/muc#owner"
    MUC_USER: str = "http://jabber.org/protocol/muc#user"
    NICK: str = "http://jabber.org/protocol/nick"
    PING: str = "urn:xmpp:ping"
    PRIVATE: str = "jabber:iq:private"
    ROSTER: str = "jabber:iq:roster"
    ROSTER_VER: str = "urn:xmpp:features:rosterver"
    RSM: str = "http://jabber.org/protocol/rsm"
    SASL: str = "urn:ietf:params:xml:ns:xmpp-sasl"
    SESSION: str = "urn:ietf:params:xml:ns:xmpp-session"
    SID: str = "urn:xmpp:sid:0"
    STANZAS: str = "urn:ietf:params:xml:ns:xmpp-stanzas"
    STREAMS: str = "http://etherx.jabber.org/streams"
    TLS: str = "urn:ietf:params:xml:ns:xmpp-tls"
    XML: str = "http://www.w3.org/XML/1998/namespace"
    XMPP_STREAMS: str = "urn:ietf:params:xml:ns:xmpp-streams"


Namespace = _Namespaces()
