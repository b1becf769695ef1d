# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any

from lxml import etree

from xmppterm.elements import Base
from xmppterm.elements import Features
from xmppterm.elements import Iq
from xmppterm.elements import Message
from xmppterm.elements import Presence
from xmppterm.elements import StreamErrorElement
from xmppterm.elements import StreamStart
from xmppterm.namespaces import Namespace


def register_class_lookup(tag: str, namespace: str, element_class: Any) -> None:
    _NamespaceLookup.get_namespace(namespace)[tag] = element_class


# Fallback order is important
_BaseLookup = etree.ElementDefaultClassLookup(element=Base)
_NamespaceLookup = etree.ElementNamespaceClassLookup(fallback=_BaseLookup)

ElementLookup = _NamespaceLookup


register_class_lookup("iq", Namespace.CLIENT, Iq)
register_class_lookup("message", Namespace.CLIENT, Message)
register_class_lookup("presence", Namespace.CLIENT, Presence)
register_class_lookup("stream", Namespace.STREAMS, StreamStart)
register_class_lookup("features", Namespace.STREAMS, Features)
register_class_lookup("error", Namespace.STREAMS, StreamErrorElement)
