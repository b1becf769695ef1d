# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Iterator
from typing import cast

import copy

from lxml import etree

from xmppterm.const import IqType
from xmppterm.const import MessageType
from xmppterm.const import PresenceType
from xmppterm.jid import JID
from xmppterm.namespaces import Namespace


NSMap = dict[str | None, str]


def create_nsmap_and_tag(tag: str, namespace: str | None) -> tuple[str, NSMap | None]:
    nsmap: NSMap | None = None
    if namespace is not None:
        nsmap = {None: namespace}
        tag = "{%s}%s" % (namespace, tag)
    return tag, nsmap


class Base(etree.ElementBase):
    def find_tag(self, tag: str, namespace: str | None = None) -> Base | None:
        if namespace is None:
            namespace = etree.QName(self).namespace
        return self.find("{%s}%s" % (namespace, tag))

    def find_tag_text(self, tag: str, namespace: str | None = None) -> str | None:
        element = self.find_tag(tag, namespace=namespace)
        if element is None:
            return None
        return element.text

    def has_tag(self, tag: str, namespace: str | None = None) -> bool:
        return self.find_tag(tag, namespace=namespace) is not None

    def add_tag(self, tag: str, namespace: str | None = None, **attrib: str) -> Base:
        if namespace is None:
            namespace = etree.QName(self).namespace

        tag, nsmap = create_nsmap_and_tag(tag, namespace)
        return etree.SubElement(self, tag, nsmap=nsmap, attrib=attrib)

    def add_tag_text(self, tag: str, text: str, namespace: str | None = None) -> Base:
        element = self.find_tag(tag, namespace=namespace)
        if element is None:
            element = self.add_tag(tag, namespace=namespace)
        element.text = text
        return element

    def find_tag_attr(self, tag: str, attr: str, namespace: str | None = None) -> str | None:
        element = self.find_tag(tag, namespace=namespace)
        if element is None:
            return None
        return element.get(attr)

    def find_tags(self, tag: str, namespace: str | None = None) -> list[Base]:
        return list(self.iter_tags(tag, namespace=namespace))

    def iter_tags(self, tag: str, namespace: str | None = None) -> Iterator[Base]:
        if namespace is None:
            namespace = etree.QName(self).namespace
        return self.iterchildren("{%s}%s" % (namespace, tag))

    def get_children(self) -> list[Base]:
        return list(self)

    @property
    def lang(self) -> str | None:
        return self.get("{%s}lang" % Namespace.XML)

    @property
    def localname(self) -> str:
        return etree.QName(self).localname

    @property
    def namespace(self) -> str | None:
        return etree.QName(self).namespace

    @property
    def default_namespace(self) -> str | None:
        return self.nsmap.get(None)

    def tostring(self) -> str:
        return etree.tostring(self, encoding=str)

    def __str__(self) -> str:
        return self.tostring()

    def __repr__(self) -> str:
        repr_str = super().__repr__()
        return repr_str.replace("<Element", f"<{self.__class__.__name__}")


class Stanza(Base):
    def _jid_attr_converter(self, attr: str) -> JID | None:
        jid = self.get(attr)
        if not jid:
            return None
        return JID.from_string(jid)

    def get_from(self) -> JID | None:
        return self._jid_attr_converter("from")

    def set_from(self, jid: str | JID) -> None:
        self.set("from", str(jid))

    def get_to(self) -> JID | None:
        return self._jid_attr_converter("to")

    def set_to(self, jid: str | JID) -> None:
        self.set("to", str(jid))

    def get_id(self) -> str | None:
        return self.get("id")

    def is_error(self) -> bool:
        return self.get("type") == "error"

    def make_error(
        self,
        type: str,
        condition: str,
        namespace: str = Namespace.STANZAS,
        text: str | None = None,
    ) -> Stanza:

        stanza = copy.deepcopy(self)
        stanza.set("type", "error")
        from_ = stanza.get("from")
        stanza.attrib.pop("from", None)
        stanza.attrib.pop("to", None)
        if from_ is not None:
            stanza.set("to", from_)
        error = stanza.add_tag("error", type=type)
        error.add_tag(condition, namespace=namespace)
        if text is not None:
            error.add_tag_text("text", text, namespace=namespace)
        return stanza

    def make_result(self) -> Stanza:
        stanza = cast(Stanza, self.makeelement(self.tag, nsmap={None: Namespace.CLIENT}))
        stanza.set("type", "result")
        if self.get("id") is not None:
            stanza.set("id", self.get("id"))
        if self.get("from") is not None:
            stanza.set("to", self.get("from"))
        return stanza


class Iq(Stanza):
    @property
    def type(self) -> IqType:
        return IqType(self.get("type"))

    def get_query(self) -> Base | None:
        for child in self:
            if child.localname != "error":
                return child
        return None


class Message(Stanza):
    @property
    def type(self) -> MessageType:
        return MessageType(self.get("type", "normal"))

    def get_body(self) -> str | None:
        return self.find_tag_text("body")

    def get_subject(self) -> str | None:
        return self.find_tag_text("subject")

    def get_thread(self) -> str | None:
        return self.find_tag_text("thread")


class Presence(Stanza):
    @property
    def type(self) -> PresenceType:
        return PresenceType(self.get("type"))


class Nonza(Base):
    pass


class Features(Nonza):
    def has_starttls(self) -> tuple[bool, bool]:
        tls = self.find_tag("starttls", namespace=Namespace.TLS)
        if tls is None:
            return False, False

        return True, tls.has_tag("required", namespace=Namespace.TLS)

    def has_sasl(self) -> bool:
        return self.has_tag("mechanisms", namespace=Namespace.SASL)

    def get_mechs(self) -> set[str]:
        mechanisms = self.find_tag("mechanisms", namespace=Namespace.SASL)
        if mechanisms is None:
            return set()

        return {
            mech.text
            for mech in mechanisms.iter_tags("mechanism", namespace=Namespace.SASL)
            if mech.text
        }

    def has_bind(self) -> bool:
        return self.has_tag("bind", namespace=Namespace.BIND)

    def session_required(self) -> bool:
        session = self.find_tag("session", namespace=Namespace.SESSION)
        if session is None:
            return False
        return not session.has_tag("optional", namespace=Namespace.SESSION)

    def has_roster_version(self) -> bool:
        return self.has_tag("ver", namespace=Namespace.ROSTER_VER)


class StreamErrorElement(Nonza):
    def get_condition(self) -> str:
        for child in self:
            if child.namespace == Namespace.XMPP_STREAMS and child.localname != "text":
                return child.localname
        return "undefined-condition"

    def get_text(self) -> str:
        text = self.find_tag_text("text", namespace=Namespace.XMPP_STREAMS)
        return text or ""


class StreamStart(Base):
    TAG = "stream"
    NAMESPACE = Namespace.STREAMS

    def tostring(self) -> str:
        data = etree.tostring(self, encoding=str)
        return '<?xml version="1.0"?>' + data[:-2] + ">"


class StreamEnd(Base):
    TAG = "stream"
    NAMESPACE = Namespace.STREAMS

    def tostring(self) -> str:
        return "</stream:stream>"
