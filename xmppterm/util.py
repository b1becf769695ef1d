# Copyright (C) 2018 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Callable
from typing import Literal
from typing import TYPE_CHECKING

import base64
import logging
import uuid
from collections import defaultdict
from logging import LoggerAdapter

from xmppterm.exceptions import StanzaMalformed
from xmppterm.namespaces import Namespace
from xmppterm.structs import IqProperties
from xmppterm.structs import MessageProperties
from xmppterm.structs import PresenceProperties

if TYPE_CHECKING:
    from xmppterm.elements import Base
    from xmppterm.jid import JID


def b64decode(data: str | bytes) -> bytes:
    if not data:
        raise ValueError("No data to decode")

    if isinstance(data, str):
        data = data.encode()

    return base64.b64decode(data)


def b64encode(data: str | bytes) -> str:
    if not data:
        raise ValueError("No data to encode")

    if isinstance(data, str):
        data = data.encode()

    result = base64.b64encode(data)
    return result.decode()


def from_xs_boolean(value: str | None) -> bool:
    if value in ("1", "true", "True"):
        return True

    if value in ("0", "false", "False", "", None):
        return False

    raise ValueError("Cant convert %s to python boolean" % value)


def to_xs_boolean(value: bool | None) -> Literal["true", "false"]:
    if value is True:
        return "true"

    if value is False or value is None:
        return "false"

    raise ValueError("Cant convert %s to xs:boolean" % value)


def generate_id() -> str:
    return str(uuid.uuid4())


def validate_stream_header(stanza: Base, domain: str) -> str:
    if stanza.get("from") != domain:
        raise StanzaMalformed("Invalid from attr in stream header")

    if stanza.namespace != Namespace.STREAMS:
        raise StanzaMalformed("Invalid stream namespace in stream header")

    if stanza.default_namespace != Namespace.CLIENT:
        raise StanzaMalformed("Invalid namespace in stream header")

    if stanza.get("version") != "1.0":
        raise StanzaMalformed("Invalid stream version in stream header")

    stream_id = stanza.get("id")
    if stream_id is None:
        raise StanzaMalformed("No stream id found in stream header")
    return stream_id


def utf8_decode(data: bytes) -> tuple[str, bytes]:
    """
    Decodes utf8 byte string to unicode string
    Does handle invalid utf8 sequences by splitting
    the invalid sequence at the end

    returns (decoded unicode string, invalid byte sequence)
    """
    try:
        return data.decode(), b""
    except UnicodeDecodeError:
        for i in range(-1, -4, -1):
            char = data[i]
            if char & 0xC0 == 0x80:
                continue
            return data[:i].decode(), data[i:]
        raise


def get_properties_struct(
    name: str, own_jid: JID | None
) -> IqProperties | MessageProperties | PresenceProperties:
    if name == "message":
        return MessageProperties(own_jid)
    if name == "iq":
        return IqProperties(own_jid)
    if name == "presence":
        return PresenceProperties(own_jid)
    raise ValueError("Unknown name: %s" % name)


class Observable:
    def __init__(self, log_: logging.Logger | LoggerAdapter[Any]) -> None:
        self._log = log_
        self._callbacks: defaultdict[str, list[Callable[..., Any]]] = defaultdict(list)

    def remove_subscriptions(self) -> None:
        self._callbacks = defaultdict(list)

    def subscribe(self, signal_name: str, func: Callable[..., Any]) -> None:
        self._callbacks[signal_name].append(func)

    def notify(self, signal_name: str, *args: Any) -> None:
        self._log.info("Signal: %s", signal_name)
        callbacks = list(self._callbacks.get(signal_name, []))
        for func in callbacks:
            func(self, signal_name, *args)


class LogAdapter(LoggerAdapter):  # type: ignore[type-arg]
    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return "(%s) %s" % (self.extra["context"], msg), kwargs  # type: ignore[index]
