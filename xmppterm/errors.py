# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import TYPE_CHECKING

import logging

from xmppterm.namespaces import Namespace

if TYPE_CHECKING:
    from xmppterm.elements import Base
    from xmppterm.jid import JID


def is_error(error: Any) -> bool:
    return isinstance(error, BaseError)


class BaseError(Exception):

    log_level = logging.INFO

    def __init__(self, is_fatal: bool = False) -> None:
        self.is_fatal = is_fatal
        self.text = ""

    def __str__(self) -> str:
        return self.text

    def get_text(self, _pref_lang: str | None = None) -> str:
        return self.text


class TransportError(BaseError):
    """
    The byte channel failed: kind is one of dns, refused, reset or
    tls-handshake
    """

    log_level = logging.WARNING

    DNS = "dns"
    REFUSED = "refused"
    RESET = "reset"
    TLS_HANDSHAKE = "tls-handshake"

    def __init__(self, kind: str, text: str | None = None) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.kind = kind
        self.text = text or kind

    def __str__(self) -> str:
        return "Transport error (%s): %s" % (self.kind, self.text)


class StreamError(BaseError):

    log_level = logging.WARNING

    def __init__(self, condition: str, text: str | None = None) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.condition = condition
        self.text = text or ""

    def __str__(self) -> str:
        if self.text:
            return "Stream error: %s - %s" % (self.condition, self.text)
        return "Stream error: %s" % self.condition


class AuthError(BaseError):

    log_level = logging.WARNING

    def __init__(self, condition: str, text: str | None = None) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.condition = condition
        self.text = text or ""

    def __str__(self) -> str:
        if self.text:
            return "Authentication failed: %s - %s" % (self.condition, self.text)
        return "Authentication failed: %s" % self.condition


class BindError(BaseError):

    log_level = logging.WARNING

    def __init__(self, condition: str | None, text: str | None = None) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.condition = condition or "undefined-condition"
        self.text = text or ""

    def __str__(self) -> str:
        return "Resource binding failed: %s" % self.condition


class ProtocolError(BaseError):

    log_level = logging.WARNING

    def __init__(self, text: str, stanza: Base | None = None) -> None:
        BaseError.__init__(self)
        self.stanza = stanza
        self.text = str(text)


class StanzaError(ProtocolError):

    log_level = logging.INFO

    def __init__(self, stanza: Base) -> None:
        ProtocolError.__init__(self, "", stanza)
        self.is_fatal = True
        self._error_node = stanza.find_tag("error")
        self.condition: str | None = None
        self.type: str | None = None
        self.jid: JID | None = stanza.get_from()
        self.id = stanza.get("id")
        self._text: dict[str | None, str] = {}

        if self._error_node is None:
            self.condition = "undefined-condition"
            return

        self.type = self._error_node.get("type")
        for child in self._error_node:
            if child.namespace != Namespace.STANZAS:
                continue
            if child.localname == "text":
                self._text[child.lang] = child.text or ""
                continue
            if self.condition is None:
                self.condition = child.localname

        if self.condition is None:
            self.condition = "undefined-condition"

    def get_text(self, pref_lang: str | None = None) -> str:
        if pref_lang is not None:
            text = self._text.get(pref_lang)
            if text is not None:
                return text

        if self._text:
            text = self._text.get("en")
            if text is not None:
                return text

            text = self._text.get(None)
            if text is not None:
                return text
            return next(iter(self._text.values()))
        return ""

    def __str__(self) -> str:
        text = self.get_text("en")
        if text:
            text = " - %s" % text
        return "Error from %s: %s%s" % (self.jid, self.condition, text)


class MalformedStanzaError(ProtocolError):

    log_level = logging.WARNING

    def __init__(self, text: str, stanza: Base | None, is_fatal: bool = True) -> None:
        ProtocolError.__init__(self, text, stanza)
        self.is_fatal = is_fatal


class CancelledError(BaseError):
    def __init__(self) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.text = "Task has been cancelled"


class TimeoutStanzaError(BaseError):
    def __init__(self) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.text = "Timeout reached"


class JoinError(BaseError):

    log_level = logging.WARNING

    def __init__(self, room: JID, reason: str, text: str | None = None) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.room = room
        self.reason = reason
        self.text = text or ""

    def __str__(self) -> str:
        text = " - %s" % self.text if self.text else ""
        return "Unable to join %s: %s%s" % (self.room, self.reason, text)


class MamUnsupported(BaseError):
    def __init__(self, archive: JID) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.archive = archive
        self.text = "%s does not support message archive management" % archive


class ConfigError(BaseError):

    log_level = logging.ERROR

    def __init__(self, text: str) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.text = text


class CommandError(BaseError):
    def __init__(self, text: str) -> None:
        BaseError.__init__(self, is_fatal=True)
        self.text = text
