# Copyright (C) 2019 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Callable
from typing import TYPE_CHECKING

import logging
import time
from collections import deque
from dataclasses import dataclass

from gi.repository import GLib
from lxml import etree

from xmppterm.const import DEFAULT_REQUEST_TIMEOUT
from xmppterm.elements import Base
from xmppterm.elements import Iq
from xmppterm.elements import Message
from xmppterm.elements import Presence
from xmppterm.elements import Stanza
from xmppterm.elements import StreamErrorElement
from xmppterm.errors import BaseError
from xmppterm.errors import TimeoutStanzaError
from xmppterm.exceptions import InvalidJid
from xmppterm.exceptions import NodeProcessed
from xmppterm.exceptions import StanzaMalformed
from xmppterm.modules.bookmarks import PrivateBookmarks
from xmppterm.modules.delay import Delay
from xmppterm.modules.discovery import Discovery
from xmppterm.modules.iq import BaseIq
from xmppterm.modules.mam import MAM
from xmppterm.modules.mam import unwrap_mam
from xmppterm.modules.message import BaseMessage
from xmppterm.modules.muc import MUC
from xmppterm.modules.ping import Ping
from xmppterm.modules.presence import BasePresence
from xmppterm.modules.roster import Roster
from xmppterm.namespaces import Namespace
from xmppterm.stream_parser import TCPStreamParser
from xmppterm.structs import StanzaHandler
from xmppterm.util import get_properties_struct
from xmppterm.util import LogAdapter
from xmppterm.util import Observable

if TYPE_CHECKING:
    from xmppterm.client import Client

log = logging.getLogger("xmppterm.dispatcher")

# Remembers recently resolved ids so a duplicate or late response can
# be told apart from a response nobody asked for
RESOLVED_HISTORY = 200


@dataclass
class PendingRequest:
    id: str
    callback: Callable[..., Any]
    deadline: float


class StanzaDispatcher(Observable):
    """
    Dispatches stanzas to handlers

    Owns the stream parser and the table of pending IQ requests.

    Signals:
        before-dispatch
        stream-start
        stream-error
        stream-end
        parsing-error
    """

    def __init__(self, client: Client) -> None:
        Observable.__init__(self, log)
        self._client = client
        self._modules: dict[str, Any] = {}
        self._parser: TCPStreamParser | None = None

        self._log = LogAdapter(log, {"context": client.log_context})

        self._handlers: dict[str, dict[str, dict[str, list[dict[str, Any]]]]] = {}

        self._pending: dict[str, PendingRequest] = {}
        self._resolved: deque[str] = deque(maxlen=RESOLVED_HISTORY)
        self._id_counter = 0
        self._dispatch_callback: Callable[..., Any] | None = None
        self._timeout_id: int | None = None

        self._register_namespace(Namespace.CLIENT)
        self._register_modules()

    def set_dispatch_callback(self, callback: Callable[..., Any] | None) -> None:
        self._log.info("Set dispatch callback: %s", callback)
        self._dispatch_callback = callback

    def get_module(self, name: str) -> Any:
        return self._modules[name]

    def _register_modules(self) -> None:
        self._modules["BasePresence"] = BasePresence(self._client)
        self._modules["BaseMessage"] = BaseMessage(self._client)
        self._modules["BaseIq"] = BaseIq(self._client)
        self._modules["Delay"] = Delay(self._client)
        self._modules["Discovery"] = Discovery(self._client)
        self._modules["MAM"] = MAM(self._client)
        self._modules["MUC"] = MUC(self._client)
        self._modules["Ping"] = Ping(self._client)
        self._modules["PrivateBookmarks"] = PrivateBookmarks(self._client)
        self._modules["Roster"] = Roster(self._client)

        for instance in self._modules.values():
            for handler in instance.handlers:
                self.register_handler(handler)

    def reset_parser(self) -> None:
        if self._parser is not None:
            self._parser.destroy()

        self._parser = TCPStreamParser(self._client.log_context)
        self._parser.subscribe("stream-start", self._on_stream_start)
        self._parser.subscribe("element", self._on_element)
        self._parser.subscribe("stream-end", self._on_stream_end)

    def process_data(self, data: str) -> None:
        if self._parser is None or self._parser.is_destroyed:
            self._log.warning("Data received without active parser, ignoring")
            return

        try:
            self._parser.feed(data)
        except etree.XMLSyntaxError as error:
            self._log.error("XML parsing error: %s", error)
            self._parser.destroy()
            self.notify("parsing-error", str(error))

    def _on_stream_start(self, _parser: TCPStreamParser, _signal_name: str, element: Base) -> None:
        self.notify("stream-start", element)

    def _on_element(self, _parser: TCPStreamParser, _signal_name: str, element: Base) -> None:
        self.dispatch(element)

    def _on_stream_end(self, _parser: TCPStreamParser, _signal_name: str, _element: Base) -> None:
        self._log.info("End of stream")
        self.notify("stream-end")

    def _register_namespace(self, xmlns: str) -> None:
        """
        Setup handler structure for namespace
        """
        self._log.debug('Register namespace "%s"', xmlns)
        self._handlers[xmlns] = {}
        for name in ("iq", "message", "presence", "default"):
            self._handlers[xmlns][name] = {"default": []}

    def register_handler(self, handler: StanzaHandler) -> None:
        xmlns = handler.xmlns or Namespace.CLIENT

        typ = handler.typ
        if not typ and not handler.ns:
            typ = "default"

        self._log.debug(
            'Register handler %s for "%s" type->%s ns->%s(%s) priority->%s',
            handler.callback,
            handler.name,
            typ,
            handler.ns,
            xmlns,
            handler.priority,
        )

        if xmlns not in self._handlers:
            self._register_namespace(xmlns)
        if handler.name not in self._handlers[xmlns]:
            self._handlers[xmlns][handler.name] = {"default": []}

        specific = typ + handler.ns
        if specific not in self._handlers[xmlns][handler.name]:
            self._handlers[xmlns][handler.name][specific] = []

        self._handlers[xmlns][handler.name][specific].append(
            {
                "func": handler.callback,
                "priority": handler.priority,
                "specific": specific,
            }
        )

    def unregister_handler(self, handler: StanzaHandler) -> None:
        xmlns = handler.xmlns or Namespace.CLIENT

        typ = handler.typ
        if not typ and not handler.ns:
            typ = "default"

        specific = typ + handler.ns
        try:
            handlers = self._handlers[xmlns][handler.name][specific]
        except KeyError:
            return

        for handler_dict in list(handlers):
            if handler_dict["func"] != handler.callback:
                continue
            handlers.remove(handler_dict)
            self._log.debug(
                'Unregister handler %s for "%s" type->%s ns->%s(%s)',
                handler.callback,
                handler.name,
                typ,
                handler.ns,
                xmlns,
            )

    def _default_handler(self, stanza: Stanza) -> None:
        """
        Return stanza back to the sender with <feature-not-implemented/> error
        """
        if stanza.localname == "iq" and stanza.get("type") in ("get", "set"):
            self._client.send_stanza(stanza.make_error("cancel", "feature-not-implemented"))

    def dispatch(self, stanza: Base) -> None:
        self.notify("before-dispatch", stanza)

        if self._dispatch_callback is not None:
            self._dispatch_callback(stanza)
            return

        if isinstance(stanza, StreamErrorElement):
            self._log.warning("Stream error: %s", stanza.get_condition())
            self.notify("stream-error", stanza.get_condition(), stanza.get_text())
            return

        name = stanza.localname
        xmlns = stanza.namespace

        if xmlns not in self._handlers or not isinstance(stanza, (Iq, Message, Presence)):
            # Unknown top level elements are ignored
            self._log.warning("Unknown stanza: %s", stanza)
            return

        try:
            stanza.get_from()
            stanza.get_to()
        except InvalidJid:
            self._log.warning("Invalid JID, ignoring stanza")
            self._log.warning(stanza)
            return

        own_jid = self._client.get_bound_jid()
        properties = get_properties_struct(name, own_jid)

        if name == "iq":
            if stanza.get_from() is None and own_jid is not None:
                stanza.set_from(own_jid.bare)

        if name == "message":
            # https://tools.ietf.org/html/rfc6120#section-8.1.1.1
            # A missing 'to' means the client's full JID
            to = stanza.get_to()
            if to is None:
                stanza.set_to(own_jid)

            elif not to.bare_match(own_jid):
                self._log.warning("Message addressed to someone else: %s", stanza)
                return

            if stanza.get_from() is None:
                stanza.set_from(own_jid.bare)

            try:
                stanza, properties.mam = unwrap_mam(stanza, own_jid)
            except (StanzaMalformed, InvalidJid) as exc:
                self._log.warning(exc)
                self._log.warning(stanza)
                return

        typ = stanza.get("type")
        if not typ:
            if name == "message":
                typ = "normal"
            elif name == "presence":
                typ = "available"
            else:
                typ = ""

        if name == "iq" and typ in ("result", "error"):
            self._resolve_request(stanza)
            return

        props = [child.namespace for child in stanza]
        self._log.debug("type: %s, properties: %s", typ, props)

        chain = self._build_handler_chain(xmlns, name, typ, props)
        self._execute_handler_chain(chain, stanza, properties)

    def _build_handler_chain(
        self, xmlns: str, name: str, typ: str, props: list[str | None]
    ) -> list[dict[str, Any]]:

        handlers = self._handlers[xmlns][name]

        # Gather specifics depending on stanza properties
        specifics = ["default"]
        if typ and typ in handlers:
            specifics.append(typ)

        for prop in props:
            if prop is None:
                continue
            if prop in handlers:
                specifics.append(prop)

            if typ and typ + prop in handlers:
                specifics.append(typ + prop)

        # Create the handler chain
        chain: list[dict[str, Any]] = []
        chain += self._handlers[xmlns]["default"]["default"]
        for specific in dict.fromkeys(specifics):
            chain += handlers[specific]

        # Sort chain with priority
        chain.sort(key=lambda x: x["priority"])
        return chain

    def _execute_handler_chain(
        self, chain: list[dict[str, Any]], stanza: Stanza, properties: Any
    ) -> None:

        for handler in chain:
            self._log.info("Call handler: %s", handler["func"].__qualname__)
            try:
                handler["func"](self._client, stanza, properties)
            except NodeProcessed:
                return
            except Exception:
                self._log.exception("Handler exception:")
                return

        # Stanza was not processed call default handler
        self._default_handler(stanza)

    def new_request_id(self) -> str:
        """
        Returns an id which is not used by any pending request
        """
        while True:
            self._id_counter += 1
            id_ = "xt%d" % self._id_counter
            if id_ not in self._pending:
                return id_

    def is_pending(self, id_: str) -> bool:
        return id_ in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add_request(
        self, id_: str, callback: Callable[..., Any], timeout: float | None = None
    ) -> PendingRequest:

        if id_ in self._pending:
            raise ValueError("Request id already pending: %s" % id_)

        if timeout is None:
            timeout = DEFAULT_REQUEST_TIMEOUT

        request = PendingRequest(
            id=id_, callback=callback, deadline=time.monotonic() + timeout
        )
        self._pending[id_] = request

        if self._timeout_id is None:
            self._log.info("Add timeout check")
            self._timeout_id = GLib.timeout_add_seconds(1, self._timeout_check)
        return request

    def cancel_request(self, id_: str) -> bool:
        """
        Removes a pending request without resolving it, cancelling an
        unknown or already resolved id does nothing
        """
        request = self._pending.pop(id_, None)
        if request is None:
            return False
        self._log.info("Cancelled request %s", id_)
        self._resolved.append(id_)
        return True

    def _resolve_request(self, stanza: Stanza) -> None:
        id_ = stanza.get_id()
        request = self._pending.pop(id_, None) if id_ is not None else None
        if request is None:
            if id_ in self._resolved:
                self._log.warning("Duplicate or late response for id %s, discarded", id_)
            else:
                self._log.warning("Response with unknown id %s, discarded", id_)
            self._log.warning(stanza)
            return

        self._resolved.append(request.id)
        self._invoke_request(request, stanza)

    def _invoke_request(self, request: PendingRequest, result: Stanza | BaseError) -> None:
        try:
            request.callback(self._client, result)
        except Exception:
            self._log.exception("Error while handling response for %s", request.id)

    def _timeout_check(self) -> bool:
        self._log.debug("Run timeout check")
        if not self._pending:
            self._log.info("Remove timeout check, no requests pending")
            self._timeout_id = None
            return False

        now = time.monotonic()
        expired = [
            request for request in self._pending.values() if request.deadline <= now
        ]

        for request in expired:
            # A callback of an earlier request may have cancelled this one
            if self._pending.pop(request.id, None) is None:
                continue
            self._log.info("Request %s timed out", request.id)
            self._resolved.append(request.id)
            self._invoke_request(request, TimeoutStanzaError())
        return True

    def fail_all_requests(self, error: BaseError) -> None:
        """
        Resolves every pending request with the given session error
        """
        if not self._pending:
            return

        self._log.info("Fail %s pending requests: %s", len(self._pending), error)
        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            self._resolved.append(request.id)
            self._invoke_request(request, error)

    def reset_session(self) -> None:
        self._id_counter = 0
        self._resolved.clear()

    def _remove_timeout_source(self) -> None:
        if self._timeout_id is not None:
            GLib.source_remove(self._timeout_id)
            self._timeout_id = None

    def cleanup(self) -> None:
        if self._parser is not None:
            self._parser.destroy()
            self._parser = None
        self._pending.clear()
        self._dispatch_callback = None
        self._modules = {}
        self._handlers.clear()
        self._remove_timeout_source()
        self.remove_subscriptions()
