# Copyright (C) 2021 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import cast

import logging
from copy import deepcopy

from lxml import etree

from xmppterm.elements import Base
from xmppterm.lookups import ElementLookup
from xmppterm.util import LogAdapter
from xmppterm.util import Observable


log = logging.getLogger("xmppterm.parser")


PARSER_SETTINGS = {
    "load_dtd": False,
    "dtd_validation": False,
    "no_network": True,
    "recover": False,
    "resolve_entities": False,
    "remove_comments": True,
    "remove_pis": True,
}


class TCPStreamParser(Observable):
    """
    Incremental framer for one XML stream

    Accepts arbitrary chunks and emits every depth-1 child of the stream
    root exactly once through the 'element' signal. Signals:

        stream-start   the <stream:stream> header (without children)
        element        one complete top-level element
        stream-end     the closing </stream:stream>

    Malformed input raises lxml.etree.XMLSyntaxError from feed(), the
    parser is unusable afterwards.
    """

    _dispatch_depth = 1

    def __init__(self, log_context: str) -> None:
        Observable.__init__(self, log)

        self._log = LogAdapter(log, {"context": log_context})
        self._destroyed = False
        self._depth = 0
        self._parser: etree.XMLPullParser | None = self._create_parser()

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def _create_parser(self) -> etree.XMLPullParser:
        parser = etree.XMLPullParser(events=["start", "end"], **PARSER_SETTINGS)
        parser.set_element_class_lookup(ElementLookup)
        return parser

    def feed(self, data: str | bytes) -> None:
        if self._destroyed:
            raise ValueError("Parser is destroyed")

        parser = cast(etree.XMLPullParser, self._parser)
        parser.feed(data)
        for action, element in list(parser.read_events()):
            if action == "start":
                if self._depth == 0:
                    element = self._cleanup_stream_start(element)
                    self.notify("stream-start", element)
                self._depth += 1

            elif action == "end":
                self._depth -= 1
                if self._depth == self._dispatch_depth:
                    self.notify("element", element)
                    self._free_elements(element)

                if self._depth == 0:
                    self.notify("stream-end", element)
                    self.destroy()
                    break

            if self._destroyed:
                break

    def _free_elements(self, element: Base) -> None:
        """
        XMLPullParser keeps the whole tree in memory, this drops the
        already dispatched previous siblings
        """
        while element.getprevious() is not None:
            del element.getparent()[0]

    def _cleanup_stream_start(self, element: Base) -> Base:
        """
        The first chunk often carries the stream features too, so the root
        lxml yields may already have children. Dispatch a childless copy.
        """
        element = deepcopy(element)
        for child in list(element):
            element.remove(child)
        return element

    def destroy(self) -> None:
        if self._destroyed:
            return
        self.remove_subscriptions()
        self._destroyed = True
        self._parser = None
