# Copyright (C) 2018 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import TYPE_CHECKING

import logging

from xmppterm.structs import StanzaHandler
from xmppterm.util import LogAdapter

if TYPE_CHECKING:
    from xmppterm.client import Client


class BaseModule:
    def __init__(self, client: Client) -> None:
        logger_name = "xmppterm.m.%s" % self.__class__.__name__.lower()
        self._log = LogAdapter(
            logging.getLogger(logger_name), {"context": client.log_context}
        )
        self._client = client
        self.handlers: list[StanzaHandler] = []
