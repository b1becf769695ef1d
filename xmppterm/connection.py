# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any

import logging

from xmppterm.const import TCPState
from xmppterm.const import TlsPolicy
from xmppterm.errors import TransportError
from xmppterm.util import LogAdapter
from xmppterm.util import Observable

log = logging.getLogger("xmppterm.connection")


class Connection(Observable):
    """
    Base Connection Class

    Owns one byte channel to the server. Subclasses implement the actual
    I/O, the signals are shared:

        connected
        data-sent           (stanza)
        data-received       (str)
        connection-failed   (TransportError)
        disconnected        (TransportError | None)
    """

    def __init__(
        self,
        log_context: str,
        domain: str,
        host: str | None = None,
        port: int | None = None,
        tls_policy: TlsPolicy = TlsPolicy.STARTTLS,
    ) -> None:

        self._log = LogAdapter(log, {"context": log_context})

        Observable.__init__(self, self._log)

        self._domain = domain
        self._host = host
        self._port = port
        self._tls_policy = tls_policy
        self._remote_address: str | None = None

        self._state = TCPState.DISCONNECTED
        self._is_secure = False

    @property
    def domain(self) -> str:
        return self._domain

    @property
    def tls_policy(self) -> TlsPolicy:
        return self._tls_policy

    @property
    def is_secure(self) -> bool:
        return self._is_secure

    @property
    def remote_address(self) -> str | None:
        return self._remote_address

    @property
    def state(self) -> TCPState:
        return self._state

    @state.setter
    def state(self, value: TCPState) -> None:
        self._log.info("Set Connection State: %s", value)
        self._state = value

    def connect(self) -> None:
        raise NotImplementedError

    def disconnect(self) -> None:
        raise NotImplementedError

    def send(self, stanza: Any, now: bool = False) -> None:
        raise NotImplementedError

    def start_tls_negotiation(self) -> None:
        raise NotImplementedError

    def shutdown_output(self) -> None:
        raise NotImplementedError

    def shutdown_input(self) -> None:
        raise NotImplementedError

    def _log_stanza(self, data: str, received: bool = True) -> None:
        direction = "RECEIVED" if received else "SENT"
        message = "::::: DATA %s ::::\n\n%s\n"
        self._log.info(message, direction, data)

    def _fail(self, kind: str, text: str | None = None) -> TransportError:
        error = TransportError(kind, text)
        self._log.warning(error)
        return error

    def destroy(self) -> None:
        self.remove_subscriptions()
