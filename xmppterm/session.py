# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import TYPE_CHECKING

from dataclasses import dataclass

from xmppterm.const import ConnectionState

if TYPE_CHECKING:
    from xmppterm.elements import Features
    from xmppterm.errors import BaseError
    from xmppterm.jid import JID


@dataclass
class Session:
    """
    State of one connection attempt

    A new Session is created for every attempt, nothing is carried over
    from the previous one.
    """

    number: int
    state: ConnectionState = ConnectionState.CONNECTING
    stream_id: str | None = None
    features: Features | None = None
    bound_jid: JID | None = None
    secure: bool = False
    authenticated: bool = False
    session_required: bool = False
    close_initiated: bool = False
    error: BaseError | None = None
    ended: bool = False

    @property
    def is_ready(self) -> bool:
        return self.state.is_ready

    def set_error(self, error: BaseError) -> None:
        # The first error is the cause, later ones are consequences
        if self.error is None:
            self.error = error
