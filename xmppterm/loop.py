# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Callable

import logging
from collections import deque

from gi.repository import GLib

from xmppterm import commands
from xmppterm import events
from xmppterm.account import Account
from xmppterm.config import AccountConfig
from xmppterm.config import Config
from xmppterm.errors import CommandError
from xmppterm.jid import JID
from xmppterm.storage import JSONStore

log = logging.getLogger("xmppterm.loop")

QUIT_TIMEOUT = 6


class EventLoop:
    """
    Runs all accounts on one GLib main loop

    Network input, timers and user commands are all dispatched from the
    main loop. Commands are queued and drained from an idle source with
    the priority of the socket reads, so they are handled in the order
    they were submitted relative to already pending network input.
    """

    def __init__(
        self,
        config: Config,
        on_event: Callable[[events.Event], Any],
        store_factory: Callable[[str], JSONStore | None] | None = JSONStore,
    ) -> None:

        self._config = config
        self._on_event = on_event
        self._store_factory = store_factory
        self._mainloop = GLib.MainLoop()

        self._accounts: dict[str, Account] = {}
        self._queue: deque[tuple[str | None, Any]] = deque()
        self._idle_id: int | None = None
        self._quit_id: int | None = None
        self._quitting = False

        self.current_account: str | None = None
        self.context: JID | None = None

        for account_config in config.accounts.values():
            self.add_account(account_config)

    @property
    def accounts(self) -> dict[str, Account]:
        return dict(self._accounts)

    def add_account(self, config: AccountConfig) -> Account:
        store = None
        if self._store_factory is not None:
            store = self._store_factory(config.name)
        account = Account(config, self._config, store=store)
        account.subscribe("event", self._on_account_event)
        self._accounts[config.name] = account
        if self.current_account is None:
            self.current_account = config.name
        return account

    def get_account(self, name: str | None) -> Account:
        if name is None:
            name = self.current_account
        if name is None:
            raise CommandError("No account configured")
        try:
            return self._accounts[name]
        except KeyError:
            raise CommandError("Unknown account %s" % name)

    def submit_line(self, line: str) -> None:
        try:
            command = commands.parse_command(line, self.context)
        except CommandError as error:
            self._emit(events.RequestFailed(self.current_account or "", error))
            return
        self.submit(command)

    def submit(self, command: Any, account: str | None = None) -> None:
        self._queue.append((account, command))
        if self._idle_id is None:
            self._idle_id = GLib.idle_add(self._drain, priority=GLib.PRIORITY_LOW)

    def _drain(self) -> bool:
        self._idle_id = None
        while self._queue:
            account, command = self._queue.popleft()
            try:
                self._execute(account, command)
            except CommandError as error:
                self._emit(events.RequestFailed(account or self.current_account or "", error))
            except Exception:
                log.exception("Error while executing %s", command)
        return GLib.SOURCE_REMOVE

    def _execute(self, account_name: str | None, command: Any) -> None:
        log.info("Execute %s", command)

        if isinstance(command, commands.Quit):
            self.quit()
            return

        if isinstance(command, (commands.Connect, commands.Disconnect)):
            if command.account is not None:
                account_name = command.account

        account = self.get_account(account_name)

        if isinstance(command, commands.Connect):
            self.current_account = account.name

        elif isinstance(command, commands.Join):
            self.context = command.room

        elif isinstance(command, commands.OpenChat):
            self.context = command.target

        elif isinstance(command, commands.SendMessage):
            self.context = command.target

        account.execute(command)

    def _emit(self, event: events.Event) -> None:
        try:
            self._on_event(event)
        except Exception:
            log.exception("Error while handling event %s", event)

    def _on_account_event(
        self, _account: Account, _signal_name: str, event: events.Event
    ) -> None:
        if isinstance(event, events.RoomLeft) and event.room == self.context:
            if event.reason != "disconnected":
                self.context = None

        self._emit(event)

        if self._quitting and isinstance(event, events.ConnectionStateChanged):
            self._check_quit()

    def connect_autoconnect(self) -> None:
        for account in self._accounts.values():
            if account.config.autoconnect:
                account.connect()

    def run(self) -> None:
        self.connect_autoconnect()
        self._mainloop.run()

    def quit(self) -> None:
        if self._quitting:
            return

        self._quitting = True
        for account in self._accounts.values():
            account.disconnect()

        self._quit_id = GLib.timeout_add_seconds(QUIT_TIMEOUT, self._on_quit_timeout)
        self._check_quit()

    def _check_quit(self) -> None:
        for account in self._accounts.values():
            if not account.connection_state.is_disconnected:
                return
        self._stop()

    def _on_quit_timeout(self) -> bool:
        self._quit_id = None
        log.warning("Accounts did not disconnect in time")
        self._stop()
        return GLib.SOURCE_REMOVE

    def _stop(self) -> None:
        if self._quit_id is not None:
            GLib.source_remove(self._quit_id)
            self._quit_id = None

        for account in self._accounts.values():
            account.destroy()
        self._accounts.clear()

        if self._mainloop.is_running():
            self._mainloop.quit()
