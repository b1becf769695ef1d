# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any

import argparse
import logging
import os
import sys
import time
from pathlib import Path

from gi.repository import GLib

from xmppterm import commands
from xmppterm import events
from xmppterm.config import load_config
from xmppterm.errors import ConfigError
from xmppterm.loop import EventLoop

log = logging.getLogger("xmppterm")

READ_SIZE = 4096


def setup_logging(debug: bool, log_file: str | None) -> None:
    if log_file is not None:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)-7s %(name)-25s %(message)s"
    )
    handler.setFormatter(formatter)
    log.addHandler(handler)
    log.setLevel(logging.DEBUG if debug else logging.WARNING)
    log.propagate = False


def _time(timestamp: float) -> str:
    return time.strftime("%H:%M:%S", time.localtime(timestamp))


def format_event(event: events.Event) -> str | None:
    prefix = "[%s]" % event.account

    if isinstance(event, events.MessageReceived):
        record = event.record
        return "%s %s <%s> %s: %s" % (
            prefix,
            _time(record.timestamp),
            record.conversation,
            record.nickname or "",
            record.body,
        )

    if isinstance(event, events.HistoryLoaded):
        lines = [
            "%s %s <%s> %s: %s"
            % (prefix, _time(r.timestamp), r.conversation, r.nickname or "", r.body)
            for r in event.records
        ]
        return "\n".join(lines) or None

    if isinstance(event, events.ConnectionStateChanged):
        text = "%s %s" % (prefix, event.state.value)
        if event.error is not None:
            text += ": %s" % event.error
        return text

    if isinstance(event, events.PresenceChanged):
        status = " (%s)" % event.status if event.status else ""
        return "%s %s is %s%s" % (prefix, event.jid, event.availability, status)

    if isinstance(event, events.RosterUpdated):
        return "%s Roster: %s" % (prefix, ", ".join(map(str, event.contacts)))

    if isinstance(event, events.SubscriptionRequest):
        return "%s %s asks for your presence, /accept or /deny" % (prefix, event.jid)

    if isinstance(event, events.SubscriptionChanged):
        return "%s %s: %s" % (prefix, event.jid, event.type)

    if isinstance(event, events.RoomJoined):
        return "%s Joined %s as %s: %s" % (
            prefix,
            event.room,
            event.nick,
            ", ".join(event.occupants),
        )

    if isinstance(event, events.RoomLeft):
        reason = " (%s)" % event.reason if event.reason else ""
        return "%s Left %s%s" % (prefix, event.room, reason)

    if isinstance(event, events.OccupantJoined):
        return "%s %s joined %s" % (prefix, event.nick, event.room)

    if isinstance(event, events.OccupantLeft):
        reason = " (%s)" % event.reason if event.reason else ""
        return "%s %s left %s%s" % (prefix, event.nick, event.room, reason)

    if isinstance(event, events.OccupantRenamed):
        return "%s %s is now known as %s in %s" % (
            prefix,
            event.old_nick,
            event.new_nick,
            event.room,
        )

    if isinstance(event, events.RoomSubjectChanged):
        return "%s Subject of %s: %s" % (prefix, event.room, event.subject)

    if isinstance(event, events.BookmarksUpdated):
        lines = ["%s Bookmarks:" % prefix]
        for bookmark in event.bookmarks:
            autojoin = " (autojoin)" if bookmark.autojoin else ""
            lines.append("  %s %s%s" % (bookmark.jid, bookmark.name or "", autojoin))
        return "\n".join(lines)

    if isinstance(event, events.RequestFailed):
        return "%s Error: %s" % (prefix, event.reason)

    if isinstance(event, events.Info):
        return "%s %s" % (prefix, event.text)

    return None


class Console:
    """
    Reads command lines from a file descriptor inside the main loop

    The descriptor is read unbuffered, one read can carry several lines
    and a line can be split over several reads.
    """

    def __init__(self, bell: bool, fd: int | None = None) -> None:
        self._loop: EventLoop | None = None
        self._bell = bell
        self._fd = fd
        self._buffer = b""
        self._source_id: int | None = None

    def attach(self, loop: EventLoop) -> None:
        self._loop = loop
        if self._fd is None:
            self._fd = sys.stdin.fileno()
        self._channel = GLib.IOChannel.unix_new(self._fd)
        self._source_id = GLib.io_add_watch(
            self._channel,
            GLib.PRIORITY_DEFAULT,
            GLib.IOCondition.IN | GLib.IOCondition.HUP,
            self._on_input,
        )

    def _on_input(self, _channel: Any, _condition: GLib.IOCondition) -> bool:
        assert self._loop is not None
        assert self._fd is not None
        data = os.read(self._fd, READ_SIZE)
        if not data:
            # EOF, a last line may come without newline
            if self._buffer:
                self._process_line(self._buffer)
                self._buffer = b""
            self._source_id = None
            self._loop.submit(commands.Quit())
            return GLib.SOURCE_REMOVE

        *lines, self._buffer = (self._buffer + data).split(b"\n")
        for line in lines:
            self._process_line(line)
        return GLib.SOURCE_CONTINUE

    def _process_line(self, data: bytes) -> None:
        assert self._loop is not None
        line = data.decode("utf-8", errors="replace").rstrip("\r")
        if line == "/help":
            for help_ in commands.get_help().values():
                print(help_)
            return

        if line:
            self._loop.submit_line(line)

    def on_event(self, event: events.Event) -> None:
        text = format_event(event)
        if text is None:
            return
        if self._bell and isinstance(event, events.MessageReceived):
            if not event.record.outgoing:
                text = "\a" + text
        print(text, flush=True)


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="xmppterm", description="Console XMPP client"
    )
    parser.add_argument("--config", type=Path, help="Path of the configuration file")
    parser.add_argument("--account", help="Account selected at startup")
    parser.add_argument("--debug", action="store_true", help="Log debug output")
    parser.add_argument("--log-file", help="Write the log to this file")
    args = parser.parse_args()

    setup_logging(args.debug, args.log_file)

    try:
        config = load_config(args.config)
    except ConfigError as error:
        print("Error: %s" % error, file=sys.stderr)
        return 1

    console = Console(config.bell)
    loop = EventLoop(config, console.on_event)
    console.attach(loop)

    if args.account is not None:
        if args.account not in loop.accounts:
            print("Error: unknown account %s" % args.account, file=sys.stderr)
            return 1
        loop.current_account = args.account

    try:
        loop.run()
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
