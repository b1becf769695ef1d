# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Callable

import logging
from dataclasses import dataclass
from enum import Enum

from xmppterm.const import Availability
from xmppterm.errors import CommandError
from xmppterm.exceptions import InvalidJid
from xmppterm.jid import JID
from xmppterm.modules.date_and_time import parse_user_date

log = logging.getLogger("xmppterm.commands")


class _State(Enum):
    DELIMITER = 0
    UNQUOTED = 1
    SINGLE_QUOTED = 2
    DOUBLE_QUOTED = 3
    UNQUOTED_ESCAPED = 4
    SINGLE_QUOTED_ESCAPED = 5
    DOUBLE_QUOTED_ESCAPED = 6


_ESCAPED_STATES = {
    _State.UNQUOTED_ESCAPED: _State.UNQUOTED,
    _State.SINGLE_QUOTED_ESCAPED: _State.SINGLE_QUOTED,
    _State.DOUBLE_QUOTED_ESCAPED: _State.DOUBLE_QUOTED,
}


def tokenize(line: str) -> list[str]:
    """
    Splits a command line into its arguments, the first one is the
    command name

    Arguments are separated by spaces, single and double quotes group
    characters, a backslash takes the next character literally.
    """
    if not line.startswith("/"):
        raise CommandError("Missing starting /")

    tokens: list[str] = []
    token: list[str] = []
    state = _State.DELIMITER

    for char in line[1:]:
        if state in _ESCAPED_STATES:
            token.append(char)
            state = _ESCAPED_STATES[state]

        elif state == _State.SINGLE_QUOTED:
            if char == "'":
                state = _State.UNQUOTED
            elif char == "\\":
                state = _State.SINGLE_QUOTED_ESCAPED
            else:
                token.append(char)

        elif state == _State.DOUBLE_QUOTED:
            if char == '"':
                state = _State.UNQUOTED
            elif char == "\\":
                state = _State.DOUBLE_QUOTED_ESCAPED
            else:
                token.append(char)

        elif char == "'":
            state = _State.SINGLE_QUOTED
        elif char == '"':
            state = _State.DOUBLE_QUOTED
        elif char == "\\":
            state = _State.UNQUOTED_ESCAPED
        elif char == " ":
            if state == _State.UNQUOTED:
                tokens.append("".join(token))
                token = []
            state = _State.DELIMITER
        else:
            token.append(char)
            state = _State.UNQUOTED

    if state in (_State.SINGLE_QUOTED, _State.DOUBLE_QUOTED):
        raise CommandError("Missing closing quote")

    if state in _ESCAPED_STATES:
        raise CommandError("Missing escaped char")

    if state == _State.UNQUOTED:
        tokens.append("".join(token))

    if not tokens:
        return [""]
    return tokens


def escape(arg: str) -> str:
    if not arg:
        return '""'

    quote = None
    escaped: list[str] = []
    for char in arg:
        if char == "\\":
            escaped.append("\\\\")

        elif char == " ":
            if quote is None:
                quote = " "
            escaped.append(" ")

        elif char == "'":
            if quote == "'":
                escaped.append("\\'")
            else:
                if quote in (" ", None):
                    quote = '"'
                escaped.append("'")

        elif char == '"':
            if quote == '"':
                escaped.append('\\"')
            else:
                if quote in (" ", None):
                    quote = "'"
                escaped.append('"')

        else:
            escaped.append(char)

    if quote == " ":
        quote = '"'

    if quote is None:
        return "".join(escaped)
    return "%s%s%s" % (quote, "".join(escaped), quote)


def assemble(args: list[str]) -> str:
    return "/" + " ".join(escape(arg) for arg in args)


def parse_name(line: str) -> str:
    if not line.startswith("/"):
        raise CommandError("Missing starting /")

    name = []
    for char in line[1:]:
        if not char.isalnum():
            break
        name.append(char)
    return "".join(name)


@dataclass
class Connect:
    account: str | None = None


@dataclass
class Disconnect:
    account: str | None = None


@dataclass
class Join:
    room: JID
    nick: str | None = None
    password: str | None = None


@dataclass
class Leave:
    room: JID | None = None


@dataclass
class SendMessage:
    target: JID
    body: str


@dataclass
class RosterGet:
    pass


@dataclass
class SetPresence:
    availability: Availability
    status: str | None = None


@dataclass
class BookmarkList:
    pass


@dataclass
class BookmarkAdd:
    room: JID
    name: str | None = None
    nick: str | None = None
    autojoin: bool = False
    password: str | None = None


@dataclass
class BookmarkRemove:
    room: JID


@dataclass
class FetchHistory:
    target: JID
    start: float | None = None


@dataclass
class OpenChat:
    target: JID


@dataclass
class Subscribe:
    jid: JID


@dataclass
class AcceptSubscription:
    jid: JID


@dataclass
class DenySubscription:
    jid: JID


@dataclass
class ChangeNick:
    room: JID
    nick: str


@dataclass
class SetSubject:
    room: JID
    subject: str


@dataclass
class RoomConfig:
    room: JID


@dataclass
class Quit:
    pass


_PARSERS: dict[str, Callable[..., Any]] = {}
_HELP: dict[str, str] = {}


def command(name: str, help_: str) -> Callable[..., Any]:
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        _PARSERS[name] = func
        _HELP[name] = help_
        return func

    return decorator


def get_help() -> dict[str, str]:
    return dict(_HELP)


def _arg(args: list[str], index: int, name: str) -> str:
    if len(args) <= index:
        raise CommandError("Missing %s argument" % name)
    return args[index]


def _optional_arg(args: list[str], index: int) -> str | None:
    if len(args) <= index:
        return None
    return args[index]


def _jid(value: str) -> JID:
    try:
        return JID.from_string(value)
    except InvalidJid as error:
        raise CommandError("Invalid JID %s: %s" % (value, error))


def _target(args: list[str], index: int, context: JID | None, name: str) -> JID:
    value = _optional_arg(args, index)
    if value is not None:
        return _jid(value)
    if context is None:
        raise CommandError("Missing %s argument" % name)
    return context


def _named_args(args: list[str], names: set[str]) -> tuple[list[str], dict[str, str]]:
    """
    Separates name=value arguments from the positional ones
    """
    positional: list[str] = []
    named: dict[str, str] = {}
    for arg in args:
        name, sep, value = arg.partition("=")
        if sep and name in names:
            if name in named:
                raise CommandError("Multiple occurrence of %s argument" % name)
            named[name] = value
        else:
            positional.append(arg)
    return positional, named


@command("connect", "/connect [account]  Connect the account")
def _parse_connect(args: list[str], _context: JID | None) -> Connect:
    return Connect(account=_optional_arg(args, 1))


@command("disconnect", "/disconnect [account]  Disconnect the account")
def _parse_disconnect(args: list[str], _context: JID | None) -> Disconnect:
    return Disconnect(account=_optional_arg(args, 1))


@command("join", "/join <room>[/<nick>] [password]  Join a room")
def _parse_join(args: list[str], _context: JID | None) -> Join:
    jid = _jid(_arg(args, 1, "room"))
    if jid.localpart is None:
        raise CommandError("Invalid room %s" % jid)
    return Join(
        room=jid.new_as_bare(),
        nick=jid.resource,
        password=_optional_arg(args, 2),
    )


@command("leave", "/leave [room]  Leave the current or the given room")
def _parse_leave(args: list[str], context: JID | None) -> Leave:
    return Leave(room=_target(args, 1, context, "room"))


@command("msg", "/msg <jid> <message>  Send a message")
def _parse_msg(args: list[str], _context: JID | None) -> SendMessage:
    target = _jid(_arg(args, 1, "jid"))
    _arg(args, 2, "message")
    return SendMessage(target=target, body=" ".join(args[2:]))


@command("roster", "/roster  Request the contact list")
def _parse_roster(_args: list[str], _context: JID | None) -> RosterGet:
    return RosterGet()


@command("presence", "/presence <show> [status]  Set the own presence")
def _parse_presence(args: list[str], _context: JID | None) -> SetPresence:
    value = _arg(args, 1, "show")
    try:
        availability = Availability(value)
    except ValueError:
        choices = ", ".join(item.value for item in Availability)
        raise CommandError("Invalid show %s, expected one of: %s" % (value, choices))

    status = " ".join(args[2:]) or None
    return SetPresence(availability=availability, status=status)


@command(
    "bookmark",
    "/bookmark list | add <room> [name=] [nick=] [autojoin=] [password=] "
    "| remove <room>  Manage bookmarks",
)
def _parse_bookmark(args: list[str], context: JID | None) -> Any:
    action = _arg(args, 1, "action")
    if action == "list":
        return BookmarkList()

    if action == "remove":
        return BookmarkRemove(room=_target(args, 2, context, "room"))

    if action == "add":
        positional, named = _named_args(
            args[2:], {"name", "nick", "autojoin", "password"}
        )
        room = _target(positional, 0, context, "room")
        autojoin = named.get("autojoin", "false").lower()
        if autojoin not in ("true", "false", "1", "0", "yes", "no"):
            raise CommandError("Invalid autojoin value %s" % autojoin)

        return BookmarkAdd(
            room=room.new_as_bare(),
            name=named.get("name"),
            nick=named.get("nick"),
            autojoin=autojoin in ("true", "1", "yes"),
            password=named.get("password"),
        )

    raise CommandError("Invalid subcommand %s" % action)


@command("history", "/history [jid] [start]  Fetch archived messages")
def _parse_history(args: list[str], context: JID | None) -> FetchHistory:
    start = None
    rest = args[1:]
    if rest and parse_user_date(rest[-1]) is not None:
        start = parse_user_date(rest.pop())

    if len(rest) > 1:
        raise CommandError("Invalid start %s" % rest[1])

    target = _target(["history"] + rest, 1, context, "jid")
    return FetchHistory(target=target, start=start)


@command("open", "/open <jid>  Open a conversation")
def _parse_open(args: list[str], _context: JID | None) -> OpenChat:
    return OpenChat(target=_jid(_arg(args, 1, "jid")))


@command("subscribe", "/subscribe <jid>  Ask for the presence of a contact")
def _parse_subscribe(args: list[str], _context: JID | None) -> Subscribe:
    return Subscribe(jid=_jid(_arg(args, 1, "jid")).new_as_bare())


@command("accept", "/accept <jid>  Accept a subscription request")
def _parse_accept(args: list[str], _context: JID | None) -> AcceptSubscription:
    return AcceptSubscription(jid=_jid(_arg(args, 1, "jid")).new_as_bare())


@command("deny", "/deny <jid>  Deny a subscription request")
def _parse_deny(args: list[str], _context: JID | None) -> DenySubscription:
    return DenySubscription(jid=_jid(_arg(args, 1, "jid")).new_as_bare())


@command("nick", "/nick <nick>  Change the nickname in the current room")
def _parse_nick(args: list[str], context: JID | None) -> ChangeNick:
    nick = _arg(args, 1, "nick")
    if context is None:
        raise CommandError("No room selected")
    return ChangeNick(room=context, nick=nick)


@command("topic", "/topic <subject>  Change the subject of the current room")
def _parse_topic(args: list[str], context: JID | None) -> SetSubject:
    _arg(args, 1, "subject")
    if context is None:
        raise CommandError("No room selected")
    return SetSubject(room=context, subject=" ".join(args[1:]))


@command("config", "/config [room]  Request the room configuration")
def _parse_config(args: list[str], context: JID | None) -> RoomConfig:
    return RoomConfig(room=_target(args, 1, context, "room"))


@command("quit", "/quit  Disconnect all accounts and exit")
def _parse_quit(_args: list[str], _context: JID | None) -> Quit:
    return Quit()


def parse_command(line: str, context: JID | None = None) -> Any:
    """
    Turns one input line into a command object, lines not starting with
    a slash are messages to the current conversation
    """
    line = line.rstrip("\r\n")
    if not line.startswith("/"):
        if not line:
            raise CommandError("Empty message")
        if context is None:
            raise CommandError("No conversation selected")
        return SendMessage(target=context, body=line)

    args = tokenize(line)
    parser = _PARSERS.get(args[0])
    if parser is None:
        raise CommandError("Unknown command %s" % args[0])

    log.debug("Parsed command: %s", args)
    return parser(args, context)
