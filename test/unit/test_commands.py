import unittest

from xmppterm.commands import BookmarkAdd
from xmppterm.commands import BookmarkList
from xmppterm.commands import BookmarkRemove
from xmppterm.commands import ChangeNick
from xmppterm.commands import Connect
from xmppterm.commands import FetchHistory
from xmppterm.commands import Join
from xmppterm.commands import Leave
from xmppterm.commands import SendMessage
from xmppterm.commands import SetPresence
from xmppterm.commands import assemble
from xmppterm.commands import get_help
from xmppterm.commands import parse_command
from xmppterm.commands import parse_name
from xmppterm.commands import tokenize
from xmppterm.const import Availability
from xmppterm.errors import CommandError
from xmppterm.jid import JID


ROOM = JID.from_string("chat@rooms.example")


class TokenizeTest(unittest.TestCase):

    def test_tokenize(self):
        tests = [
            ("/", [""]),
            ("/join", ["join"]),
            ("/join  chat@rooms.example ", ["join", "chat@rooms.example"]),
            ("/msg bob@example.org 'hello world'", ["msg", "bob@example.org", "hello world"]),
            ('/msg a "it\'s"', ["msg", "a", "it's"]),
            ("/msg a \"say \\\"hi\\\"\"", ["msg", "a", 'say "hi"']),
            ("/msg a back\\\\slash", ["msg", "a", "back\\slash"]),
            ("/msg a escaped\\ space", ["msg", "a", "escaped space"]),
            ("/msg a '' b", ["msg", "a", "", "b"]),
            ("/msg a pre'quoted part'post", ["msg", "a", "prequoted partpost"]),
        ]

        for line, expected in tests:
            self.assertEqual(tokenize(line), expected, line)

    def test_tokenize_errors(self):
        tests = [
            "join",
            "/msg a 'open",
            '/msg a "open',
            "/msg a trailing\\",
        ]

        for line in tests:
            with self.assertRaises(CommandError):
                tokenize(line)

    def test_assemble(self):
        tests = [
            ["msg", "plain"],
            ["msg", "with space"],
            ["msg", "it's"],
            ["msg", 'say "hi"'],
            ["msg", "a'b\"c d"],
            ["msg", "back\\slash"],
            ["msg", ""],
        ]

        for args in tests:
            self.assertEqual(tokenize(assemble(args)), args, args)

    def test_assemble_quoting(self):
        self.assertEqual(assemble(["join", "chat@rooms.example"]), "/join chat@rooms.example")
        self.assertEqual(assemble(["msg", "a b"]), '/msg "a b"')
        self.assertEqual(assemble(["msg", "it's"]), '/msg "it\'s"')

    def test_parse_name(self):
        self.assertEqual(parse_name("/join chat@rooms.example"), "join")
        self.assertEqual(parse_name("/"), "")
        with self.assertRaises(CommandError):
            parse_name("join")


class ParseCommandTest(unittest.TestCase):

    def test_plain_text_goes_to_context(self):
        command = parse_command("hello there\n", context=ROOM)
        self.assertEqual(command, SendMessage(target=ROOM, body="hello there"))

    def test_plain_text_without_context(self):
        with self.assertRaises(CommandError):
            parse_command("hello")

        with self.assertRaises(CommandError):
            parse_command("", context=ROOM)

    def test_unknown_command(self):
        with self.assertRaises(CommandError):
            parse_command("/frobnicate")

    def test_connect(self):
        self.assertEqual(parse_command("/connect"), Connect(account=None))
        self.assertEqual(parse_command("/connect work"), Connect(account="work"))

    def test_join(self):
        self.assertEqual(
            parse_command("/join chat@rooms.example/alice secret"),
            Join(room=ROOM, nick="alice", password="secret"),
        )
        self.assertEqual(
            parse_command("/join chat@rooms.example"),
            Join(room=ROOM, nick=None, password=None),
        )

    def test_join_errors(self):
        for line in ("/join", "/join rooms.example", "/join @rooms.example"):
            with self.assertRaises(CommandError):
                parse_command(line)

    def test_leave(self):
        self.assertEqual(parse_command("/leave", context=ROOM), Leave(room=ROOM))
        self.assertEqual(
            parse_command("/leave other@rooms.example", context=ROOM),
            Leave(room=JID.from_string("other@rooms.example")),
        )
        with self.assertRaises(CommandError):
            parse_command("/leave")

    def test_msg(self):
        self.assertEqual(
            parse_command("/msg bob@example.org how are you?"),
            SendMessage(target=JID.from_string("bob@example.org"), body="how are you?"),
        )
        with self.assertRaises(CommandError):
            parse_command("/msg bob@example.org")

    def test_presence(self):
        self.assertEqual(
            parse_command("/presence away back soon"),
            SetPresence(availability=Availability.AWAY, status="back soon"),
        )
        self.assertEqual(
            parse_command("/presence dnd"),
            SetPresence(availability=Availability.DND, status=None),
        )
        with self.assertRaises(CommandError):
            parse_command("/presence sleeping")

    def test_bookmark(self):
        self.assertEqual(parse_command("/bookmark list"), BookmarkList())
        self.assertEqual(
            parse_command(
                "/bookmark add chat@rooms.example 'name=Team Chat' nick=alice autojoin=yes"
            ),
            BookmarkAdd(
                room=ROOM, name="Team Chat", nick="alice", autojoin=True, password=None
            ),
        )
        self.assertEqual(
            parse_command("/bookmark add", context=ROOM), BookmarkAdd(room=ROOM)
        )
        self.assertEqual(
            parse_command("/bookmark remove chat@rooms.example"),
            BookmarkRemove(room=ROOM),
        )

    def test_bookmark_errors(self):
        tests = [
            "/bookmark",
            "/bookmark rename chat@rooms.example",
            "/bookmark add chat@rooms.example autojoin=maybe",
            "/bookmark add chat@rooms.example nick=a nick=b",
        ]
        for line in tests:
            with self.assertRaises(CommandError):
                parse_command(line)

    def test_history(self):
        bob = JID.from_string("bob@example.org")
        self.assertEqual(parse_command("/history", context=bob), FetchHistory(target=bob))
        self.assertEqual(
            parse_command("/history bob@example.org 2026-01-01"),
            FetchHistory(target=bob, start=1767225600.0),
        )
        self.assertEqual(
            parse_command("/history 2026-01-01T10:00:00Z", context=bob),
            FetchHistory(target=bob, start=1767261600.0),
        )
        with self.assertRaises(CommandError):
            parse_command("/history bob@example.org yesterday")

    def test_nick_needs_room(self):
        self.assertEqual(
            parse_command("/nick alicia", context=ROOM),
            ChangeNick(room=ROOM, nick="alicia"),
        )
        with self.assertRaises(CommandError):
            parse_command("/nick alicia")

    def test_invalid_jid(self):
        with self.assertRaises(CommandError):
            parse_command("/msg bad@@example.org hi")

    def test_help_covers_all_commands(self):
        help_ = get_help()
        for name in ("connect", "join", "leave", "msg", "bookmark", "history", "quit"):
            self.assertIn(name, help_)
            self.assertTrue(help_[name].startswith("/" + name))


if __name__ == "__main__":
    unittest.main()
