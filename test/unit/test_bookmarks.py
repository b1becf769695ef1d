import unittest
from test.lib.util import ClientTest

from xmppterm import builder
from xmppterm.errors import MalformedStanzaError
from xmppterm.errors import StanzaError
from xmppterm.jid import JID
from xmppterm.modules.bookmarks import build_storage_node
from xmppterm.modules.bookmarks import parse_storage_node
from xmppterm.namespaces import Namespace
from xmppterm.structs import BookmarkData
from xmppterm.structs import CommonResult


STORAGE = """
    <query xmlns='jabber:iq:private'>
        <storage xmlns='storage:bookmarks'>
            <conference name='The Play&apos;s the Thing'
                        autojoin='true'
                        jid='theplay@conference.shakespeare.lit'>
                <nick>JC</nick>
                <password>pass</password>
            </conference>
            <conference name='Second room'
                        autojoin='0'
                        jid='second@conference.shakespeare.lit'/>
            <conference jid='conference.shakespeare.lit' autojoin='true'/>
            <conference jid='third@conference.shakespeare.lit/nick'/>
            <conference jid='fourth@conference.shakespeare.lit' autojoin='maybe'>
                <nick></nick>
            </conference>
        </storage>
    </query>
"""

EXPECTED = [
    BookmarkData(
        jid=JID.from_string("theplay@conference.shakespeare.lit"),
        name="The Play's the Thing",
        autojoin=True,
        password="pass",  # noqa: S106
        nick="JC",
    ),
    BookmarkData(
        jid=JID.from_string("second@conference.shakespeare.lit"),
        name="Second room",
        autojoin=False,
        password=None,
        nick=None,
    ),
    BookmarkData(
        jid=JID.from_string("fourth@conference.shakespeare.lit"),
        autojoin=False,
    ),
]


class PrivateBookmarksTest(ClientTest):

    def setUp(self):
        super().setUp()
        self.establish()
        self.results = []

    def _on_finished(self, task):
        self.results.append(task)

    def test_request_bookmarks(self):
        self.client.get_module("PrivateBookmarks").request_bookmarks(
            callback=self._on_finished
        )

        request = self.connection.last_stanza("iq")
        self.assertEqual(request.get("type"), "get")
        query = request.find_tag("query", namespace=Namespace.PRIVATE)
        self.assertTrue(query.has_tag("storage", namespace=Namespace.BOOKMARKS))

        with self.assertLogs("xmppterm.m.privatebookmarks", level="WARNING"):
            self.respond(request, STORAGE)

        self.assertEqual(self.results[0].finish(), EXPECTED)

    def test_request_without_storage(self):
        self.client.get_module("PrivateBookmarks").request_bookmarks(
            callback=self._on_finished
        )
        self.respond(self.connection.last_stanza("iq"), "<query xmlns='jabber:iq:private'/>")

        with self.assertRaises(MalformedStanzaError):
            self.results[0].finish()

    def test_request_error(self):
        self.client.get_module("PrivateBookmarks").request_bookmarks(
            callback=self._on_finished
        )
        self.respond(
            self.connection.last_stanza("iq"),
            "<error type='cancel'>"
            "<service-unavailable xmlns='urn:ietf:params:xml:ns:xmpp-stanzas'/>"
            "</error>",
            type_="error",
        )

        with self.assertRaises(StanzaError):
            self.results[0].finish()

    def test_store_bookmarks(self):
        self.client.get_module("PrivateBookmarks").store_bookmarks(
            EXPECTED[:2], callback=self._on_finished
        )

        request = self.connection.last_stanza("iq")
        self.assertEqual(request.get("type"), "set")
        storage = request.find_tag("query", namespace=Namespace.PRIVATE).find_tag(
            "storage", namespace=Namespace.BOOKMARKS
        )
        conferences = storage.find_tags("conference")
        self.assertEqual(len(conferences), 2)
        self.assertEqual(conferences[0].get("autojoin"), "true")
        self.assertEqual(conferences[0].find_tag_text("nick"), "JC")
        self.assertEqual(conferences[1].get("autojoin"), "false")
        self.assertIsNone(conferences[1].find_tag("password"))

        self.respond(request)
        self.assertIsInstance(self.results[0].finish(), CommonResult)


class StorageNodeTest(unittest.TestCase):

    def test_build_and_parse(self):
        storage = build_storage_node(EXPECTED)
        parsed = parse_storage_node(builder.parse(storage.tostring()), _NullLog())
        self.assertEqual(parsed, EXPECTED)


class _NullLog:
    def warning(self, *args):
        raise AssertionError("Unexpected warning: %s" % (args,))


if __name__ == "__main__":
    unittest.main()
