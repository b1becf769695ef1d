import unittest
from test.lib.const import STREAM_HEADER

from lxml import etree

from xmppterm.elements import Features
from xmppterm.elements import Message
from xmppterm.elements import StreamStart
from xmppterm.stream_parser import TCPStreamParser


class StreamParserTest(unittest.TestCase):
    def setUp(self):
        self.parser = TCPStreamParser("test")
        self.events = []
        self.parser.subscribe("stream-start", self._on_event)
        self.parser.subscribe("element", self._on_event)
        self.parser.subscribe("stream-end", self._on_event)

    def tearDown(self):
        self.parser.destroy()

    def _on_event(self, _parser, signal_name, element):
        self.events.append((signal_name, element))

    def _elements(self):
        return [element for name, element in self.events if name == "element"]

    def test_header_and_features_in_one_chunk(self):
        self.parser.feed(
            STREAM_HEADER % ("abc", "example.org")
            + "<stream:features><bind xmlns='urn:ietf:params:xml:ns:xmpp-bind'/>"
            "</stream:features>"
        )

        name, header = self.events[0]
        self.assertEqual(name, "stream-start")
        self.assertIsInstance(header, StreamStart)
        self.assertEqual(header.get("id"), "abc")
        # The dispatched header carries no children
        self.assertEqual(len(header), 0)

        features = self._elements()
        self.assertEqual(len(features), 1)
        self.assertIsInstance(features[0], Features)
        self.assertTrue(features[0].has_bind())

    def test_arbitrary_chunking(self):
        data = (
            STREAM_HEADER % ("abc", "example.org")
            + "<message from='bob@example.org/x' to='alice@example.org' id='m1'>"
            "<body>héllo wörld</body></message>"
            "<message from='bob@example.org/x' to='alice@example.org' id='m2'>"
            "<body>second</body></message>"
        )

        # Feed one character at a time, element boundaries never align
        # with chunk boundaries
        for char in data:
            self.parser.feed(char)

        messages = self._elements()
        self.assertEqual([message.get("id") for message in messages], ["m1", "m2"])
        self.assertIsInstance(messages[0], Message)
        self.assertEqual(messages[0].get_body(), "héllo wörld")

    def test_each_element_once(self):
        self.parser.feed(STREAM_HEADER % ("abc", "example.org"))
        self.parser.feed("<message id='m1'><body>a</bo")
        self.assertEqual(self._elements(), [])
        self.parser.feed("dy></message><message id='m2'/>")
        self.parser.feed("<message id='m3'/>")

        ids = [message.get("id") for message in self._elements()]
        self.assertEqual(ids, ["m1", "m2", "m3"])

    def test_stream_end(self):
        self.parser.feed(STREAM_HEADER % ("abc", "example.org"))
        self.parser.feed("<message id='m1'/></stream:stream>")

        self.assertEqual(
            [name for name, _element in self.events],
            ["stream-start", "element", "stream-end"],
        )
        self.assertTrue(self.parser.is_destroyed)

    def test_malformed_input(self):
        self.parser.feed(STREAM_HEADER % ("abc", "example.org"))
        with self.assertRaises(etree.XMLSyntaxError):
            self.parser.feed("<message><body>a</message>")

    def test_feed_after_destroy(self):
        self.parser.destroy()
        with self.assertRaises(ValueError):
            self.parser.feed("<a/>")


if __name__ == "__main__":
    unittest.main()
