import unittest
from test.lib.const import STREAM_START
from test.lib.util import StanzaHandlerTest
from unittest.mock import patch

from xmppterm.errors import StreamError
from xmppterm.errors import TimeoutStanzaError
from xmppterm.exceptions import NodeProcessed
from xmppterm.namespaces import Namespace
from xmppterm.structs import StanzaHandler


class DispatcherTest(StanzaHandlerTest):

    def test_malformed_xml_stops_parsing(self):
        msgs = []
        errors = []

        def _on_message(_con, stanza, _properties):
            msgs.append(stanza)

        def _on_parsing_error(_dispatcher, _signal_name, text):
            errors.append(text)

        self.dispatcher.register_handler(
            StanzaHandler(name="message", callback=_on_message)
        )
        self.dispatcher.subscribe("parsing-error", _on_parsing_error)

        self.dispatcher.process_data(
            '<message from="test@test.at"><body>hello</body></message>'
        )
        self.assertEqual(1, len(msgs))

        self.dispatcher.process_data('<message from="test@test.at"><body>a</message>')
        self.assertEqual(1, len(msgs))
        self.assertEqual(len(errors), 1)

        # Without a new stream nothing is parsed anymore
        self.dispatcher.process_data("<message><body>still here?</body></message>")
        self.assertEqual(1, len(msgs))

    def test_feature_not_implemented(self):
        self.dispatcher.process_data(
            "<iq type='get' id='q1' from='test.test'>"
            "<query xmlns='urn:example:unknown'/></iq>"
        )

        self.client.send_stanza.assert_called_once()
        error = self.client.send_stanza.call_args[0][0]
        self.assertEqual(error.get("type"), "error")
        self.assertEqual(error.get("id"), "q1")
        self.assertEqual(error.get("to"), "test.test")
        condition = error.find_tag("error").find_tag(
            "feature-not-implemented", namespace=Namespace.STANZAS
        )
        self.assertIsNotNone(condition)

    def test_unhandled_result_gets_no_answer(self):
        self.dispatcher.process_data("<message from='a@b'><body>hi</body></message>")
        self.dispatcher.process_data("<iq type='result' id='unknown'/>")
        self.client.send_stanza.assert_not_called()

    def test_handler_priority(self):
        calls = []

        def _first(_con, _stanza, _properties):
            calls.append("first")

        def _second(_con, _stanza, _properties):
            calls.append("second")
            raise NodeProcessed

        def _third(_con, _stanza, _properties):
            calls.append("third")

        self.dispatcher.register_handler(
            StanzaHandler(name="message", callback=_third, priority=70)
        )
        self.dispatcher.register_handler(
            StanzaHandler(name="message", callback=_second, priority=60)
        )
        self.dispatcher.register_handler(
            StanzaHandler(name="message", callback=_first, priority=55)
        )

        self.dispatcher.process_data("<message from='a@b'><body>hi</body></message>")
        self.assertEqual(calls, ["first", "second"])

    def test_handler_exception_does_not_escape(self):
        calls = []

        def _broken(_con, _stanza, _properties):
            calls.append("broken")
            raise RuntimeError("handler bug")

        self.dispatcher.register_handler(
            StanzaHandler(name="message", callback=_broken, priority=60)
        )

        with self.assertLogs("xmppterm.dispatcher", level="ERROR"):
            self.dispatcher.process_data("<message from='a@b'><body>1</body></message>")
        self.dispatcher.process_data("<message from='a@b'><body>2</body></message>")
        self.assertEqual(calls, ["broken", "broken"])

    def test_message_to_someone_else_dropped(self):
        msgs = []

        def _on_message(_con, stanza, _properties):
            msgs.append(stanza)

        self.dispatcher.register_handler(
            StanzaHandler(name="message", callback=_on_message)
        )
        self.dispatcher.process_data(
            "<message from='a@b' to='other@test.test'><body>hi</body></message>"
        )
        self.assertEqual(msgs, [])

    def test_stream_error(self):
        errors = []

        def _on_stream_error(_dispatcher, _signal_name, condition, _text):
            errors.append(condition)

        self.dispatcher.subscribe("stream-error", _on_stream_error)
        self.dispatcher.process_data(
            "<stream:error><conflict xmlns='urn:ietf:params:xml:ns:xmpp-streams'/>"
            "</stream:error>"
        )
        self.assertEqual(errors, ["conflict"])


class RequestTableTest(StanzaHandlerTest):

    def _on_result(self, _client, result):
        self.results.append(result)

    def setUp(self):
        super().setUp()
        self.results = []

    def test_resolved_exactly_once(self):
        id_ = self.dispatcher.new_request_id()
        self.dispatcher.add_request(id_, self._on_result, timeout=30)
        self.assertTrue(self.dispatcher.is_pending(id_))

        self.dispatcher.process_data("<iq type='result' id='%s'/>" % id_)
        self.assertEqual(len(self.results), 1)
        self.assertEqual(self.results[0].get_id(), id_)
        self.assertFalse(self.dispatcher.is_pending(id_))

        # A duplicate response is logged and discarded
        with self.assertLogs("xmppterm.dispatcher", level="WARNING") as logs:
            self.dispatcher.process_data("<iq type='result' id='%s'/>" % id_)
        self.assertIn("Duplicate or late", logs.output[0])
        self.assertEqual(len(self.results), 1)

    def test_error_response(self):
        id_ = self.dispatcher.new_request_id()
        self.dispatcher.add_request(id_, self._on_result)
        self.dispatcher.process_data(
            "<iq type='error' id='%s'><error type='cancel'>"
            "<item-not-found xmlns='urn:ietf:params:xml:ns:xmpp-stanzas'/>"
            "</error></iq>" % id_
        )
        self.assertEqual(len(self.results), 1)
        self.assertTrue(self.results[0].is_error())

    def test_unknown_id(self):
        with self.assertLogs("xmppterm.dispatcher", level="WARNING") as logs:
            self.dispatcher.process_data("<iq type='result' id='nobody'/>")
        self.assertIn("unknown id", logs.output[0])

    @patch("xmppterm.dispatcher.time.monotonic")
    def test_timeout(self, monotonic):
        monotonic.return_value = 1000.0
        self.dispatcher.add_request("r1", self._on_result, timeout=10)
        self.dispatcher.add_request("r2", self._on_result, timeout=60)

        monotonic.return_value = 1009.0
        self.assertTrue(self.dispatcher._timeout_check())
        self.assertEqual(self.results, [])

        monotonic.return_value = 1010.0
        self.assertTrue(self.dispatcher._timeout_check())
        self.assertEqual(len(self.results), 1)
        self.assertIsInstance(self.results[0], TimeoutStanzaError)
        self.assertFalse(self.dispatcher.is_pending("r1"))
        self.assertTrue(self.dispatcher.is_pending("r2"))

        # The late response must not resolve the request a second time
        with self.assertLogs("xmppterm.dispatcher", level="WARNING"):
            self.dispatcher.process_data("<iq type='result' id='r1'/>")
        self.assertEqual(len(self.results), 1)

        self.dispatcher.process_data("<iq type='result' id='r2'/>")
        self.assertEqual(len(self.results), 2)
        self.assertFalse(self.dispatcher._timeout_check())

    def test_fail_all_requests(self):
        self.dispatcher.add_request("r1", self._on_result)
        self.dispatcher.add_request("r2", self._on_result)

        error = StreamError("malformed-xml")
        self.dispatcher.fail_all_requests(error)
        self.assertEqual(self.results, [error, error])
        self.assertEqual(self.dispatcher.pending_count, 0)

    def test_cancel_request(self):
        self.dispatcher.add_request("r1", self._on_result)
        self.assertTrue(self.dispatcher.cancel_request("r1"))
        self.assertFalse(self.dispatcher.cancel_request("r1"))

        with self.assertLogs("xmppterm.dispatcher", level="WARNING"):
            self.dispatcher.process_data("<iq type='result' id='r1'/>")
        self.assertEqual(self.results, [])

    def test_ids_unique_while_pending(self):
        first = self.dispatcher.new_request_id()
        self.dispatcher.add_request(first, self._on_result)

        self.dispatcher.reset_session()
        # The counter restarts but a pending id is never handed out twice
        second = self.dispatcher.new_request_id()
        self.assertNotEqual(first, second)

        self.dispatcher.add_request(second, self._on_result)
        with self.assertRaises(ValueError):
            self.dispatcher.add_request(second, self._on_result)

    def test_id_reuse_after_resolution(self):
        self.dispatcher.add_request("r1", self._on_result)
        self.dispatcher.process_data("<iq type='result' id='r1'/>")

        # Resolved ids may be used again for a new request
        self.dispatcher.add_request("r1", self._on_result)
        self.dispatcher.process_data("<iq type='result' id='r1'/>")
        self.assertEqual(len(self.results), 2)


class ParserResetTest(StanzaHandlerTest):
    def test_new_stream_after_reset(self):
        msgs = []

        def _on_message(_con, stanza, _properties):
            msgs.append(stanza)

        self.dispatcher.register_handler(
            StanzaHandler(name="message", callback=_on_message)
        )
        self.dispatcher.process_data("<message from='a@b'><body>1</body></message>")

        self.dispatcher.reset_parser()
        self.dispatcher.process_data(STREAM_START)
        self.dispatcher.process_data("<message from='a@b'><body>2</body></message>")
        self.assertEqual(len(msgs), 2)


if __name__ == "__main__":
    unittest.main()
