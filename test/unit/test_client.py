import unittest
from test.lib.const import FEATURES_SASL
from test.lib.const import FEATURES_STARTTLS
from test.lib.const import STREAM_HEADER
from test.lib.const import TLS_PROCEED
from test.lib.util import ClientTest
from unittest.mock import patch

from gi.repository import GLib

from xmppterm.const import ConnectionState
from xmppterm.const import TlsPolicy
from xmppterm.elements import StreamEnd
from xmppterm.elements import StreamStart
from xmppterm.errors import AuthError
from xmppterm.errors import StreamError
from xmppterm.errors import TimeoutStanzaError
from xmppterm.errors import TransportError
from xmppterm.jid import JID
from xmppterm.namespaces import Namespace


class NegotiationTest(ClientTest):

    def test_connect_reaches_ready(self):
        self.establish()

        self.assertEqual(
            [state for state, _error in self.states],
            [
                ConnectionState.CONNECTING,
                ConnectionState.STREAM_NEGOTIATING,
                ConnectionState.TLS_UPGRADING,
                ConnectionState.AUTHENTICATING,
                ConnectionState.BINDING_RESOURCE,
                ConnectionState.READY,
            ],
        )
        self.assertEqual(self.client.get_bound_jid(), self.bound_jid)
        self.assertTrue(self.client.is_stream_secure)
        self.assertTrue(self.connection.tls_started)
        self.assertEqual(self.client.session.stream_id, "s3")

    def test_negotiation_steps(self):
        self.client.connect()
        self.assertTrue(self.connection.connect_called)
        self.assertEqual(self.connection.domain, "example.org")

        self.connection.notify("connected")
        self.assertIsInstance(self.connection.sent[-1], StreamStart)
        self.assertEqual(self.connection.sent[-1].get("to"), "example.org")

        self.receive(STREAM_HEADER % ("s1", self.domain))
        self.receive(FEATURES_STARTTLS)
        self.assertEqual(self.connection.sent[-1].localname, "starttls")

        self.receive(TLS_PROCEED)
        self.assertTrue(self.connection.tls_started)
        self.assertIsInstance(self.connection.sent[-1], StreamStart)

        self.receive(STREAM_HEADER % ("s2", self.domain))
        self.receive(FEATURES_SASL)
        auth = self.connection.sent[-1]
        self.assertEqual(auth.localname, "auth")
        self.assertEqual(auth.namespace, Namespace.SASL)
        self.assertEqual(auth.get("mechanism"), "PLAIN")
        self.assertEqual(self.client.connection_state, ConnectionState.AUTHENTICATING)

    def test_invalid_stream_header(self):
        self.client.connect()
        self.connection.notify("connected")
        self.receive(STREAM_HEADER % ("s1", "evil.example"))

        # The client closes its side and waits for the server
        self.assertIsInstance(self.connection.sent[-1], StreamEnd)
        self.assertTrue(self.connection.output_closed)

        self.connection.disconnect()
        state, error = self.states[-1]
        self.assertEqual(state, ConnectionState.DISCONNECTED)
        self.assertIsInstance(error, StreamError)
        self.assertEqual(error.condition, "invalid-header")

    def test_tls_required_with_plain_policy(self):
        self.client.set_tls_policy(TlsPolicy.PLAIN)
        self.client.connect()
        self.connection.notify("connected")
        self.receive(STREAM_HEADER % ("s1", self.domain))
        self.receive(FEATURES_STARTTLS)
        self.connection.disconnect()

        state, error = self.states[-1]
        self.assertEqual(state, ConnectionState.DISCONNECTED)
        self.assertEqual(error.condition, "tls-required")

    def test_tls_setup_error(self):
        self.client.connect()
        self.connection.notify("connected")
        self.receive(STREAM_HEADER % ("s1", self.domain))
        self.receive(FEATURES_STARTTLS)

        error = GLib.Error("TLS support is not available", "g-tls-error-quark", 0)
        with patch.object(self.connection, "start_tls_negotiation", side_effect=error):
            self.receive(TLS_PROCEED)

        self.assertTrue(self.connection.closed)
        self.assertNotIsInstance(self.connection.sent[-1], StreamStart)
        state, error = self.states[-1]
        self.assertEqual(state, ConnectionState.DISCONNECTED)
        self.assertIsInstance(error, TransportError)
        self.assertEqual(error.kind, TransportError.TLS_HANDSHAKE)
        self.assertIsNone(self.client.session)

    def test_auth_failure(self):
        self.client.connect()
        self.connection.notify("connected")
        self.receive(STREAM_HEADER % ("s1", self.domain))
        self.receive(FEATURES_STARTTLS)
        self.receive(TLS_PROCEED)
        self.receive(STREAM_HEADER % ("s2", self.domain))
        self.receive(FEATURES_SASL)
        self.receive(
            "<failure xmlns='urn:ietf:params:xml:ns:xmpp-sasl'><not-authorized/></failure>"
        )
        self.connection.disconnect()

        state, error = self.states[-1]
        self.assertEqual(state, ConnectionState.DISCONNECTED)
        self.assertIsInstance(error, AuthError)
        self.assertEqual(error.condition, "not-authorized")

    def test_connection_refused(self):
        self.client.connect()
        self.connection.fail(TransportError(TransportError.REFUSED))

        state, error = self.states[-1]
        # Never reached Ready, nothing to reconnect to
        self.assertEqual(state, ConnectionState.DISCONNECTED)
        self.assertEqual(error.kind, TransportError.REFUSED)


class SessionTest(ClientTest):

    def _on_task_finished(self, task):
        self.finished.append(task)

    def setUp(self):
        super().setUp()
        self.finished = []

    def test_ping_answered(self):
        self.establish()
        self.receive(
            "<iq type='get' id='p1' from='example.org'><ping xmlns='urn:xmpp:ping'/></iq>"
        )

        pong = self.connection.last_stanza("iq")
        self.assertEqual(pong.get("type"), "result")
        self.assertEqual(pong.get("id"), "p1")
        self.assertEqual(pong.get("to"), "example.org")

    def test_unknown_iq_answered_with_error(self):
        self.establish()
        self.receive(
            "<iq type='set' id='x1' from='bob@example.org/a'>"
            "<command xmlns='urn:example:unknown'/></iq>"
        )

        error = self.connection.last_stanza("iq")
        self.assertEqual(error.get("type"), "error")
        self.assertIsNotNone(
            error.find_tag("error").find_tag(
                "feature-not-implemented", namespace=Namespace.STANZAS
            )
        )

    def test_malformed_xml_ends_session(self):
        self.establish()
        task = self.client.get_module("Ping").ping(
            JID.from_string("example.org"), callback=self._on_task_finished
        )

        self.receive("<message><body>broken</message>")

        self.assertTrue(self.connection.closed)
        state, error = self.states[-1]
        self.assertEqual(state, ConnectionState.RECONNECTING)
        self.assertIsInstance(error, StreamError)
        self.assertEqual(error.condition, "malformed-xml")

        # Pending requests are resolved with the session error
        self.assertEqual(self.finished, [task])
        with self.assertRaises(StreamError):
            task.finish()
        self.assertEqual(self.client.dispatcher.pending_count, 0)

    def test_reconnect_after_drop(self):
        self.establish()
        self.connection.drop(TransportError(TransportError.RESET))

        state, error = self.states[-1]
        self.assertEqual(state, ConnectionState.RECONNECTING)
        self.assertIsInstance(error, TransportError)
        self.assertIsNone(self.client.session)
        self.assertEqual(self.client.backoff.attempts, 1)

        self.client._on_reconnect_timeout()
        self.assertEqual(len(self.connections), 2)
        self.assertEqual(self.client.connection_state, ConnectionState.CONNECTING)

        self.establish()
        self.assertEqual(self.client.session.number, 2)
        self.assertEqual(self.client.backoff.attempts, 0)

    def test_no_reconnect_after_auth_failure(self):
        self.establish()
        self.connection.drop(TransportError(TransportError.RESET))
        self.client._on_reconnect_timeout()

        self.connection.notify("connected")
        self.receive(STREAM_HEADER % ("s1", self.domain))
        self.receive(FEATURES_STARTTLS)
        self.receive(TLS_PROCEED)
        self.receive(STREAM_HEADER % ("s2", self.domain))
        self.receive(FEATURES_SASL)
        self.receive(
            "<failure xmlns='urn:ietf:params:xml:ns:xmpp-sasl'><not-authorized/></failure>"
        )
        self.connection.disconnect()

        state, error = self.states[-1]
        self.assertEqual(state, ConnectionState.DISCONNECTED)
        self.assertIsInstance(error, AuthError)

    def test_graceful_disconnect(self):
        self.establish()
        self.client.disconnect()

        self.assertIsInstance(self.connection.sent[-1], StreamEnd)
        self.assertTrue(self.connection.output_closed)
        self.assertFalse(self.connection.closed)

        # The server answers with its own stream end
        self.receive("</stream:stream>")

        self.assertTrue(self.connection.closed)
        self.assertEqual(self.states[-1], (ConnectionState.DISCONNECTED, None))

    def test_server_closes_stream(self):
        self.establish()
        self.receive("</stream:stream>")

        # Our side is closed in response
        self.assertIsInstance(self.connection.sent[-1], StreamEnd)
        self.assertTrue(self.connection.closed)

        state, error = self.states[-1]
        self.assertEqual(state, ConnectionState.RECONNECTING)
        self.assertEqual(error.condition, "stream-end")

    def test_user_disconnect_while_reconnecting(self):
        self.establish()
        self.connection.drop(TransportError(TransportError.RESET))
        self.client.disconnect()

        self.assertEqual(self.states[-1], (ConnectionState.DISCONNECTED, None))

    def test_keepalive_ping_timeout(self):
        self.establish()
        self.client._ping()

        ping = self.connection.last_stanza("iq")
        self.assertEqual(ping.get("to"), "example.org")
        self.assertTrue(ping.has_tag("ping", namespace=Namespace.PING))

        with patch("xmppterm.dispatcher.time.monotonic", return_value=10**9):
            self.client.dispatcher._timeout_check()

        state, error = self.states[-1]
        self.assertEqual(state, ConnectionState.RECONNECTING)
        self.assertIsInstance(error, TransportError)
        self.assertEqual(error.kind, TransportError.RESET)

    def test_keepalive_pong(self):
        self.establish()
        self.client._ping()
        self.respond(self.connection.last_stanza("iq"))

        self.assertTrue(self.client.is_ready)

    def test_request_timeout(self):
        self.establish()
        task = self.client.get_module("Ping").ping(
            JID.from_string("bob@example.org/a"),
            timeout=5,
            callback=self._on_task_finished,
        )

        with patch("xmppterm.dispatcher.time.monotonic", return_value=10**9):
            self.client.dispatcher._timeout_check()

        self.assertEqual(self.finished, [task])
        with self.assertRaises(TimeoutStanzaError):
            task.finish()
        # A request timeout does not end the session
        self.assertTrue(self.client.is_ready)

    def test_send_while_offline(self):
        with self.assertLogs("xmppterm.stream", level="WARNING"):
            self.client.get_module("BaseMessage").send_text(
                JID.from_string("bob@example.org"), "hello"
            )


if __name__ == "__main__":
    unittest.main()
