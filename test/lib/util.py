import unittest
from test.lib.client import TestConnection
from test.lib.const import BIND_RESULT
from test.lib.const import FEATURES_BIND
from test.lib.const import FEATURES_SASL
from test.lib.const import FEATURES_STARTTLS
from test.lib.const import SASL_SUCCESS
from test.lib.const import STREAM_HEADER
from test.lib.const import STREAM_START
from test.lib.const import TLS_PROCEED
from unittest.mock import Mock
from unittest.mock import patch

from xmppterm.client import Client
from xmppterm.const import ConnectionState
from xmppterm.dispatcher import StanzaDispatcher
from xmppterm.jid import JID


class StanzaHandlerTest(unittest.TestCase):
    def setUp(self):
        # Setup mock client
        self.client = Mock()
        self.client.log_context = "test"
        self.dispatcher = StanzaDispatcher(self.client)

        self.client.get_bound_jid.return_value = JID.from_string(
            "test@test.test/res"
        )

        self.dispatcher.reset_parser()
        self.dispatcher.process_data(STREAM_START)

    def tearDown(self):
        self.dispatcher.cleanup()


class ClientTest(unittest.TestCase):
    """
    Runs a real Client against an in-memory connection, the test plays
    the server by feeding raw XML
    """

    domain = "example.org"
    username = "alice"
    resource = "term"

    def setUp(self):
        self.connections: list[TestConnection] = []
        patcher = patch(
            "xmppterm.client.TCPConnection", side_effect=self._create_connection
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        self.client = Client(log_context="test")
        self.client.set_domain(self.domain)
        self.client.set_username(self.username)
        self.client.set_resource(self.resource)
        self.client.set_password("secret")  # noqa: S106
        self.addCleanup(self.client.destroy)

        self.states: list[tuple[ConnectionState, object]] = []
        self.client.subscribe("state-changed", self._on_state_changed)

    @property
    def bound_jid(self) -> JID:
        return JID.from_string(
            "%s@%s/%s" % (self.username, self.domain, self.resource)
        )

    def _create_connection(self, *args):
        connection = TestConnection(*args)
        self.connections.append(connection)
        return connection

    def _on_state_changed(self, _client, _signal_name, state, error):
        self.states.append((state, error))

    @property
    def connection(self) -> TestConnection:
        return self.connections[-1]

    def receive(self, data: str) -> None:
        self.connection.receive(data)

    def establish(self, features: str = "") -> None:
        if self.client.connection_state.is_disconnected:
            self.client.connect()

        self.connection.notify("connected")
        self.receive(STREAM_HEADER % ("s1", self.domain))
        self.receive(FEATURES_STARTTLS)
        self.receive(TLS_PROCEED)
        self.receive(STREAM_HEADER % ("s2", self.domain))
        self.receive(FEATURES_SASL)
        self.receive(SASL_SUCCESS)
        self.receive(STREAM_HEADER % ("s3", self.domain))
        self.receive(FEATURES_BIND % features)

        bind = self.connection.last_stanza("iq")
        # Stanzas sent in reaction to the session becoming ready stay
        self.connection.clear()
        self.receive(BIND_RESULT % (bind.get_id(), self.bound_jid))
        self.assertTrue(self.client.is_ready)

    def respond(self, request, payload: str = "", type_: str = "result") -> None:
        """
        Sends the response for a request the client sent
        """
        from_ = request.get("to")
        from_attr = "" if from_ is None else " from='%s'" % from_
        self.receive(
            "<iq type='%s' id='%s'%s>%s</iq>"
            % (type_, request.get_id(), from_attr, payload)
        )
