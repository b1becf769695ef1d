import unittest
from test.lib.util import ClientTest

from xmppterm.const import MessageType
from xmppterm.jid import JID
from xmppterm.namespaces import Namespace
from xmppterm.structs import StanzaHandler


class MessageParsingTest(ClientTest):

    def setUp(self):
        super().setUp()
        self.establish()
        self.properties = []
        self.client.register_handler(
            StanzaHandler(name="message", callback=self._on_message, priority=40)
        )

    def _on_message(self, _client, _stanza, properties):
        self.properties.append(properties)

    def test_chat_message(self):
        self.receive(
            """
            <message from='bob@example.org/phone' to='alice@example.org/term'
                     type='chat' id='m1'>
                <body>Hello</body>
                <thread>t1</thread>
                <origin-id xmlns='urn:xmpp:sid:0' id='o1'/>
                <stanza-id xmlns='urn:xmpp:sid:0' id='s1' by='alice@example.org'/>
            </message>
            """
        )

        properties = self.properties[0]
        self.assertEqual(properties.type, MessageType.CHAT)
        self.assertEqual(properties.jid, JID.from_string("bob@example.org/phone"))
        self.assertEqual(properties.remote_jid, JID.from_string("bob@example.org"))
        self.assertEqual(properties.body, "Hello")
        self.assertEqual(properties.thread, "t1")
        self.assertEqual(properties.id, "m1")
        self.assertEqual(properties.origin_id, "o1")
        self.assertEqual(
            properties.get_stanza_id(JID.from_string("alice@example.org")), "s1"
        )
        self.assertFalse(properties.self_message)
        self.assertFalse(properties.from_muc)

    def test_stanza_id_requires_attributes(self):
        with self.assertLogs("xmppterm.m.basemessage", level="WARNING"):
            self.receive(
                """
                <message from='bob@example.org/phone' to='alice@example.org'>
                    <body>Hi</body>
                    <stanza-id xmlns='urn:xmpp:sid:0' id='s1'/>
                    <stanza-id xmlns='urn:xmpp:sid:0' by='example.org'/>
                </message>
                """
            )

        properties = self.properties[0]
        self.assertEqual(properties.type, MessageType.NORMAL)
        self.assertEqual(properties.stanza_ids, [])

    def test_missing_to_and_from(self):
        self.receive("<message><body>From the server</body></message>")

        properties = self.properties[0]
        self.assertEqual(properties.to, self.bound_jid)
        self.assertEqual(properties.from_, JID.from_string("alice@example.org"))
        self.assertTrue(properties.self_message)

    def test_message_for_someone_else(self):
        with self.assertLogs("xmppterm.dispatcher", level="WARNING"):
            self.receive(
                """
                <message from='bob@example.org/phone' to='mallory@example.org'>
                    <body>Not for us</body>
                </message>
                """
            )
        self.assertEqual(self.properties, [])

    def test_invalid_type(self):
        with self.assertLogs("xmppterm.m.basemessage", level="WARNING"):
            self.receive(
                """
                <message from='bob@example.org/phone' to='alice@example.org'
                         type='shout'>
                    <body>Hi</body>
                </message>
                """
            )
        self.assertEqual(self.properties, [])

    def test_server_delay(self):
        self.receive(
            """
            <message from='bob@example.org/phone' to='alice@example.org'
                     type='chat'>
                <body>Offline message</body>
                <delay xmlns='urn:xmpp:delay' from='example.org'
                       stamp='2002-09-10T23:08:25Z'/>
                <delay xmlns='urn:xmpp:delay' stamp='2002-09-10T23:05:00Z'/>
            </message>
            """
        )

        properties = self.properties[0]
        self.assertTrue(properties.has_server_delay)
        self.assertEqual(properties.timestamp, 1031699305.0)
        self.assertEqual(properties.user_timestamp, 1031699100.0)

    def test_groupchat_message(self):
        self.receive(
            """
            <message from='chat@rooms.example/carol' to='alice@example.org/term'
                     type='groupchat' id='g1'>
                <body>Hi all</body>
                <stanza-id xmlns='urn:xmpp:sid:0' id='r1' by='chat@rooms.example'/>
            </message>
            """
        )

        properties = self.properties[0]
        self.assertTrue(properties.is_groupchat)
        self.assertTrue(properties.from_muc)
        self.assertEqual(properties.muc_jid, JID.from_string("chat@rooms.example"))
        self.assertEqual(properties.muc_nickname, "carol")
        self.assertEqual(properties.remote_jid, JID.from_string("chat@rooms.example"))
        self.assertFalse(properties.self_message)
        self.assertFalse(properties.is_muc_subject)

    def test_room_subject(self):
        self.receive(
            """
            <message from='chat@rooms.example/carol' to='alice@example.org/term'
                     type='groupchat'>
                <subject>Tea</subject>
                <delay xmlns='urn:xmpp:delay' from='chat@rooms.example'
                       stamp='2002-09-10T23:08:25Z'/>
            </message>
            """
        )

        properties = self.properties[0]
        self.assertTrue(properties.is_muc_subject)
        self.assertEqual(properties.subject, "Tea")
        self.assertEqual(properties.user_timestamp, 1031699305.0)
        self.assertFalse(properties.has_server_delay)

    def test_muc_private_message(self):
        self.receive(
            """
            <message from='chat@rooms.example/carol' to='alice@example.org/term'
                     type='chat'>
                <body>Psst</body>
                <x xmlns='http://jabber.org/protocol/muc#user'/>
            </message>
            """
        )

        properties = self.properties[0]
        self.assertTrue(properties.muc_private_message)
        self.assertEqual(
            properties.remote_jid, JID.from_string("chat@rooms.example/carol")
        )

    def test_error_message(self):
        self.receive(
            """
            <message from='bob@example.org' to='alice@example.org/term'
                     type='error' id='m5'>
                <error type='cancel'>
                    <service-unavailable
                        xmlns='urn:ietf:params:xml:ns:xmpp-stanzas'/>
                </error>
            </message>
            """
        )

        properties = self.properties[0]
        self.assertTrue(properties.is_error)
        self.assertEqual(properties.error.condition, "service-unavailable")


class SendTextTest(ClientTest):

    def test_send_text(self):
        self.establish()
        jid = JID.from_string("bob@example.org")
        message = self.client.get_module("BaseMessage").send_text(jid, "Hello")

        sent = self.connection.last_stanza("message")
        self.assertIs(sent, message)
        self.assertEqual(sent.get("type"), "chat")
        self.assertEqual(sent.get_body(), "Hello")
        self.assertEqual(
            sent.find_tag_attr("origin-id", "id", namespace=Namespace.SID),
            sent.get_id(),
        )


if __name__ == "__main__":
    unittest.main()
