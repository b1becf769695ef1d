import unittest

from xmppterm.const import MessageType
from xmppterm.history import Conversation
from xmppterm.history import History
from xmppterm.history import MessageRecord
from xmppterm.jid import JID


BOB = JID.from_string("bob@example.org")
BOB_PHONE = JID.from_string("bob@example.org/phone")


def record(body, timestamp, **kwargs):
    kwargs.setdefault("from_", BOB_PHONE)
    return MessageRecord(conversation=BOB, body=body, timestamp=timestamp, **kwargs)


class ConversationTest(unittest.TestCase):

    def setUp(self):
        self.conversation = Conversation(BOB)

    def _bodies(self):
        return [item.body for item in self.conversation]

    def test_ordered_by_timestamp(self):
        self.conversation.add(record("three", 30.0))
        self.conversation.add(record("one", 10.0))
        self.conversation.add(record("two", 20.0))
        self.assertEqual(self._bodies(), ["one", "two", "three"])

    def test_equal_timestamps_keep_insertion_order(self):
        self.conversation.add(record("first", 10.0, stanza_id="s1"))
        self.conversation.add(record("second", 10.0, stanza_id="s2"))
        self.conversation.add(record("third", 10.0, stanza_id="s3"))
        self.assertEqual(self._bodies(), ["first", "second", "third"])

    def test_duplicate_stanza_id(self):
        self.assertTrue(self.conversation.add(record("hi", 10.0, stanza_id="s1")))
        # An archived copy may carry a different timestamp
        self.assertFalse(
            self.conversation.add(record("hi", 11.0, stanza_id="s1", archived=True))
        )
        self.assertEqual(len(self.conversation), 1)

    def test_duplicate_without_stanza_id(self):
        self.assertTrue(self.conversation.add(record("hi", 10.0)))
        self.assertFalse(self.conversation.add(record("hi", 10.0)))
        # Same sender, different time is another message
        self.assertTrue(self.conversation.add(record("hi", 12.0)))
        self.assertEqual(len(self.conversation), 2)

    def test_own_message_by_origin_id(self):
        sent = record("hello", 10.0, from_=None, origin_id="o1", outgoing=True)
        self.assertTrue(self.conversation.add(sent))

        archived = record(
            "hello",
            10.5,
            from_=JID.from_string("alice@example.org/term"),
            origin_id="o1",
            stanza_id="s7",
            outgoing=True,
        )
        self.assertFalse(self.conversation.add(archived))

        # The local copy learns its archive id
        self.assertEqual(len(self.conversation), 1)
        self.assertEqual(self.conversation.records[0].stanza_id, "s7")
        self.assertTrue(self.conversation.contains(archived))

        # Replaying the archive copy is still a no-op
        self.assertFalse(self.conversation.add(archived))

    def test_origin_index_follows_inserts(self):
        self.conversation.add(record("mine", 20.0, origin_id="o1", outgoing=True))
        self.conversation.add(record("older", 10.0, stanza_id="s1"))

        self.conversation.add(record("mine", 20.0, origin_id="o1", stanza_id="s2"))
        records = self.conversation.records
        self.assertEqual([item.body for item in records], ["older", "mine"])
        self.assertEqual(records[1].stanza_id, "s2")
        self.assertEqual(records[0].stanza_id, "s1")

    def test_merge(self):
        self.conversation.add(record("live", 15.0, stanza_id="s2"))
        new = self.conversation.merge(
            [
                record("a", 10.0, stanza_id="s1"),
                record("live", 15.0, stanza_id="s2"),
                record("b", 20.0, stanza_id="s3"),
            ]
        )
        self.assertEqual([item.stanza_id for item in new], ["s1", "s3"])
        self.assertEqual(self._bodies(), ["a", "live", "b"])

    def test_last(self):
        for index in range(5):
            self.conversation.add(record(str(index), float(index)))
        self.assertEqual([item.body for item in self.conversation.last(2)], ["3", "4"])
        self.assertEqual(self.conversation.last(0), [])
        self.assertEqual(len(self.conversation.last(10)), 5)


class MessageRecordTest(unittest.TestCase):

    def test_nickname(self):
        self.assertEqual(record("hi", 1.0).nickname, "bob@example.org")

        groupchat = MessageRecord(
            conversation=JID.from_string("chat@rooms.example"),
            from_=JID.from_string("chat@rooms.example/carol"),
            body="hi",
            timestamp=1.0,
            type=MessageType.GROUPCHAT,
        )
        self.assertEqual(groupchat.nickname, "carol")

    def test_identity(self):
        self.assertEqual(
            record("a", 1.0, stanza_id="s1").identity,
            record("b", 2.0, stanza_id="s1").identity,
        )
        self.assertNotEqual(record("a", 1.0).identity, record("a", 2.0).identity)


class HistoryTest(unittest.TestCase):

    def test_conversations(self):
        history = History()
        self.assertNotIn(BOB, history)
        self.assertIsNone(history.find(BOB))

        self.assertTrue(history.add(record("hi", 1.0)))
        self.assertIn(BOB, history)
        self.assertIs(history.get(BOB), history.find(BOB))
        self.assertEqual(len(history.conversations()), 1)

        room = JID.from_string("chat@rooms.example")
        conversation = history.get(room, MessageType.GROUPCHAT)
        self.assertEqual(conversation.type, MessageType.GROUPCHAT)


if __name__ == "__main__":
    unittest.main()
