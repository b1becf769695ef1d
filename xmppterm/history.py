# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Iterator

import bisect
import dataclasses
import logging
from dataclasses import dataclass

from xmppterm.const import MessageType
from xmppterm.jid import JID
from xmppterm.structs import MessageProperties

log = logging.getLogger("xmppterm.history")


@dataclass(frozen=True)
class MessageRecord:
    conversation: JID
    from_: JID | None
    body: str
    timestamp: float
    type: MessageType = MessageType.CHAT
    stanza_id: str | None = None
    origin_id: str | None = None
    message_id: str | None = None
    outgoing: bool = False
    archived: bool = False

    @property
    def identity(self) -> tuple[Any, ...]:
        """
        Stable identity used to deduplicate live and archived copies of
        the same message
        """
        if self.stanza_id is not None:
            return (self.conversation, "stanza-id", self.stanza_id)
        return (self.conversation, "from", str(self.from_), self.timestamp)

    @property
    def nickname(self) -> str | None:
        if self.from_ is None:
            return None
        if self.type.is_groupchat:
            return self.from_.resource
        return self.from_.bare

    @classmethod
    def from_properties(
        cls,
        properties: MessageProperties,
        conversation: JID,
        archive: JID | None = None,
        outgoing: bool = False,
    ) -> MessageRecord:

        stanza_id = None
        archived = properties.is_mam_message
        if properties.mam is not None:
            stanza_id = properties.mam.id
        elif archive is not None:
            # Only the archive itself is trusted to assign stanza ids
            stanza_id = properties.get_stanza_id(archive)

        timestamp = properties.timestamp
        if properties.mam is not None:
            timestamp = properties.mam.timestamp
        elif properties.user_timestamp is not None:
            timestamp = properties.user_timestamp

        return cls(
            conversation=conversation,
            from_=properties.from_,
            body=properties.body or "",
            timestamp=timestamp,
            type=properties.type,
            stanza_id=stanza_id,
            origin_id=properties.origin_id,
            message_id=properties.id,
            outgoing=outgoing,
            archived=archived,
        )


class Conversation:
    """
    Timeline of one conversation ordered by timestamp

    Records with equal timestamps keep their insertion order. Adding a
    record whose identity is already known is a no-op, so replaying
    archive pages is idempotent.
    """

    def __init__(self, jid: JID, type_: MessageType = MessageType.CHAT) -> None:
        self.jid = jid
        self.type = type_
        self._records: list[MessageRecord] = []
        self._timestamps: list[float] = []
        self._identities: set[tuple[Any, ...]] = set()
        self._origin_ids: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[MessageRecord]:
        return iter(self._records)

    @property
    def records(self) -> list[MessageRecord]:
        return list(self._records)

    def last(self, count: int) -> list[MessageRecord]:
        if count <= 0:
            return []
        return self._records[-count:]

    def contains(self, record: MessageRecord) -> bool:
        return record.identity in self._identities

    def add(self, record: MessageRecord) -> bool:
        """
        Returns True if the record was inserted, False for a duplicate
        """
        if record.identity in self._identities:
            return False

        if record.origin_id is not None and record.origin_id in self._origin_ids:
            # Our own message coming back from the room or the archive
            self._upgrade_stanza_id(record)
            return False

        index = bisect.bisect_right(self._timestamps, record.timestamp)
        self._records.insert(index, record)
        self._timestamps.insert(index, record.timestamp)
        self._identities.add(record.identity)
        self._reindex_origin_ids(index)
        return True

    def merge(self, records: list[MessageRecord]) -> list[MessageRecord]:
        """
        Adds all records, returns the ones which were new
        """
        return [record for record in records if self.add(record)]

    def _upgrade_stanza_id(self, record: MessageRecord) -> None:
        assert record.origin_id is not None
        index = self._origin_ids[record.origin_id]
        existing = self._records[index]
        self._identities.add(record.identity)
        if existing.stanza_id is None and record.stanza_id is not None:
            self._records[index] = dataclasses.replace(
                existing, stanza_id=record.stanza_id
            )

    def _reindex_origin_ids(self, start: int) -> None:
        for index in range(start, len(self._records)):
            origin_id = self._records[index].origin_id
            if origin_id is not None:
                self._origin_ids[origin_id] = index


class History:
    def __init__(self) -> None:
        self._conversations: dict[JID, Conversation] = {}

    def __contains__(self, jid: JID) -> bool:
        return jid in self._conversations

    def get(self, jid: JID, type_: MessageType = MessageType.CHAT) -> Conversation:
        conversation = self._conversations.get(jid)
        if conversation is None:
            log.debug("New conversation: %s", jid)
            conversation = Conversation(jid, type_)
            self._conversations[jid] = conversation
        return conversation

    def find(self, jid: JID) -> Conversation | None:
        return self._conversations.get(jid)

    def add(self, record: MessageRecord) -> bool:
        return self.get(record.conversation, record.type).add(record)

    def conversations(self) -> list[Conversation]:
        return list(self._conversations.values())
