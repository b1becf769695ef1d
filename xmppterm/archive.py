# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Generator
from typing import NamedTuple
from typing import TYPE_CHECKING

import logging
from dataclasses import dataclass
from dataclasses import field

from xmppterm.elements import Message
from xmppterm.errors import BaseError
from xmppterm.errors import CancelledError
from xmppterm.errors import MamUnsupported
from xmppterm.exceptions import NodeProcessed
from xmppterm.history import History
from xmppterm.history import MessageRecord
from xmppterm.jid import JID
from xmppterm.structs import MAMQueryData
from xmppterm.structs import MessageProperties
from xmppterm.structs import StanzaHandler
from xmppterm.task import Task
from xmppterm.task import generic_task
from xmppterm.util import LogAdapter
from xmppterm.util import Observable
from xmppterm.util import generate_id

if TYPE_CHECKING:
    from xmppterm.client import Client

log = logging.getLogger("xmppterm.archive")

PAGE_SIZE = 100
RECENT_PAGE_SIZE = 50


@dataclass
class ArchiveQuery:
    query_id: str
    archive: JID
    with_: JID | None = None
    start: float | None = None
    end: float | None = None
    after: str | None = None
    max_: int = PAGE_SIZE
    backward: bool = False
    max_pages: int | None = None
    nick: str | None = None
    pages: int = 0
    complete: bool = False
    # Messages of the page currently requested
    page: list[MessageRecord] = field(default_factory=list)

    @property
    def is_room_archive(self) -> bool:
        return self.nick is not None


class ArchiveResult(NamedTuple):
    archive: JID
    records: list[MessageRecord]
    complete: bool


class ArchiveClient(Observable):
    """
    Paged retrieval from message archives, merged into the history

    Signals:
        history-loaded      (JID, list[MessageRecord], bool)
        request-failed      (BaseError)
    """

    def __init__(self, client: Client, history: History) -> None:
        self._log = LogAdapter(log, {"context": client.log_context})
        Observable.__init__(self, self._log)

        self._client = client
        self._history = history
        self._queries: dict[str, ArchiveQuery] = {}

        self.handlers = [
            StanzaHandler(
                name="message", callback=self._process_mam_message, priority=30
            ),
        ]
        for handler in self.handlers:
            client.register_handler(handler)

    @property
    def active_queries(self) -> list[ArchiveQuery]:
        return list(self._queries.values())

    def query(
        self,
        archive: JID,
        with_: JID | None = None,
        start: float | None = None,
        end: float | None = None,
        after: str | None = None,
        max_: int = PAGE_SIZE,
        max_pages: int | None = None,
        nick: str | None = None,
        callback: Any = None,
    ) -> Task:
        """
        Fetches the archive forward from the given position until the
        server reports the result set as complete
        """
        query = ArchiveQuery(
            query_id=generate_id(),
            archive=archive.new_as_bare(),
            with_=with_,
            start=start,
            end=end,
            after=after,
            max_=max_,
            max_pages=max_pages,
            nick=nick,
        )
        return self._start(query, callback)

    def fetch_recent(
        self,
        archive: JID,
        with_: JID | None = None,
        max_: int = RECENT_PAGE_SIZE,
        max_pages: int | None = 1,
        nick: str | None = None,
        callback: Any = None,
    ) -> Task:
        """
        Fetches the latest messages, walking backward page by page
        """
        query = ArchiveQuery(
            query_id=generate_id(),
            archive=archive.new_as_bare(),
            with_=with_,
            max_=max_,
            backward=True,
            max_pages=max_pages,
            nick=nick,
        )
        return self._start(query, callback)

    def _start(self, query: ArchiveQuery, callback: Any) -> Task:
        return self._run_query(
            query, callback=self._on_query_finished, user_data=callback
        )

    def _on_query_finished(self, task: Task) -> None:
        error = task.get_result()
        if isinstance(error, BaseError) and not isinstance(error, CancelledError):
            self._log.warning("Archive query failed: %s", error)
            self.notify("request-failed", error)

        callback = task.get_user_data()
        if callback is not None:
            callback(task)

    @generic_task
    def _run_query(self, query: ArchiveQuery) -> Generator[Any, Any, Any]:
        _task = yield

        disco: Any = self._client.get_module("Discovery")
        info = disco.get_cached_info(query.archive)
        if info is None:
            info = yield disco.disco_info(query.archive)
        if isinstance(info, BaseError):
            raise info
        if not info.supports_mam:
            raise MamUnsupported(query.archive)

        mam: Any = self._client.get_module("MAM")
        after = query.after
        before = "" if query.backward else None
        records: list[MessageRecord] = []

        self._queries[query.query_id] = query
        try:
            while True:
                query.page = []
                result = yield mam.make_query(
                    query.archive,
                    queryid=query.query_id,
                    start=query.start,
                    end=query.end,
                    with_=query.with_,
                    after=after,
                    before=before,
                    max_=query.max_,
                )
                if isinstance(result, BaseError):
                    raise result

                query.pages += 1
                records += self._merge_page(query, result)

                if result.complete:
                    query.complete = True
                    break

                if query.max_pages is not None and query.pages >= query.max_pages:
                    break

                if query.backward:
                    cursor = result.rsm.first
                    if cursor is None or cursor == before:
                        self._log.warning("Archive cursor did not advance: %s", cursor)
                        break
                    before = cursor
                else:
                    cursor = result.rsm.last
                    if cursor is None or cursor == after:
                        self._log.warning("Archive cursor did not advance: %s", cursor)
                        break
                    after = cursor
        finally:
            self._queries.pop(query.query_id, None)

        self._log.info(
            "Archive query %s finished, %s pages, %s new messages",
            query.query_id,
            query.pages,
            len(records),
        )
        yield ArchiveResult(
            archive=query.archive, records=records, complete=query.complete
        )

    def _merge_page(
        self, query: ArchiveQuery, result: MAMQueryData
    ) -> list[MessageRecord]:

        # Messages of one page arrive in chronological order in both
        # directions, only the order of the pages differs
        page = query.page
        query.page = []
        new_records = [record for record in page if self._history.add(record)]

        self._log.info(
            "Page %s of %s: %s messages, %s new (first: %s, last: %s)",
            query.pages,
            query.archive,
            len(page),
            len(new_records),
            result.rsm.first,
            result.rsm.last,
        )
        self.notify("history-loaded", query.archive, new_records, result.complete)
        return new_records

    def _process_mam_message(
        self, _client: Client, _stanza: Message, properties: MessageProperties
    ) -> None:
        if not properties.is_mam_message:
            return

        assert properties.mam is not None
        query = self._queries.get(properties.mam.query_id)
        if query is None:
            self._log.warning(
                "Archive message for unknown query: %s", properties.mam.query_id
            )
            raise NodeProcessed

        if not properties.mam.archive.bare_match(query.archive):
            self._log.warning(
                "Archive message from %s, expected %s",
                properties.mam.archive,
                query.archive,
            )
            raise NodeProcessed

        if properties.body is None:
            raise NodeProcessed

        record = self._make_record(query, properties)
        if record is not None:
            query.page.append(record)
        raise NodeProcessed

    def _make_record(
        self, query: ArchiveQuery, properties: MessageProperties
    ) -> MessageRecord | None:

        if query.is_room_archive:
            outgoing = (
                properties.from_ is not None
                and properties.from_.resource == query.nick
            )
            return MessageRecord.from_properties(
                properties, conversation=query.archive, outgoing=outgoing
            )

        conversation = properties.remote_jid
        if conversation is None:
            return None

        own_jid = self._client.get_bound_jid()
        outgoing = (
            own_jid is not None
            and properties.from_ is not None
            and properties.from_.bare_match(own_jid)
        )
        return MessageRecord.from_properties(
            properties, conversation=conversation, outgoing=outgoing
        )

    def on_session_end(self) -> None:
        # The tasks themselves are cancelled by the client
        self._queries.clear()

    def destroy(self) -> None:
        for handler in self.handlers:
            self._client.unregister_handler(handler)
        self._queries.clear()
        self.remove_subscriptions()
