# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any

import logging
import time

from xmppterm import commands
from xmppterm import events
from xmppterm.archive import ArchiveClient
from xmppterm.channels import ChannelManager
from xmppterm.channels import Occupant
from xmppterm.channels import Room
from xmppterm.client import Client
from xmppterm.config import AccountConfig
from xmppterm.config import Config
from xmppterm.const import Availability
from xmppterm.const import ConnectionState
from xmppterm.const import MessageType
from xmppterm.const import PresenceType
from xmppterm.elements import Message
from xmppterm.errors import BaseError
from xmppterm.errors import CancelledError
from xmppterm.errors import CommandError
from xmppterm.errors import MamUnsupported
from xmppterm.exceptions import InvalidJid
from xmppterm.exceptions import NodeProcessed
from xmppterm.history import History
from xmppterm.history import MessageRecord
from xmppterm.jid import JID
from xmppterm.namespaces import Namespace
from xmppterm.roster import Contact
from xmppterm.roster import PresenceInfo
from xmppterm.roster import RosterManager
from xmppterm.storage import JSONStore
from xmppterm.structs import BookmarkData
from xmppterm.structs import MessageProperties
from xmppterm.structs import StanzaHandler
from xmppterm.task import Task
from xmppterm.util import LogAdapter
from xmppterm.util import Observable

log = logging.getLogger("xmppterm.account")

DEFAULT_RESOURCE = "xmppterm"


class Account(Observable):
    """
    One configured account: the client with its roster, rooms, archive
    access and history

    Signals:
        event   (events.Event)
    """

    def __init__(
        self,
        config: AccountConfig,
        settings: Config | None = None,
        store: JSONStore | None = None,
        client: Client | None = None,
    ) -> None:

        self._log = LogAdapter(log, {"context": config.name})
        Observable.__init__(self, self._log)

        if settings is None:
            settings = Config()

        self.name = config.name
        self.config = config
        self._store = store

        if client is None:
            client = Client(log_context=config.name)
        self._client = client
        self._configure_client(settings)

        self.history = History()
        self.roster = RosterManager(client)
        self.channels = ChannelManager(client, self.history)
        self.archive = ArchiveClient(client, self.history)

        self._availability = Availability.AVAILABLE
        self._status: str | None = None
        self._bookmarks: list[BookmarkData] = []
        # Archives fetched without user request, missing support is no error
        self._auto_archives: set[JID] = set()

        self._load_store()

        self._handler = StanzaHandler(
            name="message", callback=self._process_message, priority=50
        )
        client.register_handler(self._handler)

        client.subscribe("state-changed", self._on_state_changed)

        self.roster.subscribe("roster-updated", self._on_roster_updated)
        self.roster.subscribe("presence-changed", self._on_presence_changed)
        self.roster.subscribe("subscription-request", self._on_subscription_request)
        self.roster.subscribe("subscription-changed", self._on_subscription_changed)
        self.roster.subscribe("request-failed", self._on_request_failed)

        self.channels.subscribe("room-joined", self._on_room_joined)
        self.channels.subscribe("room-left", self._on_room_left)
        self.channels.subscribe("join-failed", self._on_join_failed)
        self.channels.subscribe("occupant-joined", self._on_occupant_joined)
        self.channels.subscribe("occupant-left", self._on_occupant_left)
        self.channels.subscribe("occupant-renamed", self._on_occupant_renamed)
        self.channels.subscribe("subject-changed", self._on_subject_changed)
        self.channels.subscribe("message", self._on_room_message)
        self.channels.subscribe("room-config", self._on_room_config)
        self.channels.subscribe("request-failed", self._on_request_failed)

        self.archive.subscribe("history-loaded", self._on_history_loaded)
        self.archive.subscribe("request-failed", self._on_archive_failed)

    def _configure_client(self, settings: Config) -> None:
        config = self.config
        self._client.set_username(config.jid.localpart)
        self._client.set_domain(config.jid.domain)
        self._client.set_resource(config.resource or DEFAULT_RESOURCE)
        self._client.set_password(config.password)
        self._client.set_tls_policy(config.tls)
        self._client.set_mechs(config.mechanisms)
        if config.server is not None:
            self._client.set_custom_host(config.server, config.port)
        self._client.set_request_timeout(settings.request_timeout)
        self._client.set_keepalive(settings.keepalive)
        self._client.set_backoff(settings.reconnect.make_backoff())

    def _load_store(self) -> None:
        if self._store is None:
            return

        version, items = self._store.load_roster()
        if items:
            self.roster.load(items, version)
        self._bookmarks = self._store.load_bookmarks()

    @property
    def client(self) -> Client:
        return self._client

    @property
    def bookmarks(self) -> list[BookmarkData]:
        return list(self._bookmarks)

    @property
    def own_jid(self) -> JID:
        return self.config.jid

    @property
    def connection_state(self) -> ConnectionState:
        return self._client.connection_state

    def _emit(self, event: events.Event) -> None:
        self.notify("event", event)

    def _fail(self, error: BaseError | Exception) -> None:
        self._emit(events.RequestFailed(self.name, error))

    def connect(self) -> None:
        if self.config.password is None:
            self._fail(CommandError("No password configured for %s" % self.name))
            return
        self._client.connect()

    def disconnect(self) -> None:
        if self._client.connection_state.is_disconnected:
            return
        self._client.disconnect()

    def destroy(self) -> None:
        self._client.unregister_handler(self._handler)
        self.archive.destroy()
        self.channels.destroy()
        self.roster.destroy()
        self._client.destroy()
        self.remove_subscriptions()

    def _on_state_changed(
        self,
        _client: Client,
        _signal_name: str,
        state: ConnectionState,
        error: BaseError | None,
    ) -> None:

        self._emit(events.ConnectionStateChanged(self.name, state, error))

        if state.is_ready:
            self._on_ready()

        elif state in (ConnectionState.DISCONNECTED, ConnectionState.RECONNECTING):
            self.roster.reset_presence()
            self.channels.on_session_end()
            self.archive.on_session_end()

    def _on_ready(self) -> None:
        self._log.info("Session ready, request roster")
        task = self.roster.request()
        task.add_done_callback(self._on_initial_roster)

    def _on_initial_roster(self, _task: Task) -> None:
        if not self._client.is_ready:
            return

        # Initial presence only after the roster, so presences of the
        # contacts find them in place
        self.roster.send_presence(self._availability, self._status)
        self._request_bookmarks()
        self.channels.rejoin_rooms()

    def _request_bookmarks(self) -> None:
        self._client.get_module("PrivateBookmarks").request_bookmarks(
            callback=self._on_bookmarks_received
        )

    def _on_bookmarks_received(self, task: Task) -> None:
        try:
            bookmarks = task.finish()
        except CancelledError:
            return
        except BaseError as error:
            self._log.warning("Unable to request bookmarks: %s", error)
            self._fail(error)
            return

        self._set_bookmarks(bookmarks)
        for bookmark in bookmarks:
            if not bookmark.autojoin:
                continue
            try:
                self._join(bookmark.jid, bookmark.nick, bookmark.password)
            except CommandError as error:
                self._log.warning("Unable to join %s: %s", bookmark.jid, error)
                self._fail(error)

    def _set_bookmarks(self, bookmarks: list[BookmarkData]) -> None:
        self._bookmarks = list(bookmarks)
        if self._store is not None:
            self._store.store_bookmarks(self._bookmarks)
        self._emit(events.BookmarksUpdated(self.name, self.bookmarks))

    def _store_bookmarks(self, bookmarks: list[BookmarkData]) -> None:
        self._set_bookmarks(bookmarks)
        if self._client.is_ready:
            self._client.get_module("PrivateBookmarks").store_bookmarks(
                self._bookmarks, callback=self._on_bookmarks_stored
            )

    def _on_bookmarks_stored(self, task: Task) -> None:
        try:
            task.finish()
        except CancelledError:
            return
        except BaseError as error:
            self._log.warning("Unable to store bookmarks: %s", error)
            self._fail(error)

    def _join(
        self, room: JID, nick: str | None = None, password: str | None = None
    ) -> Room:
        if nick is None:
            nick = self.config.jid.localpart
        if not nick:
            raise CommandError("No nickname configured")
        return self.channels.join(room, nick, password=password)

    def _process_message(
        self, _client: Client, _stanza: Message, properties: MessageProperties
    ) -> None:

        if properties.is_error:
            self._log.info("Error message: %s", properties.error)
            if properties.error is not None:
                self._fail(properties.error)
            raise NodeProcessed

        if properties.body is None or properties.jid is None:
            return

        conversation = properties.remote_jid
        if properties.jid.is_full and self.channels.is_room(properties.jid):
            # Private message from a room occupant
            conversation = properties.jid
        assert conversation is not None

        record = MessageRecord.from_properties(
            properties,
            conversation=conversation,
            archive=self.own_jid,
            outgoing=properties.self_message,
        )
        if self.history.add(record):
            self._emit(events.MessageReceived(self.name, record))
        raise NodeProcessed

    def send_message(self, target: JID, body: str) -> None:
        room = self.channels.get_room(target)
        if target.is_bare and room is not None:
            if not room.state.is_joined:
                raise CommandError("Not joined to %s" % target)
            self.channels.send_message(target, body)
            return

        message = self._client.get_module("BaseMessage").send_text(
            target, body, MessageType.CHAT
        )
        origin_id = message.find_tag_attr("origin-id", "id", namespace=Namespace.SID)
        record = MessageRecord(
            conversation=target,
            from_=self._client.get_bound_jid() or self.own_jid,
            body=body,
            timestamp=time.time(),
            type=MessageType.CHAT,
            origin_id=origin_id,
            message_id=message.get_id(),
            outgoing=True,
        )
        if self.history.add(record):
            self._emit(events.MessageReceived(self.name, record))

    def fetch_history(self, target: JID, start: float | None = None) -> Task:
        room = self.channels.get_room(target)
        if room is not None and target.is_bare:
            return self.archive.query(room.jid, start=start, nick=room.nick)
        return self.archive.query(
            self.own_jid, with_=target.new_as_bare(), start=start
        )

    def open_chat(self, target: JID) -> None:
        self.history.get(target)
        self._auto_archives.add(self.own_jid)
        self.archive.fetch_recent(self.own_jid, with_=target.new_as_bare())

    def execute(self, command: Any) -> None:
        """
        Runs one parsed command, failures are emitted as RequestFailed
        """
        handler = getattr(self, "_cmd_%s" % type(command).__name__.lower(), None)
        if handler is None:
            self._fail(CommandError("Unsupported command %s" % type(command).__name__))
            return

        try:
            handler(command)
        except (CommandError, InvalidJid, ValueError) as error:
            self._log.info("Command failed: %s", error)
            self._fail(error)

    def _require_ready(self) -> None:
        if not self._client.is_ready:
            raise CommandError("%s is not connected" % self.name)

    def _cmd_connect(self, _command: commands.Connect) -> None:
        if not self._client.connection_state.is_disconnected:
            if self._client.connection_state != ConnectionState.RECONNECTING:
                raise CommandError("%s is already connected" % self.name)
        self.connect()

    def _cmd_disconnect(self, _command: commands.Disconnect) -> None:
        self.disconnect()

    def _cmd_join(self, command: commands.Join) -> None:
        self._require_ready()
        nick = command.nick
        password = command.password
        for bookmark in self._bookmarks:
            if bookmark.jid == command.room:
                nick = nick or bookmark.nick
                password = password or bookmark.password
        self._join(command.room, nick, password)

    def _cmd_leave(self, command: commands.Leave) -> None:
        if command.room is None:
            raise CommandError("No room given")
        if not self.channels.leave(command.room):
            raise CommandError("Not in room %s" % command.room)

    def _cmd_sendmessage(self, command: commands.SendMessage) -> None:
        self._require_ready()
        self.send_message(command.target, command.body)

    def _cmd_rosterget(self, _command: commands.RosterGet) -> None:
        self._require_ready()
        self.roster.request()

    def _cmd_setpresence(self, command: commands.SetPresence) -> None:
        self._availability = command.availability
        self._status = command.status
        if self._client.is_ready:
            self.roster.send_presence(command.availability, command.status)

    def _cmd_bookmarklist(self, _command: commands.BookmarkList) -> None:
        if self._client.is_ready:
            self._request_bookmarks()
            return
        self._emit(events.BookmarksUpdated(self.name, self.bookmarks))

    def _cmd_bookmarkadd(self, command: commands.BookmarkAdd) -> None:
        bookmark = BookmarkData(
            jid=command.room,
            name=command.name,
            nick=command.nick,
            autojoin=command.autojoin,
            password=command.password,
        )
        bookmarks = [item for item in self._bookmarks if item.jid != command.room]
        bookmarks.append(bookmark)
        self._store_bookmarks(bookmarks)

    def _cmd_bookmarkremove(self, command: commands.BookmarkRemove) -> None:
        room = command.room.new_as_bare()
        bookmarks = [item for item in self._bookmarks if item.jid != room]
        if len(bookmarks) == len(self._bookmarks):
            raise CommandError("No bookmark for %s" % room)
        self._store_bookmarks(bookmarks)

    def _cmd_fetchhistory(self, command: commands.FetchHistory) -> None:
        self._require_ready()
        self.fetch_history(command.target, command.start)

    def _cmd_openchat(self, command: commands.OpenChat) -> None:
        self._require_ready()
        self.open_chat(command.target)

    def _cmd_subscribe(self, command: commands.Subscribe) -> None:
        self._require_ready()
        self.roster.request_subscription(command.jid)

    def _cmd_acceptsubscription(self, command: commands.AcceptSubscription) -> None:
        self._require_ready()
        self.roster.accept_subscription(command.jid)

    def _cmd_denysubscription(self, command: commands.DenySubscription) -> None:
        self._require_ready()
        self.roster.deny_subscription(command.jid)

    def _cmd_changenick(self, command: commands.ChangeNick) -> None:
        self.channels.change_nick(command.room, command.nick)

    def _cmd_setsubject(self, command: commands.SetSubject) -> None:
        self.channels.set_subject(command.room, command.subject)

    def _cmd_roomconfig(self, command: commands.RoomConfig) -> None:
        self.channels.request_config(command.room)

    def _on_request_failed(self, _source: Any, _signal_name: str, error: BaseError) -> None:
        self._fail(error)

    def _on_archive_failed(
        self, _archive: ArchiveClient, _signal_name: str, error: BaseError
    ) -> None:
        if isinstance(error, MamUnsupported) and error.archive in self._auto_archives:
            self._log.info(error)
            return
        self._fail(error)

    def _on_roster_updated(
        self, _roster: RosterManager, _signal_name: str, contacts: list[Contact]
    ) -> None:
        if self._store is not None:
            self._store.store_roster(self.roster.version, self.roster.roster_items())
        self._emit(
            events.RosterUpdated(self.name, [contact.jid for contact in contacts])
        )

    def _on_presence_changed(
        self,
        _roster: RosterManager,
        _signal_name: str,
        contact: Contact,
        resource: str,
        info: PresenceInfo | None,
    ) -> None:
        jid = contact.jid
        if resource:
            jid = jid.new_with(resource=resource)

        if info is None:
            event = events.PresenceChanged(
                self.name, jid, Availability.UNAVAILABLE.value
            )
        else:
            event = events.PresenceChanged(
                self.name, jid, info.availability.value, info.status
            )
        self._emit(event)

    def _on_subscription_request(
        self, _roster: RosterManager, _signal_name: str, jid: JID, status: str
    ) -> None:
        self._emit(events.SubscriptionRequest(self.name, jid, status))

    def _on_subscription_changed(
        self, _roster: RosterManager, _signal_name: str, jid: JID, typ: PresenceType
    ) -> None:
        self._emit(events.SubscriptionChanged(self.name, jid, typ.value))

    def _on_room_joined(
        self, _channels: ChannelManager, _signal_name: str, room: Room
    ) -> None:
        self._emit(
            events.RoomJoined(self.name, room.jid, room.nick, room.occupant_nicks)
        )
        self._auto_archives.add(room.jid)
        self.archive.fetch_recent(room.jid, nick=room.nick)

    def _on_room_left(
        self, _channels: ChannelManager, _signal_name: str, room: Room, reason: str | None
    ) -> None:
        self._emit(events.RoomLeft(self.name, room.jid, reason))

    def _on_join_failed(
        self, _channels: ChannelManager, _signal_name: str, _room: Room, error: BaseError
    ) -> None:
        self._fail(error)

    def _on_occupant_joined(
        self, _channels: ChannelManager, _signal_name: str, room: Room, occupant: Occupant
    ) -> None:
        self._emit(events.OccupantJoined(self.name, room.jid, occupant.nick))

    def _on_occupant_left(
        self,
        _channels: ChannelManager,
        _signal_name: str,
        room: Room,
        occupant: Occupant,
        reason: str | None,
    ) -> None:
        self._emit(events.OccupantLeft(self.name, room.jid, occupant.nick, reason))

    def _on_occupant_renamed(
        self,
        _channels: ChannelManager,
        _signal_name: str,
        room: Room,
        old_nick: str,
        occupant: Occupant,
    ) -> None:
        self._emit(
            events.OccupantRenamed(self.name, room.jid, old_nick, occupant.nick)
        )

    def _on_subject_changed(
        self, _channels: ChannelManager, _signal_name: str, room: Room, subject: str
    ) -> None:
        self._emit(events.RoomSubjectChanged(self.name, room.jid, subject))

    def _on_room_message(
        self,
        _channels: ChannelManager,
        _signal_name: str,
        _room: Room,
        record: MessageRecord,
    ) -> None:
        self._emit(events.MessageReceived(self.name, record))

    def _on_room_config(
        self, _channels: ChannelManager, _signal_name: str, room: Room, form: Any
    ) -> None:
        fields = 0 if form is None else len(list(form.iter_tags("field")))
        self._emit(
            events.Info(
                self.name, "Configuration of %s has %s fields" % (room.jid, fields)
            )
        )

    def _on_history_loaded(
        self,
        _archive: ArchiveClient,
        _signal_name: str,
        archive: JID,
        records: list[MessageRecord],
        complete: bool,
    ) -> None:
        self._emit(events.HistoryLoaded(self.name, archive, records, complete))
