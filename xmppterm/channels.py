# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import TYPE_CHECKING

import logging
from dataclasses import dataclass
from dataclasses import field

from xmppterm.const import Affiliation
from xmppterm.const import MessageType
from xmppterm.const import Role
from xmppterm.const import RoomState
from xmppterm.elements import Message
from xmppterm.elements import Presence
from xmppterm.errors import BaseError
from xmppterm.errors import CancelledError
from xmppterm.errors import JoinError
from xmppterm.exceptions import NodeProcessed
from xmppterm.history import Conversation
from xmppterm.history import History
from xmppterm.history import MessageRecord
from xmppterm.jid import JID
from xmppterm.structs import MessageProperties
from xmppterm.structs import PresenceProperties
from xmppterm.structs import StanzaHandler
from xmppterm.task import Task
from xmppterm.util import LogAdapter
from xmppterm.util import Observable

if TYPE_CHECKING:
    from xmppterm.client import Client

log = logging.getLogger("xmppterm.channels")


# https://xmpp.org/extensions/xep-0045.html#enter-errorcodes
JOIN_ERROR_REASONS = {
    "conflict": "nickname-conflict",
    "forbidden": "banned",
    "item-not-found": "room-locked",
    "not-allowed": "room-creation-restricted",
    "not-authorized": "password-required",
    "not-acceptable": "reserved-nickname",
    "registration-required": "members-only",
    "service-unavailable": "room-full",
}


@dataclass
class Occupant:
    nick: str
    affiliation: Affiliation = Affiliation.NONE
    role: Role = Role.PARTICIPANT
    jid: JID | None = None
    status: str = ""


@dataclass
class Room:
    jid: JID
    nick: str
    conversation: Conversation
    password: str | None = None
    state: RoomState = RoomState.ABSENT
    occupants: dict[str, Occupant] = field(default_factory=dict)
    subject: str | None = None
    config_task: Task | None = None
    rejoin: bool = False
    # new nickname -> old nickname, for leaves flagged as rename
    pending_renames: dict[str, str] = field(default_factory=dict)

    @property
    def occupant_nicks(self) -> list[str]:
        return list(self.occupants)

    def get_occupant(self, nick: str) -> Occupant | None:
        return self.occupants.get(nick)

    @property
    def own_occupant(self) -> Occupant | None:
        return self.occupants.get(self.nick)


class ChannelManager(Observable):
    """
    Per-room state of one account

    Signals:
        room-joined         (Room)
        room-left           (Room, str | None)
        join-failed         (Room, JoinError)
        occupant-joined     (Room, Occupant)
        occupant-left       (Room, Occupant, str | None)
        occupant-renamed    (Room, str, Occupant)
        occupant-changed    (Room, Occupant)
        subject-changed     (Room, str)
        message             (Room, MessageRecord)
        room-config         (Room, Base | None)
        request-failed      (BaseError)
    """

    def __init__(self, client: Client, history: History) -> None:
        self._log = LogAdapter(log, {"context": client.log_context})
        Observable.__init__(self, self._log)

        self._client = client
        self._history = history
        self._rooms: dict[JID, Room] = {}

        self.handlers = [
            StanzaHandler(
                name="presence", callback=self._process_presence, priority=40
            ),
            StanzaHandler(
                name="message",
                callback=self._process_groupchat_message,
                typ="groupchat",
                priority=40,
            ),
        ]
        for handler in self.handlers:
            client.register_handler(handler)

    @property
    def rooms(self) -> list[Room]:
        return list(self._rooms.values())

    def get_room(self, jid: JID) -> Room | None:
        return self._rooms.get(jid.new_as_bare())

    def is_room(self, jid: JID) -> bool:
        room = self.get_room(jid)
        return room is not None and not room.state.is_absent

    def join(
        self,
        room_jid: JID,
        nick: str,
        password: str | None = None,
        history: int | None = None,
    ) -> Room:

        room_jid = room_jid.new_as_bare()
        # Raises InvalidJid for nicknames which are no valid resource
        room_jid.new_with(resource=nick)

        room = self._rooms.get(room_jid)
        if room is not None and not room.state.is_absent:
            self._log.info("Room %s is already %s", room_jid, room.state.value)
            return room

        if room is None:
            conversation = self._history.get(room_jid, MessageType.GROUPCHAT)
            room = Room(jid=room_jid, nick=nick, conversation=conversation)
            self._rooms[room_jid] = room

        room.nick = nick
        room.password = password
        room.state = RoomState.JOINING
        room.rejoin = False
        self._log.info("Join %s as %s", room_jid, nick)
        self._client.get_module("MUC").join(
            room_jid, nick, password=password, history=history
        )
        return room

    def leave(self, room_jid: JID, status: str | None = None) -> bool:
        room = self.get_room(room_jid)
        if room is None or room.state.is_absent or room.state.is_leaving:
            return False

        self._cancel_config_request(room)
        room.rejoin = False

        if not self._client.is_ready:
            self._set_absent(room)
            self.notify("room-left", room, None)
            return True

        room.state = RoomState.LEAVING
        self._client.get_module("MUC").leave(room.jid, room.nick, status=status)
        return True

    def change_nick(self, room_jid: JID, nick: str) -> None:
        room = self._require_room(room_jid)
        room.jid.new_with(resource=nick)
        self._client.get_module("MUC").change_nick(room.jid, nick)

    def set_subject(self, room_jid: JID, subject: str) -> None:
        room = self._require_room(room_jid)
        self._client.get_module("MUC").set_subject(room.jid, subject)

    def send_message(self, room_jid: JID, body: str) -> Message:
        room = self._require_room(room_jid)
        # The room reflects the message, it is recorded when it comes back
        return self._client.get_module("BaseMessage").send_text(
            room.jid, body, MessageType.GROUPCHAT
        )

    def request_config(self, room_jid: JID) -> Task:
        room = self._require_room(room_jid)
        self._cancel_config_request(room)
        room.config_task = self._client.get_module("MUC").request_config(
            room.jid, callback=self._on_config_received, user_data=room.jid
        )
        return room.config_task

    def _on_config_received(self, task: Task) -> None:
        room = self._rooms.get(task.get_user_data())
        if room is not None and room.config_task is task:
            room.config_task = None

        try:
            form = task.finish()
        except CancelledError:
            return
        except BaseError as error:
            self._log.warning("Room configuration request failed: %s", error)
            self.notify("request-failed", error)
            return

        if room is not None:
            self.notify("room-config", room, form)

    def _cancel_config_request(self, room: Room) -> None:
        if room.config_task is not None:
            self._log.info("Cancel configuration request for %s", room.jid)
            task = room.config_task
            room.config_task = None
            task.cancel()

    def _require_room(self, room_jid: JID) -> Room:
        room = self.get_room(room_jid)
        if room is None or not room.state.is_joined:
            raise ValueError("Not joined to %s" % room_jid)
        return room

    def _process_presence(
        self, _client: Client, _stanza: Presence, properties: PresenceProperties
    ) -> None:
        if properties.jid is None or properties.type is None:
            return

        room = self._rooms.get(properties.jid.new_as_bare())
        if room is None:
            if properties.from_muc:
                self._log.info("Presence from unknown room: %s", properties.jid)
                raise NodeProcessed
            return

        nick = properties.jid.resource
        typ = properties.type

        if typ.is_error:
            self._on_error_presence(room, properties)
            raise NodeProcessed

        if nick is None or room.state.is_absent:
            raise NodeProcessed

        if not (typ.is_available or typ.is_unavailable):
            raise NodeProcessed

        self._flush_renames(room, nick)

        if typ.is_unavailable:
            self._on_unavailable(room, nick, properties)
        else:
            self._on_available(room, nick, properties)
        raise NodeProcessed

    def _on_error_presence(self, room: Room, properties: PresenceProperties) -> None:
        error = properties.error
        condition = "undefined-condition"
        text = None
        if error is not None:
            condition = error.condition or condition
            text = error.get_text() or None

        if room.state.is_joining:
            join_error = JoinError(
                room.jid, JOIN_ERROR_REASONS.get(condition, condition), text
            )
            self._log.warning(join_error)
            self._set_absent(room)
            self.notify("join-failed", room, join_error)
            return

        if room.state.is_joined and error is not None:
            # For example a nickname change which conflicts
            self._log.warning("Error from room %s: %s", room.jid, error)
            self.notify("request-failed", error)

    def _on_available(
        self, room: Room, nick: str, properties: PresenceProperties
    ) -> None:
        if not room.state.tracks_occupants:
            return

        occupant = _make_occupant(nick, properties)
        is_self = properties.is_muc_self_presence or nick == room.nick

        old_nick = room.pending_renames.pop(nick, None)
        if old_nick is not None:
            self._rename_occupant(room, old_nick, occupant)
            if is_self:
                room.nick = nick
            self.notify("occupant-renamed", room, old_nick, occupant)
            return

        known = nick in room.occupants
        room.occupants[nick] = occupant

        if room.state.is_joining:
            if is_self:
                room.nick = nick
                room.state = RoomState.JOINED
                self._log.info("Joined %s as %s", room.jid, nick)
                self.notify("room-joined", room)
            return

        if known:
            self.notify("occupant-changed", room, occupant)
        else:
            self.notify("occupant-joined", room, occupant)

    def _on_unavailable(
        self, room: Room, nick: str, properties: PresenceProperties
    ) -> None:
        is_self = properties.is_muc_self_presence or nick == room.nick

        if properties.is_nickname_changed:
            assert properties.muc_user is not None
            new_nick = properties.muc_user.nick
            assert new_nick is not None
            if room.state.tracks_occupants and nick in room.occupants:
                # The occupant stays until the join under the new
                # nickname arrives
                room.pending_renames[new_nick] = nick
            return

        if is_self:
            reason = None
            if not room.state.is_leaving:
                reason = properties.removal_reason
                if reason is None:
                    reason = "destroyed" if properties.is_muc_destroyed else "removed"
            self._log.info("Left %s: %s", room.jid, reason)
            self._set_absent(room)
            self.notify("room-left", room, reason)
            return

        if not room.state.tracks_occupants:
            return

        occupant = room.occupants.pop(nick, None)
        if occupant is None or room.state.is_joining:
            return
        self.notify("occupant-left", room, occupant, properties.removal_reason)

    def _flush_renames(self, room: Room, nick: str) -> None:
        """
        A rename is a leave immediately followed by the join of the new
        nickname, anything else in between turns the leave into a real one
        """
        for new_nick, old_nick in list(room.pending_renames.items()):
            if new_nick == nick:
                continue
            del room.pending_renames[new_nick]
            occupant = room.occupants.pop(old_nick, None)
            if occupant is not None:
                self.notify("occupant-left", room, occupant, None)

    @staticmethod
    def _rename_occupant(room: Room, old_nick: str, occupant: Occupant) -> None:
        # Keep the position of the occupant
        occupants: dict[str, Occupant] = {}
        for nick, value in room.occupants.items():
            if nick == old_nick:
                occupants[occupant.nick] = occupant
            elif nick != occupant.nick:
                occupants[nick] = value
        occupants.setdefault(occupant.nick, occupant)
        room.occupants = occupants

    def _set_absent(self, room: Room) -> None:
        self._cancel_config_request(room)
        room.state = RoomState.ABSENT
        room.occupants.clear()
        room.pending_renames.clear()

    def _process_groupchat_message(
        self, _client: Client, _stanza: Message, properties: MessageProperties
    ) -> None:
        if properties.jid is None:
            return

        room = self._rooms.get(properties.jid.new_as_bare())
        if room is None or room.state.is_absent:
            self._log.info("Groupchat message from unknown room: %s", properties.jid)
            raise NodeProcessed

        if properties.is_muc_subject:
            assert properties.subject is not None
            room.subject = properties.subject
            self.notify("subject-changed", room, properties.subject)
            raise NodeProcessed

        if properties.body is None:
            raise NodeProcessed

        record = MessageRecord.from_properties(
            properties,
            conversation=room.jid,
            archive=room.jid,
            outgoing=properties.muc_nickname == room.nick,
        )
        if room.conversation.add(record):
            self.notify("message", room, record)
        raise NodeProcessed

    def on_session_end(self) -> None:
        for room in self._rooms.values():
            if room.state.is_absent:
                continue

            rejoin = room.state.tracks_occupants
            self._set_absent(room)
            room.rejoin = rejoin
            self.notify("room-left", room, "disconnected")

    def rejoin_rooms(self) -> list[Room]:
        rooms = [room for room in self._rooms.values() if room.rejoin]
        for room in rooms:
            self.join(room.jid, room.nick, password=room.password)
        return rooms

    def destroy(self) -> None:
        for handler in self.handlers:
            self._client.unregister_handler(handler)
        for room in self._rooms.values():
            self._cancel_config_request(room)
        self.remove_subscriptions()


def _make_occupant(nick: str, properties: PresenceProperties) -> Occupant:
    occupant = Occupant(nick=nick, status=properties.status)
    muc_user = properties.muc_user
    if muc_user is None:
        return occupant

    if muc_user.affiliation is not None:
        occupant.affiliation = muc_user.affiliation
    if muc_user.role is not None:
        occupant.role = muc_user.role
    occupant.jid = muc_user.jid
    return occupant

