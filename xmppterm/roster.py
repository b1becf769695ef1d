# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import NamedTuple
from typing import TYPE_CHECKING

import logging
from dataclasses import dataclass
from dataclasses import field

from xmppterm.const import Availability
from xmppterm.const import Subscription
from xmppterm.elements import Iq
from xmppterm.elements import Presence
from xmppterm.errors import BaseError
from xmppterm.errors import CancelledError
from xmppterm.exceptions import NodeProcessed
from xmppterm.jid import JID
from xmppterm.namespaces import Namespace
from xmppterm.structs import IqProperties
from xmppterm.structs import PresenceProperties
from xmppterm.structs import RosterData
from xmppterm.structs import RosterItem
from xmppterm.structs import StanzaHandler
from xmppterm.task import Task
from xmppterm.util import LogAdapter
from xmppterm.util import Observable

if TYPE_CHECKING:
    from xmppterm.client import Client

log = logging.getLogger("xmppterm.roster")


class PresenceInfo(NamedTuple):
    resource: str
    availability: Availability
    priority: int = 0
    status: str = ""
    timestamp: float | None = None


@dataclass
class Contact:
    jid: JID
    name: str | None = None
    subscription: Subscription = Subscription.NONE
    groups: set[str] = field(default_factory=set)
    in_roster: bool = False
    resources: dict[str, PresenceInfo] = field(default_factory=dict)

    @property
    def is_available(self) -> bool:
        return bool(self.resources)

    @property
    def availability(self) -> Availability:
        best = self.best_presence
        if best is None:
            return Availability.UNAVAILABLE
        return best.availability

    @property
    def best_presence(self) -> PresenceInfo | None:
        if not self.resources:
            return None
        return max(self.resources.values(), key=lambda info: info.priority)

    def update_from_item(self, item: RosterItem) -> None:
        self.name = item.name
        self.subscription = item.get_subscription()
        self.groups = set(item.groups)
        self.in_roster = True

    def to_item(self) -> RosterItem:
        ask = None
        subscription = self.subscription.value
        if self.subscription == Subscription.PENDING:
            ask = "subscribe"
            subscription = "none"
        return RosterItem(
            jid=self.jid,
            name=self.name,
            ask=ask,
            subscription=subscription,
            groups=set(self.groups),
        )


class RosterManager(Observable):
    """
    Contact list and presence state of one account

    Signals:
        roster-updated          (list[Contact])
        presence-changed        (Contact, str, PresenceInfo | None)
        subscription-request    (JID, str)
        subscription-changed    (JID, PresenceType)
        request-failed          (BaseError)
    """

    def __init__(self, client: Client) -> None:
        self._log = LogAdapter(log, {"context": client.log_context})
        Observable.__init__(self, self._log)

        self._client = client
        self._contacts: dict[JID, Contact] = {}
        self._version: str | None = None
        self._request_task: Task | None = None

        self.handlers = [
            StanzaHandler(
                name="iq",
                callback=self._process_roster_push,
                typ="set",
                ns=Namespace.ROSTER,
                priority=20,
            ),
            StanzaHandler(
                name="presence", callback=self._process_presence, priority=50
            ),
        ]
        for handler in self.handlers:
            client.register_handler(handler)

    @property
    def version(self) -> str | None:
        return self._version

    @property
    def contacts(self) -> list[Contact]:
        return sorted(self._contacts.values(), key=lambda contact: str(contact.jid))

    def get_contact(self, jid: JID) -> Contact | None:
        return self._contacts.get(jid.new_as_bare())

    def __len__(self) -> int:
        return len(self._contacts)

    def roster_items(self) -> list[RosterItem]:
        return [contact.to_item() for contact in self.contacts if contact.in_roster]

    def load(self, items: list[RosterItem], version: str | None) -> None:
        """
        Seeds the contact list from a cached roster
        """
        self._log.info("Load %s cached roster items, version: %s", len(items), version)
        self._apply_items(items)
        self._version = version

    def request(self) -> Task:
        if self._request_task is not None:
            self._request_task.cancel()

        self._request_task = self._client.get_module("Roster").request_roster(
            self._version, callback=self._on_roster_received
        )
        return self._request_task

    def _on_roster_received(self, task: Task) -> None:
        self._request_task = None
        try:
            roster: RosterData = task.finish()
        except CancelledError:
            return
        except BaseError as error:
            self._log.warning("Roster request failed: %s", error)
            self.notify("request-failed", error)
            return

        if roster.items is None:
            self._log.info("Cached roster is up to date")
        else:
            self._apply_items(roster.items)
        self._version = roster.version
        self.notify("roster-updated", self.contacts)

    def _apply_items(self, items: list[RosterItem]) -> None:
        jids = {item.jid for item in items}
        for jid, contact in list(self._contacts.items()):
            if jid in jids or not contact.in_roster:
                continue
            if contact.resources:
                contact.in_roster = False
                contact.subscription = Subscription.NONE
            else:
                del self._contacts[jid]

        for item in items:
            self._get_or_create(item.jid).update_from_item(item)

    def _get_or_create(self, jid: JID) -> Contact:
        jid = jid.new_as_bare()
        contact = self._contacts.get(jid)
        if contact is None:
            contact = Contact(jid=jid)
            self._contacts[jid] = contact
        return contact

    def _process_roster_push(
        self, _client: Client, _stanza: Iq, properties: IqProperties
    ) -> None:
        if properties.roster is None:
            return

        item = properties.roster.item
        if item.is_removal:
            contact = self._contacts.pop(item.jid, None)
            self._log.info("Removed from roster: %s", item.jid)
            if contact is not None and contact.resources:
                # Presence is still known, keep the contact outside the roster
                contact.in_roster = False
                contact.subscription = Subscription.NONE
                self._contacts[item.jid] = contact
        else:
            self._get_or_create(item.jid).update_from_item(item)

        if properties.roster.version is not None:
            self._version = properties.roster.version

        self.notify("roster-updated", self.contacts)
        raise NodeProcessed

    def _process_presence(
        self, _client: Client, _stanza: Presence, properties: PresenceProperties
    ) -> None:
        if properties.from_muc or properties.jid is None or properties.type is None:
            return

        if properties.self_bare:
            return

        jid = properties.jid
        typ = properties.type

        if typ.is_subscribe:
            self._log.info("Subscription request from %s", jid)
            self.notify("subscription-request", jid.new_as_bare(), properties.status)
            return

        if typ.is_subscription:
            self._log.info("Subscription %s from %s", typ.value, jid)
            self.notify("subscription-changed", jid.new_as_bare(), typ)
            return

        if not (typ.is_available or typ.is_unavailable or typ.is_error):
            return

        contact = self._get_or_create(jid)
        resource = jid.resource or ""

        if typ.is_available:
            assert properties.show is not None
            info = PresenceInfo(
                resource=resource,
                availability=Availability.from_show(properties.show),
                priority=properties.priority,
                status=properties.status,
                timestamp=properties.user_timestamp or properties.timestamp,
            )
            contact.resources[resource] = info
            self.notify("presence-changed", contact, resource, info)
            return

        if jid.resource is None:
            # Unavailable or error from the bare JID covers all resources
            removed = list(contact.resources)
            contact.resources.clear()
        else:
            removed = [resource] if contact.resources.pop(resource, None) else []

        for resource in removed:
            self.notify("presence-changed", contact, resource, None)

    def reset_presence(self) -> None:
        """
        Presence is only valid for one session, everyone is offline
        until the server sends it again
        """
        for contact in self._contacts.values():
            for resource in list(contact.resources):
                del contact.resources[resource]
                self.notify("presence-changed", contact, resource, None)

        for jid, contact in list(self._contacts.items()):
            if not contact.in_roster:
                del self._contacts[jid]

    def set_item(self, jid: JID, name: str | None, groups: set[str] | None = None) -> Task:
        return self._client.get_module("Roster").set_item(jid.new_as_bare(), name, groups)

    def remove_item(self, jid: JID) -> Task:
        return self._client.get_module("Roster").delete_item(jid.new_as_bare())

    def request_subscription(self, jid: JID, status: str | None = None) -> None:
        self._client.get_module("BasePresence").subscribe(jid.new_as_bare(), status=status)

    def accept_subscription(self, jid: JID) -> None:
        self._client.get_module("BasePresence").subscribed(jid.new_as_bare())

    def deny_subscription(self, jid: JID) -> None:
        self._client.get_module("BasePresence").unsubscribed(jid.new_as_bare())

    def unsubscribe(self, jid: JID) -> None:
        self._client.get_module("BasePresence").unsubscribe(jid.new_as_bare())

    def send_presence(
        self,
        availability: Availability = Availability.AVAILABLE,
        status: str | None = None,
        priority: int | None = None,
    ) -> None:

        module: Any = self._client.get_module("BasePresence")
        if availability.is_unavailable:
            module.send(typ="unavailable", status=status)
            return
        module.send(show=availability.to_show(), status=status, priority=priority)

    def destroy(self) -> None:
        for handler in self.handlers:
            self._client.unregister_handler(handler)
        if self._request_task is not None:
            self._request_task.cancel()
        self.remove_subscriptions()
