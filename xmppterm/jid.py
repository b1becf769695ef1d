# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import cast

import functools
from dataclasses import asdict
from dataclasses import dataclass

import idna
from gi.repository import GLib
from precis_i18n import get_profile

from xmppterm import exceptions


_localpart_disallowed_chars = set("\"&'/:<>@")


@functools.lru_cache(maxsize=None)
def validate_localpart(localpart: str) -> str:
    if not localpart or len(localpart.encode()) > 1023:
        raise exceptions.LocalpartByteLimit

    if _localpart_disallowed_chars & set(localpart):
        raise exceptions.LocalpartNotAllowedChar

    # Localpart and resource compare case-sensitive
    try:
        username = get_profile("UsernameCasePreserved")
        return username.enforce(localpart)
    except Exception:
        raise exceptions.LocalpartNotAllowedChar


@functools.lru_cache(maxsize=None)
def validate_resourcepart(resourcepart: str) -> str:
    if not resourcepart or len(resourcepart.encode()) > 1023:
        raise exceptions.ResourcepartByteLimit

    try:
        opaque = get_profile("OpaqueString")
        return opaque.enforce(resourcepart)
    except Exception:
        raise exceptions.ResourcepartNotAllowedChar


@functools.lru_cache(maxsize=None)
def validate_domainpart(domainpart: str | None) -> str:
    if not domainpart:
        raise exceptions.DomainpartByteLimit

    ip_address = domainpart.strip("[]")
    if GLib.hostname_is_ip_address(ip_address):
        return ip_address

    length = len(domainpart.encode())
    if length > 1023:
        raise exceptions.DomainpartByteLimit

    if domainpart.endswith("."):  # RFC7622, 3.2
        domainpart = domainpart[:-1]

    try:
        idna_encode(domainpart)
    except Exception:
        raise exceptions.DomainpartNotAllowedChar

    return domainpart.lower()


@functools.lru_cache(maxsize=None)
def idna_encode(domain: str) -> str:
    return idna.encode(domain, uts46=True).decode()


@dataclass(frozen=True)
class JID:
    localpart: str | None = None
    domain: str | None = None
    resource: str | None = None

    def __init__(
        self,
        localpart: str | None = None,
        domain: str | None = None,
        resource: str | None = None,
    ) -> None:

        if localpart is not None:
            localpart = validate_localpart(localpart)
        object.__setattr__(self, "localpart", localpart)

        domain = validate_domainpart(domain)
        object.__setattr__(self, "domain", domain)

        if resource is not None:
            resource = validate_resourcepart(resource)
        object.__setattr__(self, "resource", resource)

    @classmethod
    @functools.lru_cache(maxsize=None)
    def from_string(cls, jid_string: str) -> JID:
        # https://tools.ietf.org/html/rfc7622#section-3.2
        if jid_string.find("/") != -1:
            rest, resourcepart = jid_string.split("/", 1)
        else:
            rest, resourcepart = jid_string, None

        if rest.find("@") != -1:
            localpart, domainpart = rest.split("@", 1)
        else:
            localpart, domainpart = None, rest

        return cls(localpart=localpart, domain=domainpart, resource=resourcepart)

    def __str__(self) -> str:
        if self.localpart:
            jid = f"{self.localpart}@{self.domain}"
        else:
            jid = cast(str, self.domain)

        if self.resource is not None:
            return f"{jid}/{self.resource}"
        return jid

    def __hash__(self) -> int:
        return hash(str(self))

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, JID):
            return NotImplemented

        return (
            self.localpart == other.localpart
            and self.domain == other.domain
            and self.resource == other.resource
        )

    def __ne__(self, other: Any) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    @property
    def bare(self) -> str:
        if self.localpart is not None:
            return f"{self.localpart}@{self.domain}"
        return cast(str, self.domain)

    @property
    def is_bare(self) -> bool:
        return self.resource is None

    @property
    def is_domain(self) -> bool:
        return self.localpart is None and self.resource is None

    @property
    def is_full(self) -> bool:
        return (
            self.localpart is not None
            and self.domain is not None
            and self.resource is not None
        )

    def new_as_bare(self) -> JID:
        if self.resource is None:
            return self
        new = asdict(self)
        new.pop("resource")
        return JID(**new)

    def bare_match(self, other: str | JID) -> bool:
        if isinstance(other, str):
            other = JID.from_string(other)
        return self.bare == other.bare

    def new_with(self, **kwargs: str | None) -> JID:
        new = asdict(self)
        new.update(kwargs)
        return JID(**new)
