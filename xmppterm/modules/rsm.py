# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from xmppterm.builder import E
from xmppterm.elements import Base
from xmppterm.namespaces import Namespace
from xmppterm.structs import RSMData


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_rsm(stanza: Base) -> RSMData | None:
    rsm = stanza.find_tag("set", namespace=Namespace.RSM)
    if rsm is None:
        return None

    after = rsm.find_tag_text("after") or None
    before = rsm.find_tag_text("before") or None
    last = rsm.find_tag_text("last") or None

    first_index = None
    first = None
    first_node = rsm.find_tag("first")
    if first_node is not None:
        first = first_node.text or None
        first_index = _parse_int(first_node.get("index"))

    return RSMData(
        after=after,
        before=before,
        last=last,
        first=first,
        first_index=first_index,
        count=_parse_int(rsm.find_tag_text("count")),
        max=_parse_int(rsm.find_tag_text("max")),
        index=_parse_int(rsm.find_tag_text("index")),
    )


def make_rsm(
    max_: int | None = None,
    after: str | None = None,
    before: str | None = None,
) -> Base:
    """
    Build a <set/> request element, before="" asks for the last page
    """
    rsm = E("set", namespace=Namespace.RSM)
    if max_ is not None:
        rsm.add_tag_text("max", str(max_))

    if after is not None:
        rsm.add_tag_text("after", after)

    if before is not None:
        before_node = rsm.add_tag("before")
        if before:
            before_node.text = before

    return rsm
