# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Generator
from typing import TYPE_CHECKING
from typing import cast

import copy

from xmppterm import builder
from xmppterm.elements import Base
from xmppterm.elements import Iq
from xmppterm.elements import Message
from xmppterm.errors import MalformedStanzaError
from xmppterm.errors import StanzaError
from xmppterm.exceptions import StanzaMalformed
from xmppterm.jid import JID
from xmppterm.modules.base import BaseModule
from xmppterm.modules.date_and_time import to_xs_datetime
from xmppterm.modules.delay import parse_delay
from xmppterm.modules.rsm import make_rsm
from xmppterm.modules.rsm import parse_rsm
from xmppterm.namespaces import Namespace
from xmppterm.structs import MAMData
from xmppterm.structs import MAMQueryData
from xmppterm.task import iq_request_task

if TYPE_CHECKING:
    from xmppterm.client import Client


class MAM(BaseModule):
    def __init__(self, client: Client) -> None:
        BaseModule.__init__(self, client)

    @iq_request_task
    def make_query(
        self,
        jid: JID,
        queryid: str | None = None,
        start: float | None = None,
        end: float | None = None,
        with_: JID | None = None,
        after: str | None = None,
        before: str | None = None,
        max_: int = 100,
    ) -> Generator[Any, Any, Any]:

        _task = yield

        response = yield _make_request(jid, queryid, start, end, with_, after, before, max_)
        if response.is_error():
            raise StanzaError(response)

        jid = response.get_from()
        fin = response.find_tag("fin", namespace=Namespace.MAM_2)
        if fin is None:
            raise MalformedStanzaError("fin node missing", response)

        rsm = parse_rsm(fin)
        if rsm is None:
            raise MalformedStanzaError("rsm set missing", response)

        complete = fin.get("complete") == "true"
        if max_ != 0 and not complete:
            # max_ == 0 asks only for the count, first and last are
            # absent in that case
            if rsm.first is None or rsm.last is None:
                raise MalformedStanzaError("first or last element missing", response)

        yield MAMQueryData(jid=jid, complete=complete, rsm=rsm)


def unwrap_mam(stanza: Message, own_jid: JID) -> tuple[Message, MAMData | None]:
    """
    Returns the forwarded message of a MAM result together with the
    archive metadata, or the stanza itself if it is no MAM result
    """
    result = stanza.find_tag("result", namespace=Namespace.MAM_2)
    if result is None:
        return stanza, None

    query_id = result.get("queryid")
    if query_id is None:
        raise StanzaMalformed("No queryid on MAM message")

    id_ = result.get("id")
    if id_ is None:
        raise StanzaMalformed("No id on MAM message")

    forwarded = result.find_tag("forwarded", namespace=Namespace.FORWARD)
    if forwarded is None:
        raise StanzaMalformed("No forwarded element on MAM message")

    forwarded_message = forwarded.find_tag("message", namespace=Namespace.CLIENT)
    if forwarded_message is None:
        raise StanzaMalformed("No message in forwarded element")

    message = cast(Message, copy.deepcopy(forwarded_message))

    # Fill missing to/from
    if message.get_to() is None:
        message.set_to(own_jid.bare)

    if message.get_from() is None:
        message.set_from(own_jid.bare)

    # Most servers dont set the 'from' attr, so we cant check for it
    delay_timestamp = parse_delay(forwarded, epoch=True)
    if delay_timestamp is None:
        raise StanzaMalformed("No timestamp on MAM message")

    archive = stanza.get_from()
    assert archive is not None

    return message, MAMData(
        id=id_,
        query_id=query_id,
        archive=archive,
        namespace=Namespace.MAM_2,
        timestamp=delay_timestamp,  # type: ignore[arg-type]
    )


def _add_field(form: Base, var: str, value: str, typ: str | None = None) -> None:
    field = form.add_tag("field", var=var)
    if typ is not None:
        field.set("type", typ)
    field.add_tag_text("value", value)


def _make_query_form(
    start: float | None, end: float | None, with_: JID | None
) -> Base:
    form = builder.DataForm(type="submit")
    _add_field(form, "FORM_TYPE", Namespace.MAM_2, typ="hidden")

    if start is not None:
        _add_field(form, "start", to_xs_datetime(start))

    if end is not None:
        _add_field(form, "end", to_xs_datetime(end))

    if with_ is not None:
        _add_field(form, "with", str(with_))

    return form


def _make_request(
    jid: JID,
    queryid: str | None,
    start: float | None,
    end: float | None,
    with_: JID | None,
    after: str | None,
    before: str | None,
    max_: int | None,
) -> Iq:
    iq = builder.Iq(to=jid, type="set", queryns=Namespace.MAM_2)
    query = iq.get_query()
    assert query is not None
    if queryid is not None:
        query.set("queryid", queryid)

    query.append(_make_query_form(start, end, with_))
    query.append(make_rsm(max_=max_, after=after, before=before))
    return iq
