# Copyright (C) 2018 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

import datetime as dt
import logging
import re
import time

log = logging.getLogger("xmppterm.m.date_and_time")

PATTERN_DATETIME = re.compile(
    r"""
    ([0-9]{4}-[0-9]{2}-[0-9]{2})    # Date
    T                               # Separator
    ([0-9]{2}:[0-9]{2}:[0-9]{2})    # Time
    (?P<frac>\.[0-9]{0,6})?         # Fractual Seconds
    [0-9]*                          # lose everything > 6
    (Z|[-+][0-9]{2}:[0-9]{2})       # UTC Offset
    $                               # End of String
""",
    re.VERBOSE,
)

PATTERN_DATE = re.compile(r"^([0-9]{4})-([0-9]{2})-([0-9]{2})$")


def parse_datetime(
    timestring: str | None,
    check_utc: bool = False,
    convert: str | None = "utc",
    epoch: bool = False,
) -> dt.datetime | float | None:
    """
    Parse a XEP-0082 DateTime Profile String

    :param timestring: a XEP-0082 DateTime profile formated string

    :param check_utc:  if True, returns None if timestring is not
                       a timestring expressing UTC

    :param convert:    convert the given timestring to utc or local time

    :param epoch:      if True, returns the time in epoch

    Examples:
    '2017-11-05T01:41:20Z'
    '2017-11-05T01:41:20.123Z'
    '2017-11-05T01:41:20.123+05:00'
    """
    if timestring is None:
        return None
    if convert not in (None, "utc", "local"):
        raise TypeError('"%s" is not a valid value for convert' % convert)

    match = PATTERN_DATETIME.match(timestring)
    if match is None:
        return None

    timestring = "".join(match.groups(""))
    strformat = "%Y-%m-%d%H:%M:%S%z"
    if match.group("frac"):
        strformat = "%Y-%m-%d%H:%M:%S.%f%z"

    try:
        date_time = dt.datetime.strptime(timestring, strformat)
    except ValueError:
        return None

    if not 1 < date_time.year < 9999:
        # Keep conversions to other timezones in range
        return None

    if check_utc:
        if convert != "utc":
            raise ValueError('check_utc can only be used with convert="utc"')

        if date_time.utcoffset() != dt.timedelta(0):
            return None

    if convert == "utc":
        date_time = date_time.astimezone(dt.timezone.utc)
        if epoch:
            return date_time.timestamp()
        return date_time

    if epoch:
        # epoch is always UTC, use convert='utc' or check_utc=True
        raise ValueError("epoch not available while converting to local")

    if convert == "local":
        return date_time.astimezone()

    return date_time


def parse_user_date(value: str) -> float | None:
    """
    Accepts either a XEP-0082 DateTime or a plain YYYY-MM-DD date (UTC
    midnight), returns epoch seconds
    """
    timestamp = parse_datetime(value, epoch=True)
    if timestamp is not None:
        return timestamp  # type: ignore[return-value]

    match = PATTERN_DATE.match(value)
    if match is None:
        return None

    try:
        date = dt.datetime(*map(int, match.groups()), tzinfo=dt.timezone.utc)
    except ValueError:
        return None
    return date.timestamp()


def to_xs_datetime(timestamp: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(timestamp))
