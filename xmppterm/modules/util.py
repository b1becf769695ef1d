# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Callable
from typing import TYPE_CHECKING

import functools
import inspect
import logging

from xmppterm.errors import StanzaError
from xmppterm.structs import CommonResult

if TYPE_CHECKING:
    from xmppterm.elements import Iq


def process_response(response: Iq) -> CommonResult:
    if response.is_error():
        raise StanzaError(response)

    return CommonResult(jid=response.get_from())


def make_func_arguments_string(
    func: Callable[..., Any], self: Any, args: Any, kwargs: Any
) -> str:
    signature = inspect.signature(func)
    bound_arguments = signature.bind(self, *args, **kwargs)
    bound_arguments.apply_defaults()
    arg_string = ""
    for name, arg in bound_arguments.arguments.items():
        if name == "self":
            continue
        arg_string += f"{name}={arg}, "
    arg_string = arg_string[:-2]
    return f"{func.__name__}({arg_string})"


def log_calls(func: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(func)
    def func_wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        if self._log.isEnabledFor(logging.INFO):
            self._log.info(make_func_arguments_string(func, self, args, kwargs))
        return func(self, *args, **kwargs)

    return func_wrapper
