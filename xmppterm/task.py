# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Callable
from typing import Generator
from typing import TYPE_CHECKING

import inspect
import logging
import weakref
from enum import IntEnum
from functools import wraps

from xmppterm.elements import Stanza
from xmppterm.errors import BaseError
from xmppterm.errors import CancelledError
from xmppterm.errors import is_error
from xmppterm.modules.util import make_func_arguments_string

if TYPE_CHECKING:
    from xmppterm.client import Client

log = logging.getLogger("xmppterm.task")


class NoType:
    pass


class TaskState(IntEnum):
    INIT = 0
    RUNNING = 1
    FINISHED = 2
    CANCELLED = 3

    @property
    def is_init(self) -> bool:
        return self == TaskState.INIT

    @property
    def is_running(self) -> bool:
        return self == TaskState.RUNNING

    @property
    def is_finished(self) -> bool:
        return self == TaskState.FINISHED

    @property
    def is_cancelled(self) -> bool:
        return self == TaskState.CANCELLED


def _setup_task(
    task: Task, client: Client, callback: Callable[..., Any] | None, user_data: Any
) -> Task:
    client.add_task(task)
    task.set_finalize_func(client.remove_task)
    task.set_user_data(user_data)
    if callback is not None:
        task.add_done_callback(callback)
    task.start()
    return task


def iq_request_task(func: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(func)
    def func_wrapper(
        self: Any,
        *args: Any,
        timeout: float | None = None,
        callback: Callable[..., Any] | None = None,
        user_data: Any = None,
        **kwargs: Any,
    ) -> Task:
        if self._log.isEnabledFor(logging.INFO):
            self._log.info(make_func_arguments_string(func, self, args, kwargs))
        task = IqRequestTask(func(self, *args, **kwargs), self._log, self._client)
        task.set_timeout(timeout)
        return _setup_task(task, self._client, callback, user_data)

    return func_wrapper


def generic_task(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Runs the decorated generator as a Task which may yield sub tasks,
    for example one IQ request per result page
    """

    @wraps(func)
    def func_wrapper(
        self: Any,
        *args: Any,
        callback: Callable[..., Any] | None = None,
        user_data: Any = None,
        **kwargs: Any,
    ) -> Task:
        task = Task(func(self, *args, **kwargs), self._log)
        return _setup_task(task, self._client, callback, user_data)

    return func_wrapper


def is_fatal_error(error: Any) -> bool:
    if is_error(error):
        return error.is_fatal
    return isinstance(error, Exception)


class Task:
    """
    Base class for wrapping a generator method.

    It runs the generator depending on what the generator yields. If the
    generator yields another task a sub task is created. If it yields
    a type defined in _process_types, _run_async() is called which needs to
    be implemented by classes.

    _run_async() must not call _async_finished() in the same loop turn,
    otherwise sub tasks may break. _async_finished() needs to call
    _next_step(result).
    """

    _process_types: tuple[type, ...] = (NoType,)

    def __init__(self, gen: Generator[Any, Any, Any], logger: Any = log) -> None:
        self._logger = logger
        self._gen = gen
        self._done_callbacks: list[Any] = []
        self._sub_task: Task | None = None
        self._result: Any = None
        self._error: Any = None
        self._user_data: Any = None
        self._timeout: float | None = None
        self._finalize_func: Callable[..., Any] | None = None
        self._finalize_context: Any = None
        self._state = TaskState.INIT

    @property
    def state(self) -> TaskState:
        return self._state

    def add_done_callback(self, callback: Callable[..., Any], weak: bool = True) -> None:
        if self._state.is_finished or self._state.is_cancelled:
            raise RuntimeError("Task is finished")

        if weak:
            if inspect.ismethod(callback):
                callback = weakref.WeakMethod(callback)
            elif inspect.isfunction(callback):
                callback = weakref.ref(callback)
            else:
                raise ValueError("Unknown callback object")

        self._done_callbacks.append(callback)

    def set_timeout(self, timeout: float | None) -> None:
        self._timeout = timeout

    def start(self) -> None:
        if not self._state.is_init:
            raise RuntimeError("Task already started")

        self._state = TaskState.RUNNING
        next(self._gen)
        self._next_step(self)

    def _run_async(self, data: Any) -> None:
        raise NotImplementedError

    def _async_finished(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def _sub_task_completed(self, task: Task) -> None:
        self._sub_task = None
        if not self._state.is_running:
            return

        result = task.get_result()
        if is_fatal_error(result):
            self._error = result
            self._set_finished()
        else:
            self._next_step(result)

    def _next_step(self, result: Any) -> None:
        try:
            res = self._gen.send(result)
        except StopIteration:
            self._set_finished()
            return

        except Exception as error:
            self._log_if_fatal(error)
            self._error = error
            self._set_finished()
            return

        if isinstance(res, self._process_types):
            self._run_async(res)

        elif isinstance(res, Task):
            if self._sub_task is not None:
                raise RuntimeError("Only one sub task can be active")

            self._sub_task = res
            self._sub_task.add_done_callback(self._sub_task_completed, weak=False)

        else:
            self._result = res
            self._set_finished()

    def _set_finished(self) -> None:
        self._state = TaskState.FINISHED
        self._invoke_callbacks()
        self._finalize()

    def _log_if_fatal(self, error: Any) -> None:
        if is_error(error):
            if error.is_fatal:
                self._logger.log(error.log_level, error)

        elif isinstance(error, Exception):
            self._logger.exception("Fatal Exception")

    def _invoke_callbacks(self) -> None:
        for callback in self._done_callbacks:
            if isinstance(callback, (weakref.WeakMethod, weakref.ref)):
                callback = callback()
                if callback is None:
                    continue

            try:
                callback(self)
            except CancelledError:
                pass

    def get_result(self) -> Any:
        # None is a valid result, the error wins if one is set
        if self._error is not None:
            return self._error
        return self._result

    def finish(self) -> Any:
        if self._error is not None:
            raise self._error
        return self._result

    def set_user_data(self, user_data: Any) -> None:
        self._user_data = user_data

    def get_user_data(self) -> Any:
        return self._user_data

    def set_finalize_func(self, func: Callable[..., Any], context: Any = None) -> None:
        self._finalize_func = func
        self._finalize_context = context

    def cancel(self, invoke_callbacks: bool = True) -> None:
        if not self._state.is_running:
            return

        self._state = TaskState.CANCELLED
        if self._sub_task is not None:
            self._sub_task.cancel(invoke_callbacks=False)

        self._error = CancelledError()
        if invoke_callbacks:
            self._invoke_callbacks()
        self._finalize()

    def _finalize(self) -> None:
        self._done_callbacks.clear()
        self._sub_task = None
        self._gen.close()
        if self._finalize_func is not None:
            self._finalize_func(self, self._finalize_context)
            self._finalize_func = None


class IqRequestTask(Task):
    """
    A Task for running IQ requests

    Every yielded stanza becomes one pending request in the dispatcher,
    the continuation is resolved exactly once with the response, a
    TimeoutStanzaError or a session error.
    """

    _process_types = (Stanza,)

    def __init__(self, gen: Generator[Any, Any, Any], logger: Any, client: Client) -> None:
        super().__init__(gen, logger)
        self._client: Client | None = client
        self._iq_id: str | None = None

    def _run_async(self, data: Stanza) -> None:
        assert self._client is not None
        self._iq_id = self._client.send_stanza(
            data, callback=self._async_finished, timeout=self._timeout
        )

    def _async_finished(self, _client: Client, result: Any) -> None:
        self._iq_id = None
        if not self._state.is_running:
            return

        if isinstance(result, BaseError):
            self._log_if_fatal(result)
            self._error = result
            self._set_finished()
            return

        self._next_step(result)

    def _finalize(self) -> None:
        if self._iq_id is not None and self._client is not None:
            self._client.cancel_request(self._iq_id)
            self._iq_id = None
        self._client = None
        super()._finalize()
