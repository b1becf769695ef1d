# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import Callable

import logging

from gi.repository import GLib

from xmppterm import builder
from xmppterm.backoff import Backoff
from xmppterm.const import ConnectionState
from xmppterm.const import DEFAULT_REQUEST_TIMEOUT
from xmppterm.const import KEEPALIVE_INTERVAL
from xmppterm.const import PING_TIMEOUT
from xmppterm.const import SASL_AUTH_MECHS
from xmppterm.const import StreamState
from xmppterm.const import TlsPolicy
from xmppterm.dispatcher import StanzaDispatcher
from xmppterm.elements import Base
from xmppterm.elements import Features
from xmppterm.elements import Iq
from xmppterm.elements import Stanza
from xmppterm.elements import StreamErrorElement
from xmppterm.errors import AuthError
from xmppterm.errors import BaseError
from xmppterm.errors import BindError
from xmppterm.errors import CancelledError
from xmppterm.errors import StanzaError
from xmppterm.errors import StreamError
from xmppterm.errors import TimeoutStanzaError
from xmppterm.errors import TransportError
from xmppterm.exceptions import InvalidJid
from xmppterm.exceptions import StanzaMalformed
from xmppterm.jid import JID
from xmppterm.namespaces import Namespace
from xmppterm.sasl import SASL
from xmppterm.session import Session
from xmppterm.task import Task
from xmppterm.tcp import TCPConnection
from xmppterm.util import generate_id
from xmppterm.util import LogAdapter
from xmppterm.util import Observable
from xmppterm.util import validate_stream_header

log = logging.getLogger("xmppterm.stream")

# Seconds to wait for the server to close its side after we sent
# </stream:stream>
CLOSE_TIMEOUT = 5

_CONNECTION_STATES = {
    StreamState.CONNECTING: ConnectionState.CONNECTING,
    StreamState.CONNECTED: ConnectionState.CONNECTING,
    StreamState.WAIT_FOR_STREAM_START: ConnectionState.STREAM_NEGOTIATING,
    StreamState.WAIT_FOR_FEATURES: ConnectionState.STREAM_NEGOTIATING,
    StreamState.WAIT_FOR_TLS_PROCEED: ConnectionState.TLS_UPGRADING,
    StreamState.PROCEED_WITH_AUTH: ConnectionState.AUTHENTICATING,
    StreamState.WAIT_FOR_BIND: ConnectionState.BINDING_RESOURCE,
    StreamState.WAIT_FOR_SESSION: ConnectionState.ESTABLISHING_SESSION,
    StreamState.ACTIVE: ConnectionState.READY,
}


class Client(Observable):
    def __init__(self, log_context: str | None = None) -> None:
        """
        Signals:
            state-changed    (ConnectionState, BaseError | None)
        """

        self._log_context = log_context
        if log_context is None:
            self._log_context = str(id(self))

        self._log = LogAdapter(log, {"context": self._log_context})

        Observable.__init__(self, self._log)

        self._lang: str = "en"
        self._domain: str | None = None
        self._username: str | None = None
        self._resource: str | None = None

        self._host: str | None = None
        self._port: int | None = None
        self._tls_policy = TlsPolicy.STARTTLS
        self._allowed_mechs: set[str] | None = None

        self._request_timeout: float = DEFAULT_REQUEST_TIMEOUT
        self._keepalive: int = KEEPALIVE_INTERVAL
        self._backoff = Backoff()

        self._session: Session | None = None
        self._session_count = 0
        self._user_disconnect = False
        self._reconnect_allowed = False

        self._con: TCPConnection | None = None
        self._tasks: list[Task] = []

        self._ping_source_id: int | None = None
        self._ping_task: Task | None = None
        self._reconnect_source_id: int | None = None
        self._close_source_id: int | None = None

        self._dispatcher = StanzaDispatcher(self)
        self._dispatcher.subscribe("stream-start", self._on_stream_start)
        self._dispatcher.subscribe("stream-error", self._on_stream_error)
        self._dispatcher.subscribe("parsing-error", self._on_parsing_error)
        self._dispatcher.subscribe("stream-end", self._on_stream_end)

        self._sasl = SASL(self)

        self._state: StreamState = StreamState.DISCONNECTED
        self._connection_state = ConnectionState.DISCONNECTED

    def add_task(self, task: Task) -> None:
        self._tasks.append(task)

    def remove_task(self, task: Task, _context: Any) -> None:
        try:
            self._tasks.remove(task)
        except ValueError:
            pass

    def get_bound_jid(self) -> JID | None:
        if self._session is None:
            return None
        return self._session.bound_jid

    @property
    def log_context(self) -> str:
        assert self._log_context is not None
        return self._log_context

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def dispatcher(self) -> StanzaDispatcher:
        return self._dispatcher

    @property
    def features(self) -> Features | None:
        if self._session is None:
            return None
        return self._session.features

    @property
    def username(self) -> str | None:
        return self._username

    def set_username(self, username: str | None) -> None:
        self._username = username

    @property
    def domain(self) -> str | None:
        return self._domain

    def set_domain(self, domain: str | None) -> None:
        self._domain = domain

    @property
    def resource(self) -> str | None:
        return self._resource

    def set_resource(self, resource: str | None) -> None:
        self._resource = resource

    def set_custom_host(self, host: str | None, port: int | None = None) -> None:
        self._host = host
        self._port = port

    @property
    def tls_policy(self) -> TlsPolicy:
        return self._tls_policy

    def set_tls_policy(self, policy: TlsPolicy) -> None:
        self._tls_policy = policy

    def set_password(self, password: str | None) -> None:
        self._sasl.set_password(password)

    @property
    def password(self) -> str | None:
        return self._sasl.password

    @property
    def mechs(self) -> set[str]:
        return set(self._allowed_mechs or SASL_AUTH_MECHS)

    def set_mechs(self, mechs: set[str] | None) -> None:
        if mechs is not None:
            unknown = set(mechs) - set(SASL_AUTH_MECHS)
            if unknown:
                raise ValueError("Unknown mechanisms: %s" % ", ".join(sorted(unknown)))
        self._allowed_mechs = mechs

    def set_request_timeout(self, timeout: float) -> None:
        self._request_timeout = timeout

    def set_keepalive(self, interval: int) -> None:
        self._keepalive = interval

    def set_backoff(self, backoff: Backoff) -> None:
        self._backoff = backoff

    @property
    def backoff(self) -> Backoff:
        return self._backoff

    @property
    def is_stream_secure(self) -> bool:
        if self._session is None:
            return False
        return self._session.secure

    @property
    def state(self) -> StreamState:
        return self._state

    @state.setter
    def state(self, value: StreamState) -> None:
        self._state = value
        self._log.info("Set state: %s", value)

        connection_state = _CONNECTION_STATES.get(value)
        if connection_state is None:
            return

        if (
            connection_state == ConnectionState.STREAM_NEGOTIATING
            and self._connection_state != ConnectionState.CONNECTING
        ):
            # Stream restarts after TLS and SASL stay in the current phase
            return

        self._set_connection_state(connection_state)

    def set_state(self, state: StreamState) -> None:
        self.state = state
        self._xmpp_state_machine()

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def is_ready(self) -> bool:
        return self._connection_state.is_ready

    def _set_connection_state(
        self, state: ConnectionState, error: BaseError | None = None
    ) -> None:
        if state == self._connection_state and error is None:
            return

        self._connection_state = state
        if self._session is not None and not self._session.ended:
            self._session.state = state

        self._log.info("Connection state: %s", state.value)
        self.notify("state-changed", state, error)

    def get_module(self, name: str) -> Any:
        return self._dispatcher.get_module(name)

    def register_handler(self, *args: Any, **kwargs: Any) -> None:
        self._dispatcher.register_handler(*args, **kwargs)

    def unregister_handler(self, *args: Any, **kwargs: Any) -> None:
        self._dispatcher.unregister_handler(*args, **kwargs)

    def connect(self) -> None:
        if self._connection_state not in (
            ConnectionState.DISCONNECTED,
            ConnectionState.RECONNECTING,
        ):
            self._log.error(
                "Stream can't connect, connection state: %s", self._connection_state
            )
            return

        if self._domain is None:
            raise ValueError("No domain set")

        self._log.info("Connect")
        self._user_disconnect = False
        self._remove_reconnect_timer()
        self._connect()

    def _connect(self) -> None:
        self._session_count += 1
        self._session = Session(number=self._session_count)
        self.state = StreamState.CONNECTING

        assert self._domain is not None
        self._con = TCPConnection(
            self.log_context,
            self._domain,
            self._host,
            self._port,
            self._tls_policy,
        )

        self._con.subscribe("connected", self._on_connected)
        self._con.subscribe("connection-failed", self._on_connection_failed)
        self._con.subscribe("disconnected", self._on_disconnected)
        self._con.subscribe("data-received", self._on_data_received)
        self._con.connect()

    def disconnect(self, immediate: bool = False) -> None:
        self._user_disconnect = True
        self._reconnect_allowed = False

        if self._connection_state == ConnectionState.RECONNECTING:
            self._remove_reconnect_timer()
            self._set_connection_state(ConnectionState.DISCONNECTED)
            return

        if self._state == StreamState.DISCONNECTED:
            self._log.warning("Stream can't disconnect, stream state: %s", self._state)
            return

        if self._state == StreamState.DISCONNECTING:
            if immediate and self._con is not None:
                self._con.disconnect()
            return

        self._disconnect(immediate=immediate)

    def _disconnect(self, immediate: bool = True) -> None:
        assert self._con is not None
        started = self._state not in (StreamState.CONNECTING, StreamState.CONNECTED)

        self.state = StreamState.DISCONNECTING
        self._remove_ping_timer()
        self._cancel_ping_task()

        if immediate or not started:
            self._con.disconnect()
            return

        assert self._session is not None
        self._session.close_initiated = True
        self._end_stream()
        self._con.shutdown_output()
        self._close_source_id = GLib.timeout_add_seconds(
            CLOSE_TIMEOUT, self._on_close_timeout
        )

    def _disconnect_with_error(self, error: BaseError, immediate: bool = False) -> None:
        if self._session is None or self._session.ended:
            return

        self._log.warning(error)
        self._session.set_error(error)

        if self._state == StreamState.DISCONNECTING:
            if immediate and self._con is not None:
                self._con.disconnect()
            return

        self._disconnect(immediate=immediate)

    def _on_close_timeout(self) -> bool:
        self._close_source_id = None
        self._log.info("Server did not close the stream, closing socket")
        if self._con is not None:
            self._con.disconnect()
        return False

    def _on_connected(self, _connection: TCPConnection, _signal_name: str) -> None:
        self.state = StreamState.CONNECTED
        self._dispatcher.set_dispatch_callback(self._xmpp_state_machine)

        if self._tls_policy.is_direct_tls:
            if not self._upgrade_to_tls():
                return

        self._start_stream()

    def _upgrade_to_tls(self) -> bool:
        assert self._con is not None
        assert self._session is not None
        try:
            self._con.start_tls_negotiation()
        except GLib.Error as error:
            self._log.error("TLS setup failed: %s", error)
            self._disconnect_with_error(
                TransportError(TransportError.TLS_HANDSHAKE, error.message),
                immediate=True,
            )
            return False

        self._session.secure = True
        return True

    def _on_connection_failed(
        self, _connection: TCPConnection, _signal_name: str, error: TransportError
    ) -> None:
        if self._session is not None:
            self._session.set_error(error)
        self._end_session()

    def _on_disconnected(
        self,
        _connection: TCPConnection,
        _signal_name: str,
        error: TransportError | None,
    ) -> None:
        if self._session is not None and error is not None:
            self._session.set_error(error)
        self._end_session()

    def _on_data_received(
        self, _connection: TCPConnection, _signal_name: str, data: str
    ) -> None:
        self._dispatcher.process_data(data)
        self._reset_ping_timer()

    def _on_stream_start(
        self, _dispatcher: StanzaDispatcher, _signal_name: str, element: Base
    ) -> None:
        self._xmpp_state_machine(element)

    def _on_stream_error(
        self,
        _dispatcher: StanzaDispatcher,
        _signal_name: str,
        condition: str,
        text: str,
    ) -> None:
        self._disconnect_with_error(StreamError(condition, text))

    def _on_parsing_error(
        self, _dispatcher: StanzaDispatcher, _signal_name: str, text: str
    ) -> None:
        if self._state == StreamState.DISCONNECTING:
            # Don't notify about parsing errors if we already ended the stream
            return

        error = StreamError("malformed-xml", text)
        self._dispatcher.fail_all_requests(error)
        self._disconnect_with_error(error, immediate=True)

    def _on_stream_end(
        self, _dispatcher: StanzaDispatcher, _signal_name: str
    ) -> None:
        session = self._session
        if self._con is None or session is None:
            return

        if not session.close_initiated:
            session.set_error(StreamError("stream-end", "Stream closed by server"))

        self._con.shutdown_input()
        if session.ended or session.close_initiated:
            return

        session.close_initiated = True
        self.state = StreamState.DISCONNECTING
        self._remove_ping_timer()
        self._cancel_ping_task()
        self._end_stream()
        self._con.shutdown_output()

    def _end_stream(self) -> None:
        self.send_nonza(builder.StreamEnd())

    def _end_session(self) -> None:
        session = self._session
        if session is None or session.ended:
            return

        session.ended = True
        self.state = StreamState.DISCONNECTED
        self._con = None
        self._remove_ping_timer()
        self._cancel_ping_task()
        self._remove_close_timer()
        self._dispatcher.set_dispatch_callback(None)

        error = session.error
        if error is None and not self._user_disconnect:
            error = TransportError(TransportError.RESET, "Connection closed")

        self._dispatcher.fail_all_requests(error or CancelledError())
        for task in list(self._tasks):
            task.cancel()

        self._dispatcher.get_module("Discovery").clear_cache()
        self._dispatcher.reset_session()
        self._session = None

        if isinstance(error, AuthError):
            # Retrying with the same credentials will fail again
            self._reconnect_allowed = False

        if self._user_disconnect or not self._reconnect_allowed:
            self._set_connection_state(ConnectionState.DISCONNECTED, error)
            return

        self._set_connection_state(ConnectionState.RECONNECTING, error)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        delay = self._backoff.next_delay()
        self._log.info(
            "Reconnect in %.1f seconds (attempt %s)", delay, self._backoff.attempts
        )
        self._reconnect_source_id = GLib.timeout_add(
            int(delay * 1000), self._on_reconnect_timeout
        )

    def _on_reconnect_timeout(self) -> bool:
        self._reconnect_source_id = None
        if self._connection_state != ConnectionState.RECONNECTING:
            return False

        self._log.info("Reconnect")
        self._connect()
        return False

    def _remove_reconnect_timer(self) -> None:
        if self._reconnect_source_id is None:
            return
        self._log.info("Remove reconnect timer")
        GLib.source_remove(self._reconnect_source_id)
        self._reconnect_source_id = None

    def _remove_close_timer(self) -> None:
        if self._close_source_id is None:
            return
        GLib.source_remove(self._close_source_id)
        self._close_source_id = None

    def _reset_ping_timer(self) -> None:
        if self._state != StreamState.ACTIVE:
            return

        if self._ping_source_id is not None:
            self._log.debug("Remove ping timer")
            GLib.source_remove(self._ping_source_id)
            self._ping_source_id = None

        self._log.debug("Start ping timer")
        self._ping_source_id = GLib.timeout_add_seconds(self._keepalive, self._ping)

    def _remove_ping_timer(self) -> None:
        if self._ping_source_id is None:
            return
        self._log.info("Remove ping timer")
        GLib.source_remove(self._ping_source_id)
        self._ping_source_id = None

    def _ping(self) -> bool:
        self._ping_source_id = None
        assert self._domain is not None
        self._ping_task = self.get_module("Ping").ping(
            JID.from_string(self._domain),
            timeout=PING_TIMEOUT,
            callback=self._on_pong,
        )
        return False

    def _on_pong(self, task: Task) -> None:
        self._ping_task = None

        try:
            task.finish()
        except TimeoutStanzaError:
            self._log.info("Ping timeout")
            self._disconnect_with_error(
                TransportError(TransportError.RESET, "Ping timeout"), immediate=True
            )
            return

        except CancelledError:
            return

        except StanzaError:
            # Any answer proves the connection is alive
            pass

        self._log.info("Pong")

    def _cancel_ping_task(self) -> None:
        if self._ping_task is not None:
            self._ping_task.cancel()
            self._ping_task = None

    def send_stanza(
        self,
        stanza: Stanza,
        now: bool = False,
        callback: Callable[..., Any] | None = None,
        timeout: float | None = None,
    ) -> str:

        if not isinstance(stanza, Stanza):
            raise ValueError("Nonzas not allowed, use send_nonza()")

        id_ = stanza.get_id()
        if id_ is None:
            if stanza.localname == "iq":
                id_ = self._dispatcher.new_request_id()
            else:
                id_ = generate_id()
            stanza.set("id", id_)

        if callback is not None:
            if timeout is None:
                timeout = self._request_timeout
            self._dispatcher.add_request(id_, callback, timeout)

        if self._con is None:
            # The request resolves with a timeout if one was registered
            self._log.warning("Not connected, stanza %s not sent", id_)
            return id_

        self._con.send(stanza, now)
        return id_

    def cancel_request(self, id_: str) -> bool:
        return self._dispatcher.cancel_request(id_)

    def send_nonza(self, nonza: Any, now: bool = False) -> None:
        if self._con is None:
            self._log.warning("Not connected, nonza not sent")
            return
        self._con.send(nonza, now)

    def _xmpp_state_machine(self, stanza: Base | None = None) -> None:
        self._log.info("Execute state machine")
        session = self._session
        if session is None or session.ended:
            return

        if isinstance(stanza, StreamErrorElement):
            self._log.info("Stream error")
            self._disconnect_with_error(
                StreamError(stanza.get_condition(), stanza.get_text())
            )
            return

        if self.state == StreamState.WAIT_FOR_STREAM_START:
            assert stanza is not None
            assert self._domain is not None
            try:
                session.stream_id = validate_stream_header(stanza, self._domain)
            except StanzaMalformed as error:
                self._log.error(error)
                self._disconnect_with_error(StreamError("invalid-header", str(error)))
                return

            self.state = StreamState.WAIT_FOR_FEATURES

        elif self.state == StreamState.WAIT_FOR_FEATURES:
            if not isinstance(stanza, Features):
                self._log.error("Invalid response: %s", stanza)
                self._disconnect_with_error(
                    StreamError("invalid-response", "Expected stream features")
                )
                return
            self._on_stream_features(stanza)

        elif self.state == StreamState.WAIT_FOR_TLS_PROCEED:
            assert stanza is not None
            if stanza.namespace != Namespace.TLS:
                self._disconnect_with_error(
                    StreamError("invalid-response", "Invalid namespace for TLS response")
                )
                return

            if stanza.localname == "failure":
                self._disconnect_with_error(
                    TransportError(TransportError.TLS_HANDSHAKE, "negotiation-failed")
                )
                return

            if stanza.localname == "proceed":
                if self._upgrade_to_tls():
                    self._start_stream()
                return

            self._log.error("Invalid response")
            self._disconnect_with_error(
                StreamError("invalid-response", "Invalid TLS response")
            )

        elif self.state == StreamState.PROCEED_WITH_AUTH:
            assert stanza is not None
            self._sasl.delegate(stanza)

        elif self.state == StreamState.AUTH_SUCCESSFUL:
            session.authenticated = True
            self._start_stream()

        elif self.state == StreamState.AUTH_FAILED:
            error = self._sasl.error
            self._disconnect_with_error(error or AuthError("not-authorized"))

        elif self.state == StreamState.WAIT_FOR_BIND:
            self._on_bind(stanza)

        elif self.state == StreamState.WAIT_FOR_SESSION:
            self._on_session(stanza)

        elif self.state == StreamState.BIND_SUCCESSFUL:
            self._dispatcher.set_dispatch_callback(None)
            self._backoff.reset()
            self._reconnect_allowed = True
            self.state = StreamState.ACTIVE
            self._reset_ping_timer()

    def _on_stream_features(self, features: Features) -> None:
        assert self._session is not None
        if self._session.authenticated:
            self._session.features = features
            self._session.session_required = features.session_required()
            if not features.has_bind():
                self._disconnect_with_error(BindError("bind-not-supported"))
                return
            self._start_bind()

        elif self._session.secure:
            self._start_auth(features)

        else:
            tls_supported, required = features.has_starttls()
            if self._tls_policy.is_plain:
                if required:
                    self._log.error("Server requires TLS")
                    self._disconnect_with_error(StreamError("tls-required"))
                    return
                self._start_auth(features)
                return

            if not tls_supported:
                self._log.error("Server does not support TLS")
                self._disconnect_with_error(StreamError("tls-not-supported"))
                return
            self._start_tls()

    def _start_stream(self) -> None:
        self._log.info("Start stream")
        assert self._session is not None
        assert self._domain is not None
        self._session.stream_id = None
        self._dispatcher.reset_parser()
        self.send_nonza(builder.StreamStart(self._domain, self._lang))
        self.state = StreamState.WAIT_FOR_STREAM_START

    def _start_tls(self) -> None:
        self.send_nonza(builder.E("starttls", namespace=Namespace.TLS))
        self.state = StreamState.WAIT_FOR_TLS_PROCEED

    def _start_auth(self, features: Features) -> None:
        if not features.has_sasl():
            self._log.error("Server does not support SASL")
            self._disconnect_with_error(AuthError("sasl-not-supported"))
            return
        self.state = StreamState.PROCEED_WITH_AUTH
        self._sasl.start_auth(features)

    def _start_bind(self) -> None:
        self._log.info("Send bind")
        iq = builder.Iq(type="set")
        bind = iq.add_tag("bind", namespace=Namespace.BIND)
        if self._resource:
            bind.add_tag_text("resource", self._resource)
        self.send_stanza(iq)
        self.state = StreamState.WAIT_FOR_BIND

    def _on_bind(self, stanza: Base | None) -> None:
        if not isinstance(stanza, Iq):
            self._log.warning("Unexpected stanza while binding: %s", stanza)
            return

        if stanza.is_error():
            error = StanzaError(stanza)
            self._disconnect_with_error(BindError(error.condition, error.get_text()))
            return

        bind = stanza.find_tag("bind", namespace=Namespace.BIND)
        jid = bind.find_tag_text("jid") if bind is not None else None
        try:
            bound_jid = JID.from_string(jid or "")
        except InvalidJid as error:
            self._disconnect_with_error(BindError("bad-request", str(error)))
            return

        assert self._session is not None
        self._session.bound_jid = bound_jid
        self._log.info("Successfully bound %s", bound_jid)

        if not self._session.session_required:
            # Server don't want us to initialize a session
            self._log.info("No session required")
            self.set_state(StreamState.BIND_SUCCESSFUL)
            return

        iq = builder.Iq(type="set")
        iq.add_tag("session", namespace=Namespace.SESSION)
        self.send_stanza(iq)
        self.state = StreamState.WAIT_FOR_SESSION

    def _on_session(self, stanza: Base | None) -> None:
        if not isinstance(stanza, Iq):
            self._log.warning("Unexpected stanza while starting session: %s", stanza)
            return

        if stanza.is_error():
            self._log.error("Session open failed")
            error = StanzaError(stanza)
            self._disconnect_with_error(
                StreamError(error.condition or "session-failed", error.get_text())
            )
            return

        self._log.info("Successfully started session")
        self.set_state(StreamState.BIND_SUCCESSFUL)

    def destroy(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._remove_ping_timer()
        self._remove_reconnect_timer()
        self._remove_close_timer()
        self._dispatcher.cleanup()
        self.remove_subscriptions()
