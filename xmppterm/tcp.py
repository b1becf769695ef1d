# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any

import logging
from collections import deque

from gi.repository import Gio
from gi.repository import GLib

from xmppterm.connection import Connection
from xmppterm.const import TCPState
from xmppterm.errors import TransportError
from xmppterm.util import utf8_decode

log = logging.getLogger("xmppterm.tcp")

READ_BUFFER_SIZE = 8192
CONNECT_TIMEOUT = 7
DIRECT_TLS_PORT = 5223
PLAIN_PORT = 5222


def classify_connect_error(error: GLib.Error) -> str:
    """
    Map a GIO connect error to one of the TransportError kinds
    """
    if error.domain == "g-resolver-error-quark":
        return TransportError.DNS

    if error.domain == "g-tls-error-quark":
        return TransportError.TLS_HANDSHAKE

    # The quark is not registered before GIO raised its first error,
    # compare by domain name instead of GLib.quark_try_string()
    if error.domain == "g-io-error-quark":
        if error.code == Gio.IOErrorEnum.HOST_NOT_FOUND:
            return TransportError.DNS

        if error.code == Gio.IOErrorEnum.CONNECTION_REFUSED:
            return TransportError.REFUSED

    return TransportError.RESET


class TCPConnection(Connection):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        Connection.__init__(self, *args, **kwargs)

        self._client: Gio.SocketClient | None = Gio.SocketClient.new()
        self._client.set_protocol(Gio.SocketProtocol.TCP)
        self._client.set_timeout(CONNECT_TIMEOUT)

        self._con: Gio.SocketConnection | None = None

        self._read_buffer = b""

        self._write_queue: deque[Any] = deque([])
        self._write_stanza_buffer: deque[Any] = deque([])

        self._connect_cancellable = Gio.Cancellable()
        self._read_cancellable = Gio.Cancellable()

        self._tls_handshake_in_progress = False
        self._input_closed = False
        self._output_closed = False

    def connect(self) -> None:
        self.state = TCPState.CONNECTING
        assert self._client is not None

        if self._host is not None:
            port = self._port
            if port is None:
                port = DIRECT_TLS_PORT if self._tls_policy.is_direct_tls else PLAIN_PORT
            self._client.connect_to_host_async(
                self._host,
                port,
                self._connect_cancellable,
                self._on_connect_finished,
                None,
            )

        elif self._tls_policy.is_direct_tls:
            self._client.connect_to_host_async(
                self._domain,
                self._port or DIRECT_TLS_PORT,
                self._connect_cancellable,
                self._on_connect_finished,
                None,
            )

        else:
            self._client.connect_to_service_async(
                self._domain,
                "xmpp-client",
                self._connect_cancellable,
                self._on_connect_finished,
                None,
            )

    def _on_connect_finished(
        self, client: Gio.SocketClient, result: Gio.AsyncResult, _user_data: Any
    ) -> None:
        try:
            if self._host is not None or self._tls_policy.is_direct_tls:
                self._con = client.connect_to_host_finish(result)
            else:
                self._con = client.connect_to_service_finish(result)
        except GLib.Error as error:
            self._log.info("Connect Error: %s", error)
            if self.state == TCPState.DISCONNECTING:
                self._finalize("disconnected", None)
                return
            kind = classify_connect_error(error)
            self._finalize("connection-failed", self._fail(kind, error.message))
            return

        # The timeout is only used for connecting
        self._con.get_socket().set_timeout(0)
        self._con.set_graceful_disconnect(True)
        self._con.get_socket().set_keepalive(True)

        self._remote_address = self._con.get_remote_address().to_string()
        self.state = TCPState.CONNECTED

        self._log.info("Connected to %s (%s)", self._domain, self._remote_address)

        self.notify("connected")
        self._read_async()

    def start_tls_negotiation(self) -> None:
        """
        Wrap the current socket connection into a TLS client connection

        Input which is already buffered in the parser stays untouched, the
        next read is issued on the wrapped stream.
        """
        self._log.info("Start TLS negotiation")
        assert self._con is not None
        self._tls_handshake_in_progress = True
        remote_address = self._con.get_remote_address()
        identity = Gio.NetworkAddress.new(self._domain, remote_address.props.port)

        tls_con = Gio.TlsClientConnection.new(self._con, identity)
        if self._tls_policy.is_direct_tls:
            tls_con.set_advertised_protocols(["xmpp-client"])
        tls_con.connect("notify::peer-certificate", self._on_certificate_set)

        # Wraps the Gio.TlsClientConnection and the Gio.Socket together
        # so we get back a Gio.SocketConnection
        self._con = Gio.TcpWrapperConnection.new(tls_con, self._con.get_socket())
        self._is_secure = True

    def _on_certificate_set(self, _connection: Gio.TlsClientConnection, _param: Any) -> None:
        self._log.info("TLS handshake finished")
        self._tls_handshake_in_progress = False

    def _read_async(self) -> None:
        if self._input_closed or self._con is None:
            return

        self._con.get_input_stream().read_bytes_async(
            READ_BUFFER_SIZE,
            GLib.PRIORITY_LOW,
            self._read_cancellable,
            self._on_read_async_finish,
            None,
        )

    def _on_read_async_finish(
        self, stream: Gio.InputStream, result: Gio.AsyncResult, _user_data: Any
    ) -> None:
        try:
            data = stream.read_bytes_finish(result)
        except GLib.Error as error:
            quark = GLib.quark_try_string("g-io-error-quark")
            if error.matches(quark, Gio.IOErrorEnum.CANCELLED):
                if self._input_closed:
                    return

            quark = GLib.quark_try_string("g-tls-error-quark")
            if error.matches(quark, Gio.TlsError.MISC) or error.matches(
                quark, Gio.TlsError.BAD_CERTIFICATE
            ):
                if self._tls_handshake_in_progress:
                    self._log.error("Handshake failed: %s", error)
                    self._finalize(
                        "connection-failed",
                        self._fail(TransportError.TLS_HANDSHAKE, error.message),
                    )
                    return

            if error.matches(quark, Gio.TlsError.EOF):
                self._log.info("Incoming stream closed: TLS EOF")
                self._finalize("disconnected", self._closed_error())
                return

            self._log.error("Read Error: %s", error)

            if self._state not in (TCPState.DISCONNECTING, TCPState.DISCONNECTED):
                self._finalize(
                    "disconnected", self._fail(TransportError.RESET, error.message)
                )
            return

        data = data.get_data()
        if not data:
            self._log.info("Received zero data on _read_async()")
            self._finalize("disconnected", self._closed_error())
            return

        self._read_buffer += data

        try:
            data, self._read_buffer = utf8_decode(self._read_buffer)
        except UnicodeDecodeError as error:
            self._log.warning(error)
            self._log.warning('read buffer: "%s"', self._read_buffer)
            self._finalize("disconnected", self._fail(TransportError.RESET, str(error)))
            return

        self._log_stanza(data, received=True)

        try:
            self.notify("data-received", data)
        except Exception:
            self._log.exception("Error while executing data-received:")

        # The next read is issued only after the data was processed,
        # <proceed/> may have replaced the stream in between
        self._read_async()

    def _closed_error(self) -> TransportError | None:
        if self._output_closed:
            return None
        return self._fail(TransportError.RESET, "Connection closed by peer")

    def _write_stanzas(self) -> None:
        self._write_stanza_buffer = self._write_queue
        self._write_queue = deque([])
        data = "".join(map(str, self._write_stanza_buffer)).encode()
        self._write_all_async(data)

    def _write_all_async(self, data: bytes) -> None:
        # data is passed as user_data so python keeps a reference
        # until GLib has written it to the stream
        assert self._con is not None
        self._con.get_output_stream().write_all_async(
            data, GLib.PRIORITY_DEFAULT, None, self._on_write_all_async_finished, data
        )

    def _on_write_all_async_finished(
        self, stream: Gio.OutputStream, result: Gio.AsyncResult, data: bytes
    ) -> None:
        try:
            stream.write_all_finish(result)
        except GLib.Error as error:
            if self._output_closed:
                self._check_for_shutdown()
                return

            self._log.error("Write Error: %s", error)
            kind = TransportError.RESET
            if self._tls_handshake_in_progress and error.domain == "g-tls-error-quark":
                kind = TransportError.TLS_HANDSHAKE
            self._finalize("disconnected", self._fail(kind, error.message))
            return

        self._log_stanza(data.decode(), received=False)

        for stanza in self._write_stanza_buffer:
            try:
                self.notify("data-sent", stanza)
            except Exception:
                self._log.exception("Error while executing data-sent:")

        if self._con is None:
            return

        if self._output_closed and not self._write_queue:
            self._check_for_shutdown()
            return

        if self._write_queue:
            self._write_stanzas()

    def send(self, stanza: Any, now: bool = False) -> None:
        if self._state in (TCPState.DISCONNECTED, TCPState.CONNECTING):
            self._log.warning("send() not possible in state: %s", self._state)
            return

        if self._output_closed:
            self._log.warning("send() not possible, output closed")
            return

        if now:
            self._write_queue.appendleft(stanza)
        else:
            self._write_queue.append(stanza)

        assert self._con is not None
        if not self._con.get_output_stream().has_pending():
            self._write_stanzas()

    def disconnect(self) -> None:
        if self.state == TCPState.CONNECTING:
            self.state = TCPState.DISCONNECTING
            self._connect_cancellable.cancel()
            return

        if self._state == TCPState.DISCONNECTED:
            self._log.warning("Called disconnect on state: %s", self._state)
            return

        # Also reached after shutdown_output() when the peer never
        # closes its side
        self.state = TCPState.DISCONNECTING
        self._output_closed = True
        self._finalize("disconnected", None)

    def _check_for_shutdown(self) -> None:
        if self._input_closed and self._output_closed:
            self._finalize("disconnected", None)

    def shutdown_input(self) -> None:
        self._log.info("Shutdown input")
        self._input_closed = True
        self._read_cancellable.cancel()
        self._check_for_shutdown()

    def shutdown_output(self) -> None:
        self.state = TCPState.DISCONNECTING
        self._log.info("Shutdown output")
        self._output_closed = True
        if self._con is not None and not self._con.get_output_stream().has_pending():
            self._check_for_shutdown()

    def _finalize(self, signal_name: str, error: TransportError | None) -> None:
        if self._state == TCPState.DISCONNECTED and self._con is None:
            return

        if self._con is not None:
            try:
                self._con.get_socket().shutdown(True, True)
            except GLib.Error as exc:
                self._log.info(exc)
        self._input_closed = True
        self._output_closed = True
        self.state = TCPState.DISCONNECTED
        self.notify(signal_name, error)
        self.destroy()

    def destroy(self) -> None:
        super().destroy()
        self._con = None
        self._client = None
        self._write_queue.clear()
