# Copyright (C) 2020 Philipp Hörist <philipp AT hoerist.com>
#
# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any
from typing import TYPE_CHECKING

import binascii
import hashlib
import hmac
import logging
import os
from hashlib import pbkdf2_hmac

from xmppterm.builder import E
from xmppterm.const import SASL_AUTH_MECHS
from xmppterm.const import SASL_ERROR_CONDITIONS
from xmppterm.const import StreamState
from xmppterm.elements import Base
from xmppterm.elements import Features
from xmppterm.errors import AuthError
from xmppterm.namespaces import Namespace
from xmppterm.util import b64decode
from xmppterm.util import b64encode
from xmppterm.util import LogAdapter

if TYPE_CHECKING:
    from xmppterm.client import Client

log = logging.getLogger("xmppterm.sasl")


class SASL:
    """
    Implements SASL authentication.
    """

    def __init__(self, client: Client) -> None:
        self._client = client

        self._password: str | None = None

        self._mechanism_classes: dict[str, type[BaseMechanism]] = {
            "PLAIN": PLAIN,
            "SCRAM-SHA-1": SCRAM_SHA_1,
            "SCRAM-SHA-256": SCRAM_SHA_256,
            "SCRAM-SHA-512": SCRAM_SHA_512,
        }

        self._mechanism: BaseMechanism | None = None
        self._error: AuthError | None = None

        self._log = LogAdapter(log, {"context": client.log_context})

    @property
    def error(self) -> AuthError | None:
        return self._error

    @property
    def mechanism(self) -> str | None:
        if self._mechanism is None:
            return None
        return self._mechanism.name

    def set_password(self, password: str | None) -> None:
        self._password = password

    @property
    def password(self) -> str | None:
        return self._password

    def delegate(self, stanza: Base) -> None:
        if stanza.namespace != Namespace.SASL:
            return

        if stanza.localname == "challenge":
            self._on_challenge(stanza)
        elif stanza.localname == "failure":
            self._on_failure(stanza)
        elif stanza.localname == "success":
            self._on_success(stanza)

    def start_auth(self, features: Features) -> None:
        self._mechanism = None
        self._error = None

        enabled_mechs = set(self._client.mechs)
        if not self._client.is_stream_secure:
            # Never send the password in clear text
            enabled_mechs.discard("PLAIN")

        feature_mechs = features.get_mechs()

        self._log.info("Enabled mechanisms: %s", enabled_mechs)
        self._log.info("Server mechanisms: %s", feature_mechs)

        available_mechs = feature_mechs & enabled_mechs
        self._log.info("Available mechanisms: %s", available_mechs)

        chosen_mechanism = None
        for mech in SASL_AUTH_MECHS:
            if mech in available_mechs:
                chosen_mechanism = mech
                break

        if chosen_mechanism is None:
            self._log.error("No available auth mechanisms found")
            self._on_sasl_finished(False, "no-common-mechanism")
            return

        self._log.info("Chosen auth mechanism: %s", chosen_mechanism)

        if not self._password:
            self._on_sasl_finished(False, "no-password")
            return

        mech_class = self._mechanism_classes[chosen_mechanism]
        self._mechanism = mech_class(
            self._client.username, self._password, self._client.domain
        )

        self._send_initiate()

    def _send_initiate(self) -> None:
        assert self._mechanism is not None
        data = self._mechanism.get_initiate_data()
        nonza = E("auth", text=data, namespace=Namespace.SASL, mechanism=self._mechanism.name)
        self._client.send_nonza(nonza)

    def _on_challenge(self, stanza: Base) -> None:
        assert self._mechanism is not None
        try:
            data = self._mechanism.get_response_data(stanza.text or "")
        except NotImplementedError:
            self._log.info("Mechanism has no response method")
            self._abort_auth()
            return

        except (AuthFail, ValueError, KeyError) as error:
            self._log.error(error)
            self._abort_auth()
            return

        nonza = E("response", text=data, namespace=Namespace.SASL)
        self._client.send_nonza(nonza)

    def _on_success(self, stanza: Base) -> None:
        self._log.info("Successfully authenticated with remote server")
        assert self._mechanism is not None
        try:
            self._mechanism.validate_success_data(stanza.text)
        except Exception as error:
            self._log.error("Unable to validate success data: %s", error)
            self._on_sasl_finished(False, "invalid-server-signature")
            return

        self._log.info("Validated success data")

        self._on_sasl_finished(True, None)

    def _on_failure(self, stanza: Base) -> None:
        text = stanza.find_tag_text("text")
        reason = "not-authorized"
        for child in stanza:
            if child.localname == "text":
                continue
            if child.localname in SASL_ERROR_CONDITIONS:
                reason = child.localname
                break

        self._log.info("Failed SASL authentification: %s %s", reason, text)
        self._on_sasl_finished(False, reason, text)

    def _abort_auth(self, reason: str = "malformed-request", text: str | None = None) -> None:
        self._client.send_nonza(E("abort", namespace=Namespace.SASL))
        self._on_sasl_finished(False, reason, text)

    def _on_sasl_finished(
        self, successful: bool, reason: str | None, text: str | None = None
    ) -> None:
        if not successful:
            self._error = AuthError(reason or "not-authorized", text)
            self._client.set_state(StreamState.AUTH_FAILED)
        else:
            self._client.set_state(StreamState.AUTH_SUCCESSFUL)


class BaseMechanism:

    name: str

    def __init__(self, username: str | None, password: str, domain: str | None) -> None:
        self._username = username
        self._password = password
        self._domain = domain

    def get_initiate_data(self) -> str | None:
        raise NotImplementedError

    def get_response_data(self, data: str) -> str:
        raise NotImplementedError

    def validate_success_data(self, _data: str | None) -> None:
        return None


class PLAIN(BaseMechanism):

    name = "PLAIN"

    def get_initiate_data(self) -> str:
        return b64encode("\x00%s\x00%s" % (self._username, self._password))


class SCRAM(BaseMechanism):

    name = ""
    _hash_method = ""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        BaseMechanism.__init__(self, *args, **kwargs)
        self._gs2_header = "n,,"
        self._client_nonce = "%x" % int(binascii.hexlify(os.urandom(24)), 16)
        self._client_first_message_bare: str | None = None
        self._server_signature: bytes | None = None

    @property
    def nonce_length(self) -> int:
        return len(self._client_nonce)

    @staticmethod
    def _scram_parse(scram_data: str) -> dict[str, str]:
        return dict(s.split("=", 1) for s in scram_data.split(","))

    def get_initiate_data(self) -> str:
        self._client_first_message_bare = "n=%s,r=%s" % (
            self._username,
            self._client_nonce,
        )

        client_first_message = "%s%s" % (
            self._gs2_header,
            self._client_first_message_bare,
        )

        return b64encode(client_first_message)

    def get_response_data(self, data: str) -> str:
        server_first_message = b64decode(data).decode()
        challenge = self._scram_parse(server_first_message)

        client_nonce = challenge["r"][: self.nonce_length]
        if client_nonce != self._client_nonce:
            raise AuthFail("Invalid client nonce received from server")

        salt = b64decode(challenge["s"])
        iteration_count = int(challenge["i"])

        if iteration_count < 4096:
            raise AuthFail("Salt iteration count to low: %s" % iteration_count)

        salted_password = pbkdf2_hmac(
            self._hash_method, self._password.encode("utf8"), salt, iteration_count
        )

        client_final_message_wo_proof = "c=%s,r=%s" % (
            b64encode(self._gs2_header),
            challenge["r"],
        )

        client_key = self._hmac(salted_password, "Client Key")
        stored_key = self._h(client_key)
        auth_message = "%s,%s,%s" % (
            self._client_first_message_bare,
            server_first_message,
            client_final_message_wo_proof,
        )
        client_signature = self._hmac(stored_key, auth_message)
        client_proof = self._xor(client_key, client_signature)

        client_finale_message = "%s,p=%s" % (
            client_final_message_wo_proof,
            b64encode(client_proof),
        )

        server_key = self._hmac(salted_password, "Server Key")
        self._server_signature = self._hmac(server_key, auth_message)

        return b64encode(client_finale_message)

    def validate_success_data(self, data: str | None) -> None:
        if not data:
            raise AuthFail("Missing server signature")
        server_last_message = b64decode(data).decode()
        success = self._scram_parse(server_last_message)
        server_signature = b64decode(success["v"])
        if server_signature != self._server_signature:
            raise AuthFail("Invalid server signature")

    def _hmac(self, key: bytes, message: str) -> bytes:
        return hmac.new(key=key, msg=message.encode(), digestmod=self._hash_method).digest()

    @staticmethod
    def _xor(x: bytes, y: bytes) -> bytes:
        return bytes([px ^ py for px, py in zip(x, y)])

    def _h(self, data: bytes) -> bytes:
        return hashlib.new(self._hash_method, data).digest()


class SCRAM_SHA_1(SCRAM):

    name = "SCRAM-SHA-1"
    _hash_method = "sha1"


class SCRAM_SHA_256(SCRAM):

    name = "SCRAM-SHA-256"
    _hash_method = "sha256"


class SCRAM_SHA_512(SCRAM):

    name = "SCRAM-SHA-512"
    _hash_method = "sha512"


class AuthFail(Exception):
    pass
