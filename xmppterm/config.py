# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any

import json
import logging
import os
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from xmppterm.backoff import Backoff
from xmppterm.const import DEFAULT_REQUEST_TIMEOUT
from xmppterm.const import KEEPALIVE_INTERVAL
from xmppterm.const import SASL_AUTH_MECHS
from xmppterm.const import TlsPolicy
from xmppterm.errors import ConfigError
from xmppterm.exceptions import InvalidJid
from xmppterm.jid import JID

log = logging.getLogger("xmppterm.config")

APP_NAME = "xmppterm"


def get_config_dir() -> Path:
    expand = os.path.expanduser
    base = os.getenv("XDG_CONFIG_HOME")
    if base is None or base[0] != "/":
        base = expand("~/.config")
    return Path(os.path.join(base, APP_NAME))


def get_data_dir() -> Path:
    expand = os.path.expanduser
    base = os.getenv("XDG_DATA_HOME")
    if base is None or base[0] != "/":
        base = expand("~/.local/share")
    return Path(os.path.join(base, APP_NAME))


def create_path(path_: Path) -> None:
    if path_.exists():
        return

    for parent_path in reversed(path_.parents):
        # mkdir(parents=True) ignores mode for the parents
        if not parent_path.exists():
            log.info("creating %s directory", parent_path)
            parent_path.mkdir(mode=0o700)
    log.info("creating %s directory", path_)
    path_.mkdir(mode=0o700)


@dataclass
class ReconnectConfig:
    initial: float = 1.0
    maximum: float = 120.0
    factor: float = 1.5
    jitter: float = 0.2

    def make_backoff(self) -> Backoff:
        return Backoff(
            initial=self.initial,
            maximum=self.maximum,
            factor=self.factor,
            jitter=self.jitter,
        )


@dataclass
class AccountConfig:
    name: str
    jid: JID
    password: str | None = None
    server: str | None = None
    port: int | None = None
    autoconnect: bool = False
    resource: str | None = None
    mechanisms: set[str] | None = None
    tls: TlsPolicy = TlsPolicy.STARTTLS

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> AccountConfig:
        if not isinstance(data, dict):
            raise ConfigError("Account %s: expected an object" % name)

        value = data.get("jid")
        if not isinstance(value, str):
            raise ConfigError("Account %s: jid missing" % name)

        try:
            jid = JID.from_string(value)
        except InvalidJid as error:
            raise ConfigError("Account %s: invalid jid %s: %s" % (name, value, error))

        if jid.localpart is None:
            raise ConfigError("Account %s: jid %s has no localpart" % (name, value))

        resource = data.get("resource", jid.resource)

        port = data.get("port")
        if port is not None and (not isinstance(port, int) or not 0 < port < 65536):
            raise ConfigError("Account %s: invalid port %s" % (name, port))

        mechanisms = data.get("mechanisms")
        if mechanisms is not None:
            mechanisms = set(mechanisms)
            unknown = mechanisms - set(SASL_AUTH_MECHS)
            if unknown:
                raise ConfigError(
                    "Account %s: unknown mechanisms %s" % (name, ", ".join(unknown))
                )

        try:
            tls = TlsPolicy(data.get("tls", TlsPolicy.STARTTLS.value))
        except ValueError:
            raise ConfigError("Account %s: invalid tls policy %s" % (name, data["tls"]))

        return cls(
            name=name,
            jid=jid.new_as_bare(),
            password=data.get("password"),
            server=data.get("server"),
            port=port,
            autoconnect=bool(data.get("autoconnect", False)),
            resource=resource,
            mechanisms=mechanisms,
            tls=tls,
        )

    def asdict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "jid": str(self.jid),
            "autoconnect": self.autoconnect,
            "tls": self.tls.value,
        }
        for key in ("password", "server", "port", "resource"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.mechanisms is not None:
            data["mechanisms"] = sorted(self.mechanisms)
        return data


@dataclass
class Config:
    accounts: dict[str, AccountConfig] = field(default_factory=dict)
    bell: bool = False
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    keepalive: int = KEEPALIVE_INTERVAL
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        if not isinstance(data, dict):
            raise ConfigError("Expected an object at top level")

        accounts_data = data.get("accounts", {})
        if not isinstance(accounts_data, dict):
            raise ConfigError("accounts: expected an object")

        accounts = {
            name: AccountConfig.from_dict(name, account)
            for name, account in accounts_data.items()
        }

        reconnect_data = data.get("reconnect", {})
        try:
            reconnect = ReconnectConfig(
                **{
                    key: float(value)
                    for key, value in reconnect_data.items()
                    if key in ("initial", "maximum", "factor", "jitter")
                }
            )
            reconnect.make_backoff()
        except (AttributeError, TypeError, ValueError) as error:
            raise ConfigError("reconnect: %s" % error)

        try:
            request_timeout = float(data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT))
            keepalive = int(data.get("keepalive", KEEPALIVE_INTERVAL))
        except (TypeError, ValueError) as error:
            raise ConfigError(str(error))

        return cls(
            accounts=accounts,
            bell=bool(data.get("bell", False)),
            request_timeout=request_timeout,
            keepalive=keepalive,
            reconnect=reconnect,
        )

    def get_account(self, name: str) -> AccountConfig:
        try:
            return self.accounts[name]
        except KeyError:
            raise ConfigError("Unknown account %s" % name)


def get_default_path() -> Path:
    return get_config_dir() / "config.json"


def load_config(path: Path | None = None) -> Config:
    if path is None:
        path = get_default_path()

    if not path.exists():
        log.info("No configuration at %s, using defaults", path)
        return Config(path=path)

    try:
        with path.open("r", encoding="utf-8") as fp:
            data = json.load(fp)
    except json.JSONDecodeError as error:
        raise ConfigError("Invalid configuration %s: %s" % (path, error))
    except OSError as error:
        raise ConfigError("Unable to read %s: %s" % (path, error))

    config = Config.from_dict(data)
    config.path = path
    log.info("Loaded %s accounts from %s", len(config.accounts), path)
    return config
