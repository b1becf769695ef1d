# This file is part of xmppterm.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

from typing import Any

import json
import logging
import os
from pathlib import Path

from xmppterm.config import create_path
from xmppterm.config import get_data_dir
from xmppterm.structs import BookmarkData
from xmppterm.structs import RosterItem

log = logging.getLogger("xmppterm.storage")


class JSONStore:
    """
    Roster cache and bookmarks of one account, every change replaces the
    whole document
    """

    def __init__(self, account: str, base_dir: Path | None = None) -> None:
        if base_dir is None:
            base_dir = get_data_dir()
        self._dir = base_dir
        self._path = base_dir / ("%s.json" % account)
        self._data: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data

        self._data = {}
        if not self._path.exists():
            return self._data

        try:
            with self._path.open("r", encoding="utf-8") as fp:
                data = json.load(fp)
        except (OSError, json.JSONDecodeError) as error:
            log.warning("Unable to load %s: %s", self._path, error)
            return self._data

        if isinstance(data, dict):
            self._data = data
        else:
            log.warning("Ignoring invalid store %s", self._path)
        return self._data

    def _store(self) -> None:
        create_path(self._dir)
        tmp_path = self._path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as fp:
            json.dump(self._data, fp, indent=2)
        os.replace(tmp_path, self._path)

    def load_roster(self) -> tuple[str | None, list[RosterItem]]:
        roster = self._load().get("roster") or {}
        items: list[RosterItem] = []
        for item in roster.get("items", []):
            try:
                items.append(RosterItem.from_dict(item))
            except Exception:
                log.warning("Ignoring invalid cached roster item: %s", item)
        return roster.get("version"), items

    def store_roster(self, version: str | None, items: list[RosterItem]) -> None:
        self._load()["roster"] = {
            "version": version,
            "items": [item.asdict() for item in items],
        }
        self._store()

    def load_bookmarks(self) -> list[BookmarkData]:
        bookmarks: list[BookmarkData] = []
        for bookmark in self._load().get("bookmarks", []):
            try:
                bookmarks.append(BookmarkData.from_dict(bookmark))
            except Exception:
                log.warning("Ignoring invalid cached bookmark: %s", bookmark)
        return bookmarks

    def store_bookmarks(self, bookmarks: list[BookmarkData]) -> None:
        self._load()["bookmarks"] = [bookmark.asdict() for bookmark in bookmarks]
        self._store()
