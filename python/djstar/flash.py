"""
Flash data with an "age by one request" lifetime.

Values flashed during a request are readable for the rest of that request
and for exactly one following request. The bag keeps three lists in the
session::

    {"data": {...}, "new": [...], "old": [...]}

``age()`` runs once at the end of every request (``DjstarMiddleware`` calls
it before Django's ``SessionMiddleware`` saves the session): data of the
``old`` keys is deleted, ``new`` becomes ``old``.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .config import config

logger = logging.getLogger(__name__)


class FlashBag:
    def __init__(self, session, key: Optional[str] = None):
        self.session = session
        self.key = key or config.get("flash_session_key")

    def _bag(self) -> Dict[str, Any]:
        bag = self.session.get(self.key)
        if not isinstance(bag, dict):
            bag = {"data": {}, "new": [], "old": []}
        bag.setdefault("data", {})
        bag.setdefault("new", [])
        bag.setdefault("old", [])
        return bag

    def _save(self, bag: Dict[str, Any]) -> None:
        if bag["data"] or bag["new"] or bag["old"]:
            self.session[self.key] = bag
        else:
            self.session.pop(self.key, None)

    def flash(self, key: str, value: Any) -> None:
        """Store *value* as new flash data."""
        bag = self._bag()
        bag["data"][key] = value
        if key not in bag["new"]:
            bag["new"].append(key)
        if key in bag["old"]:
            bag["old"].remove(key)
        self._save(bag)

    def get(self, key: str, default: Any = None) -> Any:
        return self._bag()["data"].get(key, default)

    def has(self, key: str) -> bool:
        return key in self._bag()["data"]

    def all(self) -> Dict[str, Any]:
        return dict(self._bag()["data"])

    def new_keys(self) -> List[str]:
        return list(self._bag()["new"])

    def old_keys(self) -> List[str]:
        return list(self._bag()["old"])

    def reflash(self) -> None:
        """Mark every current flash key as new again."""
        bag = self._bag()
        bag["new"] = list(dict.fromkeys(bag["new"] + bag["old"]))
        bag["old"] = []
        self._save(bag)

    def keep(self, keys: Iterable[str]) -> None:
        """Mark selected keys as new so they survive the next aging."""
        bag = self._bag()
        for key in keys:
            if key in bag["old"]:
                bag["old"].remove(key)
            if key in bag["data"] and key not in bag["new"]:
                bag["new"].append(key)
        self._save(bag)

    def mark_old(self, keys: Iterable[str]) -> None:
        """Apply one aging step to selected keys only."""
        bag = self._bag()
        for key in keys:
            if key in bag["new"]:
                bag["new"].remove(key)
                if key not in bag["old"]:
                    bag["old"].append(key)
        self._save(bag)

    def age(self) -> None:
        """End-of-request transition: expire ``old`` keys, ``new`` becomes ``old``."""
        bag = self.session.get(self.key)
        if not isinstance(bag, dict):
            return
        bag = self._bag()
        for key in bag["old"]:
            if key not in bag["new"]:
                bag["data"].pop(key, None)
        bag["old"] = bag["new"]
        bag["new"] = []
        self._save(bag)

    def persist(self) -> None:
        """
        Age and write the session immediately.

        Performs the same cycle the end of the request would, so the data is
        durable before a client-side navigation leaves the page.
        """
        self.age()
        self.session.save()
        logger.debug("Flash data persisted early for session")
