from __future__ import annotations

from typing import Any, Dict, Optional


class StoreUnavailable(Exception):
    """Raised when the key-value store cannot serve a command.

    A cache miss is never reported this way; lookups return ``None`` for
    absent keys so callers can tell "not there" from "store down".
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreNotInitialized(StoreUnavailable):
    """Raised when the store is used while disconnected and a reconnect is not yet due."""


__all__ = ["StoreUnavailable", "StoreNotInitialized"]
