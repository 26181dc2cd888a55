from __future__ import annotations

from threading import Lock

import structlog

logger = structlog.get_logger("steward.setup")


class SetupGate:
    """Process-wide answer to "has initial configuration been completed?".

    Setup is complete when the configuration document is marked complete,
    carries a valid backend descriptor and that backend answers a ping.
    ``is_configured()`` answers the first two without the ping, so an
    outage of a configured backend can be told apart from a fresh install.

    Only positive answers are cached; a negative answer is recomputed on the
    next call so a backend that comes back is picked up without a restart.
    ``invalidate()`` drops the cache on reconfiguration. Any failure while
    checking means "no"; it is logged and never raised.
    """

    def __init__(self, config_store, connection_manager):
        self.config_store = config_store
        self.connection_manager = connection_manager
        self._configured = False
        self._complete = False
        self._lock = Lock()

    def is_configured(self) -> bool:
        with self._lock:
            if not self._configured:
                self._configured = self._load_descriptor() is not None
            return self._configured

    def is_setup_complete(self) -> bool:
        with self._lock:
            if not self._complete:
                self._complete = self._check()
                if self._complete:
                    self._configured = True
            return self._complete

    def invalidate(self) -> None:
        with self._lock:
            self._configured = False
            self._complete = False

    def _load_descriptor(self):
        try:
            if not self.config_store.is_marked_complete():
                return None
            return self.config_store.load_descriptor()
        except Exception as exc:
            logger.warning("setup_gate.config_unreadable", error=str(exc))
            return None

    def _check(self) -> bool:
        descriptor = self._load_descriptor()
        if descriptor is None:
            return False
        try:
            return self.connection_manager.ping(descriptor)
        except Exception as exc:
            logger.warning("setup_gate.check_failed", error=str(exc))
            return False
