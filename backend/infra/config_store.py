"""Persisted configuration document describing the active audit backend."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Union

import structlog
from schemas import ClientServerDescriptor, EmbeddedDescriptor
from security import validate_backend_descriptor

logger = structlog.get_logger("steward.config")

Descriptor = Union[EmbeddedDescriptor, ClientServerDescriptor]


class ConfigStoreError(Exception):
    """Raised when the configuration document cannot be read or parsed."""


class ConfigStore:
    """Loads and saves the JSON configuration document.

    The document has the shape::

        {"setupComplete": true, "databaseConfig": {"type": "embedded", ...}}

    Reads always hit the file so that a reconfiguration performed by another
    process is observed by the next call.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path: Optional[Path] = Path(path) if path else None
        self._lock = Lock()

    def init_app(self, app) -> None:
        configured = app.config.get("STEWARD_CONFIG_PATH")
        if configured:
            self.path = Path(configured)
        elif self.path is None:
            self.path = Path(app.root_path) / "data" / "config.json"

    def _require_path(self) -> Path:
        if self.path is None:
            raise ConfigStoreError("Configuration path is not set")
        return self.path

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the raw document, or None when nothing has been persisted."""
        path = self._require_path()
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                document = json.load(fh)
        except (OSError, ValueError) as exc:
            raise ConfigStoreError(f"Unable to read configuration: {exc}") from exc
        if not isinstance(document, dict):
            raise ConfigStoreError("Configuration document must be a JSON object")
        return document

    def load_descriptor(self) -> Optional[Descriptor]:
        """Return the persisted descriptor, or None when setup never ran."""
        document = self.load()
        if not document or not document.get("databaseConfig"):
            return None
        return validate_backend_descriptor(document["databaseConfig"])

    def is_marked_complete(self) -> bool:
        document = self.load()
        return bool(document and document.get("setupComplete"))

    def save(self, descriptor: Descriptor, *, setup_complete: bool = True) -> Dict[str, Any]:
        document = {
            "setupComplete": setup_complete,
            "databaseConfig": descriptor.model_dump(by_alias=True),
            "completedAt": datetime.now(timezone.utc).isoformat(),
        }
        path = self._require_path()
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(document, fh, indent=2)
                os.replace(tmp_name, path)
            except Exception:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        logger.info("config.saved", path=str(path), backend=descriptor.type)
        return document
