from __future__ import annotations

import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from taskforge.errors import StateStoreError
from taskforge.models import utcnow_iso

SCHEMA_VERSION = 1
NAMESPACES = ("snapshot", "analytics", "decisions")


@dataclass(frozen=True, slots=True)
class Envelope:
    revision: int = 0
    updated_at: str | None = None
    data: Any = None
    schema_version: int = SCHEMA_VERSION

    @classmethod
    def from_raw(cls, raw: Any) -> Envelope:
        # Anything that is not a full envelope reads as "never written".
        if not isinstance(raw, dict) or not {"revision", "data"} <= raw.keys():
            return cls()
        return cls(
            revision=int(raw.get("revision") or 0),
            updated_at=raw.get("updated_at"),
            data=raw.get("data"),
            schema_version=int(raw.get("schema_version") or SCHEMA_VERSION),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "revision": self.revision,
            "updated_at": self.updated_at,
            "data": self.data,
        }


def _records(data: Any) -> list[dict[str, Any]]:
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


class JsonStateStore:
    """One revisioned JSON file per namespace, guarded by a lock file."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory).resolve()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.lock_file = self.directory / ".lock"

    def _path(self, namespace: str) -> Path:
        if namespace not in NAMESPACES:
            raise StateStoreError(f"Unsupported namespace: {namespace}")
        return self.directory / f"{namespace}.json"

    @contextmanager
    def locked(self, timeout_seconds: float = 3.0) -> Iterator[None]:
        deadline = time.monotonic() + timeout_seconds
        while True:
            try:
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError as exc:
                if time.monotonic() > deadline:
                    raise StateStoreError(f"Timed out waiting for {self.lock_file}") from exc
                time.sleep(0.02)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(str(os.getpid()))
            break
        try:
            yield
        finally:
            self.lock_file.unlink(missing_ok=True)

    def read(self, namespace: str) -> Envelope:
        path = self._path(namespace)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError):
            return Envelope()
        return Envelope.from_raw(raw)

    def _replace(self, namespace: str, envelope: Envelope) -> None:
        path = self._path(namespace)
        staging = path.with_name(f"{path.name}.tmp")
        try:
            staging.write_text(
                json.dumps(envelope.to_dict(), ensure_ascii=False, indent=2, sort_keys=True),
                encoding="utf-8",
            )
            os.replace(staging, path)
        except (OSError, TypeError, ValueError) as exc:
            raise StateStoreError(f"Failed to write {path.name}: {exc}") from exc

    def _bump(self, namespace: str, current: Envelope, data: Any) -> int:
        revision = current.revision + 1
        self._replace(namespace, Envelope(revision=revision, updated_at=utcnow_iso(), data=data))
        return revision

    def write(self, namespace: str, data: Any, *, expected_revision: int | None = None) -> int:
        """Replace the namespace contents and return the new revision.

        With ``expected_revision`` the write is refused when another writer
        got there first.
        """

        with self.locked():
            current = self.read(namespace)
            if expected_revision is not None and expected_revision != current.revision:
                raise StateStoreError(
                    f"Stale write to '{namespace}': revision is {current.revision}, "
                    f"expected {expected_revision}"
                )
            return self._bump(namespace, current, data)

    def save_snapshot(self, snapshot: dict[str, Any]) -> int:
        return self.write("snapshot", snapshot)

    def load_snapshot(self) -> dict[str, Any]:
        data = self.read("snapshot").data
        return data if isinstance(data, dict) else {}

    def save_analytics(self, analytics: dict[str, Any]) -> int:
        return self.write("analytics", analytics)

    def load_analytics(self) -> dict[str, Any]:
        data = self.read("analytics").data
        return data if isinstance(data, dict) else {}

    def get_decisions(self) -> list[dict[str, Any]]:
        return _records(self.read("decisions").data)

    def append_decisions(self, decisions: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Append records whose ``id`` is not stored yet and return the full list."""

        with self.locked():
            current = self.read("decisions")
            stored = _records(current.data)
            known = {item.get("id") for item in stored}
            fresh = [item for item in decisions if item.get("id") not in known]
            if fresh:
                stored.extend(fresh)
                self._bump("decisions", current, stored)
            return stored
