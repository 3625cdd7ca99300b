from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Final

from ports.registry import CollaboratorRepository
from shared.contracts.v1.registry import CollaboratorRecord

LOG: Final = logging.getLogger("registry")


class JsonFileCollaboratorRepository(CollaboratorRepository):
    """Flat keyed JSON document; read in full on every lookup, merged on every write."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        text = self._path.read_text("utf-8")
        if not text.strip():
            return {}
        try:
            doc = json.loads(text)
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Failed to parse collaborator registry: {self._path}") from e
        if not isinstance(doc, dict):
            raise RuntimeError(f"Collaborator registry must be a JSON object: {self._path}")
        return doc

    def _write(self, doc: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".registry-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, identity: str) -> CollaboratorRecord | None:
        body = self._read().get(identity)
        if not isinstance(body, dict):
            return None
        return CollaboratorRecord.from_document(identity, body)

    def all(self) -> list[CollaboratorRecord]:
        out: list[CollaboratorRecord] = []
        for identity, body in self._read().items():
            if not isinstance(body, dict):
                LOG.warning("Skipping malformed registry entry %r", identity)
                continue
            try:
                out.append(CollaboratorRecord.from_document(identity, body))
            except ValueError:
                LOG.warning("Skipping invalid registry entry %r", identity)
        return out

    def upsert(self, record: CollaboratorRecord) -> None:
        doc = self._read()
        doc[record.identity] = record.to_document()
        self._write(doc)
        LOG.info("Saved registry entry for %s (role=%s) to %s", record.identity, record.role, self._path)


class InMemoryCollaboratorRepository(CollaboratorRepository):
    def __init__(self, records: list[CollaboratorRecord] | None = None) -> None:
        self._records: dict[str, CollaboratorRecord] = {r.identity: r for r in records or []}

    def get(self, identity: str) -> CollaboratorRecord | None:
        return self._records.get(identity)

    def all(self) -> list[CollaboratorRecord]:
        return list(self._records.values())

    def upsert(self, record: CollaboratorRecord) -> None:
        self._records[record.identity] = record
