from __future__ import annotations

from abc import ABC, abstractmethod

from shared.contracts.v1.registry import CollaboratorRecord


class CollaboratorRepository(ABC):
    """Peers keyed by display name. Writes merge into the store, never replace it."""

    @abstractmethod
    def get(self, identity: str) -> CollaboratorRecord | None: ...

    @abstractmethod
    def all(self) -> list[CollaboratorRecord]: ...

    @abstractmethod
    def upsert(self, record: CollaboratorRecord) -> None: ...
