"""
Template repository contract.

The repository is the durable source of truth for template records. Each
record is addressed by an internal id (distinct from the template IRI) and
holds three statement sets: interface, configuration and description.

Provides:
- RepositoryReference: handle of a stored record
- TemplateRepository: abstract contract used by the manager
- MemoryTemplateRepository: dict-backed implementation
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import RLock
from typing import Dict, Iterable, List

from component_templates.errors import InvalidRecord
from component_templates.models import Statement, TemplateType

# Schema version written by this code
LATEST_VERSION = 4


@dataclass(frozen=True)
class RepositoryReference:
    """Handle of a stored template record."""
    id: str
    type: TemplateType

    @classmethod
    def bundled(cls, record_id: str) -> "RepositoryReference":
        return cls(record_id, TemplateType.BUNDLED)

    @classmethod
    def reference(cls, record_id: str) -> "RepositoryReference":
        return cls(record_id, TemplateType.REFERENCE)


class TemplateRepository(ABC):
    """
    Durable store of template records and the schema version.

    Anything with an ``id`` attribute (templates included) can be passed
    where a record is expected.
    """

    LATEST_VERSION = LATEST_VERSION

    @abstractmethod
    def get_initial_version(self) -> int:
        """Schema version of the store as it was when opened."""

    @abstractmethod
    def get_references(self) -> List[RepositoryReference]:
        """All stored records."""

    @abstractmethod
    def reserve_reference_id(self) -> str:
        """Return a fresh record id. Ids are never handed out twice."""

    @abstractmethod
    def store_bundled(
        self,
        record_id: str,
        interface: Iterable[Statement],
        configuration: Iterable[Statement],
        description: Iterable[Statement],
    ) -> RepositoryReference:
        """Write or wholly replace a bundled template record."""

    @abstractmethod
    def get_interface(self, record) -> List[Statement]:
        pass

    @abstractmethod
    def set_interface(self, record, statements: Iterable[Statement]) -> None:
        pass

    @abstractmethod
    def get_config(self, record) -> List[Statement]:
        pass

    @abstractmethod
    def set_config(self, record, statements: Iterable[Statement]) -> None:
        pass

    @abstractmethod
    def get_description(self, record) -> List[Statement]:
        pass

    @abstractmethod
    def set_description(self, record, statements: Iterable[Statement]) -> None:
        pass

    @abstractmethod
    def remove(self, record) -> None:
        """Delete the record; unknown ids are ignored."""

    @abstractmethod
    def update_finished(self) -> None:
        """Persist LATEST_VERSION as the store's schema version."""


@dataclass
class _MemoryRecord:
    type: TemplateType
    interface: List[Statement]
    configuration: List[Statement]
    description: List[Statement]


class MemoryTemplateRepository(TemplateRepository):
    """
    In-memory repository.

    Usage:
        repository = MemoryTemplateRepository()
        manager = TemplateManager(repository, source, "http://localhost")
    """

    def __init__(self, version: int = LATEST_VERSION):
        self._lock = RLock()
        self._initial_version = version
        self.version = version
        self._records: Dict[str, _MemoryRecord] = {}
        self._next_id = 1

    def get_initial_version(self) -> int:
        return self._initial_version

    def get_references(self) -> List[RepositoryReference]:
        with self._lock:
            return [
                RepositoryReference(record_id, record.type)
                for record_id, record in self._records.items()
            ]

    def reserve_reference_id(self) -> str:
        with self._lock:
            while str(self._next_id) in self._records:
                self._next_id += 1
            record_id = str(self._next_id)
            self._next_id += 1
            self._records[record_id] = _MemoryRecord(
                TemplateType.REFERENCE, [], [], [])
            return record_id

    def store_bundled(
        self,
        record_id: str,
        interface: Iterable[Statement],
        configuration: Iterable[Statement],
        description: Iterable[Statement],
    ) -> RepositoryReference:
        with self._lock:
            self._records[record_id] = _MemoryRecord(
                TemplateType.BUNDLED,
                list(interface),
                list(configuration),
                list(description),
            )
        return RepositoryReference.bundled(record_id)

    def add_reference(
        self,
        record_id: str,
        interface: Iterable[Statement],
        configuration: Iterable[Statement] = (),
        description: Iterable[Statement] = (),
    ) -> RepositoryReference:
        """
        Insert a reference record under an explicit id.

        Used to seed pre-existing records in tests. It bypasses
        ``reserve_reference_id``; the counter skips ids taken this way.
        """
        with self._lock:
            self._records[record_id] = _MemoryRecord(
                TemplateType.REFERENCE,
                list(interface),
                list(configuration),
                list(description),
            )
        return RepositoryReference.reference(record_id)

    def _get(self, record) -> _MemoryRecord:
        record_id = record.id
        if record_id not in self._records:
            raise InvalidRecord(f"Unknown record: {record_id}", record_id)
        return self._records[record_id]

    def get_interface(self, record) -> List[Statement]:
        with self._lock:
            return list(self._get(record).interface)

    def set_interface(self, record, statements: Iterable[Statement]) -> None:
        with self._lock:
            self._get(record).interface = list(statements)

    def get_config(self, record) -> List[Statement]:
        with self._lock:
            return list(self._get(record).configuration)

    def set_config(self, record, statements: Iterable[Statement]) -> None:
        with self._lock:
            self._get(record).configuration = list(statements)

    def get_description(self, record) -> List[Statement]:
        with self._lock:
            return list(self._get(record).description)

    def set_description(self, record, statements: Iterable[Statement]) -> None:
        with self._lock:
            self._get(record).description = list(statements)

    def remove(self, record) -> None:
        with self._lock:
            self._records.pop(record.id, None)

    def update_finished(self) -> None:
        self.version = LATEST_VERSION
